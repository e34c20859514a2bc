import logging
from typing import Optional

import openai
import requests
from openai import AzureOpenAI

from medjournal.classifier.decoding import decode_classification
from medjournal.classifier.prompts import (
    PROMPT_VERSION,
    SYSTEM_PROMPT,
    build_single_prompt,
    build_user_prompt,
)
from medjournal.config import Settings
from medjournal.errors import (
    ClassifierTimeout,
    ConfigurationError,
    EmptyResponse,
    InvalidInput,
    UpstreamError,
)
from medjournal.models.journal_entry import ClassificationResult

logger = logging.getLogger("medjournal.classifier")

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
MAX_ERROR_BODY = 2000


class AzureOpenAIProvider:
    """Chat completion through the Azure OpenAI SDK, JSON mode."""

    name = "azure_openai"

    def __init__(self, settings: Settings):
        self.api_key = settings.azure_openai_key
        self.endpoint = settings.azure_openai_endpoint
        self.deployment = settings.azure_openai_deployment
        self.api_version = settings.azure_openai_api_version
        self.timeout = settings.classifier_timeout_seconds
        self._client: Optional[AzureOpenAI] = None

    def check_configured(self):
        if not self.api_key or not self.endpoint or "PLACEHOLDER" in self.api_key:
            raise ConfigurationError("Missing AZURE_OPENAI_KEY or AZURE_OPENAI_ENDPOINT")

    def _get_client(self) -> AzureOpenAI:
        if self._client is None:
            self._client = AzureOpenAI(
                api_key=self.api_key,
                api_version=self.api_version,
                azure_endpoint=self.endpoint,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    def complete(self, text: str) -> Optional[str]:
        try:
            response = self._get_client().chat.completions.create(
                model=self.deployment,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_user_prompt(text)},
                ],
                temperature=0.0,
                max_tokens=600,
                response_format={"type": "json_object"},
            )
        except openai.APITimeoutError as e:
            raise ClassifierTimeout("Azure OpenAI request timed out") from e
        except openai.APIStatusError as e:
            raise UpstreamError(
                "Azure OpenAI request failed",
                status=e.status_code,
                body=e.response.text[:MAX_ERROR_BODY],
            ) from e
        except openai.APIConnectionError as e:
            raise UpstreamError("Azure OpenAI unreachable", body=str(e)) from e

        if not response.choices:
            return None
        return response.choices[0].message.content


class GeminiProvider:
    """Google Generative Language REST endpoint."""

    name = "gemini"

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        self.api_key = settings.google_ai_api_key
        self.model = settings.gemini_model
        self.timeout = settings.classifier_timeout_seconds
        self.session = session or requests.Session()

    def check_configured(self):
        if not self.api_key:
            raise ConfigurationError("Missing GOOGLE_AI_API_KEY secret")

    def complete(self, text: str) -> Optional[str]:
        try:
            response = self.session.post(
                GEMINI_URL.format(model=self.model),
                params={"key": self.api_key},
                json={"contents": [{"parts": [{"text": build_single_prompt(text)}]}]},
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            raise ClassifierTimeout("Gemini request timed out") from e
        except requests.exceptions.RequestException as e:
            raise UpstreamError("Gemini unreachable", body=str(e)) from e

        if not response.ok:
            raise UpstreamError(
                "Gemini API failed",
                status=response.status_code,
                body=response.text[:MAX_ERROR_BODY],
            )

        try:
            data = response.json()
        except ValueError:
            return None

        try:
            return data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            return None


PROVIDERS = {
    AzureOpenAIProvider.name: AzureOpenAIProvider,
    GeminiProvider.name: GeminiProvider,
}


class ClassifierGateway:
    """
    Forwards journal text to the configured model and returns a validated
    ClassificationResult. Stateless between calls.

    Errors raised:
        InvalidInput        text empty after trimming (no external call made)
        ConfigurationError  provider credentials missing
        UpstreamError       non-success answer (ClassifierTimeout on timeout)
        EmptyResponse       model returned no content
        UnparsableResponse  content is not a JSON object
    """

    def __init__(self, provider):
        self.provider = provider

    @classmethod
    def from_settings(cls, settings: Settings) -> "ClassifierGateway":
        provider_cls = PROVIDERS.get(settings.classifier_provider)
        if provider_cls is None:
            raise ConfigurationError(
                f"Unknown classifier provider: {settings.classifier_provider}"
            )
        return cls(provider_cls(settings))

    def classify(self, text: str) -> ClassificationResult:
        if not isinstance(text, str) or not text.strip():
            raise InvalidInput("Invalid request: 'text' is required")

        self.provider.check_configured()

        logger.info(
            f"Classifying entry provider={self.provider.name} "
            f"prompt={PROMPT_VERSION} chars={len(text)}"
        )
        content = self.provider.complete(text)

        if not content or not content.strip():
            raise EmptyResponse(f"No content returned from {self.provider.name}")

        return decode_classification(content.strip())

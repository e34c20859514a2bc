import pytest

from medjournal.config import SEPOLIA_CHAIN_ID, load_settings
from medjournal.errors import ConfigurationError

ENV_KEYS = [
    "CLASSIFIER_PROVIDER",
    "CLASSIFIER_TIMEOUT_SECONDS",
    "ENTRY_STORE_BACKEND",
    "STORE_TIMEOUT_SECONDS",
    "SIGNER_STRATEGY",
    "EXPECTED_CHAIN_ID",
    "CONFIRMATION_POLL_SECONDS",
    "DATABASE_URL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_defaults():
    settings = load_settings()

    assert settings.classifier_provider == "azure_openai"
    assert settings.entry_store_backend == "sql"
    assert settings.signer_strategy == "message"
    assert settings.expected_chain_id == SEPOLIA_CHAIN_ID
    assert settings.classifier_timeout_seconds == 30.0
    assert settings.store_timeout_seconds == 10.0


def test_choices_are_case_insensitive(monkeypatch):
    monkeypatch.setenv("CLASSIFIER_PROVIDER", "Gemini")
    monkeypatch.setenv("SIGNER_STRATEGY", "RECORDER")

    settings = load_settings()

    assert settings.classifier_provider == "gemini"
    assert settings.signer_strategy == "recorder"


@pytest.mark.parametrize(
    "key, value",
    [
        ("CLASSIFIER_PROVIDER", "llama"),
        ("ENTRY_STORE_BACKEND", "csv"),
        ("SIGNER_STRATEGY", "auto"),
        ("CLASSIFIER_TIMEOUT_SECONDS", "soon"),
        ("STORE_TIMEOUT_SECONDS", "0"),
        ("EXPECTED_CHAIN_ID", "sepolia"),
    ],
)
def test_malformed_values_are_configuration_errors(monkeypatch, key, value):
    monkeypatch.setenv(key, value)
    with pytest.raises(ConfigurationError):
        load_settings()

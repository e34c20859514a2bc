import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from medjournal.errors import ConfigurationError

# Load local .env; deployed environments inject variables directly.
load_dotenv()

CLASSIFIER_PROVIDERS = ("azure_openai", "gemini")
STORE_BACKENDS = ("sql", "blob")
SIGNER_STRATEGIES = ("message", "recorder")

SEPOLIA_CHAIN_ID = 11155111


@dataclass(frozen=True)
class Settings:
    """
    Environment-level configuration for the journal service.
    Secrets stay optional here; each component checks the ones it needs
    at call time and raises ConfigurationError when they are absent.
    """
    classifier_provider: str = "azure_openai"
    azure_openai_key: Optional[str] = None
    azure_openai_endpoint: Optional[str] = None
    azure_openai_deployment: str = "gpt-4o"
    azure_openai_api_version: str = "2024-02-15-preview"
    google_ai_api_key: Optional[str] = None
    gemini_model: str = "gemini-1.5-flash"
    classifier_timeout_seconds: float = 30.0

    entry_store_backend: str = "sql"
    database_url: str = "sqlite:///medjournal.db"
    azure_storage_connection_string: Optional[str] = None
    azure_storage_container: str = "health-entries"
    store_timeout_seconds: float = 10.0

    signer_strategy: str = "message"
    wallet_rpc_url: Optional[str] = None
    wallet_private_key: Optional[str] = None
    expected_chain_id: int = SEPOLIA_CHAIN_ID
    recorder_contract_address: Optional[str] = None
    confirmation_poll_seconds: float = 2.0

    appinsights_connection_string: Optional[str] = None


def _read_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive")
    return value


def _read_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def _read_choice(name: str, default: str, choices: tuple) -> str:
    value = (os.getenv(name) or default).strip().lower()
    if value not in choices:
        raise ConfigurationError(f"{name} must be one of {choices}, got {value!r}")
    return value


def load_settings() -> Settings:
    """Build Settings from the current process environment."""
    return Settings(
        classifier_provider=_read_choice(
            "CLASSIFIER_PROVIDER", "azure_openai", CLASSIFIER_PROVIDERS
        ),
        azure_openai_key=os.getenv("AZURE_OPENAI_KEY"),
        azure_openai_endpoint=os.getenv("AZURE_OPENAI_ENDPOINT"),
        azure_openai_deployment=os.getenv("AZURE_OPENAI_DEPLOYMENT", "gpt-4o"),
        azure_openai_api_version=os.getenv(
            "AZURE_OPENAI_API_VERSION", "2024-02-15-preview"
        ),
        google_ai_api_key=os.getenv("GOOGLE_AI_API_KEY"),
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-1.5-flash"),
        classifier_timeout_seconds=_read_float("CLASSIFIER_TIMEOUT_SECONDS", 30.0),
        entry_store_backend=_read_choice("ENTRY_STORE_BACKEND", "sql", STORE_BACKENDS),
        database_url=os.getenv("DATABASE_URL", "sqlite:///medjournal.db"),
        azure_storage_connection_string=os.getenv("AZURE_STORAGE_CONNECTION_STRING"),
        azure_storage_container=os.getenv("AZURE_STORAGE_CONTAINER", "health-entries"),
        store_timeout_seconds=_read_float("STORE_TIMEOUT_SECONDS", 10.0),
        signer_strategy=_read_choice("SIGNER_STRATEGY", "message", SIGNER_STRATEGIES),
        wallet_rpc_url=os.getenv("WALLET_RPC_URL"),
        wallet_private_key=os.getenv("WALLET_PRIVATE_KEY"),
        expected_chain_id=_read_int("EXPECTED_CHAIN_ID", SEPOLIA_CHAIN_ID),
        recorder_contract_address=os.getenv("RECORDER_CONTRACT_ADDRESS"),
        confirmation_poll_seconds=_read_float("CONFIRMATION_POLL_SECONDS", 2.0),
        appinsights_connection_string=os.getenv("AZURE_APPINSIGHTS_CONNECTION_STRING"),
    )

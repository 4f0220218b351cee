"""
ticketbot/config.py
Environment-backed settings, read once at startup and passed down explicitly.
Exports: Settings, required_env, env_flag, env_positive_int
"""

import os
from dataclasses import dataclass

DEFAULT_POLL_INTERVAL_SECONDS = 60
DEFAULT_CONCURRENCY = 1
DEFAULT_CACHE_LIMIT = 1000
DEFAULT_SKIP_THRESHOLD = 5
DEFAULT_QUALIFYING_CHANNEL = "EMAIL"
DEFAULT_DB_PATH = "data/processed_tickets.db"
DEFAULT_VIEW_NAME = "Open Cases"
DEFAULT_LOG_FILE = "logs/bot.log"
DEFAULT_HTTP_TIMEOUT_SECONDS = 30
DEFAULT_LLM_TIMEOUT_SECONDS = 120
DEFAULT_AZURE_ENDPOINT_URL = "https://ticketbot-gpt.cognitiveservices.azure.com"
DEFAULT_AZURE_DEPLOYMENT_NAME = "gpt-5.1-chat"
DEFAULT_AZURE_API_VERSION = "2025-01-01-preview"

_FALSY = {"0", "false", "no", "off"}


def required_env(name: str) -> str:
    """Read a required environment variable or raise RuntimeError."""
    value = os.getenv(name, "").strip()
    if not value:
        raise RuntimeError(f"Missing required env var: {name}")
    return value


def optional_env(name: str) -> str | None:
    value = os.getenv(name, "").strip()
    return value or None


def env_flag(name: str, default: bool) -> bool:
    """Return a boolean flag; anything outside the falsy set counts as enabled."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() not in _FALSY


def env_positive_int(name: str, default: int) -> int:
    """Return a positive integer env var, raising RuntimeError on invalid input."""
    raw_value = os.getenv(name, str(default)).strip() or str(default)
    try:
        value = int(raw_value)
    except ValueError as exc:
        raise RuntimeError(f"Invalid {name}: expected a positive integer.") from exc
    if value <= 0:
        raise RuntimeError(f"Invalid {name}: expected a positive integer.")
    return value


@dataclass(frozen=True)
class Settings:
    """Process configuration. Built once by `from_env`, never mutated at runtime."""

    poll_interval_seconds: int = DEFAULT_POLL_INTERVAL_SECONDS
    concurrency: int = DEFAULT_CONCURRENCY
    cache_limit: int = DEFAULT_CACHE_LIMIT
    skip_threshold: int = DEFAULT_SKIP_THRESHOLD
    qualifying_channel: str = DEFAULT_QUALIFYING_CHANNEL
    db_path: str = DEFAULT_DB_PATH
    view_name: str = DEFAULT_VIEW_NAME
    log_level: str = "INFO"
    log_file: str = DEFAULT_LOG_FILE
    polling_enabled: bool = True
    http_timeout_seconds: int = DEFAULT_HTTP_TIMEOUT_SECONDS
    llm_timeout_seconds: int = DEFAULT_LLM_TIMEOUT_SECONDS
    org_id: str | None = None
    agent_id: str | None = None
    view_id: str | None = None
    zoho_top_level_domain: str = "com"
    azure_endpoint_url: str = DEFAULT_AZURE_ENDPOINT_URL
    azure_deployment_name: str = DEFAULT_AZURE_DEPLOYMENT_NAME
    azure_api_version: str = DEFAULT_AZURE_API_VERSION
    single_ticket_number: str | None = None
    force_update: bool = False
    env_file: str = ".env"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment (call after `load_dotenv`)."""
        return cls(
            poll_interval_seconds=env_positive_int(
                "TICKETBOT_POLL_INTERVAL_SECONDS", DEFAULT_POLL_INTERVAL_SECONDS
            ),
            concurrency=env_positive_int("TICKETBOT_CONCURRENCY", DEFAULT_CONCURRENCY),
            cache_limit=env_positive_int("TICKETBOT_CACHE_LIMIT", DEFAULT_CACHE_LIMIT),
            skip_threshold=env_positive_int("TICKETBOT_SKIP_THRESHOLD", DEFAULT_SKIP_THRESHOLD),
            qualifying_channel=(
                os.getenv("TICKETBOT_QUALIFYING_CHANNEL", DEFAULT_QUALIFYING_CHANNEL).strip().upper()
                or DEFAULT_QUALIFYING_CHANNEL
            ),
            db_path=os.getenv("DB_PATH", DEFAULT_DB_PATH).strip() or DEFAULT_DB_PATH,
            view_name=os.getenv("TICKETBOT_VIEW_NAME", DEFAULT_VIEW_NAME).strip() or DEFAULT_VIEW_NAME,
            log_level=os.getenv("TICKETBOT_LOG_LEVEL", "INFO").strip().upper() or "INFO",
            log_file=os.getenv("TICKETBOT_LOG_FILE", DEFAULT_LOG_FILE).strip(),
            polling_enabled=env_flag("TICKETBOT_POLLING_ENABLED", True),
            http_timeout_seconds=env_positive_int(
                "TICKETBOT_HTTP_TIMEOUT_SECONDS", DEFAULT_HTTP_TIMEOUT_SECONDS
            ),
            llm_timeout_seconds=env_positive_int(
                "TICKETBOT_LLM_TIMEOUT_SECONDS", DEFAULT_LLM_TIMEOUT_SECONDS
            ),
            org_id=optional_env("ZOHO_ORG_ID"),
            agent_id=optional_env("ZOHO_AGENT_ID"),
            view_id=optional_env("ZOHO_VIEW_ID"),
            zoho_top_level_domain=os.getenv("ZOHO_TOP_LEVEL_DOMAIN", "com").strip() or "com",
            azure_endpoint_url=os.getenv("AZURE_ENDPOINT_URL", DEFAULT_AZURE_ENDPOINT_URL).strip()
            or DEFAULT_AZURE_ENDPOINT_URL,
            azure_deployment_name=os.getenv(
                "AZURE_DEPLOYMENT_NAME", DEFAULT_AZURE_DEPLOYMENT_NAME
            ).strip()
            or DEFAULT_AZURE_DEPLOYMENT_NAME,
            azure_api_version=os.getenv("AZURE_API_VERSION", DEFAULT_AZURE_API_VERSION).strip()
            or DEFAULT_AZURE_API_VERSION,
            single_ticket_number=optional_env("SINGLE_TICKET_NUMBER"),
            force_update=env_flag("FORCE_UPDATE", False),
            env_file=os.getenv("TICKETBOT_ENV_FILE", ".env").strip() or ".env",
        )

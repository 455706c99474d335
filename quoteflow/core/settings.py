"""Runtime configuration loaded from environment variables.

Values are read once and cached; call :func:`reset_settings_cache` after
changing the environment (tests do this through ``monkeypatch``). A ``.env``
file in the working directory is honoured via ``python-dotenv``.
"""

from __future__ import annotations

import dataclasses
import os
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()


@dataclasses.dataclass(frozen=True)
class Settings:
    """Service-wide configuration."""

    database_url: str
    auto_create_schema: bool = True
    default_factory_id: int = 1
    default_currency: str = "DKK"
    quote_validity_period: str = "30 days"
    extraction_timeout_seconds: float = 120.0
    pricing_lookup_timeout_seconds: float = 5.0
    conflict_max_retries: int = 3
    openai_api_key: str | None = None
    openai_model: str = "gpt-4.1-mini"
    webhook_rate_limit: str = "60/minute"
    rate_limit_enabled: bool = True


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from the environment with development defaults."""

    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite+pysqlite:///./quoteflow.db"),
        auto_create_schema=_env_bool("DB_AUTO_CREATE", "true"),
        default_factory_id=int(os.getenv("DEFAULT_FACTORY_ID", "1")),
        default_currency=os.getenv("DEFAULT_CURRENCY", "DKK"),
        quote_validity_period=os.getenv("QUOTE_VALIDITY_PERIOD", "30 days"),
        extraction_timeout_seconds=float(os.getenv("EXTRACTION_TIMEOUT_SECONDS", "120")),
        pricing_lookup_timeout_seconds=float(
            os.getenv("PRICING_LOOKUP_TIMEOUT_SECONDS", "5")
        ),
        conflict_max_retries=int(os.getenv("CONFLICT_MAX_RETRIES", "3")),
        openai_api_key=os.getenv("OPENAI_API_KEY") or None,
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4.1-mini"),
        webhook_rate_limit=os.getenv("WEBHOOK_RATE_LIMIT", "60/minute"),
        rate_limit_enabled=_env_bool("RATE_LIMIT_ENABLED", "true"),
    )


def reset_settings_cache() -> None:
    """Clear cached settings; useful in tests when env vars change."""

    get_settings.cache_clear()


__all__ = ["Settings", "get_settings", "reset_settings_cache"]

"""Runtime settings loaded from the environment.

Values are read once and cached; tests that change environment variables
should call :func:`reset_settings_cache` afterwards.
"""

from __future__ import annotations

import dataclasses
import os
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()


def _to_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


@dataclasses.dataclass(frozen=True)
class Settings:
    """Process-wide configuration for the concierge service."""

    database_url: str | None = None
    embedding_backend: str = "fastembed"
    embedding_model: str = "sentence-transformers/paraphrase-multilingual-MiniLM-L12-v2"
    openai_model: str = "gpt-4o-mini"
    openai_temperature: float = 0.7
    openai_max_tokens: int = 500
    recommendation_min_score: float = 0.35
    recommendation_top_k: int = 5
    exact_search_min_score: float = 0.70
    exact_search_top_k: int = 10
    conversation_timeout_minutes: int = 30
    auto_release_interval_seconds: int = 300
    catalog_sync_interval_seconds: int = 300
    catalog_sync_batch_limit: int = 100
    history_turn_limit: int = 8
    max_instruction_chars: int = 12000
    channel_delivery_url: str | None = None
    channel_delivery_timeout: float = 10.0
    enable_background_jobs: bool = True


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from the environment with development defaults."""

    defaults = Settings()
    return Settings(
        database_url=os.getenv("DATABASE_URL"),
        embedding_backend=os.getenv("EMBEDDING_BACKEND", defaults.embedding_backend).lower(),
        embedding_model=os.getenv("EMBEDDING_MODEL", defaults.embedding_model),
        openai_model=os.getenv("OPENAI_MODEL", defaults.openai_model),
        openai_temperature=float(
            os.getenv("OPENAI_TEMPERATURE", str(defaults.openai_temperature))
        ),
        openai_max_tokens=int(os.getenv("OPENAI_MAX_TOKENS", str(defaults.openai_max_tokens))),
        recommendation_min_score=float(
            os.getenv("RECOMMENDATION_MIN_SCORE", str(defaults.recommendation_min_score))
        ),
        recommendation_top_k=int(
            os.getenv("RECOMMENDATION_TOP_K", str(defaults.recommendation_top_k))
        ),
        exact_search_min_score=float(
            os.getenv("EXACT_SEARCH_MIN_SCORE", str(defaults.exact_search_min_score))
        ),
        exact_search_top_k=int(os.getenv("EXACT_SEARCH_TOP_K", str(defaults.exact_search_top_k))),
        conversation_timeout_minutes=int(
            os.getenv("CONVERSATION_TIMEOUT_MINUTES", str(defaults.conversation_timeout_minutes))
        ),
        auto_release_interval_seconds=int(
            os.getenv(
                "AUTO_RELEASE_INTERVAL_SECONDS", str(defaults.auto_release_interval_seconds)
            )
        ),
        catalog_sync_interval_seconds=int(
            os.getenv(
                "CATALOG_SYNC_INTERVAL_SECONDS", str(defaults.catalog_sync_interval_seconds)
            )
        ),
        catalog_sync_batch_limit=int(
            os.getenv("CATALOG_SYNC_BATCH_LIMIT", str(defaults.catalog_sync_batch_limit))
        ),
        history_turn_limit=int(os.getenv("HISTORY_TURN_LIMIT", str(defaults.history_turn_limit))),
        max_instruction_chars=int(
            os.getenv("MAX_INSTRUCTION_CHARS", str(defaults.max_instruction_chars))
        ),
        channel_delivery_url=os.getenv("CHANNEL_DELIVERY_URL") or None,
        channel_delivery_timeout=float(
            os.getenv("CHANNEL_DELIVERY_TIMEOUT", str(defaults.channel_delivery_timeout))
        ),
        enable_background_jobs=_to_bool(os.getenv("ENABLE_BACKGROUND_JOBS"), default=True),
    )


def reset_settings_cache() -> None:
    """Clear cached settings; useful in tests when env vars change."""

    get_settings.cache_clear()

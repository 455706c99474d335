"""Line-item extractors for inbound email bodies."""

from __future__ import annotations

from functools import lru_cache

from ..core.settings import Settings, get_settings
from .base import ExtractionResult, LineItemDraft, LineItemExtractor, extract_line_items
from .keyword import KeywordLineItemExtractor
from .openai_extractor import OpenAILineItemExtractor


def build_extractor(settings: Settings | None = None) -> LineItemExtractor:
    """Return the OpenAI extractor when an API key is configured, else keywords."""

    settings = settings or get_settings()
    if settings.openai_api_key:
        return OpenAILineItemExtractor(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            timeout=settings.extraction_timeout_seconds,
        )
    return KeywordLineItemExtractor()


@lru_cache(maxsize=1)
def default_extractor() -> LineItemExtractor:
    """Process-wide extractor built from the current settings."""

    return build_extractor()


__all__ = [
    "ExtractionResult",
    "KeywordLineItemExtractor",
    "LineItemDraft",
    "LineItemExtractor",
    "OpenAILineItemExtractor",
    "build_extractor",
    "default_extractor",
    "extract_line_items",
]

"""Line-item extraction contract and the best-effort call wrapper."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

from ..core.timeouts import EXTRACTION_POOL, call_with_timeout

logger = logging.getLogger(__name__)


@dataclass
class LineItemDraft:
    """Product requirement pulled out of an email body, before persistence."""

    product: str | None = None
    requested_quantity: int | None = None
    trim_type: str | None = None
    rm_spec: str | None = None
    production_type: str | None = None
    packaging_type: str | None = None
    pack_material: str | None = None
    box_quantity: str | None = None
    transport_mode: str | None = None
    delivery_requirement: str | None = None
    special_instructions: str | None = None
    customer_sku_reference: str | None = None
    product_description: str | None = None
    mapping_confidence: str = "LOW"


class LineItemExtractor(Protocol):
    """Turns free email text into zero or more line-item drafts.

    Implementations may block on network calls and may raise; callers go
    through :func:`extract_line_items` which bounds and absorbs both.
    """

    def extract(self, text: str) -> list[LineItemDraft]: ...


@dataclass
class ExtractionResult:
    items: list[LineItemDraft] = field(default_factory=list)
    error: str | None = None

    @property
    def degraded(self) -> bool:
        return self.error is not None


def extract_line_items(
    extractor: LineItemExtractor, text: str | None, *, timeout: float | None
) -> ExtractionResult:
    """Run ``extractor`` on ``text`` and never raise.

    Exceptions and timeouts produce an empty, degraded result so the calling
    state transition can still complete.
    """

    if not text or not text.strip():
        return ExtractionResult()
    try:
        items = call_with_timeout(
            extractor.extract, text, timeout=timeout, pool=EXTRACTION_POOL
        )
    except Exception as exc:
        logger.warning(
            "Line-item extraction failed with %s: %s", type(exc).__name__, exc
        )
        return ExtractionResult(error=f"{type(exc).__name__}: {exc}")
    return ExtractionResult(items=list(items or []))


__all__ = ["ExtractionResult", "LineItemDraft", "LineItemExtractor", "extract_line_items"]

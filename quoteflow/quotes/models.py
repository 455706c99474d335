"""Quote statuses and caller-supplied line overrides."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum


class QuoteStatus(str, Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


# Allowed forward moves; everything else is rejected.
QUOTE_TRANSITIONS: dict[QuoteStatus, frozenset[QuoteStatus]] = {
    QuoteStatus.DRAFT: frozenset({QuoteStatus.SENT}),
    QuoteStatus.SENT: frozenset({QuoteStatus.ACCEPTED, QuoteStatus.REJECTED}),
    QuoteStatus.ACCEPTED: frozenset(),
    QuoteStatus.REJECTED: frozenset(),
}


@dataclass
class QuoteItemOverride:
    """Manually priced line replacing the engine for the item at the same index.

    ``quantity`` and ``total_cost`` are used as given. The descriptive fields
    are only recorded in the quote line's notes.
    """

    quantity: int
    total_cost: float
    currency: str | None = None
    product: str | None = None
    trim_type: str | None = None
    rm_spec: str | None = None
    production_type: str | None = None
    packaging_type: str | None = None
    transport_mode: str | None = None
    special_instructions: str | None = None
    description: str | None = None

    def descriptive_fields(self) -> dict[str, str]:
        fields = asdict(self)
        for key in ("quantity", "total_cost", "currency"):
            fields.pop(key)
        return {key: value for key, value in fields.items() if value}


__all__ = ["QUOTE_TRANSITIONS", "QuoteItemOverride", "QuoteStatus"]

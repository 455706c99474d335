"""Per-item price composition.

A unit price is the sum of seven independent charge components looked up in
a :class:`~quoteflow.pricing.catalog.RateCatalog`. A component whose rate is
absent, whose lookup raised, or whose lookup overran the timeout counts as
0.0 and is listed in ``missing_components``. Freezing applies to frozen
products only and filleting to fillet trims only; skipped components are not
reported as missing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

from ..core.timeouts import RATE_LOOKUP_POOL, call_with_timeout
from .catalog import RateCatalog

logger = logging.getLogger(__name__)

FREEZING_RATE = "Freezing Rate"
FILLETING_RATE = "Filleting Rate"
PALLET_CHARGE = "Pallet Charge"
TERMINAL_CHARGE = "Terminal Charge"
HANDLING_CHARGE = "Skagerrak Handling"

GYRO_FREEZING = "Gyro Freezing"
TUNNEL_FREEZING = "Tunnel Freezing"

COMPONENTS = (
    "processing",
    "packaging",
    "freezing",
    "filleting",
    "pallet",
    "terminal",
    "handling",
)


class PriceableItem(Protocol):
    product: str | None
    trim_type: str | None
    rm_spec: str | None
    production_type: str | None
    packaging_type: str | None
    transport_mode: str | None
    special_instructions: str | None
    requested_quantity: int | None


@dataclass
class PriceBreakdown:
    processing: float = 0.0
    packaging: float = 0.0
    freezing: float = 0.0
    filleting: float = 0.0
    pallet: float = 0.0
    terminal: float = 0.0
    handling: float = 0.0
    unit_price: float = 0.0
    quantity: int = 1
    total_price: float = 0.0
    currency: str | None = None
    freezing_method: str | None = None
    missing_components: list[str] = field(default_factory=list)

    @property
    def components(self) -> dict[str, float]:
        return {name: getattr(self, name) for name in COMPONENTS}


def freezing_method(special_instructions: str | None) -> str:
    """Gyro when the instructions mention it, tunnel otherwise."""

    text = (special_instructions or "").lower()
    if "gyro" in text:
        return GYRO_FREEZING
    return TUNNEL_FREEZING


def is_frozen(item: PriceableItem) -> bool:
    return (item.production_type or "").strip().lower() == "frozen"


def is_filleted(item: PriceableItem) -> bool:
    return "fillet" in (item.trim_type or "").lower()


class PricingEngine:
    """Compose a :class:`PriceBreakdown` for a line item. Performs no writes."""

    def __init__(self, catalog: RateCatalog, *, lookup_timeout: float | None = None) -> None:
        self._catalog = catalog
        self._lookup_timeout = lookup_timeout

    @property
    def currency(self) -> str | None:
        return self._catalog.currency

    def price(self, item: PriceableItem, factory_id: int) -> PriceBreakdown:
        breakdown = PriceBreakdown(currency=self._catalog.currency)
        catalog = self._catalog

        breakdown.processing = self._component(
            breakdown, "processing", catalog.filing_rate,
            item.product, item.trim_type, item.rm_spec,
        )
        breakdown.packaging = self._component(
            breakdown, "packaging", catalog.packaging_rate,
            item.production_type, item.product, item.packaging_type, item.transport_mode,
        )
        if is_frozen(item):
            method = freezing_method(item.special_instructions)
            breakdown.freezing_method = method
            breakdown.freezing = self._component(
                breakdown, "freezing", catalog.lookup_rate,
                factory_id, FREEZING_RATE, "Frozen", item.product, method,
            )
        if is_filleted(item):
            breakdown.filleting = self._component(
                breakdown, "filleting", catalog.lookup_rate,
                factory_id, FILLETING_RATE, item.production_type, item.product, "Fillet",
            )
        for name, kind in (
            ("pallet", PALLET_CHARGE),
            ("terminal", TERMINAL_CHARGE),
            ("handling", HANDLING_CHARGE),
        ):
            value = self._component(
                breakdown, name, catalog.lookup_rate,
                factory_id, kind, item.production_type, item.product, "",
            )
            setattr(breakdown, name, value)

        breakdown.unit_price = sum(breakdown.components.values())
        breakdown.quantity = item.requested_quantity if item.requested_quantity is not None else 1
        breakdown.total_price = breakdown.unit_price * breakdown.quantity
        return breakdown

    def _component(self, breakdown: PriceBreakdown, name: str, lookup, *args) -> float:
        try:
            value = call_with_timeout(
                lookup, *args, timeout=self._lookup_timeout, pool=RATE_LOOKUP_POOL
            )
        except Exception as exc:
            logger.warning("Rate lookup for %s failed: %s", name, exc)
            value = None
        if value is None:
            breakdown.missing_components.append(name)
            return 0.0
        return float(value)


__all__ = [
    "COMPONENTS",
    "PriceBreakdown",
    "PricingEngine",
    "freezing_method",
    "is_filleted",
    "is_frozen",
]

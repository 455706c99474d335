"""Rate catalog and pricing engine."""

from .catalog import InMemoryRateCatalog, RateCatalog, SqlRateCatalog
from .engine import PriceBreakdown, PricingEngine

__all__ = [
    "InMemoryRateCatalog",
    "PriceBreakdown",
    "PricingEngine",
    "RateCatalog",
    "SqlRateCatalog",
]

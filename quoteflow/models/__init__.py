"""SQLAlchemy declarative base and the quoteflow ORM models.

A single declarative ``Base`` is shared by every table. Sales entities
(customers, conversations, quotes, the inbound email log) live in
:mod:`quoteflow.models.sales`; the pricing rate tables live in
:mod:`quoteflow.models.rates`.
"""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy declarative models."""


# Re-export models so callers can write ``from quoteflow.models import Quote``.
from .rates import ChargeRate, FilingRate, PackagingRate
from .sales import (
    Conversation,
    ConversationItem,
    Customer,
    InboundEmailRecord,
    Quote,
    QuoteItem,
)


__all__ = [
    "Base",
    "ChargeRate",
    "Conversation",
    "ConversationItem",
    "Customer",
    "FilingRate",
    "InboundEmailRecord",
    "PackagingRate",
    "Quote",
    "QuoteItem",
]

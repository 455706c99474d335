"""Quote assembly from priced conversation items."""

from . import schemas
from .models import QuoteItemOverride, QuoteStatus
from .repository import InMemoryQuoteRepository, QuoteRepository, SqlQuoteRepository
from .service import QuoteService

__all__ = [
    "InMemoryQuoteRepository",
    "QuoteItemOverride",
    "QuoteRepository",
    "QuoteService",
    "QuoteStatus",
    "SqlQuoteRepository",
    "schemas",
]

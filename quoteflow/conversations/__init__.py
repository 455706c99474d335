"""Inbound email threading, classification and conversation state."""

from . import schemas
from .models import InboundEmail, ProcessingOutcome, ProcessingResult
from .repository import (
    ConversationRepository,
    InMemoryConversationRepository,
    SqlConversationRepository,
)
from .service import ConversationService
from .stages import EmailType, Stage
from .state import ConversationStatus

__all__ = [
    "ConversationRepository",
    "ConversationService",
    "ConversationStatus",
    "EmailType",
    "InMemoryConversationRepository",
    "InboundEmail",
    "ProcessingOutcome",
    "ProcessingResult",
    "SqlConversationRepository",
    "Stage",
    "schemas",
]

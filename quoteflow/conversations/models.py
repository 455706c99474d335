"""Domain models used by the conversation service."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from ..models import Conversation
from .stages import EmailType, Stage


@dataclass
class InboundEmail:
    """Uniform representation of an email delivered by the forwarding webhook."""

    sender: str
    subject: str | None = None
    body: str | None = None
    recipient: str | None = None
    message_id: str | None = None
    provider_thread_id: str | None = None
    conversation_id: str | None = None
    in_reply_to: str | None = None
    received_at: datetime | None = None


class ProcessingOutcome(str, Enum):
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    APPENDED = "APPENDED"
    ORPHANED = "ORPHANED"
    DUPLICATE = "DUPLICATE"


@dataclass
class ProcessingResult:
    """What happened to one inbound email."""

    thread_key: str
    email_type: EmailType
    stage: Stage
    outcome: ProcessingOutcome
    suggested_action: str
    conversation: Conversation | None = None
    items_extracted: int = 0
    extraction_degraded: bool = False
    quote_reference: str | None = None
    order_reference: str | None = None

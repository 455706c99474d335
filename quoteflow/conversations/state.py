"""Conversation status rules.

Stages map to status changes through :data:`STAGE_TRANSITIONS`. Every change
goes through :func:`can_transition`, which keeps statuses monotonic:
CONVERTED and CANCELLED are final and QUOTED never falls back to RECEIVED or
PROCESSING. A blocked change leaves the status alone and adds a history line
saying so.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from enum import Enum

from ..errors import InvalidInputError
from ..models import Conversation
from .stages import Stage


class ConversationStatus(str, Enum):
    RECEIVED = "RECEIVED"
    PROCESSING = "PROCESSING"
    QUOTED = "QUOTED"
    CONVERTED = "CONVERTED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES = frozenset({ConversationStatus.CONVERTED, ConversationStatus.CANCELLED})

_RANK = {
    ConversationStatus.RECEIVED: 0,
    ConversationStatus.PROCESSING: 0,
    ConversationStatus.QUOTED: 1,
    ConversationStatus.CONVERTED: 2,
    ConversationStatus.CANCELLED: 2,
}


@dataclass(frozen=True)
class StageTransition:
    """History label and optional target status for a classified stage."""

    label: str
    target: ConversationStatus | None = None


STAGE_TRANSITIONS: dict[Stage, StageTransition] = {
    Stage.ORDER_PLACEMENT: StageTransition("ORDER CONFIRMED", ConversationStatus.CONVERTED),
    Stage.ORDER_CONFIRMED: StageTransition("ORDER CONFIRMED", ConversationStatus.CONVERTED),
    Stage.QUOTE_SENT: StageTransition("QUOTE SENT", ConversationStatus.QUOTED),
    Stage.FOLLOW_UP: StageTransition("FOLLOW-UP"),
    Stage.ENQUIRY_CLOSED: StageTransition("ENQUIRY CLOSED", ConversationStatus.CANCELLED),
}


@dataclass(frozen=True)
class TransitionOutcome:
    previous: ConversationStatus
    current: ConversationStatus
    blocked: bool = False

    @property
    def changed(self) -> bool:
        return self.previous != self.current


def parse_status(value: str) -> ConversationStatus:
    """Parse user-supplied status text, case-insensitively."""

    try:
        return ConversationStatus(value.strip().upper())
    except ValueError as exc:
        allowed = ", ".join(status.value for status in ConversationStatus)
        raise InvalidInputError(
            f"Unknown conversation status '{value}'. Expected one of: {allowed}"
        ) from exc


def is_terminal(status: ConversationStatus | str) -> bool:
    return ConversationStatus(status) in TERMINAL_STATUSES


def can_transition(current: ConversationStatus, target: ConversationStatus) -> bool:
    """Return ``True`` when moving from ``current`` to ``target`` is allowed."""

    if current == target:
        return True
    if current in TERMINAL_STATUSES:
        return False
    return _RANK[target] >= _RANK[current]


def transition_for(stage: Stage) -> StageTransition:
    return STAGE_TRANSITIONS.get(stage, StageTransition(f"EMAIL ({stage.value})"))


def history_line(at: dt.datetime, label: str, subject: str | None) -> str:
    return f"[{at.isoformat(timespec='seconds')}] {label}: {subject or ''}"


def append_history(conversation: Conversation, line: str) -> None:
    notes = conversation.processing_notes or ""
    conversation.processing_notes = f"{notes}\n{line}" if notes else line


def _move(
    conversation: Conversation, target: ConversationStatus, at: dt.datetime
) -> TransitionOutcome:
    current = ConversationStatus(conversation.status)
    if can_transition(current, target):
        conversation.status = target.value
        return TransitionOutcome(current, target)
    append_history(
        conversation,
        history_line(
            at,
            "STATUS UNCHANGED",
            f"{current.value} cannot move to {target.value}",
        ),
    )
    return TransitionOutcome(current, current, blocked=True)


def apply_stage(
    conversation: Conversation,
    stage: Stage,
    subject: str | None,
    at: dt.datetime,
) -> TransitionOutcome:
    """Record ``stage`` on an existing conversation and move its status."""

    transition = transition_for(stage)
    append_history(conversation, history_line(at, transition.label, subject))
    if transition.target is None:
        current = ConversationStatus(conversation.status)
        return TransitionOutcome(current, current)
    return _move(conversation, transition.target, at)


def mark_quoted(
    conversation: Conversation, quote_number: str, at: dt.datetime
) -> TransitionOutcome:
    """Note a generated quote and move the conversation to QUOTED when allowed."""

    append_history(conversation, history_line(at, "QUOTE GENERATED", quote_number))
    return _move(conversation, ConversationStatus.QUOTED, at)


def set_status(
    conversation: Conversation, target: ConversationStatus, at: dt.datetime
) -> TransitionOutcome:
    """Apply a manual status change, refusing moves the guard forbids."""

    current = ConversationStatus(conversation.status)
    if not can_transition(current, target):
        raise InvalidInputError(
            f"Conversation {conversation.external_id} cannot move from "
            f"{current.value} to {target.value}"
        )
    if current != target:
        conversation.status = target.value
        append_history(
            conversation,
            history_line(at, "STATUS UPDATED", f"{current.value} -> {target.value}"),
        )
    return TransitionOutcome(current, target)


__all__ = [
    "STAGE_TRANSITIONS",
    "TERMINAL_STATUSES",
    "ConversationStatus",
    "StageTransition",
    "TransitionOutcome",
    "append_history",
    "apply_stage",
    "can_transition",
    "history_line",
    "is_terminal",
    "mark_quoted",
    "parse_status",
    "set_status",
    "transition_for",
]

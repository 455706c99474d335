"""Persistence for conversations and the inbound email log."""

from __future__ import annotations

import datetime as dt
import threading
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from typing import Protocol

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConcurrentUpdateConflict, DuplicateThreadKeyError
from ..models import Conversation, InboundEmailRecord
from .models import ProcessingOutcome
from .state import TERMINAL_STATUSES, ConversationStatus

_TERMINAL_VALUES = tuple(status.value for status in TERMINAL_STATUSES)
_APPLIED_OUTCOMES = tuple(
    outcome.value
    for outcome in (
        ProcessingOutcome.CREATED,
        ProcessingOutcome.UPDATED,
        ProcessingOutcome.APPENDED,
    )
)


class ConversationRepository(Protocol):
    """Abstraction for persisting conversations.

    ``thread_lock`` serialises work on one thread key: callers read, mutate and
    save a conversation while holding it.
    """

    def thread_lock(self, thread_key: str) -> AbstractContextManager[None]: ...

    def find_active_by_thread_key(self, thread_key: str) -> Conversation | None: ...

    def find_latest_by_thread_key(self, thread_key: str) -> Conversation | None: ...

    def has_conversation(self, thread_key: str, *, live: bool = False) -> bool: ...

    def find_applied_message(
        self, thread_key: str, message_key: str
    ) -> InboundEmailRecord | None: ...

    def get_by_external_id(
        self, external_id: str, *, for_update: bool = False
    ) -> Conversation | None: ...

    def add(self, conversation: Conversation) -> Conversation: ...

    def save(self, conversation: Conversation) -> Conversation: ...

    def record_inbound_email(self, record: InboundEmailRecord) -> None: ...

    def list_conversations(
        self,
        *,
        status: ConversationStatus | None = None,
        since: dt.datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Conversation]: ...

    def count_by_status(self) -> dict[str, int]: ...

    def list_inbound_emails(
        self, *, outcome: str | None = None, limit: int = 50
    ) -> list[InboundEmailRecord]: ...

    def count_inbound_emails(self, *, outcome: str | None = None) -> int: ...


def _is_live(conversation: Conversation) -> bool:
    return conversation.status not in _TERMINAL_VALUES


def _as_utc(value: dt.datetime | None) -> dt.datetime:
    if value is None:
        return dt.datetime.min.replace(tzinfo=dt.timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value


class InMemoryConversationRepository:
    """Thread-safe dictionary-backed repository for tests.

    Conversations are stored as detached ORM instances. Versions are tracked
    separately so a save against an out-of-date copy is rejected the same way
    the SQL repository rejects it.
    """

    def __init__(self) -> None:
        self._conversations: dict[str, Conversation] = {}
        self._versions: dict[str, int] = {}
        self._inbound: list[InboundEmailRecord] = []
        self._thread_locks: dict[str, threading.Lock] = {}
        self._lock = threading.RLock()
        self._next_id = 1
        self._next_item_id = 1
        self._next_inbound_id = 1

    @contextmanager
    def thread_lock(self, thread_key: str) -> Iterator[None]:
        with self._lock:
            lock = self._thread_locks.setdefault(thread_key, threading.Lock())
        with lock:
            yield

    def find_active_by_thread_key(self, thread_key: str) -> Conversation | None:
        with self._lock:
            for conversation in self._conversations.values():
                if conversation.thread_key == thread_key and _is_live(conversation):
                    return conversation
        return None

    def find_latest_by_thread_key(self, thread_key: str) -> Conversation | None:
        with self._lock:
            matches = [c for c in self._conversations.values() if c.thread_key == thread_key]
        if not matches:
            return None
        return max(matches, key=lambda c: (_as_utc(c.received_at), c.id))

    def has_conversation(self, thread_key: str, *, live: bool = False) -> bool:
        with self._lock:
            return any(
                c.thread_key == thread_key and (not live or _is_live(c))
                for c in self._conversations.values()
            )

    def find_applied_message(
        self, thread_key: str, message_key: str
    ) -> InboundEmailRecord | None:
        with self._lock:
            for record in self._inbound:
                if (
                    record.thread_key == thread_key
                    and record.message_key == message_key
                    and record.outcome in _APPLIED_OUTCOMES
                ):
                    return record
        return None

    def get_by_external_id(
        self, external_id: str, *, for_update: bool = False
    ) -> Conversation | None:
        with self._lock:
            return self._conversations.get(external_id)

    def add(self, conversation: Conversation) -> Conversation:
        with self._lock:
            if self.find_active_by_thread_key(conversation.thread_key) is not None:
                raise DuplicateThreadKeyError(conversation.thread_key)
            conversation.id = self._next_id
            self._next_id += 1
            conversation.version = 1
            self._assign_item_ids(conversation)
            self._conversations[conversation.external_id] = conversation
            self._versions[conversation.external_id] = 1
        return conversation

    def save(self, conversation: Conversation) -> Conversation:
        with self._lock:
            stored_version = self._versions.get(conversation.external_id)
            if stored_version is None or stored_version != conversation.version:
                raise ConcurrentUpdateConflict(
                    f"Conversation {conversation.external_id} was modified concurrently"
                )
            conversation.version = stored_version + 1
            self._versions[conversation.external_id] = conversation.version
            self._assign_item_ids(conversation)
            self._conversations[conversation.external_id] = conversation
        return conversation

    def record_inbound_email(self, record: InboundEmailRecord) -> None:
        with self._lock:
            record.id = self._next_inbound_id
            self._next_inbound_id += 1
            self._inbound.append(record)

    def list_conversations(self, *, status=None, since=None, limit=50, offset=0):
        with self._lock:
            rows = list(self._conversations.values())
        if status is not None:
            rows = [c for c in rows if c.status == ConversationStatus(status).value]
        if since is not None:
            rows = [c for c in rows if _as_utc(c.received_at) >= _as_utc(since)]
        rows.sort(key=lambda c: (_as_utc(c.received_at), c.id), reverse=True)
        return rows[offset : offset + limit]

    def count_by_status(self) -> dict[str, int]:
        counts = {status.value: 0 for status in ConversationStatus}
        with self._lock:
            for conversation in self._conversations.values():
                counts[conversation.status] = counts.get(conversation.status, 0) + 1
        return counts

    def list_inbound_emails(self, *, outcome=None, limit=50):
        with self._lock:
            rows = [r for r in self._inbound if outcome is None or r.outcome == outcome]
        return list(reversed(rows))[:limit]

    def count_inbound_emails(self, *, outcome=None) -> int:
        with self._lock:
            return sum(1 for r in self._inbound if outcome is None or r.outcome == outcome)

    def _assign_item_ids(self, conversation: Conversation) -> None:
        for item in conversation.items:
            if item.id is None:
                item.id = self._next_item_id
                self._next_item_id += 1


class SqlConversationRepository:
    """SQLAlchemy implementation of :class:`ConversationRepository`.

    On PostgreSQL, ``thread_lock`` takes a transaction-scoped advisory lock
    keyed by the thread key and live conversations are read ``FOR UPDATE``.
    SQLite serialises writers on its own, so the lock is a no-op there.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    @contextmanager
    def thread_lock(self, thread_key: str) -> Iterator[None]:
        if self._session.get_bind().dialect.name == "postgresql":
            self._session.execute(select(func.pg_advisory_xact_lock(func.hashtext(thread_key))))
        yield

    def find_active_by_thread_key(self, thread_key: str) -> Conversation | None:
        stmt = (
            select(Conversation)
            .where(Conversation.thread_key == thread_key)
            .where(Conversation.status.not_in(_TERMINAL_VALUES))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self._session.scalars(stmt).first()

    def find_latest_by_thread_key(self, thread_key: str) -> Conversation | None:
        stmt = (
            select(Conversation)
            .where(Conversation.thread_key == thread_key)
            .order_by(Conversation.received_at.desc(), Conversation.id.desc())
            .limit(1)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self._session.scalars(stmt).first()

    def has_conversation(self, thread_key: str, *, live: bool = False) -> bool:
        stmt = select(Conversation.id).where(Conversation.thread_key == thread_key)
        if live:
            stmt = stmt.where(Conversation.status.not_in(_TERMINAL_VALUES))
        stmt = stmt.limit(1)
        return self._session.scalar(stmt) is not None

    def find_applied_message(
        self, thread_key: str, message_key: str
    ) -> InboundEmailRecord | None:
        stmt = (
            select(InboundEmailRecord)
            .where(InboundEmailRecord.thread_key == thread_key)
            .where(InboundEmailRecord.message_key == message_key)
            .where(InboundEmailRecord.outcome.in_(_APPLIED_OUTCOMES))
            .order_by(InboundEmailRecord.id)
            .limit(1)
        )
        return self._session.scalars(stmt).first()

    def get_by_external_id(
        self, external_id: str, *, for_update: bool = False
    ) -> Conversation | None:
        stmt = select(Conversation).where(Conversation.external_id == external_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self._session.scalars(stmt).first()

    def add(self, conversation: Conversation) -> Conversation:
        try:
            with self._session.begin_nested():
                self._session.add(conversation)
        except IntegrityError as exc:
            raise DuplicateThreadKeyError(conversation.thread_key) from exc
        return conversation

    def save(self, conversation: Conversation) -> Conversation:
        try:
            self._session.add(conversation)
            self._session.flush()
        except StaleDataError as exc:
            self._session.rollback()
            raise ConcurrentUpdateConflict(
                f"Conversation {conversation.external_id} was modified concurrently"
            ) from exc
        return conversation

    def record_inbound_email(self, record: InboundEmailRecord) -> None:
        self._session.add(record)
        self._session.flush()

    def list_conversations(self, *, status=None, since=None, limit=50, offset=0):
        stmt = select(Conversation)
        if status is not None:
            stmt = stmt.where(Conversation.status == ConversationStatus(status).value)
        if since is not None:
            stmt = stmt.where(Conversation.received_at >= since)
        stmt = (
            stmt.order_by(Conversation.received_at.desc(), Conversation.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(self._session.scalars(stmt))

    def count_by_status(self) -> dict[str, int]:
        counts = {status.value: 0 for status in ConversationStatus}
        stmt = select(Conversation.status, func.count()).group_by(Conversation.status)
        for status, count in self._session.execute(stmt):
            counts[status] = count
        return counts

    def list_inbound_emails(self, *, outcome=None, limit=50):
        stmt = select(InboundEmailRecord)
        if outcome is not None:
            stmt = stmt.where(InboundEmailRecord.outcome == outcome)
        stmt = stmt.order_by(InboundEmailRecord.id.desc()).limit(limit)
        return list(self._session.scalars(stmt))

    def count_inbound_emails(self, *, outcome=None) -> int:
        stmt = select(func.count()).select_from(InboundEmailRecord)
        if outcome is not None:
            stmt = stmt.where(InboundEmailRecord.outcome == outcome)
        return int(self._session.scalar(stmt) or 0)


__all__ = [
    "ConversationRepository",
    "InMemoryConversationRepository",
    "SqlConversationRepository",
]

"""Persistence for quotes."""

from __future__ import annotations

import threading
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import ConcurrentUpdateConflict
from ..models import Quote


class QuoteRepository(Protocol):
    def add(self, quote: Quote) -> Quote: ...

    def save(self, quote: Quote) -> Quote: ...

    def get_by_number(self, quote_number: str, *, for_update: bool = False) -> Quote | None: ...

    def list_quotes(
        self,
        *,
        status: str | None = None,
        conversation_external_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Quote]: ...


class InMemoryQuoteRepository:
    def __init__(self) -> None:
        self._quotes: dict[str, Quote] = {}
        self._lock = threading.Lock()
        self._next_id = 1
        self._next_item_id = 1

    def add(self, quote: Quote) -> Quote:
        with self._lock:
            if quote.quote_number in self._quotes:
                raise ConcurrentUpdateConflict(f"Quote number {quote.quote_number} already used")
            quote.id = self._next_id
            self._next_id += 1
            for item in quote.items:
                item.id = self._next_item_id
                item.quote_id = quote.id
                self._next_item_id += 1
            self._quotes[quote.quote_number] = quote
        return quote

    def save(self, quote: Quote) -> Quote:
        with self._lock:
            self._quotes[quote.quote_number] = quote
        return quote

    def get_by_number(self, quote_number: str, *, for_update: bool = False) -> Quote | None:
        return self._quotes.get(quote_number)

    def list_quotes(self, *, status=None, conversation_external_id=None, limit=50, offset=0):
        with self._lock:
            rows = list(self._quotes.values())
        if status is not None:
            rows = [q for q in rows if q.status == status]
        if conversation_external_id is not None:
            rows = [q for q in rows if q.conversation_external_id == conversation_external_id]
        rows.sort(key=lambda q: q.id, reverse=True)
        return rows[offset : offset + limit]


class SqlQuoteRepository:
    """SQLAlchemy implementation of :class:`QuoteRepository`."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def add(self, quote: Quote) -> Quote:
        try:
            with self._session.begin_nested():
                self._session.add(quote)
        except IntegrityError as exc:
            raise ConcurrentUpdateConflict(
                f"Quote number {quote.quote_number} already used"
            ) from exc
        return quote

    def save(self, quote: Quote) -> Quote:
        self._session.add(quote)
        self._session.flush()
        return quote

    def get_by_number(self, quote_number: str, *, for_update: bool = False) -> Quote | None:
        stmt = select(Quote).where(Quote.quote_number == quote_number)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self._session.scalars(stmt).first()

    def list_quotes(self, *, status=None, conversation_external_id=None, limit=50, offset=0):
        stmt = select(Quote)
        if status is not None:
            stmt = stmt.where(Quote.status == status)
        if conversation_external_id is not None:
            stmt = stmt.where(Quote.conversation_external_id == conversation_external_id)
        stmt = stmt.order_by(Quote.created_at.desc(), Quote.id.desc()).limit(limit).offset(offset)
        return list(self._session.scalars(stmt))


__all__ = ["InMemoryQuoteRepository", "QuoteRepository", "SqlQuoteRepository"]

"""Quote generation and lifecycle routes."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import APIRouter, HTTPException

from ..conversations.repository import SqlConversationRepository
from ..core.settings import get_settings
from ..errors import ConcurrentUpdateConflict, InvalidInputError, NotFoundError
from ..models.session import get_default_sessionmaker
from ..pricing import PricingEngine, SqlRateCatalog
from ..quotes import schemas as quote_schemas
from ..quotes.repository import SqlQuoteRepository
from ..quotes.service import QuoteService

router = APIRouter(prefix="/api/quotes", tags=["quotes"])


@contextmanager
def _service_context() -> Iterator[QuoteService]:
    settings = get_settings()
    factory = get_default_sessionmaker()
    session = factory()
    pricing = PricingEngine(
        SqlRateCatalog(factory, currency=settings.default_currency),
        lookup_timeout=settings.pricing_lookup_timeout_seconds,
    )
    service = QuoteService(
        SqlQuoteRepository(session), SqlConversationRepository(session), pricing
    )
    try:
        yield service
        session.commit()
    except NotFoundError as exc:
        session.rollback()
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidInputError as exc:
        session.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ConcurrentUpdateConflict as exc:
        session.rollback()
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@router.post("/generate", response_model=quote_schemas.QuoteOut)
def generate_quote(payload: quote_schemas.GenerateQuoteRequest) -> quote_schemas.QuoteOut:
    """Price a conversation's items and store the result as a DRAFT quote."""

    with _service_context() as quotes:
        quote = quotes.generate_quote(payload.conversation_id, payload.to_overrides())
        return quote_schemas.QuoteOut.model_validate(quote)


@router.get("", response_model=list[quote_schemas.QuoteOut])
def list_quotes(
    status: str | None = None,
    conversation_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[quote_schemas.QuoteOut]:
    with _service_context() as quotes:
        rows = quotes.list_quotes(
            status=status,
            conversation_external_id=conversation_id,
            limit=limit,
            offset=offset,
        )
        return [quote_schemas.QuoteOut.model_validate(row) for row in rows]


@router.get("/{quote_number}", response_model=quote_schemas.QuoteOut)
def get_quote(quote_number: str) -> quote_schemas.QuoteOut:
    with _service_context() as quotes:
        return quote_schemas.QuoteOut.model_validate(quotes.get_quote(quote_number))


@router.put("/{quote_number}/send", response_model=quote_schemas.QuoteOut)
def send_quote(quote_number: str) -> quote_schemas.QuoteOut:
    with _service_context() as quotes:
        return quote_schemas.QuoteOut.model_validate(quotes.send_quote(quote_number))


@router.put("/{quote_number}/accept", response_model=quote_schemas.QuoteOut)
def accept_quote(quote_number: str) -> quote_schemas.QuoteOut:
    with _service_context() as quotes:
        return quote_schemas.QuoteOut.model_validate(quotes.accept_quote(quote_number))


@router.put("/{quote_number}/reject", response_model=quote_schemas.QuoteOut)
def reject_quote(quote_number: str) -> quote_schemas.QuoteOut:
    with _service_context() as quotes:
        return quote_schemas.QuoteOut.model_validate(quotes.reject_quote(quote_number))

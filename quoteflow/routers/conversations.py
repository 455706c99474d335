"""Conversation query and management routes."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import APIRouter, HTTPException

from ..conversations import schemas as convo_schemas
from ..conversations.repository import SqlConversationRepository
from ..conversations.service import ConversationService
from ..customers import CustomerService, SqlCustomerRepository
from ..errors import ConcurrentUpdateConflict, InvalidInputError, NotFoundError
from ..extraction import default_extractor
from ..models.session import get_default_sessionmaker

router = APIRouter(prefix="/api/conversations", tags=["conversations"])


@contextmanager
def _service_context() -> Iterator[ConversationService]:
    session = get_default_sessionmaker()()
    service = ConversationService(
        SqlConversationRepository(session),
        CustomerService(SqlCustomerRepository(session)),
        default_extractor(),
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


def _summaries(rows) -> list[convo_schemas.ConversationSummary]:
    return [convo_schemas.ConversationSummary.model_validate(row) for row in rows]


@router.get("", response_model=list[convo_schemas.ConversationSummary])
def list_conversations(
    limit: int = 50, offset: int = 0
) -> list[convo_schemas.ConversationSummary]:
    with _service_context() as conversations:
        return _summaries(conversations.list_conversations(limit=limit, offset=offset))


@router.get("/status/{status}", response_model=list[convo_schemas.ConversationSummary])
def conversations_by_status(
    status: str, limit: int = 50, offset: int = 0
) -> list[convo_schemas.ConversationSummary]:
    with _service_context() as conversations:
        rows = conversations.list_conversations(status=status, limit=limit, offset=offset)
        return _summaries(rows)


@router.get("/recent", response_model=list[convo_schemas.ConversationSummary])
def recent_conversations(
    days: int = 7, limit: int = 50
) -> list[convo_schemas.ConversationSummary]:
    """Conversations received in the last ``days`` days, newest first."""

    with _service_context() as conversations:
        return _summaries(conversations.recent_conversations(days=days, limit=limit))


@router.get("/orphans", response_model=list[convo_schemas.InboundEmailRecordOut])
def orphaned_emails(limit: int = 50) -> list[convo_schemas.InboundEmailRecordOut]:
    """Inbound emails that matched no conversation and need manual review."""

    with _service_context() as conversations:
        return [
            convo_schemas.InboundEmailRecordOut.model_validate(row)
            for row in conversations.list_orphans(limit=limit)
        ]


@router.get("/dashboard/stats", response_model=convo_schemas.DashboardStats)
def dashboard_stats() -> convo_schemas.DashboardStats:
    with _service_context() as conversations:
        return convo_schemas.DashboardStats.from_stats(conversations.dashboard_stats())


@router.get("/{external_id}", response_model=convo_schemas.ConversationDetail)
def get_conversation(external_id: str) -> convo_schemas.ConversationDetail:
    with _service_context() as conversations:
        return convo_schemas.ConversationDetail.model_validate(
            conversations.get_conversation(external_id)
        )


@router.put("/{external_id}/status", response_model=convo_schemas.ConversationDetail)
def update_status(
    external_id: str, payload: convo_schemas.StatusUpdateRequest
) -> convo_schemas.ConversationDetail:
    with _service_context() as conversations:
        return convo_schemas.ConversationDetail.model_validate(
            conversations.update_status(external_id, payload.status)
        )

"""Inbound email webhook used by the mail forwarding service."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import APIRouter, HTTPException, Request

from ..conversations import schemas as convo_schemas
from ..conversations.repository import SqlConversationRepository
from ..conversations.service import ConversationService
from ..core.rate_limit import limiter, webhook_rate_limit
from ..customers import CustomerService, SqlCustomerRepository
from ..errors import ConcurrentUpdateConflict, InvalidInputError
from ..extraction import default_extractor
from ..models.session import get_default_sessionmaker

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])


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
    except InvalidInputError as exc:
        session.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ConcurrentUpdateConflict as exc:
        session.rollback()
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except HTTPException:
        session.rollback()
        raise
    except Exception as exc:
        session.rollback()
        logger.exception("Inbound email processing failed")
        raise HTTPException(status_code=500, detail="Failed to process email") from exc
    finally:
        session.close()


@router.post("/api/webhooks/email", response_model=convo_schemas.WebhookResponse)
@limiter.limit(webhook_rate_limit)
def receive_email(
    request: Request, payload: convo_schemas.InboundEmailPayload
) -> convo_schemas.WebhookResponse:
    """Classify a forwarded email and apply it to its conversation."""

    with _service_context() as conversations:
        result = conversations.process_inbound_email(payload.to_inbound_email())
        conversation = result.conversation
        return convo_schemas.WebhookResponse(
            outcome=result.outcome.value,
            email_type=result.email_type.value,
            stage=result.stage.value,
            thread_key=result.thread_key,
            suggested_action=result.suggested_action,
            conversation_id=conversation.external_id if conversation else None,
            status=conversation.status if conversation else None,
            items_extracted=result.items_extracted,
            extraction_degraded=result.extraction_degraded,
            quote_reference=result.quote_reference,
            order_reference=result.order_reference,
        )

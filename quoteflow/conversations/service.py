"""Inbound email orchestration: thread resolution, classification and state."""

from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Callable, Sequence
from typing import TypeVar

from ..core.sequence import SequenceGenerator, default_sequence
from ..core.settings import get_settings
from ..customers import CustomerService, normalise_email
from ..errors import ConcurrentUpdateConflict, DuplicateThreadKeyError, InvalidInputError, NotFoundError
from ..extraction import ExtractionResult, LineItemDraft, LineItemExtractor, extract_line_items
from ..models import Conversation, ConversationItem, InboundEmailRecord
from . import state
from .language import detect_language
from .models import InboundEmail, ProcessingOutcome, ProcessingResult
from .repository import ConversationRepository
from .stages import (
    EmailType,
    Stage,
    classify_email_type,
    classify_stage,
    extract_order_reference,
    extract_quote_reference,
    suggested_action,
)
from .thread_keys import message_fingerprint, resolve_thread_key

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _LazyExtraction:
    """Runs the extractor at most once per inbound email, even across retries."""

    def __init__(self, extractor: LineItemExtractor, text: str | None, timeout: float | None):
        self._extractor = extractor
        self._text = text
        self._timeout = timeout
        self._result: ExtractionResult | None = None

    def get(self) -> ExtractionResult:
        if self._result is None:
            self._result = extract_line_items(self._extractor, self._text, timeout=self._timeout)
        return self._result


def run_with_retries(
    repository: ConversationRepository,
    thread_key: str,
    operation: Callable[[], T],
    max_attempts: int,
) -> T:
    """Run ``operation`` under the thread lock, retrying lost races.

    A creation race (``DuplicateThreadKeyError``) or a stale write
    (``ConcurrentUpdateConflict``) re-runs the whole read-modify-write; the
    last error is raised once ``max_attempts`` is used up.
    """

    last_error: Exception | None = None
    for attempt in range(1, max(max_attempts, 1) + 1):
        try:
            with repository.thread_lock(thread_key):
                return operation()
        except (ConcurrentUpdateConflict, DuplicateThreadKeyError) as exc:
            last_error = exc
            logger.info(
                "Retrying thread %s after %s (attempt %d/%d)",
                thread_key,
                type(exc).__name__,
                attempt,
                max_attempts,
            )
    raise ConcurrentUpdateConflict(
        f"Gave up updating thread {thread_key} after {max_attempts} attempts"
    ) from last_error


def build_items(
    drafts: Sequence[LineItemDraft], *, start: int, source_message_id: str
) -> list[ConversationItem]:
    return [
        ConversationItem(
            position=start + offset,
            product=draft.product,
            trim_type=draft.trim_type,
            rm_spec=draft.rm_spec,
            production_type=draft.production_type,
            packaging_type=draft.packaging_type,
            pack_material=draft.pack_material,
            box_quantity=draft.box_quantity,
            transport_mode=draft.transport_mode,
            requested_quantity=draft.requested_quantity,
            delivery_requirement=draft.delivery_requirement,
            special_instructions=draft.special_instructions,
            customer_sku_reference=draft.customer_sku_reference,
            product_description=draft.product_description,
            mapping_confidence=draft.mapping_confidence,
            source_message_id=source_message_id,
        )
        for offset, draft in enumerate(drafts)
    ]


class ConversationService:
    """Applies inbound emails to conversations and serves conversation queries."""

    def __init__(
        self,
        repository: ConversationRepository,
        customers: CustomerService,
        extractor: LineItemExtractor,
        *,
        sequence: SequenceGenerator | None = None,
        max_retries: int | None = None,
        extraction_timeout: float | None = None,
    ) -> None:
        settings = get_settings()
        self._repository = repository
        self._customers = customers
        self._extractor = extractor
        self._sequence = sequence or default_sequence
        self._max_retries = max_retries if max_retries is not None else settings.conflict_max_retries
        self._extraction_timeout = (
            extraction_timeout
            if extraction_timeout is not None
            else settings.extraction_timeout_seconds
        )

    # ------------------------------------------------------------------
    # Inbound email processing

    def process_inbound_email(self, email: InboundEmail) -> ProcessingResult:
        """Resolve, classify and apply one inbound email.

        Emails on a thread with a live conversation update it. An initial
        enquiry on an unseen (or closed) thread opens a new conversation.
        Anything else on a closed thread is appended to its history without a
        status change, and emails matching no conversation are logged as
        orphans for manual review. Re-delivering an already applied message
        changes nothing.
        """

        if not email.sender or not email.sender.strip():
            raise InvalidInputError("Inbound email requires a sender address")

        thread_key = resolve_thread_key(
            message_id=email.message_id,
            provider_thread_id=email.provider_thread_id,
            conversation_id=email.conversation_id,
            in_reply_to=email.in_reply_to,
            subject=email.subject,
        )
        email_type = classify_email_type(email.subject, email.body)
        stage = classify_stage(email.subject, email.body, email_type)
        message_key = email.message_id or message_fingerprint(
            thread_key, email.subject, email.body
        )
        extraction = _LazyExtraction(self._extractor, email.body, self._extraction_timeout)
        if self._needs_extraction(thread_key, stage, message_key):
            # Slow extractor calls stay outside the thread and row locks.
            extraction.get()

        result = run_with_retries(
            self._repository,
            thread_key,
            lambda: self._apply(email, thread_key, email_type, stage, message_key, extraction),
            self._max_retries,
        )
        logger.info(
            "Inbound email on %s classified %s/%s -> %s %s",
            thread_key,
            email_type.value,
            stage.value,
            result.outcome.value,
            result.conversation.external_id if result.conversation else "-",
        )
        return result

    def _needs_extraction(self, thread_key: str, stage: Stage, message_key: str) -> bool:
        """Unlocked guess at whether applying the email will read its line items.

        A wrong guess only moves the extractor call under the lock.
        """

        if self._repository.find_applied_message(thread_key, message_key) is not None:
            return False
        if stage is Stage.INITIAL_ENQUIRY:
            return not self._repository.has_conversation(thread_key, live=True)
        return self._repository.has_conversation(thread_key)

    def _apply(
        self,
        email: InboundEmail,
        thread_key: str,
        email_type: EmailType,
        stage: Stage,
        message_key: str,
        extraction: _LazyExtraction,
    ) -> ProcessingResult:
        now = self._sequence.now()
        result = ProcessingResult(
            thread_key=thread_key,
            email_type=email_type,
            stage=stage,
            outcome=ProcessingOutcome.ORPHANED,
            suggested_action=suggested_action(stage),
            quote_reference=extract_quote_reference(email.subject, email.body),
            order_reference=extract_order_reference(email.subject, email.body),
        )

        applied = self._repository.find_applied_message(thread_key, message_key)
        active = latest = None
        if applied is None:
            active = self._repository.find_active_by_thread_key(thread_key)
            latest = active or self._repository.find_latest_by_thread_key(thread_key)

        if applied is not None:
            result.outcome = ProcessingOutcome.DUPLICATE
            result.conversation = self._repository.get_by_external_id(
                applied.conversation_external_id
            )
        elif active is not None:
            self._progress(active, email, stage, message_key, extraction, now, result)
            self._repository.save(active)
            result.outcome = ProcessingOutcome.UPDATED
            result.conversation = active
        elif stage is Stage.INITIAL_ENQUIRY:
            conversation = self._open(email, thread_key, message_key, extraction, now, result)
            self._repository.add(conversation)
            result.outcome = ProcessingOutcome.CREATED
            result.conversation = conversation
        elif latest is not None:
            self._progress(latest, email, stage, message_key, extraction, now, result)
            self._repository.save(latest)
            result.outcome = ProcessingOutcome.APPENDED
            result.conversation = latest
        else:
            logger.warning(
                "No conversation for thread %s and stage %s; leaving email for manual review",
                thread_key,
                stage.value,
            )

        self._repository.record_inbound_email(
            InboundEmailRecord(
                message_key=message_key,
                thread_key=thread_key,
                sender=normalise_email(email.sender),
                subject=email.subject,
                email_type=email_type.value,
                stage=stage.value,
                outcome=result.outcome.value,
                conversation_external_id=(
                    result.conversation.external_id if result.conversation else None
                ),
                received_at=email.received_at or now,
            )
        )
        return result

    def _open(
        self,
        email: InboundEmail,
        thread_key: str,
        message_key: str,
        extraction: _LazyExtraction,
        now: dt.datetime,
        result: ProcessingResult,
    ) -> Conversation:
        customer = self._customers.find_or_create(email.sender, email.body)
        conversation = Conversation(
            external_id=self._sequence.conversation_id(),
            thread_key=thread_key,
            from_email=normalise_email(email.sender),
            subject=email.subject,
            body=email.body,
            status=state.ConversationStatus.RECEIVED.value,
            customer_id=customer.id,
            processing_notes="",
            received_at=email.received_at or now,
            processed=False,
            processed_message_ids=[],
            created_at=now,
            updated_at=now,
        )
        state.append_history(
            conversation, state.history_line(now, "ENQUIRY RECEIVED", email.subject)
        )
        state.append_history(
            conversation, state.history_line(now, "LANGUAGE", detect_language(email.body))
        )
        added = self._attach_extracted(conversation, extraction, message_key, now, result)
        state.append_history(
            conversation, state.history_line(now, "ITEMS EXTRACTED", f"{added} items")
        )
        self._mark_processed(conversation, message_key, now)
        return conversation

    def _progress(
        self,
        conversation: Conversation,
        email: InboundEmail,
        stage: Stage,
        message_key: str,
        extraction: _LazyExtraction,
        now: dt.datetime,
        result: ProcessingResult,
    ) -> None:
        outcome = state.apply_stage(conversation, stage, email.subject, now)
        if outcome.changed:
            logger.info(
                "Conversation %s moved %s -> %s",
                conversation.external_id,
                outcome.previous.value,
                outcome.current.value,
            )
        conversation.body = email.body
        if stage is not Stage.INITIAL_ENQUIRY:
            added = self._attach_extracted(conversation, extraction, message_key, now, result)
            if added:
                state.append_history(
                    conversation,
                    state.history_line(now, "ADDITIONAL ITEMS EXTRACTED", f"{added} items"),
                )
        self._mark_processed(conversation, message_key, now)

    def _attach_extracted(
        self,
        conversation: Conversation,
        extraction: _LazyExtraction,
        message_key: str,
        now: dt.datetime,
        result: ProcessingResult,
    ) -> int:
        extracted = extraction.get()
        if extracted.degraded:
            result.extraction_degraded = True
            state.append_history(
                conversation, state.history_line(now, "EXTRACTION DEGRADED", extracted.error)
            )
        items = build_items(
            extracted.items, start=len(conversation.items), source_message_id=message_key
        )
        conversation.items.extend(items)
        result.items_extracted = len(items)
        return len(items)

    @staticmethod
    def _mark_processed(conversation: Conversation, message_key: str, now: dt.datetime) -> None:
        conversation.processed = True
        conversation.processed_at = now
        conversation.updated_at = now
        conversation.processed_message_ids = [
            *(conversation.processed_message_ids or []),
            message_key,
        ]

    # ------------------------------------------------------------------
    # Queries and manual actions

    def get_conversation(self, external_id: str) -> Conversation:
        conversation = self._repository.get_by_external_id(external_id)
        if conversation is None:
            raise NotFoundError(f"Conversation {external_id} not found")
        return conversation

    def list_conversations(
        self,
        *,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Conversation]:
        parsed = state.parse_status(status) if status is not None else None
        return self._repository.list_conversations(status=parsed, limit=limit, offset=offset)

    def recent_conversations(self, *, days: int = 7, limit: int = 50) -> list[Conversation]:
        since = self._sequence.now() - dt.timedelta(days=days)
        return self._repository.list_conversations(since=since, limit=limit)

    def list_orphans(self, *, limit: int = 50) -> list[InboundEmailRecord]:
        return self._repository.list_inbound_emails(
            outcome=ProcessingOutcome.ORPHANED.value, limit=limit
        )

    def update_status(self, external_id: str, status: str) -> Conversation:
        target = state.parse_status(status)
        conversation = self.get_conversation(external_id)

        def _update() -> Conversation:
            current = self._repository.get_by_external_id(external_id, for_update=True)
            if current is None:
                raise NotFoundError(f"Conversation {external_id} not found")
            now = self._sequence.now()
            outcome = state.set_status(current, target, now)
            if outcome.changed:
                current.updated_at = now
                self._repository.save(current)
                logger.info(
                    "Conversation %s status set to %s", external_id, target.value
                )
            return current

        return run_with_retries(
            self._repository, conversation.thread_key, _update, self._max_retries
        )

    def dashboard_stats(self, *, recent_limit: int = 5) -> dict[str, object]:
        counts = self._repository.count_by_status()
        return {
            "total_conversations": sum(counts.values()),
            "by_status": counts,
            "total_customers": self._customers.count(),
            "orphaned_emails": self._repository.count_inbound_emails(
                outcome=ProcessingOutcome.ORPHANED.value
            ),
            "recent": self.recent_conversations(limit=recent_limit),
        }


__all__ = ["ConversationService", "build_items", "run_with_retries"]

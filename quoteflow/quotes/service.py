"""Quote assembly and the quote status lifecycle."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence

from ..conversations import state
from ..conversations.repository import ConversationRepository
from ..conversations.service import run_with_retries
from ..core.sequence import SequenceGenerator, default_sequence
from ..core.settings import get_settings
from ..errors import InvalidInputError, NotFoundError
from ..models import Conversation, ConversationItem, Quote, QuoteItem
from ..pricing import PricingEngine
from .models import QUOTE_TRANSITIONS, QuoteItemOverride, QuoteStatus
from .repository import QuoteRepository

logger = logging.getLogger(__name__)


def describe_item(item: ConversationItem) -> str:
    if item.product_description:
        return item.product_description
    parts = [item.product, item.trim_type, item.production_type, item.packaging_type]
    return " ".join(part for part in parts if part) or "Unspecified item"


def parse_quote_status(value: str) -> QuoteStatus:
    try:
        return QuoteStatus(value.strip().upper())
    except ValueError as exc:
        allowed = ", ".join(status.value for status in QuoteStatus)
        raise InvalidInputError(f"Unknown quote status '{value}'. Expected one of: {allowed}") from exc


class QuoteService:
    """Turns a conversation's line items into a persisted quote."""

    def __init__(
        self,
        quotes: QuoteRepository,
        conversations: ConversationRepository,
        pricing: PricingEngine,
        *,
        sequence: SequenceGenerator | None = None,
        max_retries: int | None = None,
    ) -> None:
        settings = get_settings()
        self._quotes = quotes
        self._conversations = conversations
        self._pricing = pricing
        self._sequence = sequence or default_sequence
        self._max_retries = max_retries if max_retries is not None else settings.conflict_max_retries
        self._factory_id = settings.default_factory_id
        self._default_currency = settings.default_currency
        self._validity_period = settings.quote_validity_period

    def generate_quote(
        self,
        conversation_external_id: str,
        overrides: Sequence[QuoteItemOverride | None] | None = None,
    ) -> Quote:
        """Price every item of a conversation and persist the quote.

        An override at the same index as an item replaces the pricing engine
        for that item. The conversation moves to QUOTED in the same
        transaction unless it is already CONVERTED or CANCELLED.
        """

        conversation = self._conversations.get_by_external_id(conversation_external_id)
        if conversation is None:
            raise NotFoundError(f"Conversation {conversation_external_id} not found")
        overrides = list(overrides or [])

        def _generate() -> Quote:
            current = self._conversations.get_by_external_id(
                conversation_external_id, for_update=True
            )
            if current is None:
                raise NotFoundError(f"Conversation {conversation_external_id} not found")
            return self._assemble(current, overrides)

        quote = run_with_retries(
            self._conversations, conversation.thread_key, _generate, self._max_retries
        )
        logger.info(
            "Generated quote %s for %s: %d items, total %.2f %s",
            quote.quote_number,
            conversation_external_id,
            len(quote.items),
            quote.total_amount,
            quote.currency,
        )
        return quote

    def _assemble(
        self, conversation: Conversation, overrides: list[QuoteItemOverride | None]
    ) -> Quote:
        now = self._sequence.now()
        override_currency = next(
            (o.currency for o in overrides if o is not None and o.currency), None
        )
        currency = self._pricing.currency or override_currency or self._default_currency

        lines: list[QuoteItem] = []
        for index, item in enumerate(conversation.items):
            override = overrides[index] if index < len(overrides) else None
            if override is not None:
                line = self._override_line(item, override)
            else:
                line = self._priced_line(item)
            line.position = index
            line.currency = currency
            item.unit_price = line.unit_price
            item.total_price = line.total_price
            item.currency = currency
            lines.append(line)

        quote = Quote(
            quote_number=self._sequence.quote_number(),
            status=QuoteStatus.DRAFT.value,
            total_amount=sum(line.total_price for line in lines),
            currency=currency,
            validity_period=self._validity_period,
            customer_id=conversation.customer_id,
            conversation_id=conversation.id,
            conversation_external_id=conversation.external_id,
            created_at=now,
            items=lines,
        )
        self._quotes.add(quote)

        outcome = state.mark_quoted(conversation, quote.quote_number, now)
        if outcome.blocked:
            logger.info(
                "Conversation %s stays %s after quote %s",
                conversation.external_id,
                outcome.current.value,
                quote.quote_number,
            )
        conversation.updated_at = now
        self._conversations.save(conversation)
        return quote

    def _override_line(self, item: ConversationItem, override: QuoteItemOverride) -> QuoteItem:
        quantity = override.quantity
        total = float(override.total_cost)
        unit = total / quantity if quantity else 0.0
        return QuoteItem(
            conversation_item_id=item.id,
            description=override.description or describe_item(item),
            quantity=quantity,
            unit_price=unit,
            total_price=total,
            notes=json.dumps({"override": override.descriptive_fields()}, sort_keys=True),
        )

    def _priced_line(self, item: ConversationItem) -> QuoteItem:
        breakdown = self._pricing.price(item, self._factory_id)
        if breakdown.missing_components:
            logger.info(
                "Item %s priced without %s",
                item.id,
                ", ".join(breakdown.missing_components),
            )
        notes = {
            "factory_id": self._factory_id,
            "components": breakdown.components,
            "missing_components": breakdown.missing_components,
        }
        if breakdown.freezing_method:
            notes["freezing_method"] = breakdown.freezing_method
        return QuoteItem(
            conversation_item_id=item.id,
            description=describe_item(item),
            quantity=breakdown.quantity,
            unit_price=breakdown.unit_price,
            total_price=breakdown.total_price,
            notes=json.dumps(notes, sort_keys=True),
        )

    # ------------------------------------------------------------------
    # Lifecycle

    def get_quote(self, quote_number: str) -> Quote:
        quote = self._quotes.get_by_number(quote_number)
        if quote is None:
            raise NotFoundError(f"Quote {quote_number} not found")
        return quote

    def list_quotes(
        self,
        *,
        status: str | None = None,
        conversation_external_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Quote]:
        parsed = parse_quote_status(status).value if status is not None else None
        return self._quotes.list_quotes(
            status=parsed,
            conversation_external_id=conversation_external_id,
            limit=limit,
            offset=offset,
        )

    def send_quote(self, quote_number: str) -> Quote:
        return self._advance(quote_number, QuoteStatus.SENT, "sent_at")

    def accept_quote(self, quote_number: str) -> Quote:
        return self._advance(quote_number, QuoteStatus.ACCEPTED, "accepted_at")

    def reject_quote(self, quote_number: str) -> Quote:
        return self._advance(quote_number, QuoteStatus.REJECTED, "rejected_at")

    def _advance(self, quote_number: str, target: QuoteStatus, stamp: str) -> Quote:
        quote = self._quotes.get_by_number(quote_number, for_update=True)
        if quote is None:
            raise NotFoundError(f"Quote {quote_number} not found")
        current = QuoteStatus(quote.status)
        if target not in QUOTE_TRANSITIONS[current]:
            raise InvalidInputError(
                f"Quote {quote_number} cannot move from {current.value} to {target.value}"
            )
        quote.status = target.value
        setattr(quote, stamp, self._sequence.now())
        self._quotes.save(quote)
        logger.info("Quote %s moved %s -> %s", quote_number, current.value, target.value)
        return quote


__all__ = ["QuoteService", "describe_item", "parse_quote_status"]

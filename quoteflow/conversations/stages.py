"""Keyword classification of inbound emails into sales funnel stages.

Classification is a cascade of ordered rules over the lower-cased
``subject + " " + body`` text. Each rule is a named ``(predicate, stage)``
pair and the first predicate that matches decides the stage. Order matters:
"please proceed with the quote" is an order placement even though it also
mentions a quote.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum


class Stage(str, Enum):
    """Position of an email in the enquiry -> quote -> order funnel."""

    INITIAL_ENQUIRY = "INITIAL_ENQUIRY"
    FOLLOW_UP = "FOLLOW_UP"
    QUOTE_SENT = "QUOTE_SENT"
    ORDER_PLACEMENT = "ORDER_PLACEMENT"
    ORDER_CONFIRMED = "ORDER_CONFIRMED"
    ENQUIRY_CLOSED = "ENQUIRY_CLOSED"


class EmailType(str, Enum):
    """Coarse email category, used when no stage keyword matches."""

    ENQUIRY = "ENQUIRY"
    QUOTE_ACCEPTANCE = "QUOTE_ACCEPTANCE"
    QUOTE_REJECTION = "QUOTE_REJECTION"
    ORDER_CONFIRMATION = "ORDER_CONFIRMATION"
    GENERAL = "GENERAL"


Predicate = Callable[[str], bool]


@dataclass(frozen=True)
class Rule:
    """A single classification rule evaluated against normalised text."""

    name: str
    predicate: Predicate
    result: Stage | EmailType


def _any_of(*needles: str) -> Predicate:
    return lambda text: any(needle in text for needle in needles)


def _all_of(*predicates: Predicate) -> Predicate:
    return lambda text: all(predicate(text) for predicate in predicates)


def _either(*predicates: Predicate) -> Predicate:
    return lambda text: any(predicate(text) for predicate in predicates)


STAGE_RULES: tuple[Rule, ...] = (
    Rule(
        "order_placement",
        _any_of(
            "proceed with",
            "place order",
            "place the order",
            "go ahead",
            "move forward",
            "confirm order",
        ),
        Stage.ORDER_PLACEMENT,
    ),
    Rule(
        "order_confirmed",
        _any_of("order confirmed", "order placed", "order number", "purchase order"),
        Stage.ORDER_CONFIRMED,
    ),
    Rule(
        "quote_acceptance",
        _all_of(
            _any_of("quote", "pricing"),
            _any_of("accept", "approve", "good", "looks good", "acceptable", "agree"),
        ),
        Stage.ORDER_PLACEMENT,
    ),
    Rule(
        "quote_sent",
        _either(
            _any_of("quote attached", "pricing below", "quotation"),
            _all_of(_any_of("quote"), _any_of("price")),
        ),
        Stage.QUOTE_SENT,
    ),
    Rule(
        "enquiry_closed",
        _any_of(
            "cancel",
            "not interested",
            "too expensive",
            "reject",
            "decline",
            "no longer need",
        ),
        Stage.ENQUIRY_CLOSED,
    ),
    Rule(
        "initial_enquiry",
        _any_of(
            "need",
            "require",
            "looking for",
            "inquiry",
            "enquiry",
            "quote request",
            "price",
            "cost",
            "interested in",
            "tons",
            "volume",
            "processing",
            "quote",
            "estimate",
            "pricing",
        ),
        Stage.INITIAL_ENQUIRY,
    ),
    Rule(
        "follow_up",
        _any_of(
            "question",
            "clarification",
            "modify",
            "change",
            "update",
            "when",
            "how",
            "what about",
            "also",
        ),
        Stage.FOLLOW_UP,
    ),
)

EMAIL_TYPE_RULES: tuple[Rule, ...] = (
    Rule(
        "quote_acceptance",
        _all_of(_any_of("quote"), _any_of("accept", "approve", "confirmed")),
        EmailType.QUOTE_ACCEPTANCE,
    ),
    Rule(
        "quote_rejection",
        _all_of(_any_of("quote"), _any_of("reject", "decline")),
        EmailType.QUOTE_REJECTION,
    ),
    Rule(
        "order_confirmation",
        _all_of(_any_of("order"), _any_of("confirm", "place")),
        EmailType.ORDER_CONFIRMATION,
    ),
    Rule("explicit_enquiry", _any_of("inquiry", "enquiry", "quote request"), EmailType.ENQUIRY),
    Rule("implicit_enquiry", _any_of("need", "require", "looking for"), EmailType.ENQUIRY),
)

_EMAIL_TYPE_FALLBACK: dict[EmailType, Stage] = {
    EmailType.ENQUIRY: Stage.INITIAL_ENQUIRY,
    EmailType.QUOTE_ACCEPTANCE: Stage.ORDER_PLACEMENT,
    EmailType.QUOTE_REJECTION: Stage.ENQUIRY_CLOSED,
    EmailType.ORDER_CONFIRMATION: Stage.ORDER_CONFIRMED,
}

SUGGESTED_ACTIONS: dict[Stage, str] = {
    Stage.INITIAL_ENQUIRY: "EXTRACT_INFO_AND_GENERATE_QUOTE",
    Stage.ORDER_PLACEMENT: "CONVERT_QUOTE_TO_ORDER",
    Stage.ORDER_CONFIRMED: "PROCESS_ORDER",
    Stage.ENQUIRY_CLOSED: "ARCHIVE_THREAD",
}

_QUOTE_REFERENCE = re.compile(r"(?:quote|ref|reference)\s*[#:]?\s*([QR]\d+)", re.IGNORECASE)
_ORDER_REFERENCE = re.compile(r"(?:order|po|purchase)\s*[#:]?\s*([OR]\d+)", re.IGNORECASE)


def normalise_text(subject: str | None, body: str | None) -> str:
    return f"{subject or ''} {body or ''}".lower()


def first_match(rules: Sequence[Rule], text: str) -> Rule | None:
    """Return the first rule whose predicate accepts ``text``."""

    for rule in rules:
        if rule.predicate(text):
            return rule
    return None


def classify_email_type(subject: str | None, body: str | None) -> EmailType:
    rule = first_match(EMAIL_TYPE_RULES, normalise_text(subject, body))
    if rule is None:
        return EmailType.GENERAL
    return EmailType(rule.result)


def classify_stage(
    subject: str | None, body: str | None, email_type: EmailType | None = None
) -> Stage:
    """Classify an email into a funnel :class:`Stage`.

    Total and deterministic: ``None`` inputs count as empty text and every
    input yields exactly one stage. When no keyword rule matches, the coarse
    ``email_type`` (computed from the same text when omitted) picks the stage,
    defaulting to FOLLOW_UP.
    """

    text = normalise_text(subject, body)
    rule = first_match(STAGE_RULES, text)
    if rule is not None:
        return Stage(rule.result)
    if email_type is None:
        email_type = classify_email_type(subject, body)
    return _EMAIL_TYPE_FALLBACK.get(email_type, Stage.FOLLOW_UP)


def suggested_action(stage: Stage) -> str:
    return SUGGESTED_ACTIONS.get(stage, "REVIEW_MANUALLY")


def extract_quote_reference(subject: str | None, body: str | None) -> str | None:
    match = _QUOTE_REFERENCE.search(f"{body or ''} {subject or ''}")
    return match.group(1) if match else None


def extract_order_reference(subject: str | None, body: str | None) -> str | None:
    match = _ORDER_REFERENCE.search(f"{body or ''} {subject or ''}")
    return match.group(1) if match else None


__all__ = [
    "EMAIL_TYPE_RULES",
    "STAGE_RULES",
    "EmailType",
    "Rule",
    "Stage",
    "classify_email_type",
    "classify_stage",
    "extract_order_reference",
    "extract_quote_reference",
    "first_match",
    "suggested_action",
]

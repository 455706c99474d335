"""Deterministic keyword and pattern based line-item extractor.

Used when no language model is configured. Each sentence that states a
quantity (``5000 kg``, ``2.5 tons``) becomes one line item; product, trim,
freshness, packaging and transport come from keywords in that sentence,
falling back to the whole email for the product name.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from .base import LineItemDraft

_QUANTITY = re.compile(
    r"(\d[\d,]*(?:\.\d+)?)\s*(kgs?|kilos?|tons?|tonnes?|t)\b", re.IGNORECASE
)
_SIZE_SPEC = re.compile(r"\b(\d+(?:\.\d+)?\s*-\s*\d+(?:\.\d+)?\s*kg)\b", re.IGNORECASE)
_SKU = re.compile(r"\b(?:sku|ref|item|code)\b[\s#:-]*([a-z0-9-]*\d[a-z0-9-]*)", re.IGNORECASE)
_SENTENCE_BREAK = re.compile(r"[;\n]|[.!?](?=\s|$)")

Keywords = Sequence[tuple[tuple[str, ...], str]]

PRODUCTS: Keywords = (
    (("atlantic salmon", "norwegian salmon", "salmon"), "Salmon"),
    (("atlantic cod", "pacific cod", "cod"), "Cod"),
    (("haddock",), "Haddock"),
    (("alaska pollock", "pollock"), "Pollock"),
    (("mackerel",), "Mackerel"),
    (("herring",), "Herring"),
    (("whitefish", "white fish"), "Whitefish"),
)
TRIMS: Keywords = (
    (("fillet", "filet"), "Fillet"),
    (("whole fish", "whole", "hog"), "Whole"),
    (("steak",), "Steak"),
    (("loin",), "Loin"),
    (("portion",), "Portion"),
)
PRODUCTION_TYPES: Keywords = (
    (("frozen", "iqf", "individually quick frozen"), "Frozen"),
    (("fresh", "chilled"), "Fresh"),
)
PACKAGING: Keywords = (
    (("vacuum pack", "vacuum sealed", "vacuum", "vac pack"), "VAC"),
    (("ice pack", "on ice"), "Ice pack"),
    (("bulk",), "Bulk"),
    (("retail pack", "consumer pack"), "Retail"),
    (("box", "carton"), "Box"),
)
TRANSPORT: Keywords = (
    (("air freight", "by air", "airfreight"), "Air"),
    (("sea freight", "by sea"), "Sea"),
    (("road transport", "by truck", "by road"), "Road"),
    (("express", "expedited"), "Express"),
)
INSTRUCTIONS: Keywords = (
    (("gyro",), "Gyro freezing"),
    (("tunnel",), "Tunnel freezing"),
    (("urgent", "asap", "rush"), "Urgent"),
    (("organic",), "Organic"),
)


def _lookup(keywords: Keywords, text: str) -> str | None:
    for needles, value in keywords:
        if any(needle in text for needle in needles):
            return value
    return None


def _to_kilograms(amount: str, unit: str) -> int:
    value = float(amount.replace(",", ""))
    if unit.lower().startswith("t"):
        value *= 1000
    return int(round(value))


def mapping_confidence(
    product: str | None, trim_type: str | None, production_type: str | None, quantity: int | None
) -> str:
    """Score how much of an item was recognised as HIGH, MEDIUM or LOW."""

    score = 0
    if product:
        score += 40
    if trim_type:
        score += 20
    if production_type:
        score += 15
    if quantity is not None and 1 < quantity < 100000:
        score += 25
    if score >= 80:
        return "HIGH"
    if score >= 50:
        return "MEDIUM"
    return "LOW"


class KeywordLineItemExtractor:
    """Extract line items with regular expressions and keyword tables."""

    def extract(self, text: str) -> list[LineItemDraft]:
        lowered = text.lower()
        email_product = _lookup(PRODUCTS, lowered)
        sku_match = _SKU.search(text)
        sku = sku_match.group(1).upper() if sku_match else None

        items: list[LineItemDraft] = []
        for sentence in _SENTENCE_BREAK.split(lowered):
            # A size range such as "2-3 kg" describes the fish, not an order quantity.
            for match in _QUANTITY.finditer(_SIZE_SPEC.sub(" ", sentence)):
                items.append(
                    self._draft(sentence, email_product, _to_kilograms(*match.groups()), sku)
                )
        if not items and email_product:
            items.append(self._draft(lowered, email_product, None, sku))
        return items

    def _draft(
        self, context: str, fallback_product: str | None, quantity: int | None, sku: str | None
    ) -> LineItemDraft:
        product = _lookup(PRODUCTS, context) or fallback_product
        trim_type = _lookup(TRIMS, context)
        production_type = _lookup(PRODUCTION_TYPES, context)
        size = _SIZE_SPEC.search(context)
        notes = [value for needles, value in INSTRUCTIONS if any(n in context for n in needles)]
        description = " ".join(part for part in (product, trim_type) if part) or "Unspecified product"
        if production_type:
            description += f" ({production_type})"
        if quantity is not None:
            description += f" - {quantity} kg"
        return LineItemDraft(
            product=product,
            requested_quantity=quantity,
            trim_type=trim_type,
            rm_spec=size.group(1).replace(" ", "") if size else None,
            production_type=production_type,
            packaging_type=_lookup(PACKAGING, context),
            transport_mode=_lookup(TRANSPORT, context),
            special_instructions=", ".join(notes) or None,
            customer_sku_reference=sku,
            product_description=description,
            mapping_confidence=mapping_confidence(product, trim_type, production_type, quantity),
        )


__all__ = ["KeywordLineItemExtractor", "mapping_confidence"]

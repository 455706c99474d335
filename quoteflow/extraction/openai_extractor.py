"""Line-item extraction backed by an OpenAI chat completion.

The model is asked for a JSON object with a ``products`` list, one entry per
SKU. Replies are tolerated with or without markdown fences, and quantities
given in tons are converted to kilograms.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from openai import OpenAI

from .base import LineItemDraft

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an expert seafood industry analyst. Extract structured product "
    "data from emails and return only valid JSON."
)

PRODUCT_PROMPT = """Identify each separate product or SKU discussed in the email below.

Return a JSON object with the key "products" whose value is a list with one object
per SKU and these keys: product_type (fresh or frozen), Trim, product_cut,
rm_spec, Quality, pack_type, pack_material, box_qty, qty, qty_unit,
delivery_date (YYYY-MM-DD), transport_mode, special_notes.

Use null for any field the email does not state. Do not merge SKUs. When several
sizes or pack types are listed without separate quantities, repeat the quantity
for each variant. Convert units consistently (1 ton = 1000 kg).
Return only JSON, no markdown or comments.

EMAIL:
{body}
"""


def clean_markdown(response: str) -> str:
    """Strip a surrounding ```json fence from a model reply."""

    cleaned = response.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[len("```json"):]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def _text(node: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = node.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def _quantity(node: dict[str, Any]) -> int | None:
    raw = node.get("qty", node.get("quantity"))
    if raw is None:
        return None
    try:
        quantity = float(str(raw).replace(",", ""))
    except ValueError:
        return None
    unit = (_text(node, "qty_unit") or "kg").lower()
    if unit in {"ton", "tons", "tonne", "tonnes", "t"}:
        quantity *= 1000
    return int(round(quantity))


def draft_from_product(node: dict[str, Any]) -> LineItemDraft:
    """Map one element of the ``products`` list onto a :class:`LineItemDraft`."""

    product = _text(node, "product_cut", "product")
    rm_spec = _text(node, "rm_spec/size", "rm_spec")
    production_type = _text(node, "product_type", "productType")
    pack_type = _text(node, "pack_type", "packagingType")
    pack_material = _text(node, "pack_material")
    box_qty = _text(node, "box_qty")
    quality = _text(node, "Quality", "quality") or "Superior grade quality"
    notes = _text(node, "special_notes", "description")
    description = " ".join(
        part
        for part in (product, rm_spec, production_type, pack_type, pack_material, box_qty)
        if part
    )
    if notes:
        description = f"{description} - {notes}" if description else notes
    return LineItemDraft(
        product=product,
        requested_quantity=_quantity(node),
        trim_type=_text(node, "Trim", "trim", "trimType") or rm_spec,
        rm_spec=rm_spec,
        production_type=production_type.capitalize() if production_type else None,
        packaging_type=pack_type,
        pack_material=pack_material,
        box_quantity=box_qty,
        transport_mode=_text(node, "transport_mode", "transportMode"),
        delivery_requirement=_text(node, "delivery_date"),
        special_instructions=f"{quality} - {notes}" if notes else quality,
        customer_sku_reference=_text(node, "sku", "customer_sku"),
        product_description=description or None,
        mapping_confidence="HIGH",
    )


def parse_products(response: str) -> list[LineItemDraft]:
    """Parse a model reply into drafts; raises ``ValueError`` on invalid JSON."""

    payload = json.loads(clean_markdown(response))
    if isinstance(payload, dict):
        products = payload.get("products") or []
    elif isinstance(payload, list):
        products = payload
    else:
        raise ValueError(f"Unexpected extraction payload type {type(payload).__name__}")
    return [draft_from_product(node) for node in products if isinstance(node, dict)]


class OpenAILineItemExtractor:
    """Call an OpenAI chat model to extract line items."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str = "gpt-4.1-mini",
        timeout: float | None = None,
        client: Any | None = None,
    ) -> None:
        self._model = model
        self._client = client or OpenAI(api_key=api_key, timeout=timeout)

    def extract(self, text: str) -> list[LineItemDraft]:
        completion = self._client.chat.completions.create(
            model=self._model,
            temperature=0.1,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": PRODUCT_PROMPT.format(body=text)},
            ],
        )
        content = completion.choices[0].message.content or ""
        items = parse_products(content)
        logger.info("OpenAI extraction returned %d items", len(items))
        return items


__all__ = [
    "OpenAILineItemExtractor",
    "clean_markdown",
    "draft_from_product",
    "parse_products",
]

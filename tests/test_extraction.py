import json
import time
from types import SimpleNamespace

import pytest

from quoteflow.core.settings import Settings
from quoteflow.extraction import (
    KeywordLineItemExtractor,
    OpenAILineItemExtractor,
    build_extractor,
    extract_line_items,
)
from quoteflow.extraction.keyword import mapping_confidence
from quoteflow.extraction.openai_extractor import clean_markdown, parse_products


def test_keyword_extractor_reads_fresh_fillet_enquiry():
    items = KeywordLineItemExtractor().extract(
        "need 5000 kg of salmon fillets fresh, price please"
    )

    assert len(items) == 1
    item = items[0]
    assert item.product == "Salmon"
    assert item.requested_quantity == 5000
    assert item.trim_type == "Fillet"
    assert item.production_type == "Fresh"
    assert item.mapping_confidence == "HIGH"


def test_keyword_extractor_one_item_per_quantity_sentence():
    text = (
        "Hi team.\n"
        "We need 2 tons of frozen cod loins, vacuum packed.\n"
        "Also 800 kg haddock fillets by air, gyro frozen please."
    )

    items = KeywordLineItemExtractor().extract(text)

    assert [i.product for i in items] == ["Cod", "Haddock"]
    assert items[0].requested_quantity == 2000
    assert items[0].production_type == "Frozen"
    assert items[0].packaging_type == "VAC"
    assert items[1].transport_mode == "Air"
    assert "Gyro freezing" in items[1].special_instructions


def test_keyword_extractor_ignores_raw_material_size_range():
    items = KeywordLineItemExtractor().extract(
        "We need 5000 kg of fresh salmon fillets, size 2-3 kg"
    )

    assert len(items) == 1
    assert items[0].requested_quantity == 5000
    assert items[0].rm_spec == "2-3kg"

def test_keyword_extractor_without_quantity_falls_back_to_product():
    items = KeywordLineItemExtractor().extract("Do you sell mackerel?")

    assert len(items) == 1
    assert items[0].product == "Mackerel"
    assert items[0].requested_quantity is None
    assert items[0].mapping_confidence == "LOW"


def test_keyword_extractor_returns_nothing_for_small_talk():
    assert KeywordLineItemExtractor().extract("Thanks for the call yesterday") == []


def test_mapping_confidence_levels():
    assert mapping_confidence("Salmon", "Fillet", "Fresh", 100) == "HIGH"
    assert mapping_confidence("Salmon", None, None, 100) == "MEDIUM"
    assert mapping_confidence(None, None, "Fresh", None) == "LOW"


class _Exploding:
    def extract(self, text):
        raise RuntimeError("model offline")


class _Slow:
    def extract(self, text):
        time.sleep(0.5)
        return []


def test_extraction_failure_degrades_to_empty():
    result = extract_line_items(_Exploding(), "need 5 kg", timeout=None)

    assert result.items == []
    assert result.degraded
    assert "model offline" in result.error


def test_extraction_timeout_degrades_to_empty():
    result = extract_line_items(_Slow(), "need 5 kg", timeout=0.05)

    assert result.items == []
    assert result.degraded
    assert "CallTimedOut" in result.error


def test_blank_text_skips_extractor():
    result = extract_line_items(_Exploding(), "   ", timeout=None)

    assert result.items == []
    assert not result.degraded


def test_clean_markdown_strips_fences():
    assert clean_markdown('```json\n{"products": []}\n```') == '{"products": []}'
    assert clean_markdown("```\n[]\n```") == "[]"


def test_parse_products_converts_tons_and_builds_description():
    reply = json.dumps(
        {
            "products": [
                {
                    "product_cut": "Salmon",
                    "product_type": "frozen",
                    "Trim": "Trim D",
                    "rm_spec": "3-4 kg",
                    "pack_type": "VAC",
                    "qty": "2",
                    "qty_unit": "tons",
                    "special_notes": "gyro",
                },
                "ignored",
            ]
        }
    )

    items = parse_products(reply)

    assert len(items) == 1
    item = items[0]
    assert item.requested_quantity == 2000
    assert item.production_type == "Frozen"
    assert item.trim_type == "Trim D"
    assert item.special_instructions == "Superior grade quality - gyro"
    assert item.product_description == "Salmon 3-4 kg frozen VAC - gyro"
    assert item.mapping_confidence == "HIGH"


def test_parse_products_rejects_invalid_json():
    with pytest.raises(ValueError):
        parse_products("not json")


def test_openai_extractor_uses_chat_completion():
    calls = []

    def create(**kwargs):
        calls.append(kwargs)
        content = '```json\n{"products": [{"product_cut": "Cod", "qty": 100}]}\n```'
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=content))]
        )

    client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
    extractor = OpenAILineItemExtractor(model="test-model", client=client)

    items = extractor.extract("need 100 kg cod")

    assert [i.product for i in items] == ["Cod"]
    assert items[0].requested_quantity == 100
    assert calls[0]["model"] == "test-model"
    assert "need 100 kg cod" in calls[0]["messages"][1]["content"]


def test_build_extractor_without_api_key_uses_keywords():
    settings = Settings(database_url="sqlite://")
    assert isinstance(build_extractor(settings), KeywordLineItemExtractor)

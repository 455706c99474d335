import threading
import time

import pytest

from quoteflow.core.timeouts import EXTRACTION_POOL, POOL_SIZES
from quoteflow.extraction import extract_line_items
from quoteflow.models import ChargeRate, ConversationItem, FilingRate, PackagingRate
from quoteflow.pricing import InMemoryRateCatalog, PricingEngine, SqlRateCatalog
from quoteflow.pricing.engine import COMPONENTS, freezing_method


def _item(**overrides) -> ConversationItem:
    values = dict(
        product="Salmon",
        trim_type="Fillet",
        rm_spec="3-4kg",
        production_type="Frozen",
        packaging_type="VAC",
        transport_mode="Road",
        special_instructions=None,
        requested_quantity=100,
    )
    values.update(overrides)
    return ConversationItem(**values)


@pytest.fixture
def catalog() -> InMemoryRateCatalog:
    catalog = InMemoryRateCatalog(currency="DKK")
    catalog.add_filing_rate("Salmon", "Fillet", 2.0)
    catalog.add_packaging_rate("Frozen", "Salmon", 1.0)
    catalog.add_charge_rate("Freezing Rate", "Frozen", "Salmon", 0.5, method="Tunnel Freezing")
    catalog.add_charge_rate("Freezing Rate", "Frozen", "Salmon", 0.9, method="Gyro Freezing")
    catalog.add_charge_rate("Filleting Rate", "Frozen", "Salmon", 0.7, method="Fillet")
    catalog.add_charge_rate("Pallet Charge", "Frozen", "Salmon", 0.1)
    catalog.add_charge_rate("Terminal Charge", "Frozen", "Salmon", 0.2)
    catalog.add_charge_rate("Skagerrak Handling", "Frozen", "Salmon", 0.3)
    catalog.add_charge_rate("Pallet Charge", "Fresh", "Salmon", 0.1)
    return catalog


def test_unit_price_is_sum_of_components(catalog):
    breakdown = PricingEngine(catalog).price(_item(), factory_id=1)

    assert breakdown.processing == 2.0
    assert breakdown.packaging == 1.0
    assert breakdown.freezing == 0.5
    assert breakdown.filleting == 0.7
    assert breakdown.unit_price == pytest.approx(sum(breakdown.components.values()))
    assert breakdown.unit_price == pytest.approx(4.8)
    assert breakdown.total_price == pytest.approx(breakdown.unit_price * 100)
    assert breakdown.missing_components == []
    assert breakdown.currency == "DKK"
    assert set(breakdown.components) == set(COMPONENTS)


def test_quantity_defaults_to_one(catalog):
    breakdown = PricingEngine(catalog).price(_item(requested_quantity=None), factory_id=1)

    assert breakdown.quantity == 1
    assert breakdown.total_price == pytest.approx(breakdown.unit_price)


def test_gyro_instruction_selects_gyro_rate(catalog):
    breakdown = PricingEngine(catalog).price(
        _item(special_instructions="Please use GYRO freezing"), factory_id=1
    )

    assert breakdown.freezing_method == "Gyro Freezing"
    assert breakdown.freezing == 0.9


def test_freezing_method_defaults_to_tunnel():
    assert freezing_method(None) == "Tunnel Freezing"
    assert freezing_method("tunnel please") == "Tunnel Freezing"


def test_fresh_items_never_pay_freezing(catalog):
    breakdown = PricingEngine(catalog).price(_item(production_type="Fresh"), factory_id=1)

    assert breakdown.freezing == 0.0
    assert breakdown.freezing_method is None
    assert "freezing" not in breakdown.missing_components


def test_whole_fish_never_pays_filleting(catalog):
    catalog.add_filing_rate("Salmon", "Whole", 1.5)

    breakdown = PricingEngine(catalog).price(_item(trim_type="Whole"), factory_id=1)

    assert breakdown.filleting == 0.0
    assert breakdown.processing == 1.5


def test_missing_rates_count_as_zero_and_are_reported():
    breakdown = PricingEngine(InMemoryRateCatalog()).price(_item(), factory_id=1)

    assert breakdown.unit_price == 0.0
    assert breakdown.missing_components == list(COMPONENTS)


def test_other_factory_rates_do_not_apply(catalog):
    breakdown = PricingEngine(catalog).price(_item(), factory_id=2)

    assert breakdown.freezing == 0.0
    assert "pallet" in breakdown.missing_components


class _FlakyCatalog(InMemoryRateCatalog):
    def lookup_rate(self, factory_id, charge_kind, production_type, product, method):
        if charge_kind == "Pallet Charge":
            raise ConnectionError("rates service down")
        if charge_kind == "Terminal Charge":
            time.sleep(0.5)
        return super().lookup_rate(factory_id, charge_kind, production_type, product, method)


def test_failing_and_slow_lookups_degrade_to_zero():
    catalog = _FlakyCatalog()
    catalog.add_filing_rate("Salmon", "Fillet", 2.0)
    catalog.add_charge_rate("Terminal Charge", "Frozen", "Salmon", 9.0)

    breakdown = PricingEngine(catalog, lookup_timeout=0.1).price(_item(), factory_id=1)

    assert breakdown.processing == 2.0
    assert breakdown.pallet == 0.0
    assert breakdown.terminal == 0.0
    assert {"pallet", "terminal"} <= set(breakdown.missing_components)


class _Stuck:
    def __init__(self, release: threading.Event) -> None:
        self._release = release

    def extract(self, text):
        self._release.wait(10)
        return []


def test_stuck_extractions_do_not_starve_rate_lookups():
    release = threading.Event()
    catalog = InMemoryRateCatalog()
    catalog.add_filing_rate("Salmon", "Fillet", 2.0)
    catalog.add_packaging_rate("Fresh", "Salmon", 1.0)
    try:
        for _ in range(POOL_SIZES[EXTRACTION_POOL] + 2):
            assert extract_line_items(_Stuck(release), "need 5 kg", timeout=0.01).degraded

        breakdown = PricingEngine(catalog, lookup_timeout=1).price(
            _item(production_type="Fresh"), factory_id=1
        )
    finally:
        release.set()

    assert breakdown.processing == 2.0
    assert breakdown.packaging == 1.0
    assert breakdown.total_price == 300.0
    assert "processing" not in breakdown.missing_components

def test_most_specific_packaging_rate_wins():
    catalog = InMemoryRateCatalog()
    catalog.add_packaging_rate("Frozen", "Salmon", 1.0)
    catalog.add_packaging_rate("Frozen", "Salmon", 1.4, packaging_type="VAC")
    catalog.add_packaging_rate("Frozen", "Salmon", 9.9, packaging_type="Bulk")

    assert catalog.packaging_rate("Frozen", "Salmon", "VAC", "Road") == 1.4
    assert catalog.packaging_rate("Frozen", "Salmon", "Box", "Road") == 1.0
    assert catalog.packaging_rate(None, "Salmon", "VAC", None) is None


def test_charge_rates_match_case_insensitively(catalog):
    assert catalog.lookup_rate(1, "pallet charge", "FROZEN", "salmon", None) == 0.1
    assert catalog.lookup_rate(1, "Freezing Rate", "Frozen", "Salmon", "gyro freezing") == 0.9


def test_sql_catalog_matches_in_memory_behaviour(session_factory):
    with session_factory.begin() as session:
        session.add_all(
            [
                FilingRate(product="Salmon", trim_type="Fillet", rm_spec=None, rate=2.0),
                FilingRate(product="Salmon", trim_type="Fillet", rm_spec="3-4kg", rate=2.5),
                PackagingRate(production_type="Frozen", product="Salmon", rate=1.0),
                ChargeRate(
                    factory_id=1,
                    charge_kind="Freezing Rate",
                    production_type="Frozen",
                    product="Salmon",
                    method="Tunnel Freezing",
                    rate_value=0.5,
                    currency="DKK",
                ),
            ]
        )

    catalog = SqlRateCatalog(session_factory, currency="DKK")
    breakdown = PricingEngine(catalog, lookup_timeout=5).price(_item(), factory_id=1)

    assert breakdown.processing == 2.5
    assert breakdown.packaging == 1.0
    assert breakdown.freezing == 0.5
    assert breakdown.filleting == 0.0
    assert "filleting" in breakdown.missing_components
    assert catalog.filing_rate("Salmon", "Fillet", "5-6kg") == 2.0

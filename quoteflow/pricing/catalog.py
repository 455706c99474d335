"""Rate catalog: read-only lookups of per-kilogram charges.

Charge rates (freezing, filleting, pallet, terminal, handling) match on every
key exactly, ignoring case, with a missing method treated as ``""``.
Processing and packaging rates may leave their secondary columns empty to
act as a wildcard; the most specific matching row wins.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Protocol, TypeVar

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from ..models import ChargeRate, FilingRate, PackagingRate

RateRow = TypeVar("RateRow", FilingRate, PackagingRate)


class RateCatalog(Protocol):
    """Read-mostly source of rates injected into the pricing engine."""

    @property
    def currency(self) -> str | None: ...

    def lookup_rate(
        self,
        factory_id: int,
        charge_kind: str,
        production_type: str | None,
        product: str | None,
        method: str | None,
    ) -> float | None: ...

    def filing_rate(
        self, product: str | None, trim_type: str | None, rm_spec: str | None
    ) -> float | None: ...

    def packaging_rate(
        self,
        production_type: str | None,
        product: str | None,
        packaging_type: str | None,
        transport_mode: str | None,
    ) -> float | None: ...


def _norm(value: str | None) -> str:
    return (value or "").strip().lower()


def most_specific(rows: Iterable[RateRow], wanted: Mapping[str, str | None]) -> RateRow | None:
    """Pick the row matching the most non-empty columns in ``wanted``.

    Empty columns on a row match anything; a non-empty column that differs
    rules the row out. Ties keep the first row seen.
    """

    best: RateRow | None = None
    best_score = -1
    for row in rows:
        score = 0
        for attr, value in wanted.items():
            stored = getattr(row, attr)
            if not stored:
                continue
            if _norm(stored) != _norm(value):
                break
            score += 1
        else:
            if score > best_score:
                best, best_score = row, score
    return best


def _charge_matches(
    row: ChargeRate,
    factory_id: int,
    charge_kind: str,
    production_type: str | None,
    product: str | None,
    method: str | None,
) -> bool:
    return (
        row.factory_id == factory_id
        and _norm(row.charge_kind) == _norm(charge_kind)
        and _norm(row.production_type) == _norm(production_type)
        and _norm(row.product) == _norm(product)
        and _norm(row.method) == _norm(method)
    )


class InMemoryRateCatalog:
    """List-backed catalog for tests and offline pricing."""

    def __init__(self, currency: str | None = "DKK") -> None:
        self._currency = currency
        self.charge_rates: list[ChargeRate] = []
        self.filing_rates: list[FilingRate] = []
        self.packaging_rates: list[PackagingRate] = []

    @property
    def currency(self) -> str | None:
        return self._currency

    def add_charge_rate(
        self,
        charge_kind: str,
        production_type: str,
        product: str,
        rate: float,
        *,
        method: str = "",
        factory_id: int = 1,
    ) -> None:
        self.charge_rates.append(
            ChargeRate(
                factory_id=factory_id,
                charge_kind=charge_kind,
                production_type=production_type,
                product=product,
                method=method,
                rate_value=rate,
                currency=self._currency or "DKK",
            )
        )

    def add_filing_rate(
        self, product: str, trim_type: str, rate: float, *, rm_spec: str | None = None
    ) -> None:
        self.filing_rates.append(
            FilingRate(product=product, trim_type=trim_type, rm_spec=rm_spec, rate=rate)
        )

    def add_packaging_rate(
        self,
        production_type: str,
        product: str,
        rate: float,
        *,
        packaging_type: str | None = None,
        transport_mode: str | None = None,
    ) -> None:
        self.packaging_rates.append(
            PackagingRate(
                production_type=production_type,
                product=product,
                packaging_type=packaging_type,
                transport_mode=transport_mode,
                rate=rate,
            )
        )

    def lookup_rate(self, factory_id, charge_kind, production_type, product, method):
        for row in self.charge_rates:
            if _charge_matches(row, factory_id, charge_kind, production_type, product, method):
                return row.rate_value
        return None

    def filing_rate(self, product, trim_type, rm_spec):
        row = most_specific(
            self.filing_rates,
            {"product": product, "trim_type": trim_type, "rm_spec": rm_spec},
        )
        return row.rate if row is not None and product and trim_type else None

    def packaging_rate(self, production_type, product, packaging_type, transport_mode):
        row = most_specific(
            self.packaging_rates,
            {
                "production_type": production_type,
                "product": product,
                "packaging_type": packaging_type,
                "transport_mode": transport_mode,
            },
        )
        return row.rate if row is not None and production_type and product else None


class SqlRateCatalog:
    """Catalog backed by the ``charge_rates``, ``filing_rates`` and
    ``packaging_rates`` tables.

    Each lookup opens its own short-lived session so lookups can run on the
    bounded worker pool without sharing a request session across threads.
    """

    def __init__(self, session_factory: sessionmaker[Session], currency: str | None = None) -> None:
        self._session_factory = session_factory
        self._currency = currency

    @property
    def currency(self) -> str | None:
        return self._currency

    def lookup_rate(self, factory_id, charge_kind, production_type, product, method):
        stmt = (
            select(ChargeRate.rate_value)
            .where(ChargeRate.factory_id == factory_id)
            .where(func.lower(ChargeRate.charge_kind) == _norm(charge_kind))
            .where(func.lower(ChargeRate.production_type) == _norm(production_type))
            .where(func.lower(ChargeRate.product) == _norm(product))
            .where(func.lower(func.coalesce(ChargeRate.method, "")) == _norm(method))
            .order_by(ChargeRate.id)
            .limit(1)
        )
        with self._session_factory() as session:
            return session.scalars(stmt).first()

    def filing_rate(self, product, trim_type, rm_spec):
        if not product or not trim_type:
            return None
        stmt = (
            select(FilingRate)
            .where(func.lower(FilingRate.product) == _norm(product))
            .where(func.lower(FilingRate.trim_type) == _norm(trim_type))
            .order_by(FilingRate.id)
        )
        with self._session_factory() as session:
            row = most_specific(session.scalars(stmt), {"rm_spec": rm_spec})
            return row.rate if row is not None else None

    def packaging_rate(self, production_type, product, packaging_type, transport_mode):
        if not production_type or not product:
            return None
        stmt = (
            select(PackagingRate)
            .where(func.lower(PackagingRate.production_type) == _norm(production_type))
            .where(func.lower(PackagingRate.product) == _norm(product))
            .order_by(PackagingRate.id)
        )
        with self._session_factory() as session:
            row = most_specific(
                session.scalars(stmt),
                {"packaging_type": packaging_type, "transport_mode": transport_mode},
            )
            return row.rate if row is not None else None


__all__ = ["InMemoryRateCatalog", "RateCatalog", "SqlRateCatalog", "most_specific"]

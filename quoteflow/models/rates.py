"""Rate tables read by the pricing engine.

``charge_rates`` holds the factory-scoped charges (freezing, filleting,
pallet, terminal, handling) keyed by charge kind, production type, product and
method. Processing and packaging have their own tables because they are keyed
differently.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import Float, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from . import Base


class ChargeRate(Base):
    __tablename__ = "charge_rates"
    __table_args__ = (
        Index(
            "ix_charge_rates_lookup",
            "factory_id",
            "charge_kind",
            "production_type",
            "product",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    factory_id: Mapped[int] = mapped_column(Integer, nullable=False)
    charge_kind: Mapped[str] = mapped_column(String(length=64), nullable=False)
    production_type: Mapped[str] = mapped_column(String(length=64), nullable=False)
    product: Mapped[str] = mapped_column(String(length=255), nullable=False)
    method: Mapped[str] = mapped_column(String(length=64), nullable=False, default="")
    rate_value: Mapped[float] = mapped_column(Float, nullable=False)
    currency: Mapped[str] = mapped_column(String(length=8), nullable=False, default="DKK")


class FilingRate(Base):
    """Processing (filleting line) rate per product, trim and raw material spec."""

    __tablename__ = "filing_rates"
    __table_args__ = (Index("ix_filing_rates_lookup", "product", "trim_type"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product: Mapped[str] = mapped_column(String(length=255), nullable=False)
    trim_type: Mapped[str] = mapped_column(String(length=128), nullable=False)
    rm_spec: Mapped[Optional[str]] = mapped_column(String(length=128))
    rate: Mapped[float] = mapped_column(Float, nullable=False)


class PackagingRate(Base):
    __tablename__ = "packaging_rates"
    __table_args__ = (
        Index("ix_packaging_rates_lookup", "production_type", "product"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    production_type: Mapped[str] = mapped_column(String(length=64), nullable=False)
    product: Mapped[str] = mapped_column(String(length=255), nullable=False)
    packaging_type: Mapped[Optional[str]] = mapped_column(String(length=128))
    transport_mode: Mapped[Optional[str]] = mapped_column(String(length=64))
    rate: Mapped[float] = mapped_column(Float, nullable=False)


__all__ = ["ChargeRate", "FilingRate", "PackagingRate"]

"""Pydantic schemas for the quote APIs."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from .models import QuoteItemOverride


class QuoteItemOverridePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    quantity: int = Field(ge=0)
    total_cost: float = Field(alias="totalCost", ge=0)
    currency: str | None = None
    product: str | None = None
    trim_type: str | None = Field(default=None, alias="trimType")
    rm_spec: str | None = Field(default=None, alias="rmSpec")
    production_type: str | None = Field(default=None, alias="productionType")
    packaging_type: str | None = Field(default=None, alias="packagingType")
    transport_mode: str | None = Field(default=None, alias="transportMode")
    special_instructions: str | None = Field(default=None, alias="specialInstructions")
    description: str | None = None

    def to_override(self) -> QuoteItemOverride:
        return QuoteItemOverride(**self.model_dump())


class GenerateQuoteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    conversation_id: str = Field(alias="conversationId", min_length=1)
    # ``None`` entries keep engine pricing for the item at that index.
    overrides: list[QuoteItemOverridePayload | None] = Field(default_factory=list)

    def to_overrides(self) -> list[QuoteItemOverride | None]:
        return [entry.to_override() if entry is not None else None for entry in self.overrides]


class QuoteItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int | None = None
    conversation_item_id: int | None = None
    position: int
    description: str
    quantity: int
    unit_price: float
    total_price: float
    currency: str
    notes: str | None = None


class QuoteOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    quote_number: str
    status: str
    total_amount: float
    currency: str
    validity_period: str
    customer_id: int | None = None
    conversation_external_id: str
    created_at: datetime
    sent_at: datetime | None = None
    accepted_at: datetime | None = None
    rejected_at: datetime | None = None
    items: list[QuoteItemOut] = Field(default_factory=list)


__all__ = ["GenerateQuoteRequest", "QuoteItemOut", "QuoteItemOverridePayload", "QuoteOut"]

"""Pydantic schemas for the webhook and conversation APIs."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .models import InboundEmail


class InboundEmailPayload(BaseModel):
    """Email as posted by the forwarding service.

    Field names follow the forwarder's camelCase JSON; snake_case is accepted
    too.
    """

    model_config = ConfigDict(populate_by_name=True)

    sender: str = Field(alias="from", min_length=1)
    subject: str | None = None
    body: str | None = None
    to: str | None = None
    message_id: str | None = Field(default=None, alias="messageId")
    thread_id: str | None = Field(default=None, alias="threadId")
    conversation_id: str | None = Field(default=None, alias="conversationId")
    in_reply_to: str | None = Field(default=None, alias="inReplyTo")
    received_at: datetime | None = Field(default=None, alias="receivedAt")

    def to_inbound_email(self) -> InboundEmail:
        return InboundEmail(
            sender=self.sender,
            subject=self.subject,
            body=self.body,
            recipient=self.to,
            message_id=self.message_id,
            provider_thread_id=self.thread_id,
            conversation_id=self.conversation_id,
            in_reply_to=self.in_reply_to,
            received_at=self.received_at,
        )


class WebhookResponse(BaseModel):
    success: bool = True
    outcome: str
    email_type: str
    stage: str
    thread_key: str
    suggested_action: str
    conversation_id: str | None = None
    status: str | None = None
    items_extracted: int = 0
    extraction_degraded: bool = False
    quote_reference: str | None = None
    order_reference: str | None = None


class ConversationItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int | None = None
    position: int
    product: str | None = None
    trim_type: str | None = None
    rm_spec: str | None = None
    production_type: str | None = None
    packaging_type: str | None = None
    pack_material: str | None = None
    box_quantity: str | None = None
    transport_mode: str | None = None
    requested_quantity: int | None = None
    delivery_requirement: str | None = None
    special_instructions: str | None = None
    customer_sku_reference: str | None = None
    product_description: str | None = None
    mapping_confidence: str
    unit_price: float | None = None
    total_price: float | None = None
    currency: str | None = None


class ConversationSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    external_id: str
    thread_key: str
    from_email: str
    subject: str | None = None
    status: str
    customer_id: int | None = None
    received_at: datetime
    processed: bool
    processed_at: datetime | None = None


class ConversationDetail(ConversationSummary):
    body: str | None = None
    processing_notes: str = ""
    items: list[ConversationItemOut] = Field(default_factory=list)


class StatusUpdateRequest(BaseModel):
    status: str


class InboundEmailRecordOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    message_key: str
    thread_key: str
    sender: str
    subject: str | None = None
    email_type: str
    stage: str
    outcome: str
    conversation_external_id: str | None = None
    received_at: datetime


class DashboardStats(BaseModel):
    total_conversations: int
    total_customers: int
    orphaned_emails: int
    by_status: dict[str, int]
    recent: list[ConversationSummary]

    @classmethod
    def from_stats(cls, stats: dict[str, Any]) -> "DashboardStats":
        return cls.model_validate(stats, from_attributes=True)


__all__ = [
    "ConversationDetail",
    "ConversationItemOut",
    "ConversationSummary",
    "DashboardStats",
    "InboundEmailPayload",
    "InboundEmailRecordOut",
    "StatusUpdateRequest",
    "WebhookResponse",
]

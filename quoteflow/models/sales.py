"""Sales pipeline SQLAlchemy models.

Conversations track one inbound email thread from first enquiry to order or
cancellation. Their ``thread_key`` is unique among live conversations only:
the partial index below excludes CONVERTED and CANCELLED rows so a closed
thread can be reopened by a fresh enquiry.

The same classes double as the in-memory domain objects used by the
repositories in tests, so every column the services rely on is assigned
explicitly when an instance is built rather than through column defaults.
"""

from __future__ import annotations

import datetime as dt
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from . import Base

_LIVE_CONVERSATION = text("status NOT IN ('CONVERTED', 'CANCELLED')")


def _utcnow() -> dt.datetime:
    """Return the current UTC timestamp with timezone awareness."""

    return dt.datetime.now(dt.timezone.utc)


class Customer(Base):
    """A buyer identified by the address they write from."""

    __tablename__ = "customers"
    __table_args__ = (Index("ix_customers_email_unique", "email", unique=True),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_name: Mapped[str] = mapped_column(String(length=255), nullable=False)
    contact_person: Mapped[str] = mapped_column(String(length=255), nullable=False)
    email: Mapped[str] = mapped_column(String(length=320), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(length=64))
    address: Mapped[str] = mapped_column(
        String(length=512), nullable=False, default="Not provided"
    )
    country: Mapped[str] = mapped_column(
        String(length=128), nullable=False, default="Unknown"
    )
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )


class Conversation(Base):
    """A sales conversation driven by inbound emails.

    Attributes:
        external_id: Public identifier (``ENQ-<sequence>``).
        thread_key: Correlation key produced by the thread resolver.
        body: Raw body of the most recent email applied.
        processing_notes: Append-only history log, one timestamped line per
            applied email.
        processed_message_ids: Message ids (or fingerprints) already applied,
            used to make webhook replays harmless.
        version: Optimistic concurrency counter maintained by SQLAlchemy.
    """

    __tablename__ = "conversations"
    __table_args__ = (
        Index("ix_conversations_external_id_unique", "external_id", unique=True),
        Index("ix_conversations_thread_key", "thread_key"),
        Index(
            "ux_conversations_live_thread_key",
            "thread_key",
            unique=True,
            postgresql_where=_LIVE_CONVERSATION,
            sqlite_where=_LIVE_CONVERSATION,
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_id: Mapped[str] = mapped_column(String(length=64), nullable=False)
    thread_key: Mapped[str] = mapped_column(String(length=512), nullable=False)
    from_email: Mapped[str] = mapped_column(String(length=320), nullable=False)
    subject: Mapped[Optional[str]] = mapped_column(Text)
    body: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(length=32), nullable=False)
    customer_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("customers.id", ondelete="SET NULL")
    )
    processing_notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    received_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    processed_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True))
    processed_message_ids: Mapped[List[str]] = mapped_column(
        JSON, nullable=False, default=list
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    items: Mapped[List["ConversationItem"]] = relationship(
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="ConversationItem.position",
    )

    __mapper_args__ = {"version_id_col": version}


class ConversationItem(Base):
    """A requested product line extracted from a conversation email."""

    __tablename__ = "conversation_items"
    __table_args__ = (Index("ix_conversation_items_conversation_id", "conversation_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    conversation_id: Mapped[int] = mapped_column(
        ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    product: Mapped[Optional[str]] = mapped_column(String(length=255))
    trim_type: Mapped[Optional[str]] = mapped_column(String(length=128))
    rm_spec: Mapped[Optional[str]] = mapped_column(String(length=128))
    production_type: Mapped[Optional[str]] = mapped_column(String(length=64))
    packaging_type: Mapped[Optional[str]] = mapped_column(String(length=128))
    pack_material: Mapped[Optional[str]] = mapped_column(String(length=128))
    box_quantity: Mapped[Optional[str]] = mapped_column(String(length=64))
    transport_mode: Mapped[Optional[str]] = mapped_column(String(length=64))
    requested_quantity: Mapped[Optional[int]] = mapped_column(Integer)
    delivery_requirement: Mapped[Optional[str]] = mapped_column(String(length=128))
    special_instructions: Mapped[Optional[str]] = mapped_column(Text)
    customer_sku_reference: Mapped[Optional[str]] = mapped_column(String(length=128))
    product_description: Mapped[Optional[str]] = mapped_column(Text)
    mapping_confidence: Mapped[str] = mapped_column(
        String(length=16), nullable=False, default="LOW"
    )
    unit_price: Mapped[Optional[float]] = mapped_column(Float)
    total_price: Mapped[Optional[float]] = mapped_column(Float)
    currency: Mapped[Optional[str]] = mapped_column(String(length=8))
    source_message_id: Mapped[Optional[str]] = mapped_column(String(length=512))

    conversation: Mapped[Conversation] = relationship(back_populates="items")


class Quote(Base):
    """A priced offer assembled from a conversation's items."""

    __tablename__ = "quotes"
    __table_args__ = (
        Index("ix_quotes_quote_number_unique", "quote_number", unique=True),
        Index("ix_quotes_conversation_id", "conversation_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    quote_number: Mapped[str] = mapped_column(String(length=32), nullable=False)
    status: Mapped[str] = mapped_column(String(length=16), nullable=False)
    total_amount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    currency: Mapped[str] = mapped_column(String(length=8), nullable=False)
    validity_period: Mapped[str] = mapped_column(String(length=64), nullable=False)
    customer_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("customers.id", ondelete="SET NULL")
    )
    conversation_id: Mapped[int] = mapped_column(
        ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    conversation_external_id: Mapped[str] = mapped_column(String(length=64), nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    sent_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True))
    accepted_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True))
    rejected_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True))

    items: Mapped[List["QuoteItem"]] = relationship(
        back_populates="quote",
        cascade="all, delete-orphan",
        order_by="QuoteItem.position",
    )


class QuoteItem(Base):
    """One priced line of a quote."""

    __tablename__ = "quote_items"
    __table_args__ = (Index("ix_quote_items_quote_id", "quote_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    quote_id: Mapped[int] = mapped_column(
        ForeignKey("quotes.id", ondelete="CASCADE"), nullable=False
    )
    conversation_item_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("conversation_items.id", ondelete="SET NULL")
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    unit_price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total_price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    currency: Mapped[str] = mapped_column(String(length=8), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    quote: Mapped[Quote] = relationship(back_populates="items")


class InboundEmailRecord(Base):
    """Audit row for every inbound email, including orphans left for review."""

    __tablename__ = "inbound_emails"
    __table_args__ = (
        Index("ix_inbound_emails_thread_key", "thread_key"),
        Index("ix_inbound_emails_outcome", "outcome"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    message_key: Mapped[str] = mapped_column(String(length=512), nullable=False)
    thread_key: Mapped[str] = mapped_column(String(length=512), nullable=False)
    sender: Mapped[str] = mapped_column(String(length=320), nullable=False)
    subject: Mapped[Optional[str]] = mapped_column(Text)
    email_type: Mapped[str] = mapped_column(String(length=32), nullable=False)
    stage: Mapped[str] = mapped_column(String(length=32), nullable=False)
    outcome: Mapped[str] = mapped_column(String(length=16), nullable=False)
    conversation_external_id: Mapped[Optional[str]] = mapped_column(String(length=64))
    received_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )


__all__ = [
    "Conversation",
    "ConversationItem",
    "Customer",
    "InboundEmailRecord",
    "Quote",
    "QuoteItem",
]

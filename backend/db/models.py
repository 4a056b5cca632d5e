"""
SwiftBuyBack Database Models

Tables:
  1. orders        - Device buyback orders, one row per submission
  2. order_events  - Append-only audit trail of lifecycle transitions and
                     failed side effects

Status is only ever written through the conditional updates in
orders.store, never by assigning Order.status on a loaded instance.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    String,
    Text,
    TypeDecorator,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID

from db.session import Base


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


# ─── 1. Orders ─────────────────────────────────────────────────────────────


class Order(Base):
    __tablename__ = "orders"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    order_number = Column(String(6), nullable=False, unique=True)  # NN-NNN
    status = Column(String(32), nullable=False, default="pending_shipment")

    # What the buyer is selling
    device = Column(String(120))
    storage = Column(String(32))
    carrier = Column(String(64))
    condition = Column(JSON, default=dict)
    estimated_quote = Column(Float, nullable=False)

    payment_method = Column(String(32))
    payment_details = Column(JSON, default=dict)

    # full_name, email, phone, street_address, city, state, postal_code
    shipping_info = Column(JSON, nullable=False)

    # Re-offer sub-record (overwritten by a fresh re-offer)
    reoffer_price = Column(Float)
    reoffer_reasons = Column(JSON)
    reoffer_comments = Column(Text)
    reoffered_at = Column(DateTime)
    reoffer_deadline = Column(DateTime)
    reoffer_resolved_at = Column(DateTime)
    reoffer_resolution = Column(String(32))  # offer_accepted, return_requested, auto_accepted

    # External correlation
    thread_id = Column(String(64))
    label_url = Column(Text)
    tracking_number = Column(String(64))
    return_label_url = Column(Text)
    return_tracking_number = Column(String(64))

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    label_generated_at = Column(DateTime)
    accepted_at = Column(DateTime)
    declined_at = Column(DateTime)
    return_requested_at = Column(DateTime)
    return_label_generated_at = Column(DateTime)

    __table_args__ = (
        Index("ix_orders_status_deadline", "status", "reoffer_deadline"),
        CheckConstraint("estimated_quote > 0", name="ck_orders_quote_positive"),
        CheckConstraint(
            "status IN ('pending_shipment', 'label_generated', 're-offer_pending', 'offer_accepted', "
            "'return_requested', 'auto_accepted', 'return_label_generated')",
            name="ck_orders_status",
        ),
    )

    @property
    def reoffer(self) -> dict | None:
        """Re-offer sub-record, or None if no re-offer was ever issued."""
        if self.reoffered_at is None:
            return None
        return {
            "new_price": self.reoffer_price,
            "reasons": list(self.reoffer_reasons or []),
            "comments": self.reoffer_comments,
            "created_at": self.reoffered_at,
            "auto_resolve_deadline": self.reoffer_deadline,
            "resolved_at": self.reoffer_resolved_at,
            "resolution_kind": self.reoffer_resolution,
        }


# ─── 2. Order Events ───────────────────────────────────────────────────────


class OrderEvent(Base):
    __tablename__ = "order_events"

    event_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    order_id = Column(GUID(), ForeignKey("orders.id"), nullable=False)
    trigger = Column(String(32), nullable=False)
    from_status = Column(String(32))
    to_status = Column(String(32))
    actor = Column(String(16), nullable=False, default="admin")  # admin, buyer, scheduler
    detail = Column(JSON, default=dict)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (Index("ix_order_events_order", "order_id", "created_at"),)

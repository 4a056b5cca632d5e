"""
Order Store Adapter: keyed document access over the orders table.

All writes that guard lifecycle state are single conditional UPDATEs
(compare-and-set on status or on a column being unset). The caller learns
whether it won from the boolean result, never by re-reading first.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Order, OrderEvent

logger = structlog.get_logger()


class DuplicateOrderNumberError(Exception):
    """Insert lost a race on the unique order_number column."""


def utcnow() -> datetime:
    """Naive UTC, matching how DateTime columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def is_order_number_collision(exc: IntegrityError) -> bool:
    """Unique violation on order_number (SQLite and PostgreSQL wording)."""
    message = str(exc.orig).lower()
    return "order_number" in message and ("unique" in message or "duplicate" in message)


def _as_uuid(value: Any) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


class OrderStore:
    """SQLAlchemy-backed order store bound to one session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, order_id: Any) -> Order | None:
        try:
            key = _as_uuid(order_id)
        except ValueError:
            return None
        return await self.db.get(Order, key, populate_existing=True)

    async def get_by_order_number(self, order_number: str) -> Order | None:
        result = await self.db.execute(
            select(Order).where(Order.order_number == order_number).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list(self, *, status: str | None = None, skip: int = 0, limit: int = 50) -> list[Order]:
        query = select(Order)
        if status:
            query = query.where(Order.status == status)
        query = query.order_by(Order.created_at.desc()).offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def create(self, fields: dict[str, Any], *, event: dict[str, Any] | None = None) -> Order:
        order = Order(**fields)
        self.db.add(order)
        try:
            await self.db.flush()
            if event is not None:
                self.db.add(OrderEvent(order_id=order.id, **event))
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            if is_order_number_collision(exc):
                raise DuplicateOrderNumberError(fields.get("order_number")) from exc
            raise
        await self.db.refresh(order)
        return order

    async def update(
        self,
        order_id: Any,
        fields: dict[str, Any],
        *,
        expected_status: str | None = None,
        match: dict[str, Any] | None = None,
        event: dict[str, Any] | None = None,
    ) -> bool:
        """
        Apply ``fields`` to one order if every condition still holds.

        ``expected_status`` guards on the current status; ``match`` guards on
        other columns (a ``None`` value means the column must be unset).
        Returns False, with nothing written, when any guard fails.
        """
        key = _as_uuid(order_id)
        conditions = [Order.id == key]
        if expected_status is not None:
            conditions.append(Order.status == expected_status)
        for column_name, value in (match or {}).items():
            column = getattr(Order, column_name)
            conditions.append(column.is_(None) if value is None else column == value)

        values = {**fields, "updated_at": utcnow()}
        result = await self.db.execute(
            update(Order).where(*conditions).values(**values).execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # End the transaction without expiring loaded instances.
            await self.db.commit()
            return False

        if event is not None:
            self.db.add(OrderEvent(order_id=key, **event))
        await self.db.commit()
        return True

    async def rollback(self) -> None:
        await self.db.rollback()

    async def record_event(self, order_id: Any, **event: Any) -> None:
        self.db.add(OrderEvent(order_id=_as_uuid(order_id), **event))
        await self.db.commit()

    async def list_events(self, order_id: Any) -> list[OrderEvent]:
        result = await self.db.execute(
            select(OrderEvent)
            .where(OrderEvent.order_id == _as_uuid(order_id))
            .order_by(OrderEvent.created_at, OrderEvent.event_id)
        )
        return list(result.scalars().all())

    async def due_reoffers(self, now: datetime) -> list[uuid.UUID]:
        """Ids of orders awaiting a buyer answer whose deadline has passed."""
        result = await self.db.execute(
            select(Order.id)
            .where(Order.status == "re-offer_pending", Order.reoffer_deadline <= now)
            .order_by(Order.reoffer_deadline)
        )
        return [row.id for row in result.all()]

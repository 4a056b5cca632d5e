"""
Shared test doubles: provider fakes that record every call, an in-memory order
store with the same conditional-update contract as the SQL store, a settable
clock, and order payload builders.

InMemoryOrderStore performs each check-and-set in one uninterrupted step (like
the SQL UPDATE) with a yield point before it, so concurrent callers genuinely
interleave.
"""

from __future__ import annotations

import asyncio
import copy
import itertools
import uuid
from datetime import datetime, timedelta
from types import SimpleNamespace

from db.models import Order
from integrations.base import (
    Address,
    LabelProvider,
    LabelResult,
    PackageSpec,
    ProviderError,
    ThreadProvider,
    Visibility,
)
from orders.labels import LabelDirectionResolver
from orders.lifecycle import OrderLifecycle
from orders.numbers import OrderNumberGenerator
from orders.store import DuplicateOrderNumberError
from orders.threads import ThreadBinder

BUSINESS = Address(
    name="SwiftBuyBack",
    street="1795 west 3rd st",
    city="Anytown",
    state="CA",
    postal_code="90210",
)

NOW = datetime(2026, 3, 2, 12, 0, 0)

ORDER_COLUMNS = [column.name for column in Order.__table__.columns]


def shipping_info(**overrides) -> dict:
    info = {
        "full_name": "Dana Whitfield",
        "email": "dana@example.com",
        "phone": "555-0100",
        "street_address": "12 Elm St",
        "city": "Springfield",
        "state": "IL",
        "postal_code": "62701",
    }
    info.update(overrides)
    return info


def order_payload(**overrides) -> dict:
    payload = {
        "device": "iPhone 14 Pro",
        "storage": "256GB",
        "carrier": "Unlocked",
        "condition": {"power": "yes", "cosmetic": "good"},
        "estimated_quote": 520.0,
        "payment_method": "zelle",
        "payment_details": {"zelle_email": "dana@example.com"},
        "shipping_info": shipping_info(),
    }
    payload.update(overrides)
    return payload


# ─── Provider fakes ────────────────────────────────────────────────────────


class RecordingThreadProvider(ThreadProvider):
    """Records every call; thread ids are T-1, T-2, ..."""

    name = "recording"

    def __init__(self, *, create_delay: float = 0.0):
        super().__init__({})
        self.threads: list[dict] = []
        self.comments: list[dict] = []
        self.create_delay = create_delay
        self.fail_create = False
        self.fail_comment = False
        self._ids = itertools.count(1)

    async def create_thread(self, requester, subject, body, visibility=Visibility.PUBLIC, tags=None):
        if self.create_delay:
            await asyncio.sleep(self.create_delay)
        if self.fail_create:
            raise ProviderError(self.name, "ticket creation failed", status_code=503)
        thread_id = f"T-{next(self._ids)}"
        self.threads.append(
            {
                "thread_id": thread_id,
                "requester": requester,
                "subject": subject,
                "body": body,
                "visibility": visibility,
                "tags": list(tags or []),
            }
        )
        return thread_id

    async def append_comment(self, thread_id, body, visibility=Visibility.PUBLIC):
        if self.fail_comment:
            raise ProviderError(self.name, "comment failed", status_code=503)
        self.comments.append({"thread_id": thread_id, "body": body, "visibility": visibility})

    def comments_on(self, thread_id: str) -> list[dict]:
        return [comment for comment in self.comments if comment["thread_id"] == thread_id]


class RecordingLabelProvider(LabelProvider):
    """Records every purchase; URLs embed the reference and a running counter."""

    name = "recording"

    def __init__(self):
        super().__init__({})
        self.calls: list[dict] = []
        self.fail = False

    async def create_label(self, ship_from, ship_to, package, reference):
        if self.fail:
            raise ProviderError(self.name, "label purchase failed", status_code=500)
        self.calls.append(
            {"ship_from": ship_from, "ship_to": ship_to, "package": package, "reference": reference}
        )
        n = len(self.calls)
        return LabelResult(label_url=f"https://labels.test/{reference}/{n}.pdf", tracking_number=f"TRK{n:04d}")


# ─── In-memory store ───────────────────────────────────────────────────────


class InMemoryOrderStore:
    """Same contract as orders.store.OrderStore, backed by dicts."""

    def __init__(self):
        self.rows: dict[uuid.UUID, dict] = {}
        self.events: list[dict] = []
        self.rollbacks = 0

    def _snapshot(self, row: dict | None):
        if row is None:
            return None
        return SimpleNamespace(**copy.deepcopy(row))

    async def get(self, order_id):
        await asyncio.sleep(0)
        try:
            key = order_id if isinstance(order_id, uuid.UUID) else uuid.UUID(str(order_id))
        except ValueError:
            return None
        return self._snapshot(self.rows.get(key))

    async def get_by_order_number(self, order_number):
        await asyncio.sleep(0)
        for row in self.rows.values():
            if row["order_number"] == order_number:
                return self._snapshot(row)
        return None

    async def list(self, *, status=None, skip=0, limit=50):
        rows = [row for row in self.rows.values() if status is None or row["status"] == status]
        rows.sort(key=lambda row: row["created_at"], reverse=True)
        return [self._snapshot(row) for row in rows[skip : skip + limit]]

    async def create(self, fields, *, event=None):
        await asyncio.sleep(0)
        if any(row["order_number"] == fields["order_number"] for row in self.rows.values()):
            raise DuplicateOrderNumberError(fields["order_number"])
        row = {name: None for name in ORDER_COLUMNS}
        row.update(copy.deepcopy(fields))
        row["id"] = row["id"] or uuid.uuid4()
        self.rows[row["id"]] = row
        if event is not None:
            self.events.append({"order_id": row["id"], **event})
        return self._snapshot(row)

    async def update(self, order_id, fields, *, expected_status=None, match=None, event=None):
        await asyncio.sleep(0)
        row = self.rows.get(order_id)
        if row is None:
            return False
        if expected_status is not None and row["status"] != expected_status:
            return False
        for name, value in (match or {}).items():
            if row[name] != value:
                return False
        row.update(copy.deepcopy(fields))
        row["updated_at"] = NOW
        if event is not None:
            self.events.append({"order_id": order_id, **event})
        return True

    async def rollback(self):
        self.rollbacks += 1

    async def record_event(self, order_id, **event):
        self.events.append({"order_id": order_id, **event})

    async def list_events(self, order_id):
        return [SimpleNamespace(**event) for event in self.events if event["order_id"] == order_id]

    async def due_reoffers(self, now):
        return [
            row["id"]
            for row in self.rows.values()
            if row["status"] == "re-offer_pending" and row["reoffer_deadline"] and row["reoffer_deadline"] <= now
        ]

    def events_for(self, order_id, trigger=None) -> list[dict]:
        return [
            event
            for event in self.events
            if event["order_id"] == order_id and (trigger is None or event["trigger"] == trigger)
        ]


class Clock:
    """Settable clock for lifecycle tests."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def build_lifecycle(store, thread_provider, label_provider, *, clock=None, draw=None) -> OrderLifecycle:
    clock = clock or Clock()
    threads = ThreadBinder(store, thread_provider, claim_poll_seconds=0.01, claim_poll_attempts=50, clock=clock)
    return OrderLifecycle(
        store,
        threads,
        LabelDirectionResolver(label_provider, BUSINESS, PackageSpec()),
        numbers=OrderNumberGenerator(store, draw=draw),
        frontend_url="https://buyback.test",
        clock=clock,
    )



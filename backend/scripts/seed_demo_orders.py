"""
Seed Demo Orders: Creates buyback orders in every lifecycle status for development.

No provider is called: label URLs and thread ids are placeholders, and the
status history is written straight to the store with matching audit events.

Run: python scripts/seed_demo_orders.py
"""

import asyncio
import random
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import get_settings
from db.session import create_tables, make_engine
from orders.numbers import OrderNumberGenerator
from orders.store import OrderStore, utcnow

settings = get_settings()

# Seed data constants
DEVICES = [
    ("iPhone 14 Pro", "256GB", "Unlocked", 520.0),
    ("iPhone 13", "128GB", "Verizon", 310.0),
    ("Galaxy S23", "256GB", "T-Mobile", 380.0),
    ("Pixel 8", "128GB", "Unlocked", 290.0),
    ("iPhone 12 mini", "64GB", "AT&T", 140.0),
]
BUYERS = [
    ("Dana Whitfield", "dana@example.com", "12 Elm St", "Springfield", "IL", "62701"),
    ("Marco Reyes", "marco@example.com", "450 Ocean Ave", "Long Beach", "CA", "90802"),
    ("Priya Natarajan", "priya@example.com", "88 Pine Rd", "Austin", "TX", "73301"),
]
REOFFER_REASONS = ["Cracked back glass", "Battery health below 80%", "Screen burn-in", "Activation lock on"]

# Lifecycle path each demo order is walked along; the last entry is where it stops.
PATHS = [
    ["pending_shipment"],
    ["pending_shipment", "label_generated"],
    ["pending_shipment", "label_generated", "re-offer_pending"],
    ["pending_shipment", "label_generated", "re-offer_pending", "offer_accepted"],
    ["pending_shipment", "label_generated", "re-offer_pending", "return_requested"],
    ["pending_shipment", "label_generated", "re-offer_pending", "return_requested", "return_label_generated"],
    ["pending_shipment", "label_generated", "re-offer_pending", "auto_accepted"],
]

TRIGGERS = {
    "label_generated": ("generate_label", "admin"),
    "re-offer_pending": ("submit_reoffer", "admin"),
    "offer_accepted": ("accept_offer", "buyer"),
    "return_requested": ("decline_offer", "buyer"),
    "auto_accepted": ("auto_resolve", "scheduler"),
    "return_label_generated": ("generate_return_label", "admin"),
}


def _fields_for(status: str, order, at: datetime) -> dict:
    number = order.order_number
    if status == "label_generated":
        return {
            "label_url": f"https://labels.example.com/{number}.pdf",
            "tracking_number": f"9400{random.randint(10**15, 10**16 - 1)}",
            "label_generated_at": at,
            "thread_id": str(random.randint(10_000, 99_999)),
        }
    if status == "re-offer_pending":
        return {
            "reoffer_price": round(order.estimated_quote * random.uniform(0.5, 0.85), 2),
            "reoffer_reasons": random.sample(REOFFER_REASONS, k=2),
            "reoffer_comments": "Seeded demo re-offer",
            "reoffered_at": at,
            "reoffer_deadline": at + timedelta(days=settings.reoffer_window_days),
        }
    if status in ("offer_accepted", "auto_accepted"):
        return {"accepted_at": at, "reoffer_resolved_at": at, "reoffer_resolution": status}
    if status == "return_requested":
        return {
            "declined_at": at,
            "return_requested_at": at,
            "reoffer_resolved_at": at,
            "reoffer_resolution": status,
        }
    if status == "return_label_generated":
        return {
            "return_label_url": f"https://labels.example.com/{number}-return.pdf",
            "return_tracking_number": f"9400{random.randint(10**15, 10**16 - 1)}",
            "return_label_generated_at": at,
        }
    return {}


async def seed_data():
    """Create demo orders for development."""
    engine = make_engine(settings.database_url)
    await create_tables(engine)

    SessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with SessionLocal() as db:
        store = OrderStore(db)
        numbers = OrderNumberGenerator(store, max_attempts=settings.order_number_max_attempts)
        created = []

        for i, path in enumerate(PATHS):
            device, storage, carrier, quote = DEVICES[i % len(DEVICES)]
            name, email, street, city, state, postal = BUYERS[i % len(BUYERS)]
            # Auto-accepted demo orders need a deadline that has already passed
            at = utcnow() - timedelta(days=10 if path[-1] == "auto_accepted" else len(path))

            order = await numbers.create_order(
                {
                    "device": device,
                    "storage": storage,
                    "carrier": carrier,
                    "condition": {"power": "yes", "functionality": "yes", "cosmetic": "good"},
                    "estimated_quote": quote,
                    "payment_method": "zelle",
                    "payment_details": {"zelle_email": email},
                    "shipping_info": {
                        "full_name": name,
                        "email": email,
                        "street_address": street,
                        "city": city,
                        "state": state,
                        "postal_code": postal,
                    },
                    "status": path[0],
                    "created_at": at,
                    "updated_at": at,
                },
                event={
                    "trigger": "submit",
                    "from_status": None,
                    "to_status": path[0],
                    "actor": "buyer",
                    "detail": {"seeded": True},
                    "created_at": at,
                },
            )

            previous = path[0]
            for status in path[1:]:
                at += timedelta(hours=6) if status != "auto_accepted" else timedelta(days=8)
                trigger, actor = TRIGGERS[status]
                await store.update(
                    order.id,
                    {"status": status, **_fields_for(status, order, at)},
                    expected_status=previous,
                    event={
                        "trigger": trigger,
                        "from_status": previous,
                        "to_status": status,
                        "actor": actor,
                        "detail": {"seeded": True},
                        "created_at": at,
                    },
                )
                order = await store.get(order.id)
                previous = status

            created.append((order.order_number, order.status))

    await engine.dispose()

    print(f"Seeded {len(created)} demo orders:")
    for order_number, status in created:
        print(f"  #{order_number}  {status}")


if __name__ == "__main__":
    asyncio.run(seed_data())

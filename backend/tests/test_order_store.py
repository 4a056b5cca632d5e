"""SQL order store: insert error mapping and conditional updates on SQLite."""

import pytest
from sqlalchemy.exc import IntegrityError

from order_fakes import NOW, shipping_info
from orders.store import DuplicateOrderNumberError, OrderStore, is_order_number_collision


def fields(order_number="12-345", **overrides):
    row = {
        "order_number": order_number,
        "status": "pending_shipment",
        "estimated_quote": 100.0,
        "shipping_info": shipping_info(),
        "created_at": NOW,
        "updated_at": NOW,
    }
    row.update(overrides)
    return row


async def test_duplicate_order_number_is_a_collision(test_db):
    store = OrderStore(test_db)
    await store.create(fields())

    with pytest.raises(DuplicateOrderNumberError):
        await store.create(fields())


async def test_other_integrity_errors_are_not_collisions(test_db):
    store = OrderStore(test_db)

    with pytest.raises(IntegrityError):
        await store.create(fields(estimated_quote=-1.0))

    order = await store.create(fields(order_number="54-321"))
    assert order.order_number == "54-321"


@pytest.mark.parametrize(
    "message,collision",
    [
        ("UNIQUE constraint failed: orders.order_number", True),
        ('duplicate key value violates unique constraint "orders_order_number_key"', True),
        ("NOT NULL constraint failed: orders.estimated_quote", False),
        ("CHECK constraint failed: ck_orders_quote_positive", False),
    ],
)
def test_is_order_number_collision(message, collision):
    exc = IntegrityError("INSERT INTO orders ...", {}, Exception(message))
    assert is_order_number_collision(exc) is collision


async def test_conditional_update_on_status(test_db):
    store = OrderStore(test_db)
    order = await store.create(fields())

    assert await store.update(order.id, {"status": "label_generated"}, expected_status="re-offer_pending") is False
    assert await store.update(order.id, {"status": "label_generated"}, expected_status="pending_shipment") is True
    assert (await store.get(order.id)).status == "label_generated"

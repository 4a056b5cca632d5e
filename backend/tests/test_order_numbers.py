"""Order number generation: format, collision retry, exhaustion, concurrent uniqueness."""

import asyncio
import itertools

import pytest

from orders.errors import OrderNumberExhaustedError
from orders.numbers import OrderNumberGenerator, format_order_number, is_order_number
from orders.store import DuplicateOrderNumberError
from order_fakes import NOW


def fields():
    return {"status": "pending_shipment", "estimated_quote": 100.0, "shipping_info": {}, "created_at": NOW}


def test_format_pads_to_five_digits():
    assert format_order_number(0) == "00-000"
    assert format_order_number(7) == "00-007"
    assert format_order_number(12345) == "12-345"
    assert format_order_number(99999) == "99-999"


@pytest.mark.parametrize("value,valid", [("12-345", True), ("1-2345", False), ("12345", False), ("ab-cde", False), ("", False)])
def test_is_order_number(value, valid):
    assert is_order_number(value) is valid


def test_default_draw_produces_valid_numbers(store):
    generator = OrderNumberGenerator(store)
    for _ in range(50):
        assert is_order_number(generator.next_candidate())


async def test_skips_numbers_already_taken(store):
    draws = iter([12345, 12345, 54321])
    generator = OrderNumberGenerator(store, draw=lambda: next(draws))

    first = await generator.create_order(fields())
    second = await generator.create_order(fields())

    assert first.order_number == "12-345"
    assert second.order_number == "54-321"


async def test_insert_race_is_retried(store):
    draws = iter([11111, 22222])
    generator = OrderNumberGenerator(store, draw=lambda: next(draws))
    original_create = store.create
    calls = []

    async def racing_create(order_fields, *, event=None):
        calls.append(order_fields["order_number"])
        if len(calls) == 1:
            raise DuplicateOrderNumberError(order_fields["order_number"])
        return await original_create(order_fields, event=event)

    store.create = racing_create
    order = await generator.create_order(fields())

    assert calls == ["11-111", "22-222"]
    assert order.order_number == "22-222"


async def test_exhaustion_raises_after_max_attempts(store):
    generator = OrderNumberGenerator(store, max_attempts=5, draw=lambda: 42)
    await generator.create_order(fields())

    with pytest.raises(OrderNumberExhaustedError) as exc_info:
        await generator.create_order(fields())
    assert exc_info.value.http_status == 500
    assert len(store.rows) == 1


async def test_submit_event_is_written_with_the_order(store):
    generator = OrderNumberGenerator(store, draw=lambda: 1)
    order = await generator.create_order(fields(), event={"trigger": "submit", "to_status": "pending_shipment"})
    assert store.events_for(order.id, "submit")


async def test_concurrent_submissions_get_distinct_numbers(store):
    # Small pool forces collisions between the concurrent creators.
    pool = itertools.cycle(range(30))
    generator = OrderNumberGenerator(store, max_attempts=200, draw=lambda: next(pool))

    orders = await asyncio.gather(*(generator.create_order(fields()) for _ in range(25)))

    numbers = [order.order_number for order in orders]
    assert len(set(numbers)) == 25
    assert all(is_order_number(number) for number in numbers)

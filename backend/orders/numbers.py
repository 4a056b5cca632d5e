"""Human-facing order numbers (``NN-NNN``) with collision retry against the store."""

from __future__ import annotations

import random
import re
from collections.abc import Callable
from typing import Any

import structlog

from orders.errors import OrderNumberExhaustedError
from orders.store import DuplicateOrderNumberError

logger = structlog.get_logger()

ORDER_NUMBER_PATTERN = re.compile(r"^\d{2}-\d{3}$")
DEFAULT_MAX_ATTEMPTS = 20


def format_order_number(value: int) -> str:
    digits = f"{value:05d}"
    return f"{digits[:2]}-{digits[2:]}"


def is_order_number(value: str) -> bool:
    return bool(ORDER_NUMBER_PATTERN.match(value or ""))


class OrderNumberGenerator:
    """
    Draws random 5-digit numbers until one is free in the store.

    Two guards: a lookup before insert (cheap, catches almost every
    collision) and the unique constraint on insert (catches concurrent
    submitters that drew the same number). Both count against the same
    attempt budget, after which submission fails loudly.
    """

    def __init__(
        self,
        store,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        draw: Callable[[], int] | None = None,
    ):
        self.store = store
        self.max_attempts = max_attempts
        self._draw = draw or (lambda: random.SystemRandom().randrange(100_000))

    def next_candidate(self) -> str:
        return format_order_number(self._draw())

    async def create_order(self, fields: dict[str, Any], *, event: dict[str, Any] | None = None):
        """Insert ``fields`` under a fresh order number. Returns the stored order."""
        for attempt in range(1, self.max_attempts + 1):
            candidate = self.next_candidate()
            if await self.store.get_by_order_number(candidate) is not None:
                logger.debug("orders.number.collision", order_number=candidate, attempt=attempt)
                continue
            try:
                return await self.store.create({**fields, "order_number": candidate}, event=event)
            except DuplicateOrderNumberError:
                logger.info("orders.number.insert_race", order_number=candidate, attempt=attempt)
                continue

        logger.error("orders.number.exhausted", attempts=self.max_attempts)
        raise OrderNumberExhaustedError(
            f"Could not allocate a free order number after {self.max_attempts} attempts"
        )

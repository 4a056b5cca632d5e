"""
Order lifecycle error taxonomy.

Every failure is scoped to one order or one request. The API layer maps
``http_status`` straight onto the response; workers catch these per order so
one bad order never stops a sweep.
"""

from __future__ import annotations

from typing import Any


class OrderError(Exception):
    http_status = 500

    def __init__(self, message: str, *, order_id: Any = None):
        super().__init__(message)
        self.message = message
        self.order_id = str(order_id) if order_id is not None else None

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "order_id": self.order_id}


class OrderValidationError(OrderError):
    """Client-caused: missing fields, incomplete shipping info, bad status value."""

    http_status = 400


class OrderNotFoundError(OrderError):
    http_status = 404


class TransitionConflictError(OrderError):
    """The order is not in a status that allows this transition.

    Usually means a concurrent writer (buyer click vs. scheduler sweep) already
    resolved it. Callers must not blindly retry.
    """

    http_status = 409

    def __init__(self, message: str, *, order_id: Any = None, current_status: str | None = None):
        super().__init__(message, order_id=order_id)
        self.current_status = current_status

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "current_status": self.current_status}


class ThreadBusyError(TransitionConflictError):
    """Another writer holds the conversation-thread claim for this order."""


class UpstreamError(OrderError):
    """Label or ticketing provider failed after the status write committed."""

    http_status = 502

    def __init__(self, message: str, *, order_id: Any = None, side_effect: str | None = None):
        super().__init__(message, order_id=order_id)
        self.side_effect = side_effect

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "side_effect": self.side_effect}


class OrderNumberExhaustedError(OrderError):
    http_status = 500

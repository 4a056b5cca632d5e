"""
Conversation Thread Binder.

Keeps every buyer-facing message for an order on a single external thread.
The first writer claims the order's ``thread_id`` column with a conditional
update (only while it is unset) before it asks the provider for a thread, so
two concurrent senders can never open two threads for one order.

A claim is ``pending:<issued YYYYmmddHHMMSS>:<hex>``. Claims older than the
binder's ``claim_ttl`` belong to a writer that died between claim and bind,
and the next sender takes them over with the same conditional update.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta

import structlog

from integrations.base import Contact, ProviderError, ThreadProvider, Visibility
from orders.errors import OrderValidationError, ThreadBusyError, UpstreamError
from orders.store import utcnow

logger = structlog.get_logger()

CLAIM_PREFIX = "pending:"
CLAIM_STAMP_FORMAT = "%Y%m%d%H%M%S"
DEFAULT_CLAIM_TTL = timedelta(minutes=2)


def is_claim(thread_id: str | None) -> bool:
    return bool(thread_id) and thread_id.startswith(CLAIM_PREFIX)


def make_claim(issued_at: datetime) -> str:
    return f"{CLAIM_PREFIX}{issued_at.strftime(CLAIM_STAMP_FORMAT)}:{uuid.uuid4().hex}"


def claim_issued_at(thread_id: str) -> datetime | None:
    """Issue time encoded in a claim, or None when it carries none."""
    stamp, _, _ = thread_id[len(CLAIM_PREFIX):].partition(":")
    try:
        return datetime.strptime(stamp, CLAIM_STAMP_FORMAT)
    except ValueError:
        return None


def requester_for(order) -> Contact | None:
    info = order.shipping_info or {}
    email = (info.get("email") or "").strip()
    if not email:
        return None
    return Contact(email=email, name=(info.get("full_name") or "").strip() or "Customer")


class ThreadBinder:
    def __init__(
        self,
        store,
        provider: ThreadProvider,
        *,
        claim_poll_seconds: float = 0.25,
        claim_poll_attempts: int = 8,
        claim_ttl: timedelta = DEFAULT_CLAIM_TTL,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.provider = provider
        self.claim_poll_seconds = claim_poll_seconds
        self.claim_poll_attempts = claim_poll_attempts
        self.claim_ttl = claim_ttl
        self.clock = clock

    def is_stale(self, claim: str) -> bool:
        issued_at = claim_issued_at(claim)
        return issued_at is None or self.clock() - issued_at >= self.claim_ttl

    def can_reach(self, order) -> bool:
        """True when a message could be delivered (existing thread or buyer email)."""
        existing = order.thread_id
        return (bool(existing) and not is_claim(existing)) or requester_for(order) is not None

    async def ensure_thread(
        self,
        order,
        subject: str,
        body: str,
        *,
        visibility: Visibility = Visibility.PUBLIC,
        tags: list[str] | None = None,
    ) -> tuple[str, bool]:
        """
        Return ``(thread_id, created)`` for ``order``.

        An existing thread is returned unchanged. Otherwise a new one is opened
        with ``body`` as its first message and the id is persisted on the order.
        """
        existing = order.thread_id
        if existing and not is_claim(existing):
            return existing, False

        contact = requester_for(order)
        if contact is None:
            raise OrderValidationError("Buyer email not found for this order", order_id=order.id)

        claim = make_claim(self.clock())
        won = await self.store.update(order.id, {"thread_id": claim}, match={"thread_id": None})
        if not won:
            won = await self._take_over_stale_claim(order.id, claim)
        if not won:
            return await self._wait_for_winner(order.id), False

        try:
            thread_id = await self.provider.create_thread(contact, subject, body, visibility, tags)
        except Exception as exc:
            await self.store.update(order.id, {"thread_id": None}, match={"thread_id": claim})
            logger.error("orders.thread.create_failed", order_id=str(order.id), error=str(exc))
            if isinstance(exc, ProviderError):
                raise UpstreamError(
                    "Failed to open conversation thread", order_id=order.id, side_effect="thread"
                ) from exc
            raise

        await self.store.update(order.id, {"thread_id": thread_id}, match={"thread_id": claim})
        logger.info("orders.thread.bound", order_id=str(order.id), thread_id=thread_id)
        return thread_id, True

    async def _take_over_stale_claim(self, order_id, claim: str) -> bool:
        current = await self.store.get(order_id)
        held = current.thread_id if current is not None else None
        if not is_claim(held) or not self.is_stale(held):
            return False
        won = await self.store.update(order_id, {"thread_id": claim}, match={"thread_id": held})
        if won:
            logger.warning("orders.thread.claim_taken_over", order_id=str(order_id), stale_claim=held)
        return won

    async def _wait_for_winner(self, order_id) -> str:
        for _ in range(self.claim_poll_attempts):
            current = await self.store.get(order_id)
            thread_id = current.thread_id if current is not None else None
            if thread_id and not is_claim(thread_id):
                return thread_id
            if thread_id is None or self.is_stale(thread_id):
                # The other writer gave up or died; let the caller try again later.
                break
            await asyncio.sleep(self.claim_poll_seconds)
        raise ThreadBusyError(
            "Conversation thread is being opened by another request", order_id=order_id
        )

    async def post(self, order_id, thread_id: str, body: str, visibility: Visibility = Visibility.PUBLIC) -> None:
        """Append to an existing thread. Never opens a new one."""
        try:
            await self.provider.append_comment(thread_id, body, visibility)
        except ProviderError as exc:
            logger.error("orders.thread.comment_failed", order_id=str(order_id), thread_id=thread_id, error=str(exc))
            raise UpstreamError(
                "Failed to add comment to conversation thread",
                order_id=order_id,
                side_effect="thread_comment",
            ) from exc

    async def send(
        self,
        order,
        subject: str,
        body: str,
        *,
        visibility: Visibility = Visibility.PUBLIC,
        tags: list[str] | None = None,
    ) -> str:
        """Deliver one message on the order's thread, opening it on first use."""
        thread_id, created = await self.ensure_thread(order, subject, body, visibility=visibility, tags=tags)
        if not created:
            await self.post(order.id, thread_id, body, visibility)
        return thread_id

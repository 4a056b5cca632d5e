"""
Order Lifecycle State Machine.

    pending_shipment -> label_generated -> re-offer_pending
        -> offer_accepted | return_requested | auto_accepted
    return_requested -> return_label_generated

Every transition goes through ``plan_transition`` (pure: order + trigger +
payload -> target status, column writes, side effects) and is committed with
one conditional update guarded on the status the plan was made from. Side
effects (labels, thread messages) run only after that commit. A failed side
effect is recorded and raised as UpstreamError; the committed status stays.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

import structlog

from integrations.base import Visibility
from orders import messages
from orders.errors import (
    OrderError,
    OrderNotFoundError,
    OrderValidationError,
    TransitionConflictError,
    UpstreamError,
)
from orders.labels import LabelDirection, LabelDirectionResolver, missing_shipping_fields, result_columns
from orders.numbers import OrderNumberGenerator
from orders.store import utcnow
from orders.threads import ThreadBinder, is_claim

logger = structlog.get_logger()

DEFAULT_REOFFER_WINDOW = timedelta(days=7)

SIDE_EFFECT_FAILED = "side_effect_failed"
SIDE_EFFECT_RECOVERED = "side_effect_recovered"


class OrderStatus(str, Enum):
    PENDING_SHIPMENT = "pending_shipment"
    LABEL_GENERATED = "label_generated"
    REOFFER_PENDING = "re-offer_pending"
    OFFER_ACCEPTED = "offer_accepted"
    RETURN_REQUESTED = "return_requested"
    AUTO_ACCEPTED = "auto_accepted"
    RETURN_LABEL_GENERATED = "return_label_generated"


INITIAL_STATUS = OrderStatus.PENDING_SHIPMENT
TERMINAL_STATUSES = frozenset(
    {OrderStatus.OFFER_ACCEPTED, OrderStatus.AUTO_ACCEPTED, OrderStatus.RETURN_LABEL_GENERATED}
)


class Trigger(str, Enum):
    SUBMIT = "submit"
    GENERATE_LABEL = "generate_label"
    SUBMIT_REOFFER = "submit_reoffer"
    ACCEPT_OFFER = "accept_offer"
    DECLINE_OFFER = "decline_offer"
    AUTO_RESOLVE = "auto_resolve"
    GENERATE_RETURN_LABEL = "generate_return_label"


class SideEffect(str, Enum):
    OUTBOUND_LABEL = "outbound_label"
    NOTIFY_LABEL = "notify_label"
    SEND_REOFFER = "send_reoffer"
    COMMENT_ACCEPTED = "comment_accepted"
    COMMENT_DECLINED = "comment_declined"
    COMMENT_AUTO_ACCEPTED = "comment_auto_accepted"
    RETURN_LABEL = "return_label"


@dataclass(frozen=True)
class Edge:
    sources: frozenset[OrderStatus]
    target: OrderStatus
    actor: str
    side_effects: tuple[SideEffect, ...] = ()


TRANSITIONS: dict[Trigger, Edge] = {
    Trigger.GENERATE_LABEL: Edge(
        frozenset({OrderStatus.PENDING_SHIPMENT}),
        OrderStatus.LABEL_GENERATED,
        actor="admin",
        side_effects=(SideEffect.OUTBOUND_LABEL, SideEffect.NOTIFY_LABEL),
    ),
    # A fresh re-offer on a still-pending one replaces it, deadline included.
    Trigger.SUBMIT_REOFFER: Edge(
        frozenset({OrderStatus.LABEL_GENERATED, OrderStatus.REOFFER_PENDING}),
        OrderStatus.REOFFER_PENDING,
        actor="admin",
        side_effects=(SideEffect.SEND_REOFFER,),
    ),
    Trigger.ACCEPT_OFFER: Edge(
        frozenset({OrderStatus.REOFFER_PENDING}),
        OrderStatus.OFFER_ACCEPTED,
        actor="buyer",
        side_effects=(SideEffect.COMMENT_ACCEPTED,),
    ),
    Trigger.DECLINE_OFFER: Edge(
        frozenset({OrderStatus.REOFFER_PENDING}),
        OrderStatus.RETURN_REQUESTED,
        actor="buyer",
        side_effects=(SideEffect.COMMENT_DECLINED,),
    ),
    Trigger.AUTO_RESOLVE: Edge(
        frozenset({OrderStatus.REOFFER_PENDING}),
        OrderStatus.AUTO_ACCEPTED,
        actor="scheduler",
        side_effects=(SideEffect.COMMENT_AUTO_ACCEPTED,),
    ),
    Trigger.GENERATE_RETURN_LABEL: Edge(
        frozenset({OrderStatus.RETURN_REQUESTED}),
        OrderStatus.RETURN_LABEL_GENERATED,
        actor="admin",
        side_effects=(SideEffect.RETURN_LABEL,),
    ),
}

TRIGGER_FOR_TARGET: dict[OrderStatus, Trigger] = {edge.target: trigger for trigger, edge in TRANSITIONS.items()}

_LABEL_DIRECTIONS = {
    Trigger.GENERATE_LABEL: LabelDirection.OUTBOUND,
    Trigger.GENERATE_RETURN_LABEL: LabelDirection.RETURN,
}


@dataclass(frozen=True)
class TransitionPlan:
    trigger: Trigger
    from_status: OrderStatus
    to_status: OrderStatus
    actor: str
    fields: dict[str, Any]
    side_effects: tuple[SideEffect, ...]
    detail: dict[str, Any] = field(default_factory=dict)


def allowed_triggers(status: str) -> list[Trigger]:
    try:
        current = OrderStatus(status)
    except ValueError:
        return []
    return [trigger for trigger, edge in TRANSITIONS.items() if current in edge.sources]


def positive_amount(value: Any) -> float | None:
    """``value`` as a finite amount above zero, else None."""
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(amount) or amount <= 0:
        return None
    return amount


def _clean_reasons(reasons: Any) -> list[str]:
    if isinstance(reasons, str):
        reasons = [reasons]
    return [str(reason).strip() for reason in (reasons or []) if str(reason).strip()]


def plan_transition(
    order,
    trigger: Trigger,
    payload: dict[str, Any] | None = None,
    *,
    now: datetime,
    reoffer_window: timedelta = DEFAULT_REOFFER_WINDOW,
) -> TransitionPlan:
    """
    Decide what ``trigger`` does to ``order`` without touching anything.

    Raises TransitionConflictError when the current status has no edge for
    ``trigger`` and OrderValidationError when the payload or the order's data
    is unfit for it.
    """
    edge = TRANSITIONS.get(trigger)
    if edge is None:
        raise OrderValidationError(f"'{trigger.value}' is not a status transition", order_id=order.id)

    try:
        current = OrderStatus(order.status)
    except ValueError:
        current = None
    if current not in edge.sources:
        raise TransitionConflictError(
            f"Cannot {trigger.value.replace('_', ' ')} for order in '{order.status}' status",
            order_id=order.id,
            current_status=order.status,
        )

    payload = payload or {}
    fields: dict[str, Any] = {"status": edge.target.value}
    detail: dict[str, Any] = {}

    if trigger in _LABEL_DIRECTIONS:
        missing = missing_shipping_fields(order.shipping_info)
        if missing:
            raise OrderValidationError(
                f"Missing or incomplete customer shipping information: {', '.join(missing)}",
                order_id=order.id,
            )
        stamp = "label_generated_at" if trigger == Trigger.GENERATE_LABEL else "return_label_generated_at"
        fields[stamp] = now

    elif trigger == Trigger.SUBMIT_REOFFER:
        new_price = positive_amount(payload.get("new_price"))
        if new_price is None:
            raise OrderValidationError("New price must be a finite amount greater than zero", order_id=order.id)
        reasons = _clean_reasons(payload.get("reasons"))
        if not reasons:
            raise OrderValidationError("At least one re-offer reason is required", order_id=order.id)
        comments = (payload.get("comments") or "").strip() or None
        fields.update(
            reoffer_price=new_price,
            reoffer_reasons=reasons,
            reoffer_comments=comments,
            reoffered_at=now,
            reoffer_deadline=now + reoffer_window,
            reoffer_resolved_at=None,
            reoffer_resolution=None,
        )
        detail = {"new_price": new_price, "reasons": reasons}

    elif trigger == Trigger.ACCEPT_OFFER:
        fields.update(accepted_at=now, reoffer_resolved_at=now, reoffer_resolution=edge.target.value)

    elif trigger == Trigger.DECLINE_OFFER:
        fields.update(
            declined_at=now,
            return_requested_at=now,
            reoffer_resolved_at=now,
            reoffer_resolution=edge.target.value,
        )

    elif trigger == Trigger.AUTO_RESOLVE:
        deadline = order.reoffer_deadline
        if deadline is None or now < deadline:
            raise TransitionConflictError(
                "Re-offer has not reached its auto-resolve deadline",
                order_id=order.id,
                current_status=order.status,
            )
        fields.update(accepted_at=now, reoffer_resolved_at=now, reoffer_resolution=edge.target.value)
        detail = {"deadline": deadline.isoformat()}

    return TransitionPlan(
        trigger=trigger,
        from_status=current,
        to_status=edge.target,
        actor=edge.actor,
        fields=fields,
        side_effects=edge.side_effects,
        detail=detail,
    )


class OrderLifecycle:
    """
    Applies lifecycle transitions against an order store and runs their side
    effects through the thread binder and label resolver.
    """

    def __init__(
        self,
        store,
        threads: ThreadBinder,
        labels: LabelDirectionResolver,
        *,
        numbers: OrderNumberGenerator | None = None,
        reoffer_window: timedelta = DEFAULT_REOFFER_WINDOW,
        frontend_url: str = "",
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.threads = threads
        self.labels = labels
        self.numbers = numbers or OrderNumberGenerator(store)
        self.reoffer_window = reoffer_window
        self.frontend_url = frontend_url
        self.clock = clock

    @classmethod
    def from_settings(cls, store, threads: ThreadBinder, labels: LabelDirectionResolver, settings, **kwargs):
        return cls(
            store,
            threads,
            labels,
            numbers=OrderNumberGenerator(store, max_attempts=settings.order_number_max_attempts),
            reoffer_window=timedelta(days=settings.reoffer_window_days),
            frontend_url=settings.frontend_url,
            **kwargs,
        )

    # ── Reads ──────────────────────────────────────────────────────────────

    async def load(self, order_id):
        order = await self.store.get(order_id)
        if order is None:
            raise OrderNotFoundError("Order not found", order_id=order_id)
        return order

    async def load_by_number(self, order_number: str):
        order = await self.store.get_by_order_number(order_number)
        if order is None:
            raise OrderNotFoundError(f"Order #{order_number} not found")
        return order

    # ── Submission ─────────────────────────────────────────────────────────

    async def submit(self, data: dict[str, Any]):
        shipping_info = data.get("shipping_info")
        if not isinstance(shipping_info, dict) or not (shipping_info.get("full_name") or "").strip():
            raise OrderValidationError("Invalid order data: missing shippingInfo")
        quote = positive_amount(data.get("estimated_quote"))
        if quote is None:
            raise OrderValidationError("Invalid order data: missing estimatedQuote")

        now = self.clock()
        fields = {
            "device": data.get("device"),
            "storage": data.get("storage"),
            "carrier": data.get("carrier"),
            "condition": data.get("condition") or {},
            "payment_method": data.get("payment_method"),
            "payment_details": data.get("payment_details") or {},
            "shipping_info": shipping_info,
            "estimated_quote": quote,
            "status": INITIAL_STATUS.value,
            "created_at": now,
            "updated_at": now,
        }
        order = await self.numbers.create_order(
            fields,
            event={
                "trigger": Trigger.SUBMIT.value,
                "from_status": None,
                "to_status": INITIAL_STATUS.value,
                "actor": "buyer",
                "detail": {"estimated_quote": quote},
                "created_at": now,
            },
        )
        logger.info("orders.submitted", order_id=str(order.id), order_number=order.order_number, quote=quote)
        return order

    # ── Transitions ────────────────────────────────────────────────────────

    async def apply(self, order_id, trigger: Trigger, payload: dict[str, Any] | None = None):
        """Plan, commit and follow through on one transition. Returns the fresh order."""
        order = await self.load(order_id)
        now = self.clock()
        plan = plan_transition(order, trigger, payload, now=now, reoffer_window=self.reoffer_window)

        committed = await self.store.update(
            order.id,
            plan.fields,
            expected_status=plan.from_status.value,
            event={
                "trigger": plan.trigger.value,
                "from_status": plan.from_status.value,
                "to_status": plan.to_status.value,
                "actor": plan.actor,
                "detail": plan.detail,
                "created_at": now,
            },
        )
        if not committed:
            latest = await self.store.get(order.id)
            current_status = latest.status if latest is not None else None
            logger.info(
                "orders.transition.conflict",
                order_id=str(order.id),
                trigger=trigger.value,
                expected_status=plan.from_status.value,
                current_status=current_status,
            )
            raise TransitionConflictError(
                f"Order changed to '{current_status}' before {trigger.value.replace('_', ' ')} could apply",
                order_id=order.id,
                current_status=current_status,
            )

        logger.info(
            "orders.transition.committed",
            order_id=str(order.id),
            trigger=trigger.value,
            from_status=plan.from_status.value,
            to_status=plan.to_status.value,
            actor=plan.actor,
        )
        order = await self.load(order.id)
        await self._run_side_effects(order, plan.side_effects, payload or {})
        return await self.load(order.id)

    async def _generate(self, order_id, trigger: Trigger):
        direction = _LABEL_DIRECTIONS[trigger]
        edge = TRANSITIONS[trigger]
        order = await self.load(order_id)
        if order.status != edge.target.value:
            return await self.apply(order_id, trigger)

        # Status committed earlier; retry only the side effects that never succeeded.
        pending = await self._outstanding_side_effects(order, trigger)
        if not pending and LabelDirectionResolver.existing(order, direction) is None:
            # Committed by a process that stopped before recording any outcome.
            pending = edge.side_effects
        if not pending:
            return order

        logger.info(
            "orders.label.recovering",
            order_id=str(order.id),
            direction=direction.value,
            side_effects=[effect.value for effect in pending],
        )
        await self._run_side_effects(order, pending, {})
        await self.store.record_event(
            order.id,
            trigger=SIDE_EFFECT_RECOVERED,
            from_status=order.status,
            to_status=order.status,
            actor="system",
            detail={"side_effects": [effect.value for effect in pending]},
            created_at=self.clock(),
        )
        return await self.load(order.id)

    async def _outstanding_side_effects(self, order, trigger: Trigger) -> tuple[SideEffect, ...]:
        """
        Side effects of ``trigger`` still owed after its last commit.

        Side effects run in order and stop at the first failure, so everything
        from the most recently failed one onward is outstanding until a
        recovery succeeds.
        """
        effects = TRANSITIONS[trigger].side_effects
        outstanding: tuple[SideEffect, ...] = ()
        for event in await self.store.list_events(order.id):
            if event.trigger in (trigger.value, SIDE_EFFECT_RECOVERED):
                outstanding = ()
            elif event.trigger == SIDE_EFFECT_FAILED:
                failed = (event.detail or {}).get("side_effect")
                positions = [i for i, effect in enumerate(effects) if effect.value == failed]
                if positions:
                    outstanding = effects[positions[0]:]
        return outstanding

    async def generate_label(self, order_id):
        return await self._generate(order_id, Trigger.GENERATE_LABEL)

    async def generate_return_label(self, order_id):
        return await self._generate(order_id, Trigger.GENERATE_RETURN_LABEL)

    async def submit_reoffer(self, order_id, *, new_price: float, reasons: list[str], comments: str | None = None):
        return await self.apply(
            order_id,
            Trigger.SUBMIT_REOFFER,
            {"new_price": new_price, "reasons": reasons, "comments": comments},
        )

    async def accept_offer(self, order_id):
        return await self.apply(order_id, Trigger.ACCEPT_OFFER)

    async def decline_offer(self, order_id):
        return await self.apply(order_id, Trigger.DECLINE_OFFER)

    async def auto_resolve(self, order_id):
        return await self.apply(order_id, Trigger.AUTO_RESOLVE)

    async def set_status(self, order_id, target: str):
        """Admin status change, routed through the transition that leads to ``target``."""
        try:
            status = OrderStatus(target)
        except ValueError:
            raise OrderValidationError(f"Invalid status value: '{target}'", order_id=order_id) from None

        trigger = TRIGGER_FOR_TARGET.get(status)
        if trigger is None:
            raise OrderValidationError(f"Orders cannot be moved back to '{status.value}'", order_id=order_id)
        if trigger == Trigger.SUBMIT_REOFFER:
            raise OrderValidationError("Use the re-offer endpoint to issue a new offer", order_id=order_id)
        if trigger in _LABEL_DIRECTIONS:
            return await self._generate(order_id, trigger)
        return await self.apply(order_id, trigger)

    # ── Messaging outside transitions ──────────────────────────────────────

    async def send_message(self, order_id, subject: str, body: str):
        order = await self.load(order_id)
        thread_id = await self.threads.send(
            order, subject, messages.custom_message(body), tags=["customer-custom-email"]
        )
        return thread_id

    async def add_buyer_reply(self, order_id, message: str):
        order = await self.load(order_id)
        thread_id = order.thread_id
        if not thread_id or is_claim(thread_id):
            raise OrderValidationError("No conversation thread found for this order", order_id=order.id)
        await self.threads.post(order.id, thread_id, messages.buyer_reply(message))
        return thread_id

    async def events(self, order_id):
        order = await self.load(order_id)
        return await self.store.list_events(order.id)

    # ── Side effects ───────────────────────────────────────────────────────

    async def _run_side_effects(self, order, side_effects: tuple[SideEffect, ...], payload: dict[str, Any]) -> None:
        for effect in side_effects:
            try:
                await self._perform(order, effect, payload)
            except Exception as exc:
                error = exc.message if isinstance(exc, OrderError) else str(exc) or exc.__class__.__name__
                if not isinstance(exc, OrderError):
                    # A failed statement leaves the session unusable until rolled back.
                    await self.store.rollback()
                await self.store.record_event(
                    order.id,
                    trigger=SIDE_EFFECT_FAILED,
                    from_status=order.status,
                    to_status=order.status,
                    actor="system",
                    detail={"side_effect": effect.value, "error": error},
                    created_at=self.clock(),
                )
                logger.error(
                    "orders.side_effect.failed",
                    order_id=str(order.id),
                    side_effect=effect.value,
                    status=order.status,
                    error=error,
                    error_type=exc.__class__.__name__,
                )
                if isinstance(exc, UpstreamError):
                    raise
                message = error if isinstance(exc, OrderError) else f"Side effect '{effect.value}' failed: {error}"
                raise UpstreamError(message, order_id=order.id, side_effect=effect.value) from exc
            order = await self.load(order.id)

    async def _notify(self, order, subject: str, body: str, *, visibility=Visibility.PUBLIC, tags=None) -> None:
        if not self.threads.can_reach(order):
            logger.warning("orders.notify.skipped_no_email", order_id=str(order.id), subject=subject)
            return
        await self.threads.send(order, subject, body, visibility=visibility, tags=tags)

    async def _store_label(self, order, direction: LabelDirection) -> str:
        result = await self.labels.generate_label(order, direction)
        url_column, tracking_column = result_columns(direction)
        # Write-once per direction; a concurrent recovery that got there first wins.
        await self.store.update(
            order.id,
            {url_column: result.label_url, tracking_column: result.tracking_number},
            match={url_column: None},
        )
        return result.label_url

    async def _perform(self, order, effect: SideEffect, payload: dict[str, Any]) -> None:
        subject = f"Your SwiftBuyBack Order #{order.order_number}"

        if effect == SideEffect.OUTBOUND_LABEL:
            await self._store_label(order, LabelDirection.OUTBOUND)

        elif effect == SideEffect.NOTIFY_LABEL:
            if order.label_url:
                label_subject, body = messages.label_ready(order, order.label_url)
                await self._notify(order, label_subject, body, tags=["shipping-label"])

        elif effect == SideEffect.RETURN_LABEL:
            await self._store_label(order, LabelDirection.RETURN)

        elif effect == SideEffect.SEND_REOFFER:
            offer_subject, body = messages.reoffer_offer(
                order,
                new_price=order.reoffer_price,
                reasons=list(order.reoffer_reasons or []),
                comments=order.reoffer_comments,
                deadline=order.reoffer_deadline,
                frontend_url=self.frontend_url,
            )
            if not self.threads.can_reach(order):
                logger.warning("orders.notify.skipped_no_email", order_id=str(order.id), subject=offer_subject)
                return
            thread_id = await self.threads.send(order, offer_subject, body, tags=["re-offer", "customer-email"])
            note = messages.reoffer_internal_note(
                order,
                new_price=order.reoffer_price,
                reasons=list(order.reoffer_reasons or []),
                comments=order.reoffer_comments,
            )
            await self.threads.post(order.id, thread_id, note, Visibility.INTERNAL)

        elif effect == SideEffect.COMMENT_ACCEPTED:
            await self._notify(order, subject, messages.offer_accepted(order), tags=["re-offer"])

        elif effect == SideEffect.COMMENT_DECLINED:
            await self._notify(order, subject, messages.return_requested(order), tags=["re-offer"])

        elif effect == SideEffect.COMMENT_AUTO_ACCEPTED:
            await self._notify(order, subject, messages.auto_accepted(order), tags=["re-offer", "auto-accepted"])

"""
Orders Router: buyback order lifecycle endpoints.

The buyer/admin workflow:
  1. Buyer submits an order            → status='pending_shipment'
  2. Admin generates the outbound label → status='label_generated'
  3. After inspection, admin re-offers  → status='re-offer_pending'
  4. Buyer accepts or declines          → 'offer_accepted' | 'return_requested'
     (no answer by the deadline        → 'auto_accepted', via the sweep)
  5. Declined devices get a return label → 'return_label_generated'

Every status change goes through orders.lifecycle; nothing here writes status.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field, computed_field

from api.deps import get_lifecycle
from orders.lifecycle import OrderLifecycle, allowed_triggers

router = APIRouter(prefix="/api/v1/orders", tags=["orders"])


# ─── Schemas ────────────────────────────────────────────────────────────────

class ShippingInfo(BaseModel):
    full_name: str = Field(..., min_length=1)
    email: str | None = None
    phone: str | None = None
    street_address: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    country: str = "US"


class OrderSubmitRequest(BaseModel):
    device: str | None = None
    storage: str | None = None
    carrier: str | None = None
    condition: dict[str, str] = Field(default_factory=dict)
    estimated_quote: float | None = Field(default=None, allow_inf_nan=False)
    payment_method: str | None = None
    payment_details: dict[str, str] = Field(default_factory=dict)
    shipping_info: ShippingInfo | None = None


class ReofferRequest(BaseModel):
    new_price: float = Field(allow_inf_nan=False)
    reasons: list[str] = Field(default_factory=list)
    comments: str | None = None


class StatusUpdateRequest(BaseModel):
    status: str


class MessageRequest(BaseModel):
    subject: str = Field(..., min_length=1)
    body: str = Field(..., min_length=1)


class BuyerReplyRequest(BaseModel):
    reply_message: str = Field(..., min_length=1)


class ReofferResponse(BaseModel):
    new_price: float | None
    reasons: list[str]
    comments: str | None
    created_at: datetime
    auto_resolve_deadline: datetime | None
    resolved_at: datetime | None
    resolution_kind: str | None


class OrderResponse(BaseModel):
    id: UUID
    order_number: str
    status: str
    device: str | None
    storage: str | None
    carrier: str | None
    condition: dict | None
    estimated_quote: float
    payment_method: str | None
    payment_details: dict | None
    shipping_info: dict
    reoffer: ReofferResponse | None
    thread_id: str | None
    label_url: str | None
    tracking_number: str | None
    return_label_url: str | None
    return_tracking_number: str | None
    created_at: datetime
    updated_at: datetime
    label_generated_at: datetime | None
    accepted_at: datetime | None
    declined_at: datetime | None
    return_requested_at: datetime | None
    return_label_generated_at: datetime | None

    model_config = {"from_attributes": True}

    @computed_field
    @property
    def allowed_actions(self) -> list[str]:
        return [trigger.value for trigger in allowed_triggers(self.status)]


class OrderActionResponse(BaseModel):
    message: str
    order_id: UUID
    order_number: str
    status: str
    label_url: str | None = None
    tracking_number: str | None = None
    return_label_url: str | None = None
    return_tracking_number: str | None = None
    thread_id: str | None = None
    auto_resolve_deadline: datetime | None = None


class OrderEventResponse(BaseModel):
    event_id: UUID
    order_id: UUID
    trigger: str
    from_status: str | None
    to_status: str | None
    actor: str
    detail: dict | None
    created_at: datetime

    model_config = {"from_attributes": True}


def _action(message: str, order, **extra) -> OrderActionResponse:
    return OrderActionResponse(
        message=message,
        order_id=order.id,
        order_number=order.order_number,
        status=order.status,
        **extra,
    )


# ─── Endpoints ──────────────────────────────────────────────────────────────

@router.post("", response_model=OrderActionResponse, status_code=201)
async def submit_order(
    body: OrderSubmitRequest,
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    """Submit a new buyback order. Assigns the human-facing order number."""
    order = await lifecycle.submit(body.model_dump())
    return _action("Order submitted", order)


@router.get("", response_model=list[OrderResponse])
async def list_orders(
    status: str | None = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    """List orders, newest first, optionally filtered by status."""
    return await lifecycle.store.list(status=status, skip=skip, limit=limit)


@router.get("/by-number/{order_number}", response_model=OrderResponse)
async def get_order_by_number(
    order_number: str,
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.load_by_number(order_number)


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: UUID,
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.load(order_id)


@router.get("/{order_id}/events", response_model=list[OrderEventResponse])
async def get_order_events(
    order_id: UUID,
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    """Transition and side-effect history for an order, oldest first."""
    return await lifecycle.events(order_id)


@router.post("/{order_id}/label", response_model=OrderActionResponse)
async def generate_label(
    order_id: UUID,
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    """
    Generate the outbound (customer → business) shipping label.

    Also the recovery path: on an order already in 'label_generated' whose
    label purchase or label notification failed, this retries only the side
    effects that never succeeded.
    """
    order = await lifecycle.generate_label(order_id)
    return _action(
        "Label generated successfully.",
        order,
        label_url=order.label_url,
        tracking_number=order.tracking_number,
        thread_id=order.thread_id,
    )


@router.post("/{order_id}/return-label", response_model=OrderActionResponse)
async def generate_return_label(
    order_id: UUID,
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    """Generate the return (business → customer) label for a declined re-offer."""
    order = await lifecycle.generate_return_label(order_id)
    return _action(
        "Return label generated successfully.",
        order,
        return_label_url=order.return_label_url,
        return_tracking_number=order.return_tracking_number,
    )


@router.post("/{order_id}/reoffer", response_model=OrderActionResponse)
async def submit_reoffer(
    order_id: UUID,
    body: ReofferRequest,
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    """Issue a revised offer after inspection. The buyer has a fixed window to answer."""
    order = await lifecycle.submit_reoffer(
        order_id,
        new_price=body.new_price,
        reasons=body.reasons,
        comments=body.comments,
    )
    return _action(
        "Re-offer submitted and sent to buyer.",
        order,
        thread_id=order.thread_id,
        auto_resolve_deadline=order.reoffer_deadline,
    )


@router.post("/{order_id}/reoffer/accept", response_model=OrderActionResponse)
async def accept_reoffer(
    order_id: UUID,
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    order = await lifecycle.accept_offer(order_id)
    return _action("Offer accepted successfully.", order, thread_id=order.thread_id)


@router.post("/{order_id}/reoffer/decline", response_model=OrderActionResponse)
async def decline_reoffer(
    order_id: UUID,
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    """Decline the re-offer; the device will be returned."""
    order = await lifecycle.decline_offer(order_id)
    return _action("Return phone requested successfully.", order, thread_id=order.thread_id)


@router.put("/{order_id}/status", response_model=OrderActionResponse)
async def update_status(
    order_id: UUID,
    body: StatusUpdateRequest,
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    """Admin status change. Only moves along lifecycle edges."""
    order = await lifecycle.set_status(order_id, body.status)
    return _action(f"Order status updated to {order.status}", order)


@router.post("/{order_id}/messages", response_model=OrderActionResponse)
async def send_custom_message(
    order_id: UUID,
    body: MessageRequest,
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    """Send the buyer a custom message on the order's conversation thread."""
    thread_id = await lifecycle.send_message(order_id, body.subject, body.body)
    order = await lifecycle.load(order_id)
    return _action("Message sent to buyer.", order, thread_id=thread_id)


@router.post("/{order_id}/buyer-replies", response_model=OrderActionResponse)
async def add_buyer_reply(
    order_id: UUID,
    body: BuyerReplyRequest,
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    thread_id = await lifecycle.add_buyer_reply(order_id, body.reply_message)
    order = await lifecycle.load(order_id)
    return _action("Reply sent successfully.", order, thread_id=thread_id)

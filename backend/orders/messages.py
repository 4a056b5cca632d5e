"""
Buyer-facing and internal thread messages.

All bodies are HTML (the ticketing provider sends public comments as email).
Anything the buyer or an admin typed is escaped before it is embedded.
"""

from datetime import datetime
from html import escape

BRAND = "SwiftBuyBack"


def _money(value: float | None) -> str:
    return f"${(value or 0):,.2f}"


def _wrap(inner: str) -> str:
    return f'<div style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">{inner}</div>'


def _buyer_name(order) -> str:
    return escape((order.shipping_info or {}).get("full_name") or "Customer")


def label_ready(order, label_url: str) -> tuple[str, str]:
    subject = f"Your {BRAND} Order #{order.order_number} - Shipping Label"
    body = _wrap(
        f"<h2>Hello {_buyer_name(order)},</h2>"
        f"<p>Your prepaid shipping label for Order #{order.order_number} is ready.</p>"
        f'<p><a href="{escape(label_url)}">Download your shipping label</a></p>'
        "<p>Pack your device securely and drop it off with the carrier.</p>"
        f"<p>Thank you,<br>The {BRAND} Team</p>"
    )
    return subject, body


def reoffer_action_url(frontend_url: str, order) -> str:
    return f"{frontend_url.rstrip('/')}/reoffer-action.html?orderId={order.id}"


def reoffer_offer(order, *, new_price: float, reasons: list[str], comments: str | None,
                  deadline: datetime, frontend_url: str) -> tuple[str, str]:
    """The buyer's revised offer, with two mutually exclusive actions."""
    action_url = escape(reoffer_action_url(frontend_url, order))
    reason_items = "".join(f"<li>{escape(reason)}</li>" for reason in reasons)
    comment_block = f"<p><em>{escape(comments)}</em></p>" if comments else ""
    subject = f"Your {BRAND} Order #{order.order_number} - New Offer!"
    body = _wrap(
        f"<h2>Hello {_buyer_name(order)},</h2>"
        f"<p>We've received your device for Order #{order.order_number} and after inspection, "
        "we have a revised offer for you.</p>"
        f"<p><strong>Original Quote:</strong> {_money(order.estimated_quote)}</p>"
        f"<p><strong>New Offer Price:</strong> {_money(new_price)}</p>"
        f"<p><strong>Reason for New Offer:</strong></p><ul>{reason_items}</ul>"
        f"{comment_block}"
        "<p>Please choose one of the two options below:</p>"
        f'<p><a href="{action_url}&action=accept">Accept Offer ({_money(new_price)})</a></p>'
        f'<p><a href="{action_url}&action=return">Return Phone Now</a></p>'
        f"<p>If we don't hear from you by {deadline:%B %d, %Y}, the new offer will be accepted automatically.</p>"
        f"<p>Thank you,<br>The {BRAND} Team</p>"
    )
    return subject, body


def reoffer_internal_note(order, *, new_price: float, reasons: list[str], comments: str | None) -> str:
    lines = [
        f"Order #{order.order_number} requires a re-offer.",
        f"Original quote: {_money(order.estimated_quote)}",
        f"New price: {_money(new_price)}",
        f"Reasons: {escape('; '.join(reasons))}",
    ]
    if comments:
        lines.append(f"Comments: {escape(comments)}")
    return _wrap("<br>".join(lines))


def _reoffer_summary(order) -> str:
    reasons = "; ".join(order.reoffer_reasons or []) or "N/A"
    return f'Reason for re-offer: "{escape(reasons)}".'


def offer_accepted(order) -> str:
    return _wrap(
        f"<p>Buyer ({_buyer_name(order)}) has accepted the new offer of {_money(order.reoffer_price)} "
        f"for Order #{order.order_number}. {_reoffer_summary(order)}</p>"
    )


def return_requested(order) -> str:
    return _wrap(
        f"<p>Buyer ({_buyer_name(order)}) has declined the new offer of {_money(order.reoffer_price)} "
        f"and requested phone return for Order #{order.order_number}. {_reoffer_summary(order)}</p>"
    )


def auto_accepted(order) -> str:
    return _wrap(
        f"<p>No response was received before the deadline, so the new offer of "
        f"{_money(order.reoffer_price)} for Order #{order.order_number} has been accepted automatically. "
        f"{_reoffer_summary(order)}</p>"
    )


def custom_message(body: str) -> str:
    return _wrap(escape(body).replace("\n", "<br>"))


def buyer_reply(message: str) -> str:
    return _wrap(f"Buyer's Reply: {escape(message)}")

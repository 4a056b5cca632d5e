"""
Label Direction Resolver.

One order, two possible labels:
  - outbound: customer ships the device to us   (customer -> business)
  - return:   we ship the device back           (business -> customer)

The two address pairs are exact mirror images of each other. Shipping info
is validated here, before anything reaches the provider.
"""

from __future__ import annotations

from enum import Enum

import structlog

from integrations.base import Address, LabelProvider, LabelResult, PackageSpec, ProviderError
from orders.errors import OrderValidationError, UpstreamError

logger = structlog.get_logger()

REQUIRED_SHIPPING_FIELDS = ("full_name", "street_address", "city", "state", "postal_code")


class LabelDirection(str, Enum):
    OUTBOUND = "outbound"
    RETURN = "return"


# Which order columns hold each direction's result
_RESULT_COLUMNS = {
    LabelDirection.OUTBOUND: ("label_url", "tracking_number"),
    LabelDirection.RETURN: ("return_label_url", "return_tracking_number"),
}


def result_columns(direction: LabelDirection) -> tuple[str, str]:
    return _RESULT_COLUMNS[direction]


def missing_shipping_fields(shipping_info: dict | None) -> list[str]:
    info = shipping_info or {}
    return [name for name in REQUIRED_SHIPPING_FIELDS if not str(info.get(name) or "").strip()]


def customer_address(shipping_info: dict | None, *, order_id=None) -> Address:
    missing = missing_shipping_fields(shipping_info)
    if missing:
        raise OrderValidationError(
            f"Missing or incomplete customer shipping information: {', '.join(missing)}",
            order_id=order_id,
        )
    info = shipping_info or {}
    return Address(
        name=info["full_name"].strip(),
        street=info["street_address"].strip(),
        city=info["city"].strip(),
        state=info["state"].strip(),
        postal_code=str(info["postal_code"]).strip(),
        country=(info.get("country") or "US").strip(),
    )


def business_address(settings) -> Address:
    return Address(
        name=settings.business_name,
        street=settings.business_street,
        city=settings.business_city,
        state=settings.business_state,
        postal_code=settings.business_postal_code,
        country=settings.business_country,
    )


def address_pair(customer: Address, business: Address, direction: LabelDirection) -> tuple[Address, Address]:
    """Return ``(ship_from, ship_to)`` for ``direction``."""
    if direction == LabelDirection.OUTBOUND:
        return customer, business
    return business, customer


class LabelDirectionResolver:
    def __init__(self, provider: LabelProvider, business: Address, package: PackageSpec | None = None):
        self.provider = provider
        self.business = business
        self.package = package or PackageSpec()

    @classmethod
    def from_settings(cls, provider: LabelProvider, settings) -> "LabelDirectionResolver":
        return cls(
            provider,
            business_address(settings),
            PackageSpec(weight_value=settings.package_weight_lb, service_code=settings.label_service_code),
        )

    @staticmethod
    def existing(order, direction: LabelDirection) -> LabelResult | None:
        url_column, tracking_column = result_columns(direction)
        label_url = getattr(order, url_column)
        if not label_url:
            return None
        return LabelResult(label_url=label_url, tracking_number=getattr(order, tracking_column))

    def validate(self, order) -> Address:
        return customer_address(order.shipping_info, order_id=order.id)

    async def generate_label(self, order, direction: LabelDirection) -> LabelResult:
        """
        Buy the ``direction`` label for ``order``.

        Returns the stored label without calling the provider when one was
        already bought for this direction.
        """
        already = self.existing(order, direction)
        if already is not None:
            logger.info("orders.label.reused", order_id=str(order.id), direction=direction.value)
            return already

        customer = self.validate(order)
        ship_from, ship_to = address_pair(customer, self.business, direction)
        try:
            result = await self.provider.create_label(ship_from, ship_to, self.package, reference=order.order_number)
        except ProviderError as exc:
            logger.error(
                "orders.label.provider_failed",
                order_id=str(order.id),
                direction=direction.value,
                error=str(exc),
            )
            raise UpstreamError(
                f"Failed to generate {direction.value} shipping label",
                order_id=order.id,
                side_effect=f"{direction.value}_label",
            ) from exc

        logger.info(
            "orders.label.generated",
            order_id=str(order.id),
            order_number=order.order_number,
            direction=direction.value,
            tracking_number=result.tracking_number,
        )
        return result

"""
ShipEngine Label Client

Buys a single-package label and returns the PDF download URL plus tracking
number. The order number travels as the label reference so the physical
package can be matched without knowing internal ids.
"""

from typing import Any

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from integrations.base import (
    Address,
    LabelProvider,
    LabelResult,
    PackageSpec,
    ProviderError,
    register_label_provider,
)

_retry_unsent = retry(
    retry=retry_if_exception_type((httpx.ConnectError, httpx.ConnectTimeout)),
    stop=stop_after_attempt(3),
    wait=wait_exponential(min=1, max=10),
    reraise=True,
)


def _address_payload(address: Address) -> dict[str, str]:
    return {
        "name": address.name,
        "address_line1": address.street,
        "city_locality": address.city,
        "state_province": address.state,
        "postal_code": address.postal_code,
        "country_code": address.country,
    }


def build_label_request(ship_from: Address, ship_to: Address, package: PackageSpec, reference: str) -> dict:
    """ShipEngine ``POST /labels`` body."""
    return {
        "shipment": {
            "service_code": package.service_code,
            "ship_from": _address_payload(ship_from),
            "ship_to": _address_payload(ship_to),
            "packages": [
                {
                    "weight": {"value": package.weight_value, "unit": package.weight_unit},
                    "label_messages": {"reference1": reference},
                }
            ],
        },
        "label_format": "pdf",
    }


@register_label_provider
class ShipEngineClient(LabelProvider):
    """Client for the ShipEngine Labels API."""

    name = "shipengine"

    def __init__(self, config: dict[str, Any] | None = None, transport: httpx.AsyncBaseTransport | None = None):
        super().__init__(config)
        self.base_url = self.config.get("base_url", "https://api.shipengine.com/v1")
        self.headers = {
            "API-Key": self.config.get("api_key", ""),
            "Content-Type": "application/json",
        }
        self.timeout = httpx.Timeout(self.config.get("timeout_seconds", 15.0))
        self.transport = transport

    @_retry_unsent
    async def _post_label(self, payload: dict) -> httpx.Response:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            headers=self.headers,
            timeout=self.timeout,
            transport=self.transport,
        ) as client:
            response = await client.post("/labels", json=payload)
            response.raise_for_status()
            return response

    async def create_label(
        self,
        ship_from: Address,
        ship_to: Address,
        package: PackageSpec,
        reference: str,
    ) -> LabelResult:
        payload = build_label_request(ship_from, ship_to, package, reference)
        try:
            response = await self._post_label(payload)
        except httpx.HTTPStatusError as exc:
            self.logger.error(
                "shipengine.label.failed", reference=reference, status=exc.response.status_code, body=exc.response.text
            )
            raise ProviderError(self.name, "label purchase failed", status_code=exc.response.status_code) from exc
        except httpx.HTTPError as exc:
            self.logger.error("shipengine.label.failed", reference=reference, error=str(exc))
            raise ProviderError(self.name, f"label purchase failed: {exc.__class__.__name__}") from exc

        try:
            data = response.json()
        except ValueError as exc:
            self.logger.error(
                "shipengine.label.failed", reference=reference, status=response.status_code, body=response.text[:200]
            )
            raise ProviderError(self.name, "label response is not JSON", status_code=response.status_code) from exc
        if not isinstance(data, dict):
            raise ProviderError(self.name, "label response is not an object")

        download = data.get("label_download")
        label_url = download.get("pdf") if isinstance(download, dict) else None
        if not label_url:
            raise ProviderError(self.name, "label response missing label_download.pdf")
        tracking_number = data.get("tracking_number")
        self.logger.info("shipengine.label.created", reference=reference, tracking_number=tracking_number)
        return LabelResult(label_url=label_url, tracking_number=tracking_number)

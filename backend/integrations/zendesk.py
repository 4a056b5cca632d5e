"""
Zendesk Ticketing Client

One ticket per order. The ticket requester is the buyer, so public comments
go out as email and buyer replies land back on the same ticket. Internal
notes (``public: false``) stay visible to agents only.
"""

from typing import Any

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from integrations.base import (
    Contact,
    ProviderError,
    ThreadProvider,
    Visibility,
    register_thread_provider,
)

# Only retry failures where the request never reached Zendesk; a retried
# POST after a read timeout could open a second ticket.
_retry_unsent = retry(
    retry=retry_if_exception_type((httpx.ConnectError, httpx.ConnectTimeout)),
    stop=stop_after_attempt(3),
    wait=wait_exponential(min=1, max=10),
    reraise=True,
)


@register_thread_provider
class ZendeskClient(ThreadProvider):
    """Client for the Zendesk Tickets API."""

    name = "zendesk"

    def __init__(self, config: dict[str, Any] | None = None, transport: httpx.AsyncBaseTransport | None = None):
        super().__init__(config)
        subdomain = self.config.get("subdomain", "")
        self.base_url = self.config.get("base_url") or f"https://{subdomain}.zendesk.com/api/v2"
        self.auth = (f"{self.config.get('user', '')}/token", self.config.get("api_token", ""))
        self.timeout = httpx.Timeout(self.config.get("timeout_seconds", 15.0))
        self.transport = transport

    @_retry_unsent
    async def _send(self, method: str, path: str, payload: dict) -> httpx.Response:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            auth=self.auth,
            timeout=self.timeout,
            transport=self.transport,
        ) as client:
            response = await client.request(method, path, json=payload)
            response.raise_for_status()
            return response

    async def create_thread(
        self,
        requester: Contact,
        subject: str,
        body: str,
        visibility: Visibility = Visibility.PUBLIC,
        tags: list[str] | None = None,
    ) -> str:
        payload = {
            "ticket": {
                "requester": {"email": requester.email, "name": requester.name or "Customer"},
                "subject": subject,
                "comment": {"html_body": body, "public": visibility == Visibility.PUBLIC},
                "priority": "normal",
                "tags": ["swiftbuyback", *(tags or [])],
            }
        }
        try:
            response = await self._send("POST", "/tickets.json", payload)
        except httpx.HTTPStatusError as exc:
            self.logger.error("zendesk.ticket.create_failed", status=exc.response.status_code, body=exc.response.text)
            raise ProviderError(self.name, "ticket creation failed", status_code=exc.response.status_code) from exc
        except httpx.HTTPError as exc:
            self.logger.error("zendesk.ticket.create_failed", error=str(exc))
            raise ProviderError(self.name, f"ticket creation failed: {exc.__class__.__name__}") from exc

        try:
            ticket_id = str(response.json()["ticket"]["id"])
        except ValueError as exc:
            self.logger.error("zendesk.ticket.create_failed", status=response.status_code, body=response.text[:200])
            raise ProviderError(self.name, "ticket response is not JSON", status_code=response.status_code) from exc
        except (KeyError, TypeError) as exc:
            raise ProviderError(self.name, "ticket response missing id") from exc
        self.logger.info("zendesk.ticket.created", ticket_id=ticket_id, requester=requester.email)
        return ticket_id

    async def append_comment(
        self,
        thread_id: str,
        body: str,
        visibility: Visibility = Visibility.PUBLIC,
    ) -> None:
        payload = {"ticket": {"comment": {"html_body": body, "public": visibility == Visibility.PUBLIC}}}
        try:
            await self._send("PUT", f"/tickets/{thread_id}.json", payload)
        except httpx.HTTPStatusError as exc:
            self.logger.error(
                "zendesk.comment.failed", ticket_id=thread_id, status=exc.response.status_code, body=exc.response.text
            )
            raise ProviderError(self.name, "comment failed", status_code=exc.response.status_code) from exc
        except httpx.HTTPError as exc:
            self.logger.error("zendesk.comment.failed", ticket_id=thread_id, error=str(exc))
            raise ProviderError(self.name, f"comment failed: {exc.__class__.__name__}") from exc
        self.logger.info("zendesk.comment.added", ticket_id=thread_id, visibility=visibility.value)

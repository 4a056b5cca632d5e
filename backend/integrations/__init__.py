"""
External provider package.

Pluggable clients for the two outside systems an order touches:
  - Zendesk     (conversation threads / buyer email)
  - ShipEngine  (outbound and return shipping labels)

Usage:
    from integrations import thread_provider_from_settings

    threads = thread_provider_from_settings(get_settings())
    ticket_id = await threads.create_thread(contact, subject, body)
"""

from integrations.base import (
    Address,
    Contact,
    LabelProvider,
    LabelResult,
    PackageSpec,
    ProviderError,
    ThreadProvider,
    Visibility,
    get_label_provider,
    get_thread_provider,
)
from integrations.shipengine import ShipEngineClient
from integrations.zendesk import ZendeskClient


def thread_provider_from_settings(settings) -> ThreadProvider:
    return get_thread_provider(
        settings.thread_provider,
        {
            "subdomain": settings.zendesk_subdomain,
            "user": settings.zendesk_user,
            "api_token": settings.zendesk_api_token,
            "timeout_seconds": settings.provider_timeout_seconds,
        },
    )


def label_provider_from_settings(settings) -> LabelProvider:
    return get_label_provider(
        settings.label_provider,
        {
            "base_url": settings.shipengine_base_url,
            "api_key": settings.shipengine_api_key,
            "timeout_seconds": settings.provider_timeout_seconds,
        },
    )


__all__ = [
    "Address",
    "Contact",
    "LabelProvider",
    "LabelResult",
    "PackageSpec",
    "ProviderError",
    "ThreadProvider",
    "Visibility",
    "ShipEngineClient",
    "ZendeskClient",
    "get_label_provider",
    "get_thread_provider",
    "label_provider_from_settings",
    "thread_provider_from_settings",
]

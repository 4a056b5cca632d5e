"""
External Provider Interfaces: Abstract Base Classes

The order lifecycle talks to two outside systems through these narrow
interfaces only:

  - ThreadProvider: one conversation ticket per order (Zendesk in production)
  - LabelProvider:  shipping label purchase (ShipEngine in production)

Concrete clients register themselves by name so the running provider is a
configuration choice, and tests can inject recording fakes instead.
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

import structlog

logger = structlog.get_logger()


class ProviderError(Exception):
    """A provider call failed (HTTP error, timeout, malformed response)."""

    def __init__(self, provider: str, message: str, *, status_code: int | None = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code


# ── Value types ────────────────────────────────────────────────────────────


class Visibility(str, Enum):
    """Whether a thread message reaches the buyer or stays internal."""

    PUBLIC = "public"
    INTERNAL = "internal"


@dataclass(frozen=True)
class Contact:
    email: str
    name: str = "Customer"


@dataclass(frozen=True)
class Address:
    name: str
    street: str
    city: str
    state: str
    postal_code: str
    country: str = "US"

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


@dataclass(frozen=True)
class PackageSpec:
    weight_value: float = 1.0
    weight_unit: str = "pound"
    service_code: str = "usps_priority_mail"


@dataclass(frozen=True)
class LabelResult:
    label_url: str
    tracking_number: str | None = None


# ── Abstract providers ─────────────────────────────────────────────────────


class ThreadProvider(ABC):
    """Customer-communication / ticketing channel."""

    name: str = "thread"

    def __init__(self, config: dict[str, Any] | None = None):
        self.config = config or {}
        self.logger = logger.bind(provider=self.name)

    @abstractmethod
    async def create_thread(
        self,
        requester: Contact,
        subject: str,
        body: str,
        visibility: Visibility = Visibility.PUBLIC,
        tags: list[str] | None = None,
    ) -> str:
        """Open a new thread with ``body`` as its first message. Returns the thread id."""
        ...

    @abstractmethod
    async def append_comment(
        self,
        thread_id: str,
        body: str,
        visibility: Visibility = Visibility.PUBLIC,
    ) -> None:
        """Add a message to an existing thread."""
        ...


class LabelProvider(ABC):
    """Shipping label purchase."""

    name: str = "label"

    def __init__(self, config: dict[str, Any] | None = None):
        self.config = config or {}
        self.logger = logger.bind(provider=self.name)

    @abstractmethod
    async def create_label(
        self,
        ship_from: Address,
        ship_to: Address,
        package: PackageSpec,
        reference: str,
    ) -> LabelResult:
        """Buy a label. ``reference`` is printed on the label for traceability."""
        ...


# ── Provider registry ──────────────────────────────────────────────────────

_THREAD_PROVIDERS: dict[str, type[ThreadProvider]] = {}
_LABEL_PROVIDERS: dict[str, type[LabelProvider]] = {}


def register_thread_provider(provider_cls: type[ThreadProvider]):
    """Decorator: register a thread provider class under its ``name``."""
    _THREAD_PROVIDERS[provider_cls.name] = provider_cls
    return provider_cls


def register_label_provider(provider_cls: type[LabelProvider]):
    """Decorator: register a label provider class under its ``name``."""
    _LABEL_PROVIDERS[provider_cls.name] = provider_cls
    return provider_cls


def get_thread_provider(name: str, config: dict[str, Any]) -> ThreadProvider:
    """Factory: return the thread provider registered as ``name``."""
    provider_cls = _THREAD_PROVIDERS.get(name)
    if provider_cls is None:
        raise ValueError(f"No thread provider registered as: {name}")
    return provider_cls(config=config)


def get_label_provider(name: str, config: dict[str, Any]) -> LabelProvider:
    """Factory: return the label provider registered as ``name``."""
    provider_cls = _LABEL_PROVIDERS.get(name)
    if provider_cls is None:
        raise ValueError(f"No label provider registered as: {name}")
    return provider_cls(config=config)

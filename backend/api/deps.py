"""
SwiftBuyBack API Dependencies

Dependency injection for DB sessions, external providers, and the order
lifecycle. Providers are built once per process; the lifecycle is built per
request around that request's session.
"""

from collections.abc import AsyncGenerator
from functools import lru_cache

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from db.session import AsyncSessionLocal
from integrations import label_provider_from_settings, thread_provider_from_settings
from integrations.base import LabelProvider, ThreadProvider
from orders.lifecycle import OrderLifecycle
from orders.service import build_order_lifecycle

settings = get_settings()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


@lru_cache
def get_thread_provider() -> ThreadProvider:
    return thread_provider_from_settings(settings)


@lru_cache
def get_label_provider() -> LabelProvider:
    return label_provider_from_settings(settings)


async def get_lifecycle(
    db: AsyncSession = Depends(get_db),
    thread_provider: ThreadProvider = Depends(get_thread_provider),
    label_provider: LabelProvider = Depends(get_label_provider),
) -> OrderLifecycle:
    return build_order_lifecycle(
        db,
        settings,
        thread_provider=thread_provider,
        label_provider=label_provider,
    )

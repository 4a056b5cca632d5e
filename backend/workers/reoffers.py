"""Re-offer auto-resolution worker, fired by Celery beat."""

from __future__ import annotations

import asyncio

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from workers.celery_app import celery_app

logger = structlog.get_logger()


@celery_app.task(
    name="workers.reoffers.auto_resolve_expired_reoffers",
    bind=True,
    max_retries=2,
    default_retry_delay=300,
    acks_late=True,
)
def auto_resolve_expired_reoffers(self):
    """
    Accept every re-offer whose buyer never answered before the deadline.

    Safe to retry or overlap: orders already moved out of re-offer_pending
    are reported as skipped, never resolved twice.
    """
    from core.config import get_settings
    from db.session import make_engine
    from integrations import label_provider_from_settings, thread_provider_from_settings
    from orders.autoresolve import auto_resolve_expired_reoffers as sweep
    from orders.service import build_order_lifecycle

    run_id = self.request.id or "manual"

    async def _sweep():
        settings = get_settings()
        engine = make_engine(settings.database_url)
        try:
            async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            async with async_session() as db:
                lifecycle = build_order_lifecycle(
                    db,
                    settings,
                    thread_provider=thread_provider_from_settings(settings),
                    label_provider=label_provider_from_settings(settings),
                )
                return await sweep(lifecycle, run_id=run_id)
        finally:
            await engine.dispose()

    try:
        return asyncio.run(_sweep())
    except Exception as exc:  # noqa: BLE001
        logger.error("reoffers.sweep.failed", run_id=run_id, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)

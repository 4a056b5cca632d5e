"""
Scheduler Router: manual trigger for periodic lifecycle jobs.

Celery beat runs the same sweep daily; this endpoint lets an operator (or an
external cron) run it on demand and see the summary.
"""

from fastapi import APIRouter, Depends

from api.deps import get_lifecycle
from orders.autoresolve import auto_resolve_expired_reoffers
from orders.lifecycle import OrderLifecycle

router = APIRouter(prefix="/api/v1/scheduler", tags=["scheduler"])


@router.post("/reoffers/auto-resolve")
async def trigger_reoffer_auto_resolve(
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    """Accept every re-offer whose deadline passed without a buyer answer."""
    return await auto_resolve_expired_reoffers(lifecycle, run_id="api")

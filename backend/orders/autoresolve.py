"""
Re-offer Auto-Resolution sweep.

Finds orders still waiting on a buyer answer past their deadline and accepts
the re-offer on the buyer's behalf. Each order is attempted independently;
the transition's status guard makes re-runs and overlapping sweeps safe.
"""

from __future__ import annotations

from datetime import datetime

import structlog

from orders.errors import OrderError, TransitionConflictError, UpstreamError

logger = structlog.get_logger()


async def auto_resolve_expired_reoffers(lifecycle, *, now: datetime | None = None, run_id: str = "manual") -> dict:
    """
    Run one sweep. Returns a summary:

      resolved          - orders moved to auto_accepted (notification sent)
      notify_failed     - moved to auto_accepted, but the thread comment failed
      skipped           - someone else resolved first, or not actually due
      failed            - unexpected errors, left untouched for the next run
    """
    now = now or lifecycle.clock()
    due = await lifecycle.store.due_reoffers(now)
    summary: dict = {
        "status": "success",
        "run_id": run_id,
        "due_count": len(due),
        "resolved": [],
        "notify_failed": [],
        "skipped": [],
        "failed": [],
        "triggered_at": now.isoformat(),
    }

    for order_id in due:
        key = str(order_id)
        try:
            await lifecycle.auto_resolve(order_id)
        except TransitionConflictError as exc:
            summary["skipped"].append(key)
            logger.info("reoffers.sweep.skipped", order_id=key, current_status=exc.current_status)
        except UpstreamError as exc:
            summary["notify_failed"].append(key)
            logger.warning("reoffers.sweep.notify_failed", order_id=key, side_effect=exc.side_effect)
        except OrderError as exc:
            summary["failed"].append(key)
            logger.error("reoffers.sweep.order_failed", order_id=key, error=exc.message)
        except Exception as exc:  # noqa: BLE001
            await lifecycle.store.rollback()
            summary["failed"].append(key)
            logger.error("reoffers.sweep.order_failed", order_id=key, error=str(exc), exc_info=True)
        else:
            summary["resolved"].append(key)

    if summary["failed"]:
        summary["status"] = "partial"
    logger.info(
        "reoffers.sweep.complete",
        run_id=run_id,
        due_count=summary["due_count"],
        resolved=len(summary["resolved"]),
        notify_failed=len(summary["notify_failed"]),
        skipped=len(summary["skipped"]),
        failed=len(summary["failed"]),
    )
    return summary

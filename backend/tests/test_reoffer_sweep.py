"""
Re-offer auto-resolution sweep and its Celery task.

The sweep must resolve each due order at most once, keep going when one order
fails, and report every outcome in its summary.
"""

import asyncio
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from core.config import Settings
from db.session import create_tables
from order_fakes import NOW, RecordingLabelProvider, RecordingThreadProvider, order_payload
from orders.autoresolve import auto_resolve_expired_reoffers
from orders.store import OrderStore


async def reoffered(lifecycle):
    order = await lifecycle.submit(order_payload())
    await lifecycle.generate_label(order.id)
    return await lifecycle.submit_reoffer(order.id, new_price=200.0, reasons=["Scratches"])


class TestSweep:

    async def test_nothing_due(self, lifecycle):
        await reoffered(lifecycle)

        summary = await auto_resolve_expired_reoffers(lifecycle, run_id="run-1")

        assert summary["status"] == "success"
        assert summary["run_id"] == "run-1"
        assert summary["due_count"] == 0
        assert summary["triggered_at"] == NOW.isoformat()

    async def test_only_due_orders_are_resolved(self, lifecycle, clock):
        early = await reoffered(lifecycle)
        clock.advance(days=2)
        late = await reoffered(lifecycle)

        clock.advance(days=6)
        summary = await auto_resolve_expired_reoffers(lifecycle)

        assert summary["resolved"] == [str(early.id)]
        assert (await lifecycle.load(early.id)).status == "auto_accepted"
        assert (await lifecycle.load(late.id)).status == "re-offer_pending"

    async def test_order_answered_meanwhile_is_skipped(self, lifecycle, store, clock):
        order = await reoffered(lifecycle)
        clock.advance(days=8)
        original_due = store.due_reoffers

        async def stale_due(now):
            due = await original_due(now)
            # Buyer answers between the query and the transition.
            await lifecycle.accept_offer(order.id)
            return due

        store.due_reoffers = stale_due
        summary = await auto_resolve_expired_reoffers(lifecycle)

        assert summary["skipped"] == [str(order.id)]
        assert summary["resolved"] == []
        assert summary["status"] == "success"
        assert (await lifecycle.load(order.id)).status == "offer_accepted"

    async def test_notification_failure_still_resolves(self, lifecycle, thread_provider, clock):
        order = await reoffered(lifecycle)
        clock.advance(days=8)
        thread_provider.fail_comment = True

        summary = await auto_resolve_expired_reoffers(lifecycle)

        assert summary["notify_failed"] == [str(order.id)]
        assert summary["status"] == "success"
        assert (await lifecycle.load(order.id)).status == "auto_accepted"

    async def test_unexpected_error_on_one_order_does_not_stop_others(self, lifecycle, store, clock):
        broken = await reoffered(lifecycle)
        healthy = await reoffered(lifecycle)
        clock.advance(days=8)
        original_auto_resolve = lifecycle.auto_resolve

        async def flaky_auto_resolve(order_id):
            if order_id == broken.id:
                raise RuntimeError("connection reset")
            return await original_auto_resolve(order_id)

        lifecycle.auto_resolve = flaky_auto_resolve
        summary = await auto_resolve_expired_reoffers(lifecycle)

        assert summary["status"] == "partial"
        assert summary["failed"] == [str(broken.id)]
        assert summary["resolved"] == [str(healthy.id)]
        assert store.rollbacks == 1
        assert (await lifecycle.load(broken.id)).status == "re-offer_pending"

    async def test_overlapping_sweeps_resolve_once(self, lifecycle, store, thread_provider, clock):
        order = await reoffered(lifecycle)
        clock.advance(days=8)
        comments_before = len(thread_provider.comments)

        first, second = await asyncio.gather(
            auto_resolve_expired_reoffers(lifecycle, run_id="a"),
            auto_resolve_expired_reoffers(lifecycle, run_id="b"),
        )

        assert len(first["resolved"]) + len(second["resolved"]) == 1
        assert len(first["skipped"]) + len(second["skipped"]) == 1
        assert len(thread_provider.comments) == comments_before + 1
        assert len(store.events_for(order.id, "auto_resolve")) == 1


# ─── Celery task ───────────────────────────────────────────────────────────


def test_celery_task_sweeps_database(tmp_path, monkeypatch):
    """Run the task body synchronously against a file-backed SQLite database."""
    import core.config
    import integrations
    from workers.reoffers import auto_resolve_expired_reoffers as task

    database_url = f"sqlite+aiosqlite:///{tmp_path / 'sweep.db'}"
    settings = Settings(database_url=database_url)
    thread_provider = RecordingThreadProvider()

    async def seed():
        engine = create_async_engine(database_url)
        await create_tables(engine)
        async with async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)() as db:
            store = OrderStore(db)
            due = await store.create(
                {
                    "order_number": "10-001",
                    "status": "re-offer_pending",
                    "estimated_quote": 400.0,
                    "shipping_info": order_payload()["shipping_info"],
                    "thread_id": "ZD-9",
                    "reoffer_price": 250.0,
                    "reoffer_reasons": ["Dead pixels"],
                    "reoffered_at": NOW - timedelta(days=9),
                    "reoffer_deadline": NOW - timedelta(days=2),
                }
            )
            fresh = await store.create(
                {
                    "order_number": "10-002",
                    "status": "re-offer_pending",
                    "estimated_quote": 400.0,
                    "shipping_info": order_payload()["shipping_info"],
                    "reoffer_price": 250.0,
                    "reoffer_reasons": ["Dead pixels"],
                    "reoffered_at": NOW,
                    "reoffer_deadline": NOW + timedelta(days=3650),
                }
            )
        await engine.dispose()
        return due.id, fresh.id

    async def statuses(*order_ids):
        engine = create_async_engine(database_url)
        async with async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)() as db:
            store = OrderStore(db)
            result = [(await store.get(order_id)).status for order_id in order_ids]
        await engine.dispose()
        return result

    due_id, fresh_id = asyncio.run(seed())

    monkeypatch.setattr(core.config, "get_settings", lambda: settings)
    monkeypatch.setattr(integrations, "thread_provider_from_settings", lambda _: thread_provider)
    monkeypatch.setattr(integrations, "label_provider_from_settings", lambda _: RecordingLabelProvider())

    summary = task.run()

    assert summary["status"] == "success"
    assert summary["run_id"] == "manual"
    assert summary["resolved"] == [str(due_id)]
    assert asyncio.run(statuses(due_id, fresh_id)) == ["auto_accepted", "re-offer_pending"]
    assert [comment["thread_id"] for comment in thread_provider.comments] == ["ZD-9"]


def test_beat_schedule_runs_sweep_daily():
    from workers.celery_app import celery_app

    entry = celery_app.conf.beat_schedule["auto-resolve-reoffers-daily"]
    assert entry["task"] == "workers.reoffers.auto_resolve_expired_reoffers"
    assert entry["options"]["queue"] == "lifecycle"


def test_task_is_registered():
    import workers.reoffers  # noqa: F401
    from workers.celery_app import celery_app

    assert "workers.reoffers.auto_resolve_expired_reoffers" in celery_app.tasks

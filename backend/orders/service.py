"""Wiring: one OrderLifecycle per session, providers shared per process."""

from datetime import timedelta

from integrations.base import LabelProvider, ThreadProvider
from orders.labels import LabelDirectionResolver
from orders.lifecycle import OrderLifecycle
from orders.store import OrderStore
from orders.threads import ThreadBinder


def build_order_lifecycle(
    db,
    settings,
    *,
    thread_provider: ThreadProvider,
    label_provider: LabelProvider,
) -> OrderLifecycle:
    store = OrderStore(db)
    return OrderLifecycle.from_settings(
        store,
        ThreadBinder(store, thread_provider, claim_ttl=timedelta(seconds=settings.thread_claim_ttl_seconds)),
        LabelDirectionResolver.from_settings(label_provider, settings),
        settings,
    )

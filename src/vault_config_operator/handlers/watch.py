"""Watch handlers feeding the resource store and work queue.

kopf is used purely as the event source: every handler here records the
latest body and enqueues its key. Reconciliation happens on the
Controller's worker threads.
"""

from __future__ import annotations

import logging
from typing import Any

import kopf

from ..constants import (
    API_GROUP_VERSION,
    KIND_DATABASE_ROLE,
    KIND_DATABASE_STATIC_ROLE,
    KIND_KUBERNETES_AUTH_ROLE,
    KIND_SECRET_ENGINE_MOUNT,
)
from ..store import ResourceStore, key_for_body
from ..workqueue import WorkQueue

logger = logging.getLogger(__name__)


def handle_watch_event(
    event_type: str | None,
    body: dict[str, Any],
    store: ResourceStore,
    queue: WorkQueue,
) -> bool:
    """Apply one watch event to the store.

    Args:
        event_type: ``ADDED``, ``MODIFIED``, ``DELETED`` or None for the
            initial listing
        body: Resource body as delivered by the watch
        store: Resource store to update
        queue: Work queue receiving keys that need a reconcile

    Returns:
        True when the key was enqueued
    """
    body = dict(body)
    key = key_for_body(body)

    if event_type == "DELETED":
        # The object is gone from the API server; any finalizer work already
        # happened while it carried a deletionTimestamp.
        store.delete(key)
        logger.debug(f"{key}: deleted from store")
        return False

    if not store.upsert(body):
        # Status-only updates, including our own, do not trigger a reconcile.
        return False

    queue.add(key)
    logger.debug(f"{key}: enqueued on {event_type or 'LISTING'}")
    return True


@kopf.on.event(API_GROUP_VERSION, KIND_DATABASE_STATIC_ROLE)
@kopf.on.event(API_GROUP_VERSION, KIND_DATABASE_ROLE)
@kopf.on.event(API_GROUP_VERSION, KIND_KUBERNETES_AUTH_ROLE)
@kopf.on.event(API_GROUP_VERSION, KIND_SECRET_ENGINE_MOUNT)
def on_vault_object_event(
    event: dict[str, Any],
    body: kopf.Body,
    memo: kopf.Memo,
    **_: Any,
) -> None:
    """Record watch events for every managed kind."""
    store = getattr(memo, "store", None)
    queue = getattr(memo, "queue", None)
    if store is None or queue is None:
        # Startup has not finished building the runtime yet.
        logger.warning("Watch event received before the controller was started; ignoring")
        return
    handle_watch_event(event.get("type"), dict(body), store, queue)

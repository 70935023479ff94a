"""Worker pool draining the work queue into the Reconciler."""

from __future__ import annotations

import contextvars
import logging
import threading
from typing import Any, Callable, Mapping

from .config import RetryConfig
from .exceptions import ValidationError
from .reconciler import ReconcileResult, Reconciler, RetryTracker
from .resources import resource_from_body
from .store import ResourceStore
from .workqueue import WorkQueue

logger = logging.getLogger(__name__)

# How long an idle worker blocks before checking for shutdown again.
_POLL_INTERVAL_SECONDS = 1.0


class Controller:
    """Runs a bounded pool of reconcile workers plus a periodic resync."""

    def __init__(
        self,
        reconciler: Reconciler,
        store: ResourceStore,
        queue: WorkQueue,
        workers: int = 4,
        resync_interval: float = 300.0,
        retry: RetryConfig | None = None,
        resource_factory: Callable[[Mapping[str, Any]], Any] = resource_from_body,
    ) -> None:
        """Initialize the controller.

        Args:
            reconciler: Reconciler driving each key
            store: Latest observed bodies, keyed like the queue
            queue: Work queue fed by watch events
            workers: Number of concurrent worker threads
            resync_interval: Seconds between full re-queues of every known key
            retry: Backoff for cycles that raised unexpectedly
            resource_factory: Builds a resource object from a stored body
        """
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self.reconciler = reconciler
        self.store = store
        self.queue = queue
        self.workers = workers
        self.resync_interval = resync_interval
        self._resource_factory = resource_factory
        self._crash_retries = RetryTracker(retry or RetryConfig())
        self._threads: list[threading.Thread] = []
        self._stop = threading.Event()

    def start(self) -> None:
        """Start worker and resync threads."""
        if self._threads:
            return
        self._stop.clear()
        for i in range(self.workers):
            self._spawn(self._worker, f"reconcile-worker-{i}")
        if self.resync_interval > 0:
            self._spawn(self._resync_loop, "resync")
        logger.info(f"Controller started with {self.workers} workers")

    def _spawn(self, target: Callable[[], None], name: str) -> None:
        # Each thread runs in a copy of the caller's context so that kopf's
        # event poster (a context variable) stays reachable from workers.
        ctx = contextvars.copy_context()
        thread = threading.Thread(target=ctx.run, args=(target,), name=name, daemon=True)
        thread.start()
        self._threads.append(thread)

    def stop(self, timeout: float | None = 10.0) -> None:
        """Shut the queue down and wait for in-flight cycles to finish."""
        self._stop.set()
        self.queue.shutdown()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []
        logger.info("Controller stopped")

    @property
    def is_running(self) -> bool:
        return bool(self._threads) and not self._stop.is_set()

    def enqueue_all(self) -> None:
        """Queue every known key."""
        for key in self.store.keys():
            self.queue.add(key)

    def _resync_loop(self) -> None:
        while not self._stop.wait(self.resync_interval):
            logger.debug(f"Resync: queueing {len(self.store)} resources")
            self.enqueue_all()

    def _worker(self) -> None:
        while not self._stop.is_set():
            key = self.queue.get(timeout=_POLL_INTERVAL_SECONDS)
            if key is None:
                continue
            try:
                self.process(key)
            finally:
                self.queue.done(key)

    def process(self, key: str) -> ReconcileResult | None:
        """Reconcile a single key and schedule its next cycle.

        Returns:
            The cycle result, or None when the key is gone or the cycle crashed
        """
        body = self.store.get(key)
        if body is None:
            logger.debug(f"{key}: no longer in store, dropping")
            return None

        try:
            resource = self._resource_factory(body)
        except ValidationError as e:
            logger.error(f"{key}: cannot build resource: {e}")
            return None

        try:
            result = self.reconciler.reconcile(resource)
        except Exception as e:
            delay = self._crash_retries.next_delay(key)
            if delay is None:
                delay = self.resync_interval
            logger.exception(f"{key}: reconcile crashed ({type(e).__name__}); retrying in {delay:.1f}s")
            self.queue.add_after(key, delay)
            return None

        self._crash_retries.reset(key)
        if result.requeue_after is not None:
            self.queue.add_after(key, result.requeue_after)
        return result

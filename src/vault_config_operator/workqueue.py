"""Work queue of resource keys with per-key serialization.

Semantics follow the classic controller work queue:

* a key queued twice before being picked up is processed once;
* a key is handed to at most one worker at a time; adding it while it is
  being processed marks it dirty and it is queued again when the worker
  calls ``done``;
* ``add_after`` parks a key until its delay elapses, keeping only the
  earliest pending deadline per key.
"""

from __future__ import annotations

import heapq
import threading
import time
from collections import deque
from typing import Callable

from . import metrics


class WorkQueue:
    """Thread-safe FIFO of resource keys."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._cond = threading.Condition()
        self._queue: deque[str] = deque()
        self._dirty: set[str] = set()
        self._processing: set[str] = set()
        self._delayed: list[tuple[float, str]] = []
        self._ready_at: dict[str, float] = {}
        self._shutting_down = False

    def _add_locked(self, key: str) -> None:
        if key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.append(key)
        metrics.workqueue_depth.set(len(self._queue))
        self._cond.notify()

    def add(self, key: str) -> None:
        """Queue ``key`` for processing."""
        with self._cond:
            if self._shutting_down:
                return
            self._add_locked(key)

    def add_after(self, key: str, delay: float) -> None:
        """Queue ``key`` once ``delay`` seconds have elapsed."""
        if delay <= 0:
            self.add(key)
            return
        with self._cond:
            if self._shutting_down:
                return
            ready_at = self._clock() + delay
            current = self._ready_at.get(key)
            if current is not None and current <= ready_at:
                return
            self._ready_at[key] = ready_at
            heapq.heappush(self._delayed, (ready_at, key))
            metrics.workqueue_retries_total.inc()
            # Wake sleepers so they re-compute how long to wait.
            self._cond.notify_all()

    def _promote_due_locked(self) -> float | None:
        """Move due delayed keys to the queue; return seconds until the next one."""
        now = self._clock()
        while self._delayed:
            ready_at, key = self._delayed[0]
            if self._ready_at.get(key) != ready_at:
                heapq.heappop(self._delayed)
                continue
            if ready_at > now:
                return ready_at - now
            heapq.heappop(self._delayed)
            del self._ready_at[key]
            self._add_locked(key)
        return None

    def get(self, timeout: float | None = None) -> str | None:
        """Block until a key is available.

        Returns:
            The next key, or None on shutdown or when ``timeout`` expires
        """
        deadline = None if timeout is None else self._clock() + timeout
        with self._cond:
            while True:
                if self._shutting_down:
                    return None
                next_due = self._promote_due_locked()
                if self._queue:
                    key = self._queue.popleft()
                    self._processing.add(key)
                    self._dirty.discard(key)
                    metrics.workqueue_depth.set(len(self._queue))
                    return key

                wait = next_due
                if deadline is not None:
                    remaining = deadline - self._clock()
                    if remaining <= 0:
                        return None
                    wait = remaining if wait is None else min(wait, remaining)
                self._cond.wait(wait)

    def done(self, key: str) -> None:
        """Mark ``key`` as processed, re-queueing it if it was added meanwhile."""
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                metrics.workqueue_depth.set(len(self._queue))
                self._cond.notify()

    def shutdown(self) -> None:
        """Stop accepting keys and release blocked getters."""
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def is_processing(self, key: str) -> bool:
        with self._cond:
            return key in self._processing

    def pending_delayed(self) -> int:
        with self._cond:
            return len(self._ready_at)

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

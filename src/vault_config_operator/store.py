"""Last-seen copies of watched resources, indexed by work queue key."""

from __future__ import annotations

import copy
import threading
from typing import Any, Mapping

from .resources.base import make_resource_key


def key_for_body(body: Mapping[str, Any]) -> str:
    meta = body.get("metadata") or {}
    return make_resource_key(body.get("kind", ""), meta.get("namespace", "default"), meta.get("name", ""))


def _generation(body: Mapping[str, Any] | None) -> int:
    if not body:
        return 0
    return int((body.get("metadata") or {}).get("generation") or 0)


class ResourceStore:
    """Thread-safe cache fed by watch events and read by reconcile workers."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._objects: dict[str, dict[str, Any]] = {}

    def upsert(self, body: Mapping[str, Any]) -> bool:
        """Store the latest body for its key.

        Returns:
            True when the change needs a reconcile: a new object, a new
            generation, or a change to deletion state or finalizers.
            Status-only updates return False.
        """
        key = key_for_body(body)
        new = copy.deepcopy(dict(body))
        with self._lock:
            old = self._objects.get(key)
            self._objects[key] = new

        if old is None:
            return True
        if _generation(old) != _generation(new):
            return True
        old_meta = old.get("metadata") or {}
        new_meta = new.get("metadata") or {}
        return (
            old_meta.get("deletionTimestamp") != new_meta.get("deletionTimestamp")
            or old_meta.get("finalizers") != new_meta.get("finalizers")
        )

    def delete(self, key: str) -> None:
        with self._lock:
            self._objects.pop(key, None)

    def get(self, key: str) -> dict[str, Any] | None:
        with self._lock:
            body = self._objects.get(key)
        return copy.deepcopy(body) if body is not None else None

    def generation(self, key: str) -> int | None:
        """Latest known generation for ``key``; None when the key is unknown."""
        with self._lock:
            body = self._objects.get(key)
        return _generation(body) if body is not None else None

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._objects)

    def __len__(self) -> int:
        with self._lock:
            return len(self._objects)

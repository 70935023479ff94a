"""Shared fixtures: in-memory Vault and status sink."""

from __future__ import annotations

import copy
import threading
import time
from typing import Any

import pytest

from vault_config_operator.auth import AuthManager
from vault_config_operator.config import RetryConfig
from vault_config_operator.constants import (
    API_GROUP_VERSION,
    FINALIZER,
    KIND_DATABASE_ROLE,
    KIND_DATABASE_STATIC_ROLE,
    KIND_KUBERNETES_AUTH_ROLE,
    KIND_SECRET_ENGINE_MOUNT,
)
from vault_config_operator.exceptions import AuthError
from vault_config_operator.reconciler import Reconciler


class FakeVault:
    """RemoteSecretService keeping objects in a dict and recording every call."""

    def __init__(self) -> None:
        self.objects: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, str]] = []
        self.failures: dict[str, list[Exception]] = {}
        self.reject_login = False
        self.login_ttl = 3600
        self.login_delay = 0.0
        self.logins = 0
        self._lock = threading.Lock()

    def fail_next(self, operation: str, *errors: Exception) -> None:
        """Make the next calls of ``operation`` raise ``errors`` in order."""
        self.failures.setdefault(operation, []).extend(errors)

    def _record(self, operation: str, path: str) -> None:
        with self._lock:
            self.calls.append((operation, path))
            pending = self.failures.get(operation)
            error = pending.pop(0) if pending else None
        if error is not None:
            raise error

    def login(self, mount: str, role: str, jwt: str, namespace: str | None = None) -> tuple[str, int]:
        with self._lock:
            self.logins += 1
            count = self.logins
        if self.login_delay:
            time.sleep(self.login_delay)
        self._record("login", f"auth/{mount}/login")
        if self.reject_login:
            raise AuthError(f"login to auth/{mount} as {role} denied")
        return f"hvs.fake-token-{count}", self.login_ttl

    def read(self, path: str, token: str, namespace: str | None = None) -> dict[str, Any] | None:
        self._record("read", path)
        obj = self.objects.get(path)
        return copy.deepcopy(obj) if obj is not None else None

    def write(self, path: str, payload: dict[str, Any], token: str, namespace: str | None = None) -> None:
        self._record("write", path)
        self.objects[path] = copy.deepcopy(payload)

    def delete(self, path: str, token: str, namespace: str | None = None) -> bool:
        self._record("delete", path)
        return self.objects.pop(path, None) is not None

    def ops(self, *operations: str) -> list[tuple[str, str]]:
        return [c for c in self.calls if c[0] in operations]

    @property
    def mutations(self) -> list[tuple[str, str]]:
        return self.ops("write", "delete")


class FakeSink:
    """StatusSink recording patches, finalizer changes and events."""

    def __init__(self) -> None:
        self.status_patches: list[tuple[str, dict[str, Any]]] = []
        self.finalizer_changes: list[tuple[str, str]] = []
        self.events: list[tuple[str, str, str]] = []

    def patch_status(self, resource: Any, status: dict[str, Any]) -> None:
        self.status_patches.append((resource.key, copy.deepcopy(status)))
        resource.apply_status(status)

    def add_finalizer(self, resource: Any) -> None:
        if FINALIZER not in resource.finalizers:
            resource.finalizers = resource.finalizers + [FINALIZER]
            self.finalizer_changes.append(("add", resource.key))

    def remove_finalizer(self, resource: Any) -> None:
        if FINALIZER in resource.finalizers:
            resource.finalizers = [f for f in resource.finalizers if f != FINALIZER]
            self.finalizer_changes.append(("remove", resource.key))

    def record_event(self, resource: Any, reason: str, message: str, type_: str = "Normal") -> None:
        self.events.append((reason, type_, message))

    def event_reasons(self) -> list[str]:
        return [e[0] for e in self.events]


def _body(kind: str, name: str, namespace: str, generation: int, spec: dict[str, Any]) -> dict[str, Any]:
    return {
        "apiVersion": API_GROUP_VERSION,
        "kind": kind,
        "metadata": {
            "name": name,
            "namespace": namespace,
            "uid": f"uid-{name}",
            "generation": generation,
            "resourceVersion": "1",
        },
        "spec": spec,
    }


def static_role_body(
    name: str = "app-role",
    namespace: str = "team-a",
    generation: int = 1,
    **spec: Any,
) -> dict[str, Any]:
    base = {
        "authentication": {"path": "kubernetes", "role": "vault-admin"},
        "path": "database",
        "username": "app",
        "rotationPeriod": "24h",
        "dBName": "pg",
        "rotationStatements": ["ALTER USER \"{{name}}\" WITH PASSWORD '{{password}}';"],
    }
    base.update(spec)
    return _body(KIND_DATABASE_STATIC_ROLE, name, namespace, generation, base)


def database_role_body(
    name: str = "readonly",
    namespace: str = "team-a",
    generation: int = 1,
    **spec: Any,
) -> dict[str, Any]:
    base = {
        "authentication": {"path": "kubernetes", "role": "vault-admin"},
        "path": "database",
        "dBName": "pg",
        "defaultTTL": "1h",
        "maxTTL": "24h",
        "creationStatements": ["CREATE ROLE \"{{name}}\" WITH LOGIN PASSWORD '{{password}}';"],
    }
    base.update(spec)
    return _body(KIND_DATABASE_ROLE, name, namespace, generation, base)


def kubernetes_auth_role_body(
    name: str = "app",
    namespace: str = "team-a",
    generation: int = 1,
    **spec: Any,
) -> dict[str, Any]:
    base = {
        "authentication": {"path": "kubernetes", "role": "vault-admin"},
        "path": "kubernetes",
        "serviceAccounts": ["default", "app"],
        "targetNamespaces": {"targetNamespaces": ["team-a"]},
        "policies": ["read-secrets"],
        "tokenTTL": "1h",
    }
    base.update(spec)
    return _body(KIND_KUBERNETES_AUTH_ROLE, name, namespace, generation, base)


def secret_engine_mount_body(
    name: str = "kv-app",
    namespace: str = "team-a",
    generation: int = 1,
    **spec: Any,
) -> dict[str, Any]:
    base = {
        "authentication": {"path": "kubernetes", "role": "vault-admin"},
        "path": "team-a",
        "type": "kv",
        "description": "team-a application secrets",
        "config": {"defaultLeaseTTL": "1h", "maxLeaseTTL": "24h"},
        "options": {"version": "2"},
    }
    base.update(spec)
    return _body(KIND_SECRET_ENGINE_MOUNT, name, namespace, generation, base)


def fake_jwt(auth_config: Any) -> str:
    return f"jwt-for-{auth_config.identity}"


@pytest.fixture
def fake_vault() -> FakeVault:
    return FakeVault()


@pytest.fixture
def fake_sink() -> FakeSink:
    return FakeSink()


@pytest.fixture
def auth_manager(fake_vault: FakeVault) -> AuthManager:
    manager = AuthManager(fake_vault, fake_jwt)
    yield manager
    manager.close()


@pytest.fixture
def retry_config() -> RetryConfig:
    return RetryConfig(min_delay=1.0, max_delay=60.0, backoff=2.0, max_retries=5, jitter=0.0)


@pytest.fixture
def reconciler(fake_vault: FakeVault, auth_manager: AuthManager, fake_sink: FakeSink, retry_config: RetryConfig) -> Reconciler:
    return Reconciler(fake_vault, auth_manager, fake_sink, retry=retry_config, resync_interval=300.0)

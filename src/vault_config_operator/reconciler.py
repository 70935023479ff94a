"""Generic reconciliation of Vault objects.

One control loop drives every resource kind through the ``VaultObject``
capability set; there is no kind-specific branching here.

Per cycle::

    Pending -> Authenticating -> Fetching -> {NoOp | Creating | Updating | Deleting}
            -> Reporting -> Done

with failure edges to Retrying (exponential backoff, re-enters Pending) and
Failed (terminal until the resource's generation changes).

Every remote mutation is preceded by path resolution, token acquisition and
the equivalence check, in that order. The Reconciler is the only component
writing conditions and evicting cached tokens.
"""

from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, TypeVar

from . import metrics
from .auth import AuthManager, AuthToken, KubeAuthConfiguration
from .config import DEFAULT_RESYNC_INTERVAL_SECONDS, RetryConfig
from .constants import (
    COND_FAILED,
    COND_PROGRESSING,
    EVENT_REASON_AUTH_FAILED,
    EVENT_REASON_OBJECT_CREATED,
    EVENT_REASON_OBJECT_DELETED,
    EVENT_REASON_OBJECT_UPDATED,
    EVENT_REASON_RECONCILE_FAILED,
    EVENT_REASON_VALIDATE_FAILED,
    REASON_VALIDATION_FAILED,
)
from .exceptions import (
    AuthError,
    ConflictError,
    TransientRemoteError,
    ValidationError,
)
from .handlers.base import BaseHandler
from .paths import VaultPath
from .resources.base import VaultObject
from .services.vault.base import RemoteSecretService
from .status import StatusSink
from .tracing import add_span_attribute, trace_span
from .utils.conditions import (
    clear_conflict_condition,
    clear_failed_condition,
    get_condition,
    is_condition_true,
    set_auth_failure_condition,
    set_conflict_condition,
    set_failed_condition,
    set_progressing_condition,
    set_ready_condition,
    set_retries_exhausted_condition,
    set_transient_error_condition,
)
from .utils.context import with_correlation_id
from .utils.errors import sanitize_exception
from .utils.locks import KeyedLock

logger = logging.getLogger(__name__)

_T = TypeVar("_T")


class ReconcileState(str, Enum):
    """States of a reconcile cycle."""

    PENDING = "Pending"
    AUTHENTICATING = "Authenticating"
    FETCHING = "Fetching"
    NOOP = "NoOp"
    CREATING = "Creating"
    UPDATING = "Updating"
    DELETING = "Deleting"
    REPORTING = "Reporting"
    DONE = "Done"
    RETRYING = "Retrying"
    FAILED = "Failed"
    DELETED = "Deleted"


@dataclass
class ReconcileResult:
    """Outcome of one reconcile cycle.

    Attributes:
        state: Final state of the cycle
        action: Remote action taken (NoOp, Creating, Updating, Deleting), if any
        requeue_after: Seconds until the key should be processed again;
            None means wait for the next event or resync
        error: Error that ended the cycle, if any
        superseded: True when a newer generation arrived while the cycle ran
        transitions: States visited, in order
    """

    state: ReconcileState
    action: ReconcileState | None = None
    requeue_after: float | None = None
    error: Exception | None = None
    superseded: bool = False
    transitions: list[ReconcileState] = field(default_factory=list)


class RetryTracker:
    """Per-key attempt counter producing exponential backoff delays."""

    def __init__(self, retry: RetryConfig, rng: Callable[[], float] = random.random) -> None:
        self._retry = retry
        self._rng = rng
        self._lock = threading.Lock()
        self._attempts: dict[str, int] = {}

    def next_delay(self, key: str) -> float | None:
        """Record a failed attempt and return the delay before the next one.

        Returns:
            Backoff delay in seconds, or None once the attempt cap is reached
            (the counter is then reset so a later cycle starts afresh)
        """
        with self._lock:
            attempt = self._attempts.get(key, 0)
            if attempt >= self._retry.max_retries:
                self._attempts.pop(key, None)
                return None
            self._attempts[key] = attempt + 1

        delay = min(self._retry.min_delay * (self._retry.backoff ** attempt), self._retry.max_delay)
        if self._retry.jitter:
            delay += delay * self._retry.jitter * (2 * self._rng() - 1)
        return max(delay, 0.0)

    def attempts(self, key: str) -> int:
        with self._lock:
            return self._attempts.get(key, 0)

    def reset(self, key: str) -> None:
        with self._lock:
            self._attempts.pop(key, None)


class Reconciler(BaseHandler):
    """Drives Vault toward the state declared by a resource."""

    def __init__(
        self,
        remote: RemoteSecretService,
        auth_manager: AuthManager,
        sink: StatusSink,
        retry: RetryConfig | None = None,
        resync_interval: float = DEFAULT_RESYNC_INTERVAL_SECONDS,
        current_generation: Callable[[str], int | None] | None = None,
        rng: Callable[[], float] = random.random,
    ) -> None:
        """Initialize the reconciler.

        Args:
            remote: Vault client
            auth_manager: Shared token cache
            sink: Receives status patches, finalizer changes and events
            retry: Backoff settings for the Retrying state
            resync_interval: Delay used once retries are exhausted or on conflicts
            current_generation: Returns the latest known generation for a key;
                used to discard results of superseded cycles
            rng: Random source for backoff jitter
        """
        super().__init__(logging.getLogger(__name__))
        self._remote = remote
        self._auth = auth_manager
        self._sink = sink
        self._retries = RetryTracker(retry or RetryConfig(), rng)
        self._resync_interval = resync_interval
        self._current_generation = current_generation
        self._locks = KeyedLock()

    # Entry point

    def reconcile(self, resource: VaultObject) -> ReconcileResult:
        """Run one reconcile cycle; cycles for the same key never overlap."""
        with self._locks.hold(resource.key), with_correlation_id():
            with trace_span(
                "reconcile",
                kind=resource.kind,
                attributes={"resource.name": resource.name, "resource.namespace": resource.namespace},
            ):
                return self.reconcile_with_metrics(resource, lambda: self._reconcile(resource))

    def _reconcile(self, resource: VaultObject) -> ReconcileResult:
        result = ReconcileResult(state=ReconcileState.PENDING, transitions=[ReconcileState.PENDING])

        if resource.is_marked_for_deletion():
            return self._finalize(resource, result)

        if self._failed_for_generation(resource):
            self.log_info(
                resource,
                f"Generation {resource.generation} previously failed validation; waiting for a spec change",
                reason="Failed",
            )
            return self._finish(result, ReconcileState.FAILED)

        try:
            resource.validate()
            path = resource.get_path()
            add_span_attribute("vault.path", str(path))
            auth_config = resource.get_auth_configuration()
            # The finalizer must be in place before anything is written remotely.
            self._sink.add_finalizer(resource)
            return self._converge(resource, path, auth_config, result)
        except ValidationError as e:
            return self._handle_validation_error(resource, e, result)
        except AuthError as e:
            return self._handle_auth_error(resource, e, result)
        except ConflictError as e:
            return self._handle_conflict(resource, e, result)
        except TransientRemoteError as e:
            return self._handle_transient_error(resource, e, result)

    # State machine steps

    def _transition(self, resource: VaultObject, result: ReconcileResult, state: ReconcileState) -> None:
        result.state = state
        result.transitions.append(state)
        self.logger.debug(f"{resource.key}: -> {state.value}")

    def _finish(
        self,
        result: ReconcileResult,
        state: ReconcileState,
        requeue_after: float | None = None,
        error: Exception | None = None,
    ) -> ReconcileResult:
        result.state = state
        result.transitions.append(state)
        result.requeue_after = requeue_after
        result.error = error
        return result

    def _with_token(
        self,
        auth_config: KubeAuthConfiguration,
        call: Callable[[AuthToken], _T],
        token: AuthToken | None = None,
    ) -> _T:
        """Run ``call`` with a cached token, re-authenticating once on rejection."""
        if token is None:
            token = self._auth.acquire(auth_config)
        try:
            return call(token)
        except AuthError:
            # A fresher token cached by another worker is kept.
            self._auth.evict(auth_config, token)
        token = self._auth.acquire(auth_config)
        try:
            return call(token)
        except AuthError:
            self._auth.evict(auth_config, token)
            raise

    def _read(
        self, path: VaultPath, auth_config: KubeAuthConfiguration, token: AuthToken | None = None
    ) -> dict[str, Any] | None:
        return self._with_token(
            auth_config,
            lambda token: self._remote.read(path, token.client_token, namespace=auth_config.namespace),
            token,
        )

    def _write(self, path: VaultPath, payload: dict[str, Any], auth_config: KubeAuthConfiguration) -> None:
        self._with_token(
            auth_config,
            lambda token: self._remote.write(path, payload, token.client_token, namespace=auth_config.namespace),
        )

    def _converge(
        self,
        resource: VaultObject,
        path: VaultPath,
        auth_config: KubeAuthConfiguration,
        result: ReconcileResult,
    ) -> ReconcileResult:
        self._transition(resource, result, ReconcileState.AUTHENTICATING)
        token = self._auth.acquire(auth_config)

        self._transition(resource, result, ReconcileState.FETCHING)
        observed = self._read(path, auth_config, token)

        if resource.is_equivalent_to_desired_state(observed):
            action = ReconcileState.NOOP
            self._transition(resource, result, action)
        else:
            action = ReconcileState.CREATING if observed is None else ReconcileState.UPDATING
            self._transition(resource, result, action)
            if action is ReconcileState.UPDATING:
                metrics.drift_detected_total.labels(kind=resource.kind).inc()
                self.log_info(resource, f"Drift detected at {path}", reason="DriftDetected", path=path)
            action = self._apply(resource, path, auth_config, action, observed)
        result.action = action

        if self._is_superseded(resource):
            self.log_info(
                resource,
                f"Generation {resource.generation} was superseded; discarding result",
                reason="Superseded",
            )
            result.superseded = True
            return self._finish(result, ReconcileState.PENDING, requeue_after=0.0)

        self._transition(resource, result, ReconcileState.REPORTING)
        self._report_success(resource, path, action)
        self._retries.reset(resource.key)
        return self._finish(result, ReconcileState.DONE)

    def _apply(
        self,
        resource: VaultObject,
        path: VaultPath,
        auth_config: KubeAuthConfiguration,
        action: ReconcileState,
        observed: dict[str, Any] | None,
    ) -> ReconcileState:
        """Write the desired payload; on conflict re-fetch and re-diff once."""
        try:
            self._write(*_write_request(resource, path, observed), auth_config)
            return action
        except ConflictError:
            self.log_warning(resource, f"Conflicting write at {path}; re-reading", reason="Conflict")

        observed = self._read(path, auth_config)
        if resource.is_equivalent_to_desired_state(observed):
            return ReconcileState.NOOP
        self._write(*_write_request(resource, path, observed), auth_config)
        return ReconcileState.CREATING if observed is None else ReconcileState.UPDATING

    def _finalize(self, resource: VaultObject, result: ReconcileResult) -> ReconcileResult:
        if not resource.has_finalizer():
            return self._finish(result, ReconcileState.DELETED)

        self._transition(resource, result, ReconcileState.DELETING)
        result.action = ReconcileState.DELETING

        try:
            path = resource.get_path()
            auth_config = resource.get_auth_configuration()
        except ValidationError as e:
            # Nothing can have been written for an unresolvable path.
            self.log_warning(resource, f"Skipping remote cleanup: {e}", reason="CleanupSkipped")
            self._sink.remove_finalizer(resource)
            return self._finish(result, ReconcileState.DELETED)

        try:
            token = self._auth.acquire(auth_config)
            existed = self._with_token(
                auth_config,
                lambda token: self._remote.delete(path, token.client_token, namespace=auth_config.namespace),
                token,
            )
        except AuthError as e:
            return self._handle_auth_error(resource, e, result)
        except (TransientRemoteError, ConflictError) as e:
            return self._handle_transient_error(resource, e, result)
        except ValidationError as e:
            # Vault refuses the delete; keep the finalizer and try again on resync.
            self.log_error(resource, f"Vault rejected delete of {path}", error=e, reason="DeleteRejected")
            self._sink.record_event(resource, EVENT_REASON_RECONCILE_FAILED, sanitize_exception(e), "Warning")
            return self._finish(result, ReconcileState.RETRYING, self._resync_interval, e)

        self._sink.remove_finalizer(resource)
        self._retries.reset(resource.key)
        self._sink.record_event(resource, EVENT_REASON_OBJECT_DELETED, f"Vault object {path} deleted")
        self.log_info(
            resource,
            f"Deleted Vault object {path}" if existed else f"Vault object {path} was already absent",
            reason="Deleted",
            path=path,
        )
        metrics.reconcile_total.labels(kind=resource.kind, result="deleted").inc()
        return self._finish(result, ReconcileState.DELETED)

    # Reporting

    def _failed_for_generation(self, resource: VaultObject) -> bool:
        conditions = resource.conditions
        if not is_condition_true(conditions, COND_FAILED):
            return False
        return get_condition(conditions, COND_FAILED).get("observedGeneration") == resource.generation

    def _is_superseded(self, resource: VaultObject) -> bool:
        if self._current_generation is None:
            return False
        latest = self._current_generation(resource.key)
        return latest is not None and latest > resource.generation

    def _patch_conditions(self, resource: VaultObject, conditions: list[dict[str, Any]]) -> None:
        status = {"conditions": conditions, "observedGeneration": resource.generation}
        previous = getattr(resource, "body", {}).get("status") or {}
        if (
            previous.get("conditions") == conditions
            and previous.get("observedGeneration") == resource.generation
        ):
            return
        self._sink.patch_status(resource, status)

    def _report_success(self, resource: VaultObject, path: VaultPath, action: ReconcileState) -> None:
        generation = resource.generation
        conditions = resource.conditions

        if action is ReconcileState.NOOP:
            message = f"Vault object {path} is in sync"
        elif action is ReconcileState.CREATING:
            message = f"Vault object {path} created"
        else:
            message = f"Vault object {path} updated"

        set_ready_condition(conditions, True, message, generation)
        clear_failed_condition(conditions, generation)
        clear_conflict_condition(conditions, generation)
        if get_condition(conditions, COND_PROGRESSING) is not None:
            set_progressing_condition(conditions, message, generation)
        self._patch_conditions(resource, conditions)

        if action is ReconcileState.CREATING:
            self._sink.record_event(resource, EVENT_REASON_OBJECT_CREATED, message)
        elif action is ReconcileState.UPDATING:
            self._sink.record_event(resource, EVENT_REASON_OBJECT_UPDATED, message)

        self.log_info(resource, message, event=action.value.lower(), reason="Reconciled", path=path)
        metrics.reconcile_total.labels(kind=resource.kind, result="success").inc()
        metrics.resource_status_total.labels(kind=resource.kind, status="ready").inc()

    def _handle_validation_error(
        self, resource: VaultObject, error: ValidationError, result: ReconcileResult
    ) -> ReconcileResult:
        message = sanitize_exception(error)
        generation = resource.generation
        conditions = resource.conditions
        set_failed_condition(conditions, message, generation)
        set_ready_condition(conditions, False, message, generation, reason=REASON_VALIDATION_FAILED)
        self._patch_conditions(resource, conditions)

        self.log_error(resource, "Validation failed", error=error, reason=REASON_VALIDATION_FAILED)
        self._sink.record_event(resource, EVENT_REASON_VALIDATE_FAILED, message, "Warning")
        metrics.reconcile_total.labels(kind=resource.kind, result="failed").inc()
        metrics.resource_status_total.labels(kind=resource.kind, status="failed").inc()
        self._retries.reset(resource.key)
        return self._finish(result, ReconcileState.FAILED, error=error)

    def _backoff(self, resource: VaultObject, conditions: list[dict[str, Any]], message: str) -> float:
        delay = self._retries.next_delay(resource.key)
        if delay is None:
            set_retries_exhausted_condition(
                conditions,
                f"Giving up fast retries, next attempt at resync: {message}",
                resource.generation,
            )
            return self._resync_interval
        return delay

    def _handle_auth_error(
        self, resource: VaultObject, error: AuthError, result: ReconcileResult
    ) -> ReconcileResult:
        message = sanitize_exception(error)
        conditions = resource.conditions
        set_auth_failure_condition(conditions, message, resource.generation)
        delay = self._backoff(resource, conditions, message)
        self._patch_conditions(resource, conditions)

        self.log_error(resource, "Vault authentication failed", error=error, reason="AuthFailure")
        self._sink.record_event(resource, EVENT_REASON_AUTH_FAILED, message, "Warning")
        metrics.reconcile_total.labels(kind=resource.kind, result="retry").inc()
        metrics.resource_status_total.labels(kind=resource.kind, status="not_ready").inc()
        return self._finish(result, ReconcileState.RETRYING, delay, error)

    def _handle_transient_error(
        self, resource: VaultObject, error: Exception, result: ReconcileResult
    ) -> ReconcileResult:
        message = sanitize_exception(error)
        conditions = resource.conditions
        set_transient_error_condition(conditions, message, resource.generation)
        delay = self._backoff(resource, conditions, message)
        self._patch_conditions(resource, conditions)

        self.log_warning(
            resource,
            f"Transient failure, retrying in {delay:.1f}s",
            reason="TransientError",
            error=message,
            attempt=self._retries.attempts(resource.key),
        )
        metrics.error_total.labels(kind=resource.kind, error_type=type(error).__name__).inc()
        metrics.reconcile_total.labels(kind=resource.kind, result="retry").inc()
        return self._finish(result, ReconcileState.RETRYING, delay, error)

    def _handle_conflict(
        self, resource: VaultObject, error: ConflictError, result: ReconcileResult
    ) -> ReconcileResult:
        message = sanitize_exception(error)
        conditions = resource.conditions
        set_conflict_condition(conditions, message, resource.generation)
        self._patch_conditions(resource, conditions)

        self.log_warning(resource, "Remote object keeps conflicting; retrying at resync", reason="Conflict")
        self._sink.record_event(resource, EVENT_REASON_RECONCILE_FAILED, message, "Warning")
        metrics.reconcile_total.labels(kind=resource.kind, result="conflict").inc()
        return self._finish(result, ReconcileState.RETRYING, self._resync_interval, error)


def _write_request(
    resource: VaultObject, path: VaultPath, observed: dict[str, Any] | None
) -> tuple[VaultPath, dict[str, Any]]:
    if observed is None:
        return path, resource.get_payload()
    return resource.get_update_request(observed)

"""Tests for the reconcile state machine."""

from __future__ import annotations

import copy
import threading
from unittest.mock import patch

import pytest
from conftest import (
    FakeSink,
    FakeVault,
    database_role_body,
    kubernetes_auth_role_body,
    secret_engine_mount_body,
    static_role_body,
)

from vault_config_operator.auth import AuthManager
from vault_config_operator.config import RetryConfig
from vault_config_operator.constants import (
    COND_CONFLICT,
    COND_FAILED,
    COND_PROGRESSING,
    COND_READY,
    EVENT_REASON_AUTH_FAILED,
    EVENT_REASON_OBJECT_CREATED,
    EVENT_REASON_OBJECT_DELETED,
    EVENT_REASON_OBJECT_UPDATED,
    EVENT_REASON_VALIDATE_FAILED,
    FINALIZER,
    REASON_AUTH_FAILURE,
    REASON_RETRIES_EXHAUSTED,
    REASON_TRANSIENT_ERROR,
    REASON_VALIDATION_FAILED,
)
from vault_config_operator.exceptions import AuthError, ConflictError, TransientRemoteError, ValidationError
from vault_config_operator.reconciler import Reconciler, ReconcileState, RetryTracker
from vault_config_operator.resources import resource_from_body
from vault_config_operator.utils.conditions import get_condition


def _deleting(body: dict, finalizers: list[str] | None = None) -> dict:
    body["metadata"]["deletionTimestamp"] = "2024-01-01T00:00:00Z"
    body["metadata"]["finalizers"] = [FINALIZER] if finalizers is None else finalizers
    return body


class TestCreate:
    """A resource whose object does not exist in Vault yet."""

    def test_static_role_is_written_to_its_canonical_path(self, reconciler, fake_vault, fake_sink):
        """Test a static role lands at <mount>/static-roles/<name> with Ready=True."""
        resource = resource_from_body(static_role_body())

        result = reconciler.reconcile(resource)

        assert result.state is ReconcileState.DONE
        assert result.action is ReconcileState.CREATING
        assert result.requeue_after is None
        assert fake_vault.mutations == [("write", "database/static-roles/app-role")]
        written = fake_vault.objects["database/static-roles/app-role"]
        assert written["username"] == "app"
        assert written["db_name"] == "pg"
        assert written["rotation_period"] == "24h"

        ready = get_condition(resource.conditions, COND_READY)
        assert ready["status"] == "True"
        assert ready["observedGeneration"] == 1
        assert resource.body["status"]["observedGeneration"] == 1
        assert EVENT_REASON_OBJECT_CREATED in fake_sink.event_reasons()

    def test_state_sequence(self, reconciler):
        """Test the states visited by a creating cycle."""
        result = reconciler.reconcile(resource_from_body(static_role_body()))

        assert result.transitions == [
            ReconcileState.PENDING,
            ReconcileState.AUTHENTICATING,
            ReconcileState.FETCHING,
            ReconcileState.CREATING,
            ReconcileState.REPORTING,
            ReconcileState.DONE,
        ]

    def test_auth_before_read_before_write(self, reconciler, fake_vault):
        """Test token acquisition and read precede the first mutation."""
        reconciler.reconcile(resource_from_body(static_role_body()))

        ops = [op for op, _ in fake_vault.calls]
        assert ops == ["login", "read", "write"]

    def test_finalizer_added_before_write(self, reconciler, fake_sink, fake_vault):
        """Test the finalizer is in place when the object is created."""
        resource = resource_from_body(static_role_body())

        reconciler.reconcile(resource)

        assert fake_sink.finalizer_changes == [("add", resource.key)]
        assert resource.has_finalizer()

    def test_kubernetes_auth_role_path_is_normalized(self, reconciler, fake_vault):
        """Test surrounding slashes in the mount do not change the path."""
        resource = resource_from_body(kubernetes_auth_role_body(path="/kubernetes/"))

        result = reconciler.reconcile(resource)

        assert result.state is ReconcileState.DONE
        assert fake_vault.mutations == [("write", "auth/kubernetes/role/app")]
        written = fake_vault.objects["auth/kubernetes/role/app"]
        assert written["bound_service_account_names"] == ["default", "app"]
        assert written["bound_service_account_namespaces"] == ["team-a"]

    def test_database_role(self, reconciler, fake_vault):
        """Test a dynamic database role lands at <mount>/roles/<name>."""
        result = reconciler.reconcile(resource_from_body(database_role_body()))

        assert result.action is ReconcileState.CREATING
        assert "database/roles/readonly" in fake_vault.objects


class TestIdempotence:
    """Converged resources never cause remote mutations."""

    def test_second_cycle_is_noop(self, reconciler, fake_vault):
        """Test reconciling twice without changes writes once."""
        resource = resource_from_body(static_role_body())
        reconciler.reconcile(resource)
        writes = len(fake_vault.mutations)

        result = reconciler.reconcile(resource)

        assert result.action is ReconcileState.NOOP
        assert result.state is ReconcileState.DONE
        assert len(fake_vault.mutations) == writes

    def test_vault_representation_is_equivalent(self, reconciler, fake_vault, fake_sink):
        """Test Vault's echoed shape is not mistaken for drift."""
        fake_vault.objects["database/static-roles/app-role"] = {
            "username": "app",
            "rotation_period": 86400,
            "db_name": "pg",
            "rotation_statements": ["ALTER USER \"{{name}}\" WITH PASSWORD '{{password}}';"],
            "last_vault_rotation": "2024-01-01T00:00:00Z",
            "ttl": 86000,
            "credential_type": "password",
        }
        resource = resource_from_body(static_role_body())

        result = reconciler.reconcile(resource)

        assert result.action is ReconcileState.NOOP
        assert fake_vault.mutations == []
        assert get_condition(resource.conditions, COND_READY)["status"] == "True"
        assert fake_sink.event_reasons() == []

    def test_ready_transition_time_kept_on_resync(self, reconciler):
        """Test a no-op cycle keeps Ready's lastTransitionTime."""
        resource = resource_from_body(static_role_body())
        reconciler.reconcile(resource)
        first = get_condition(resource.conditions, COND_READY)["lastTransitionTime"]

        reconciler.reconcile(resource)

        assert get_condition(resource.conditions, COND_READY)["lastTransitionTime"] == first

    def test_unchanged_status_is_not_patched(self, reconciler, fake_sink):
        """Test a steady state produces no further status patches."""
        resource = resource_from_body(static_role_body())
        reconciler.reconcile(resource)
        reconciler.reconcile(resource)
        patches = len(fake_sink.status_patches)

        reconciler.reconcile(resource)

        assert len(fake_sink.status_patches) == patches

    def test_drift_is_corrected(self, reconciler, fake_vault, fake_sink):
        """Test an out-of-band change is overwritten."""
        resource = resource_from_body(static_role_body())
        reconciler.reconcile(resource)
        fake_vault.objects["database/static-roles/app-role"]["username"] = "intruder"

        result = reconciler.reconcile(resource)

        assert result.action is ReconcileState.UPDATING
        assert fake_vault.objects["database/static-roles/app-role"]["username"] == "app"
        assert EVENT_REASON_OBJECT_UPDATED in fake_sink.event_reasons()


class TestAuthentication:
    """Vault authentication outcomes."""

    def test_login_rejected(self, reconciler, fake_vault, fake_sink, auth_manager):
        """Test a rejected login performs no read or write and backs off."""
        fake_vault.reject_login = True
        resource = resource_from_body(static_role_body())

        result = reconciler.reconcile(resource)

        assert result.state is ReconcileState.RETRYING
        assert isinstance(result.error, AuthError)
        assert result.requeue_after == 1.0
        assert fake_vault.ops("read", "write", "delete") == []
        ready = get_condition(resource.conditions, COND_READY)
        assert ready["status"] == "False"
        assert ready["reason"] == REASON_AUTH_FAILURE
        assert auth_manager.cached(resource.get_auth_configuration()) is None
        assert EVENT_REASON_AUTH_FAILED in fake_sink.event_reasons()

    def test_revoked_token_is_replaced_once(self, reconciler, fake_vault, auth_manager):
        """Test an AuthError on read evicts the token and retries with a fresh one."""
        resource = resource_from_body(static_role_body())
        fake_vault.fail_next("read", AuthError("permission denied"))

        result = reconciler.reconcile(resource)

        assert result.state is ReconcileState.DONE
        assert fake_vault.logins == 2
        assert auth_manager.cached(resource.get_auth_configuration()).client_token == "hvs.fake-token-2"

    def test_stale_rejection_keeps_refreshed_token(self, reconciler, fake_vault, auth_manager):
        """Test a rejection of an old token does not evict one refreshed meanwhile."""
        resource = resource_from_body(static_role_body())
        cfg = resource.get_auth_configuration()
        stale = auth_manager.acquire(cfg)
        read = fake_vault.read
        refreshed = []

        def read_after_refresh(path, token, namespace=None):
            if not refreshed:
                auth_manager.evict(cfg, stale)
                refreshed.append(auth_manager.acquire(cfg))
                raise AuthError("permission denied")
            return read(path, token, namespace=namespace)

        fake_vault.read = read_after_refresh

        result = reconciler.reconcile(resource)

        assert result.state is ReconcileState.DONE
        assert fake_vault.logins == 2
        assert auth_manager.cached(cfg) is refreshed[0]

    def test_repeated_auth_error_gives_up(self, reconciler, fake_vault):
        """Test a second AuthError in the same cycle marks the resource not ready."""
        resource = resource_from_body(static_role_body())
        fake_vault.fail_next("read", AuthError("denied"), AuthError("denied"))

        result = reconciler.reconcile(resource)

        assert result.state is ReconcileState.RETRYING
        assert get_condition(resource.conditions, COND_READY)["reason"] == REASON_AUTH_FAILURE
        assert fake_vault.mutations == []

    def test_token_reused_across_resources(self, reconciler, fake_vault):
        """Test resources sharing an identity share one login."""
        reconciler.reconcile(resource_from_body(static_role_body(name="one")))
        reconciler.reconcile(resource_from_body(static_role_body(name="two")))

        assert fake_vault.logins == 1


class TestValidation:
    """Terminal validation failures."""

    def test_invalid_spec_is_terminal(self, reconciler, fake_vault, fake_sink):
        """Test a too-short rotation period fails without touching Vault."""
        resource = resource_from_body(static_role_body(rotationPeriod="2s"))

        result = reconciler.reconcile(resource)

        assert result.state is ReconcileState.FAILED
        assert isinstance(result.error, ValidationError)
        assert result.requeue_after is None
        assert fake_vault.calls == []
        failed = get_condition(resource.conditions, COND_FAILED)
        assert failed["status"] == "True"
        assert failed["observedGeneration"] == 1
        ready = get_condition(resource.conditions, COND_READY)
        assert ready["status"] == "False"
        assert ready["reason"] == REASON_VALIDATION_FAILED
        assert EVENT_REASON_VALIDATE_FAILED in fake_sink.event_reasons()

    def test_invalid_path_is_terminal(self, reconciler, fake_vault):
        """Test a traversal segment in the mount path is rejected."""
        resource = resource_from_body(static_role_body(path="database/../sys"))

        result = reconciler.reconcile(resource)

        assert result.state is ReconcileState.FAILED
        assert fake_vault.calls == []

    def test_failed_generation_is_not_retried(self, reconciler, fake_vault, fake_sink):
        """Test a failed generation is skipped until the spec changes."""
        resource = resource_from_body(static_role_body(rotationPeriod="2s"))
        reconciler.reconcile(resource)
        patches = len(fake_sink.status_patches)

        result = reconciler.reconcile(resource)

        assert result.state is ReconcileState.FAILED
        assert len(fake_sink.status_patches) == patches
        assert fake_vault.calls == []

    def test_new_generation_recovers(self, reconciler, fake_vault):
        """Test fixing the spec clears Failed and converges."""
        failing = resource_from_body(static_role_body(rotationPeriod="2s"))
        reconciler.reconcile(failing)

        fixed_body = static_role_body(generation=2)
        fixed_body["status"] = failing.body["status"]
        fixed = resource_from_body(fixed_body)
        result = reconciler.reconcile(fixed)

        assert result.state is ReconcileState.DONE
        assert get_condition(fixed.conditions, COND_FAILED)["status"] == "False"
        assert get_condition(fixed.conditions, COND_READY)["status"] == "True"

    def test_missing_authentication_role(self, reconciler):
        """Test a resource without an auth role fails validation."""
        resource = resource_from_body(static_role_body(authentication={"path": "kubernetes"}))

        result = reconciler.reconcile(resource)

        assert result.state is ReconcileState.FAILED


class TestTransientErrors:
    """Retryable failures and backoff."""

    def test_backoff_grows_exponentially(self, reconciler, fake_vault):
        """Test consecutive transient failures double the delay."""
        resource = resource_from_body(static_role_body())
        delays = []
        for _ in range(5):
            fake_vault.fail_next("read", TransientRemoteError("connection refused"))
            delays.append(reconciler.reconcile(resource).requeue_after)

        assert delays == [1.0, 2.0, 4.0, 8.0, 16.0]
        progressing = get_condition(resource.conditions, COND_PROGRESSING)
        assert progressing["status"] == "False"
        assert progressing["reason"] == REASON_TRANSIENT_ERROR

    def test_retries_exhausted_falls_back_to_resync(self, reconciler, fake_vault):
        """Test exceeding the retry cap waits for the resync interval."""
        resource = resource_from_body(static_role_body())
        for _ in range(5):
            fake_vault.fail_next("read", TransientRemoteError("timeout"))
            reconciler.reconcile(resource)

        fake_vault.fail_next("read", TransientRemoteError("timeout"))
        result = reconciler.reconcile(resource)

        assert result.state is ReconcileState.RETRYING
        assert result.requeue_after == 300.0
        ready = get_condition(resource.conditions, COND_READY)
        assert ready["status"] == "False"
        assert ready["reason"] == REASON_RETRIES_EXHAUSTED

        fake_vault.fail_next("read", TransientRemoteError("timeout"))
        assert reconciler.reconcile(resource).requeue_after == 1.0

    def test_success_resets_backoff(self, reconciler, fake_vault):
        """Test a successful cycle restores the Progressing condition and backoff."""
        resource = resource_from_body(static_role_body())
        fake_vault.fail_next("write", TransientRemoteError("503"))
        reconciler.reconcile(resource)

        result = reconciler.reconcile(resource)
        assert result.state is ReconcileState.DONE
        assert get_condition(resource.conditions, COND_PROGRESSING)["status"] == "True"

        fake_vault.fail_next("read", TransientRemoteError("503"))
        assert reconciler.reconcile(resource).requeue_after == 1.0


class TestConflicts:
    """Concurrent remote modification."""

    def test_single_conflict_is_resolved_by_refetch(self, reconciler, fake_vault):
        """Test one conflicting write is retried after re-reading."""
        fake_vault.fail_next("write", ConflictError("check-and-set mismatch"))
        resource = resource_from_body(static_role_body())

        result = reconciler.reconcile(resource)

        assert result.state is ReconcileState.DONE
        assert fake_vault.ops("read") == [("read", "database/static-roles/app-role")] * 2
        assert "database/static-roles/app-role" in fake_vault.objects

    def test_persistent_conflict_sets_condition(self, reconciler, fake_vault):
        """Test a second conflict sets Conflict=True and waits for resync."""
        fake_vault.fail_next("write", ConflictError("cas"), ConflictError("cas"))
        resource = resource_from_body(static_role_body())

        result = reconciler.reconcile(resource)

        assert result.state is ReconcileState.RETRYING
        assert result.requeue_after == 300.0
        assert get_condition(resource.conditions, COND_CONFLICT)["status"] == "True"

    def test_conflict_clears_after_success(self, reconciler, fake_vault):
        """Test Conflict flips back to False once the object converges."""
        fake_vault.fail_next("write", ConflictError("cas"), ConflictError("cas"))
        resource = resource_from_body(static_role_body())
        reconciler.reconcile(resource)

        reconciler.reconcile(resource)

        assert get_condition(resource.conditions, COND_CONFLICT)["status"] == "False"


class TestDeletion:
    """Finalizer-driven cleanup."""

    def test_delete_removes_object_and_finalizer(self, reconciler, fake_vault, fake_sink):
        """Test deleting a resource removes the Vault object first."""
        reconciler.reconcile(resource_from_body(static_role_body()))
        resource = resource_from_body(_deleting(static_role_body()))

        result = reconciler.reconcile(resource)

        assert result.state is ReconcileState.DELETED
        assert "database/static-roles/app-role" not in fake_vault.objects
        assert not resource.has_finalizer()
        assert ("remove", resource.key) in fake_sink.finalizer_changes
        assert EVENT_REASON_OBJECT_DELETED in fake_sink.event_reasons()

    def test_delete_is_idempotent(self, reconciler, fake_vault):
        """Test deleting an object that is already gone still succeeds."""
        resource = resource_from_body(_deleting(static_role_body()))

        result = reconciler.reconcile(resource)

        assert result.state is ReconcileState.DELETED
        assert fake_vault.ops("delete") == [("delete", "database/static-roles/app-role")]
        assert not resource.has_finalizer()

    def test_without_finalizer_nothing_is_called(self, reconciler, fake_vault):
        """Test a resource we never finalized is released untouched."""
        resource = resource_from_body(_deleting(static_role_body(), finalizers=[]))

        result = reconciler.reconcile(resource)

        assert result.state is ReconcileState.DELETED
        assert fake_vault.calls == []

    def test_transient_failure_keeps_finalizer(self, reconciler, fake_vault, fake_sink):
        """Test a failed delete is retried and the finalizer stays."""
        fake_vault.fail_next("delete", TransientRemoteError("503"))
        resource = resource_from_body(_deleting(static_role_body()))

        result = reconciler.reconcile(resource)

        assert result.state is ReconcileState.RETRYING
        assert result.requeue_after == 1.0
        assert resource.has_finalizer()
        assert fake_sink.finalizer_changes == []

    def test_invalid_path_releases_finalizer(self, reconciler, fake_vault):
        """Test an unresolvable path skips remote cleanup."""
        resource = resource_from_body(_deleting(static_role_body(path="")))

        result = reconciler.reconcile(resource)

        assert result.state is ReconcileState.DELETED
        assert fake_vault.calls == []
        assert not resource.has_finalizer()


class TestSupersededGeneration:
    """Results of stale cycles are discarded."""

    def test_stale_result_is_not_reported(self, fake_vault, fake_sink, auth_manager, retry_config):
        """Test a cycle overtaken by a newer generation requeues without reporting."""
        reconciler = Reconciler(
            fake_vault, auth_manager, fake_sink, retry=retry_config, current_generation=lambda key: 2
        )
        resource = resource_from_body(static_role_body(generation=1))

        result = reconciler.reconcile(resource)

        assert result.superseded
        assert result.requeue_after == 0.0
        assert fake_sink.status_patches == []

    def test_current_generation_is_reported(self, fake_vault, fake_sink, auth_manager, retry_config):
        """Test a cycle for the latest generation reports normally."""
        reconciler = Reconciler(
            fake_vault, auth_manager, fake_sink, retry=retry_config, current_generation=lambda key: 1
        )

        result = reconciler.reconcile(resource_from_body(static_role_body(generation=1)))

        assert not result.superseded
        assert result.state is ReconcileState.DONE


class TestRetryTracker:
    """Backoff computation."""

    def test_delays_are_capped(self):
        """Test delays never exceed the maximum."""
        tracker = RetryTracker(RetryConfig(min_delay=10.0, max_delay=30.0, max_retries=10, jitter=0.0))

        delays = [tracker.next_delay("k") for _ in range(4)]

        assert delays == [10.0, 20.0, 30.0, 30.0]

    def test_jitter_bounds(self):
        """Test jitter stays within the configured fraction."""
        low = RetryTracker(RetryConfig(jitter=0.1), rng=lambda: 0.0)
        high = RetryTracker(RetryConfig(jitter=0.1), rng=lambda: 1.0)

        assert low.next_delay("k") == pytest.approx(0.9)
        assert high.next_delay("k") == pytest.approx(1.1)

    def test_keys_are_independent(self):
        """Test attempts are counted per key."""
        tracker = RetryTracker(RetryConfig(jitter=0.0))
        tracker.next_delay("a")
        tracker.next_delay("a")

        assert tracker.attempts("a") == 2
        assert tracker.attempts("b") == 0
        tracker.reset("a")
        assert tracker.attempts("a") == 0


MOUNT_PATH = "sys/mounts/team-a/kv-app"


def _mounted(**overrides) -> dict:
    view = {
        "type": "kv",
        "description": "team-a application secrets",
        "config": {"default_lease_ttl": 3600, "max_lease_ttl": 86400, "force_no_cache": False},
        "local": False,
        "seal_wrap": False,
        "options": {"version": "2"},
    }
    view.update(overrides)
    return view


class TestSecretEngineMounts:
    """Mounts are enabled once and tuned afterwards."""

    def test_new_mount_is_enabled(self, reconciler, fake_vault):
        """Test a missing engine is enabled at sys/mounts/<mount>."""
        result = reconciler.reconcile(resource_from_body(secret_engine_mount_body()))

        assert result.action is ReconcileState.CREATING
        assert fake_vault.mutations == [("write", MOUNT_PATH)]
        assert fake_vault.objects[MOUNT_PATH]["type"] == "kv"

    def test_existing_mount_is_noop(self, reconciler, fake_vault):
        """Test an engine matching the spec is left alone."""
        fake_vault.objects[MOUNT_PATH] = _mounted()

        result = reconciler.reconcile(resource_from_body(secret_engine_mount_body()))

        assert result.action is ReconcileState.NOOP
        assert fake_vault.mutations == []

    def test_drift_is_tuned(self, reconciler, fake_vault):
        """Test lease TTL drift is corrected through the tune endpoint."""
        fake_vault.objects[MOUNT_PATH] = _mounted(config={"default_lease_ttl": 1800, "max_lease_ttl": 86400})

        result = reconciler.reconcile(resource_from_body(secret_engine_mount_body()))

        assert result.action is ReconcileState.UPDATING
        assert fake_vault.mutations == [("write", f"{MOUNT_PATH}/tune")]
        assert fake_vault.objects[f"{MOUNT_PATH}/tune"]["default_lease_ttl"] == "1h"

    def test_type_change_is_terminal(self, reconciler, fake_vault):
        """Test an engine of another type is never remounted."""
        fake_vault.objects[MOUNT_PATH] = _mounted(type="generic")
        resource = resource_from_body(secret_engine_mount_body())

        result = reconciler.reconcile(resource)

        assert result.state is ReconcileState.FAILED
        assert isinstance(result.error, ValidationError)
        assert fake_vault.mutations == []
        assert get_condition(resource.conditions, COND_FAILED)["status"] == "True"

    def test_delete_disables_mount(self, reconciler, fake_vault):
        """Test deleting the resource disables the engine."""
        fake_vault.objects[MOUNT_PATH] = _mounted()

        result = reconciler.reconcile(resource_from_body(_deleting(secret_engine_mount_body())))

        assert result.state is ReconcileState.DELETED
        assert fake_vault.mutations == [("delete", MOUNT_PATH)]


def test_reconciler_works_with_any_kind(fake_vault: FakeVault, fake_sink: FakeSink, auth_manager: AuthManager):
    """Test every registered kind converges through the same loop."""
    reconciler = Reconciler(fake_vault, auth_manager, fake_sink)
    for body in (
        static_role_body(),
        database_role_body(),
        kubernetes_auth_role_body(),
        secret_engine_mount_body(),
    ):
        resource = resource_from_body(body)
        assert reconciler.reconcile(resource).state is ReconcileState.DONE
        assert reconciler.reconcile(resource).action is ReconcileState.NOOP


class TestScenarios:
    """End-to-end cycles against the in-memory Vault."""

    def test_new_static_role_is_created(self, reconciler, fake_vault):
        """Test a new static role is read once then written to its path."""
        resource = resource_from_body(static_role_body(name="db-role-a", path="db", rotationStatements=[]))

        result = reconciler.reconcile(resource)

        assert result.state is ReconcileState.DONE
        assert fake_vault.ops("read", "write") == [
            ("read", "db/static-roles/db-role-a"),
            ("write", "db/static-roles/db-role-a"),
        ]
        assert get_condition(resource.conditions, COND_READY)["status"] == "True"

    def test_resyncs_of_converged_role_only_read(self, reconciler, fake_vault):
        """Test three resyncs of a converged role read three times and never write."""
        resource = resource_from_body(static_role_body(name="db-role-a", path="db", rotationStatements=[]))
        reconciler.reconcile(resource)
        fake_vault.calls.clear()

        for _ in range(3):
            assert reconciler.reconcile(resource).action is ReconcileState.NOOP

        assert fake_vault.ops("read") == [("read", "db/static-roles/db-role-a")] * 3
        assert fake_vault.mutations == []

    def test_changed_rotation_period_updates_once(self, reconciler, fake_vault):
        """Test a new generation with a shorter rotation period is written once."""
        resource = resource_from_body(static_role_body(name="db-role-a", path="db", rotationStatements=[]))
        reconciler.reconcile(resource)
        ready_since = get_condition(resource.conditions, COND_READY)["lastTransitionTime"]
        fake_vault.calls.clear()

        body = copy.deepcopy(resource.body)
        body["metadata"]["generation"] = 2
        body["spec"]["rotationPeriod"] = "12h"
        updated = resource_from_body(body)

        result = reconciler.reconcile(updated)

        assert result.action is ReconcileState.UPDATING
        assert fake_vault.mutations == [("write", "db/static-roles/db-role-a")]
        assert fake_vault.objects["db/static-roles/db-role-a"]["rotation_period"] == "12h"
        ready = get_condition(updated.conditions, COND_READY)
        assert ready["status"] == "True"
        assert ready["lastTransitionTime"] == ready_since
        assert ready["observedGeneration"] == 2

    def test_concurrent_resources_share_one_login(self, reconciler, fake_vault):
        """Test resources reconciled in parallel with one identity log in once."""
        fake_vault.login_delay = 0.05
        resources = [resource_from_body(static_role_body(name=f"role-{i}")) for i in range(6)]
        barrier = threading.Barrier(len(resources))
        results = []
        lock = threading.Lock()

        def worker(resource):
            barrier.wait()
            result = reconciler.reconcile(resource)
            with lock:
                results.append(result.state)

        threads = [threading.Thread(target=worker, args=(r,)) for r in resources]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert fake_vault.logins == 1
        assert results == [ReconcileState.DONE] * len(resources)

    def test_token_acquired_once_per_cycle(self, reconciler, auth_manager):
        """Test a no-op cycle asks the token cache exactly once."""
        resource = resource_from_body(static_role_body())
        reconciler.reconcile(resource)

        with patch.object(auth_manager, "acquire", wraps=auth_manager.acquire) as acquire:
            result = reconciler.reconcile(resource)

        assert result.action is ReconcileState.NOOP
        assert acquire.call_count == 1

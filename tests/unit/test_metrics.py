"""Tests for Prometheus metrics."""

from __future__ import annotations

from prometheus_client import REGISTRY

from vault_config_operator.metrics import (
    api_call_total,
    auth_login_total,
    drift_detected_total,
    error_total,
    reconcile_duration_seconds,
    reconcile_total,
    token_cache_total,
    vault_operations_total,
    workqueue_depth,
)


class TestMetricsExist:
    """Test that all expected metrics are defined."""

    def test_reconcile_total_exists(self):
        """Test reconcile_total counter exists."""
        # Prometheus counters don't include "_total" in their _name attribute
        assert reconcile_total._name == "vault_config_operator_reconcile"

    def test_reconcile_duration_exists(self):
        """Test reconcile_duration_seconds histogram exists."""
        assert reconcile_duration_seconds._name == "vault_config_operator_reconcile_duration_seconds"

    def test_vault_operations_total_exists(self):
        """Test vault_operations_total counter exists."""
        assert vault_operations_total._name == "vault_config_operator_vault_operations"

    def test_auth_metrics_exist(self):
        """Test login and token cache counters exist."""
        assert auth_login_total._name == "vault_config_operator_auth_login"
        assert token_cache_total._name == "vault_config_operator_token_cache"

    def test_drift_detected_total_exists(self):
        """Test drift_detected_total counter exists."""
        assert drift_detected_total._name == "vault_config_operator_drift_detected"

    def test_workqueue_depth_exists(self):
        """Test workqueue_depth gauge exists."""
        assert workqueue_depth._name == "vault_config_operator_workqueue_depth"


class TestMetricsUsage:
    """Test that metrics can be incremented with their labels."""

    def test_reconcile_total_labels(self):
        """Test reconcile_total accepts kind and result."""
        before = REGISTRY.get_sample_value(
            "vault_config_operator_reconcile_total", {"kind": "TestKind", "result": "success"}
        ) or 0.0

        reconcile_total.labels(kind="TestKind", result="success").inc()

        after = REGISTRY.get_sample_value(
            "vault_config_operator_reconcile_total", {"kind": "TestKind", "result": "success"}
        )
        assert after == before + 1

    def test_error_total_labels(self):
        """Test error_total accepts kind and error_type."""
        error_total.labels(kind="TestKind", error_type="ValidationError").inc()

    def test_api_call_total_labels(self):
        """Test api_call_total accepts api_type, operation and result."""
        api_call_total.labels(api_type="k8s", operation="patch_status", result="success").inc()

    def test_workqueue_depth_settable(self):
        """Test the gauge tracks the last value."""
        workqueue_depth.set(3)
        assert REGISTRY.get_sample_value("vault_config_operator_workqueue_depth") == 3.0

"""Prometheus metrics for the Vault Config Operator."""

from prometheus_client import Counter, Gauge, Histogram

# Reconciliation metrics
reconcile_total = Counter(
    "vault_config_operator_reconcile_total",
    "Total number of reconciliations",
    ["kind", "result"],
)

reconcile_duration_seconds = Histogram(
    "vault_config_operator_reconcile_duration_seconds",
    "Duration of reconciliations in seconds",
    ["kind"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0],
)

resource_status_total = Counter(
    "vault_config_operator_resource_status_total",
    "Resource status outcomes reported on the Ready condition",
    ["kind", "status"],
)

error_total = Counter(
    "vault_config_operator_error_total",
    "Total number of reconciliation errors",
    ["kind", "error_type"],
)

# Configuration drift detection metrics
drift_detected_total = Counter(
    "vault_config_operator_drift_detected_total",
    "Total number of configuration drift detections",
    ["kind"],
)

# Vault operation metrics
vault_operations_total = Counter(
    "vault_config_operator_vault_operations_total",
    "Total number of Vault API operations",
    ["operation", "result"],
)

vault_operation_duration_seconds = Histogram(
    "vault_config_operator_vault_operation_duration_seconds",
    "Duration of Vault API operations in seconds",
    ["operation"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0],
)

# Authentication metrics
auth_login_total = Counter(
    "vault_config_operator_auth_login_total",
    "Total number of Vault login exchanges",
    ["result"],
)

token_cache_total = Counter(
    "vault_config_operator_token_cache_total",
    "Token cache lookups",
    ["result"],
)

# Kubernetes API call metrics
api_call_total = Counter(
    "vault_config_operator_api_call_total",
    "Total number of Kubernetes API calls",
    ["api_type", "operation", "result"],
)

api_call_duration_seconds = Histogram(
    "vault_config_operator_api_call_duration_seconds",
    "Duration of Kubernetes API calls in seconds",
    ["api_type", "operation"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0],
)

rate_limit_hits_total = Counter(
    "vault_config_operator_rate_limit_hits_total",
    "Total number of rate limit hits",
    ["api_type"],
)

# Work queue metrics
workqueue_depth = Gauge(
    "vault_config_operator_workqueue_depth",
    "Number of resource keys waiting to be reconciled",
)

workqueue_retries_total = Counter(
    "vault_config_operator_workqueue_retries_total",
    "Total number of delayed re-queues",
)

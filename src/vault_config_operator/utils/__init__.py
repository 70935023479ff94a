"""Utility functions for the Vault Config Operator."""

from .conditions import (
    get_condition,
    is_condition_true,
    set_ready_condition,
    update_condition,
)
from .context import (
    get_context_dict,
    get_correlation_id,
    set_correlation_id,
    with_correlation_id,
)
from .errors import sanitize_dict, sanitize_error_message, sanitize_exception
from .events import emit_event
from .locks import KeyedLock
from .rate_limit import rate_limit_k8s, rate_limit_vault, retry_on_rate_limit

__all__ = [
    "KeyedLock",
    "emit_event",
    "get_condition",
    "get_context_dict",
    "get_correlation_id",
    "is_condition_true",
    "rate_limit_k8s",
    "rate_limit_vault",
    "retry_on_rate_limit",
    "sanitize_dict",
    "sanitize_error_message",
    "sanitize_exception",
    "set_correlation_id",
    "set_ready_condition",
    "update_condition",
    "with_correlation_id",
]

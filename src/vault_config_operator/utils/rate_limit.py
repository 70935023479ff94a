"""Rate limiting utilities for API calls."""

from __future__ import annotations

import os
import threading
import time
from functools import wraps
from typing import Any, Callable, TypeVar

from kubernetes.client.exceptions import ApiException

from .. import metrics

_F = TypeVar("_F", bound=Callable[..., Any])

# Rate limit configuration
_K8S_RATE_LIMIT_PER_SECOND = float(os.getenv("K8S_RATE_LIMIT_PER_SECOND", "10.0"))
_VAULT_RATE_LIMIT_PER_SECOND = float(os.getenv("VAULT_RATE_LIMIT_PER_SECOND", "20.0"))

# Track last call times; workers share these, so updates happen under a lock
_k8s_last_call_time: float = 0.0
_vault_last_call_time: float = 0.0
_k8s_lock = threading.Lock()
_vault_lock = threading.Lock()


def rate_limit_k8s(func: _F) -> _F:
    """Decorator to rate limit Kubernetes API calls.

    Implements a simple minimum-interval limiter to prevent overwhelming
    the Kubernetes API server.
    """
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        global _k8s_last_call_time
        with _k8s_lock:
            min_interval = 1.0 / _K8S_RATE_LIMIT_PER_SECOND
            time_since_last_call = time.time() - _k8s_last_call_time
            if time_since_last_call < min_interval:
                metrics.rate_limit_hits_total.labels(api_type="k8s").inc()
                time.sleep(min_interval - time_since_last_call)
            _k8s_last_call_time = time.time()
        return func(*args, **kwargs)

    return wrapper  # type: ignore


def rate_limit_vault(func: _F) -> _F:
    """Decorator to rate limit Vault API calls.

    Implements a simple minimum-interval limiter to prevent overwhelming
    the Vault server.
    """
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        global _vault_last_call_time
        with _vault_lock:
            min_interval = 1.0 / _VAULT_RATE_LIMIT_PER_SECOND
            time_since_last_call = time.time() - _vault_last_call_time
            if time_since_last_call < min_interval:
                metrics.rate_limit_hits_total.labels(api_type="vault").inc()
                time.sleep(min_interval - time_since_last_call)
            _vault_last_call_time = time.time()
        return func(*args, **kwargs)

    return wrapper  # type: ignore


def is_rate_limit_error(e: Exception) -> bool:
    """Check if an exception is a Kubernetes API rate limit error."""
    if not isinstance(e, ApiException):
        return False
    # Kubernetes API rate limit errors typically return 429 or 503
    return e.status == 429 or (e.status == 503 and "rate limit" in str(e).lower())


def retry_on_rate_limit(func: _F, max_retries: int = 3) -> _F:
    """Retry a Kubernetes call with exponential backoff (1s, 2s, 4s) on 429."""
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        attempt = 0
        while True:
            try:
                return func(*args, **kwargs)
            except ApiException as e:
                if not is_rate_limit_error(e) or attempt >= max_retries:
                    raise
                time.sleep(2 ** attempt)
                attempt += 1

    return wrapper  # type: ignore

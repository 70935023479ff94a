"""Status, finalizer and event sink for managed resources."""

from __future__ import annotations

import logging
import time
from typing import Any, Protocol

from kubernetes import client

from . import metrics
from .constants import API_GROUP, API_VERSION, FIELD_MANAGER, FINALIZER
from .exceptions import TransientRemoteError
from .resources.base import VaultResource
from .utils.events import emit_event
from .utils.rate_limit import rate_limit_k8s, retry_on_rate_limit

logger = logging.getLogger(__name__)


class StatusSink(Protocol):
    """Where the Reconciler reports outcomes on the Kubernetes side."""

    def patch_status(self, resource: VaultResource, status: dict[str, Any]) -> None:
        ...

    def add_finalizer(self, resource: VaultResource) -> None:
        ...

    def remove_finalizer(self, resource: VaultResource) -> None:
        ...

    def record_event(self, resource: VaultResource, reason: str, message: str, type_: str = "Normal") -> None:
        ...


def get_k8s_client() -> client.ApiClient:
    """Load in-cluster configuration, falling back to the local kubeconfig.

    Returns:
        Configured ApiClient instance
    """
    from kubernetes import config

    try:
        config.load_incluster_config()
    except config.ConfigException:
        config.load_kube_config()

    return client.ApiClient()


class KubernetesStatusSink:
    """StatusSink writing to the Kubernetes API server."""

    def __init__(self, api: client.CustomObjectsApi) -> None:
        self.api = api

    def _call(self, operation: str, fn: Any, **kwargs: Any) -> Any:
        start_time = time.time()
        try:
            result = retry_on_rate_limit(rate_limit_k8s(fn))(**kwargs)
            metrics.api_call_total.labels(api_type="k8s", operation=operation, result="success").inc()
            return result
        except client.exceptions.ApiException as e:
            metrics.api_call_total.labels(api_type="k8s", operation=operation, result="error").inc()
            if e.status == 404:
                # Resource vanished under us; the watch will deliver the DELETED event.
                logger.info(f"{operation}: resource no longer exists")
                return None
            raise TransientRemoteError(f"{operation} failed: {e.status} {e.reason}") from e
        finally:
            metrics.api_call_duration_seconds.labels(api_type="k8s", operation=operation).observe(
                time.time() - start_time
            )

    def patch_status(self, resource: VaultResource, status: dict[str, Any]) -> None:
        """Merge-patch the status subresource."""
        self._call(
            "patch_status",
            self.api.patch_namespaced_custom_object_status,
            group=API_GROUP,
            version=API_VERSION,
            namespace=resource.namespace,
            plural=resource.PLURAL,
            name=resource.name,
            body={"status": status},
            field_manager=FIELD_MANAGER,
        )
        resource.apply_status(status)

    def _patch_finalizers(self, resource: VaultResource, finalizers: list[str]) -> None:
        patch_meta: dict[str, Any] = {"finalizers": finalizers or None}
        resource_version = resource.metadata.get("resourceVersion")
        if resource_version:
            # Optimistic concurrency: a concurrent finalizer change fails with 409.
            patch_meta["resourceVersion"] = resource_version
        self._call(
            "patch_finalizers",
            self.api.patch_namespaced_custom_object,
            group=API_GROUP,
            version=API_VERSION,
            namespace=resource.namespace,
            plural=resource.PLURAL,
            name=resource.name,
            body={"metadata": patch_meta},
            field_manager=FIELD_MANAGER,
        )
        resource.finalizers = finalizers

    def add_finalizer(self, resource: VaultResource) -> None:
        """Ensure the operator's finalizer is present."""
        finalizers = resource.finalizers
        if FINALIZER not in finalizers:
            finalizers.append(FINALIZER)
            self._patch_finalizers(resource, finalizers)

    def remove_finalizer(self, resource: VaultResource) -> None:
        """Remove the operator's finalizer so deletion can proceed."""
        finalizers = resource.finalizers
        if FINALIZER in finalizers:
            finalizers.remove(FINALIZER)
            self._patch_finalizers(resource, finalizers)

    def record_event(self, resource: VaultResource, reason: str, message: str, type_: str = "Normal") -> None:
        """Post a Kubernetes event about the resource."""
        try:
            emit_event(resource.body, reason, message, type_=type_)
        except LookupError:
            # Outside of the operator's context there is no event poster.
            logger.debug(f"Event {reason} not posted: no event queue in context")

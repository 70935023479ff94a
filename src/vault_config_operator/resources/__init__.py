"""Managed resource kinds and the factory building them from Kubernetes bodies."""

from __future__ import annotations

from typing import Any, Mapping

from ..exceptions import ValidationError
from .base import VaultObject, VaultResource, make_resource_key
from .database import DatabaseSecretEngineRole, DatabaseSecretEngineStaticRole
from .kubernetes_auth import KubernetesAuthEngineRole
from .mount import SecretEngineMount

KIND_REGISTRY: dict[str, type[VaultResource]] = {
    cls.KIND: cls
    for cls in (
        DatabaseSecretEngineStaticRole,
        DatabaseSecretEngineRole,
        KubernetesAuthEngineRole,
        SecretEngineMount,
    )
}


def resource_from_body(body: Mapping[str, Any]) -> VaultResource:
    """Create the resource object matching ``body["kind"]``.

    Raises:
        ValidationError: If the kind is not managed by this operator
    """
    kind = body.get("kind")
    cls = KIND_REGISTRY.get(kind)
    if cls is None:
        raise ValidationError(f"unsupported resource kind: {kind!r}")
    return cls(body)


__all__ = [
    "KIND_REGISTRY",
    "DatabaseSecretEngineRole",
    "DatabaseSecretEngineStaticRole",
    "KubernetesAuthEngineRole",
    "SecretEngineMount",
    "VaultObject",
    "VaultResource",
    "make_resource_key",
    "resource_from_body",
]

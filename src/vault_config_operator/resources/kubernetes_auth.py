"""Kubernetes auth method roles."""

from __future__ import annotations

from typing import Any

from ..constants import KIND_KUBERNETES_AUTH_ROLE, PLURAL_KUBERNETES_AUTH_ROLE
from ..equivalence import FieldKind
from ..exceptions import ValidationError
from .base import VaultResource


class KubernetesAuthEngineRole(VaultResource):
    """A role of a Kubernetes auth backend.

    ``spec.path`` names the auth mount; the role lives at
    ``auth/<path>/role/<metadata.name>``.
    """

    KIND = KIND_KUBERNETES_AUTH_ROLE
    PLURAL = PLURAL_KUBERNETES_AUTH_ROLE
    SUBRESOURCE = "role"
    FIELD_KINDS = {
        "bound_service_account_names": FieldKind.SET,
        "bound_service_account_namespaces": FieldKind.SET,
        "token_policies": FieldKind.SET,
        "token_ttl": FieldKind.DURATION,
        "token_max_ttl": FieldKind.DURATION,
        "audience": FieldKind.SCALAR,
    }

    def base_path(self) -> str:
        mount = (self.spec.get("path") or "").strip("/")
        return f"auth/{mount}" if mount else ""

    def _target_namespaces(self) -> list[str]:
        target = self.spec.get("targetNamespaces") or {}
        return list(target.get("targetNamespaces") or [])

    def _validate_fields(self) -> None:
        self._require("serviceAccounts")
        if not self._target_namespaces():
            raise ValidationError("targetNamespaces.targetNamespaces is required")
        self._check_duration("tokenTTL")
        self._check_duration("tokenMaxTTL")

    def _desired_fields(self) -> dict[str, Any]:
        return {
            "bound_service_account_names": list(self.spec.get("serviceAccounts") or []),
            "bound_service_account_namespaces": self._target_namespaces(),
            "token_policies": list(self.spec.get("policies") or []),
            "token_ttl": self.spec.get("tokenTTL") or 0,
            "token_max_ttl": self.spec.get("tokenMaxTTL") or 0,
            "audience": self.spec.get("audience") or "",
        }

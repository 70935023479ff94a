"""Remote-object capability shared by every managed resource kind."""

from __future__ import annotations

import copy
from typing import Any, ClassVar, Mapping, Protocol

from ..auth import KubeAuthConfiguration
from ..constants import API_GROUP_VERSION, FINALIZER
from ..equivalence import FieldKind, is_equivalent, parse_duration
from ..exceptions import ValidationError
from ..paths import VaultPath, resolve_path


class VaultObject(Protocol):
    """What the Reconciler needs from a resource, independent of its kind."""

    kind: str
    name: str
    namespace: str
    generation: int

    @property
    def key(self) -> str:
        ...

    @property
    def body(self) -> dict[str, Any]:
        ...

    @property
    def conditions(self) -> list[dict[str, Any]]:
        ...

    def get_path(self) -> VaultPath:
        ...

    def get_payload(self) -> dict[str, Any]:
        ...

    def get_update_request(self, observed: Mapping[str, Any]) -> tuple[VaultPath, dict[str, Any]]:
        ...

    def is_equivalent_to_desired_state(self, observed: Mapping[str, Any] | None) -> bool:
        ...

    def validate(self) -> None:
        ...

    def get_auth_configuration(self) -> KubeAuthConfiguration:
        ...

    def is_marked_for_deletion(self) -> bool:
        ...

    def has_finalizer(self) -> bool:
        ...


def make_resource_key(kind: str, namespace: str, name: str) -> str:
    """Create a work queue key for a Kubernetes resource."""
    return f"{kind}:{namespace}:{name}"


class VaultResource:
    """Base implementation of VaultObject over a Kubernetes resource body.

    Subclasses declare ``KIND``, ``PLURAL``, ``SUBRESOURCE`` and the wire
    field kinds, and implement ``_desired_fields``.
    """

    KIND: ClassVar[str] = ""
    PLURAL: ClassVar[str] = ""
    SUBRESOURCE: ClassVar[str] = ""
    FIELD_KINDS: ClassVar[dict[str, FieldKind]] = {}
    PATH_REQUIRED: ClassVar[bool] = True

    def __init__(self, body: Mapping[str, Any]) -> None:
        self._body = copy.deepcopy(dict(body))
        meta = self._body.get("metadata") or {}
        self.kind = self._body.get("kind") or self.KIND
        self.name = meta.get("name", "")
        self.namespace = meta.get("namespace", "default")
        self.uid = meta.get("uid", "unknown")
        self.generation = int(meta.get("generation") or 0)
        self.spec: dict[str, Any] = self._body.get("spec") or {}

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.namespace}/{self.name} gen={self.generation}>"

    @property
    def key(self) -> str:
        return make_resource_key(self.kind, self.namespace, self.name)

    @property
    def body(self) -> dict[str, Any]:
        self._body.setdefault("apiVersion", API_GROUP_VERSION)
        self._body.setdefault("kind", self.kind)
        return self._body

    @property
    def metadata(self) -> dict[str, Any]:
        return self._body.setdefault("metadata", {})

    @property
    def finalizers(self) -> list[str]:
        return list(self.metadata.get("finalizers") or [])

    @finalizers.setter
    def finalizers(self, value: list[str]) -> None:
        self.metadata["finalizers"] = list(value)

    @property
    def conditions(self) -> list[dict[str, Any]]:
        status = self._body.get("status") or {}
        return copy.deepcopy(status.get("conditions") or [])

    def apply_status(self, status: Mapping[str, Any]) -> None:
        """Mirror a status patch onto the local copy of the body."""
        self._body.setdefault("status", {}).update(copy.deepcopy(dict(status)))

    def is_marked_for_deletion(self) -> bool:
        return bool(self.metadata.get("deletionTimestamp"))

    def has_finalizer(self) -> bool:
        return FINALIZER in self.finalizers

    # Capability set

    def base_path(self) -> str:
        return self.spec.get("path") or ""

    def get_path(self) -> VaultPath:
        return resolve_path(self.base_path(), self.SUBRESOURCE, self.name)

    def get_payload(self) -> dict[str, Any]:
        return self._desired_fields()

    def get_update_request(self, observed: Mapping[str, Any]) -> tuple[VaultPath, dict[str, Any]]:
        """Path and payload that bring an existing object to the desired state."""
        return self.get_path(), self.get_payload()

    def is_equivalent_to_desired_state(self, observed: Mapping[str, Any] | None) -> bool:
        return is_equivalent(self.get_payload(), observed, self.FIELD_KINDS)

    def get_auth_configuration(self) -> KubeAuthConfiguration:
        return KubeAuthConfiguration.from_spec(self.spec.get("authentication"), self.namespace)

    def validate(self) -> None:
        """Check the spec; raise ValidationError describing the first problem."""
        if not self.name:
            raise ValidationError("metadata.name is required")
        if self.PATH_REQUIRED and not self.spec.get("path"):
            raise ValidationError("path is required")
        self.get_auth_configuration()
        self.get_path()
        self._validate_fields()

    def _validate_fields(self) -> None:
        pass

    def _desired_fields(self) -> dict[str, Any]:
        raise NotImplementedError

    # Helpers for subclasses

    def _require(self, *fields: str) -> None:
        for name in fields:
            value = self.spec.get(name)
            if value is None or value == "" or value == []:
                raise ValidationError(f"{name} is required")

    def _check_duration(self, field_name: str, minimum: int = 0) -> None:
        value = self.spec.get(field_name)
        if value is None or value == "":
            return
        try:
            seconds = parse_duration(value)
        except ValueError as e:
            raise ValidationError(f"{field_name}: {e}") from e
        if seconds < minimum:
            raise ValidationError(f"{field_name} must be at least {minimum}s, got {value}")

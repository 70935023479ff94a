"""Secrets engine mounts."""

from __future__ import annotations

from typing import Any, Mapping

from ..constants import KIND_SECRET_ENGINE_MOUNT, PLURAL_SECRET_ENGINE_MOUNT
from ..equivalence import FieldKind, canonicalize, is_equivalent, parse_duration
from ..exceptions import ValidationError
from ..paths import VaultPath, normalize_base_path, resolve_path
from .base import VaultResource

SYS_MOUNT = "sys"

# Fixed when the engine is enabled; tuning cannot change them.
IMMUTABLE_FIELDS = ("type", "local", "seal_wrap")

# What Vault reports when a flag was never set.
_OBSERVED_DEFAULTS = {"description": "", "local": False, "seal_wrap": False}


class SecretEngineMount(VaultResource):
    """An enabled secrets engine.

    Mounted at ``<spec.path>/<metadata.name>`` (or ``<metadata.name>`` when
    ``spec.path`` is empty), which Vault addresses as ``sys/mounts/<mount>``.
    A new engine is enabled by writing that path; an existing one is changed
    through ``sys/mounts/<mount>/tune``.
    """

    KIND = KIND_SECRET_ENGINE_MOUNT
    PLURAL = PLURAL_SECRET_ENGINE_MOUNT
    SUBRESOURCE = "mounts"
    PATH_REQUIRED = False
    FIELD_KINDS = {
        "type": FieldKind.SCALAR,
        "description": FieldKind.SCALAR,
        "local": FieldKind.SCALAR,
        "seal_wrap": FieldKind.SCALAR,
    }
    CONFIG_FIELD_KINDS = {
        "default_lease_ttl": FieldKind.DURATION,
        "max_lease_ttl": FieldKind.DURATION,
        "listing_visibility": FieldKind.SCALAR,
    }

    def get_path(self) -> VaultPath:
        parent = self.spec.get("path") or ""
        subresource = f"{self.SUBRESOURCE}/{normalize_base_path(parent)}" if parent else self.SUBRESOURCE
        return resolve_path(SYS_MOUNT, subresource, self.name)

    def _config(self) -> dict[str, Any]:
        config = self.spec.get("config") or {}
        fields = {
            "default_lease_ttl": config.get("defaultLeaseTTL") or 0,
            "max_lease_ttl": config.get("maxLeaseTTL") or 0,
        }
        if config.get("listingVisibility"):
            fields["listing_visibility"] = config["listingVisibility"]
        return fields

    def _validate_fields(self) -> None:
        self._require("type")
        config = self.spec.get("config") or {}
        for name in ("defaultLeaseTTL", "maxLeaseTTL"):
            value = config.get(name)
            if value is None or value == "":
                continue
            try:
                parse_duration(value)
            except ValueError as e:
                raise ValidationError(f"config.{name}: {e}") from e

    def _desired_fields(self) -> dict[str, Any]:
        return {
            "type": self.spec.get("type"),
            "description": self.spec.get("description") or "",
            "config": self._config(),
            "local": bool(self.spec.get("local", False)),
            "seal_wrap": bool(self.spec.get("sealWrap", False)),
            "options": dict(self.spec.get("options") or {}),
        }

    def is_equivalent_to_desired_state(self, observed: Mapping[str, Any] | None) -> bool:
        if observed is None:
            return False
        observed = _with_defaults(observed)
        desired = self.get_payload()
        top_level = {k: v for k, v in desired.items() if k in self.FIELD_KINDS}
        return (
            is_equivalent(top_level, observed, self.FIELD_KINDS)
            and is_equivalent(desired["config"], observed.get("config") or {}, self.CONFIG_FIELD_KINDS)
            and is_equivalent(desired["options"], observed.get("options") or {})
        )

    def get_update_request(self, observed: Mapping[str, Any]) -> tuple[VaultPath, dict[str, Any]]:
        """Tune the existing mount.

        Raises:
            ValidationError: If a field fixed at mount time differs from Vault's
        """
        observed = _with_defaults(observed)
        desired = self.get_payload()
        for field_name in IMMUTABLE_FIELDS:
            kind = self.FIELD_KINDS[field_name]
            if canonicalize(desired[field_name], kind) != canonicalize(observed.get(field_name), kind):
                raise ValidationError(
                    f"{field_name} of existing mount {self.get_path()} cannot be changed "
                    f"(is {observed.get(field_name)!r}, wants {desired[field_name]!r})"
                )

        payload = dict(desired["config"])
        payload["description"] = desired["description"]
        if desired["options"]:
            payload["options"] = desired["options"]
        return VaultPath(f"{self.get_path()}/tune"), payload


def _with_defaults(observed: Mapping[str, Any]) -> dict[str, Any]:
    present = {k: v for k, v in observed.items() if v is not None}
    return {**_OBSERVED_DEFAULTS, **present}

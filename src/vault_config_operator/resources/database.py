"""Database secrets engine roles."""

from __future__ import annotations

from typing import Any

from ..constants import (
    KIND_DATABASE_ROLE,
    KIND_DATABASE_STATIC_ROLE,
    PLURAL_DATABASE_ROLE,
    PLURAL_DATABASE_STATIC_ROLE,
)
from ..equivalence import FieldKind
from .base import VaultResource

MIN_ROTATION_PERIOD_SECONDS = 5


class DatabaseSecretEngineStaticRole(VaultResource):
    """A static role mapping a Vault role onto an existing database user.

    Written to ``<path>/static-roles/<metadata.name>``.
    """

    KIND = KIND_DATABASE_STATIC_ROLE
    PLURAL = PLURAL_DATABASE_STATIC_ROLE
    SUBRESOURCE = "static-roles"
    FIELD_KINDS = {
        "username": FieldKind.SCALAR,
        "rotation_period": FieldKind.DURATION,
        "db_name": FieldKind.SCALAR,
        "rotation_statements": FieldKind.LIST,
    }

    def _validate_fields(self) -> None:
        self._require("username", "rotationPeriod", "dBName")
        self._check_duration("rotationPeriod", minimum=MIN_ROTATION_PERIOD_SECONDS)

    def _desired_fields(self) -> dict[str, Any]:
        return {
            "username": self.spec.get("username"),
            "rotation_period": self.spec.get("rotationPeriod"),
            "db_name": self.spec.get("dBName"),
            "rotation_statements": list(self.spec.get("rotationStatements") or []),
        }


class DatabaseSecretEngineRole(VaultResource):
    """A dynamic role issuing short-lived database credentials.

    Written to ``<path>/roles/<metadata.name>``.
    """

    KIND = KIND_DATABASE_ROLE
    PLURAL = PLURAL_DATABASE_ROLE
    SUBRESOURCE = "roles"
    FIELD_KINDS = {
        "db_name": FieldKind.SCALAR,
        "default_ttl": FieldKind.DURATION,
        "max_ttl": FieldKind.DURATION,
        "creation_statements": FieldKind.LIST,
        "revocation_statements": FieldKind.LIST,
        "rollback_statements": FieldKind.LIST,
        "renew_statements": FieldKind.LIST,
    }

    def _validate_fields(self) -> None:
        self._require("dBName", "creationStatements")
        self._check_duration("defaultTTL")
        self._check_duration("maxTTL")

    def _desired_fields(self) -> dict[str, Any]:
        return {
            "db_name": self.spec.get("dBName"),
            "default_ttl": self.spec.get("defaultTTL") or 0,
            "max_ttl": self.spec.get("maxTTL") or 0,
            "creation_statements": list(self.spec.get("creationStatements") or []),
            "revocation_statements": list(self.spec.get("revocationStatements") or []),
            "rollback_statements": list(self.spec.get("rollbackStatements") or []),
            "renew_statements": list(self.spec.get("renewStatements") or []),
        }

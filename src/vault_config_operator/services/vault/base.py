"""Remote secret service interface consumed by the reconciliation core."""

from __future__ import annotations

from typing import Any, Protocol


class RemoteSecretService(Protocol):
    """Protocol defining the Vault operations the operator relies on.

    Implementations translate transport failures into the operator's error
    taxonomy (see ``vault_config_operator.exceptions``).
    """

    def login(
        self,
        mount: str,
        role: str,
        jwt: str,
        namespace: str | None = None,
    ) -> tuple[str, int]:
        """Exchange a Kubernetes service account JWT for a Vault token.

        Returns:
            Tuple of client token and its TTL in seconds
        """
        ...

    def read(self, path: str, token: str, namespace: str | None = None) -> dict[str, Any] | None:
        """Read the object at ``path``; None when nothing exists."""
        ...

    def write(self, path: str, payload: dict[str, Any], token: str, namespace: str | None = None) -> None:
        """Create or update the object at ``path``."""
        ...

    def delete(self, path: str, token: str, namespace: str | None = None) -> bool:
        """Delete the object at ``path``.

        Returns:
            False when nothing existed at ``path``
        """
        ...

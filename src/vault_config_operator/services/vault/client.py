"""HashiCorp Vault client implementation."""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Any, Iterator

import hvac
import requests
from hvac import exceptions as hvac_exceptions

from ... import metrics
from ...exceptions import (
    AuthError,
    ConflictError,
    NotFoundError,
    TransientRemoteError,
    ValidationError,
)
from ...tracing import trace_span
from ...utils.errors import sanitize_exception
from ...utils.rate_limit import rate_limit_vault

logger = logging.getLogger(__name__)

_CAS_MISMATCH_MARKERS = ("check-and-set", "cas mismatch")

# sys/mounts answers 400 rather than 404 for an engine that is not enabled.
_MISSING_MOUNT_MARKERS = ("no secret engine mount",)

_TRANSIENT_ERRORS = (
    hvac_exceptions.InternalServerError,
    hvac_exceptions.VaultDown,
    hvac_exceptions.BadGateway,
    hvac_exceptions.RateLimitExceeded,
    hvac_exceptions.UnexpectedError,
    hvac_exceptions.VaultNotInitialized,
    requests.exceptions.RequestException,
)


def _message(error: Exception) -> str:
    return sanitize_exception(error) or type(error).__name__


@contextmanager
def translate_errors(operation: str, path: str) -> Iterator[None]:
    """Map hvac and transport exceptions onto the operator's error taxonomy."""
    try:
        yield
    except hvac_exceptions.InvalidPath as e:
        raise NotFoundError(f"{operation} {path}: not found") from e
    except (hvac_exceptions.Unauthorized, hvac_exceptions.Forbidden) as e:
        raise AuthError(f"{operation} {path}: {_message(e)}") from e
    except hvac_exceptions.PreconditionFailed as e:
        raise ConflictError(f"{operation} {path}: {_message(e)}") from e
    except hvac_exceptions.ParamValidationError as e:
        raise ValidationError(f"{operation} {path}: {_message(e)}") from e
    except hvac_exceptions.InvalidRequest as e:
        text = str(e).lower()
        if any(marker in text for marker in _MISSING_MOUNT_MARKERS):
            raise NotFoundError(f"{operation} {path}: not found") from e
        if any(marker in text for marker in _CAS_MISMATCH_MARKERS):
            raise ConflictError(f"{operation} {path}: {_message(e)}") from e
        raise ValidationError(f"{operation} {path}: {_message(e)}") from e
    except _TRANSIENT_ERRORS as e:
        raise TransientRemoteError(f"{operation} {path}: {_message(e)}") from e
    except hvac_exceptions.VaultError as e:
        raise TransientRemoteError(f"{operation} {path}: {_message(e)}") from e


class VaultClient:
    """Vault implementation of the remote secret service."""

    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        verify: bool | str = True,
        session: requests.Session | None = None,
    ) -> None:
        """Initialize the Vault client.

        Args:
            url: Vault server URL
            timeout: Per-request deadline in seconds
            verify: TLS verification flag or path to a CA bundle
            session: Optional HTTP session shared by all requests
        """
        self.url = url
        self.timeout = timeout
        self.verify = verify
        self.session = session or requests.Session()

    def _client(self, token: str | None = None, namespace: str | None = None) -> hvac.Client:
        # hvac clients carry the token as mutable state, so workers never share one.
        return hvac.Client(
            url=self.url,
            token=token,
            verify=self.verify,
            timeout=self.timeout,
            namespace=namespace,
            session=self.session,
        )

    @contextmanager
    def _observe(self, operation: str, path: str) -> Iterator[None]:
        start_time = time.time()
        result = "success"
        try:
            with trace_span(f"vault_{operation}", attributes={"vault.path": path}):
                with translate_errors(operation, path):
                    yield
        except NotFoundError:
            result = "not_found"
            raise
        except Exception:
            result = "error"
            raise
        finally:
            metrics.vault_operations_total.labels(operation=operation, result=result).inc()
            metrics.vault_operation_duration_seconds.labels(operation=operation).observe(
                time.time() - start_time
            )

    @rate_limit_vault
    def login(
        self,
        mount: str,
        role: str,
        jwt: str,
        namespace: str | None = None,
    ) -> tuple[str, int]:
        """Log in through the Kubernetes auth method mounted at ``mount``."""
        path = f"auth/{mount}/login"
        try:
            with self._observe("login", path):
                response = self._client(namespace=namespace).auth.kubernetes.login(
                    role=role,
                    jwt=jwt,
                    use_token=False,
                    mount_point=mount,
                )
        except (NotFoundError, ValidationError) as e:
            # A missing mount or unknown role is a rejected login, not a bad payload.
            raise AuthError(str(e)) from e

        auth = (response or {}).get("auth") or {}
        client_token = auth.get("client_token")
        if not client_token:
            raise AuthError(f"login {path}: response carried no client token")
        return client_token, int(auth.get("lease_duration") or 0)

    @rate_limit_vault
    def read(self, path: str, token: str, namespace: str | None = None) -> dict[str, Any] | None:
        """Read the object at ``path``; None when nothing exists."""
        try:
            with self._observe("read", path):
                response = self._client(token, namespace).read(path)
        except NotFoundError:
            return None

        if not isinstance(response, dict):
            return None
        data = response.get("data")
        return data if isinstance(data, dict) else None

    @rate_limit_vault
    def write(self, path: str, payload: dict[str, Any], token: str, namespace: str | None = None) -> None:
        """Create or update the object at ``path``."""
        try:
            with self._observe("write", path):
                self._client(token, namespace).write_data(path, data=payload)
        except NotFoundError as e:
            # Writing below a mount that does not exist
            raise ValidationError(f"write {path}: no handler for path") from e

    @rate_limit_vault
    def delete(self, path: str, token: str, namespace: str | None = None) -> bool:
        """Delete the object at ``path``; False when nothing existed."""
        try:
            with self._observe("delete", path):
                self._client(token, namespace).delete(path)
        except NotFoundError:
            logger.info(f"Vault object {path} already absent")
            return False
        return True

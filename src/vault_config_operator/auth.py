"""Vault token acquisition, caching and renewal.

The AuthManager exchanges a Kubernetes service account JWT for a Vault token
through the Kubernetes auth method and caches the result per
``(auth mount, role, identity)``. It is constructed explicitly at startup,
injected into the Reconciler and closed at shutdown.

Concurrency: lookups are lock-free reads of the cache dict. The first caller
missing a key starts the login and publishes it as an in-flight future;
later callers for that key wait on the future and get the same token or the
same error. The per-key lock only guards the bookkeeping, so callers for
different keys never wait on each other.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from . import metrics
from .constants import DEFAULT_AUTH_MOUNT, DEFAULT_SERVICE_ACCOUNT
from .exceptions import AuthError, ValidationError
from .services.vault.base import RemoteSecretService
from .utils.locks import KeyedLock

logger = logging.getLogger(__name__)

IdentitySource = Callable[["KubeAuthConfiguration"], str]


@dataclass(frozen=True)
class TokenCacheKey:
    """Identity of a cached token."""

    mount: str
    role: str
    identity: str


@dataclass(frozen=True)
class KubeAuthConfiguration:
    """How a resource authenticates against Vault.

    Attributes:
        role: Vault role of the Kubernetes auth method
        path: Mount path of the Kubernetes auth method
        namespace: Vault (enterprise) namespace, if any
        service_account: Service account whose JWT is exchanged
        resource_namespace: Kubernetes namespace of that service account
    """

    role: str
    path: str = DEFAULT_AUTH_MOUNT
    namespace: str | None = None
    service_account: str = DEFAULT_SERVICE_ACCOUNT
    resource_namespace: str = "default"

    @classmethod
    def from_spec(cls, spec: Mapping[str, Any] | None, resource_namespace: str) -> KubeAuthConfiguration:
        """Build the configuration from a resource's ``spec.authentication``."""
        spec = spec or {}
        role = spec.get("role")
        if not role:
            raise ValidationError("authentication.role is required")
        service_account = (spec.get("serviceAccount") or {}).get("name") or DEFAULT_SERVICE_ACCOUNT
        return cls(
            role=role,
            path=(spec.get("path") or DEFAULT_AUTH_MOUNT).strip("/"),
            namespace=spec.get("namespace") or None,
            service_account=service_account,
            resource_namespace=resource_namespace,
        )

    @property
    def identity(self) -> str:
        return f"{self.resource_namespace}/{self.service_account}"

    @property
    def cache_key(self) -> TokenCacheKey:
        mount = f"{self.namespace}/{self.path}" if self.namespace else self.path
        return TokenCacheKey(mount=mount, role=self.role, identity=self.identity)


@dataclass
class AuthToken:
    """An ephemeral Vault token; never persisted into resource status."""

    client_token: str = field(repr=False)
    ttl: float
    issued_at: float

    def remaining(self, now: float) -> float:
        return self.ttl - (now - self.issued_at)

    def needs_renewal(self, now: float, renewal_ratio: float) -> bool:
        """True when the remaining TTL dropped to the renewal threshold.

        A TTL of zero denotes a non-expiring token.
        """
        if self.ttl <= 0:
            return False
        return self.remaining(now) <= self.ttl * renewal_ratio


class AuthManager:
    """Process-wide Vault token cache with single-flight logins."""

    def __init__(
        self,
        remote: RemoteSecretService,
        identity_source: IdentitySource,
        renewal_ratio: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the auth manager.

        Args:
            remote: Vault client used for the login exchange
            identity_source: Returns the JWT to present for a configuration
            renewal_ratio: Renew once remaining TTL falls to this fraction of the original
            clock: Monotonic time source
        """
        self._remote = remote
        self._identity_source = identity_source
        self._renewal_ratio = renewal_ratio
        self._clock = clock
        self._tokens: dict[TokenCacheKey, AuthToken] = {}
        self._in_flight: dict[TokenCacheKey, Future[AuthToken]] = {}
        self._locks = KeyedLock()
        self._closed = False

    def _usable(self, token: AuthToken | None) -> bool:
        return token is not None and not token.needs_renewal(self._clock(), self._renewal_ratio)

    def acquire(self, auth_config: KubeAuthConfiguration) -> AuthToken:
        """Return a valid token for the configuration, logging in when needed.

        Concurrent callers for the same key share one login attempt and see
        the same outcome, a rejection included.

        Raises:
            AuthError: If Vault rejects the login
            TransientRemoteError: If Vault cannot be reached
        """
        if self._closed:
            raise RuntimeError("AuthManager is closed")

        key = auth_config.cache_key
        token = self._tokens.get(key)
        if self._usable(token):
            metrics.token_cache_total.labels(result="hit").inc()
            return token

        with self._locks.hold(key):
            # Another caller may have completed the login while we waited.
            token = self._tokens.get(key)
            if self._usable(token):
                metrics.token_cache_total.labels(result="hit").inc()
                return token
            in_flight = self._in_flight.get(key)
            leader = in_flight is None
            if leader:
                in_flight = Future()
                self._in_flight[key] = in_flight

        if not leader:
            metrics.token_cache_total.labels(result="shared").inc()
            return in_flight.result()

        metrics.token_cache_total.labels(result="miss").inc()
        try:
            token = self._login(auth_config)
        except BaseException as e:
            with self._locks.hold(key):
                del self._in_flight[key]
            in_flight.set_exception(e)
            raise

        with self._locks.hold(key):
            self._tokens[key] = token
            del self._in_flight[key]
        in_flight.set_result(token)
        return token

    def _login(self, auth_config: KubeAuthConfiguration) -> AuthToken:
        logger.info(
            f"Logging in to Vault at auth/{auth_config.path} as role {auth_config.role} "
            f"for {auth_config.identity}"
        )
        try:
            jwt = self._identity_source(auth_config)
            client_token, ttl = self._remote.login(
                auth_config.path,
                auth_config.role,
                jwt,
                namespace=auth_config.namespace,
            )
        except AuthError:
            metrics.auth_login_total.labels(result="rejected").inc()
            raise
        except Exception:
            metrics.auth_login_total.labels(result="error").inc()
            raise

        metrics.auth_login_total.labels(result="success").inc()
        return AuthToken(client_token=client_token, ttl=ttl, issued_at=self._clock())

    def evict(self, auth_config: KubeAuthConfiguration, token: AuthToken | None = None) -> None:
        """Drop the cached token for the configuration, if any.

        Args:
            auth_config: Configuration whose token is dropped
            token: The token Vault rejected; a newer cached token is kept
        """
        key = auth_config.cache_key
        with self._locks.hold(key):
            cached = self._tokens.get(key)
            if cached is None or (token is not None and cached is not token):
                return
            del self._tokens[key]
        logger.info(f"Evicted cached Vault token for role {key.role} on {key.mount}")

    def cached(self, auth_config: KubeAuthConfiguration) -> AuthToken | None:
        """Return the cached token for the configuration without logging in."""
        return self._tokens.get(auth_config.cache_key)

    def close(self) -> None:
        """Tear down the cache; further acquisitions fail."""
        self._closed = True
        self._tokens.clear()

    def __len__(self) -> int:
        return len(self._tokens)

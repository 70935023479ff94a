"""Operator configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, field


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


DEFAULT_VAULT_ADDR = "http://vault.vault.svc:8200"
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_WORKERS = 4
DEFAULT_RESYNC_INTERVAL_SECONDS = 300.0
DEFAULT_TOKEN_RENEWAL_RATIO = 0.1
DEFAULT_SA_TOKEN_EXPIRATION_SECONDS = 600
DEFAULT_METRICS_PORT = 8080

# Exponential backoff: 1s, 2s, 4s, 8s, 16s, 32s, 60s (max)
DEFAULT_MIN_RETRY_DELAY_SECONDS = 1.0
DEFAULT_MAX_RETRY_DELAY_SECONDS = 60.0
DEFAULT_RETRY_BACKOFF = 2.0
DEFAULT_MAX_RETRIES = 5
DEFAULT_BACKOFF_JITTER = 0.1

# Kubernetes TokenRequest rejects anything shorter than ten minutes
MIN_SA_TOKEN_EXPIRATION_SECONDS = 600


@dataclass(frozen=True)
class RetryConfig:
    """Backoff settings for the Retrying state."""

    min_delay: float = DEFAULT_MIN_RETRY_DELAY_SECONDS
    max_delay: float = DEFAULT_MAX_RETRY_DELAY_SECONDS
    backoff: float = DEFAULT_RETRY_BACKOFF
    max_retries: int = DEFAULT_MAX_RETRIES
    jitter: float = DEFAULT_BACKOFF_JITTER

    def __post_init__(self) -> None:
        if self.min_delay <= 0:
            raise ConfigurationError(f"min retry delay must be positive, got {self.min_delay}")
        if self.max_delay < self.min_delay:
            raise ConfigurationError(
                f"max retry delay ({self.max_delay}) must be >= min retry delay ({self.min_delay})"
            )
        if self.backoff < 1.0:
            raise ConfigurationError(f"retry backoff must be >= 1.0, got {self.backoff}")
        if self.max_retries < 0:
            raise ConfigurationError(f"max retries must be >= 0, got {self.max_retries}")
        if not 0.0 <= self.jitter < 1.0:
            raise ConfigurationError(f"backoff jitter must be in [0, 1), got {self.jitter}")


@dataclass(frozen=True)
class OperatorConfig:
    """Runtime configuration of the operator.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing mid-reconcile.
    """

    vault_addr: str = DEFAULT_VAULT_ADDR
    vault_skip_verify: bool = False
    vault_ca_cert: str | None = None
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS

    max_workers: int = DEFAULT_MAX_WORKERS
    resync_interval: float = DEFAULT_RESYNC_INTERVAL_SECONDS

    token_renewal_ratio: float = DEFAULT_TOKEN_RENEWAL_RATIO
    sa_token_expiration_seconds: int = DEFAULT_SA_TOKEN_EXPIRATION_SECONDS
    sa_token_audiences: tuple[str, ...] = ()

    retry: RetryConfig = field(default_factory=RetryConfig)

    metrics_port: int = DEFAULT_METRICS_PORT
    watch_namespaces: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.vault_addr.startswith(("http://", "https://")):
            raise ConfigurationError(f"VAULT_ADDR must be an http(s) URL, got {self.vault_addr!r}")
        if self.request_timeout <= 0:
            raise ConfigurationError("VAULT_REQUEST_TIMEOUT_SECONDS must be positive")
        if self.max_workers < 1:
            raise ConfigurationError(f"MAX_WORKERS must be >= 1, got {self.max_workers}")
        if self.resync_interval <= 0:
            raise ConfigurationError("RESYNC_INTERVAL_SECONDS must be positive")
        if not 0.0 <= self.token_renewal_ratio < 1.0:
            raise ConfigurationError(
                f"TOKEN_RENEWAL_RATIO must be in [0, 1), got {self.token_renewal_ratio}"
            )
        if self.sa_token_expiration_seconds < MIN_SA_TOKEN_EXPIRATION_SECONDS:
            raise ConfigurationError(
                "SERVICE_ACCOUNT_TOKEN_EXPIRATION_SECONDS must be >= "
                f"{MIN_SA_TOKEN_EXPIRATION_SECONDS}"
            )
        if not 0 < self.metrics_port < 65536:
            raise ConfigurationError(f"METRICS_PORT out of range: {self.metrics_port}")

    @property
    def vault_verify(self) -> bool | str:
        """Value for the ``verify`` argument of the HTTP session."""
        if self.vault_skip_verify:
            return False
        return self.vault_ca_cert or True

    @classmethod
    def from_env(cls) -> OperatorConfig:
        """Load configuration from environment variables.

        Environment Variables:
            VAULT_ADDR: Vault server URL
            VAULT_SKIP_VERIFY: Disable TLS verification (default: false)
            VAULT_CACERT: Path to a CA bundle for Vault's certificate
            VAULT_REQUEST_TIMEOUT_SECONDS: Per-call deadline (default: 30)
            MAX_WORKERS: Reconcile worker threads (default: 4)
            RESYNC_INTERVAL_SECONDS: Periodic resync interval (default: 300)
            TOKEN_RENEWAL_RATIO: Fraction of TTL below which a token is renewed (default: 0.1)
            SERVICE_ACCOUNT_TOKEN_EXPIRATION_SECONDS: TokenRequest lifetime (default: 600)
            SERVICE_ACCOUNT_TOKEN_AUDIENCES: Comma-separated JWT audiences
            MIN_RETRY_DELAY_SECONDS, MAX_RETRY_DELAY_SECONDS, RETRY_BACKOFF,
            MAX_RETRIES, BACKOFF_JITTER: Retry backoff tuning
            METRICS_PORT: Port for /metrics, /healthz and /readyz (default: 8080)
            WATCH_NAMESPACES: Comma-separated namespaces to watch (default: all)
        """

        def get_float(key: str, default: float) -> float:
            value = os.environ.get(key)
            if value is None or value == "":
                return default
            try:
                return float(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be a number: {value}") from e

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None or value == "":
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            if value in ("true", "1", "yes"):
                return True
            if value in ("false", "0", "no"):
                return False
            raise ConfigurationError(f"{key} must be a boolean: {value}")

        def get_list(key: str) -> tuple[str, ...]:
            return tuple(v.strip() for v in os.environ.get(key, "").split(",") if v.strip())

        retry = RetryConfig(
            min_delay=get_float("MIN_RETRY_DELAY_SECONDS", DEFAULT_MIN_RETRY_DELAY_SECONDS),
            max_delay=get_float("MAX_RETRY_DELAY_SECONDS", DEFAULT_MAX_RETRY_DELAY_SECONDS),
            backoff=get_float("RETRY_BACKOFF", DEFAULT_RETRY_BACKOFF),
            max_retries=get_int("MAX_RETRIES", DEFAULT_MAX_RETRIES),
            jitter=get_float("BACKOFF_JITTER", DEFAULT_BACKOFF_JITTER),
        )

        return cls(
            vault_addr=os.environ.get("VAULT_ADDR", DEFAULT_VAULT_ADDR),
            vault_skip_verify=get_bool("VAULT_SKIP_VERIFY", False),
            vault_ca_cert=os.environ.get("VAULT_CACERT") or None,
            request_timeout=get_float("VAULT_REQUEST_TIMEOUT_SECONDS", DEFAULT_REQUEST_TIMEOUT_SECONDS),
            max_workers=get_int("MAX_WORKERS", DEFAULT_MAX_WORKERS),
            resync_interval=get_float("RESYNC_INTERVAL_SECONDS", DEFAULT_RESYNC_INTERVAL_SECONDS),
            token_renewal_ratio=get_float("TOKEN_RENEWAL_RATIO", DEFAULT_TOKEN_RENEWAL_RATIO),
            sa_token_expiration_seconds=get_int(
                "SERVICE_ACCOUNT_TOKEN_EXPIRATION_SECONDS", DEFAULT_SA_TOKEN_EXPIRATION_SECONDS
            ),
            sa_token_audiences=get_list("SERVICE_ACCOUNT_TOKEN_AUDIENCES"),
            retry=retry,
            metrics_port=get_int("METRICS_PORT", DEFAULT_METRICS_PORT),
            watch_namespaces=get_list("WATCH_NAMESPACES"),
        )

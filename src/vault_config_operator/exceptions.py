"""Error taxonomy shared by the reconciliation core."""

from __future__ import annotations


class VaultConfigOperatorError(Exception):
    """Base class for operator errors."""

    pass


class ValidationError(VaultConfigOperatorError):
    """The resource spec is malformed or Vault rejected the payload.

    Terminal for the current generation: surfaced through the Failed
    condition and never retried automatically.
    """

    pass


class InvalidPathError(ValidationError):
    """A Vault path could not be resolved from the resource identity."""

    pass


class AuthError(VaultConfigOperatorError):
    """Vault rejected a login or an authenticated call."""

    pass


class TransientRemoteError(VaultConfigOperatorError):
    """Network failure, timeout or a server-side error worth retrying."""

    pass


class NotFoundError(VaultConfigOperatorError):
    """Nothing exists at the requested Vault path."""

    pass


class ConflictError(VaultConfigOperatorError):
    """The remote object changed between read and write."""

    pass

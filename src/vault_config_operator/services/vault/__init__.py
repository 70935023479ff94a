"""Vault service client."""

from .base import RemoteSecretService
from .client import VaultClient, translate_errors

__all__ = ["RemoteSecretService", "VaultClient", "translate_errors"]

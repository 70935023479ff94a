"""Kubernetes operator managing HashiCorp Vault configuration."""

__version__ = "0.1.0"

"""Handlers for the Vault Config Operator."""

from .base import BaseHandler

__all__ = ["BaseHandler"]

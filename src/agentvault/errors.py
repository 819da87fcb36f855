"""
agentvault.errors — Exception taxonomy shared by the service, API and CLI.

Every error carries the HTTP status it maps to; the API turns them into
``{"error": message}`` bodies.
"""

from __future__ import annotations


class AgentVaultError(Exception):
    """Base class for all agentvault errors."""

    status: int = 500

    def __init__(self, message: str, status: int | None = None):
        self.message = message
        if status is not None:
            self.status = status
        super().__init__(message)


class ValidationError(AgentVaultError):
    """Missing or malformed input (empty agent name, wallet address, secret)."""
    status = 400


class UnauthorizedError(AgentVaultError):
    """No wallet session, or a credential that did not verify."""
    status = 401


class NotFoundError(AgentVaultError):
    """Unknown agent or credential id."""
    status = 404


class ExternalSubsystemError(AgentVaultError):
    """The contract bridge could not be reached or failed internally."""
    status = 502


class PersistenceError(AgentVaultError):
    """A database statement failed. Never retried."""
    status = 500


class DecryptionError(AgentVaultError):
    """Wrong key, wrong IV or corrupted ciphertext."""
    status = 500

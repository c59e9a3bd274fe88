"""Secret store capability and error taxonomy.

The scheduler only needs three operations from a secret store: log in, hand
out the current token and perform a request. Concrete adapters live in
``vault_client`` and ``gcp_client``.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from .models import SecretResult


class SecretStoreError(Exception):
    """Base class for secret store failures."""
    pass


class LoginError(SecretStoreError):
    """Authentication against the secret store failed."""
    pass


class StoreRequestError(SecretStoreError):
    """A store request failed.

    Args:
        message: Human readable description
        status_code: HTTP-like status of the response, or None when no
            response was received at all (connection/transport failure)
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SecretResolutionError(SecretStoreError):
    """A secret could not be resolved; ``retryable`` tells whether to try again."""

    retryable = False

    def __init__(self, name: str, cause: Exception):
        super().__init__(f"Couldn't resolve secret '{name}': {cause}")
        self.name = name
        self.cause = cause


class TransientSecretError(SecretResolutionError):
    """Store unreachable or temporarily unavailable (no response, 5xx)."""
    retryable = True


class FatalSecretError(SecretResolutionError):
    """Request or authorization is wrong (4xx); retrying cannot help."""
    retryable = False


class SecretStore(ABC):
    """Abstract secret store."""

    @abstractmethod
    def login(self) -> None:
        """Authenticate. Raises LoginError on failure."""

    @abstractmethod
    def get_token(self) -> Optional[str]:
        """Return the current authentication token, if the store uses one."""

    @abstractmethod
    def request(self, method: str, url: str, data: Optional[Dict[str, Any]] = None) -> SecretResult:
        """Perform a request. Raises StoreRequestError on failure."""

"""
Error taxonomy for the Vault Provisioner.

Every failure the engine can surface is a subclass of VaultProvisionerError
tagged with an ErrorCategory. Connectors report failures of mutating calls
as categorized ConnectorResults; workflows turn those into exceptions and map
them to user-facing messages at the workflow boundary.
"""

from enum import Enum
from typing import Any, Optional


class ErrorCategory(str, Enum):
    """Coarse classification of a failure, independent of its origin."""
    AUTHENTICATION = "authentication"
    ALREADY_EXISTS = "already_exists"
    PRECONDITION_NOT_MET = "precondition_not_met"
    NOT_FOUND = "not_found"
    API_ERROR = "api_error"
    TRANSPORT = "transport"


class VaultProvisionerError(Exception):
    """
    Base exception for all provisioning errors.

    Attributes:
        message: Human-readable error description
        status_code: HTTP status returned by the remote service, if any
        body: Raw response body kept for diagnostics
    """

    category: ErrorCategory = ErrorCategory.API_ERROR

    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"[{self.status_code}] {self.message}"
        return self.message


class AuthenticationError(VaultProvisionerError):
    """Credential exchange failed, or a request was rejected twice with 401."""
    category = ErrorCategory.AUTHENTICATION


class AlreadyExistsError(VaultProvisionerError):
    """Invite targeted a member that already exists or is already invited."""
    category = ErrorCategory.ALREADY_EXISTS


class PreconditionNotMetError(VaultProvisionerError):
    """Confirmation attempted before the user generated key material."""
    category = ErrorCategory.PRECONDITION_NOT_MET


class NotFoundError(VaultProvisionerError):
    """Directory or vault lookup miss. Resolved locally, never shown as a failure."""
    category = ErrorCategory.NOT_FOUND


class TransientAPIError(VaultProvisionerError):
    """Non-2xx response not otherwise classified."""
    category = ErrorCategory.API_ERROR


class TransportError(VaultProvisionerError):
    """Network-level failure; no response was received."""
    category = ErrorCategory.TRANSPORT


_CATEGORY_TO_ERROR = {
    ErrorCategory.AUTHENTICATION: AuthenticationError,
    ErrorCategory.ALREADY_EXISTS: AlreadyExistsError,
    ErrorCategory.PRECONDITION_NOT_MET: PreconditionNotMetError,
    ErrorCategory.NOT_FOUND: NotFoundError,
    ErrorCategory.API_ERROR: TransientAPIError,
    ErrorCategory.TRANSPORT: TransportError,
}


def error_for_category(category: Optional[ErrorCategory], message: str,
                       status_code: Optional[int] = None, body: Any = None) -> VaultProvisionerError:
    """Build the exception matching a failure category."""
    error_class = _CATEGORY_TO_ERROR.get(category, TransientAPIError)
    return error_class(message, status_code=status_code, body=body)

"""
Custom exceptions for the Accredit platform.
"""

from typing import Optional, Any, Dict


class AccreditException(Exception):
    """Base exception for all Accredit-related errors."""

    default_error_code = "accredit_error"

    def __init__(self, message: str, error_code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Error body sent to API clients."""
        return {
            "error": self.message,
            "code": self.error_code,
            "details": self.details,
        }


class ValidationError(AccreditException):
    """Raised when a request payload is malformed."""
    default_error_code = "validation_error"


class AuthenticationError(AccreditException):
    """Raised when the caller cannot be identified."""
    default_error_code = "unauthenticated"


class AuthorizationError(AccreditException):
    """Raised when access is denied."""
    default_error_code = "forbidden"


class ForbiddenError(AuthorizationError):
    """Role, ownership or assignment mismatch."""
    pass


class InvalidStateError(AccreditException):
    """Action attempted on a record that is not in the required status."""
    default_error_code = "invalid_state"


class ResourceNotFoundError(AccreditException):
    """Raised when a requested resource is not found."""
    default_error_code = "not_found"


NotFoundError = ResourceNotFoundError


class DuplicateEntityError(AccreditException):
    """Raised when attempting to create a duplicate entity."""
    default_error_code = "duplicate"


class ConcurrencyError(AccreditException):
    """Raised when concurrency control fails."""
    default_error_code = "concurrency_error"


class PersistenceError(AccreditException):
    """Raised when persistence operations fail."""
    default_error_code = "persistence_error"


class ConfigurationError(AccreditException):
    """Raised when configuration is invalid."""
    default_error_code = "configuration_error"


class TransportError(AccreditException):
    """Raised by the client when the server cannot be reached."""
    default_error_code = "transport_error"

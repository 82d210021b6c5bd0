"""
Custom Exceptions for consent-anchor

Provides a unified exception hierarchy for the consent lifecycle,
ledger integration and the API layer. Every failure the engine
surfaces is one of these types.
"""

from typing import Optional, Dict, Any

from .constants import ErrorCodes


class ConsentAnchorError(Exception):
    """
    Base exception for all consent-anchor errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        error_code: str = ErrorCodes.UNKNOWN_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses"""
        result: Dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# INPUT ERRORS
# =============================================================================

class ValidationError(ConsentAnchorError):
    """Raised when input validation fails"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, ErrorCodes.VALIDATION_ERROR, details)


class NotFoundError(ConsentAnchorError):
    """Raised when a consent agreement (or user) does not exist"""

    def __init__(
        self,
        message: str = "Consent not found",
        resource_id: Optional[str] = None
    ):
        details: Dict[str, Any] = {}
        if resource_id:
            details["resource_id"] = resource_id
        super().__init__(message, ErrorCodes.NOT_FOUND, details)


# =============================================================================
# ACCESS ERRORS
# =============================================================================

class ForbiddenError(ConsentAnchorError):
    """Raised when the actor may not act on the resource"""

    def __init__(
        self,
        message: str = "Not part of this consent",
        actor_id: Optional[str] = None,
        resource_id: Optional[str] = None
    ):
        details: Dict[str, Any] = {}
        if actor_id:
            details["actor_id"] = actor_id
        if resource_id:
            details["resource_id"] = resource_id
        super().__init__(message, ErrorCodes.FORBIDDEN, details)


class AuthenticationError(ConsentAnchorError):
    """Raised when a request carries no usable bearer token"""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, ErrorCodes.AUTHENTICATION_ERROR)


# =============================================================================
# STATE MACHINE ERRORS
# =============================================================================

class InvalidOperationError(ConsentAnchorError):
    """Raised when a lifecycle precondition does not hold"""

    def __init__(
        self,
        message: str,
        consent_id: Optional[str] = None,
        status: Optional[str] = None
    ):
        details: Dict[str, Any] = {}
        if consent_id:
            details["consent_id"] = consent_id
        if status:
            details["status"] = status
        super().__init__(message, ErrorCodes.INVALID_OPERATION, details)


# =============================================================================
# DEPENDENCY ERRORS
# =============================================================================

class LedgerError(ConsentAnchorError):
    """Raised when the ledger gateway rejects or fails a submission"""

    def __init__(
        self,
        message: str = "Ledger transaction failed",
        operation: Optional[str] = None,
        consent_id: Optional[str] = None,
        reason: Optional[str] = None
    ):
        details: Dict[str, Any] = {}
        if operation:
            details["operation"] = operation
        if consent_id:
            details["consent_id"] = consent_id
        if reason:
            details["reason"] = reason
        super().__init__(message, ErrorCodes.LEDGER_ERROR, details)


class InternalError(ConsentAnchorError):
    """Raised when an invariant the engine relies on does not hold"""

    def __init__(
        self,
        message: str = "Internal error",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, ErrorCodes.INTERNAL_ERROR, details)

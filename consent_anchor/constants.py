"""
Constants for consent-anchor

Centralized identifiers for service metadata, pairing-code layout,
error codes and roles.
"""

from typing import Final, Tuple

# =============================================================================
# SERVICE IDENTIFICATION
# =============================================================================

SERVICE_NAME: Final[str] = "consent-anchor"
SERVICE_VERSION: Final[str] = "0.1.0"

# =============================================================================
# PAIRING CODES
# =============================================================================

class PairingCodeFormat:
    """Canonical grouped layout for pairing codes"""
    RAW_LENGTH: Final[int] = 32
    SEGMENTS: Final[Tuple[int, ...]] = (8, 4, 4, 4, 12)
    SEPARATOR: Final[str] = "-"


# =============================================================================
# ERROR CODES
# =============================================================================

class ErrorCodes:
    """Standardized error codes"""
    UNKNOWN_ERROR: Final[str] = "UNKNOWN_ERROR"
    VALIDATION_ERROR: Final[str] = "VALIDATION_ERROR"
    NOT_FOUND: Final[str] = "NOT_FOUND"
    FORBIDDEN: Final[str] = "FORBIDDEN"
    INVALID_OPERATION: Final[str] = "INVALID_OPERATION"
    LEDGER_ERROR: Final[str] = "LEDGER_ERROR"
    INTERNAL_ERROR: Final[str] = "INTERNAL_ERROR"
    AUTHENTICATION_ERROR: Final[str] = "AUTHENTICATION_ERROR"


# =============================================================================
# ROLES
# =============================================================================

class RoleNames:
    """Role names carried in access tokens"""
    PARTICIPANT: Final[str] = "participant"
    ADMIN: Final[str] = "admin"

    ALL: Final[Tuple[str, ...]] = (PARTICIPANT, ADMIN)


# =============================================================================
# LEDGER
# =============================================================================

class LedgerOperations:
    """Ledger operation names"""
    CREATE: Final[str] = "create"
    REVOKE: Final[str] = "revoke"

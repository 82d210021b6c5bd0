"""
consent-anchor
Two-party consent agreements with pairing, dual confirmation and
ledger-anchored activation
"""

__version__ = "0.1.0"

# Core exports
from .config import AnchorConfig, get_config

# Consent lifecycle (imported before policy, which depends on its models)
from .consent import (
    ConsentAgreement, ConsentStatus, ParticipantRole,
    ConsentStore, InMemoryConsentStore, ConsentLifecycleEngine,
    ConsentAdministrator, ConsentManager,
    normalize_pairing_code, generate_pairing_code,
)

# Ledger
from .ledger import LedgerGateway, LedgerReceipt, HashChainLedgerGateway

# Identity
from .identity import UserRecord, UserDirectory, InMemoryUserDirectory

# Policy
from .policy import (
    is_participant, require_participant,
    Permission, RBACManager,
    AuditLogger, AuditEventType,
)

# Errors
from .exceptions import (
    ConsentAnchorError, ValidationError, NotFoundError, ForbiddenError,
    InvalidOperationError, LedgerError, InternalError,
)

__all__ = [
    # Config
    "AnchorConfig",
    "get_config",

    # Consent
    "ConsentAgreement",
    "ConsentStatus",
    "ParticipantRole",
    "ConsentStore",
    "InMemoryConsentStore",
    "ConsentLifecycleEngine",
    "ConsentAdministrator",
    "ConsentManager",
    "normalize_pairing_code",
    "generate_pairing_code",

    # Ledger
    "LedgerGateway",
    "LedgerReceipt",
    "HashChainLedgerGateway",

    # Identity
    "UserRecord",
    "UserDirectory",
    "InMemoryUserDirectory",

    # Policy
    "is_participant",
    "require_participant",
    "Permission",
    "RBACManager",
    "AuditLogger",
    "AuditEventType",

    # Errors
    "ConsentAnchorError",
    "ValidationError",
    "NotFoundError",
    "ForbiddenError",
    "InvalidOperationError",
    "LedgerError",
    "InternalError",
]

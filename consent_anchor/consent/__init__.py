"""
Consent lifecycle module for consent-anchor
Two-party agreements with pairing, dual confirmation and ledger anchoring
"""

from .models import ConsentAgreement, ConsentStatus, ParticipantRole
from .pairing import normalize_pairing_code, generate_pairing_code
from .storage import ConsentStore, InMemoryConsentStore
from .engine import ConsentLifecycleEngine, IdentityResolver
from .admin import ConsentAdministrator
from .manager import ConsentManager

__all__ = [
    "ConsentAgreement",
    "ConsentStatus",
    "ParticipantRole",
    "normalize_pairing_code",
    "generate_pairing_code",
    "ConsentStore",
    "InMemoryConsentStore",
    "ConsentLifecycleEngine",
    "IdentityResolver",
    "ConsentAdministrator",
    "ConsentManager",
]

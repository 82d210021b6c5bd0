"""
Utility functions for consent-anchor
ID generation, validation, and helper functions
"""

from .ids import generate_user_id, generate_consent_id, generate_pairing_token, generate_audit_id
from .validators import (
    validate_user_id,
    validate_required_text,
    validate_email,
    validate_wallet_address,
    is_email_like,
)

__all__ = [
    # ID generation
    "generate_user_id",
    "generate_consent_id",
    "generate_pairing_token",
    "generate_audit_id",
    # Validators
    "validate_user_id",
    "validate_required_text",
    "validate_email",
    "validate_wallet_address",
    "is_email_like",
]

"""
Input Validators for consent-anchor

Provides validation utilities for user IDs, agreement text,
email addresses and ledger wallet addresses.
"""

import re
from typing import Optional, Any

import structlog

from ..exceptions import ValidationError

logger = structlog.get_logger(__name__)

# =============================================================================
# REGEX PATTERNS
# =============================================================================

USER_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{1,128}$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
WALLET_ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")

MAX_TITLE_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 10000

# =============================================================================
# VALIDATION FUNCTIONS
# =============================================================================

def validate_user_id(
    user_id: Any,
    field_name: str = "user_id",
    required: bool = True
) -> Optional[str]:
    """
    Validate user ID format.

    Args:
        user_id: User ID to validate
        field_name: Field name for error messages
        required: Whether the field is required

    Returns:
        Validated user ID string or None

    Raises:
        ValidationError: If validation fails
    """
    if user_id is None or (isinstance(user_id, str) and not user_id.strip()):
        if required:
            raise ValidationError(f"{field_name} is required", field=field_name)
        return None

    if not isinstance(user_id, str):
        raise ValidationError(f"{field_name} must be a string", field=field_name)

    user_id = user_id.strip()

    if not USER_ID_PATTERN.match(user_id):
        raise ValidationError(
            f"{field_name} contains invalid characters",
            field=field_name
        )

    return user_id


def validate_required_text(
    value: Any,
    field_name: str,
    max_length: int = MAX_DESCRIPTION_LENGTH
) -> str:
    """
    Validate a required free-text field.

    Surrounding whitespace is stripped; the stripped value must be non-empty.

    Raises:
        ValidationError: If the value is missing, empty or too long
    """
    if value is None or not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field_name} is required", field=field_name)

    value = value.strip()

    if len(value) > max_length:
        raise ValidationError(
            f"{field_name} exceeds maximum length of {max_length}",
            field=field_name
        )

    return value


def validate_email(email: Any, field_name: str = "email") -> str:
    """Validate and normalize an email address to lowercase"""
    if not isinstance(email, str) or not email.strip():
        raise ValidationError(f"{field_name} is required", field=field_name)

    email = email.strip().lower()

    if not EMAIL_PATTERN.match(email):
        raise ValidationError(f"{field_name} is not a valid email address", field=field_name)

    return email


def validate_wallet_address(address: Any, field_name: str = "wallet_address") -> str:
    """Validate a 0x-prefixed, 20-byte hex ledger address"""
    if not isinstance(address, str) or not WALLET_ADDRESS_PATTERN.match(address.strip()):
        logger.warning("Rejected wallet address", field=field_name)
        raise ValidationError(
            f"{field_name} must be a 0x-prefixed 40 character hex string",
            field=field_name
        )

    return address.strip()


def is_email_like(value: str) -> bool:
    """Check whether a partner reference looks like an email address"""
    return bool(EMAIL_PATTERN.match(value.strip()))

"""
ID generation utilities for consent-anchor
Identifiers for users, consent agreements, pairing tokens and audit events
"""

import uuid
import secrets
from datetime import datetime, UTC


def generate_user_id(prefix: str = "user") -> str:
    """Generate unique user ID"""
    timestamp = datetime.now(UTC).strftime("%Y%m%d")
    random_part = secrets.token_hex(8)
    return f"{prefix}_{timestamp}_{random_part}"


def generate_consent_id() -> str:
    """Generate consent agreement ID"""
    return str(uuid.uuid4())


def generate_pairing_token() -> str:
    """Generate the raw 32-character token behind a pairing code"""
    return uuid.uuid4().hex


def generate_audit_id() -> str:
    """Generate audit event ID"""
    return f"audit_{uuid.uuid4()}"

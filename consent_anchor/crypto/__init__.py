"""
Cryptographic utilities for consent-anchor
Hash chains and access token handling
"""

from .hash import secure_hash, canonical_json, HashChain
from .jwt import (
    create_jwt, verify_jwt, create_access_token, verify_access_token,
    extract_bearer_token, JWTError, JWTExpiredError, JWTInvalidError,
)

__all__ = [
    "secure_hash",
    "canonical_json",
    "HashChain",
    "create_jwt",
    "verify_jwt",
    "create_access_token",
    "verify_access_token",
    "extract_bearer_token",
    "JWTError",
    "JWTExpiredError",
    "JWTInvalidError",
]

"""
JWT utilities for consent-anchor
Access token creation and verification for the API layer
"""

import jwt
from datetime import datetime, timedelta, UTC
from typing import Dict, Any, Optional
import structlog

from ..config import get_config
from ..constants import RoleNames, SERVICE_NAME

logger = structlog.get_logger(__name__)


class JWTError(Exception):
    """Base exception for JWT-related errors"""
    pass


class JWTExpiredError(JWTError):
    """Raised when JWT token has expired"""
    pass


class JWTInvalidError(JWTError):
    """Raised when JWT token is invalid"""
    pass


def create_jwt(payload: Dict[str, Any], secret_key: str,
               algorithm: Optional[str] = None,
               expires_in_minutes: Optional[int] = None) -> str:
    """
    Create a JWT token

    Args:
        payload: Token payload data
        secret_key: Secret key for signing
        algorithm: JWT algorithm (default from config)
        expires_in_minutes: Token expiry (default from config)

    Returns:
        Encoded JWT token string
    """
    try:
        config = get_config()
        algorithm = algorithm or config.jwt_algorithm
        if expires_in_minutes is None:
            expires_in_minutes = config.jwt_expiry_minutes

        now = datetime.now(UTC)
        token_payload = {
            **payload,
            'iat': now,
            'exp': now + timedelta(minutes=expires_in_minutes),
            'iss': SERVICE_NAME,
        }

        token = jwt.encode(token_payload, secret_key, algorithm=algorithm)

        logger.info("Created JWT token",
                   subject=payload.get('sub'),
                   expires_in=expires_in_minutes)

        return token

    except Exception as e:
        logger.error("JWT creation failed", error=str(e))
        raise JWTError(f"Failed to create JWT: {str(e)}")


def verify_jwt(token: str, secret_key: str,
               algorithm: Optional[str] = None) -> Dict[str, Any]:
    """
    Verify and decode a JWT token

    Raises:
        JWTExpiredError: If token has expired
        JWTInvalidError: If token is invalid
    """
    config = get_config()
    algorithm = algorithm or config.jwt_algorithm

    try:
        payload = jwt.decode(
            token,
            secret_key,
            algorithms=[algorithm],
            options={
                'verify_signature': True,
                'verify_exp': True,
                'verify_iat': True,
                'require': ['exp', 'iat', 'sub'],
            }
        )
    except jwt.ExpiredSignatureError:
        logger.warning("JWT token expired")
        raise JWTExpiredError("Token has expired")
    except jwt.InvalidTokenError as e:
        logger.warning("JWT token invalid", error=str(e))
        raise JWTInvalidError(f"Invalid token: {str(e)}")

    logger.debug("JWT token verified", subject=payload.get('sub'))
    return payload


def create_access_token(user_id: str, secret_key: str,
                        role: str = RoleNames.PARTICIPANT) -> str:
    """Create an access token for API authentication"""
    payload = {
        'sub': user_id,
        'role': role,
        'type': 'access',
    }
    return create_jwt(payload, secret_key)


def verify_access_token(token: str, secret_key: str) -> Dict[str, Any]:
    """Verify an access token and return user info"""
    payload = verify_jwt(token, secret_key)

    if payload.get('type') != 'access':
        raise JWTInvalidError("Not an access token")

    return {
        'user_id': payload.get('sub'),
        'role': payload.get('role', RoleNames.PARTICIPANT),
        'expires_at': payload.get('exp'),
    }


def extract_bearer_token(authorization_header: Optional[str]) -> str:
    """Extract JWT token from Authorization header"""
    if not authorization_header:
        raise JWTInvalidError("Missing Authorization header")

    if not authorization_header.startswith('Bearer '):
        raise JWTInvalidError("Invalid authorization header format")

    return authorization_header[7:]

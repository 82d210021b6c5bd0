"""
Service configuration for consent-anchor
Database, token, ledger and logging settings
"""

from typing import List
from pydantic_settings import BaseSettings
from pydantic import Field


class AnchorConfig(BaseSettings):
    """Consent-anchor configuration settings"""

    # Persistence
    database_url: str = Field(default="sqlite:///consent_anchor.db")

    # Bearer token settings
    jwt_secret: str = Field(default="change-me", description="HMAC secret for access tokens")
    jwt_algorithm: str = Field(default="HS256")
    jwt_expiry_minutes: int = Field(default=60 * 24 * 7)

    # Ledger settings
    ledger_namespace: str = Field(
        default="consent-anchor",
        description="Domain separator mixed into ledger keys"
    )

    # Audit settings
    audit_enabled: bool = Field(default=True)

    # HTTP settings
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    # Logging
    log_level: str = Field(default="INFO")

    model_config = {"env_prefix": "CONSENT_ANCHOR_", "case_sensitive": False}


# Global configuration instance
anchor_config = AnchorConfig()


def get_config() -> AnchorConfig:
    """Get the global configuration instance"""
    return anchor_config

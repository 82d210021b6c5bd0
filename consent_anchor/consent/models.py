"""
Consent agreement models for consent-anchor
Two-party agreement record and its lifecycle states
"""

from datetime import date, datetime, UTC
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field

from ..utils.ids import generate_consent_id


class ConsentStatus(str, Enum):
    """Agreement lifecycle status"""
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    REVOKED = "REVOKED"


class ParticipantRole(str, Enum):
    """Which side of the agreement an actor is on"""
    INITIATOR = "initiator"
    PARTNER = "partner"


class ConsentAgreement(BaseModel):
    """Consent agreement shared by two participants"""
    id: str = Field(default_factory=generate_consent_id)
    initiator_id: str = Field(..., description="User who created the agreement")
    partner_id: Optional[str] = Field(default=None, description="Second participant, set by pairing")

    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    valid_from: Optional[date] = Field(default=None)
    valid_to: Optional[date] = Field(default=None)

    status: ConsentStatus = Field(default=ConsentStatus.PENDING)
    pairing_code: Optional[str] = Field(default=None, description="Grouped one-time join code")

    initiator_confirmed: bool = Field(default=False)
    partner_confirmed: bool = Field(default=False)

    # Ledger correlation
    ledger_reference: Optional[str] = Field(default=None)
    last_transaction_ref: Optional[str] = Field(default=None)

    # Timestamps
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    confirmed_at: Optional[datetime] = Field(default=None)

    def is_paired(self) -> bool:
        """Check if the partner slot has been filled"""
        return self.partner_id is not None

    def is_confirmed_by(self, role: ParticipantRole) -> bool:
        """Check the confirmation flag owned by a role"""
        if role == ParticipantRole.INITIATOR:
            return self.initiator_confirmed
        return self.partner_confirmed

    def is_ready_for_activation(self) -> bool:
        """Both sides confirmed on a paired agreement that is not yet active"""
        return (
            self.initiator_confirmed
            and self.partner_confirmed
            and self.is_paired()
            and self.status == ConsentStatus.PENDING
        )

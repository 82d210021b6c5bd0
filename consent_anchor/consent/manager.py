import asyncio
from datetime import date
from typing import Any, Dict, List, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .models import ConsentAgreement
from .engine import ConsentLifecycleEngine, IdentityResolver
from ..exceptions import ValidationError


logger = structlog.get_logger(__name__)


class CreateConsentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str
    description: str
    valid_from: Optional[date] = Field(default=None, alias="validFrom")
    valid_to: Optional[date] = Field(default=None, alias="validTo")
    partner_email: Optional[str] = Field(default=None, alias="partnerEmail")


class JoinConsentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    pairing_code: str = Field(alias="joinCode")


class ConsentActionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    consent_id: str = Field(alias="consentId")


def _parse(model: type, actor_id: str, data: Dict[str, Any]):
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        logger.error("Invalid consent payload", actor_id=actor_id, error=str(exc))
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ()))
        raise ValidationError(f"{field or 'payload'}: {first.get('msg')}", field=field or None)


class ConsentManager:
    """Request-level facade over the lifecycle engine for the API"""

    def __init__(self, engine: ConsentLifecycleEngine,
                 identities: Optional[IdentityResolver] = None):
        self.engine = engine
        self.identities = identities or engine.identities

    def _email_for(self, user_id: Optional[str]) -> Optional[str]:
        if not user_id or not hasattr(self.identities, "get_user"):
            return None
        user = self.identities.get_user(user_id)
        return user.email if user else None

    def serialize(self, agreement: ConsentAgreement) -> Dict[str, Any]:
        data = agreement.model_dump(mode="json")
        data["initiator_email"] = self._email_for(agreement.initiator_id)
        data["partner_email"] = self._email_for(agreement.partner_id)
        return data

    async def create_consent(self, actor_id: str, consent_data: Dict[str, Any]) -> Dict[str, Any]:
        payload = _parse(CreateConsentRequest, actor_id, consent_data)
        agreement = await asyncio.to_thread(
            self.engine.create,
            actor_id,
            title=payload.title,
            description=payload.description,
            valid_from=payload.valid_from,
            valid_to=payload.valid_to,
            partner_ref=payload.partner_email,
        )
        return self.serialize(agreement)

    async def join_consent(self, actor_id: str, join_data: Dict[str, Any]) -> Dict[str, Any]:
        payload = _parse(JoinConsentRequest, actor_id, join_data)
        agreement = await asyncio.to_thread(self.engine.claim, actor_id, payload.pairing_code)
        return self.serialize(agreement)

    async def confirm_consent(self, actor_id: str, action_data: Dict[str, Any]) -> Dict[str, Any]:
        payload = _parse(ConsentActionRequest, actor_id, action_data)
        agreement = await asyncio.to_thread(self.engine.confirm, actor_id, payload.consent_id)
        return self.serialize(agreement)

    async def revoke_consent(self, actor_id: str, action_data: Dict[str, Any]) -> Dict[str, Any]:
        payload = _parse(ConsentActionRequest, actor_id, action_data)
        agreement = await asyncio.to_thread(self.engine.revoke, actor_id, payload.consent_id)
        return self.serialize(agreement)

    async def list_consents(self, actor_id: str) -> List[Dict[str, Any]]:
        agreements = await asyncio.to_thread(self.engine.list_agreements, actor_id)
        return [self.serialize(a) for a in agreements]

    async def get_consent(self, actor_id: str, consent_id: str) -> Dict[str, Any]:
        agreement = await asyncio.to_thread(self.engine.get, actor_id, consent_id)
        return self.serialize(agreement)

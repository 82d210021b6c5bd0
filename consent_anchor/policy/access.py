"""
Participant access policy for consent-anchor
Only the two parties of an agreement may read or act on it
"""

from typing import Optional
import structlog

from ..consent.models import ConsentAgreement, ParticipantRole
from ..exceptions import ForbiddenError

logger = structlog.get_logger(__name__)


def is_participant(agreement: ConsentAgreement, actor_id: str) -> bool:
    """Check if actor is the initiator or the partner"""
    return actor_id == agreement.initiator_id or (
        agreement.partner_id is not None and actor_id == agreement.partner_id
    )


def participant_role(agreement: ConsentAgreement, actor_id: str) -> Optional[ParticipantRole]:
    """Role the actor holds on the agreement, if any"""
    if actor_id == agreement.initiator_id:
        return ParticipantRole.INITIATOR
    if agreement.partner_id is not None and actor_id == agreement.partner_id:
        return ParticipantRole.PARTNER
    return None


def require_participant(agreement: ConsentAgreement, actor_id: str) -> ParticipantRole:
    """Return the actor's role or raise ForbiddenError"""
    role = participant_role(agreement, actor_id)
    if role is None:
        logger.warning("Non-participant access denied", actor_id=actor_id,
                      consent_id=agreement.id)
        raise ForbiddenError(actor_id=actor_id, resource_id=agreement.id)
    return role

"""
Administrative consent operations for consent-anchor
Deletion sits outside the participant lifecycle and is gated by RBAC
"""

from typing import List, Optional
import structlog

from .storage import ConsentStore
from ..exceptions import ForbiddenError, NotFoundError
from ..policy.audit import AuditEventType, AuditLogger
from ..policy.rbac import Permission, RBACManager

logger = structlog.get_logger(__name__)


class ConsentAdministrator:
    """Operator-only actions on consent agreements"""

    def __init__(self, store: ConsentStore, rbac: RBACManager,
                 audit_logger: Optional[AuditLogger] = None):
        self.store = store
        self.rbac = rbac
        self.audit = audit_logger

    def delete_agreement(self, admin_id: str, consent_id: str,
                         token_roles: Optional[List[str]] = None) -> None:
        """
        Physically delete an agreement.

        Only the local record is removed. If the agreement was anchored, the
        ledger record stays where it is and the orphaned reference is logged.
        """
        if not self.rbac.check_permission(admin_id, Permission.DELETE_CONSENT, token_roles):
            raise ForbiddenError("Administrative permission required",
                                 actor_id=admin_id, resource_id=consent_id)

        agreement = self.store.get(consent_id)
        if agreement is None:
            raise NotFoundError(resource_id=consent_id)

        if agreement.ledger_reference:
            logger.warning("Deleting anchored consent, ledger record remains",
                          consent_id=consent_id, status=agreement.status.value,
                          ledger_reference=agreement.ledger_reference)

        if not self.store.delete(consent_id):
            raise NotFoundError(resource_id=consent_id)

        if self.audit is not None:
            self.audit.log_event(
                AuditEventType.CONSENT_DELETED, "delete", "success",
                actor_id=admin_id, consent_id=consent_id,
                details={
                    "status": agreement.status.value,
                    "ledger_reference": agreement.ledger_reference,
                },
            )

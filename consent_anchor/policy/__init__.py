"""
Policy enforcement module for consent-anchor
Participant access, RBAC for administration, and audit logging
"""

from .access import is_participant, participant_role, require_participant
from .rbac import Permission, Role, RBACManager
from .audit import AuditLogger, AuditEvent, AuditEventType

__all__ = [
    "is_participant",
    "participant_role",
    "require_participant",
    "Permission",
    "Role",
    "RBACManager",
    "AuditLogger",
    "AuditEvent",
    "AuditEventType",
]

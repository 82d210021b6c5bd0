"""
Role-Based Access Control (RBAC) for consent-anchor
Roles and permissions for administrative operations
"""

from enum import Enum
from typing import Set, Dict, List, Optional
from datetime import datetime, UTC
from pydantic import BaseModel, Field
import structlog

from ..constants import RoleNames

logger = structlog.get_logger(__name__)


class Permission(str, Enum):
    """System permissions"""
    # Participant operations
    MANAGE_OWN_CONSENTS = "manage_own_consents"

    # Administrative
    MANAGE_USERS = "manage_users"
    DELETE_CONSENT = "delete_consent"
    VIEW_AUDIT_LOGS = "view_audit_logs"


class Role(BaseModel):
    """User role definition"""
    name: str
    description: str
    permissions: Set[Permission]
    is_active: bool = True
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def has_permission(self, permission: Permission) -> bool:
        """Check if role has specific permission"""
        return self.is_active and permission in self.permissions


class UserRole(BaseModel):
    """User role assignment"""
    user_id: str
    role_name: str
    assigned_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    assigned_by: str
    expires_at: Optional[datetime] = None
    is_active: bool = True

    def is_valid(self) -> bool:
        """Check if role assignment is currently valid"""
        if not self.is_active:
            return False

        if self.expires_at and datetime.now(UTC) > self.expires_at:
            return False

        return True


class RBACManager:
    """Role-Based Access Control manager"""

    def __init__(self):
        self.roles: Dict[str, Role] = {}
        self.user_roles: Dict[str, List[UserRole]] = {}
        self._initialize_default_roles()

    def _initialize_default_roles(self) -> None:
        """Initialize default system roles"""
        self.roles[RoleNames.PARTICIPANT] = Role(
            name=RoleNames.PARTICIPANT,
            description="Party to consent agreements",
            permissions={Permission.MANAGE_OWN_CONSENTS},
        )

        self.roles[RoleNames.ADMIN] = Role(
            name=RoleNames.ADMIN,
            description="Operator with administrative access",
            permissions=set(Permission),
        )

    def assign_role(self, user_id: str, role_name: str, assigned_by: str,
                    expires_at: Optional[datetime] = None) -> UserRole:
        """Assign role to user"""
        if role_name not in self.roles:
            raise ValueError(f"Role {role_name} does not exist")

        assignment = UserRole(
            user_id=user_id,
            role_name=role_name,
            assigned_by=assigned_by,
            expires_at=expires_at,
        )
        self.user_roles.setdefault(user_id, []).append(assignment)

        logger.info("Assigned role", user_id=user_id, role=role_name, assigned_by=assigned_by)
        return assignment

    def revoke_role(self, user_id: str, role_name: str) -> bool:
        """Deactivate a user's role assignment"""
        for assignment in self.user_roles.get(user_id, []):
            if assignment.role_name == role_name and assignment.is_active:
                assignment.is_active = False
                logger.info("Revoked role", user_id=user_id, role=role_name)
                return True
        return False

    def get_user_roles(self, user_id: str) -> List[Role]:
        """Roles currently held by a user"""
        return [
            self.roles[a.role_name]
            for a in self.user_roles.get(user_id, [])
            if a.is_valid() and a.role_name in self.roles
        ]

    def check_permission(self, user_id: str, permission: Permission,
                         extra_roles: Optional[List[str]] = None) -> bool:
        """
        Check whether the user holds ``permission``.

        ``extra_roles`` carries roles asserted by the caller's access token in
        addition to the stored assignments.
        """
        roles = self.get_user_roles(user_id)
        for name in extra_roles or []:
            role = self.roles.get(name)
            if role is not None:
                roles.append(role)

        allowed = any(role.has_permission(permission) for role in roles)
        if not allowed:
            logger.warning("Permission denied", user_id=user_id, permission=permission.value)
        return allowed

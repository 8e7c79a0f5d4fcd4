"""
Permission checks over the static role table.

A subject is either a bare role (RoleChoices or its string value) or a
ClinicalPrincipal carrying role, organization scope and custom grants.
"""
from dataclasses import dataclass
from typing import Iterable, List, Optional

from apps.authz.models import (
    ANY,
    ELEVATED_ROLES,
    ROLE_HIERARCHY,
    ROLE_PERMISSIONS,
    SELF_PERMISSIONS,
    ActionChoices,
    Permission,
    ResourceChoices,
    RoleChoices,
)


@dataclass(frozen=True)
class PermissionContext:
    """Target of a check: whose data, which organization, which study."""
    user_id: Optional[str] = None
    target_organization_id: Optional[str] = None
    target_study_id: Optional[str] = None


def _role_of(subject) -> Optional[RoleChoices]:
    role = getattr(subject, 'role', subject)
    if isinstance(role, RoleChoices):
        return role
    if role in RoleChoices.values:
        return RoleChoices(role)
    return None


class PermissionService:
    """Stateless; one instance is shared through the container."""

    def get_default_permissions(self, role) -> frozenset:
        return ROLE_PERMISSIONS.get(_role_of(role), frozenset())

    def get_effective_permissions(self, subject) -> List[Permission]:
        """Role grants plus custom grants, deduplicated, sorted by their string form."""
        grants = set(self.get_default_permissions(subject))
        grants.update(getattr(subject, 'custom_permissions', ()))
        return sorted(grants, key=str)

    def _matches(self, grants, permission: Permission) -> bool:
        # Priority: '*', exact, then 'resource:*'
        if ANY in grants:
            return True
        if permission in grants:
            return True
        return Permission(permission.resource, None) in grants

    def can_access_organization(self, subject, organization_id) -> bool:
        if _role_of(subject) in ELEVATED_ROLES:
            return True
        if organization_id is None:
            return False
        return (
            getattr(subject, 'organization_id', None) == organization_id
            or organization_id in getattr(subject, 'accessible_organizations', ())
        )

    def can_access_study(self, subject, study_id) -> bool:
        if _role_of(subject) in ELEVATED_ROLES:
            return True
        return study_id is not None and study_id in getattr(subject, 'accessible_studies', ())

    def has_permission(self, subject, permission, context: Optional[PermissionContext] = None) -> bool:
        """
        True if subject holds permission and may reach the context's targets.

        A matching grant is not enough on its own: an explicit target
        organization or study must also be accessible. Without a grant,
        a user may still read and update their own user record and read
        their own visits and examinations.
        """
        permission = Permission.parse(permission)
        grants = set(self.get_default_permissions(subject))
        grants.update(getattr(subject, 'custom_permissions', ()))

        if self._matches(grants, permission):
            if context is None:
                return True
            if context.target_organization_id and not self.can_access_organization(
                subject, context.target_organization_id
            ):
                return False
            if context.target_study_id and not self.can_access_study(subject, context.target_study_id):
                return False
            return True

        if context is not None and context.user_id:
            if context.user_id == getattr(subject, 'id', None) and permission in SELF_PERMISSIONS:
                return True
        return False

    def has_all_permissions(self, subject, permissions: Iterable, context=None) -> bool:
        return all(self.has_permission(subject, p, context) for p in permissions)

    def has_any_permission(self, subject, permissions: Iterable, context=None) -> bool:
        return any(self.has_permission(subject, p, context) for p in permissions)

    def can_perform_action(self, subject, action, resource, context=None) -> bool:
        return self.has_permission(
            subject, Permission(ResourceChoices(resource), ActionChoices(action)), context
        )

    def filter_by_permissions(self, subject, items, permission) -> list:
        """Keep the records whose organizationId / clinicalStudyId the subject may reach."""
        kept = []
        for item in items:
            context = PermissionContext(
                user_id=getattr(subject, 'id', None),
                target_organization_id=item.get('organizationId') or item.get('registeredOrganizationId'),
                target_study_id=item.get('clinicalStudyId'),
            )
            if self.has_permission(subject, permission, context):
                kept.append(item)
        return kept

    def can_assign_role(self, assigner_role, target_role) -> bool:
        """A role may grant roles at its own level or below (higher number)."""
        assigner = ROLE_HIERARCHY.get(_role_of(assigner_role))
        target = ROLE_HIERARCHY.get(_role_of(target_role))
        if assigner is None or target is None:
            return False
        return assigner <= target

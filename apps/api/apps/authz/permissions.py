"""
DRF permission class backed by the role/permission table.

Each view declares required_permissions, a mapping from DRF action name
(or HTTP method) to the permissions that allow it; any one of them is
enough. Views call check_object_permissions(request, record) after
loading a record so its organization and study are checked too.
"""
from rest_framework import permissions
from rest_framework.exceptions import PermissionDenied

from apps.authz.models import ActionChoices, perm
from apps.authz.services import PermissionContext, PermissionService
from apps.core.observability.correlation import bind_principal
from apps.core.observability.events import log_permission_denied
from apps.core.observability.metrics import metrics

permission_service = PermissionService()


def _role_label(user):
    role = getattr(user, 'role', None)
    return role.value if role else 'none'


def deny(request, required, organization_id=None):
    """Record a denial; callers then return False or raise."""
    user = request.user
    metrics.authz_denied_total.labels(role=_role_label(user)).inc()
    log_permission_denied(
        getattr(user, 'id', None),
        _role_label(user),
        ','.join(str(p) for p in required),
        organization_id=organization_id,
    )


def required_for(request, view):
    """Permissions a request needs, or None if the view declares none for it."""
    declared = getattr(view, 'required_permissions', None) or {}
    action = getattr(view, 'action', None)
    if action and action in declared:
        return declared[action]
    return declared.get(request.method, declared.get('*'))


def record_context(request, record):
    """Target of a record: its owner, organization and study."""
    return PermissionContext(
        user_id=record.get('userId') or record.get('conductedBy') or record.get('createdBy'),
        target_organization_id=record.get('organizationId') or record.get('registeredOrganizationId'),
        target_study_id=record.get('clinicalStudyId'),
    )


def require_organization_access(request, view, organization_id):
    """Raise PermissionDenied unless the caller may act inside organization_id."""
    required = required_for(request, view) or ()
    context = PermissionContext(target_organization_id=organization_id)
    if not permission_service.has_any_permission(request.user, required, context):
        deny(request, required, organization_id)
        raise PermissionDenied('You do not have access to this organization.')


class RequiresPermission(permissions.BasePermission):
    """
    Role gate for every clinical endpoint.

    - 401 when there is no valid token
    - 403 when the role (plus custom grants) holds none of the
      permissions the view declares for the action
    - 403 when a loaded record belongs to an organization or study the
      caller cannot reach
    """

    message = 'You do not have permission to perform this action.'

    def has_permission(self, request, view):
        user = request.user
        if not user or not user.is_authenticated:
            return False

        bind_principal(getattr(user, 'id', None), _role_label(user), getattr(user, 'organization_id', None))

        required = required_for(request, view)
        if not required:
            # Undeclared actions are closed
            deny(request, ('undeclared',))
            return False

        if permission_service.has_any_permission(user, required):
            return True

        # Self-access: reading your own records without a role grant
        owner_id = view.kwargs.get('user_id') if hasattr(view, 'kwargs') else None
        if owner_id and permission_service.has_any_permission(
            user, required, PermissionContext(user_id=owner_id)
        ):
            return True

        deny(request, required)
        return False

    def has_object_permission(self, request, view, obj):
        required = required_for(request, view) or ()
        context = record_context(request, obj)
        if permission_service.has_any_permission(request.user, required, context):
            return True
        deny(request, required, context.target_organization_id)
        return False


def grants(resource, *actions):
    """Permissions accepting any of actions on resource, or resource:manage."""
    accepted = [perm(resource, action) for action in actions]
    manage = perm(resource, ActionChoices.MANAGE)
    if manage not in accepted:
        accepted.append(manage)
    return tuple(accepted)

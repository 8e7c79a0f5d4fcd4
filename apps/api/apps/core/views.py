"""
Shared view plumbing for the clinical and examination endpoints.
"""
from rest_framework import status, viewsets
from rest_framework.response import Response

from apps.authz.permissions import RequiresPermission, record_context, require_organization_access
from apps.core.container import get_container
from apps.core.exceptions import ValidationError


def success(data, status_code=status.HTTP_200_OK):
    """Every successful body is {"success": true, "data": ...}."""
    return Response({'success': True, 'data': data}, status=status_code)


class ClinicalViewSet(viewsets.ViewSet):
    """
    Base ViewSet for endpoints backed by the document store.

    Subclasses declare required_permissions per action; records loaded
    inside an action go through check_record so their organization and
    study are checked against the caller.
    """
    permission_classes = [RequiresPermission]
    required_permissions = {}

    @property
    def container(self):
        return get_container()

    @property
    def principal_id(self):
        return getattr(self.request.user, 'id', None)

    def check_record(self, record):
        self.check_object_permissions(self.request, record)
        return record

    def check_records(self, records):
        """Drop records outside the caller's organizations and studies."""
        required = self.required_permissions.get(self.action) or ()
        service = self.container.permission_service
        return [
            record for record in records
            if service.has_any_permission(self.request.user, required, record_context(self.request, record))
        ]

    def require_query_param(self, name):
        value = self.request.query_params.get(name)
        if not value:
            raise ValidationError(f'Query parameter {name} is required', field=name)
        return value

    def require_organization(self, organization_id):
        require_organization_access(self.request, self, organization_id)
        return organization_id

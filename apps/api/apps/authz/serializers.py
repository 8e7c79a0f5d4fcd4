"""
Authz serializers.
"""
from rest_framework import serializers

from apps.authz.models import Permission


class PermissionCheckSerializer(serializers.Serializer):
    """
    Input for POST /api/v1/auth/check/.

    permission is 'resource:action', 'resource:*' or '*'.
    """
    permission = serializers.CharField()
    organizationId = serializers.CharField(required=False, allow_blank=True)
    studyId = serializers.CharField(required=False, allow_blank=True)
    userId = serializers.CharField(required=False, allow_blank=True)

    def validate_permission(self, value):
        try:
            return Permission.parse(value)
        except ValueError as e:
            raise serializers.ValidationError(str(e))


class PrincipalSerializer(serializers.Serializer):
    """Read-only view of the authenticated principal."""
    id = serializers.CharField()
    username = serializers.CharField()
    role = serializers.CharField(allow_null=True)
    organizationId = serializers.CharField(allow_null=True)
    accessibleOrganizations = serializers.ListField(child=serializers.CharField())
    accessibleStudies = serializers.ListField(child=serializers.CharField())
    permissions = serializers.ListField(child=serializers.CharField())

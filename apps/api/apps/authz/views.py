"""
Authz views: who am I, and may I do this.
"""
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.authz.permissions import permission_service
from apps.authz.serializers import PermissionCheckSerializer, PrincipalSerializer
from apps.authz.services import PermissionContext
from apps.core.observability.correlation import bind_principal


class MeView(APIView):
    """
    GET /api/v1/auth/me/

    Returns the token's principal and its effective permissions.
    """
    permission_classes = [IsAuthenticated]

    def get(self, request):
        principal = request.user
        bind_principal(principal.id, principal.role.value if principal.role else None, principal.organization_id)
        data = principal.to_dict()
        data['permissions'] = [str(p) for p in permission_service.get_effective_permissions(principal)]
        return Response({'success': True, 'data': PrincipalSerializer(data).data})


class PermissionCheckView(APIView):
    """
    POST /api/v1/auth/check/

    Body: {"permission": "patient:read", "organizationId": "...", "studyId": "..."}
    Answers {"allowed": bool}; a negative answer is still 200.
    """
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = PermissionCheckSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        context = PermissionContext(
            user_id=data.get('userId') or None,
            target_organization_id=data.get('organizationId') or None,
            target_study_id=data.get('studyId') or None,
        )
        allowed = permission_service.has_permission(request.user, data['permission'], context)
        return Response(
            {
                'success': True,
                'data': {'permission': str(data['permission']), 'allowed': allowed},
            },
            status=status.HTTP_200_OK,
        )

"""
Stateless principal built from identity-provider token claims.

Tokens are verified by rest_framework_simplejwt's
JWTStatelessUserAuthentication; SIMPLE_JWT['TOKEN_USER_CLASS'] points
here so request.user is a ClinicalPrincipal. No user table is read.
"""
import logging

from django.utils.functional import cached_property
from rest_framework_simplejwt.models import TokenUser

from apps.authz.models import Permission, RoleChoices

logger = logging.getLogger(__name__)

# Claim names as issued by the identity provider
ROLE_CLAIM = 'role'
ORGANIZATION_CLAIM = 'organizationId'
ACCESSIBLE_ORGANIZATIONS_CLAIM = 'accessibleOrganizations'
ACCESSIBLE_STUDIES_CLAIM = 'accessibleStudies'
PERMISSIONS_CLAIM = 'permissions'


def _as_list(value):
    if not value:
        return []
    if isinstance(value, str):
        return [part for part in value.split(',') if part]
    return list(value)


class ClinicalPrincipal(TokenUser):
    """Authenticated caller: id, username, role, organization and study scope."""

    @cached_property
    def role(self):
        value = self.token.get(ROLE_CLAIM)
        return RoleChoices(value) if value in RoleChoices.values else None

    @cached_property
    def organization_id(self):
        return self.token.get(ORGANIZATION_CLAIM)

    @cached_property
    def accessible_organizations(self):
        return _as_list(self.token.get(ACCESSIBLE_ORGANIZATIONS_CLAIM))

    @cached_property
    def accessible_studies(self):
        return _as_list(self.token.get(ACCESSIBLE_STUDIES_CLAIM))

    @cached_property
    def custom_permissions(self):
        """Extra per-user grants; malformed entries are ignored."""
        grants = set()
        for raw in _as_list(self.token.get(PERMISSIONS_CLAIM)):
            try:
                grants.add(Permission.parse(raw))
            except ValueError:
                logger.warning(
                    "Ignoring malformed permission claim",
                    extra={"event": "malformed_permission_claim", "claim": raw},
                )
        return frozenset(grants)

    @classmethod
    def from_claims(cls, sub, role, organization_id=None, username='',
                    accessible_organizations=None, accessible_studies=None, permissions=None):
        """Build a principal directly from claim values (service calls, tests)."""
        return cls({
            'sub': sub,
            'username': username or sub,
            ROLE_CLAIM: role,
            ORGANIZATION_CLAIM: organization_id,
            ACCESSIBLE_ORGANIZATIONS_CLAIM: accessible_organizations or [],
            ACCESSIBLE_STUDIES_CLAIM: accessible_studies or [],
            PERMISSIONS_CLAIM: permissions or [],
        })

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'role': self.role.value if self.role else None,
            'organizationId': self.organization_id,
            'accessibleOrganizations': self.accessible_organizations,
            'accessibleStudies': self.accessible_studies,
        }

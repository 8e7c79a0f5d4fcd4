"""
Role and permission model.

Roles come from the identity provider as a token claim; nothing here is
stored in a database. Permissions are (resource, action) pairs over a
closed set of resources and actions, with explicit wildcard variants.
"""
from dataclasses import dataclass
from typing import Optional

from django.db import models


class RoleChoices(models.TextChoices):
    """Fixed role names, most to least powerful."""
    SUPER_ADMIN = 'super_admin', 'Super Admin'
    STUDY_ADMIN = 'study_admin', 'Study Admin'
    ORG_ADMIN = 'org_admin', 'Organization Admin'
    INVESTIGATOR = 'investigator', 'Investigator'
    COORDINATOR = 'coordinator', 'Coordinator'
    DATA_ENTRY = 'data_entry', 'Data Entry'
    VIEWER = 'viewer', 'Viewer'


class ResourceChoices(models.TextChoices):
    STUDY = 'study', 'Study'
    CLINICAL_STUDY = 'clinical_study', 'Clinical Study'
    SURVEY = 'survey', 'Survey'
    ORGANIZATION = 'organization', 'Organization'
    USER = 'user', 'User'
    PATIENT = 'patient', 'Patient'
    VISIT = 'visit', 'Visit'
    EXAMINATION = 'examination', 'Examination'
    AUDIT = 'audit', 'Audit'


class ActionChoices(models.TextChoices):
    CREATE = 'create', 'Create'
    READ = 'read', 'Read'
    UPDATE = 'update', 'Update'
    DELETE = 'delete', 'Delete'
    MANAGE = 'manage', 'Manage'


WILDCARD = '*'


@dataclass(frozen=True)
class Permission:
    """
    A (resource, action) pair.

    resource=None means any resource and action=None means any action, so
    Permission(None, None) is the super-admin grant and
    Permission(PATIENT, None) is 'patient:*'. 'manage' is an ordinary
    action: it is granted and checked literally.
    """
    resource: Optional[ResourceChoices]
    action: Optional[ActionChoices]

    @classmethod
    def parse(cls, value):
        """Parse 'resource:action', 'resource:*' or '*'. Raises ValueError."""
        if isinstance(value, Permission):
            return value
        if value == WILDCARD:
            return ANY
        resource, sep, action = str(value).partition(':')
        if not sep:
            raise ValueError(f'Malformed permission: {value!r}')
        if resource not in ResourceChoices.values:
            raise ValueError(f'Unknown resource: {resource!r}')
        if action == WILDCARD:
            return cls(ResourceChoices(resource), None)
        if action not in ActionChoices.values:
            raise ValueError(f'Unknown action: {action!r}')
        return cls(ResourceChoices(resource), ActionChoices(action))

    @property
    def is_any(self):
        return self.resource is None and self.action is None

    @property
    def is_resource_wildcard(self):
        return self.resource is not None and self.action is None

    def __str__(self):
        if self.is_any:
            return WILDCARD
        return f'{self.resource.value}:{self.action.value if self.action else WILDCARD}'


ANY = Permission(None, None)


def any_action(resource):
    return Permission(resource, None)


def perm(resource, action):
    return Permission(resource, action)


R = ResourceChoices
A = ActionChoices

ROLE_PERMISSIONS = {
    RoleChoices.SUPER_ADMIN: frozenset({ANY}),
    RoleChoices.STUDY_ADMIN: frozenset({
        any_action(R.STUDY),
        any_action(R.CLINICAL_STUDY),
        any_action(R.SURVEY),
        any_action(R.ORGANIZATION),
        any_action(R.USER),
        any_action(R.PATIENT),
        any_action(R.VISIT),
        any_action(R.EXAMINATION),
        any_action(R.AUDIT),
    }),
    RoleChoices.ORG_ADMIN: frozenset({
        perm(R.CLINICAL_STUDY, A.READ),
        perm(R.SURVEY, A.MANAGE),
        perm(R.ORGANIZATION, A.MANAGE),
        perm(R.USER, A.MANAGE),
        perm(R.PATIENT, A.MANAGE),
        perm(R.VISIT, A.READ),
        perm(R.EXAMINATION, A.READ),
        perm(R.AUDIT, A.READ),
    }),
    RoleChoices.INVESTIGATOR: frozenset({
        perm(R.STUDY, A.READ),
        perm(R.CLINICAL_STUDY, A.READ),
        perm(R.SURVEY, A.MANAGE),
        perm(R.PATIENT, A.MANAGE),
        perm(R.VISIT, A.MANAGE),
        perm(R.EXAMINATION, A.MANAGE),
        perm(R.AUDIT, A.READ),
    }),
    RoleChoices.COORDINATOR: frozenset({
        perm(R.SURVEY, A.CREATE),
        perm(R.SURVEY, A.READ),
        perm(R.SURVEY, A.UPDATE),
        perm(R.PATIENT, A.MANAGE),
        perm(R.VISIT, A.MANAGE),
        perm(R.EXAMINATION, A.MANAGE),
    }),
    RoleChoices.DATA_ENTRY: frozenset({
        perm(R.EXAMINATION, A.CREATE),
        perm(R.EXAMINATION, A.UPDATE),
        perm(R.VISIT, A.READ),
        perm(R.PATIENT, A.READ),
    }),
    RoleChoices.VIEWER: frozenset({
        perm(R.STUDY, A.READ),
        perm(R.CLINICAL_STUDY, A.READ),
        perm(R.SURVEY, A.READ),
        perm(R.PATIENT, A.READ),
        perm(R.VISIT, A.READ),
        perm(R.EXAMINATION, A.READ),
    }),
}

# Lower number = more powerful.
ROLE_HIERARCHY = {
    RoleChoices.SUPER_ADMIN: 10,
    RoleChoices.STUDY_ADMIN: 20,
    RoleChoices.ORG_ADMIN: 30,
    RoleChoices.INVESTIGATOR: 40,
    RoleChoices.COORDINATOR: 50,
    RoleChoices.DATA_ENTRY: 60,
    RoleChoices.VIEWER: 70,
}

# Roles that see every organization and study.
ELEVATED_ROLES = frozenset({RoleChoices.SUPER_ADMIN, RoleChoices.STUDY_ADMIN})

# Granted on a user's own records regardless of role.
SELF_PERMISSIONS = frozenset({
    perm(R.USER, A.READ),
    perm(R.USER, A.UPDATE),
    perm(R.EXAMINATION, A.READ),
    perm(R.VISIT, A.READ),
})

"""
Global test fixtures for pytest.

Provides reusable fixtures for API testing:
- A mocked DynamoDB with every table created, and a container bound to it
- Authenticated API clients by role
- An enrolled patient: organization, active study, patient, survey and visits
"""
import boto3
import pytest
from moto import mock_aws
from rest_framework.test import APIClient

from apps.authz.authentication import ClinicalPrincipal
from apps.authz.models import RoleChoices
from apps.clinical.models import StudyStatusChoices
from apps.core.container import Container, get_container, set_container
from apps.core.tables import create_tables

TEST_ENVIRONMENT = 'test'
TEST_REGION = 'ap-northeast-1'


# ============================================================================
# Document store
# ============================================================================

@pytest.fixture
def dynamodb():
    """A moto DynamoDB resource with every table and index created."""
    with mock_aws():
        resource = boto3.resource('dynamodb', region_name=TEST_REGION)
        create_tables(resource, TEST_ENVIRONMENT)
        yield resource


@pytest.fixture
def container(dynamodb):
    """Fresh container over the mocked store, installed for the views."""
    previous = get_container()
    fresh = Container(dynamodb, TEST_ENVIRONMENT)
    set_container(fresh)
    yield fresh
    set_container(previous)


# ============================================================================
# API Clients
# ============================================================================

@pytest.fixture
def api_client():
    """Unauthenticated DRF API client."""
    return APIClient()


@pytest.fixture
def make_client():
    """
    Factory for an API client authenticated as a principal.

    Usage:
        client = make_client(RoleChoices.COORDINATOR, organization_id='org-1',
                             accessible_studies=['study-1'])
    """
    def _make(role, organization_id=None, accessible_organizations=None,
              accessible_studies=None, permissions=None, sub=None):
        principal = ClinicalPrincipal.from_claims(
            sub=sub or f'user-{role}',
            role=role,
            organization_id=organization_id,
            accessible_organizations=accessible_organizations,
            accessible_studies=accessible_studies,
            permissions=permissions,
        )
        client = APIClient()
        client.force_authenticate(user=principal)
        return client
    return _make


@pytest.fixture
def super_admin_client(make_client):
    """Super admin: every permission on every organization and study."""
    return make_client(RoleChoices.SUPER_ADMIN)


@pytest.fixture
def study_admin_client(make_client):
    return make_client(RoleChoices.STUDY_ADMIN)


@pytest.fixture
def role_client(make_client, enrolled):
    """
    Factory for a client whose scope covers the enrolled patient's
    organization and study.
    """
    def _make(role, **claims):
        claims.setdefault('organization_id', enrolled['organization']['organizationId'])
        claims.setdefault('accessible_studies', [enrolled['study']['clinicalStudyId']])
        return make_client(role, **claims)
    return _make


# ============================================================================
# Clinical data
# ============================================================================

VISIT_TEMPLATE = [
    {
        'visitNumber': 1,
        'visitType': 'baseline',
        'visitName': 'Baseline',
        'scheduledDaysFromBaseline': 0,
        'windowDaysBefore': 0,
        'windowDaysAfter': 3,
        'requiredExaminations': ['basic-info', 'vas'],
        'optionalExaminations': [],
        'examinationOrder': ['basic-info', 'vas'],
    },
    {
        'visitNumber': 2,
        'visitType': '1week',
        'visitName': '1 Week',
        'scheduledDaysFromBaseline': 7,
        'windowDaysBefore': 2,
        'windowDaysAfter': 2,
        'requiredExaminations': ['basic-info', 'vas'],
        'optionalExaminations': ['questionnaire'],
        'examinationOrder': ['basic-info', 'vas', 'questionnaire'],
    },
]

EXAMINATIONS = [
    {'examinationId': 'basic-info', 'examinationName': 'Basic Information', 'estimatedDuration': 10},
    {'examinationId': 'vas', 'examinationName': 'Visual Analog Scale', 'estimatedDuration': 5},
    {'examinationId': 'questionnaire', 'examinationName': 'Questionnaire', 'estimatedDuration': 10},
]


@pytest.fixture
def organization(container):
    return container.organization_service.create_organization(
        {
            'organizationName': 'Tokyo Eye Clinic',
            'organizationCode': 'TEC',
            'organizationType': 'clinic',
            'email': 'office@tokyo-eye.example',
        },
        created_by='user-admin',
    )


@pytest.fixture
def study(container, organization):
    """An active study with a two-visit template, linked to the organization."""
    created = container.study_service.create_study(
        {
            'studyName': 'Silicone Hydrogel Comfort',
            'studyCode': 'SHC-01',
            'protocolVersion': '1.0',
            'visitTemplate': VISIT_TEMPLATE,
            'examinations': EXAMINATIONS,
        },
        created_by='user-admin',
    )
    container.study_service.add_organization(created['clinicalStudyId'], organization['organizationId'])
    return container.studies.update(created['clinicalStudyId'], {'status': StudyStatusChoices.ACTIVE.value})


@pytest.fixture
def patient(container, organization):
    return container.patient_service.register_patient(
        {
            'patientCode': 'P-001',
            'patientInitials': 'AB',
            'gender': 'female',
            'registeredOrganizationId': organization['organizationId'],
        },
        created_by='user-admin',
    )


@pytest.fixture
def enrolled(container, organization, study, patient):
    """A survey for the patient in the study, with its generated visits."""
    result = container.survey_service.create_survey_from_study(
        study['clinicalStudyId'],
        organization['organizationId'],
        patient['patientId'],
        '2026-01-05',
        assigned_by='user-admin',
    )
    return {
        'organization': organization,
        'study': study,
        'patient': patient,
        'survey': result['survey'],
        'visits': result['visits'],
    }


@pytest.fixture
def baseline_visit(enrolled):
    return enrolled['visits'][0]


@pytest.fixture
def basic_info_panel():
    """Factory for a valid basic-info eye panel."""
    def _panel(**overrides):
        panel = {
            'cr_R1': 7.8,
            'cr_R2': 7.7,
            'cr_Ave': 7.75,
            'va': 1.0,
            's': -2.25,
            'c': -0.5,
            'ax': 180,
            'intraocularPressure1': 14,
            'intraocularPressure2': 15,
            'intraocularPressure3': 16,
            'cornealEndothelialCells': 2800,
        }
        panel.update(overrides)
        return panel
    return _panel


@pytest.fixture
def vas_panel():
    """Factory for a valid VAS eye panel."""
    def _panel(**overrides):
        panel = {
            'comfortLevel': 80,
            'drynessLevel': 20,
            'visualPerformance_Daytime': 85,
            'visualPerformance_EndOfDay': 70,
        }
        panel.update(overrides)
        return panel
    return _panel

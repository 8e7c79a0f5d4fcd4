"""
API tests for organizations, studies, patients, surveys and visits.

Checks status codes and the {"success": ..., "data"/"error": ...}
envelope; workflow rules are covered in depth by the service tests.
"""
import pytest
from rest_framework import status

from apps.authz.models import RoleChoices


@pytest.fixture
def coordinator(role_client):
    return role_client(RoleChoices.COORDINATOR)


@pytest.fixture
def visit_url(enrolled):
    def _url(index=0, suffix=''):
        visit = enrolled['visits'][index]
        return f"/api/v1/surveys/{enrolled['survey']['surveyId']}/visits/{visit['visitId']}/{suffix}"
    return _url


STUDY_PAYLOAD = {
    'studyName': 'Daily Disposable Comfort',
    'studyCode': 'DDC-02',
    'startDate': '2026-04-01',
    'visitTemplate': [{
        'visitNumber': 1,
        'visitType': 'baseline',
        'visitName': 'Baseline',
        'scheduledDaysFromBaseline': 0,
        'windowDaysAfter': 2,
        'requiredExaminations': ['vas'],
        'examinationOrder': ['vas'],
    }],
    'examinations': [{'examinationId': 'vas', 'examinationName': 'VAS', 'estimatedDuration': 5}],
}


class TestOrganizationAPI:
    """Test /api/v1/organizations/."""

    endpoint = '/api/v1/organizations/'

    def test_create(self, super_admin_client, container):
        payload = {'organizationName': 'Kyoto Vision', 'organizationCode': 'KYV', 'organizationType': 'hospital'}

        response = super_admin_client.post(self.endpoint, payload, format='json')

        assert response.status_code == status.HTTP_201_CREATED
        body = response.json()
        assert body['success'] is True
        assert body['data']['status'] == 'pending_approval'

    def test_duplicate_code_is_409(self, super_admin_client, organization):
        payload = {'organizationName': 'Again', 'organizationCode': 'TEC', 'organizationType': 'clinic'}

        response = super_admin_client.post(self.endpoint, payload, format='json')

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()['success'] is False

    def test_invalid_email_names_field(self, super_admin_client, container):
        payload = {
            'organizationName': 'Kyoto Vision',
            'organizationCode': 'KYV',
            'organizationType': 'hospital',
            'email': 'nope',
        }

        response = super_admin_client.post(self.endpoint, payload, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()['field'] == 'email'

    def test_unknown_type_is_400(self, super_admin_client, container):
        payload = {'organizationName': 'X', 'organizationCode': 'X1', 'organizationType': 'spa'}

        response = super_admin_client.post(self.endpoint, payload, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert 'organizationType' in response.json()['error']

    def test_delete_deactivates(self, super_admin_client, organization, container):
        response = super_admin_client.delete(f"{self.endpoint}{organization['organizationId']}/")

        assert response.status_code == status.HTTP_200_OK
        assert container.organizations.find_by_id(organization['organizationId'])['status'] == 'inactive'

    def test_stats(self, role_client, enrolled):
        client = role_client(RoleChoices.ORG_ADMIN)

        response = client.get(f"{self.endpoint}{enrolled['organization']['organizationId']}/stats/")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()['data']['patients']['total'] == 1

    def test_missing_is_404(self, super_admin_client, container):
        response = super_admin_client.get(f'{self.endpoint}org-404/')

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json() == {'success': False, 'error': 'Organization not found'}


class TestStudyAPI:
    endpoint = '/api/v1/studies/'

    def test_create(self, study_admin_client, container):
        response = study_admin_client.post(self.endpoint, STUDY_PAYLOAD, format='json')

        assert response.status_code == status.HTTP_201_CREATED
        assert response.json()['data']['status'] == 'planning'

    def test_template_rules_are_400(self, study_admin_client, container):
        template = dict(STUDY_PAYLOAD['visitTemplate'][0], examinationOrder=[])
        payload = dict(STUDY_PAYLOAD, visitTemplate=[template])

        response = study_admin_client.post(self.endpoint, payload, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()['field'] == 'visitTemplate'

    def test_active_study_delete_is_400(self, study_admin_client, study):
        response = study_admin_client.delete(f"{self.endpoint}{study['clinicalStudyId']}/")

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_link_organization(self, study_admin_client, study, container):
        other = container.organization_service.create_organization(
            {'organizationName': 'Osaka Eye', 'organizationCode': 'OSK', 'organizationType': 'clinic'},
            created_by='user-admin',
        )

        response = study_admin_client.post(
            f"{self.endpoint}{study['clinicalStudyId']}/organizations/",
            {'organizationId': other['organizationId']},
            format='json',
        )

        assert response.status_code == status.HTTP_200_OK
        assert other['organizationId'] in response.json()['data']['targetOrganizations']


class TestPatientAPI:
    """Test /api/v1/patients/."""

    endpoint = '/api/v1/patients/'

    def test_list_requires_organization(self, coordinator):
        response = coordinator.get(self.endpoint)

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()['field'] == 'organization'

    def test_list_pages_with_cursor(self, coordinator, enrolled, container):
        organization_id = enrolled['organization']['organizationId']
        for code in ('P-002', 'P-003'):
            container.patient_service.register_patient(
                {'patientCode': code, 'registeredOrganizationId': organization_id}, 'user-admin'
            )

        first = coordinator.get(self.endpoint, {'organization': organization_id, 'limit': 2}).json()['data']
        second = coordinator.get(
            self.endpoint, {'organization': organization_id, 'limit': 2, 'cursor': first['cursor']}
        ).json()['data']

        assert len(first['items']) == 2
        assert first['cursor']
        codes = {p['patientCode'] for p in first['items'] + second['items']}
        assert codes == {'P-001', 'P-002', 'P-003'}

    def test_code_prefix_search(self, coordinator, enrolled):
        response = coordinator.get(
            self.endpoint, {'organization': enrolled['organization']['organizationId'], 'code': 'P-0'}
        )

        assert [p['patientCode'] for p in response.json()['data']['items']] == ['P-001']

    def test_invalid_code_is_400(self, coordinator, enrolled):
        payload = {'patientCode': 'x', 'registeredOrganizationId': enrolled['organization']['organizationId']}

        response = coordinator.post(self.endpoint, payload, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()['field'] == 'patientCode'

    def test_withdraw_twice_is_400(self, coordinator, enrolled):
        url = f"{self.endpoint}{enrolled['patient']['patientId']}/withdraw/"

        assert coordinator.post(url, {}, format='json').status_code == status.HTTP_200_OK
        response = coordinator.post(url, {}, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()['error'] == 'Patient is already withdrawn'


class TestSurveyAPI:
    endpoint = '/api/v1/surveys/'

    def test_enroll_returns_survey_visits_and_summary(self, coordinator, enrolled, container):
        other = container.patient_service.register_patient(
            {'patientCode': 'P-002', 'registeredOrganizationId': enrolled['organization']['organizationId']},
            'user-admin',
        )
        payload = {
            'clinicalStudyId': enrolled['study']['clinicalStudyId'],
            'organizationId': enrolled['organization']['organizationId'],
            'patientId': other['patientId'],
            'baselineDate': '2026-03-02',
        }

        response = coordinator.post(self.endpoint, payload, format='json')

        assert response.status_code == status.HTTP_201_CREATED
        data = response.json()['data']
        assert data['survey']['patientId'] == other['patientId']
        assert len(data['visits']) == 2
        assert data['summary'] == {
            'totalVisits': 2,
            'generatedVisits': 2,
            'estimatedCompletionDate': '2026-03-11T00:00:00.000000Z',
        }

    def test_second_active_survey_is_400(self, coordinator, enrolled):
        payload = {
            'clinicalStudyId': enrolled['study']['clinicalStudyId'],
            'organizationId': enrolled['organization']['organizationId'],
            'patientId': enrolled['patient']['patientId'],
            'baselineDate': '2026-03-02',
        }

        response = coordinator.post(self.endpoint, payload, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_list_requires_filter(self, coordinator):
        response = coordinator.get(self.endpoint)
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_list_by_patient(self, coordinator, enrolled):
        response = coordinator.get(self.endpoint, {'patient': enrolled['patient']['patientId']})

        assert [s['surveyId'] for s in response.json()['data']] == [enrolled['survey']['surveyId']]

    def test_stats(self, coordinator, enrolled):
        response = coordinator.get(f"{self.endpoint}{enrolled['survey']['surveyId']}/stats/")

        data = response.json()['data']
        assert data['visits']['total'] == 2
        assert data['visits']['scheduled'] == 2


class TestVisitAPI:
    """Test visit actions under /api/v1/surveys/{id}/visits/."""

    def test_list(self, coordinator, enrolled):
        response = coordinator.get(f"/api/v1/surveys/{enrolled['survey']['surveyId']}/visits/")

        assert [v['visitNumber'] for v in response.json()['data']] == [1, 2]

    def test_unknown_visit_is_404(self, coordinator, enrolled):
        response = coordinator.get(f"/api/v1/surveys/{enrolled['survey']['surveyId']}/visits/visit-404/")
        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_schedule_out_of_window(self, coordinator, visit_url):
        response = coordinator.post(visit_url(suffix='schedule/'), {'scheduledDate': '2026-02-01'}, format='json')

        assert response.status_code == status.HTTP_200_OK
        data = response.json()['data']
        assert data['protocolCompliant'] is False
        assert data['deviations'][0]['deviationType'] == 'window_violation'

    def test_start_then_complete(self, coordinator, visit_url):
        started = coordinator.post(visit_url(suffix='start/'), {}, format='json').json()['data']
        completed = coordinator.post(visit_url(suffix='complete/'), {}, format='json').json()['data']

        assert started['status'] == 'in_progress'
        assert started['conductedBy'] == 'user-coordinator'
        assert completed['visit']['status'] == 'completed'
        assert completed['survey']['completionPercentage'] == 50

    def test_complete_examination(self, coordinator, visit_url):
        response = coordinator.post(
            visit_url(index=1, suffix='examinations/complete/'), {'examinationId': 'vas'}, format='json'
        )

        data = response.json()['data']
        assert data['completionPercentage'] == 33
        assert data['allExaminationsComplete'] is False

    def test_configuration_round_trip(self, coordinator, visit_url):
        payload = {
            'requiredExaminations': ['vas'],
            'optionalExaminations': ['dr1'],
            'examinationOrder': ['dr1', 'vas'],
        }

        put = coordinator.put(visit_url(suffix='configuration/'), payload, format='json')
        get = coordinator.get(visit_url(suffix='configuration/'))

        assert put.status_code == status.HTTP_200_OK
        config = get.json()['data']['examinationConfig']
        assert config['examinationOrder'] == ['dr1', 'vas']
        assert config['totalExaminations'] == 2

    def test_cancelled_visit_cannot_complete(self, coordinator, visit_url):
        coordinator.post(visit_url(suffix='cancel/'), {'reason': 'patient ill'}, format='json')

        response = coordinator.post(visit_url(suffix='complete/'), {}, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()['error'] == 'Cannot complete a cancelled visit'

    def test_missed(self, coordinator, visit_url):
        response = coordinator.post(visit_url(suffix='missed/'), {'reason': 'no show'}, format='json')

        assert response.json()['data']['status'] == 'missed'
        assert response.json()['data']['deviationReason'] == 'no show'


class TestVisitReports:
    """Test organization-wide reports under /api/v1/visits/."""

    @pytest.mark.parametrize('report', ['due', 'overdue', 'deviations'])
    def test_reports_require_organization(self, coordinator, report):
        response = coordinator.get(f'/api/v1/visits/{report}/')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()['field'] == 'organization'

    @pytest.mark.parametrize('report', ['due', 'overdue', 'deviations', 'statistics'])
    def test_reports_for_own_organization(self, coordinator, enrolled, report):
        response = coordinator.get(
            f'/api/v1/visits/{report}/', {'organization': enrolled['organization']['organizationId']}
        )
        assert response.status_code == status.HTTP_200_OK

    def test_statistics_for_survey(self, coordinator, enrolled):
        response = coordinator.get('/api/v1/visits/statistics/', {'survey': enrolled['survey']['surveyId']})

        assert response.json()['data']['totalVisits'] == 2

    def test_reports_for_other_organization_are_403(self, coordinator):
        response = coordinator.get('/api/v1/visits/overdue/', {'organization': 'org-elsewhere'})
        assert response.status_code == status.HTTP_403_FORBIDDEN

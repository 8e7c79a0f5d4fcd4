"""
API tests for visit drafts, examination records and analytics.
"""
import pytest
from rest_framework import status

from apps.authz.models import RoleChoices


@pytest.fixture
def coordinator(role_client):
    return role_client(RoleChoices.COORDINATOR)


@pytest.fixture
def survey_id(enrolled):
    return enrolled['survey']['surveyId']


@pytest.fixture
def visit_id(baseline_visit):
    return baseline_visit['visitId']


@pytest.fixture
def draft_url(visit_id):
    return f'/api/v1/visits/{visit_id}/draft/'


@pytest.fixture
def exam_url(survey_id, visit_id):
    return f'/api/v1/surveys/{survey_id}/visits/{visit_id}/examinations/'


@pytest.fixture
def initialized(coordinator, draft_url, survey_id):
    response = coordinator.post(draft_url + 'initialize/', {'surveyId': survey_id}, format='json')
    assert response.status_code == status.HTTP_201_CREATED
    return response.json()['data']


class TestExaminationRecords:
    """Test per-type examination endpoints."""

    def test_create_both_eyes(self, coordinator, exam_url, vas_panel):
        response = coordinator.post(exam_url + 'vas/', {'right': vas_panel(), 'left': vas_panel()}, format='json')

        assert response.status_code == status.HTTP_201_CREATED
        data = response.json()['data']
        assert data['right']['eyeside'] == 'Right'
        assert data['left']['eyeside'] == 'Left'
        assert data['errors'] == {}

    def test_one_eye_failed_is_207(self, coordinator, exam_url, vas_panel):
        payload = {'right': vas_panel(), 'left': vas_panel(comfortLevel=150)}

        response = coordinator.post(exam_url + 'vas/', payload, format='json')

        assert response.status_code == status.HTTP_207_MULTI_STATUS
        data = response.json()['data']
        assert data['right'] is not None
        assert data['left'] is None
        assert 'left' in data['errors']

    def test_both_eyes_failed_is_400(self, coordinator, exam_url, vas_panel):
        payload = {'right': vas_panel(drynessLevel=-1), 'left': vas_panel(comfortLevel=150)}

        response = coordinator.post(exam_url + 'vas/', payload, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()['success'] is False

    def test_no_eye_data_is_400(self, coordinator, exam_url):
        response = coordinator.post(exam_url + 'vas/', {}, format='json')
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_unknown_type_is_400(self, coordinator, exam_url, vas_panel):
        response = coordinator.post(exam_url + 'retina-scan/', {'right': vas_panel()}, format='json')
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_update_one_eye(self, coordinator, exam_url, vas_panel):
        coordinator.post(exam_url + 'vas/', {'right': vas_panel()}, format='json')

        response = coordinator.patch(exam_url + 'vas/right/', {'comfortLevel': 60}, format='json')

        assert response.status_code == status.HTTP_200_OK
        assert response.json()['data']['comfortLevel'] == 60

    def test_update_missing_eye_is_404(self, coordinator, exam_url, vas_panel):
        coordinator.post(exam_url + 'vas/', {'right': vas_panel()}, format='json')

        response = coordinator.patch(exam_url + 'vas/left/', {'comfortLevel': 60}, format='json')

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_list_follows_visit_order(self, coordinator, exam_url, vas_panel):
        coordinator.post(exam_url + 'vas/', {'left': vas_panel()}, format='json')

        data = coordinator.get(exam_url).json()['data']

        assert list(data) == ['basic-info', 'vas']
        assert data['vas']['right'] is None
        assert data['vas']['left']['comfortLevel'] == 80


class TestDraftEndpoints:
    """Test /api/v1/visits/{id}/draft/."""

    def test_initialize_twice_is_409(self, coordinator, draft_url, survey_id, initialized):
        response = coordinator.post(draft_url + 'initialize/', {'surveyId': survey_id}, format='json')
        assert response.status_code == status.HTTP_409_CONFLICT

    def test_get_missing_draft_is_404(self, coordinator, draft_url, enrolled):
        response = coordinator.get(draft_url)
        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_save_then_get(self, coordinator, draft_url, survey_id, vas_panel):
        payload = {'surveyId': survey_id, 'formData': {'vas': {'right': vas_panel()}}, 'currentStep': 1}

        saved = coordinator.post(draft_url, payload, format='json')
        fetched = coordinator.get(draft_url).json()['data']

        assert saved.status_code == status.HTTP_201_CREATED
        assert fetched['currentStep'] == 1
        assert fetched['totalSteps'] == 2
        assert fetched['formData']['vas']['right']['comfortLevel'] == 80

    def test_autosave_conflict_is_409_with_latest(self, coordinator, draft_url, initialized):
        first = coordinator.post(draft_url + 'autosave/', {'currentStep': 1}, format='json')
        second = coordinator.post(draft_url + 'autosave/', {'currentStep': 0}, format='json')

        assert first.status_code == status.HTTP_200_OK
        assert first.json()['data']['version'] == 2
        assert second.status_code == status.HTTP_409_CONFLICT
        body = second.json()
        assert body['success'] is False
        assert body['conflict'] is True
        assert body['latestDraft']['currentStep'] == 1

    def test_autosave_with_current_version(self, coordinator, draft_url, initialized):
        coordinator.post(draft_url + 'autosave/', {'currentStep': 1}, format='json')

        response = coordinator.post(
            draft_url + 'autosave/', {'currentStep': 0, 'expectedVersion': 2}, format='json'
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()['data']['version'] == 3

    def test_autosave_missing_draft_is_404(self, coordinator, draft_url, enrolled):
        response = coordinator.post(draft_url + 'autosave/', {'currentStep': 1}, format='json')

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json() == {'success': False, 'error': 'Draft not found'}

    def test_eye_and_step_updates(self, coordinator, draft_url, initialized, basic_info_panel, vas_panel):
        both = coordinator.put(
            draft_url + 'examinations/basic-info/',
            {'right': basic_info_panel(), 'left': basic_info_panel()},
            format='json',
        )
        one = coordinator.put(draft_url + 'examinations/vas/left/', vas_panel(), format='json')
        step = coordinator.post(draft_url + 'steps/basic-info/complete/', {}, format='json')

        assert both.status_code == status.HTTP_200_OK
        assert one.json()['data']['formData']['vas']['left']['comfortLevel'] == 80
        assert step.json()['data']['currentStep'] == 1

        summary = coordinator.get(draft_url + 'summary/').json()['data']
        assert summary['examinationStatus']['basic-info']['status'] == 'completed'
        assert summary['examinationStatus']['vas']['status'] == 'partial'

    def test_invalid_eyeside_is_400(self, coordinator, draft_url, initialized, vas_panel):
        response = coordinator.put(draft_url + 'examinations/vas/middle/', vas_panel(), format='json')
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_progress(self, coordinator, draft_url, initialized):
        response = coordinator.put(
            draft_url + 'progress/', {'currentStep': 1, 'completedSteps': ['basic-info']}, format='json'
        )

        assert response.json()['data']['completedSteps'] == ['basic-info']

    def test_stats_validate_and_restore_info(self, coordinator, draft_url, initialized):
        stats = coordinator.get(draft_url + 'stats/').json()['data']
        validation = coordinator.get(draft_url + 'validate/').json()['data']
        restore = coordinator.get(draft_url + 'restore-info/').json()['data']

        assert stats['exists'] is True
        assert validation['isValid'] is False
        assert restore['canRestore'] is True
        assert restore['availableExaminations'] == []

    def test_stats_without_draft(self, coordinator, draft_url, enrolled):
        response = coordinator.get(draft_url + 'stats/')

        assert response.status_code == status.HTTP_200_OK
        assert response.json()['data']['exists'] is False

    def test_backup(self, coordinator, draft_url, initialized):
        response = coordinator.post(draft_url + 'backup/', {}, format='json')

        assert response.status_code == status.HTTP_201_CREATED
        assert response.json()['data']['backupId'].startswith('backup-')

    def test_delete(self, coordinator, draft_url, initialized):
        response = coordinator.delete(draft_url)

        assert response.status_code == status.HTTP_200_OK
        assert coordinator.get(draft_url).status_code == status.HTTP_404_NOT_FOUND


class TestSubmit:
    """Test POST .../examinations/submit/."""

    @pytest.fixture
    def filled(self, coordinator, draft_url, initialized, basic_info_panel, vas_panel):
        coordinator.put(
            draft_url + 'examinations/basic-info/',
            {'right': basic_info_panel(), 'left': basic_info_panel()},
            format='json',
        )
        coordinator.put(
            draft_url + 'examinations/vas/', {'right': vas_panel(), 'left': vas_panel()}, format='json'
        )

    def test_submit_draft(self, coordinator, exam_url, draft_url, filled):
        response = coordinator.post(exam_url + 'submit/', {}, format='json')

        assert response.status_code == status.HTTP_200_OK
        data = response.json()['data']
        assert data['success'] is True
        assert data['savedExaminations'] == ['basic-info', 'vas']
        assert data['visit']['status'] == 'completed'
        assert data['visit']['conductedBy'] == 'user-coordinator'
        assert coordinator.get(draft_url).status_code == status.HTTP_404_NOT_FOUND

    def test_failed_examination_is_422(self, coordinator, exam_url, draft_url, filled, vas_panel):
        coordinator.put(draft_url + 'examinations/vas/left/', vas_panel(comfortLevel=150), format='json')

        response = coordinator.post(exam_url + 'submit/', {}, format='json')

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        body = response.json()
        assert body['success'] is False
        assert body['savedExaminations'] == ['basic-info']
        assert body['failedExaminations'][0]['examinationId'] == 'vas'
        assert coordinator.get(draft_url).status_code == status.HTTP_200_OK

    def test_submit_without_draft_is_404(self, coordinator, exam_url, enrolled):
        response = coordinator.post(exam_url + 'submit/', {}, format='json')
        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_submit_form_data(self, coordinator, exam_url, vas_panel):
        payload = {'formData': {'vas': {'right': vas_panel(), 'left': vas_panel()}}}

        response = coordinator.post(exam_url + 'submit/', payload, format='json')

        assert response.status_code == status.HTTP_200_OK
        assert response.json()['data']['savedExaminations'] == ['vas']


class TestAnalyticsAPI:
    def test_comparison_requires_eyeside(self, coordinator, survey_id):
        response = coordinator.get(f'/api/v1/surveys/{survey_id}/examinations/vas/comparison/')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()['field'] == 'eyeside'

    def test_comparison_and_analysis(self, coordinator, enrolled, survey_id, vas_panel):
        for visit, comfort in zip(enrolled['visits'], (40, 70)):
            coordinator.post(
                f"/api/v1/surveys/{survey_id}/visits/{visit['visitId']}/examinations/vas/",
                {'right': vas_panel(comfortLevel=comfort)},
                format='json',
            )
        base = f'/api/v1/surveys/{survey_id}/examinations/vas/'

        comparison = coordinator.get(base + 'comparison/', {'eyeside': 'right'}).json()['data']
        analysis = coordinator.get(base + 'analysis/', {'eyeside': 'right'}).json()['data']

        assert [r['comfortLevel'] for r in comparison] == [40, 70]
        assert analysis['eyeside'] == 'Right'
        assert analysis['analysis']['improvement']['comfortTrend'] == 'improving'

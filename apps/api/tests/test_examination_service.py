"""
Tests for the examination service: per-type dispatch, submission of a
visit's draft into the examination tables, and analytics.
"""
import pytest

from apps.core.exceptions import NotFoundError, ValidationError


@pytest.fixture
def service(container):
    return container.examination_service


@pytest.fixture
def ids(enrolled, baseline_visit):
    return enrolled['survey']['surveyId'], baseline_visit['visitId']


@pytest.fixture
def filled_draft(service, ids, basic_info_panel, vas_panel):
    """A baseline draft with both eyes of both examinations entered."""
    survey_id, visit_id = ids
    service.initialize_draft(survey_id, visit_id)
    service.update_draft_both_eyes(visit_id, 'basic-info', {'right': basic_info_panel(), 'left': basic_info_panel()})
    service.update_draft_both_eyes(visit_id, 'vas', {'right': vas_panel(), 'left': vas_panel()})
    return service.require_draft(visit_id)


class TestSaveExaminationData:
    def test_records_carry_visit_context(self, service, ids, enrolled, vas_panel):
        survey_id, visit_id = ids

        result = service.save_examination_data(survey_id, visit_id, 'vas', vas_panel(), vas_panel())

        assert result['errors'] == {}
        for record in (result['right'], result['left']):
            assert record['patientId'] == enrolled['patient']['patientId']
            assert record['organizationId'] == enrolled['organization']['organizationId']
            assert record['clinicalStudyId'] == enrolled['study']['clinicalStudyId']

    def test_unknown_type(self, service, ids, vas_panel):
        with pytest.raises(ValidationError):
            service.save_examination_data(*ids, 'retina-scan', vas_panel(), None)

    def test_no_eye_data(self, service, ids):
        with pytest.raises(ValidationError):
            service.save_examination_data(*ids, 'vas', None, None)

    def test_unknown_visit(self, service, enrolled, vas_panel):
        with pytest.raises(NotFoundError):
            service.save_examination_data(enrolled['survey']['surveyId'], 'visit-404', 'vas', vas_panel())

    def test_update_one_eye(self, service, ids, vas_panel):
        service.save_examination_data(*ids, 'vas', vas_panel(), vas_panel())

        updated = service.update_examination_data(*ids, 'vas', 'left', {'comfortLevel': 55})

        assert updated['comfortLevel'] == 55
        assert updated['eyeside'] == 'Left'

    def test_update_missing_eye(self, service, ids, vas_panel):
        service.save_examination_data(*ids, 'vas', vas_panel(), None)

        with pytest.raises(NotFoundError):
            service.update_examination_data(*ids, 'vas', 'left', {'comfortLevel': 55})

    def test_all_examination_data_follows_visit_order(self, service, ids, vas_panel):
        service.save_examination_data(*ids, 'vas', vas_panel(), None)

        data = service.get_all_examination_data(*ids)

        assert list(data) == ['basic-info', 'vas']
        assert data['basic-info'] == {'right': None, 'left': None}
        assert data['vas']['right']['comfortLevel'] == 80
        assert data['vas']['left'] is None


class TestSubmitExaminationData:
    """Test fan-out of a finished draft."""

    def test_successful_submit_closes_visit(self, container, service, ids, filled_draft):
        survey_id, visit_id = ids

        result = service.submit_examination_data(survey_id, visit_id, conducted_by='user-coordinator')

        assert result['success'] is True
        assert result['savedExaminations'] == ['basic-info', 'vas']
        assert result['failedExaminations'] == []
        assert result['visit']['status'] == 'completed'
        assert result['survey']['completedVisits'] == 1
        assert result['survey']['completionPercentage'] == 50

    def test_successful_submit_clears_draft_and_writes_records(self, container, service, ids, filled_draft):
        survey_id, visit_id = ids

        service.submit_examination_data(survey_id, visit_id, conducted_by='user-coordinator')

        assert service.get_draft(visit_id) is None
        assert len(container.examinations['basic-info'].find_by_visit(visit_id)) == 2
        assert len(container.examinations['vas'].find_by_visit(visit_id)) == 2
        visit = container.visits.find_visit(survey_id, visit_id)
        assert visit['completedExaminations'] == ['basic-info', 'vas']
        assert visit['conductedBy'] == 'user-coordinator'

    def test_failed_examination_keeps_visit_open_and_draft(self, container, service, ids, filled_draft, vas_panel):
        """Nothing is closed while any examination failed."""
        survey_id, visit_id = ids
        service.update_draft_examination_data(visit_id, 'vas', 'left', vas_panel(comfortLevel=150))

        result = service.submit_examination_data(survey_id, visit_id, conducted_by='user-coordinator')

        assert result['success'] is False
        assert result['savedExaminations'] == ['basic-info']
        assert result['failedExaminations'][0]['examinationId'] == 'vas'
        assert 'left' in result['failedExaminations'][0]['errors']
        assert container.visits.find_visit(survey_id, visit_id)['status'] == 'scheduled'
        assert service.get_draft(visit_id) is not None

    def test_corrected_resubmit_keeps_one_record_per_eye(self, container, service, ids, filled_draft, vas_panel):
        survey_id, visit_id = ids
        service.update_draft_examination_data(visit_id, 'vas', 'left', vas_panel(comfortLevel=150))
        first = service.submit_examination_data(survey_id, visit_id, conducted_by='user-coordinator')
        service.update_draft_examination_data(visit_id, 'vas', 'left', vas_panel(comfortLevel=55))

        second = service.submit_examination_data(survey_id, visit_id, conducted_by='user-coordinator')

        assert first['success'] is False
        assert second['success'] is True
        for examination_type in ('basic-info', 'vas'):
            records = container.examinations[examination_type].find_by_visit(visit_id)
            assert sorted(r['eyeside'] for r in records) == ['Left', 'Right']
        left = container.examinations['vas'].find_by_visit_and_eye(visit_id, 'left')
        assert left['comfortLevel'] == 55

    def test_explicit_form_data_without_draft(self, service, ids, vas_panel):
        survey_id, visit_id = ids

        result = service.submit_examination_data(
            survey_id, visit_id, 'user-coordinator',
            form_data={'vas': {'right': vas_panel()}},
            completed_examinations=['basic-info'],
        )

        assert result['success'] is True
        assert result['savedExaminations'] == ['vas']
        assert result['visit']['completedExaminations'] == ['vas', 'basic-info']

    def test_submit_without_draft_or_form_data(self, service, ids):
        with pytest.raises(NotFoundError):
            service.submit_examination_data(*ids, 'user-coordinator')

    def test_unknown_type_in_form_data_fails_that_examination(self, service, ids, vas_panel):
        result = service.submit_examination_data(
            *ids, 'user-coordinator', form_data={'retina-scan': {'right': {'x': 1}}}
        )

        assert result['success'] is False
        assert result['failedExaminations'][0]['examinationId'] == 'retina-scan'


class TestAnalytics:
    def test_comparison_and_analysis(self, container, service, enrolled, vas_panel):
        survey_id = enrolled['survey']['surveyId']
        baseline, week = enrolled['visits']
        service.save_examination_data(survey_id, baseline['visitId'], 'vas', vas_panel(comfortLevel=50), None)
        service.save_examination_data(survey_id, week['visitId'], 'vas', vas_panel(comfortLevel=90), None)

        comparison = service.get_examination_comparison(survey_id, 'vas', 'right')
        analysis = service.get_examination_analysis(survey_id, 'vas', 'right')

        assert [r['visitId'] for r in comparison] == [baseline['visitId'], week['visitId']]
        assert analysis['examinationType'] == 'vas'
        assert analysis['eyeside'] == 'Right'
        assert analysis['analysis']['visitCount'] == 2
        assert analysis['analysis']['improvement']['comfortTrend'] == 'improving'

    def test_analysis_rejects_unknown_eye(self, service, enrolled):
        with pytest.raises(ValidationError):
            service.get_examination_analysis(enrolled['survey']['surveyId'], 'vas', 'both')

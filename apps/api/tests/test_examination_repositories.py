"""
Tests for the examination repositories.

Covers per-type validation ranges, id generation, per-eye writes,
visit comparison order and the pure analytics helpers.
"""
import re
from unittest.mock import patch

import pytest

from apps.core.exceptions import ValidationError
from apps.examinations.models import Eyeside, get_examination_type
from apps.examinations.repositories import EXAMINATION_REPOSITORY_CLASSES
from apps.examinations.repositories.base import half_trend
from apps.examinations.repositories.basic_info import average_iop
from apps.examinations.repositories.comparative import compare_assessments
from apps.examinations.repositories.corrected_va import compare_visual_acuity, va_improvement_lines
from apps.examinations.repositories.dr1 import calculate_severity, classify_dry_eye
from apps.examinations.repositories.lens_inspection import condition_trend, replacement_needed
from apps.examinations.repositories.questionnaire import calculate_scores, score_trend
from apps.examinations.repositories.vas import improvement_analysis

CONTEXT = ('survey-1', 'patient-1', 'study-1', 'org-1')


def create(repository, visit_id, eyeside, data):
    survey_id, patient_id, study_id, organization_id = CONTEXT
    return repository.create_examination(
        visit_id, survey_id, patient_id, study_id, organization_id, eyeside, data
    )


@pytest.fixture
def repositories(container):
    return container.examinations


class TestRegistry:
    def test_every_type_has_a_repository(self, repositories):
        assert set(repositories) == {
            'basic-info', 'vas', 'comparative', 'fitting',
            'dr1', 'corrected-va', 'lens-inspection', 'questionnaire',
        }
        assert len(EXAMINATION_REPOSITORY_CLASSES) == 8

    def test_id_fields(self, repositories):
        assert repositories['basic-info'].id_field == 'basicInfoId'
        assert repositories['corrected-va'].id_field == 'correctedVAId'
        assert repositories['fitting'].table_name == 'test-LensFluidSurfaceAssessment'

    def test_unknown_type_is_rejected(self):
        with pytest.raises(ValidationError):
            get_examination_type('blood-panel')


class TestEyeside:
    @pytest.mark.parametrize('value,expected', [
        ('right', Eyeside.RIGHT),
        ('Right', Eyeside.RIGHT),
        ('LEFT', Eyeside.LEFT),
        (' left ', Eyeside.LEFT),
    ])
    def test_parse_accepts_any_case(self, value, expected):
        assert Eyeside.parse(value) == expected

    def test_parse_rejects_unknown(self):
        with pytest.raises(ValidationError) as exc_info:
            Eyeside.parse('both')
        assert exc_info.value.field == 'eyeside'


class TestCreateExamination:
    """Test single eye writes."""

    def test_record_is_stamped_and_stored(self, repositories, basic_info_panel):
        repository = repositories['basic-info']

        record = create(repository, 'visit-1', 'right', basic_info_panel())

        assert re.match(r'^basicinfo-right-[0-9a-f]{32}$', record['basicInfoId'])
        assert record['eyeside'] == 'Right'
        assert record['surveyId'] == 'survey-1'
        assert record['organizationId'] == 'org-1'
        assert record['createdAt'] == record['updatedAt']
        stored = repository.find_by_visit_and_eye('visit-1', 'Right')
        assert stored['cr_Ave'] == 7.75

    def test_caller_cannot_set_base_fields(self, repositories, vas_panel):
        record = create(
            repositories['vas'], 'visit-1', 'left',
            vas_panel(visitId='visit-other', organizationId='org-other', vasId='chosen'),
        )

        assert record['visitId'] == 'visit-1'
        assert record['organizationId'] == 'org-1'
        assert record['vasId'].startswith('vas-left-')

    def test_created_counter_is_incremented(self, repositories, vas_panel):
        with patch('apps.examinations.repositories.base.metrics') as mock_metrics:
            create(repositories['vas'], 'visit-1', 'right', vas_panel())

        mock_metrics.examination_records_created_total.labels.assert_called_once_with(type='vas')


class TestValidation:
    """Test clinical range checks per examination type."""

    @pytest.mark.parametrize('field,value', [
        ('cr_R1', 5.9),
        ('cr_Ave', 9.1),
        ('va', 0.05),
        ('va', 2.1),
        ('intraocularPressure2', 7),
        ('intraocularPressure3', 26),
        ('cornealEndothelialCells', 1999),
        ('cornealEndothelialCells', 4001),
    ])
    def test_basic_info_out_of_range(self, repositories, basic_info_panel, field, value):
        with pytest.raises(ValidationError) as exc_info:
            create(repositories['basic-info'], 'visit-1', 'right', basic_info_panel(**{field: value}))
        assert exc_info.value.field == field

    @pytest.mark.parametrize('field,value', [
        ('cr_R1', 6.0),
        ('cr_R2', 9.0),
        ('va', 0.1),
        ('va', 2.0),
        ('intraocularPressure1', 8),
        ('intraocularPressure1', 25),
        ('cornealEndothelialCells', 2000),
        ('cornealEndothelialCells', 4000),
    ])
    def test_basic_info_bounds_are_inclusive(self, repositories, basic_info_panel, field, value):
        record = create(repositories['basic-info'], 'visit-1', 'right', basic_info_panel(**{field: value}))
        assert record[field] == value

    @pytest.mark.parametrize('value', [-1, 101, 50.5, 'high', True])
    def test_vas_scores_are_integers_in_range(self, repositories, vas_panel, value):
        with pytest.raises(ValidationError):
            create(repositories['vas'], 'visit-1', 'right', vas_panel(comfortLevel=value))

    def test_vas_bounds(self, repositories, vas_panel):
        record = create(repositories['vas'], 'visit-1', 'right', vas_panel(comfortLevel=0, drynessLevel=100))
        assert record['comfortLevel'] == 0

    def test_dr1_ranges_and_vocabularies(self, repositories):
        with pytest.raises(ValidationError):
            create(repositories['dr1'], 'visit-1', 'right', {'tearBreakUpTime': 31})
        with pytest.raises(ValidationError):
            create(repositories['dr1'], 'visit-1', 'right', {'tearQuality': 'murky'})

    def test_comparative_assessment_vocabulary(self, repositories):
        with pytest.raises(ValidationError):
            create(repositories['comparative'], 'visit-1', 'right', {'comfort': 'amazing'})

    def test_fitting_face2_range(self, repositories):
        with pytest.raises(ValidationError):
            create(repositories['fitting'], 'visit-1', 'right', {'face2_X': 6})

    def test_corrected_va_keeps_strings(self, repositories):
        record = create(repositories['corrected-va'], 'visit-1', 'right', {'va_WithLens': '1.2'})
        assert record['va_WithLens'] == '1.2'
        with pytest.raises(ValidationError):
            create(repositories['corrected-va'], 'visit-1', 'right', {'va_WithLens': 1.2})

    def test_update_validates_changed_fields(self, repositories, basic_info_panel):
        repository = repositories['basic-info']
        record = create(repository, 'visit-1', 'right', basic_info_panel())

        with pytest.raises(ValidationError):
            repository.update_examination('visit-1', record['basicInfoId'], {'va': 3.0})

        updated = repository.update_examination('visit-1', record['basicInfoId'], {'va': 1.2})
        assert updated['va'] == 1.2


class TestBothEyes:
    """Test the non-transactional both-eyes write."""

    def test_both_eyes_written(self, repositories, vas_panel):
        survey_id, patient_id, study_id, organization_id = CONTEXT

        result = repositories['vas'].batch_create_both_eyes(
            'visit-1', survey_id, patient_id, study_id, organization_id, vas_panel(), vas_panel()
        )

        assert result['errors'] == {}
        assert result['right']['eyeside'] == 'Right'
        assert result['left']['eyeside'] == 'Left'
        both = repositories['vas'].get_both_eyes_data('visit-1')
        assert both['right']['vasId'] == result['right']['vasId']
        assert both['left']['vasId'] == result['left']['vasId']

    def test_one_invalid_eye_keeps_the_other(self, repositories, vas_panel):
        """The right eye stays written when the left eye fails validation."""
        survey_id, patient_id, study_id, organization_id = CONTEXT

        result = repositories['vas'].batch_create_both_eyes(
            'visit-1', survey_id, patient_id, study_id, organization_id,
            vas_panel(), vas_panel(comfortLevel=150),
        )

        assert result['right'] is not None
        assert result['left'] is None
        assert 'left' in result['errors']
        assert len(repositories['vas'].find_by_visit('visit-1')) == 1

    def test_missing_eye_is_skipped(self, repositories, vas_panel):
        survey_id, patient_id, study_id, organization_id = CONTEXT

        result = repositories['vas'].batch_create_both_eyes(
            'visit-1', survey_id, patient_id, study_id, organization_id, None, vas_panel()
        )

        assert result['right'] is None
        assert result['left'] is not None
        assert result['errors'] == {}


class TestCompareVisits:
    def test_records_are_ordered_by_creation(self, repositories, vas_panel):
        repository = repositories['vas']
        for number, comfort in ((1, 40), (2, 60), (3, 80)):
            create(repository, f'visit-{number}', 'right', vas_panel(comfortLevel=comfort))
        create(repository, 'visit-1', 'left', vas_panel())

        records = repository.compare_visits('survey-1', 'right')

        assert [r['comfortLevel'] for r in records] == [40, 60, 80]
        assert all(r['eyeside'] == 'Right' for r in records)

    def test_records_written_out_of_order_are_sorted(self, repositories, vas_panel):
        repository = repositories['vas']
        writes = (
            ('visit-3', 80, '2026-03-01T09:00:00.000000Z'),
            ('visit-1', 40, '2026-01-01T09:00:00.000000Z'),
            ('visit-2', 60, '2026-02-01T09:00:00.000000Z'),
        )
        for visit_id, comfort, created_at in writes:
            with patch('apps.examinations.repositories.base.utc_now_iso', return_value=created_at):
                create(repository, visit_id, 'right', vas_panel(comfortLevel=comfort))

        records = repository.compare_visits('survey-1', 'right')

        assert [r['visitId'] for r in records] == ['visit-1', 'visit-2', 'visit-3']
        assert [r['comfortLevel'] for r in records] == [40, 60, 80]

    def test_analysis_uses_comparison_order(self, repositories, vas_panel):
        repository = repositories['vas']
        create(repository, 'visit-1', 'right', vas_panel(comfortLevel=40, drynessLevel=60))
        create(repository, 'visit-2', 'right', vas_panel(comfortLevel=70, drynessLevel=30))

        analysis = repository.get_analysis('survey-1', 'Right')

        assert analysis['visitCount'] == 2
        assert analysis['improvement']['comfortTrend'] == 'improving'
        assert analysis['improvement']['drynessTrend'] == 'improving'

    def test_empty_history(self, repositories):
        analysis = repositories['dr1'].get_analysis('survey-1', 'Left')

        assert analysis['visitCount'] == 0
        assert analysis['summary']['trend'] == 'insufficient_data'
        assert analysis['latestClassification'] is None


class TestAnalyticsHelpers:
    """Test the pure trend and scoring functions."""

    @pytest.mark.parametrize('values,expected', [
        ([], 'insufficient_data'),
        ([5], 'insufficient_data'),
        ([1, 1, 5, 5], 'improving'),
        ([5, 5, 1, 1], 'declining'),
        ([3, 3, 3, 3], 'stable'),
        ([1, 100, 1], 'stable'),
    ])
    def test_half_trend(self, values, expected):
        assert half_trend(values, threshold=1) == expected

    def test_half_trend_lower_is_better(self):
        assert half_trend([10, 10, 2, 2], threshold=1, higher_is_better=False) == 'improving'

    def test_average_iop_ignores_missing_readings(self):
        assert average_iop({'intraocularPressure1': 14, 'intraocularPressure2': 15}) == 14.5
        assert average_iop({}) is None

    def test_vas_improvement_needs_two_visits(self):
        assert improvement_analysis([])['overallImprovement'] == 'insufficient_data'

    def test_vas_improvement_reports_significant_changes(self):
        first = {'comfortLevel': 40, 'drynessLevel': 70, 'visualPerformance_Daytime': 60,
                 'visualPerformance_EndOfDay': 50}
        last = {'comfortLevel': 80, 'drynessLevel': 30, 'visualPerformance_Daytime': 62,
                'visualPerformance_EndOfDay': 51}

        analysis = improvement_analysis([first, last])

        assert analysis['overallImprovement'] == 'improved'
        assert 'Comfort improved by 40 points' in analysis['significantChanges']
        assert 'Dryness improved by 40 points' in analysis['significantChanges']
        assert analysis['visualPerformanceTrend'] == 'stable'

    @pytest.mark.parametrize('tbut,schirmer,meniscus,expected', [
        (20, 20, 0.3, 'none'),
        (12, 12, 0.3, 'mild'),
        (8, 8, 0.3, 'moderate'),
        (3, 3, 0.05, 'severe'),
    ])
    def test_dr1_severity(self, tbut, schirmer, meniscus, expected):
        assert calculate_severity(tbut, schirmer, meniscus) == expected

    def test_dr1_classification(self):
        result = classify_dry_eye({'tearBreakUpTime': 3, 'schirmerTest': 15, 'tearMeniscusHeight': 0.25})

        assert result['classification'] == 'evaporative'
        assert result['treatmentGuidance']

    @pytest.mark.parametrize('before,after,expected', [
        ('0.8', '1.0', 'improved'),
        ('1.0', '0.8', 'declined'),
        ('1.0', '1.05', 'stable'),
        ('20/20', '1.0', 'insufficient_data'),
        ('', '1.0', 'insufficient_data'),
    ])
    def test_corrected_va_comparison(self, before, after, expected):
        assert compare_visual_acuity(before, after) == expected

    def test_corrected_va_lines(self):
        assert va_improvement_lines('0.7', '1.0') == 3

    @pytest.mark.parametrize('before,after,expected', [
        ('same', 'better', 'improved'),
        ('better', 'worse', 'deteriorated'),
        ('same', 'same', 'same'),
        ('not_applicable', 'better', 'not_comparable'),
    ])
    def test_comparative_assessment(self, before, after, expected):
        assert compare_assessments(before, after) == expected

    def test_lens_condition_trend_higher_is_worse(self):
        assert condition_trend([0, 1, 3, 4]) == 'worsening'
        assert condition_trend([4, 4, 1, 1]) == 'improving'
        assert condition_trend([2]) == 'insufficient_data'

    def test_lens_replacement_threshold(self):
        assert replacement_needed({'lensDeposit': 'heavy'}) is True
        assert replacement_needed({'lensDeposit': 'mild', 'lensScratchDamage': 'minor_scratches'}) is False

    def test_questionnaire_scores(self):
        scores = calculate_scores({
            'comfort': 'very_comfortable',
            'dryness': 'extremely_dry',
            'irritation': 'none',
            'burning': 'none',
            'eyeStrain': 'none',
            'totalSatisfaction': 'satisfied',
        })

        assert scores['comfort'] == 5
        assert scores['dryness'] == 1
        assert scores['symptoms'] == 5
        assert scores['satisfaction'] == 4

    def test_questionnaire_score_trend(self):
        assert score_trend([2, 2, 4, 4]) == 'improving'
        assert score_trend([4, 4, 4.2, 4.2]) == 'stable'

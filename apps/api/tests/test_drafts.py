"""
Tests for visit drafts.

Covers creation, versioned writes, the autosave conflict rules,
completion summaries, pre-submit validation and backups.
"""
import time
from datetime import timedelta
from unittest.mock import patch

import pytest

from apps.core.dynamodb import utc_now
from apps.core.exceptions import ConflictError, NotFoundError
from apps.examinations.repositories.drafts import CURRENT_DRAFT


@pytest.fixture
def drafts(container):
    return container.drafts


@pytest.fixture
def draft(container, enrolled, baseline_visit):
    """An initialized draft for the baseline visit (basic-info, vas)."""
    return container.examination_service.initialize_draft(
        enrolled['survey']['surveyId'], baseline_visit['visitId']
    )


def later(seconds):
    """Patch the draft clock forward."""
    return patch(
        'apps.examinations.repositories.drafts.utc_now',
        return_value=utc_now() + timedelta(seconds=seconds),
    )


class TestInitializeDraft:
    """Test draft creation from the visit's examination order."""

    def test_initial_state(self, draft, enrolled, baseline_visit):
        assert draft['visitId'] == baseline_visit['visitId']
        assert draft['draftId'] == CURRENT_DRAFT
        assert draft['version'] == 1
        assert draft['autoSaved'] is False
        assert draft['currentStep'] == 0
        assert draft['totalSteps'] == 2
        assert draft['examinationOrder'] == ['basic-info', 'vas']
        assert draft['formData'] == {'basic-info': {}, 'vas': {}}
        assert draft['ttl'] > 0

    def test_context_is_copied_from_visit(self, draft, enrolled):
        """Access checks on the draft read the visit's organization and study."""
        assert draft['organizationId'] == enrolled['organization']['organizationId']
        assert draft['clinicalStudyId'] == enrolled['study']['clinicalStudyId']
        assert draft['surveyId'] == enrolled['survey']['surveyId']

    def test_second_draft_for_same_visit_conflicts(self, container, draft, enrolled, baseline_visit):
        with pytest.raises(ConflictError):
            container.examination_service.initialize_draft(
                enrolled['survey']['surveyId'], baseline_visit['visitId']
            )

    def test_require_missing_draft(self, drafts):
        with pytest.raises(NotFoundError):
            drafts.require_draft('visit-404')


class TestVersionedUpdates:
    def test_each_write_bumps_version(self, drafts, draft, basic_info_panel):
        visit_id = draft['visitId']

        first = drafts.update_examination_data(visit_id, 'basic-info', 'right', basic_info_panel())
        second = drafts.update_examination_data(visit_id, 'basic-info', 'left', basic_info_panel())

        assert first['version'] == 2
        assert second['version'] == 3
        assert set(second['formData']['basic-info']) == {'right', 'left'}

    def test_stale_expected_version_raises_conflict(self, drafts, draft):
        drafts.update_draft(draft['visitId'], {'currentStep': 1})

        with pytest.raises(ConflictError):
            drafts.update_draft(draft['visitId'], {'currentStep': 0}, expected_version=1)

        assert drafts.get_draft(draft['visitId'])['currentStep'] == 1

    def test_managed_fields_are_ignored(self, drafts, draft):
        updated = drafts.update_draft(draft['visitId'], {'organizationId': 'org-other', 'currentStep': 1})

        assert updated['organizationId'] == draft['organizationId']
        assert updated['currentStep'] == 1

    def test_both_eyes_update_keeps_missing_eye(self, drafts, draft, vas_panel):
        visit_id = draft['visitId']
        drafts.update_examination_data(visit_id, 'vas', 'left', vas_panel(comfortLevel=10))

        updated = drafts.batch_update_eye_data(visit_id, 'vas', {'right': vas_panel(), 'left': None})

        assert updated['formData']['vas']['left']['comfortLevel'] == 10
        assert updated['formData']['vas']['right']['comfortLevel'] == 80

    def test_complete_step_advances_current_step(self, drafts, draft):
        updated = drafts.complete_step(draft['visitId'], 'basic-info')

        assert updated['completedSteps'] == ['basic-info']
        assert updated['currentStep'] == 1

    def test_completing_other_step_keeps_position(self, drafts, draft):
        updated = drafts.complete_step(draft['visitId'], 'vas')

        assert updated['currentStep'] == 0
        assert drafts.get_draft_stats(draft['visitId'])['completionPercentage'] == 50


class TestAutoSave:
    """Test autosave conflict detection."""

    def test_first_autosave_after_initialize_succeeds(self, drafts, draft):
        result = drafts.auto_save(draft['visitId'], {'currentStep': 1})

        assert result['success'] is True
        assert result['latestDraft']['version'] == 2
        assert result['latestDraft']['autoSaved'] is True

    def test_second_autosave_within_window_conflicts(self, drafts, draft):
        """The second snapshot does not overwrite the first."""
        drafts.auto_save(draft['visitId'], {'currentStep': 1})

        result = drafts.auto_save(draft['visitId'], {'currentStep': 0})

        assert result['success'] is False
        assert result['conflict'] is True
        assert result['latestDraft']['currentStep'] == 1
        assert drafts.get_draft(draft['visitId'])['version'] == 2

    def test_autosave_after_window_succeeds(self, drafts, draft):
        drafts.auto_save(draft['visitId'], {'currentStep': 1})

        with later(10):
            result = drafts.auto_save(draft['visitId'], {'currentStep': 0})

        assert result['success'] is True
        assert result['latestDraft']['version'] == 3

    def test_expected_version_skips_time_window(self, drafts, draft):
        first = drafts.auto_save(draft['visitId'], {'currentStep': 1})

        result = drafts.auto_save(
            draft['visitId'], {'currentStep': 0}, expected_version=first['latestDraft']['version']
        )

        assert result['success'] is True
        assert result['latestDraft']['version'] == 3

    def test_stale_expected_version_returns_latest(self, drafts, draft):
        drafts.auto_save(draft['visitId'], {'currentStep': 1})

        result = drafts.auto_save(draft['visitId'], {'currentStep': 0}, expected_version=1)

        assert result == {
            'success': False,
            'conflict': True,
            'latestDraft': drafts.get_draft(draft['visitId']),
        }
        assert result['latestDraft']['currentStep'] == 1

    def test_missing_draft(self, drafts):
        assert drafts.auto_save('visit-404', {'currentStep': 1}) == {
            'success': False,
            'error': 'Draft not found',
        }

    @patch('apps.core.observability.events.logger')
    def test_conflict_is_logged(self, mock_logger, drafts, draft):
        drafts.auto_save(draft['visitId'], {'currentStep': 1})
        drafts.auto_save(draft['visitId'], {'currentStep': 0})

        extra = mock_logger.warning.call_args[1]['extra']
        assert extra['event'] == 'draft_autosave_conflict'
        assert extra['reason'] == 'recent_autosave'

    def test_unsaved_changes_only_for_manual_saves(self, drafts, draft):
        assert drafts.has_unsaved_changes(draft['visitId']) is False
        with later(60):
            assert drafts.has_unsaved_changes(draft['visitId']) is True


class TestCompletionSummary:
    def test_statuses_per_examination(self, drafts, draft, basic_info_panel, vas_panel):
        visit_id = draft['visitId']
        drafts.update_examination_data(visit_id, 'basic-info', 'right', basic_info_panel())
        drafts.batch_update_eye_data(visit_id, 'vas', {'right': vas_panel(), 'left': vas_panel()})

        summary = drafts.get_completion_summary(visit_id)

        assert summary['totalExaminations'] == 2
        assert summary['completedExaminations'] == 1
        assert summary['partiallyCompleted'] == 1
        assert summary['notStarted'] == 0
        assert summary['examinationStatus']['basic-info']['status'] == 'partial'
        assert summary['examinationStatus']['basic-info']['rightEye'] is True
        assert summary['examinationStatus']['vas']['status'] == 'completed'
        assert summary['readyForSubmission'] is False

    def test_missing_draft_summary(self, drafts):
        assert drafts.get_completion_summary('visit-404') is None


class TestValidateFormData:
    """Test pre-submit checks."""

    def test_empty_examinations_are_missing(self, drafts, draft):
        result = drafts.validate_form_data(draft['visitId'])

        assert result['isValid'] is False
        assert result['missingRequired'] == [
            'basic-info - no data for either eye',
            'vas - no data for either eye',
        ]

    def test_one_eye_and_disagreement_are_warnings(self, drafts, draft, basic_info_panel, vas_panel):
        visit_id = draft['visitId']
        drafts.batch_update_eye_data(
            visit_id, 'basic-info', {'right': basic_info_panel(va=1.0), 'left': basic_info_panel(va=0.5)}
        )
        drafts.update_examination_data(visit_id, 'vas', 'right', vas_panel())

        result = drafts.validate_form_data(visit_id)

        assert result['isValid'] is True
        assert 'vas - missing left eye data' in result['warnings']
        assert 'basic-info - significant difference between right and left eye data' in result['warnings']

    def test_no_draft(self, drafts):
        result = drafts.validate_form_data('visit-404')

        assert result['isValid'] is False
        assert result['errors'] == ['No draft data found']


class TestBackupAndRestore:
    def test_backup_is_separate_record(self, drafts, draft):
        backup_id = drafts.create_backup(draft['visitId'])

        assert backup_id.startswith('backup-')
        backup = drafts.find_by_id(draft['visitId'], backup_id)
        assert backup['formData'] == draft['formData']
        assert backup['ttl'] < drafts.get_draft(draft['visitId'])['ttl']

    def test_backup_without_draft(self, drafts):
        assert drafts.create_backup('visit-404') is None

    def test_restoration_info(self, drafts, draft, vas_panel):
        drafts.update_examination_data(draft['visitId'], 'vas', 'left', vas_panel())

        info = drafts.get_restoration_info(draft['visitId'])

        assert info['canRestore'] is True
        assert info['availableExaminations'] == ['vas']
        assert info['version'] == 2

    def test_clear_draft(self, drafts, draft):
        drafts.clear_draft(draft['visitId'])

        assert drafts.get_draft(draft['visitId']) is None
        assert drafts.get_draft_stats(draft['visitId'])['exists'] is False


class TestDraftLifetime:
    """Test the draft's stored shape and expiry."""

    def test_save_then_get_round_trip(self, drafts):
        form_data = {
            'basic-info': {'right': {'va': 1.2, 'cr_R1': 7.8}, 'left': None},
            'vas': {'right': {'comfortLevel': 80}, 'left': {'comfortLevel': 75}},
        }
        drafts.save_draft(
            'visit-round-trip', form_data, current_step=1, total_steps=2,
            completed_steps=['basic-info'], examination_order=['basic-info', 'vas'], auto_saved=False,
        )

        stored = drafts.get_draft('visit-round-trip')

        # Stamped by the repository on every write
        managed = {'lastSaved', 'ttl', 'version', 'createdAt', 'updatedAt'}
        assert managed <= set(stored)
        assert {k: v for k, v in stored.items() if k not in managed} == {
            'visitId': 'visit-round-trip',
            'draftId': CURRENT_DRAFT,
            'formData': form_data,
            'currentStep': 1,
            'totalSteps': 2,
            'completedSteps': ['basic-info'],
            'examinationOrder': ['basic-info', 'vas'],
            'autoSaved': False,
        }

    def test_every_write_pushes_expiry_forward(self, drafts, draft, vas_panel):
        ten_days_later = time.time() + 10 * 24 * 60 * 60

        with patch('apps.examinations.repositories.drafts.time') as clock:
            clock.time.return_value = ten_days_later
            updated = drafts.update_examination_data(draft['visitId'], 'vas', 'right', vas_panel())

        assert updated['ttl'] == int(ten_days_later) + drafts.ttl_days * 24 * 60 * 60
        assert updated['ttl'] > draft['ttl']

    def test_text_comfort_levels_are_compared_as_numbers(self, drafts, draft):
        visit_id = draft['visitId']
        drafts.batch_update_eye_data(
            visit_id, 'vas', {'right': {'comfortLevel': '80'}, 'left': {'comfortLevel': '20'}}
        )

        result = drafts.validate_form_data(visit_id)

        assert 'vas - significant difference between right and left eye data' in result['warnings']

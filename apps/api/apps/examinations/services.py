"""
Examination service.

Dispatches on the examination type slug to the matching repository,
owns the draft lifecycle of a visit and fans a finished draft out into
the examination tables on submission.
"""
from typing import Any, Dict, List, Optional

from apps.core.exceptions import ClinicalDataError, NotFoundError, ValidationError
from apps.core.observability.events import log_domain_event
from apps.core.observability.metrics import metrics
from apps.examinations.models import Eyeside, get_examination_type
from apps.examinations.repositories.drafts import CONTEXT_FIELDS


class ExaminationService:

    def __init__(self, repositories, drafts, visits, visit_service):
        self.repositories = repositories
        self.drafts = drafts
        self.visits = visits
        self.visit_service = visit_service

    def repository(self, examination_type):
        """The repository for a type slug; ValidationError for unknown slugs."""
        get_examination_type(examination_type)
        return self.repositories[examination_type]

    def get_visit_examination_config(self, survey_id, visit_id) -> Dict[str, Any]:
        visit = self.visits.require_visit(survey_id, visit_id)
        order = visit.get('examinationOrder') or []
        config = {name: visit.get(name) for name in CONTEXT_FIELDS}
        config.update({
            'visitId': visit_id,
            'examinationOrder': order,
            'requiredExaminations': visit.get('requiredExaminations') or [],
            'optionalExaminations': visit.get('optionalExaminations') or [],
            'totalSteps': len(order),
            'visitName': visit.get('visitName'),
            'visitType': visit.get('visitType'),
        })
        return config

    # ------------------------------------------------------------------
    # Examination records
    # ------------------------------------------------------------------

    def save_examination_data(
        self, survey_id, visit_id, examination_type, right_data=None, left_data=None, replace_existing=False
    ):
        """
        Write both eyes of one examination.

        Returns {"right", "left", "errors"}; an eye that failed validation
        does not stop the other. replace_existing updates eyes already on
        record so a resubmitted visit keeps one record per eye.
        """
        repository = self.repository(examination_type)
        if right_data is None and left_data is None:
            raise ValidationError('Data for at least one eye is required', field='right')
        visit = self.visits.require_visit(survey_id, visit_id)
        return repository.batch_create_both_eyes(
            visit_id,
            survey_id,
            visit.get('patientId'),
            visit.get('clinicalStudyId'),
            visit.get('organizationId'),
            right_data,
            left_data,
            replace_existing=replace_existing,
        )

    def update_examination_data(self, survey_id, visit_id, examination_type, eyeside, data) -> Dict[str, Any]:
        repository = self.repository(examination_type)
        eyeside = Eyeside.parse(eyeside)
        self.visits.require_visit(survey_id, visit_id)
        record = repository.find_by_visit_and_eye(visit_id, eyeside)
        if record is None:
            raise NotFoundError(f'{examination_type} examination not found for {eyeside.value.lower()} eye')
        return repository.update_examination(visit_id, record[repository.id_field], data)

    def get_all_examination_data(self, survey_id, visit_id) -> Dict[str, Dict[str, Any]]:
        """Both eyes of every examination in the visit's order; unknown slugs are skipped."""
        config = self.get_visit_examination_config(survey_id, visit_id)
        return {
            examination_type: self.repositories[examination_type].get_both_eyes_data(visit_id)
            for examination_type in config['examinationOrder']
            if examination_type in self.repositories
        }

    @metrics.track_duration(metrics.examination_submit_duration_seconds)
    def submit_examination_data(
        self,
        survey_id,
        visit_id,
        conducted_by,
        form_data: Optional[Dict[str, Any]] = None,
        completed_examinations: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """
        Persist a visit's examinations and close the visit.

        form_data defaults to the stored draft. Every examination with
        data for at least one eye is written. If any examination fails,
        the visit stays open and the draft is kept so the entry can be
        corrected; examinations already written are reported in
        savedExaminations and updated, not duplicated, on resubmission.
        """
        visit = self.visits.require_visit(survey_id, visit_id)
        if form_data is None:
            form_data = self.drafts.require_draft(visit_id).get('formData') or {}

        saved, failed = [], []
        for examination_type, panel in form_data.items():
            panel = panel or {}
            if not panel.get('right') and not panel.get('left'):
                continue
            try:
                result = self.save_examination_data(
                    survey_id, visit_id, examination_type, panel.get('right'), panel.get('left'),
                    replace_existing=True,
                )
            except ClinicalDataError as e:
                failed.append({'examinationId': examination_type, 'errors': {'examination': e.message}})
                continue
            if result['errors']:
                failed.append({'examinationId': examination_type, 'errors': result['errors']})
            else:
                saved.append(examination_type)

        if failed:
            log_domain_event(
                'examination_submit_failed',
                entity_type='Visit',
                entity_id=visit_id,
                entity_ids={'visit_id': visit_id, 'survey_id': survey_id},
                result='partial',
                saved=len(saved),
                failed=len(failed),
            )
            return {'success': False, 'savedExaminations': saved, 'failedExaminations': failed}

        completed = list(visit.get('completedExaminations') or [])
        for examination_type in saved + list(completed_examinations or []):
            if examination_type not in completed:
                completed.append(examination_type)
        self.visits.update(survey_id, {'completedExaminations': completed, 'conductedBy': conducted_by}, visit_id)
        closed = self.visit_service.complete_visit(survey_id, visit_id)
        self.drafts.clear_draft(visit_id)

        log_domain_event(
            'examinations_submitted',
            entity_type='Visit',
            entity_id=visit_id,
            entity_ids={'visit_id': visit_id, 'survey_id': survey_id},
            result='success',
            saved=len(saved),
        )
        return {
            'success': True,
            'savedExaminations': saved,
            'failedExaminations': [],
            'visit': closed['visit'],
            'survey': closed['survey'],
        }

    def get_examination_comparison(self, survey_id, examination_type, eyeside) -> List[Dict[str, Any]]:
        return self.repository(examination_type).compare_visits(survey_id, eyeside)

    def get_examination_analysis(self, survey_id, examination_type, eyeside) -> Dict[str, Any]:
        repository = self.repository(examination_type)
        return {
            'examinationType': examination_type,
            'eyeside': Eyeside.parse(eyeside).value,
            'analysis': repository.get_analysis(survey_id, eyeside),
        }

    # ------------------------------------------------------------------
    # Drafts
    # ------------------------------------------------------------------

    def get_draft(self, visit_id):
        return self.drafts.get_draft(visit_id)

    def require_draft(self, visit_id):
        return self.drafts.require_draft(visit_id)

    def initialize_draft(self, survey_id, visit_id):
        config = self.get_visit_examination_config(survey_id, visit_id)
        return self.drafts.initialize_draft(visit_id, config['examinationOrder'], context=config)

    def save_draft(self, survey_id, visit_id, data: Dict[str, Any]):
        config = self.get_visit_examination_config(survey_id, visit_id)
        order = data.get('examinationOrder') or config['examinationOrder']
        return self.drafts.save_draft(
            visit_id,
            data.get('formData') or {},
            data.get('currentStep', 0),
            data.get('totalSteps') or len(order),
            data.get('completedSteps') or [],
            order,
            auto_saved=data.get('autoSaved', False),
            context=config,
        )

    def auto_save(self, visit_id, updates, expected_version=None):
        return self.drafts.auto_save(visit_id, updates, expected_version=expected_version)

    def clear_draft(self, visit_id):
        self.drafts.clear_draft(visit_id)

    def get_draft_stats(self, visit_id):
        return self.drafts.get_draft_stats(visit_id)

    def update_draft_examination_data(self, visit_id, examination_type, eyeside, data):
        self.repository(examination_type)
        return self.drafts.update_examination_data(visit_id, examination_type, eyeside, data)

    def update_draft_both_eyes(self, visit_id, examination_type, data):
        self.repository(examination_type)
        return self.drafts.batch_update_eye_data(visit_id, examination_type, data)

    def complete_examination_step(self, visit_id, step_id):
        return self.drafts.complete_step(visit_id, step_id)

    def update_draft_progress(self, visit_id, current_step, completed_steps):
        return self.drafts.update_progress(visit_id, current_step, completed_steps)

    def validate_examination_data(self, visit_id):
        return self.drafts.validate_form_data(visit_id)

    def get_completion_summary(self, visit_id):
        summary = self.drafts.get_completion_summary(visit_id)
        if summary is None:
            raise NotFoundError(f'No draft found for visit {visit_id}')
        return summary

    def create_backup(self, visit_id):
        backup_id = self.drafts.create_backup(visit_id)
        if backup_id is None:
            raise NotFoundError(f'No draft found for visit {visit_id}')
        return backup_id

    def get_restoration_info(self, visit_id):
        return self.drafts.get_restoration_info(visit_id)

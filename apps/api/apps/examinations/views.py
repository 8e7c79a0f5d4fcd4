"""
Examination viewsets: per-visit drafts and the examination tables.

Drafts are addressed by visit alone; the organization and study they
belong to are stamped on the draft when it is created, so every later
draft request is checked against the draft record itself.
"""
from rest_framework import status
from rest_framework.response import Response

from apps.authz.models import ResourceChoices as R, ActionChoices as A
from apps.authz.permissions import grants
from apps.core.exceptions import ValidationError
from apps.core.views import ClinicalViewSet, success
from apps.examinations.serializers import (
    DraftAutoSaveSerializer,
    DraftContextSerializer,
    DraftProgressSerializer,
    DraftSerializer,
    EyePanelsSerializer,
    SubmitExaminationSerializer,
)

EXAMINATION_READ = grants(R.EXAMINATION, A.READ)
EXAMINATION_WRITE = grants(R.EXAMINATION, A.CREATE, A.UPDATE)


def _valid(serializer_class, request):
    serializer = serializer_class(data=request.data)
    serializer.is_valid(raise_exception=True)
    return serializer.validated_data


def outcome(result, status_code):
    """Unsuccessful outcomes that are not errors keep their own {success: false, ...} shape."""
    return Response(result, status=status_code)


def _panel(request):
    if not isinstance(request.data, dict) or not request.data:
        raise ValidationError('Request body must be a non-empty object', field='data')
    return dict(request.data)


class DraftViewSet(ClinicalViewSet):
    """/api/v1/visits/{visit_pk}/draft/"""
    required_permissions = {
        'retrieve_draft': EXAMINATION_READ,
        'save_draft': EXAMINATION_WRITE,
        'clear_draft': grants(R.EXAMINATION, A.DELETE, A.UPDATE),
        'initialize': EXAMINATION_WRITE,
        'autosave': EXAMINATION_WRITE,
        'stats': EXAMINATION_READ,
        'validate_draft': EXAMINATION_READ,
        'summary': EXAMINATION_READ,
        'update_both_eyes': EXAMINATION_WRITE,
        'update_eye': EXAMINATION_WRITE,
        'complete_step': EXAMINATION_WRITE,
        'progress': EXAMINATION_WRITE,
        'backup': EXAMINATION_WRITE,
        'restore_info': EXAMINATION_READ,
    }

    @property
    def examinations(self):
        return self.container.examination_service

    def _draft(self, visit_pk):
        return self.check_record(self.examinations.require_draft(visit_pk))

    def _checked_if_present(self, visit_pk):
        """Access check when a draft exists; absent drafts reveal nothing."""
        draft = self.examinations.get_draft(visit_pk)
        if draft is not None:
            self.check_record(draft)
        return draft

    def _visit(self, survey_id, visit_pk):
        return self.check_record(self.container.visit_service.get_visit(survey_id, visit_pk))

    def retrieve_draft(self, request, visit_pk=None):
        return success(self._draft(visit_pk))

    def save_draft(self, request, visit_pk=None):
        data = _valid(DraftSerializer, request)
        self._visit(data['surveyId'], visit_pk)
        draft = self.examinations.save_draft(data['surveyId'], visit_pk, data)
        return success(draft, status.HTTP_201_CREATED)

    def clear_draft(self, request, visit_pk=None):
        self._draft(visit_pk)
        self.examinations.clear_draft(visit_pk)
        return success({'visitId': visit_pk, 'cleared': True})

    def initialize(self, request, visit_pk=None):
        data = _valid(DraftContextSerializer, request)
        self._visit(data['surveyId'], visit_pk)
        draft = self.examinations.initialize_draft(data['surveyId'], visit_pk)
        return success(draft, status.HTTP_201_CREATED)

    def autosave(self, request, visit_pk=None):
        """
        Conflicts come back as 409 with the stored draft so the client can
        merge; a missing draft is 404.
        """
        data = dict(_valid(DraftAutoSaveSerializer, request))
        expected_version = data.pop('expectedVersion', None)
        self._checked_if_present(visit_pk)
        result = self.examinations.auto_save(visit_pk, data, expected_version=expected_version)
        if result.get('conflict'):
            return outcome(result, status.HTTP_409_CONFLICT)
        if not result['success']:
            return outcome(result, status.HTTP_404_NOT_FOUND)
        return success(result['latestDraft'])

    def stats(self, request, visit_pk=None):
        self._checked_if_present(visit_pk)
        return success(self.examinations.get_draft_stats(visit_pk))

    def validate_draft(self, request, visit_pk=None):
        self._checked_if_present(visit_pk)
        return success(self.examinations.validate_examination_data(visit_pk))

    def summary(self, request, visit_pk=None):
        self._draft(visit_pk)
        return success(self.examinations.get_completion_summary(visit_pk))

    def update_both_eyes(self, request, visit_pk=None, examination_type=None):
        self._draft(visit_pk)
        data = _valid(EyePanelsSerializer, request)
        return success(self.examinations.update_draft_both_eyes(visit_pk, examination_type, data))

    def update_eye(self, request, visit_pk=None, examination_type=None, eyeside=None):
        self._draft(visit_pk)
        draft = self.examinations.update_draft_examination_data(
            visit_pk, examination_type, eyeside, _panel(request)
        )
        return success(draft)

    def complete_step(self, request, visit_pk=None, step_id=None):
        self._draft(visit_pk)
        return success(self.examinations.complete_examination_step(visit_pk, step_id))

    def progress(self, request, visit_pk=None):
        self._draft(visit_pk)
        data = _valid(DraftProgressSerializer, request)
        draft = self.examinations.update_draft_progress(visit_pk, data['currentStep'], data['completedSteps'])
        return success(draft)

    def backup(self, request, visit_pk=None):
        self._draft(visit_pk)
        backup_id = self.examinations.create_backup(visit_pk)
        return success({'visitId': visit_pk, 'backupId': backup_id}, status.HTTP_201_CREATED)

    def restore_info(self, request, visit_pk=None):
        self._checked_if_present(visit_pk)
        return success(self.examinations.get_restoration_info(visit_pk))


class ExaminationViewSet(ClinicalViewSet):
    """/api/v1/surveys/{survey_pk}/visits/{visit_pk}/examinations/"""
    required_permissions = {
        'list': EXAMINATION_READ,
        'create': grants(R.EXAMINATION, A.CREATE),
        'partial_update': grants(R.EXAMINATION, A.UPDATE),
        'submit': EXAMINATION_WRITE,
    }

    @property
    def examinations(self):
        return self.container.examination_service

    def _visit(self, survey_pk, visit_pk):
        return self.check_record(self.container.visit_service.get_visit(survey_pk, visit_pk))

    def list(self, request, survey_pk=None, visit_pk=None):
        self._visit(survey_pk, visit_pk)
        return success(self.examinations.get_all_examination_data(survey_pk, visit_pk))

    def create(self, request, survey_pk=None, visit_pk=None, examination_type=None):
        """Both eyes of one examination; 207 when only one eye was written."""
        self._visit(survey_pk, visit_pk)
        data = _valid(EyePanelsSerializer, request)
        result = self.examinations.save_examination_data(
            survey_pk, visit_pk, examination_type, data.get('right'), data.get('left')
        )
        written = result['right'] is not None or result['left'] is not None
        if result['errors'] and not written:
            raise ValidationError('; '.join(f'{eye}: {msg}' for eye, msg in result['errors'].items()))
        code = status.HTTP_207_MULTI_STATUS if result['errors'] else status.HTTP_201_CREATED
        return success(result, code)

    def partial_update(self, request, survey_pk=None, visit_pk=None, examination_type=None, eyeside=None):
        self._visit(survey_pk, visit_pk)
        record = self.examinations.update_examination_data(
            survey_pk, visit_pk, examination_type, eyeside, _panel(request)
        )
        return success(record)

    def submit(self, request, survey_pk=None, visit_pk=None):
        """422 when some examinations failed; the draft and visit are left open."""
        self._visit(survey_pk, visit_pk)
        data = _valid(SubmitExaminationSerializer, request)
        result = self.examinations.submit_examination_data(
            survey_pk,
            visit_pk,
            data.get('conductedBy') or self.principal_id,
            form_data=data.get('formData'),
            completed_examinations=data.get('completedExaminations'),
        )
        if not result['success']:
            return outcome(result, status.HTTP_422_UNPROCESSABLE_ENTITY)
        return success(result)


class ExaminationAnalyticsViewSet(ClinicalViewSet):
    """/api/v1/surveys/{survey_pk}/examinations/{examination_type}/"""
    required_permissions = {
        'comparison': EXAMINATION_READ,
        'analysis': EXAMINATION_READ,
    }

    def _survey(self, survey_pk):
        return self.check_record(self.container.survey_service.get_survey(survey_pk))

    def comparison(self, request, survey_pk=None, examination_type=None):
        self._survey(survey_pk)
        eyeside = self.require_query_param('eyeside')
        records = self.container.examination_service.get_examination_comparison(
            survey_pk, examination_type, eyeside
        )
        return success(records)

    def analysis(self, request, survey_pk=None, examination_type=None):
        self._survey(survey_pk)
        eyeside = self.require_query_param('eyeside')
        return success(self.container.examination_service.get_examination_analysis(
            survey_pk, examination_type, eyeside
        ))

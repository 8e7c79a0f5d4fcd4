"""
Clinical viewsets: organizations, studies, patients, surveys and visits.

Endpoints live under /api/v1/. Every body is {"success": true, "data": ...};
errors are rendered by apps.core.exception_handler.
"""
from rest_framework import status
from rest_framework.decorators import action

from apps.authz.models import ResourceChoices as R, ActionChoices as A
from apps.authz.permissions import grants
from apps.clinical.serializers import (
    ClinicalStudySerializer,
    ExaminationProgressSerializer,
    OrganizationSerializer,
    OrganizationStudySerializer,
    PatientSerializer,
    PatientStudySerializer,
    PatientWithdrawSerializer,
    StudyOrganizationSerializer,
    SurveyFromStudySerializer,
    VisitConfigurationSerializer,
    VisitReasonSerializer,
    VisitRescheduleSerializer,
    VisitScheduleSerializer,
    VisitStartSerializer,
)
from apps.core.observability.logging import get_sanitized_logger
from apps.core.views import ClinicalViewSet, success

logger = get_sanitized_logger(__name__)


def _valid(serializer_class, request, partial=False):
    serializer = serializer_class(data=request.data, partial=partial)
    serializer.is_valid(raise_exception=True)
    return serializer.validated_data


class OrganizationViewSet(ClinicalViewSet):
    """
    /api/v1/organizations/

    Organizations are deactivated, never deleted: DELETE flips the
    status to inactive.
    """
    required_permissions = {
        'list': grants(R.ORGANIZATION, A.READ),
        'retrieve': grants(R.ORGANIZATION, A.READ),
        'create': grants(R.ORGANIZATION, A.CREATE),
        'partial_update': grants(R.ORGANIZATION, A.UPDATE),
        'destroy': grants(R.ORGANIZATION, A.DELETE),
        'stats': grants(R.ORGANIZATION, A.READ),
        'studies': grants(R.ORGANIZATION, A.READ),
        'link_study': grants(R.CLINICAL_STUDY, A.UPDATE),
        'unlink_study': grants(R.CLINICAL_STUDY, A.UPDATE),
    }

    def _load(self, pk):
        return self.check_record(self.container.organization_service.get_organization(pk))

    def list(self, request):
        organizations = self.container.organization_service.list_organizations(
            status=request.query_params.get('status')
        )
        return success(self.check_records(organizations))

    def create(self, request):
        data = _valid(OrganizationSerializer, request)
        organization = self.container.organization_service.create_organization(data, self.principal_id)
        return success(organization, status.HTTP_201_CREATED)

    def retrieve(self, request, pk=None):
        return success(self._load(pk))

    def partial_update(self, request, pk=None):
        self._load(pk)
        data = _valid(OrganizationSerializer, request, partial=True)
        data.pop('organizationCode', None)
        if 'maxPatientCapacity' in data:
            self.container.organization_service.update_capacity(pk, data['maxPatientCapacity'])
        organization = self.container.organization_service.update_organization(pk, data, self.principal_id)
        return success(organization)

    def destroy(self, request, pk=None):
        self._load(pk)
        return success(self.container.organization_service.deactivate(pk, self.principal_id))

    @action(detail=True, methods=['get'])
    def stats(self, request, pk=None):
        self._load(pk)
        return success(self.container.organization_service.get_statistics(pk))

    @action(detail=True, methods=['get'])
    def studies(self, request, pk=None):
        self._load(pk)
        return success(self.container.study_service.list_studies(organization_id=pk))

    @studies.mapping.post
    def link_study(self, request, pk=None):
        self._load(pk)
        data = _valid(OrganizationStudySerializer, request)
        study = self.container.study_service.add_organization(data['clinicalStudyId'], pk)
        return success(study)

    @studies.mapping.delete
    def unlink_study(self, request, pk=None):
        self._load(pk)
        data = _valid(OrganizationStudySerializer, request)
        study = self.container.study_service.remove_organization(data['clinicalStudyId'], pk)
        return success(study)


class ClinicalStudyViewSet(ClinicalViewSet):
    """/api/v1/studies/"""
    required_permissions = {
        'list': grants(R.CLINICAL_STUDY, A.READ),
        'retrieve': grants(R.CLINICAL_STUDY, A.READ),
        'create': grants(R.CLINICAL_STUDY, A.CREATE),
        'partial_update': grants(R.CLINICAL_STUDY, A.UPDATE),
        'destroy': grants(R.CLINICAL_STUDY, A.DELETE),
        'organizations': grants(R.CLINICAL_STUDY, A.UPDATE),
        'remove_organization': grants(R.CLINICAL_STUDY, A.UPDATE),
    }

    def _load(self, pk):
        return self.check_record(self.container.study_service.get_study(pk))

    def list(self, request):
        studies = self.container.study_service.list_studies(
            status=request.query_params.get('status'),
            organization_id=request.query_params.get('organization'),
        )
        return success(self.check_records(studies))

    def create(self, request):
        data = _valid(ClinicalStudySerializer, request)
        study = self.container.study_service.create_study(data, self.principal_id)
        return success(study, status.HTTP_201_CREATED)

    def retrieve(self, request, pk=None):
        return success(self._load(pk))

    def partial_update(self, request, pk=None):
        self._load(pk)
        data = _valid(ClinicalStudySerializer, request, partial=True)
        data.pop('studyCode', None)
        return success(self.container.study_service.update_study(pk, data, self.principal_id))

    def destroy(self, request, pk=None):
        self._load(pk)
        self.container.study_service.delete_study(pk)
        return success({'clinicalStudyId': pk, 'deleted': True})

    @action(detail=True, methods=['post'])
    def organizations(self, request, pk=None):
        self._load(pk)
        data = _valid(StudyOrganizationSerializer, request)
        return success(self.container.study_service.add_organization(pk, data['organizationId']))

    @organizations.mapping.delete
    def remove_organization(self, request, pk=None):
        self._load(pk)
        data = _valid(StudyOrganizationSerializer, request)
        return success(self.container.study_service.remove_organization(pk, data['organizationId']))


class PatientViewSet(ClinicalViewSet):
    """
    /api/v1/patients/

    Listing is always scoped to one organization (?organization=) and
    paginated with an opaque cursor; ?code= switches to a prefix search.
    """
    required_permissions = {
        'list': grants(R.PATIENT, A.READ),
        'retrieve': grants(R.PATIENT, A.READ),
        'create': grants(R.PATIENT, A.CREATE),
        'partial_update': grants(R.PATIENT, A.UPDATE),
        'withdraw': grants(R.PATIENT, A.UPDATE),
        'studies': grants(R.PATIENT, A.UPDATE),
    }

    def _load(self, pk):
        return self.check_record(self.container.patient_service.get_patient(pk))

    def list(self, request):
        organization_id = self.require_organization(self.require_query_param('organization'))
        limit = request.query_params.get('limit')
        patients, cursor = self.container.patient_service.search(
            organization_id,
            code_prefix=request.query_params.get('code'),
            status=request.query_params.get('status'),
            limit=int(limit) if limit and limit.isdigit() else None,
            cursor=request.query_params.get('cursor'),
        )
        return success({'items': patients, 'cursor': cursor})

    def create(self, request):
        data = _valid(PatientSerializer, request)
        self.require_organization(data['registeredOrganizationId'])
        patient = self.container.patient_service.register_patient(data, self.principal_id)
        return success(patient, status.HTTP_201_CREATED)

    def retrieve(self, request, pk=None):
        return success(self._load(pk))

    def partial_update(self, request, pk=None):
        self._load(pk)
        data = _valid(PatientSerializer, request, partial=True)
        for immutable in ('patientCode', 'registeredOrganizationId'):
            data.pop(immutable, None)
        return success(self.container.patient_service.update_patient(pk, data, self.principal_id))

    @action(detail=True, methods=['post'])
    def withdraw(self, request, pk=None):
        self._load(pk)
        data = _valid(PatientWithdrawSerializer, request)
        patient = self.container.patient_service.withdraw(pk, self.principal_id, data.get('reason'))
        return success(patient)

    @action(detail=True, methods=['post'])
    def studies(self, request, pk=None):
        self._load(pk)
        data = _valid(PatientStudySerializer, request)
        service = self.container.patient_service
        if data['remove']:
            patient = service.remove_study(pk, data['clinicalStudyId'])
        else:
            patient = service.add_study(pk, data['clinicalStudyId'])
        return success(patient)


class SurveyViewSet(ClinicalViewSet):
    """/api/v1/surveys/"""
    required_permissions = {
        'list': grants(R.SURVEY, A.READ),
        'retrieve': grants(R.SURVEY, A.READ),
        'create': grants(R.SURVEY, A.CREATE),
        'stats': grants(R.SURVEY, A.READ),
    }

    def _load(self, pk):
        return self.check_record(self.container.survey_service.get_survey(pk))

    def list(self, request):
        params = request.query_params
        surveys = self.container.survey_service.list_surveys(
            organization_id=params.get('organization'),
            study_id=params.get('study'),
            patient_id=params.get('patient'),
            status=params.get('status'),
        )
        return success(self.check_records(surveys))

    def create(self, request):
        """Enroll a patient: the survey plus one visit per template entry."""
        data = _valid(SurveyFromStudySerializer, request)
        self.require_organization(data['organizationId'])
        result = self.container.survey_service.create_survey_from_study(
            data['clinicalStudyId'],
            data['organizationId'],
            data['patientId'],
            data['baselineDate'],
            assigned_by=self.principal_id,
            conducted_by=data.get('conductedBy') or None,
            custom_name=data.get('customName') or None,
        )
        return success(result, status.HTTP_201_CREATED)

    def retrieve(self, request, pk=None):
        return success(self._load(pk))

    @action(detail=True, methods=['get'])
    def stats(self, request, pk=None):
        self._load(pk)
        return success(self.container.survey_service.get_survey_stats(pk))


class VisitViewSet(ClinicalViewSet):
    """/api/v1/surveys/{survey_pk}/visits/"""
    required_permissions = {
        'list': grants(R.VISIT, A.READ),
        'retrieve': grants(R.VISIT, A.READ),
        'schedule': grants(R.VISIT, A.UPDATE),
        'start': grants(R.VISIT, A.UPDATE),
        'complete': grants(R.VISIT, A.UPDATE),
        'complete_examination': grants(R.VISIT, A.UPDATE) + grants(R.EXAMINATION, A.CREATE, A.UPDATE),
        'configuration': grants(R.VISIT, A.READ),
        'update_configuration': grants(R.VISIT, A.UPDATE),
        'reschedule': grants(R.VISIT, A.UPDATE),
        'missed': grants(R.VISIT, A.UPDATE),
        'cancel': grants(R.VISIT, A.UPDATE),
    }

    @property
    def visits(self):
        return self.container.visit_service

    def _load(self, pk):
        return self.check_record(self.visits.get_visit(self.kwargs['survey_pk'], pk))

    def list(self, request, survey_pk=None):
        self.check_record(self.container.survey_service.get_survey(survey_pk))
        return success(self.visits.list_visits(survey_pk))

    def retrieve(self, request, pk=None, survey_pk=None):
        return success(self._load(pk))

    @action(detail=True, methods=['post'])
    def schedule(self, request, pk=None, survey_pk=None):
        self._load(pk)
        data = _valid(VisitScheduleSerializer, request)
        result = self.visits.schedule_visit(
            survey_pk, pk, data['scheduledDate'],
            data.get('conductedBy') or self.principal_id,
            notes=data.get('notes') or None,
        )
        return success(result)

    @action(detail=True, methods=['post'])
    def start(self, request, pk=None, survey_pk=None):
        self._load(pk)
        data = _valid(VisitStartSerializer, request)
        return success(self.visits.start_visit(survey_pk, pk, data.get('conductedBy') or self.principal_id))

    @action(detail=True, methods=['post'])
    def complete(self, request, pk=None, survey_pk=None):
        self._load(pk)
        return success(self.visits.complete_visit(survey_pk, pk))

    @action(detail=True, methods=['post'], url_path='examinations/complete')
    def complete_examination(self, request, pk=None, survey_pk=None):
        self._load(pk)
        data = _valid(ExaminationProgressSerializer, request)
        result = self.visits.complete_examination(survey_pk, pk, data['examinationId'], data['completed'])
        return success(result)

    @action(detail=True, methods=['get'])
    def configuration(self, request, pk=None, survey_pk=None):
        self._load(pk)
        return success(self.visits.get_visit_configuration(survey_pk, pk))

    @configuration.mapping.put
    def update_configuration(self, request, pk=None, survey_pk=None):
        self._load(pk)
        data = _valid(VisitConfigurationSerializer, request)
        visit = self.visits.update_examination_configuration(
            survey_pk, pk,
            data['requiredExaminations'],
            data['optionalExaminations'],
            data['examinationOrder'],
        )
        return success(visit)

    @action(detail=True, methods=['post'])
    def reschedule(self, request, pk=None, survey_pk=None):
        self._load(pk)
        data = _valid(VisitRescheduleSerializer, request)
        return success(self.visits.reschedule_visit(survey_pk, pk, data['newDate'], data.get('reason') or None))

    @action(detail=True, methods=['post'])
    def missed(self, request, pk=None, survey_pk=None):
        self._load(pk)
        data = _valid(VisitReasonSerializer, request)
        return success(self.visits.mark_visit_missed(survey_pk, pk, data.get('reason') or None))

    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None, survey_pk=None):
        self._load(pk)
        data = _valid(VisitReasonSerializer, request)
        return success(self.visits.cancel_visit(survey_pk, pk, data.get('reason') or None))


class VisitReportViewSet(ClinicalViewSet):
    """
    Organization-wide visit reports under /api/v1/visits/.

    Every report takes ?organization=; statistics also accepts ?survey=.
    """
    required_permissions = {
        'due': grants(R.VISIT, A.READ),
        'overdue': grants(R.VISIT, A.READ),
        'deviations': grants(R.VISIT, A.READ),
        'statistics': grants(R.VISIT, A.READ),
    }

    @action(detail=False, methods=['get'])
    def due(self, request):
        organization_id = self.require_organization(self.require_query_param('organization'))
        days = request.query_params.get('days', '7')
        days_ahead = int(days) if days.isdigit() else 7
        return success(self.container.visit_service.get_visits_due(organization_id, days_ahead))

    @action(detail=False, methods=['get'])
    def overdue(self, request):
        organization_id = self.require_organization(self.require_query_param('organization'))
        return success(self.container.visit_service.get_overdue_visits(organization_id))

    @action(detail=False, methods=['get'])
    def deviations(self, request):
        organization_id = self.require_organization(self.require_query_param('organization'))
        return success(self.container.visit_service.detect_protocol_deviations(organization_id))

    @action(detail=False, methods=['get'])
    def statistics(self, request):
        survey_id = request.query_params.get('survey')
        if survey_id:
            self.check_record(self.container.survey_service.get_survey(survey_id))
            return success(self.container.visit_service.get_visit_statistics(survey_id=survey_id))
        organization_id = self.require_organization(self.require_query_param('organization'))
        return success(self.container.visit_service.get_visit_statistics(organization_id=organization_id))

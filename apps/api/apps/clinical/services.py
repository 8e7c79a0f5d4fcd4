"""
Clinical domain services.

Services orchestrate repositories and enforce workflow rules. They raise
apps.core.exceptions errors and never build HTTP responses.
"""
import re
from datetime import timedelta
from typing import Any, Dict, List, Optional

from apps.clinical.models import (
    CLOSED_VISIT_STATUSES,
    DEVIATION_SEVERITY,
    ENROLLING_STUDY_STATUSES,
    DeviationTypeChoices,
    OrganizationStatusChoices,
    PatientStatusChoices,
    StudyStatusChoices,
    SurveyStatusChoices,
    VisitStatusChoices,
)
from apps.clinical.repositories import VisitRepository, completion_percentage
from apps.core.dynamodb import parse_timestamp, to_iso, utc_now, utc_now_iso
from apps.core.exceptions import (
    BusinessRuleError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from apps.core.observability.events import log_domain_event, log_visit_transition
from apps.core.observability.logging import get_sanitized_logger
from apps.core.observability.metrics import metrics

logger = get_sanitized_logger(__name__)

EMAIL_RE = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
PATIENT_CODE_RE = re.compile(r'^[A-Za-z0-9_-]{3,20}$')


def validate_email(email, field='email'):
    if email and not EMAIL_RE.match(email):
        raise ValidationError('Invalid email format', field=field)


def validate_phone_number(phone, field='phoneNumber'):
    """10 to 15 digits once punctuation is stripped."""
    if not phone:
        return
    digits = re.sub(r'\D', '', phone)
    if len(digits) < 10:
        raise ValidationError('Phone number must have at least 10 digits', field=field)
    if len(digits) > 15:
        raise ValidationError('Phone number cannot exceed 15 digits', field=field)


def recompute_survey_progress(visits: VisitRepository, surveys, survey_id):
    """
    Derive survey progress from its visits: completed / total.

    The survey becomes completed when every visit is.
    """
    survey_visits = visits.find_by_survey(survey_id)
    completed = sum(1 for v in survey_visits if v.get('status') == VisitStatusChoices.COMPLETED)
    total = len(survey_visits)
    percentage = completion_percentage(completed, total)
    fields = {
        'completedVisits': completed,
        'totalVisits': total,
        'completionPercentage': percentage,
    }
    if total and percentage == 100:
        fields['status'] = SurveyStatusChoices.COMPLETED.value
    return surveys.update(survey_id, fields)


class OrganizationService:
    """Organization registration, lifecycle and statistics."""

    def __init__(self, organizations, patients, surveys):
        self.organizations = organizations
        self.patients = patients
        self.surveys = surveys

    def create_organization(self, data: Dict[str, Any], created_by: str) -> Dict[str, Any]:
        """
        Register an organization in pending_approval state.

        Raises:
            ValidationError: missing fields, malformed email or phone number
            ConflictError: organizationCode already in use
        """
        for field in ('organizationName', 'organizationCode', 'organizationType'):
            if not data.get(field):
                raise ValidationError(f'{field} is required', field=field)
        validate_email(data.get('email'))
        validate_phone_number(data.get('phoneNumber'))

        if self.organizations.find_by_code(data['organizationCode']):
            raise ConflictError(f"Organization with code {data['organizationCode']} already exists")

        record = dict(data)
        record.update({
            'status': OrganizationStatusChoices.PENDING_APPROVAL.value,
            'activeStudies': [],
            'createdBy': created_by,
            'lastModifiedBy': created_by,
        })
        organization = self.organizations.create_organization(record)
        log_domain_event(
            'organization_created',
            entity_type='Organization',
            entity_id=organization['organizationId'],
            organization_code=organization['organizationCode'],
        )
        return organization

    def get_organization(self, organization_id) -> Dict[str, Any]:
        organization = self.organizations.find_by_id(organization_id)
        if organization is None:
            raise NotFoundError('Organization not found')
        return organization

    def list_organizations(self, status=None) -> List[Dict[str, Any]]:
        if status:
            return self.organizations.find_by_status(status)
        return self.organizations.find_all()

    def update_organization(self, organization_id, fields: Dict[str, Any], updated_by: str):
        validate_email(fields.get('email'))
        validate_phone_number(fields.get('phoneNumber'))
        fields = dict(fields, lastModifiedBy=updated_by)
        if fields.get('status') == OrganizationStatusChoices.ACTIVE:
            fields['approvalDate'] = utc_now_iso()
        return self.organizations.update(organization_id, fields)

    def update_capacity(self, organization_id, max_patient_capacity: int):
        if max_patient_capacity < 0:
            raise ValidationError('Patient capacity cannot be negative', field='maxPatientCapacity')
        return self.organizations.update_capacity(organization_id, max_patient_capacity)

    def add_study(self, organization_id, study_id):
        return self.organizations.add_active_study(organization_id, study_id)

    def remove_study(self, organization_id, study_id):
        return self.organizations.remove_active_study(organization_id, study_id)

    def deactivate(self, organization_id, updated_by: str):
        """Organizations are never hard-deleted."""
        self.get_organization(organization_id)
        return self.organizations.deactivate(organization_id, updated_by)

    def get_statistics(self, organization_id) -> Dict[str, Any]:
        organization = self.get_organization(organization_id)
        return {
            'organizationId': organization_id,
            'status': organization.get('status'),
            'totalActiveStudies': len(organization.get('activeStudies', [])),
            'maxPatientCapacity': organization.get('maxPatientCapacity'),
            'patients': self.patients.get_organization_patient_stats(organization_id),
            'surveys': self.surveys.get_organization_survey_stats(organization_id),
        }


class ClinicalStudyService:
    """Study protocol definitions and their participating organizations."""

    def __init__(self, studies, organizations, surveys):
        self.studies = studies
        self.organizations = organizations
        self.surveys = surveys

    @staticmethod
    def validate_visit_template(visit_template):
        if not visit_template:
            raise ValidationError('At least one visit must be configured', field='visitTemplate')
        numbers = [visit.get('visitNumber') for visit in visit_template]
        if len(numbers) != len(set(numbers)):
            raise ValidationError('Visit numbers must be unique', field='visitTemplate')
        for index, visit in enumerate(visit_template, start=1):
            if not str(visit.get('visitName') or '').strip():
                raise ValidationError(f'Visit {index}: Visit name is required', field='visitTemplate')
            if visit.get('scheduledDaysFromBaseline', 0) < 0:
                raise ValidationError(
                    f'Visit {index}: Scheduled days from baseline cannot be negative', field='visitTemplate'
                )
            if visit.get('windowDaysBefore', 0) < 0 or visit.get('windowDaysAfter', 0) < 0:
                raise ValidationError(f'Visit {index}: Window days cannot be negative', field='visitTemplate')
            if not visit.get('requiredExaminations') and not visit.get('optionalExaminations'):
                raise ValidationError(
                    f'Visit {index}: At least one examination (required or optional) must be specified',
                    field='visitTemplate',
                )
            if not visit.get('examinationOrder'):
                raise ValidationError(f'Visit {index}: Examination order must be specified', field='visitTemplate')

    @staticmethod
    def validate_examination_config(examinations):
        if not examinations:
            raise ValidationError('At least one examination must be configured', field='examinations')
        ids = [exam.get('examinationId') for exam in examinations]
        if len(ids) != len(set(ids)):
            raise ValidationError('Examination IDs must be unique', field='examinations')
        for index, exam in enumerate(examinations, start=1):
            if not str(exam.get('examinationId') or '').strip():
                raise ValidationError(f'Examination {index}: Examination ID is required', field='examinations')
            if not str(exam.get('examinationName') or '').strip():
                raise ValidationError(f'Examination {index}: Examination name is required', field='examinations')
            if exam.get('estimatedDuration', 0) < 0:
                raise ValidationError(
                    f'Examination {index}: Estimated duration cannot be negative', field='examinations'
                )

    def create_study(self, data: Dict[str, Any], created_by: str) -> Dict[str, Any]:
        self.validate_visit_template(data.get('visitTemplate'))
        self.validate_examination_config(data.get('examinations'))
        record = dict(data)
        record.update({
            'status': StudyStatusChoices.PLANNING.value,
            'enrolledPatients': 0,
            'createdBy': created_by,
            'lastModifiedBy': created_by,
        })
        return self.studies.create_study(record)

    def get_study(self, study_id) -> Dict[str, Any]:
        study = self.studies.find_by_id(study_id)
        if study is None:
            raise NotFoundError('Clinical study not found')
        return study

    def list_studies(self, status=None, organization_id=None) -> List[Dict[str, Any]]:
        if organization_id:
            return self.studies.find_by_organization(organization_id)
        if status:
            return self.studies.find_by_status(status)
        return self.studies.find_all()

    def update_study(self, study_id, fields: Dict[str, Any], updated_by: str):
        if 'visitTemplate' in fields:
            self.validate_visit_template(fields['visitTemplate'])
        if 'examinations' in fields:
            self.validate_examination_config(fields['examinations'])
        return self.studies.update(study_id, dict(fields, lastModifiedBy=updated_by))

    def add_organization(self, study_id, organization_id):
        """Link both sides: study.targetOrganizations and organization.activeStudies."""
        if self.organizations.find_by_id(organization_id) is None:
            raise NotFoundError('Organization not found')
        study = self.studies.add_organization(study_id, organization_id)
        self.organizations.add_active_study(organization_id, study_id)
        return study

    def remove_organization(self, study_id, organization_id):
        study = self.studies.remove_organization(study_id, organization_id)
        if self.organizations.find_by_id(organization_id) is not None:
            self.organizations.remove_active_study(organization_id, study_id)
        return study

    def delete_study(self, study_id) -> None:
        """Only a study still in planning with no surveys may be removed."""
        study = self.get_study(study_id)
        if study.get('status') != StudyStatusChoices.PLANNING:
            raise BusinessRuleError('Only studies in planning status can be deleted')
        if self.surveys.find_by_study(study_id):
            raise BusinessRuleError('Cannot delete study with associated surveys')
        self.studies.delete(study_id)


class PatientService:
    """Patient registration and participation; patients are withdrawn, never deleted."""

    def __init__(self, patients, organizations):
        self.patients = patients
        self.organizations = organizations

    def register_patient(self, data: Dict[str, Any], created_by: str) -> Dict[str, Any]:
        """
        Register a patient at an organization.

        Raises:
            ValidationError: malformed patient code or email
            NotFoundError: unknown organization
            ConflictError: patientCode already used in the organization
        """
        code = data.get('patientCode') or ''
        if not PATIENT_CODE_RE.match(code):
            raise ValidationError(
                'Patient code must be 3-20 characters long and contain only letters, '
                'numbers, hyphens, and underscores',
                field='patientCode',
            )
        validate_email((data.get('contactInfo') or {}).get('email'), field='contactInfo.email')

        organization_id = data.get('registeredOrganizationId')
        if not organization_id or self.organizations.find_by_id(organization_id) is None:
            raise NotFoundError('Organization not found')
        if self.patients.find_by_code_in_organization(organization_id, code):
            raise ConflictError(f'Patient with code {code} already exists in this organization')

        record = dict(data)
        record.update({
            'registrationDate': utc_now_iso(),
            'status': PatientStatusChoices.ACTIVE.value,
            'participatingStudies': [],
            'createdBy': created_by,
            'lastModifiedBy': created_by,
        })
        patient = self.patients.create_patient(record)
        log_domain_event(
            'patient_registered',
            entity_type='Patient',
            entity_id=patient['patientId'],
            entity_ids={'organization_id': organization_id},
        )
        return patient

    def get_patient(self, patient_id) -> Dict[str, Any]:
        patient = self.patients.find_by_id(patient_id)
        if patient is None:
            raise NotFoundError('Patient not found')
        return patient

    def search(self, organization_id, code_prefix=None, status=None, limit=None, cursor=None):
        """Returns (patients, cursor). A code prefix search is not paginated."""
        if code_prefix and code_prefix.strip():
            patients = self.patients.search_by_code_in_organization(organization_id, code_prefix.strip())
            next_cursor = None
        else:
            page = self.patients.find_by_organization(organization_id, limit=limit, cursor=cursor)
            patients, next_cursor = page.items, page.cursor
        if status:
            patients = [p for p in patients if p.get('status') == status]
        return patients, next_cursor

    def update_patient(self, patient_id, fields: Dict[str, Any], updated_by: str):
        validate_email((fields.get('contactInfo') or {}).get('email'), field='contactInfo.email')
        return self.patients.update(patient_id, dict(fields, lastModifiedBy=updated_by))

    def withdraw(self, patient_id, updated_by: str, reason: Optional[str] = None):
        patient = self.get_patient(patient_id)
        if patient.get('status') == PatientStatusChoices.WITHDRAWN:
            raise BusinessRuleError('Patient is already withdrawn')
        fields = {'status': PatientStatusChoices.WITHDRAWN.value, 'lastModifiedBy': updated_by}
        if reason:
            fields['withdrawalReason'] = reason
        updated = self.patients.update(patient_id, fields)
        log_domain_event(
            'patient_withdrawn',
            entity_type='Patient',
            entity_id=patient_id,
            entity_ids={'organization_id': patient.get('registeredOrganizationId')},
        )
        return updated

    def add_study(self, patient_id, study_id):
        return self.patients.add_participating_study(patient_id, study_id)

    def remove_study(self, patient_id, study_id):
        return self.patients.remove_participating_study(patient_id, study_id)


class SurveyService:
    """Enrollment of a patient in a study, with visits generated from the study template."""

    def __init__(self, surveys, studies, patients, visits):
        self.surveys = surveys
        self.studies = studies
        self.patients = patients
        self.visits = visits

    def create_survey_from_study(
        self,
        clinical_study_id,
        organization_id,
        patient_id,
        baseline_date,
        assigned_by,
        conducted_by=None,
        custom_name=None,
    ) -> Dict[str, Any]:
        """
        Create a survey and one visit per visitTemplate entry.

        scheduledDate = baseline + scheduledDaysFromBaseline; the window is
        [scheduled - windowDaysBefore, scheduled + windowDaysAfter]. Visits
        are written with batch_write, so a partial failure leaves the
        survey and the visits written so far in place.

        Raises:
            NotFoundError: unknown study or patient
            BusinessRuleError: study not enrolling, patient in another
                organization, or an active survey already exists
        """
        study = self.studies.find_by_id(clinical_study_id)
        if study is None:
            raise NotFoundError(f'Clinical study not found: {clinical_study_id}')
        if study.get('status') not in ENROLLING_STUDY_STATUSES:
            raise BusinessRuleError(f"Clinical study is not active: {study.get('status')}")

        patient = self.patients.find_by_id(patient_id)
        if patient is None:
            raise NotFoundError(f'Patient not found: {patient_id}')
        if patient.get('registeredOrganizationId') != organization_id:
            raise BusinessRuleError(f'Patient does not belong to organization: {organization_id}')

        for existing in self.surveys.find_by_patient(patient_id):
            if (existing.get('clinicalStudyId') == clinical_study_id
                    and existing.get('status') == SurveyStatusChoices.ACTIVE):
                raise BusinessRuleError(f"Patient already has active survey in study: {existing['surveyId']}")

        template = study.get('visitTemplate') or []
        baseline = parse_timestamp(baseline_date)
        horizon = max(
            (v.get('scheduledDaysFromBaseline', 0) + v.get('windowDaysAfter', 0) for v in template),
            default=0,
        )
        expected_completion = to_iso(baseline + timedelta(days=horizon))

        survey = self.surveys.create_survey({
            'clinicalStudyId': clinical_study_id,
            'organizationId': organization_id,
            'patientId': patient_id,
            'name': custom_name or f"{patient.get('patientCode')}-{study.get('studyCode')}-{baseline.date()}",
            'description': f"Generated survey for {patient.get('patientCode')} in study {study.get('studyName')}",
            'baselineDate': baseline_date,
            'expectedCompletionDate': expected_completion,
            'status': SurveyStatusChoices.ACTIVE.value,
            'totalVisits': len(template),
            'assignedBy': assigned_by,
            'conductedBy': conducted_by,
        })

        visits = []
        for entry in template:
            scheduled = baseline + timedelta(days=entry.get('scheduledDaysFromBaseline', 0))
            visits.append(VisitRepository.build_visit({
                'surveyId': survey['surveyId'],
                'clinicalStudyId': clinical_study_id,
                'organizationId': organization_id,
                'patientId': patient_id,
                'visitNumber': entry['visitNumber'],
                'visitType': entry.get('visitType'),
                'visitName': entry.get('visitName'),
                'scheduledDate': to_iso(scheduled),
                'windowStartDate': to_iso(scheduled - timedelta(days=entry.get('windowDaysBefore', 0))),
                'windowEndDate': to_iso(scheduled + timedelta(days=entry.get('windowDaysAfter', 0))),
                'status': VisitStatusChoices.SCHEDULED.value,
                'requiredExaminations': entry.get('requiredExaminations', []),
                'optionalExaminations': entry.get('optionalExaminations', []),
                'examinationOrder': entry.get('examinationOrder', []),
                'conductedBy': conducted_by or assigned_by,
            }))
        if visits:
            self.visits.batch_write(puts=visits)

        self.patients.add_participating_study(patient_id, clinical_study_id)

        log_domain_event(
            'survey_created',
            entity_type='Survey',
            entity_id=survey['surveyId'],
            entity_ids={
                'clinical_study_id': clinical_study_id,
                'organization_id': organization_id,
                'patient_id': patient_id,
            },
            visits=len(visits),
        )
        return {
            'survey': survey,
            'visits': visits,
            'summary': {
                'totalVisits': len(template),
                'generatedVisits': len(visits),
                'estimatedCompletionDate': expected_completion,
            },
        }

    def get_survey(self, survey_id) -> Dict[str, Any]:
        survey = self.surveys.find_by_id(survey_id)
        if survey is None:
            raise NotFoundError(f'Survey not found: {survey_id}')
        return survey

    def list_surveys(self, organization_id=None, study_id=None, patient_id=None, status=None):
        if patient_id:
            surveys = self.surveys.find_by_patient(patient_id)
        elif study_id:
            surveys = self.surveys.find_by_study(study_id)
        elif organization_id:
            surveys = self.surveys.find_by_organization(organization_id)
        else:
            raise ValidationError('One of organization, study or patient is required')
        if organization_id:
            surveys = [s for s in surveys if s.get('organizationId') == organization_id]
        if study_id:
            surveys = [s for s in surveys if s.get('clinicalStudyId') == study_id]
        if status:
            surveys = [s for s in surveys if s.get('status') == status]
        return surveys

    def update_progress(self, survey_id):
        return recompute_survey_progress(self.visits, self.surveys, survey_id)

    def get_survey_stats(self, survey_id) -> Dict[str, Any]:
        survey = self.get_survey(survey_id)
        return {
            'surveyId': survey_id,
            'status': survey.get('status'),
            'completionPercentage': survey.get('completionPercentage', 0),
            'visits': self.visits.get_survey_visit_stats(survey_id),
        }


class VisitService:
    """Visit scheduling, examination progress and protocol deviation detection."""

    def __init__(self, visits, surveys):
        self.visits = visits
        self.surveys = surveys

    def get_visit(self, survey_id, visit_id) -> Dict[str, Any]:
        return self.visits.require_visit(survey_id, visit_id)

    def list_visits(self, survey_id) -> List[Dict[str, Any]]:
        return self.visits.find_by_survey(survey_id)

    def _window_violation(self, visit, scheduled_date) -> Optional[Dict[str, Any]]:
        scheduled = parse_timestamp(scheduled_date)
        start = parse_timestamp(visit['windowStartDate'])
        end = parse_timestamp(visit['windowEndDate'])
        if start <= scheduled <= end:
            return None
        return self._deviation(
            visit,
            DeviationTypeChoices.WINDOW_VIOLATION,
            f"Visit scheduled outside protocol window. Scheduled: {scheduled_date}, "
            f"Window: {visit['windowStartDate']} to {visit['windowEndDate']}",
            scheduledDate=scheduled_date,
        )

    @staticmethod
    def _deviation(visit, deviation_type, description, **extra) -> Dict[str, Any]:
        deviation = {
            'visitId': visit.get('visitId'),
            'surveyId': visit.get('surveyId'),
            'patientId': visit.get('patientId'),
            'deviationType': deviation_type.value,
            'description': description,
            'severity': DEVIATION_SEVERITY[deviation_type].value,
            'detectedAt': utc_now_iso(),
            'windowStartDate': visit.get('windowStartDate'),
            'windowEndDate': visit.get('windowEndDate'),
        }
        deviation.update(extra)
        return deviation

    def schedule_visit(self, survey_id, visit_id, scheduled_date, conducted_by, notes=None):
        """Out-of-window dates are accepted but reported as a window_violation."""
        visit = self.get_visit(survey_id, visit_id)
        if visit.get('status') in CLOSED_VISIT_STATUSES:
            raise BusinessRuleError(f"Cannot schedule a {visit.get('status')} visit")

        deviations = []
        violation = self._window_violation(visit, scheduled_date)
        if violation:
            deviations.append(violation)
            self._report(violation)

        fields = {
            'scheduledDate': scheduled_date,
            'conductedBy': conducted_by,
            'status': VisitStatusChoices.SCHEDULED.value,
        }
        if notes:
            fields['visitNotes'] = notes
        if violation:
            fields['deviationReason'] = violation['description']
        updated = self.visits.update(survey_id, fields, visit_id)
        return {'visit': updated, 'protocolCompliant': not deviations, 'deviations': deviations}

    def start_visit(self, survey_id, visit_id, conducted_by=None):
        visit = self.get_visit(survey_id, visit_id)
        status = visit.get('status')
        if status in CLOSED_VISIT_STATUSES or status == VisitStatusChoices.MISSED:
            raise BusinessRuleError(f'Cannot start a {status} visit')
        fields = {'actualDate': utc_now_iso()}
        if conducted_by:
            fields['conductedBy'] = conducted_by
        updated = self.visits.update_status(survey_id, visit_id, VisitStatusChoices.IN_PROGRESS, **fields)
        log_visit_transition(updated, status, VisitStatusChoices.IN_PROGRESS.value)
        return updated

    def complete_examination(self, survey_id, visit_id, examination_id, completed=True):
        """
        Record one examination as completed or skipped.

        allExaminationsComplete is judged over the required list only.
        """
        visit = self.get_visit(survey_id, visit_id)
        if visit.get('status') == VisitStatusChoices.CANCELLED:
            raise BusinessRuleError('Cannot record examinations on a cancelled visit')
        if completed:
            updated = self.visits.complete_examination(survey_id, visit_id, examination_id)
        else:
            updated = self.visits.skip_examination(survey_id, visit_id, examination_id)

        required = visit.get('requiredExaminations', [])
        done = set(updated.get('completedExaminations', []))
        return {
            'visit': updated,
            'completionPercentage': updated.get('completionPercentage', 0),
            'allExaminationsComplete': all(exam in done for exam in required),
        }

    def complete_visit(self, survey_id, visit_id):
        """Close the visit and recompute survey progress from all of its visits."""
        visit = self.get_visit(survey_id, visit_id)
        if visit.get('status') == VisitStatusChoices.CANCELLED:
            raise BusinessRuleError('Cannot complete a cancelled visit')
        completed = self.visits.complete_visit(survey_id, visit_id)
        survey = recompute_survey_progress(self.visits, self.surveys, survey_id)
        metrics.visits_completed_total.inc()
        log_visit_transition(completed, visit.get('status'), VisitStatusChoices.COMPLETED.value)
        return {'visit': completed, 'survey': survey}

    def get_visit_configuration(self, survey_id, visit_id) -> Dict[str, Any]:
        visit = self.get_visit(survey_id, visit_id)
        required = visit.get('requiredExaminations', [])
        optional = visit.get('optionalExaminations', [])
        completed = visit.get('completedExaminations', [])
        skipped = visit.get('skippedExaminations', [])
        every = required + optional
        return {
            'visit': visit,
            'examinationConfig': {
                'totalExaminations': len(every),
                'requiredExaminations': required,
                'optionalExaminations': optional,
                'examinationOrder': visit.get('examinationOrder', []),
                'completedExaminations': completed,
                'skippedExaminations': skipped,
                'remainingExaminations': [e for e in every if e not in completed and e not in skipped],
            },
        }

    def update_examination_configuration(self, survey_id, visit_id, required, optional, order):
        visit = self.get_visit(survey_id, visit_id)
        if visit.get('status') in CLOSED_VISIT_STATUSES:
            raise BusinessRuleError(f"Cannot reconfigure a {visit.get('status')} visit")
        unknown = [e for e in order if e not in required and e not in optional]
        if unknown:
            raise ValidationError(
                f"examinationOrder lists examinations that are neither required nor optional: {', '.join(unknown)}",
                field='examinationOrder',
            )
        return self.visits.update_examination_configuration(survey_id, visit_id, required, optional, order)

    def _report(self, deviation):
        metrics.protocol_deviations_detected_total.labels(type=deviation['deviationType']).inc()
        log_domain_event(
            'protocol_deviation_detected',
            entity_type='Visit',
            entity_id=deviation['visitId'],
            entity_ids={'survey_id': deviation['surveyId']},
            result='warning',
            deviation_type=deviation['deviationType'],
            severity=deviation['severity'],
        )

    def detect_protocol_deviations(self, organization_id) -> List[Dict[str, Any]]:
        """
        Scan an organization's visits for deviations.

        - missed_visit: window ended, not completed or missed
        - window_violation: still scheduled outside its window
        - examination_skip: completed without every required examination
        """
        if not organization_id:
            raise ValidationError('Organization ID is required for deviation detection', field='organization')
        now = utc_now()
        deviations = []
        for visit in self.visits.find_by_organization(organization_id):
            status = visit.get('status')
            window_end = parse_timestamp(visit['windowEndDate'])

            if window_end < now and status not in (
                VisitStatusChoices.COMPLETED, VisitStatusChoices.MISSED, VisitStatusChoices.CANCELLED
            ):
                deviations.append(self._deviation(
                    visit,
                    DeviationTypeChoices.MISSED_VISIT,
                    f"Visit missed - past window end date: {visit['windowEndDate']}",
                    scheduledDate=visit.get('scheduledDate'),
                ))

            if status == VisitStatusChoices.SCHEDULED:
                violation = self._window_violation(visit, visit['scheduledDate'])
                if violation:
                    deviations.append(violation)

            if status == VisitStatusChoices.COMPLETED:
                completed = visit.get('completedExaminations', [])
                missing = [e for e in visit.get('requiredExaminations', []) if e not in completed]
                if missing:
                    deviations.append(self._deviation(
                        visit,
                        DeviationTypeChoices.EXAMINATION_SKIP,
                        f"Required examinations not completed: {', '.join(missing)}",
                    ))

        for deviation in deviations:
            self._report(deviation)
        return deviations

    def get_visit_statistics(self, survey_id=None, organization_id=None) -> Dict[str, Any]:
        if survey_id:
            visits = self.visits.find_by_survey(survey_id)
        elif organization_id:
            visits = self.visits.find_by_organization(organization_id)
        else:
            raise ValidationError('Either survey or organization must be provided')

        total = sum(len(v.get('requiredExaminations', [])) + len(v.get('optionalExaminations', [])) for v in visits)
        completed = sum(len(v.get('completedExaminations', [])) for v in visits)
        skipped = sum(len(v.get('skippedExaminations', [])) for v in visits)
        stats = {
            'totalVisits': len(visits),
            'averageCompletionPercentage': (
                round(sum(v.get('completionPercentage', 0) for v in visits) / len(visits)) if visits else 0
            ),
            'examinationStats': {
                'totalExaminations': total,
                'completedExaminations': completed,
                'skippedExaminations': skipped,
                'completionRate': completion_percentage(completed, total),
            },
            'protocolDeviations': (
                len(self.detect_protocol_deviations(organization_id)) if organization_id and visits else 0
            ),
        }
        for status in VisitStatusChoices:
            stats[f'{status.value}Visits'] = sum(1 for v in visits if v.get('status') == status.value)
        return stats

    def reschedule_visit(self, survey_id, visit_id, new_date, reason=None):
        visit = self.get_visit(survey_id, visit_id)
        if visit.get('status') in CLOSED_VISIT_STATUSES:
            raise BusinessRuleError(f"Cannot reschedule a {visit.get('status')} visit")
        self.visits.update_status(
            survey_id, visit_id, VisitStatusChoices.RESCHEDULED,
            deviationReason=reason or 'Visit rescheduled',
        )
        log_visit_transition(visit, visit.get('status'), VisitStatusChoices.RESCHEDULED.value)
        return self.schedule_visit(survey_id, visit_id, new_date, visit.get('conductedBy'), notes=reason)

    def mark_visit_missed(self, survey_id, visit_id, reason=None):
        visit = self.get_visit(survey_id, visit_id)
        if visit.get('status') == VisitStatusChoices.COMPLETED:
            raise BusinessRuleError('Cannot mark a completed visit as missed')
        updated = self.visits.update_status(
            survey_id, visit_id, VisitStatusChoices.MISSED, deviationReason=reason or 'Visit missed'
        )
        log_visit_transition(updated, visit.get('status'), VisitStatusChoices.MISSED.value)
        return updated

    def cancel_visit(self, survey_id, visit_id, reason=None):
        visit = self.get_visit(survey_id, visit_id)
        if visit.get('status') == VisitStatusChoices.COMPLETED:
            raise BusinessRuleError('Cannot cancel a completed visit')
        updated = self.visits.update_status(
            survey_id, visit_id, VisitStatusChoices.CANCELLED, deviationReason=reason or 'Visit cancelled'
        )
        log_visit_transition(updated, visit.get('status'), VisitStatusChoices.CANCELLED.value)
        return updated

    def get_visits_due(self, organization_id, days_ahead=7):
        return self.visits.get_visits_due(organization_id, days_ahead)

    def get_overdue_visits(self, organization_id):
        return self.visits.get_overdue_visits(organization_id)

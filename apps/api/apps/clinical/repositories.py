"""
Repositories for organizations, clinical studies, patients, surveys and visits.

Each class only declares its table, keys and index keys on top of
BaseRepository, plus the typed mutations the services use. Ids are
'{prefix}-{code}-{uuid hex}' so they never collide under concurrency.
"""
import uuid
from datetime import timedelta
from typing import Any, Dict, List, Optional

from apps.clinical.models import (
    EntityType,
    OrganizationStatusChoices,
    PatientStatusChoices,
    StudyStatusChoices,
    SurveyStatusChoices,
    VisitStatusChoices,
)
from apps.core.dynamodb import IndexNames, TableNames, parse_timestamp, utc_now, utc_now_iso
from apps.core.exceptions import NotFoundError
from apps.core.repository import BaseRepository, QueryPage


def new_id(prefix: str, *parts) -> str:
    return '-'.join([prefix, *[str(p) for p in parts], uuid.uuid4().hex])


def _stamp(record: Dict[str, Any], **fields) -> Dict[str, Any]:
    now = utc_now_iso()
    stamped = dict(record)
    stamped.update(fields)
    stamped['createdAt'] = now
    stamped['updatedAt'] = now
    return stamped


def completion_percentage(completed: int, total: int, empty=0) -> int:
    """round(completed / total * 100); `empty` when there is nothing to complete."""
    if total <= 0:
        return empty
    return round(completed / total * 100)


def _average_completion(records) -> int:
    if not records:
        return 0
    return round(sum(r.get('completionPercentage', 0) for r in records) / len(records))


class OrganizationRepository(BaseRepository):
    table_base_name = TableNames.ORGANIZATIONS
    partition_key = 'organizationId'
    index_keys = {IndexNames.ENTITY_TYPE: ('entityType', 'status')}

    def create_organization(self, data: Dict[str, Any]) -> Dict[str, Any]:
        record = _stamp(
            data,
            organizationId=new_id('org', data['organizationCode']),
            entityType=EntityType.ORGANIZATION.value,
        )
        record.setdefault('activeStudies', [])
        return self.create(record)

    def find_all(self) -> List[Dict[str, Any]]:
        return self.query_all(EntityType.ORGANIZATION.value, index_name=IndexNames.ENTITY_TYPE)

    def find_by_status(self, status) -> List[Dict[str, Any]]:
        return self.query_all(
            EntityType.ORGANIZATION.value,
            index_name=IndexNames.ENTITY_TYPE,
            sort_key_condition='=',
            sort_key_value=str(status),
        )

    def find_active(self) -> List[Dict[str, Any]]:
        return self.find_by_status(OrganizationStatusChoices.ACTIVE)

    def find_by_code(self, organization_code: str) -> Optional[Dict[str, Any]]:
        # Bounded by the organization partition of EntityTypeIndex, not a table scan
        for organization in self.find_all():
            if organization.get('organizationCode') == organization_code:
                return organization
        return None

    def _require(self, organization_id):
        organization = self.find_by_id(organization_id)
        if organization is None:
            raise NotFoundError(f'Organization {organization_id} not found')
        return organization

    def add_active_study(self, organization_id, study_id):
        organization = self._require(organization_id)
        studies = list(organization.get('activeStudies', []))
        if study_id not in studies:
            studies.append(study_id)
        return self.update(organization_id, {'activeStudies': studies})

    def remove_active_study(self, organization_id, study_id):
        organization = self._require(organization_id)
        studies = [s for s in organization.get('activeStudies', []) if s != study_id]
        return self.update(organization_id, {'activeStudies': studies})

    def update_capacity(self, organization_id, max_patient_capacity: int):
        return self.update(organization_id, {'maxPatientCapacity': max_patient_capacity})

    def deactivate(self, organization_id, modified_by=None):
        fields = {'status': OrganizationStatusChoices.INACTIVE.value}
        if modified_by:
            fields['lastModifiedBy'] = modified_by
        return self.update(organization_id, fields)


class ClinicalStudyRepository(BaseRepository):
    table_base_name = TableNames.CLINICAL_STUDY
    partition_key = 'clinicalStudyId'
    index_keys = {IndexNames.ENTITY_TYPE: ('entityType', 'status')}

    def create_study(self, data: Dict[str, Any]) -> Dict[str, Any]:
        record = _stamp(
            data,
            clinicalStudyId=new_id('study', data['studyCode']),
            entityType=EntityType.CLINICAL_STUDY.value,
        )
        record.setdefault('targetOrganizations', [])
        record.setdefault('enrolledPatients', 0)
        return self.create(record)

    def find_all(self) -> List[Dict[str, Any]]:
        return self.query_all(EntityType.CLINICAL_STUDY.value, index_name=IndexNames.ENTITY_TYPE)

    def find_by_status(self, status) -> List[Dict[str, Any]]:
        return self.query_all(
            EntityType.CLINICAL_STUDY.value,
            index_name=IndexNames.ENTITY_TYPE,
            sort_key_condition='=',
            sort_key_value=str(status),
        )

    def find_active(self) -> List[Dict[str, Any]]:
        return self.find_by_status(StudyStatusChoices.ACTIVE) + self.find_by_status(StudyStatusChoices.RECRUITING)

    def find_by_organization(self, organization_id) -> List[Dict[str, Any]]:
        return [s for s in self.find_all() if organization_id in s.get('targetOrganizations', [])]

    def _require(self, study_id):
        study = self.find_by_id(study_id)
        if study is None:
            raise NotFoundError(f'Clinical study {study_id} not found')
        return study

    def add_organization(self, study_id, organization_id):
        study = self._require(study_id)
        organizations = list(study.get('targetOrganizations', []))
        if organization_id not in organizations:
            organizations.append(organization_id)
        return self.update(study_id, {'targetOrganizations': organizations})

    def remove_organization(self, study_id, organization_id):
        study = self._require(study_id)
        organizations = [o for o in study.get('targetOrganizations', []) if o != organization_id]
        return self.update(study_id, {'targetOrganizations': organizations})

    def update_enrollment_count(self, study_id, enrolled_patients: int):
        study = self._require(study_id)
        return self.update(study_id, {
            'enrolledPatients': enrolled_patients,
            'completionPercentage': completion_percentage(
                enrolled_patients, study.get('totalTargetPatients', 0)
            ),
        })


class PatientRepository(BaseRepository):
    table_base_name = TableNames.PATIENTS
    partition_key = 'patientId'
    index_keys = {IndexNames.ORGANIZATION: ('registeredOrganizationId', 'patientCode')}

    def create_patient(self, data: Dict[str, Any]) -> Dict[str, Any]:
        record = _stamp(
            data,
            patientId=new_id('patient', data['patientCode']),
            entityType=EntityType.PATIENT.value,
        )
        record.setdefault('participatingStudies', [])
        return self.create(record)

    def find_by_organization(self, organization_id, limit=None, cursor=None) -> QueryPage:
        return self.query_by_partition_key(
            organization_id,
            index_name=IndexNames.ORGANIZATION,
            limit=limit,
            cursor=cursor,
        )

    def find_by_code_in_organization(self, organization_id, patient_code) -> Optional[Dict[str, Any]]:
        page = self.query_by_partition_key(
            organization_id,
            index_name=IndexNames.ORGANIZATION,
            sort_key_condition='=',
            sort_key_value=patient_code,
        )
        return page.items[0] if page.items else None

    def search_by_code_in_organization(self, organization_id, code_prefix) -> List[Dict[str, Any]]:
        return self.query_all(
            organization_id,
            index_name=IndexNames.ORGANIZATION,
            sort_key_condition='begins_with',
            sort_key_value=code_prefix,
        )

    def _require(self, patient_id):
        patient = self.find_by_id(patient_id)
        if patient is None:
            raise NotFoundError(f'Patient {patient_id} not found')
        return patient

    def add_participating_study(self, patient_id, study_id):
        patient = self._require(patient_id)
        studies = list(patient.get('participatingStudies', []))
        if study_id not in studies:
            studies.append(study_id)
        return self.update(patient_id, {'participatingStudies': studies})

    def remove_participating_study(self, patient_id, study_id):
        patient = self._require(patient_id)
        studies = [s for s in patient.get('participatingStudies', []) if s != study_id]
        return self.update(patient_id, {'participatingStudies': studies})

    def update_status(self, patient_id, status, modified_by=None):
        fields = {'status': str(status)}
        if modified_by:
            fields['lastModifiedBy'] = modified_by
        return self.update(patient_id, fields)

    def get_organization_patient_stats(self, organization_id) -> Dict[str, int]:
        patients = self.query_all(organization_id, index_name=IndexNames.ORGANIZATION)
        stats = {'total': len(patients)}
        for status in PatientStatusChoices:
            stats[status.value] = sum(1 for p in patients if p.get('status') == status.value)
        stats['totalParticipatingStudies'] = sum(len(p.get('participatingStudies', [])) for p in patients)
        return stats


class SurveyRepository(BaseRepository):
    table_base_name = TableNames.SURVEYS
    partition_key = 'surveyId'
    index_keys = {
        IndexNames.STUDY: ('clinicalStudyId', None),
        IndexNames.ORGANIZATION: ('organizationId', None),
        IndexNames.PATIENT: ('patientId', None),
    }

    def create_survey(self, data: Dict[str, Any]) -> Dict[str, Any]:
        record = _stamp(data, surveyId=new_id('survey'), entityType=EntityType.SURVEY.value)
        record.setdefault('completionPercentage', 0)
        record.setdefault('completedVisits', 0)
        return self.create(record)

    def find_by_study(self, study_id) -> List[Dict[str, Any]]:
        return self.query_all(study_id, index_name=IndexNames.STUDY)

    def find_by_organization(self, organization_id) -> List[Dict[str, Any]]:
        return self.query_all(organization_id, index_name=IndexNames.ORGANIZATION)

    def find_by_patient(self, patient_id) -> List[Dict[str, Any]]:
        return self.query_all(patient_id, index_name=IndexNames.PATIENT)

    def update_progress(self, survey_id, completion: int, completed_visits: int, total_visits=None):
        fields = {'completionPercentage': completion, 'completedVisits': completed_visits}
        if total_visits is not None:
            fields['totalVisits'] = total_visits
        return self.update(survey_id, fields)

    def update_status(self, survey_id, status):
        return self.update(survey_id, {'status': str(status)})

    def complete_survey(self, survey_id):
        return self.update(survey_id, {
            'status': SurveyStatusChoices.COMPLETED.value,
            'completionPercentage': 100,
        })

    def get_study_survey_stats(self, study_id) -> Dict[str, int]:
        return self.summarize(self.find_by_study(study_id))

    def get_organization_survey_stats(self, organization_id) -> Dict[str, int]:
        return self.summarize(self.find_by_organization(organization_id))

    @staticmethod
    def summarize(surveys) -> Dict[str, int]:
        stats = {'total': len(surveys)}
        for status in SurveyStatusChoices:
            stats[status.value] = sum(1 for s in surveys if s.get('status') == status.value)
        stats['averageCompletion'] = _average_completion(surveys)
        return stats


class VisitRepository(BaseRepository):
    """Visits are keyed (surveyId, visitId); lookups need both."""

    table_base_name = TableNames.VISITS
    partition_key = 'surveyId'
    sort_key = 'visitId'
    index_keys = {
        IndexNames.STUDY: ('clinicalStudyId', None),
        IndexNames.ORGANIZATION: ('organizationId', None),
    }

    @staticmethod
    def build_visit(data: Dict[str, Any]) -> Dict[str, Any]:
        """A new visit record with id and timestamps, not yet written."""
        record = _stamp(data, visitId=new_id('visit', data['visitNumber']))
        record.setdefault('status', VisitStatusChoices.SCHEDULED.value)
        record.setdefault('completionPercentage', 0)
        for name in ('requiredExaminations', 'optionalExaminations', 'examinationOrder',
                     'completedExaminations', 'skippedExaminations'):
            record.setdefault(name, [])
        return record

    def create_visit(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self.create(self.build_visit(data))

    def find_visit(self, survey_id, visit_id) -> Optional[Dict[str, Any]]:
        return self.find_by_id(survey_id, visit_id)

    def require_visit(self, survey_id, visit_id) -> Dict[str, Any]:
        visit = self.find_by_id(survey_id, visit_id)
        if visit is None:
            raise NotFoundError(f'Visit {visit_id} not found')
        return visit

    def find_by_survey(self, survey_id) -> List[Dict[str, Any]]:
        return sorted(self.query_all(survey_id), key=lambda v: v.get('visitNumber', 0))

    def find_by_study(self, study_id) -> List[Dict[str, Any]]:
        return self.query_all(study_id, index_name=IndexNames.STUDY)

    def find_by_organization(self, organization_id) -> List[Dict[str, Any]]:
        return self.query_all(organization_id, index_name=IndexNames.ORGANIZATION)

    def update_status(self, survey_id, visit_id, status, **fields):
        fields['status'] = str(status)
        return self.update(survey_id, fields, visit_id)

    def complete_examination(self, survey_id, visit_id, examination_id):
        """
        Mark one examination completed (idempotent) and recompute completionPercentage.

        The percentage is derived from the lists, never taken from input.
        """
        visit = self.require_visit(survey_id, visit_id)
        completed = list(visit.get('completedExaminations', []))
        if examination_id not in completed:
            completed.append(examination_id)
        total = len(visit.get('requiredExaminations', [])) + len(visit.get('optionalExaminations', []))
        return self.update(survey_id, {
            'completedExaminations': completed,
            'completionPercentage': completion_percentage(len(completed), total, empty=100),
        }, visit_id)

    def skip_examination(self, survey_id, visit_id, examination_id):
        visit = self.require_visit(survey_id, visit_id)
        skipped = list(visit.get('skippedExaminations', []))
        if examination_id not in skipped:
            skipped.append(examination_id)
        return self.update(survey_id, {'skippedExaminations': skipped}, visit_id)

    def update_examination_configuration(self, survey_id, visit_id, required, optional, order):
        return self.update(survey_id, {
            'requiredExaminations': list(required),
            'optionalExaminations': list(optional),
            'examinationOrder': list(order),
        }, visit_id)

    def set_actual_date(self, survey_id, visit_id, actual_date):
        return self.update(survey_id, {'actualDate': actual_date}, visit_id)

    def add_notes(self, survey_id, visit_id, notes):
        return self.update(survey_id, {'visitNotes': notes}, visit_id)

    def record_deviation(self, survey_id, visit_id, reason):
        return self.update(survey_id, {'deviationReason': reason}, visit_id)

    def complete_visit(self, survey_id, visit_id):
        return self.update(survey_id, {
            'status': VisitStatusChoices.COMPLETED.value,
            'completionPercentage': 100,
            'actualDate': utc_now_iso(),
        }, visit_id)

    def get_survey_visit_stats(self, survey_id) -> Dict[str, int]:
        visits = self.find_by_survey(survey_id)
        stats = {'total': len(visits)}
        for status in VisitStatusChoices:
            stats[status.value] = sum(1 for v in visits if v.get('status') == status.value)
        stats['averageCompletion'] = _average_completion(visits)
        return stats

    def get_visits_due(self, organization_id, days_ahead=7) -> List[Dict[str, Any]]:
        """Scheduled visits whose scheduledDate falls in [now, now + days_ahead]."""
        now = utc_now()
        horizon = now + timedelta(days=days_ahead)
        return [
            visit for visit in self.find_by_organization(organization_id)
            if visit.get('status') == VisitStatusChoices.SCHEDULED
            and now <= parse_timestamp(visit['scheduledDate']) <= horizon
        ]

    def get_overdue_visits(self, organization_id) -> List[Dict[str, Any]]:
        """Visits past their window end that are neither completed nor missed."""
        now = utc_now()
        return [
            visit for visit in self.find_by_organization(organization_id)
            if visit.get('status') not in (VisitStatusChoices.COMPLETED, VisitStatusChoices.MISSED)
            and parse_timestamp(visit['windowEndDate']) < now
        ]

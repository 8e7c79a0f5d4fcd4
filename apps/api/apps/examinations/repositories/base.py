"""
Examination repositories: one table per examination type, one record per eye.

Records are keyed by (visitId, <type id field>) and indexed by
(surveyId, eyeside) so a survey's history for one eye is a single query.
Analytics are pure functions over records already fetched and ordered
by compare_visits.
"""
import uuid
from typing import Any, Dict, List, Optional

from apps.core.dynamodb import IndexNames, utc_now_iso
from apps.core.exceptions import ClinicalDataError, ValidationError
from apps.core.observability.events import log_domain_event, log_examination_created
from apps.core.observability.metrics import metrics
from apps.core.repository import BaseRepository
from apps.examinations.models import BASE_EXAMINATION_FIELDS, Eyeside, TrendChoices

# ----------------------------------------------------------------------
# Analytics helpers
# ----------------------------------------------------------------------

def mean(values) -> Optional[float]:
    values = [v for v in values if v is not None]
    return sum(values) / len(values) if values else None


def rounded(value, digits=1):
    return round(value, digits) if value is not None else None


def halves(values):
    """First and second half of a series; an odd middle item belongs to neither."""
    return values[:len(values) // 2], values[(len(values) + 1) // 2:]


def half_trend(values, threshold, higher_is_better=True):
    """
    Classify a series by comparing the average of its two halves.

    Fewer than two points is insufficient_data. A change within
    threshold (exclusive) is stable.
    """
    values = [v for v in values if v is not None]
    if len(values) < 2:
        return TrendChoices.INSUFFICIENT_DATA.value
    first, second = halves(values)
    change = mean(second) - mean(first)
    if not higher_is_better:
        change = -change
    if change > threshold:
        return TrendChoices.IMPROVING.value
    if change < -threshold:
        return TrendChoices.DECLINING.value
    return TrendChoices.STABLE.value


def check_range(data, field, low, high, label=None, integer=False):
    """Reject data[field] outside [low, high]; absent or None fields pass."""
    value = data.get(field)
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f'{label or field} must be a number', field=field)
    if integer and int(value) != value:
        raise ValidationError(f'{label or field} must be an integer between {low} and {high}', field=field)
    if value < low or value > high:
        raise ValidationError(f'{label or field} out of valid range ({low}-{high})', field=field)


def check_choice(data, field, choices, label=None):
    value = data.get(field)
    if value in (None, ''):
        return
    if value not in choices:
        raise ValidationError(
            f"{label or field} must be one of: {', '.join(choices)}",
            field=field,
        )


def series(records, *fields):
    """Per-visit projection: visitId, date and the requested fields."""
    return [
        dict({'visitId': r.get('visitId'), 'date': r.get('createdAt')}, **{f: r.get(f) for f in fields})
        for r in records
    ]


class BaseExaminationRepository(BaseRepository):
    """
    Shared contract for the eight examination tables.

    Subclasses set table_base_name, slug, sort_key (the type's id field)
    and prefix, and override validate() and analyze().
    """

    partition_key = 'visitId'
    index_keys = {IndexNames.SURVEY: ('surveyId', 'eyeside')}

    slug: str = None
    prefix: str = None

    @property
    def id_field(self) -> str:
        return self.sort_key

    def validate(self, data: Dict[str, Any]) -> None:
        """Raise ValidationError for out-of-range clinical fields."""

    def new_examination_id(self, eyeside: Eyeside) -> str:
        return f'{self.prefix}-{eyeside.value.lower()}-{uuid.uuid4().hex}'

    @staticmethod
    def _payload(data: Dict[str, Any], id_field: str) -> Dict[str, Any]:
        return {k: v for k, v in (data or {}).items() if k not in BASE_EXAMINATION_FIELDS and k != id_field}

    def create_examination(
        self,
        visit_id,
        survey_id,
        patient_id,
        clinical_study_id,
        organization_id,
        eyeside,
        data: Dict[str, Any],
    ) -> Dict[str, Any]:
        """
        Validate and write one eye's record.

        The id is generated here; denormalized survey, patient, study and
        organization ids are stamped so the record can be found by index
        and checked against the caller's access.
        """
        eyeside = Eyeside.parse(eyeside)
        payload = self._payload(data, self.id_field)
        self.validate(payload)

        now = utc_now_iso()
        record = dict(payload)
        record.update({
            'visitId': visit_id,
            self.id_field: self.new_examination_id(eyeside),
            'surveyId': survey_id,
            'patientId': patient_id,
            'clinicalStudyId': clinical_study_id,
            'organizationId': organization_id,
            'eyeside': eyeside.value,
            'createdAt': now,
            'updatedAt': now,
        })
        self.create(record)
        metrics.examination_records_created_total.labels(type=self.slug).inc()
        log_examination_created(self.slug, record, self.id_field)
        return record

    def update_examination(self, visit_id, examination_id, updates: Dict[str, Any]) -> Dict[str, Any]:
        payload = self._payload(updates, self.id_field)
        if payload:
            self.validate(payload)
        return self.update(visit_id, payload, examination_id)

    def delete_examination(self, visit_id, examination_id) -> None:
        self.delete(visit_id, examination_id)

    def find_by_visit(self, visit_id) -> List[Dict[str, Any]]:
        return self.query_all(visit_id)

    def find_by_visit_and_eye(self, visit_id, eyeside) -> Optional[Dict[str, Any]]:
        eyeside = Eyeside.parse(eyeside)
        for record in self.find_by_visit(visit_id):
            if record.get('eyeside') == eyeside.value:
                return record
        return None

    def find_by_survey(self, survey_id) -> List[Dict[str, Any]]:
        return self.query_all(survey_id, index_name=IndexNames.SURVEY)

    def find_by_survey_and_eye(self, survey_id, eyeside) -> List[Dict[str, Any]]:
        return self.query_all(
            survey_id,
            index_name=IndexNames.SURVEY,
            sort_key_condition='=',
            sort_key_value=Eyeside.parse(eyeside).value,
        )

    def compare_visits(self, survey_id, eyeside) -> List[Dict[str, Any]]:
        """
        A survey's records for one eye, oldest first.

        Every trend computation relies on this order. createdAt carries
        microseconds; records with equal timestamps keep index order.
        """
        return sorted(self.find_by_survey_and_eye(survey_id, eyeside), key=lambda r: r.get('createdAt') or '')

    def batch_create_both_eyes(
        self,
        visit_id,
        survey_id,
        patient_id,
        clinical_study_id,
        organization_id,
        right_data: Optional[Dict[str, Any]],
        left_data: Optional[Dict[str, Any]],
        replace_existing: bool = False,
    ) -> Dict[str, Any]:
        """
        Create the right then the left record. Not transactional.

        Returns {"right", "left", "errors"}; an eye that failed is None in
        the result and its message is in errors, while the other eye's
        record stays written. With replace_existing, an eye the visit
        already has a record for is updated in place instead.
        """
        result = {'right': None, 'left': None, 'errors': {}}
        existing = self.get_both_eyes_data(visit_id) if replace_existing else {}
        for key, eyeside, data in (('right', Eyeside.RIGHT, right_data), ('left', Eyeside.LEFT, left_data)):
            if data is None:
                continue
            try:
                current = existing.get(key)
                if current is not None:
                    result[key] = self.update_examination(visit_id, current[self.id_field], data)
                else:
                    result[key] = self.create_examination(
                        visit_id, survey_id, patient_id, clinical_study_id, organization_id, eyeside, data
                    )
            except ClinicalDataError as e:
                result['errors'][key] = e.message
                log_domain_event(
                    'examination_eye_failed',
                    entity_type=self.slug,
                    entity_ids={'visit_id': visit_id, 'survey_id': survey_id},
                    result='partial',
                    eyeside=eyeside.value,
                    error=e.message,
                )
        return result

    def get_both_eyes_data(self, visit_id) -> Dict[str, Optional[Dict[str, Any]]]:
        records = self.find_by_visit(visit_id)
        return {
            'right': next((r for r in records if r.get('eyeside') == Eyeside.RIGHT), None),
            'left': next((r for r in records if r.get('eyeside') == Eyeside.LEFT), None),
        }

    def analyze(self, records: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Type-specific analytics over compare_visits() output."""
        return {'visitCount': len(records)}

    def get_analysis(self, survey_id, eyeside) -> Dict[str, Any]:
        return self.analyze(self.compare_visits(survey_id, eyeside))

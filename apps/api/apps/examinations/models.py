"""
Examination vocabularies and the examination type registry.

Examination records live in the document store, one table per type,
keyed by (visitId, <type id field>) with one record per eye.
"""
from dataclasses import dataclass

from django.db import models

from apps.core.dynamodb import TableNames
from apps.core.exceptions import ValidationError


class Eyeside(models.TextChoices):
    """Stored capitalized; the API also accepts 'right' and 'left'."""
    RIGHT = 'Right', 'Right'
    LEFT = 'Left', 'Left'

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        normalized = str(value or '').strip().capitalize()
        if normalized not in cls.values:
            raise ValidationError(f'Invalid eyeside: {value!r}', field='eyeside')
        return cls(normalized)


class TrendChoices(models.TextChoices):
    IMPROVING = 'improving', 'Improving'
    STABLE = 'stable', 'Stable'
    DECLINING = 'declining', 'Declining'
    WORSENING = 'worsening', 'Worsening'
    INSUFFICIENT_DATA = 'insufficient_data', 'Insufficient Data'


class CompletionStatus(models.TextChoices):
    """Per-examination state of a draft."""
    COMPLETED = 'completed', 'Completed'
    PARTIAL = 'partial', 'Partial'
    NOT_STARTED = 'not_started', 'Not Started'


@dataclass(frozen=True)
class ExaminationType:
    slug: str
    id_field: str
    prefix: str
    table: str
    label: str


EXAMINATION_TYPES = (
    ExaminationType('basic-info', 'basicInfoId', 'basicinfo', TableNames.BASIC_INFO, 'Basic Information'),
    ExaminationType('vas', 'vasId', 'vas', TableNames.VAS, 'Visual Analog Scale'),
    ExaminationType(
        'comparative', 'comparativeScoresId', 'comparative', TableNames.COMPARATIVE_SCORES, 'Comparative Scores'
    ),
    ExaminationType(
        'fitting', 'fittingId', 'fitting', TableNames.LENS_FLUID_SURFACE_ASSESSMENT, 'Lens Fluid Surface Assessment'
    ),
    ExaminationType('dr1', 'dr1Id', 'dr1', TableNames.DR1, 'Tear Film (DR1)'),
    ExaminationType('corrected-va', 'correctedVAId', 'correctedva', TableNames.CORRECTED_VA, 'Corrected Visual Acuity'),
    ExaminationType(
        'lens-inspection', 'lensInspectionId', 'lensinspection', TableNames.LENS_INSPECTION, 'Lens Inspection'
    ),
    ExaminationType('questionnaire', 'questionnaireId', 'questionnaire', TableNames.QUESTIONNAIRE, 'Questionnaire'),
)

EXAMINATION_TYPES_BY_SLUG = {t.slug: t for t in EXAMINATION_TYPES}


def get_examination_type(slug):
    try:
        return EXAMINATION_TYPES_BY_SLUG[slug]
    except KeyError:
        raise ValidationError(f'Unknown examination type: {slug}', field='type')


# Attributes every examination record carries; callers never set them.
BASE_EXAMINATION_FIELDS = frozenset({
    'visitId',
    'surveyId',
    'patientId',
    'clinicalStudyId',
    'organizationId',
    'eyeside',
    'createdAt',
    'updatedAt',
})

"""
Examination and draft repositories.

build_examination_repositories returns the slug -> repository registry
the examination service dispatches on.
"""
from apps.examinations.repositories.base import BaseExaminationRepository
from apps.examinations.repositories.basic_info import BasicInfoRepository
from apps.examinations.repositories.comparative import ComparativeScoresRepository
from apps.examinations.repositories.corrected_va import CorrectedVARepository
from apps.examinations.repositories.dr1 import DR1Repository
from apps.examinations.repositories.drafts import DraftDataRepository
from apps.examinations.repositories.fitting import LensFluidSurfaceAssessmentRepository
from apps.examinations.repositories.lens_inspection import LensInspectionRepository
from apps.examinations.repositories.questionnaire import QuestionnaireRepository
from apps.examinations.repositories.vas import VASRepository

EXAMINATION_REPOSITORY_CLASSES = (
    BasicInfoRepository,
    VASRepository,
    ComparativeScoresRepository,
    LensFluidSurfaceAssessmentRepository,
    DR1Repository,
    CorrectedVARepository,
    LensInspectionRepository,
    QuestionnaireRepository,
)


def build_examination_repositories(resource, environment=None):
    return {cls.slug: cls(resource, environment) for cls in EXAMINATION_REPOSITORY_CLASSES}


__all__ = [
    'BaseExaminationRepository',
    'BasicInfoRepository',
    'ComparativeScoresRepository',
    'CorrectedVARepository',
    'DR1Repository',
    'DraftDataRepository',
    'EXAMINATION_REPOSITORY_CLASSES',
    'LensFluidSurfaceAssessmentRepository',
    'LensInspectionRepository',
    'QuestionnaireRepository',
    'VASRepository',
    'build_examination_repositories',
]

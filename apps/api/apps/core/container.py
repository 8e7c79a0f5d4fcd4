"""
Process-wide dependency container.

Built once in CoreConfig.ready() and shared by every request: one boto3
resource, one instance of each repository and one of each service.
Views reach it through get_container(); tests install their own.
"""
from django.apps import apps
from django.conf import settings

from apps.core.dynamodb import create_resource


class Container:
    """Holds the store resource, every repository and every service."""

    def __init__(self, resource, environment=None):
        # Imported here: the clinical and examination apps import core.
        from apps.authz.services import PermissionService
        from apps.clinical.repositories import (
            ClinicalStudyRepository,
            OrganizationRepository,
            PatientRepository,
            SurveyRepository,
            VisitRepository,
        )
        from apps.clinical.services import (
            ClinicalStudyService,
            OrganizationService,
            PatientService,
            SurveyService,
            VisitService,
        )
        from apps.examinations.repositories import DraftDataRepository, build_examination_repositories
        from apps.examinations.services import ExaminationService

        self.resource = resource
        self.environment = environment or settings.DYNAMODB_ENVIRONMENT

        self.organizations = OrganizationRepository(resource, self.environment)
        self.studies = ClinicalStudyRepository(resource, self.environment)
        self.patients = PatientRepository(resource, self.environment)
        self.surveys = SurveyRepository(resource, self.environment)
        self.visits = VisitRepository(resource, self.environment)
        self.drafts = DraftDataRepository(
            resource,
            self.environment,
            ttl_days=settings.DRAFT_TTL_DAYS,
            backup_ttl_days=settings.DRAFT_BACKUP_TTL_DAYS,
            conflict_window_seconds=settings.DRAFT_AUTOSAVE_CONFLICT_SECONDS,
        )
        self.examinations = build_examination_repositories(resource, self.environment)

        self.permission_service = PermissionService()
        self.organization_service = OrganizationService(self.organizations, self.patients, self.surveys)
        self.study_service = ClinicalStudyService(self.studies, self.organizations, self.surveys)
        self.patient_service = PatientService(self.patients, self.organizations)
        self.visit_service = VisitService(self.visits, self.surveys)
        self.survey_service = SurveyService(self.surveys, self.studies, self.patients, self.visits)
        self.examination_service = ExaminationService(
            self.examinations, self.drafts, self.visits, self.visit_service
        )

    @classmethod
    def from_settings(cls):
        return cls(create_resource(), settings.DYNAMODB_ENVIRONMENT)


def get_container() -> Container:
    return apps.get_app_config('core').container


def set_container(container: Container) -> None:
    """Replace the shared container (tests, management commands)."""
    apps.get_app_config('core').container = container

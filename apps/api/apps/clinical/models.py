"""
Clinical entity vocabularies: organizations, studies, patients, surveys, visits.

Records live in the document store, not in Django's database, so this
module only carries the closed value sets the repositories and
serializers validate against.
"""
from django.db import models


class EntityType(models.TextChoices):
    """Partition value of EntityTypeIndex."""
    ORGANIZATION = 'organization', 'Organization'
    CLINICAL_STUDY = 'clinicalStudy', 'Clinical Study'
    PATIENT = 'patient', 'Patient'
    SURVEY = 'survey', 'Survey'


class OrganizationTypeChoices(models.TextChoices):
    HOSPITAL = 'hospital', 'Hospital'
    CLINIC = 'clinic', 'Clinic'
    RESEARCH_CENTER = 'research_center', 'Research Center'
    UNIVERSITY = 'university', 'University'
    OTHER = 'other', 'Other'


class OrganizationStatusChoices(models.TextChoices):
    ACTIVE = 'active', 'Active'
    INACTIVE = 'inactive', 'Inactive'
    PENDING_APPROVAL = 'pending_approval', 'Pending Approval'
    SUSPENDED = 'suspended', 'Suspended'


class StudyStatusChoices(models.TextChoices):
    """Study lifecycle; only active and recruiting studies enroll."""
    PLANNING = 'planning', 'Planning'
    ACTIVE = 'active', 'Active'
    RECRUITING = 'recruiting', 'Recruiting'
    COMPLETED = 'completed', 'Completed'
    SUSPENDED = 'suspended', 'Suspended'
    TERMINATED = 'terminated', 'Terminated'


ENROLLING_STUDY_STATUSES = (StudyStatusChoices.ACTIVE, StudyStatusChoices.RECRUITING)


class PatientStatusChoices(models.TextChoices):
    ACTIVE = 'active', 'Active'
    INACTIVE = 'inactive', 'Inactive'
    WITHDRAWN = 'withdrawn', 'Withdrawn'
    COMPLETED = 'completed', 'Completed'


class GenderChoices(models.TextChoices):
    MALE = 'male', 'Male'
    FEMALE = 'female', 'Female'
    OTHER = 'other', 'Other'


class SurveyStatusChoices(models.TextChoices):
    ACTIVE = 'active', 'Active'
    COMPLETED = 'completed', 'Completed'
    WITHDRAWN = 'withdrawn', 'Withdrawn'
    SUSPENDED = 'suspended', 'Suspended'


class VisitTypeChoices(models.TextChoices):
    BASELINE = 'baseline', 'Baseline'
    ONE_WEEK = '1week', '1 Week'
    ONE_MONTH = '1month', '1 Month'
    THREE_MONTH = '3month', '3 Month'
    CUSTOM = 'custom', 'Custom'


class VisitStatusChoices(models.TextChoices):
    """
    Visit status.

    scheduled -> in_progress -> completed is the normal path; missed,
    rescheduled and cancelled are recorded with a deviationReason.
    """
    SCHEDULED = 'scheduled', 'Scheduled'
    IN_PROGRESS = 'in_progress', 'In Progress'
    COMPLETED = 'completed', 'Completed'
    MISSED = 'missed', 'Missed'
    RESCHEDULED = 'rescheduled', 'Rescheduled'
    CANCELLED = 'cancelled', 'Cancelled'


# A visit in one of these states cannot be started or completed again.
CLOSED_VISIT_STATUSES = (VisitStatusChoices.COMPLETED, VisitStatusChoices.CANCELLED)


class DeviationTypeChoices(models.TextChoices):
    WINDOW_VIOLATION = 'window_violation', 'Window Violation'
    MISSED_VISIT = 'missed_visit', 'Missed Visit'
    EXAMINATION_SKIP = 'examination_skip', 'Examination Skip'


class SeverityChoices(models.TextChoices):
    LOW = 'low', 'Low'
    MEDIUM = 'medium', 'Medium'
    HIGH = 'high', 'High'
    CRITICAL = 'critical', 'Critical'


DEVIATION_SEVERITY = {
    DeviationTypeChoices.MISSED_VISIT: SeverityChoices.HIGH,
    DeviationTypeChoices.WINDOW_VIOLATION: SeverityChoices.MEDIUM,
    DeviationTypeChoices.EXAMINATION_SKIP: SeverityChoices.MEDIUM,
}

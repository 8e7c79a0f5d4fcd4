"""
Clinical request serializers.

Records are plain documents, so serializers only validate input shape
and closed value sets; responses return the stored document as is.
Field names follow the document store's camelCase attributes.
"""
from rest_framework import serializers

from apps.clinical.models import (
    GenderChoices,
    OrganizationStatusChoices,
    OrganizationTypeChoices,
    PatientStatusChoices,
    StudyStatusChoices,
    VisitTypeChoices,
)


class AddressSerializer(serializers.Serializer):
    street = serializers.CharField(required=False, allow_blank=True)
    city = serializers.CharField(required=False, allow_blank=True)
    state = serializers.CharField(required=False, allow_blank=True)
    postalCode = serializers.CharField(required=False, allow_blank=True)
    country = serializers.CharField(required=False, allow_blank=True)


class OrganizationSerializer(serializers.Serializer):
    organizationName = serializers.CharField(max_length=200)
    organizationCode = serializers.CharField(max_length=50)
    organizationType = serializers.ChoiceField(choices=OrganizationTypeChoices.choices)
    address = AddressSerializer(required=False)
    phoneNumber = serializers.CharField(required=False, allow_blank=True)
    email = serializers.CharField(required=False, allow_blank=True)
    website = serializers.CharField(required=False, allow_blank=True)
    principalInvestigator = serializers.CharField(required=False, allow_blank=True)
    contactPerson = serializers.CharField(required=False, allow_blank=True)
    maxPatientCapacity = serializers.IntegerField(required=False, min_value=0)
    certifications = serializers.ListField(child=serializers.CharField(), required=False)
    status = serializers.ChoiceField(choices=OrganizationStatusChoices.choices, required=False)


class OrganizationStudySerializer(serializers.Serializer):
    clinicalStudyId = serializers.CharField()


class VisitTemplateSerializer(serializers.Serializer):
    """
    One entry of a study's visit template.

    Cross-entry rules (unique visit numbers, at least one examination)
    are enforced by ClinicalStudyService so API and service callers get
    the same messages.
    """
    visitNumber = serializers.IntegerField(min_value=1)
    visitType = serializers.ChoiceField(choices=VisitTypeChoices.choices)
    visitName = serializers.CharField(allow_blank=True)
    scheduledDaysFromBaseline = serializers.IntegerField()
    windowDaysBefore = serializers.IntegerField(default=0)
    windowDaysAfter = serializers.IntegerField(default=0)
    requiredExaminations = serializers.ListField(child=serializers.CharField(), default=list)
    optionalExaminations = serializers.ListField(child=serializers.CharField(), default=list)
    examinationOrder = serializers.ListField(child=serializers.CharField(), default=list)
    isRequired = serializers.BooleanField(default=True)
    description = serializers.CharField(required=False, allow_blank=True)


class ExaminationConfigSerializer(serializers.Serializer):
    examinationId = serializers.CharField(allow_blank=True)
    examinationName = serializers.CharField(allow_blank=True)
    description = serializers.CharField(required=False, allow_blank=True)
    isRequired = serializers.BooleanField(default=True)
    estimatedDuration = serializers.IntegerField(default=0)


class ClinicalStudySerializer(serializers.Serializer):
    studyName = serializers.CharField(max_length=200)
    studyCode = serializers.CharField(max_length=50)
    description = serializers.CharField(required=False, allow_blank=True)
    startDate = serializers.CharField()
    endDate = serializers.CharField(required=False, allow_blank=True)
    targetSampleSize = serializers.IntegerField(required=False, min_value=0)
    targetOrganizations = serializers.ListField(child=serializers.CharField(), default=list)
    visitTemplate = VisitTemplateSerializer(many=True)
    examinations = ExaminationConfigSerializer(many=True)
    protocolVersion = serializers.CharField(required=False, allow_blank=True)
    status = serializers.ChoiceField(choices=StudyStatusChoices.choices, required=False)


class StudyOrganizationSerializer(serializers.Serializer):
    organizationId = serializers.CharField()


class ContactInfoSerializer(serializers.Serializer):
    phone = serializers.CharField(required=False, allow_blank=True)
    email = serializers.CharField(required=False, allow_blank=True)
    address = AddressSerializer(required=False)


class PatientSerializer(serializers.Serializer):
    patientCode = serializers.CharField()
    patientInitials = serializers.CharField(required=False, allow_blank=True)
    gender = serializers.ChoiceField(choices=GenderChoices.choices, required=False)
    dateOfBirth = serializers.CharField(required=False, allow_blank=True)
    registeredOrganizationId = serializers.CharField()
    medicalHistory = serializers.ListField(child=serializers.CharField(), required=False)
    currentMedications = serializers.ListField(child=serializers.CharField(), required=False)
    allergies = serializers.ListField(child=serializers.CharField(), required=False)
    contactInfo = ContactInfoSerializer(required=False)
    status = serializers.ChoiceField(choices=PatientStatusChoices.choices, required=False)


class PatientWithdrawSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True)


class PatientStudySerializer(serializers.Serializer):
    clinicalStudyId = serializers.CharField()
    remove = serializers.BooleanField(default=False)


class SurveyFromStudySerializer(serializers.Serializer):
    clinicalStudyId = serializers.CharField()
    organizationId = serializers.CharField()
    patientId = serializers.CharField()
    baselineDate = serializers.CharField()
    conductedBy = serializers.CharField(required=False, allow_blank=True)
    customName = serializers.CharField(required=False, allow_blank=True)


class VisitScheduleSerializer(serializers.Serializer):
    scheduledDate = serializers.CharField()
    conductedBy = serializers.CharField(required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)


class VisitStartSerializer(serializers.Serializer):
    conductedBy = serializers.CharField(required=False, allow_blank=True)


class ExaminationProgressSerializer(serializers.Serializer):
    examinationId = serializers.CharField()
    completed = serializers.BooleanField(default=True)


class VisitConfigurationSerializer(serializers.Serializer):
    requiredExaminations = serializers.ListField(child=serializers.CharField())
    optionalExaminations = serializers.ListField(child=serializers.CharField(), default=list)
    examinationOrder = serializers.ListField(child=serializers.CharField())


class VisitRescheduleSerializer(serializers.Serializer):
    newDate = serializers.CharField()
    reason = serializers.CharField(required=False, allow_blank=True)


class VisitReasonSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True)

"""
Examination and draft request serializers.

Panel contents are type-specific and validated by the examination
repositories; these serializers only check the envelope.
"""
from rest_framework import serializers


class EyePanelsSerializer(serializers.Serializer):
    right = serializers.DictField(required=False, allow_null=True)
    left = serializers.DictField(required=False, allow_null=True)

    def validate(self, attrs):
        if attrs.get('right') is None and attrs.get('left') is None:
            raise serializers.ValidationError('Data for at least one eye is required')
        return attrs


class SubmitExaminationSerializer(serializers.Serializer):
    formData = serializers.DictField(child=serializers.DictField(), required=False)
    completedExaminations = serializers.ListField(child=serializers.CharField(), default=list)
    conductedBy = serializers.CharField(required=False, allow_blank=True)


class DraftContextSerializer(serializers.Serializer):
    surveyId = serializers.CharField()


class DraftSerializer(DraftContextSerializer):
    formData = serializers.DictField(child=serializers.DictField(), default=dict)
    currentStep = serializers.IntegerField(min_value=0, default=0)
    totalSteps = serializers.IntegerField(min_value=0, required=False)
    completedSteps = serializers.ListField(child=serializers.CharField(), default=list)
    examinationOrder = serializers.ListField(child=serializers.CharField(), required=False)
    autoSaved = serializers.BooleanField(default=False)


class DraftAutoSaveSerializer(serializers.Serializer):
    formData = serializers.DictField(child=serializers.DictField(), required=False)
    currentStep = serializers.IntegerField(min_value=0, required=False)
    totalSteps = serializers.IntegerField(min_value=0, required=False)
    completedSteps = serializers.ListField(child=serializers.CharField(), required=False)
    examinationOrder = serializers.ListField(child=serializers.CharField(), required=False)
    expectedVersion = serializers.IntegerField(min_value=1, required=False)


class DraftProgressSerializer(serializers.Serializer):
    currentStep = serializers.IntegerField(min_value=0)
    completedSteps = serializers.ListField(child=serializers.CharField())

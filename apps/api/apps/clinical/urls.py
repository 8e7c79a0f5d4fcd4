"""
Clinical URLs - Organizations, Studies, Patients, Surveys, Visits.
"""
from django.urls import path, include
from rest_framework.routers import DefaultRouter

from .views import (
    ClinicalStudyViewSet,
    OrganizationViewSet,
    PatientViewSet,
    SurveyViewSet,
    VisitReportViewSet,
    VisitViewSet,
)

router = DefaultRouter()
router.register(r'organizations', OrganizationViewSet, basename='organization')
router.register(r'studies', ClinicalStudyViewSet, basename='study')
router.register(r'patients', PatientViewSet, basename='patient')
router.register(r'surveys', SurveyViewSet, basename='survey')
router.register(r'surveys/(?P<survey_pk>[^/.]+)/visits', VisitViewSet, basename='visit')
router.register(r'visits', VisitReportViewSet, basename='visit-report')

urlpatterns = [
    path('', include(router.urls)),
]

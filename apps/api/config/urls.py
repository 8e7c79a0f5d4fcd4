"""
URL configuration for the Clinical Trial Data API.
"""
from django.urls import include, path
from drf_spectacular.views import (
    SpectacularAPIView,
    SpectacularRedocView,
    SpectacularSwaggerView,
)
from apps.core.observability.health import HealthzView, MetricsView, ReadyzView

urlpatterns = [
    # Health checks and metrics (no auth required)
    path('healthz', HealthzView.as_view(), name='healthz'),
    path('readyz', ReadyzView.as_view(), name='readyz'),
    path('metrics', MetricsView.as_view(), name='metrics'),

    # Private API (authentication required)
    path('api/v1/', include('apps.authz.urls')),  # Principal and permission checks
    path('api/v1/', include('apps.clinical.urls')),  # Organizations, studies, patients, surveys, visits
    path('api/v1/', include('apps.examinations.urls')),  # Drafts, examination records, analytics

    # API Schema
    path('api/schema/', SpectacularAPIView.as_view(), name='schema'),
    path('api/schema/swagger-ui/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),
    path('api/schema/redoc/', SpectacularRedocView.as_view(url_name='schema'), name='redoc'),
]

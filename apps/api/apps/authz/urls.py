"""
Authz URLs - principal introspection and permission checks
"""
from django.urls import path

from .views import MeView, PermissionCheckView

urlpatterns = [
    path('auth/me/', MeView.as_view(), name='auth-me'),
    path('auth/check/', PermissionCheckView.as_view(), name='auth-check'),
]

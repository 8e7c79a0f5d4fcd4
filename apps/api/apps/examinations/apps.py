"""Examinations app configuration."""
from django.apps import AppConfig


class ExaminationsConfig(AppConfig):
    """Configuration for examinations app."""
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.examinations'
    verbose_name = 'Examinations'

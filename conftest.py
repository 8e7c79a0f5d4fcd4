"""
Pytest configuration for the entire test suite.

This file configures the test environment: in-memory SQLite, a fixed
table prefix and fake AWS credentials so nothing reaches a real store.
"""
import os

import django
from django.conf import settings


def pytest_configure():
    """Configure Django settings for tests."""
    os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

    # moto intercepts every call, but boto3 still wants credentials
    os.environ.setdefault('AWS_ACCESS_KEY_ID', 'testing')
    os.environ.setdefault('AWS_SECRET_ACCESS_KEY', 'testing')
    os.environ.setdefault('AWS_DEFAULT_REGION', 'ap-northeast-1')

    # Force SQLite for tests (faster, no Docker dependency)
    settings.DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': ':memory:',  # In-memory database for speed
        }
    }
    settings.DYNAMODB_ENVIRONMENT = 'test'
    settings.DYNAMODB_ENDPOINT_URL = None

    django.setup()

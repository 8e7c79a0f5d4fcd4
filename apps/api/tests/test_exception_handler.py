"""
Tests for the mapping from domain errors to HTTP responses.
"""
from unittest.mock import patch

import pytest
from rest_framework import exceptions as drf_exceptions

from apps.core.exception_handler import api_exception_handler
from apps.core.exceptions import (
    BusinessRuleError,
    ConflictError,
    IndexResolutionError,
    NotFoundError,
    PartialBatchError,
    StoreError,
    ValidationError,
)


def handle(exc):
    return api_exception_handler(exc, {'view': None})


class TestDomainErrors:
    @pytest.mark.parametrize('exc,expected_status', [
        (ValidationError('bad'), 400),
        (BusinessRuleError('not now'), 400),
        (NotFoundError('gone'), 404),
        (ConflictError('taken'), 409),
    ])
    def test_status_codes(self, exc, expected_status):
        response = handle(exc)

        assert response.status_code == expected_status
        assert response.data == {'success': False, 'error': exc.message}

    def test_validation_error_names_field(self):
        response = handle(ValidationError('Invalid email format', field='email'))

        assert response.data['field'] == 'email'

    def test_retryable_store_error_is_503(self):
        error = StoreError('throttled', code='ProvisionedThroughputExceededException', operation='query', retryable=True)

        response = handle(error)

        assert response.status_code == 503
        assert response.data['retryable'] is True

    def test_permanent_store_error_is_500(self):
        error = StoreError('bad request', code='ValidationException', operation='query', retryable=False)

        response = handle(error)

        assert response.status_code == 500
        assert response.data == {'success': False, 'error': 'Internal server error'}

    def test_partial_batch_reports_progress(self):
        cause = StoreError(
            'throttled', code='ProvisionedThroughputExceededException', operation='batch_write', retryable=True
        )
        error = PartialBatchError(
            'Batch write failed', committed_items=25, committed_chunks=1, failed_chunk=1, cause=cause
        )

        response = handle(error)

        assert response.status_code == 503
        assert response.data['committedItems'] == 25

    @patch('apps.core.exception_handler.logger')
    def test_index_misconfiguration_is_500_and_logged(self, mock_logger):
        response = handle(IndexResolutionError('No index named Foo'))

        assert response.status_code == 500
        assert mock_logger.error.called


class TestFrameworkErrors:
    def test_serializer_errors_are_flattened(self):
        exc = drf_exceptions.ValidationError({'patientCode': ['This field is required.']})

        response = handle(exc)

        assert response.status_code == 400
        assert response.data == {'success': False, 'error': 'patientCode: This field is required.'}

    def test_permission_denied(self):
        response = handle(drf_exceptions.PermissionDenied('No access'))

        assert response.status_code == 403
        assert response.data['error'] == 'No access'

    def test_unexpected_exception_is_500(self):
        response = handle(RuntimeError('boom'))

        assert response.status_code == 500
        assert response.data['error'] == 'Internal server error'

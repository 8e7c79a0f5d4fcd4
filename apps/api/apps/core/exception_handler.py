"""
DRF exception handler.

The only place where domain errors become HTTP status codes. Business
failures come back as {"success": false, "error": "..."}.
"""
import logging

from rest_framework import status
from rest_framework.exceptions import (
    APIException,
    AuthenticationFailed,
    NotAuthenticated,
    PermissionDenied,
)
from rest_framework.response import Response
from rest_framework.views import exception_handler

from apps.core.exceptions import (
    BusinessRuleError,
    ConflictError,
    IndexResolutionError,
    NotFoundError,
    PartialBatchError,
    StoreError,
    ValidationError,
)
from apps.core.observability.correlation import get_request_id
from apps.core.observability.metrics import metrics

logger = logging.getLogger(__name__)


def _error(message, status_code, **extra):
    body = {'success': False, 'error': message}
    body.update(extra)
    return Response(body, status=status_code)


def _flatten_detail(detail):
    """Turn a DRF ValidationError detail into one readable message."""
    if isinstance(detail, dict):
        parts = []
        for field, errors in detail.items():
            messages = errors if isinstance(errors, list) else [errors]
            parts.append(f'{field}: {" ".join(str(m) for m in messages)}')
        return '; '.join(parts)
    if isinstance(detail, list):
        return ' '.join(str(m) for m in detail)
    return str(detail)


def api_exception_handler(exc, context):
    """
    Map exceptions to responses.

    401 unauthenticated, 403 forbidden, 400 validation/business rule,
    404 not found, 409 conflict, 503 retryable store failure, 500 otherwise.
    """
    if isinstance(exc, (NotAuthenticated, AuthenticationFailed)):
        response = exception_handler(exc, context)
        response.data = {'success': False, 'error': str(exc.detail)}
        return response

    if isinstance(exc, PermissionDenied):
        return _error(str(exc.detail), status.HTTP_403_FORBIDDEN)

    if isinstance(exc, ValidationError):
        extra = {'field': exc.field} if exc.field else {}
        return _error(exc.message, status.HTTP_400_BAD_REQUEST, **extra)

    if isinstance(exc, BusinessRuleError):
        return _error(exc.message, status.HTTP_400_BAD_REQUEST)

    if isinstance(exc, NotFoundError):
        return _error(exc.message, status.HTTP_404_NOT_FOUND)

    if isinstance(exc, ConflictError):
        return _error(exc.message, status.HTTP_409_CONFLICT)

    if isinstance(exc, PartialBatchError):
        logger.error(
            'Partial batch failure',
            extra={
                'event': 'batch_partial_failure_response',
                'committed_items': exc.committed_items,
                'failed_chunk': exc.failed_chunk,
                'request_id': get_request_id(),
            }
        )
        return _error(
            exc.message,
            status.HTTP_503_SERVICE_UNAVAILABLE if exc.retryable else status.HTTP_500_INTERNAL_SERVER_ERROR,
            retryable=exc.retryable,
            committedItems=exc.committed_items,
        )

    if isinstance(exc, StoreError) and exc.retryable:
        return _error('Service temporarily unavailable', status.HTTP_503_SERVICE_UNAVAILABLE, retryable=True)

    if isinstance(exc, APIException):
        # Remaining DRF errors: parse errors, serializer validation, 404, 405
        response = exception_handler(exc, context)
        if response is not None:
            response.data = {'success': False, 'error': _flatten_detail(exc.detail)}
        return response

    if isinstance(exc, IndexResolutionError):
        logger.error('Repository index misconfiguration', exc_info=exc)

    view = context.get('view')
    metrics.exceptions_total.labels(
        exception_type=exc.__class__.__name__,
        location=view.__class__.__name__ if view else 'unknown',
    ).inc()
    logger.error(
        f'Unhandled error: {exc.__class__.__name__}',
        exc_info=exc,
        extra={
            'event': 'unhandled_exception',
            'exception_type': exc.__class__.__name__,
            'request_id': get_request_id(),
        }
    )
    return _error('Internal server error', status.HTTP_500_INTERNAL_SERVER_ERROR)

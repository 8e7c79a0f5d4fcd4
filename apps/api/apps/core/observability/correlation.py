"""
Request correlation middleware.

Generates or propagates X-Request-ID, keeps the request and the
authenticated principal in thread-local context for log records, and
records per-request metrics.
"""
import logging
import time
import uuid
from threading import local

from django.utils.deprecation import MiddlewareMixin

from .metrics import metrics

_request_context = local()

_CONTEXT_ATTRS = ('request_id', 'trace_id', 'user_id', 'user_roles', 'organization_id', 'started_at')

logger = logging.getLogger(__name__)


def get_request_id():
    return getattr(_request_context, 'request_id', None)


def get_trace_id():
    return getattr(_request_context, 'trace_id', None)


def get_user_id():
    return getattr(_request_context, 'user_id', None)


def get_user_roles():
    return getattr(_request_context, 'user_roles', [])


def get_organization_id():
    return getattr(_request_context, 'organization_id', None)


def bind_principal(user_id, role, organization_id=None):
    """
    Attach the authenticated principal to the request context.

    DRF authenticates lazily inside the view, after this middleware has
    run, so the permission layer calls this once the token is verified.
    """
    _request_context.user_id = str(user_id) if user_id else None
    _request_context.user_roles = [role] if role else []
    _request_context.organization_id = organization_id


def clear_request_context():
    """Drop everything bound for the current thread."""
    for attr in _CONTEXT_ATTRS:
        if hasattr(_request_context, attr):
            delattr(_request_context, attr)


def _request_log_fields(request, duration_ms):
    return {
        'path': request.path,
        'method': request.method,
        'duration_ms': round(duration_ms, 2),
        'user_id': get_user_id(),
        'user_roles': get_user_roles(),
        'organization_id': get_organization_id(),
    }


class RequestCorrelationMiddleware(MiddlewareMixin):
    """
    Per-request correlation.

    The request id is taken from X-Request-ID or generated, echoed on
    the response together with X-Trace-ID, and the principal slot is
    reset so nothing leaks between requests served by the same thread.
    """

    REQUEST_ID_HEADER = 'HTTP_X_REQUEST_ID'
    TRACE_ID_HEADER = 'HTTP_X_TRACE_ID'

    def process_request(self, request):
        clear_request_context()

        request.request_id = request.META.get(self.REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.trace_id = request.META.get(self.TRACE_ID_HEADER)
        request.started_at = time.perf_counter()

        _request_context.request_id = request.request_id
        _request_context.trace_id = request.trace_id

    def _elapsed_ms(self, request):
        started_at = getattr(request, 'started_at', None)
        if started_at is None:
            return 0.0
        return (time.perf_counter() - started_at) * 1000

    def process_response(self, request, response):
        if hasattr(request, 'request_id'):
            response['X-Request-ID'] = request.request_id
        if getattr(request, 'trace_id', None):
            response['X-Trace-ID'] = request.trace_id

        if hasattr(request, 'started_at'):
            duration_ms = self._elapsed_ms(request)
            metrics.http_requests_total.labels(
                method=request.method,
                status=str(response.status_code),
            ).inc()
            metrics.http_request_duration_seconds.labels(method=request.method).observe(duration_ms / 1000)

            level = logging.WARNING if response.status_code >= 500 else logging.INFO
            logger.log(
                level,
                'Request completed',
                extra={
                    'event': 'http_request_completed',
                    'status_code': response.status_code,
                    **_request_log_fields(request, duration_ms),
                },
            )

        return response

    def process_exception(self, request, exception):
        """Unhandled exceptions that escaped the DRF exception handler."""
        exception_type = exception.__class__.__name__
        metrics.exceptions_total.labels(exception_type=exception_type, location='middleware').inc()

        logger.error(
            'Request failed: %s',
            exception_type,
            exc_info=True,
            extra={
                'event': 'http_request_exception',
                'exception_type': exception_type,
                **_request_log_fields(request, self._elapsed_ms(request)),
            },
        )

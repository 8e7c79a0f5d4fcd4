"""
Structured logging with PHI/PII protection.

Every record carries the request correlation context (request id, trace
id, principal, organization). Extra fields passed through ``extra={}``
are redacted by key before they reach the JSON output, and examination
form payloads are reduced to the list of examinations they contain.
"""
import json
import logging
from datetime import datetime, timezone

from .correlation import (
    get_organization_id,
    get_request_id,
    get_trace_id,
    get_user_id,
    get_user_roles,
)

REDACTED = '[REDACTED]'

# Keys that must never be logged. Compared lowercased.
SENSITIVE_FIELDS = {
    'password',
    'token',
    'secret',
    'authorization',
    'patientinitials',
    'dateofbirth',
    'contactinfo',
    'phone',
    'phonenumber',
    'email',
    'emergencycontact',
    'address',
    'medicalhistory',
    'currentmedications',
    'allergies',
    'notes',
    'visitnotes',
    'deviationreason',
}

# Draft and submit payloads: logged as the examination ids only
FORM_PAYLOAD_FIELDS = {'formdata'}

# Attributes every LogRecord has; anything else came from extra={}
_RECORD_ATTRS = frozenset(vars(logging.LogRecord('', 0, '', 0, '', None, None))) | {'message', 'asctime'}

_CONTEXT_FIELDS = ('request_id', 'trace_id', 'user_id', 'user_roles', 'organization_id')


def _redact(key, value):
    lowered = key.lower() if isinstance(key, str) else key
    if lowered in SENSITIVE_FIELDS:
        return REDACTED
    if lowered in FORM_PAYLOAD_FIELDS and isinstance(value, dict):
        return sorted(value)
    return sanitize_value(value)


def sanitize_value(value):
    """Redact sensitive keys at any depth of dicts and lists."""
    if isinstance(value, dict):
        return {k: _redact(k, v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [sanitize_value(v) for v in value]
    return value


def sanitize_dict(data):
    """
    Return a redacted copy of data.

    Non-dict input is returned unchanged.
    """
    if not isinstance(data, dict):
        return data
    return sanitize_value(data)


class CorrelationFilter(logging.Filter):
    """Inject the current request and principal into each record."""

    def filter(self, record):
        record.request_id = get_request_id() or '-'
        record.trace_id = get_trace_id() or '-'
        record.user_id = get_user_id() or '-'
        record.user_roles = ','.join(get_user_roles()) or '-'
        record.organization_id = get_organization_id() or '-'
        return True


class SanitizedJSONFormatter(logging.Formatter):
    """One JSON object per line, extras redacted."""

    def format(self, record):
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        for field in _CONTEXT_FIELDS:
            log_data[field] = getattr(record, field, '-')

        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS or key in log_data or key.startswith('_'):
                continue
            log_data[key] = _redact(key, value)

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def get_sanitized_logger(name):
    """
    Get a logger with the correlation filter attached.

    Usage:
        logger = get_sanitized_logger(__name__)
        logger.info('Draft saved', extra={'event': 'draft_saved', 'visit_id': visit_id})
    """
    logger = logging.getLogger(name)
    if not any(isinstance(f, CorrelationFilter) for f in logger.filters):
        logger.addFilter(CorrelationFilter())
    return logger

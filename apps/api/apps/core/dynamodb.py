"""
DynamoDB connection, naming and value conversion helpers.
"""
import base64
import json
from datetime import datetime, timezone
from decimal import Decimal

import boto3
from botocore.config import Config
from django.conf import settings
from django.utils.dateparse import parse_date, parse_datetime

from apps.core.exceptions import ValidationError


class TableNames:
    """Base names of every table. Use table_name() to get the deployed name."""
    CLINICAL_STUDY = 'ClinicalStudy'
    ORGANIZATIONS = 'Organizations'
    PATIENTS = 'Patients'
    SURVEYS = 'Surveys'
    VISITS = 'Visits'
    BASIC_INFO = 'BasicInfo'
    VAS = 'VAS'
    COMPARATIVE_SCORES = 'ComparativeScores'
    LENS_FLUID_SURFACE_ASSESSMENT = 'LensFluidSurfaceAssessment'
    DR1 = 'DR1'
    CORRECTED_VA = 'CorrectedVA'
    LENS_INSPECTION = 'LensInspection'
    QUESTIONNAIRE = 'Questionnaire'
    DRAFT_DATA = 'DraftData'


class IndexNames:
    ENTITY_TYPE = 'EntityTypeIndex'
    ORGANIZATION = 'OrganizationIndex'
    STUDY = 'StudyIndex'
    PATIENT = 'PatientIndex'
    SURVEY = 'SurveyIndex'


def table_name(base_name, environment=None):
    """Return the deployed table name, e.g. 'dev-Visits'."""
    environment = environment or settings.DYNAMODB_ENVIRONMENT
    return f'{environment}-{base_name}'


def create_resource(region_name=None, endpoint_url=None):
    """Build the boto3 DynamoDB resource shared by every repository."""
    config = Config(
        retries={
            'max_attempts': settings.DYNAMODB_MAX_ATTEMPTS,
            'mode': 'standard',
        },
        connect_timeout=settings.DYNAMODB_CONNECT_TIMEOUT,
        read_timeout=settings.DYNAMODB_READ_TIMEOUT,
    )
    return boto3.resource(
        'dynamodb',
        region_name=region_name or settings.AWS_REGION,
        endpoint_url=endpoint_url or settings.DYNAMODB_ENDPOINT_URL or None,
        config=config,
    )


def utc_now():
    return datetime.now(timezone.utc)


def utc_now_iso():
    """ISO-8601 UTC timestamp with fixed microsecond width, so strings sort."""
    return utc_now().isoformat(timespec='microseconds').replace('+00:00', 'Z')


def to_iso(value):
    """Render an aware datetime in the same format as utc_now_iso()."""
    return value.astimezone(timezone.utc).isoformat(timespec='microseconds').replace('+00:00', 'Z')


def parse_timestamp(value):
    """
    Parse an ISO-8601 datetime or a bare date into an aware UTC datetime.

    Raises ValidationError for anything else.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = parse_datetime(value or '')
            if parsed is None:
                day = parse_date(value or '')
                parsed = datetime(day.year, day.month, day.day) if day else None
        except (TypeError, ValueError):
            parsed = None
    if parsed is None:
        raise ValidationError(f'Invalid date: {value!r}')
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_dynamo(value):
    """Convert floats (recursively) to Decimal; DynamoDB rejects float."""
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: to_dynamo(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_dynamo(v) for v in value]
    return value


def from_dynamo(value):
    """Convert Decimal (recursively) back to int or float."""
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return int(value)
        return float(value)
    if isinstance(value, dict):
        return {k: from_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [from_dynamo(v) for v in value]
    if isinstance(value, set):
        return sorted(from_dynamo(v) for v in value)
    return value


def encode_cursor(last_evaluated_key):
    """Opaque, url-safe continuation token for a LastEvaluatedKey."""
    if not last_evaluated_key:
        return None
    raw = json.dumps(from_dynamo(last_evaluated_key), sort_keys=True)
    return base64.urlsafe_b64encode(raw.encode('utf-8')).decode('ascii')


def decode_cursor(cursor):
    if not cursor:
        return None
    try:
        raw = base64.urlsafe_b64decode(cursor.encode('ascii'))
        key = json.loads(raw.decode('utf-8'))
    except (ValueError, UnicodeError):
        raise ValidationError('Invalid pagination cursor', field='cursor')
    if not isinstance(key, dict):
        raise ValidationError('Invalid pagination cursor', field='cursor')
    return to_dynamo(key)

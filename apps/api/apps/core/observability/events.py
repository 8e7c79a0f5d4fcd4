"""
Domain events logging helpers.

Provides structured event logging for clinical data operations.
"""
from typing import Dict, Optional
from .logging import get_sanitized_logger, sanitize_dict

logger = get_sanitized_logger(__name__)


def log_domain_event(
    event_name: str,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    entity_ids: Optional[Dict[str, str]] = None,
    result: str = 'success',
    **extra_fields
):
    """
    Log a domain event with structured data.

    Args:
        event_name: Name of the event (e.g., 'visit_completed', 'draft_autosave_conflict')
        entity_type: Type of entity (e.g., 'Visit', 'Draft')
        entity_id: ID of primary entity
        entity_ids: Dictionary of related entity IDs
        result: Result of operation (success, failure, conflict, etc.)
        **extra_fields: Additional fields to log (will be sanitized)

    Example:
        log_domain_event(
            'examination_created',
            entity_type='BasicInfo',
            entity_id=record['basicInfoId'],
            entity_ids={'visit_id': visit_id, 'survey_id': survey_id},
            eyeside='Right',
        )
    """
    event_data = {
        'event': event_name,
        'result': result,
    }

    if entity_type:
        event_data['entity_type'] = entity_type

    if entity_id:
        event_data['entity_id'] = entity_id

    if entity_ids:
        event_data.update(entity_ids)

    event_data.update(sanitize_dict(extra_fields))

    # Log at appropriate level based on result
    if result in ['failure', 'error']:
        logger.error(f'Domain event: {event_name}', extra=event_data)
    elif result in ['warning', 'blocked', 'conflict', 'denied', 'partial']:
        logger.warning(f'Domain event: {event_name}', extra=event_data)
    else:
        logger.info(f'Domain event: {event_name}', extra=event_data)


def log_batch_partial_failure(table, operation, committed_items, committed_chunks, failed_chunk, code=None):
    """Log a batch that stopped after some chunks were already committed."""
    log_domain_event(
        'batch_partial_failure',
        entity_type='Table',
        entity_id=table,
        result='partial',
        operation=operation,
        committed_items=committed_items,
        committed_chunks=committed_chunks,
        failed_chunk=failed_chunk,
        error_code=code,
    )


def log_examination_created(examination_type, record, id_field):
    """Log one examination record written for one eye."""
    log_domain_event(
        'examination_created',
        entity_type=examination_type,
        entity_id=record.get(id_field),
        entity_ids={
            'visit_id': record.get('visitId'),
            'survey_id': record.get('surveyId'),
        },
        eyeside=record.get('eyeside'),
    )


def log_draft_conflict(visit_id, reason, current_version=None, expected_version=None):
    """Log an autosave that was rejected instead of overwriting newer state."""
    log_domain_event(
        'draft_autosave_conflict',
        entity_type='Draft',
        entity_id=visit_id,
        entity_ids={'visit_id': visit_id},
        result='conflict',
        reason=reason,
        current_version=current_version,
        expected_version=expected_version,
    )


def log_visit_transition(visit, from_status, to_status, **extra):
    """Log visit status transition event."""
    log_domain_event(
        'visit_transition',
        entity_type='Visit',
        entity_id=visit.get('visitId'),
        entity_ids={
            'visit_id': visit.get('visitId'),
            'survey_id': visit.get('surveyId'),
        },
        from_status=from_status,
        to_status=to_status,
        **extra
    )


def log_permission_denied(principal_id, role, permission, organization_id=None):
    """Log a request blocked by the permission model."""
    log_domain_event(
        'authz_denied',
        entity_type='Principal',
        entity_id=principal_id,
        result='denied',
        role=role,
        permission=permission,
        organization_id=organization_id,
    )

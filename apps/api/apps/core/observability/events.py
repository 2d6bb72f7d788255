"""
Domain events logging helpers.

Provides structured event logging for import runs.
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
        event_name: Name of the event (e.g., 'import_run_completed')
        entity_type: Type of entity (e.g., 'Patient', 'ImportRun')
        entity_id: ID of primary entity
        entity_ids: Dictionary of related entity IDs
        result: Result of operation (success, failure, etc.)
        **extra_fields: Additional fields to log (will be sanitized)

    Example:
        log_domain_event(
            'import_run_completed',
            entity_type='ImportRun',
            entity_id=run_id,
            result='success',
            counts={'patient': 10, 'surgery': 8},
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
    elif result in ['warning', 'skipped', 'partial']:
        logger.warning(f'Domain event: {event_name}', extra=event_data)
    else:
        logger.info(f'Domain event: {event_name}', extra=event_data)


def log_import_started(run_id, source, document_name):
    """Log the start of an import run."""
    log_domain_event(
        'import_run_started',
        entity_type='ImportRun',
        entity_id=run_id,
        result='started',
        source=source,
        document_name=document_name,
    )


def log_import_completed(run_id, source, counts, diagnostics_count, dry_run=False, duration_ms=None):
    """Log a committed import run."""
    extra = {
        'source': source,
        'counts': counts,
        'diagnostics_count': diagnostics_count,
        'dry_run': dry_run,
    }
    if duration_ms is not None:
        extra['duration_ms'] = duration_ms

    log_domain_event(
        'import_run_completed',
        entity_type='ImportRun',
        entity_id=run_id,
        result='partial' if diagnostics_count else 'success',
        **extra
    )


def log_import_failed(run_id, source, error_type, message):
    """Log an import run aborted by a fatal error."""
    log_domain_event(
        'import_run_failed',
        entity_type='ImportRun',
        entity_id=run_id,
        result='failure',
        source=source,
        error_type=error_type,
        error_message=message,
    )


def log_row_skipped(kind, sheet, row, key, reason):
    """Log a row omitted from an import run."""
    log_domain_event(
        'import_row_skipped',
        entity_type=kind,
        result='skipped',
        sheet=sheet,
        row=row,
        patient_key=key,
        reason=reason,
    )

"""
Domain exceptions shared by repositories and services.

Repositories and services raise these and let them bubble up. The DRF
exception handler in apps.core.exception_handler is the only place that
turns them into HTTP responses.
"""
from typing import Any, Dict, List, Optional

from botocore.exceptions import ClientError


# Store error codes that indicate throttling or a transient outage.
# Only these are safe to retry with backoff.
RETRYABLE_ERROR_CODES = {
    'ProvisionedThroughputExceededException',
    'ThrottlingException',
    'RequestLimitExceeded',
    'InternalServerError',
    'ServiceUnavailable',
    'TransactionConflictException',
}


class ClinicalDataError(Exception):
    """Base class for every error raised by the data layer."""
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ClinicalDataError):
    """A field value is outside its allowed range or vocabulary."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class BusinessRuleError(ClinicalDataError):
    """The request is well formed but breaks a workflow rule."""
    pass


class NotFoundError(ClinicalDataError):
    """The addressed record does not exist."""
    pass


class ConflictError(ClinicalDataError):
    """A conditional write lost against existing state."""
    pass


class IndexResolutionError(ClinicalDataError):
    """
    A repository was asked to query an index it does not declare.

    This is a programming error, not a data error.
    """
    pass


class StoreError(ClinicalDataError):
    """
    Wraps a failed document store call.

    retryable is True only for throttling/unavailability codes.
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        operation: Optional[str] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.code = code
        self.operation = operation
        self.retryable = retryable


class PartialBatchError(StoreError):
    """
    A batch operation failed part way through.

    Chunks before failed_chunk were committed and are NOT rolled back.
    """

    def __init__(
        self,
        message: str,
        committed_items: int,
        committed_chunks: int,
        failed_chunk: int,
        unprocessed: Optional[List[Dict[str, Any]]] = None,
        cause: Optional[StoreError] = None,
    ):
        super().__init__(
            message,
            code=cause.code if cause else None,
            operation=cause.operation if cause else None,
            retryable=cause.retryable if cause else False,
        )
        self.committed_items = committed_items
        self.committed_chunks = committed_chunks
        self.failed_chunk = failed_chunk
        self.unprocessed = unprocessed or []


def error_code(error: ClientError) -> str:
    return error.response.get('Error', {}).get('Code', 'Unknown')


def translate_client_error(error: ClientError, operation: str, table: str) -> StoreError:
    """Map a botocore ClientError onto a StoreError with the retryable flag set."""
    code = error_code(error)
    message = error.response.get('Error', {}).get('Message', str(error))
    return StoreError(
        f'{operation} on {table} failed: {code}: {message}',
        code=code,
        operation=operation,
        retryable=code in RETRYABLE_ERROR_CODES,
    )

"""Error taxonomy and operator-facing classification for task completion flows."""

from enum import Enum

from pydantic import BaseModel


class LedgerError(Exception):
    """Base class for errors raised by the completion ledger and its client."""

    code = "ERR_UNKNOWN"


class CallerError(LedgerError):
    """Missing identifiers, unknown batch, or any other request the caller must fix.

    Never retried.
    """

    code = "ERR_CALLER"


class BatchNotFoundError(CallerError):
    """The referenced batch does not exist in the registry."""

    code = "ERR_BATCH_NOT_FOUND"


class StaleInstanceError(LedgerError):
    """The instance id does not resolve against the current schedule template."""

    code = "ERR_STALE_INSTANCE"


class TransientLedgerError(LedgerError):
    """Network, timeout or server-side failure. Safe to retry because completion is idempotent."""

    code = "ERR_TRANSIENT"


class ReconciliationMismatchError(LedgerError):
    """The ledger confirmed that a locally completed task was never recorded."""

    code = "ERR_RECONCILIATION_MISMATCH"


class ErrorCategory(Enum):
    """Categories of outcomes surfaced to the operator."""

    CALLER_ERROR = "caller_error"
    ALREADY_COMPLETED = "already_completed"
    TRANSIENT = "transient"
    RECONCILIATION_MISMATCH = "reconciliation_mismatch"
    STALE_INSTANCE = "stale_instance"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCode:
    """Error codes for specific error conditions."""

    ERR_CALLER = CallerError.code
    ERR_BATCH_NOT_FOUND = BatchNotFoundError.code
    ERR_STALE_INSTANCE = StaleInstanceError.code
    ERR_TRANSIENT = TransientLedgerError.code
    ERR_RECONCILIATION_MISMATCH = ReconciliationMismatchError.code
    ERR_ALREADY_COMPLETED = "ERR_ALREADY_COMPLETED"
    ERR_UNKNOWN = LedgerError.code


class ErrorResponse(BaseModel):
    """Structured error response with user-friendly messaging."""

    code: str
    category: ErrorCategory
    message: str
    suggestion: str
    severity: ErrorSeverity


ALREADY_COMPLETED_RESPONSE = ErrorResponse(
    code=ErrorCode.ERR_ALREADY_COMPLETED,
    category=ErrorCategory.ALREADY_COMPLETED,
    message="This task was already marked complete.",
    suggestion="No action needed.",
    severity=ErrorSeverity.LOW,
)


_NETWORK_PHRASES = ("connection", "timeout", "timed out", "network", "unreachable", "502", "503", "504")


def classify_error_with_response(exception: Exception) -> ErrorResponse:
    """Classify an error and return a structured response with recovery suggestions.

    Args:
        exception: The exception raised during a ledger call

    Returns:
        ErrorResponse with code, category, message, suggestion, and severity
    """
    if isinstance(exception, StaleInstanceError):
        return ErrorResponse(
            code=ErrorCode.ERR_STALE_INSTANCE,
            category=ErrorCategory.STALE_INSTANCE,
            message="Task unavailable, please refresh.",
            suggestion="The schedule changed since this list was loaded. Pull to refresh.",
            severity=ErrorSeverity.MEDIUM,
        )

    if isinstance(exception, ReconciliationMismatchError):
        return ErrorResponse(
            code=ErrorCode.ERR_RECONCILIATION_MISMATCH,
            category=ErrorCategory.RECONCILIATION_MISMATCH,
            message="Your completion did not take effect.",
            suggestion="Please mark the task complete again.",
            severity=ErrorSeverity.HIGH,
        )

    if isinstance(exception, CallerError):
        return ErrorResponse(
            code=exception.code,
            category=ErrorCategory.CALLER_ERROR,
            message=str(exception) or "The request was invalid.",
            suggestion="Check the selected batch and task, then try again.",
            severity=ErrorSeverity.MEDIUM,
        )

    error_str = str(exception).lower()
    exception_type = type(exception).__name__
    if (
        isinstance(exception, TransientLedgerError | ConnectionError | TimeoutError)
        or exception_type in {"ConnectError", "ReadTimeout", "ConnectTimeout"}
        or any(phrase in error_str for phrase in _NETWORK_PHRASES)
    ):
        return ErrorResponse(
            code=ErrorCode.ERR_TRANSIENT,
            category=ErrorCategory.TRANSIENT,
            message="Saved locally, syncing.",
            suggestion="The change will be confirmed once the connection recovers.",
            severity=ErrorSeverity.LOW,
        )

    return ErrorResponse(
        code=ErrorCode.ERR_UNKNOWN,
        category=ErrorCategory.UNKNOWN,
        message="An unexpected error occurred.",
        suggestion="Please try again later. If the problem persists, contact support.",
        severity=ErrorSeverity.MEDIUM,
    )

"""Error taxonomy and classification for the task workflow engine."""

from enum import Enum

from pydantic import BaseModel


class TaskEngineError(Exception):
    """Base class for all workflow engine errors."""


class InvalidTransitionError(TaskEngineError):
    """Requested state change is not an edge of the lifecycle graph, or its guard failed."""


class DuplicateVoteError(TaskEngineError):
    """The identity has already approved or rejected this task."""


class BidNotCompetitiveError(TaskEngineError):
    """Bid amount is not strictly below the current best price."""


class ConcurrentModificationError(TaskEngineError):
    """An optimistic write lost a race; safe to retry with fresh state."""


class StorageError(TaskEngineError):
    """The underlying store is unavailable; the operation had no effect."""


class NotFoundError(TaskEngineError, KeyError):
    """Referenced task, ledger entry or member does not exist."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep plain messages
        return str(self.args[0]) if self.args else ""


class PermissionDeniedError(TaskEngineError):
    """The acting identity lacks the capability required by a guard."""


class InvalidInputError(TaskEngineError, ValueError):
    """Payload failed validation (price ceiling, stars range, amount sign)."""


class ErrorCategory(Enum):
    """Categories of errors tracked for admin alerting."""

    SCHEDULED_JOB_FAILED = "scheduled_job_failed"
    STORAGE_UNAVAILABLE = "storage_unavailable"
    NOTIFICATION_FAILED = "notification_failed"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCode:
    """Error codes for specific error conditions."""

    ERR_INVALID_TRANSITION = "ERR_INVALID_TRANSITION"
    ERR_DUPLICATE_VOTE = "ERR_DUPLICATE_VOTE"
    ERR_BID_NOT_COMPETITIVE = "ERR_BID_NOT_COMPETITIVE"
    ERR_CONCURRENT_MODIFICATION = "ERR_CONCURRENT_MODIFICATION"
    ERR_STORAGE = "ERR_STORAGE"
    ERR_NOT_FOUND = "ERR_NOT_FOUND"
    ERR_PERMISSION_DENIED = "ERR_PERMISSION_DENIED"
    ERR_INVALID_INPUT = "ERR_INVALID_INPUT"
    ERR_UNKNOWN = "ERR_UNKNOWN"


class ErrorResponse(BaseModel):
    """Structured error response with user-friendly messaging."""

    code: str
    message: str
    suggestion: str
    severity: ErrorSeverity
    http_status: int
    retryable: bool = False


def classify_error_with_response(exception: Exception) -> ErrorResponse:  # noqa: PLR0911
    """Classify an error and return a structured response with recovery suggestions.

    Args:
        exception: The exception raised during execution

    Returns:
        ErrorResponse with code, message, suggestion, severity and HTTP status
    """
    detail = str(exception)

    if isinstance(exception, NotFoundError):
        return ErrorResponse(
            code=ErrorCode.ERR_NOT_FOUND,
            message=detail or "The requested record does not exist.",
            suggestion="Refresh the task list and try again.",
            severity=ErrorSeverity.LOW,
            http_status=404,
        )

    if isinstance(exception, PermissionDeniedError):
        return ErrorResponse(
            code=ErrorCode.ERR_PERMISSION_DENIED,
            message=detail or "You don't have permission for this action.",
            suggestion="Ask a council member or an administrator.",
            severity=ErrorSeverity.MEDIUM,
            http_status=403,
        )

    if isinstance(exception, InvalidTransitionError):
        return ErrorResponse(
            code=ErrorCode.ERR_INVALID_TRANSITION,
            message=detail or "This action cannot be performed in the task's current state.",
            suggestion="Check the task status and try again.",
            severity=ErrorSeverity.LOW,
            http_status=409,
        )

    if isinstance(exception, DuplicateVoteError):
        return ErrorResponse(
            code=ErrorCode.ERR_DUPLICATE_VOTE,
            message=detail or "You have already voted on this task.",
            suggestion="Wait for the other council members to vote.",
            severity=ErrorSeverity.LOW,
            http_status=409,
        )

    if isinstance(exception, BidNotCompetitiveError):
        return ErrorResponse(
            code=ErrorCode.ERR_BID_NOT_COMPETITIVE,
            message=detail or "Your bid must be lower than the current best price.",
            suggestion="Submit an amount strictly below the current best price.",
            severity=ErrorSeverity.LOW,
            http_status=422,
        )

    if isinstance(exception, InvalidInputError):
        return ErrorResponse(
            code=ErrorCode.ERR_INVALID_INPUT,
            message=detail or "The request payload is invalid.",
            suggestion="Correct the highlighted values and resubmit.",
            severity=ErrorSeverity.LOW,
            http_status=422,
        )

    if isinstance(exception, ConcurrentModificationError):
        return ErrorResponse(
            code=ErrorCode.ERR_CONCURRENT_MODIFICATION,
            message=detail or "The task was modified by someone else.",
            suggestion="Reload the task and retry.",
            severity=ErrorSeverity.MEDIUM,
            http_status=409,
            retryable=True,
        )

    if isinstance(exception, StorageError):
        return ErrorResponse(
            code=ErrorCode.ERR_STORAGE,
            message="The task store is temporarily unavailable.",
            suggestion="Please try again in a moment.",
            severity=ErrorSeverity.HIGH,
            http_status=503,
            retryable=True,
        )

    return ErrorResponse(
        code=ErrorCode.ERR_UNKNOWN,
        message="An unexpected error occurred.",
        suggestion="Please try again later. If the problem persists, contact the administrator.",
        severity=ErrorSeverity.MEDIUM,
        http_status=500,
    )

"""
Error model for the RecruitFlow pipeline.

Provides structured error codes, typed errors for each failure kind the
pipeline can produce, and sanitized error messages.

Every failure is attributable to exactly one code so monitoring can tell
workflow misuse (INVALID_TRANSITION), races (STALE_RECORD), infrastructure
flakiness (SYNC_ERROR, DB_ERROR) and collaborator failures
(GENERATION_ERROR, DELIVERY_ERROR) apart.
"""

from enum import Enum
from typing import Any, Iterable, Optional
import re


class ErrorCode(str, Enum):
    """Structured error codes for pipeline operations and MCP tools."""
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    STALE_RECORD = "STALE_RECORD"
    RECORD_NOT_FOUND = "RECORD_NOT_FOUND"
    RECORD_EXISTS = "RECORD_EXISTS"
    SYNC_ERROR = "SYNC_ERROR"
    GENERATION_ERROR = "GENERATION_ERROR"
    DELIVERY_ERROR = "DELIVERY_ERROR"
    DB_NOT_FOUND = "DB_NOT_FOUND"
    DB_ERROR = "DB_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ToolError(Exception):
    """Base exception for pipeline errors with structured error information."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        retryable: bool = False,
        original_error: Optional[Exception] = None
    ):
        """
        Initialize a tool error.

        Args:
            code: The error code
            message: Human-readable error message
            retryable: Whether the operation can be retried
            original_error: The original exception if this wraps another error
        """
        self.code = code
        self.message = message
        self.retryable = retryable
        self.original_error = original_error
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert error to dictionary format for MCP response."""
        return {
            "error": {
                "code": self.code.value,
                "message": self.message,
                "retryable": self.retryable
            }
        }


class InvalidTransitionError(ToolError):
    """Requested stage is not a legal successor of the record's state."""

    def __init__(self, message: str):
        super().__init__(ErrorCode.INVALID_TRANSITION, message, retryable=False)


class StaleRecordError(ToolError):
    """The record changed between the caller's read and the commit.

    Callers must re-read the record and make a fresh decision rather than
    reissuing the same target state.
    """

    def __init__(self, message: str):
        super().__init__(ErrorCode.STALE_RECORD, message, retryable=True)


class RecordNotFoundError(ToolError):
    """No pipeline record exists for the (job_id, candidate_id) pair."""

    def __init__(self, message: str):
        super().__init__(ErrorCode.RECORD_NOT_FOUND, message, retryable=False)


class SyncError(ToolError):
    """The system of record rejected or could not receive a stage push.

    The local commit has already succeeded when this is raised; the failure
    is queued for reconciliation.
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(
            ErrorCode.SYNC_ERROR, message, retryable=True, original_error=original_error
        )


class CollaboratorError(ToolError):
    """Base for failures of external collaborators invoked by the orchestrator.

    ``record`` holds the pipeline record as it stands after the failure.
    For two-phase stages it is the checkpointed record; otherwise it is the
    unchanged input record.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        original_error: Optional[Exception] = None,
        record: Any = None,
    ):
        super().__init__(code, message, retryable=True, original_error=original_error)
        self.record = record


class GenerationError(CollaboratorError):
    """A content generator failed or timed out."""

    def __init__(
        self, message: str, original_error: Optional[Exception] = None, record: Any = None
    ):
        super().__init__(ErrorCode.GENERATION_ERROR, message, original_error, record)


class DeliveryError(CollaboratorError):
    """A notification channel or scheduler failed to deliver."""

    def __init__(
        self, message: str, original_error: Optional[Exception] = None, record: Any = None
    ):
        super().__init__(ErrorCode.DELIVERY_ERROR, message, original_error, record)


def sanitize_path(path: str) -> str:
    """
    Sanitize file paths to avoid exposing sensitive system details.

    Returns only the basename for absolute paths, keeps relative paths.

    Args:
        path: The file path to sanitize

    Returns:
        Sanitized path string
    """
    import os
    # If it's an absolute path, return only the basename
    if os.path.isabs(path):
        return os.path.basename(path)
    return path


def sanitize_sql_error(error_msg: str) -> str:
    """
    Sanitize SQL error messages to remove sensitive details.

    Removes SQL fragments and absolute paths, keeps actionable information.

    Args:
        error_msg: The original error message

    Returns:
        Sanitized error message
    """
    sanitized = re.sub(r'SQL:.*', '', error_msg, flags=re.IGNORECASE)
    sanitized = re.sub(r'\b(SELECT|INSERT|UPDATE|DELETE)\b.*', '[SQL query]', sanitized, flags=re.IGNORECASE)
    sanitized = re.sub(r'/[^\s]+/', '[path]/', sanitized)
    return sanitized.strip()


def sanitize_stack_trace(error_msg: str) -> str:
    """Keep only the first line of an error message."""
    lines = error_msg.split('\n')
    if lines:
        return lines[0].strip()
    return error_msg


def sanitize_collaborator_error(error: Exception, limit: int = 200) -> str:
    """
    Reduce a collaborator exception to a short, safe summary.

    Args:
        error: Exception raised by a generator, notifier or HTTP client
        limit: Maximum length of the returned message

    Returns:
        Single-line summary, truncated to ``limit`` characters
    """
    message = sanitize_stack_trace(str(error)) or type(error).__name__
    if len(message) > limit:
        message = message[: limit - 3] + "..."
    return message


def create_validation_error(message: str) -> ToolError:
    """
    Create a validation error.

    Args:
        message: Description of the validation failure

    Returns:
        ToolError with VALIDATION_ERROR code
    """
    return ToolError(
        code=ErrorCode.VALIDATION_ERROR,
        message=message,
        retryable=False
    )


def create_invalid_transition_error(
    from_state: Any, to_state: Any, allowed: Iterable[Any], reason: Optional[str] = None
) -> InvalidTransitionError:
    """
    Create an invalid transition error listing the legal successors.

    Args:
        from_state: Current state of the record
        to_state: Requested target state
        allowed: Legal successors of ``from_state``
        reason: Optional extra explanation (e.g. round limit reached)

    Returns:
        InvalidTransitionError
    """
    allowed_str = ", ".join(_state_name(s) for s in allowed) or "none (terminal state)"
    message = (
        f"Invalid transition: {_state_name(from_state)} -> {_state_name(to_state)}. "
        f"Allowed: [{allowed_str}]"
    )
    if reason:
        message = f"{message}. {reason}"
    return InvalidTransitionError(message)


def create_stale_record_error(job_id: str, candidate_id: str, expected_state: Any) -> StaleRecordError:
    """
    Create a stale record error for a failed conditional commit.

    Args:
        job_id: Job identifier of the record
        candidate_id: Candidate identifier of the record
        expected_state: State the caller read before committing

    Returns:
        StaleRecordError
    """
    return StaleRecordError(
        f"Pipeline record ({job_id}, {candidate_id}) changed since it was read "
        f"in state {_state_name(expected_state)}; re-read and decide again"
    )


def create_record_not_found_error(job_id: str, candidate_id: str) -> RecordNotFoundError:
    """Create a not-found error for a (job_id, candidate_id) pair."""
    return RecordNotFoundError(f"Pipeline record not found: ({job_id}, {candidate_id})")


def create_record_exists_error(job_id: str, candidate_id: str) -> ToolError:
    """Create an error for a duplicate (job_id, candidate_id) pair."""
    return ToolError(
        code=ErrorCode.RECORD_EXISTS,
        message=f"Pipeline record already exists: ({job_id}, {candidate_id})",
        retryable=False,
    )


def create_sync_error(message: str, original_error: Optional[Exception] = None) -> SyncError:
    """Create a sync error with a sanitized message."""
    return SyncError(f"Sync error: {sanitize_stack_trace(message)}", original_error=original_error)


def create_db_not_found_error(db_path: str) -> ToolError:
    """
    Create a database not found error.

    Args:
        db_path: The database path that was not found

    Returns:
        ToolError with DB_NOT_FOUND code
    """
    sanitized_path = sanitize_path(db_path)
    return ToolError(
        code=ErrorCode.DB_NOT_FOUND,
        message=f"Database not found: {sanitized_path}",
        retryable=False
    )


def create_db_error(message: str, retryable: bool = False, original_error: Optional[Exception] = None) -> ToolError:
    """
    Create a database error.

    Args:
        message: Description of the database error
        retryable: Whether the operation can be retried
        original_error: The original exception

    Returns:
        ToolError with DB_ERROR code
    """
    sanitized_message = sanitize_sql_error(message)
    sanitized_message = sanitize_stack_trace(sanitized_message)

    return ToolError(
        code=ErrorCode.DB_ERROR,
        message=f"Database error: {sanitized_message}",
        retryable=retryable,
        original_error=original_error
    )


def create_internal_error(message: str, original_error: Optional[Exception] = None) -> ToolError:
    """
    Create an internal error for unexpected exceptions.

    Args:
        message: Description of the internal error
        original_error: The original exception

    Returns:
        ToolError with INTERNAL_ERROR code
    """
    sanitized_message = sanitize_stack_trace(message)

    return ToolError(
        code=ErrorCode.INTERNAL_ERROR,
        message=f"Internal error: {sanitized_message}",
        retryable=True,
        original_error=original_error
    )


def _state_name(state: Any) -> str:
    return getattr(state, "value", str(state))

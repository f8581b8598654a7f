"""
Input validation and timestamp utilities for the pipeline MCP tools.

Validates identifiers, stage names, trigger kinds and batch limits, and
produces the ISO 8601 timestamps used as optimistic-concurrency tokens.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from models.errors import create_validation_error
from models.status import PipelineState, TriggeredBy

# Constants for validation
DEFAULT_LIMIT = 50
MIN_LIMIT = 1
MAX_LIMIT = 500
MAX_IDENTIFIER_LENGTH = 128
MAX_TEXT_LENGTH = 4000


def validate_identifier(value: Any, field_name: str) -> str:
    """
    Validate a job/candidate/external identifier.

    Args:
        value: Raw identifier value
        field_name: Field name used in error messages

    Returns:
        The identifier with surrounding whitespace removed

    Raises:
        ToolError: If the identifier is missing, not a string, empty or too long
    """
    if value is None:
        raise create_validation_error(f"Missing required parameter: '{field_name}'")

    if not isinstance(value, str):
        raise create_validation_error(
            f"Invalid {field_name} type: expected string, got {type(value).__name__}"
        )

    stripped = value.strip()
    if not stripped:
        raise create_validation_error(f"Invalid {field_name}: cannot be empty")

    if len(stripped) > MAX_IDENTIFIER_LENGTH:
        raise create_validation_error(
            f"Invalid {field_name}: exceeds maximum length of {MAX_IDENTIFIER_LENGTH}"
        )

    return stripped


def validate_optional_text(value: Any, field_name: str) -> Optional[str]:
    """
    Validate optional free-text fields (notes, reasons).

    Empty or whitespace-only strings are normalised to None.

    Raises:
        ToolError: If the value is not a string or exceeds MAX_TEXT_LENGTH
    """
    if value is None:
        return None

    if not isinstance(value, str):
        raise create_validation_error(
            f"Invalid {field_name} type: expected string, got {type(value).__name__}"
        )

    if not value.strip():
        return None

    if len(value) > MAX_TEXT_LENGTH:
        raise create_validation_error(
            f"Invalid {field_name}: exceeds maximum length of {MAX_TEXT_LENGTH}"
        )

    return value


def validate_state(state: Any, field_name: str = "state") -> PipelineState:
    """
    Validate a pipeline stage name.

    Matching is case-sensitive against the canonical upper-case names,
    after trimming surrounding whitespace.

    Args:
        state: Raw stage value
        field_name: Field name used in error messages

    Returns:
        The matching PipelineState

    Raises:
        ToolError: If the value is not a known stage
    """
    if isinstance(state, PipelineState):
        return state

    if state is None:
        raise create_validation_error(f"Missing required parameter: '{field_name}'")

    if not isinstance(state, str):
        raise create_validation_error(
            f"Invalid {field_name} type: expected string, got {type(state).__name__}"
        )

    try:
        return PipelineState(state.strip())
    except ValueError:
        raise create_validation_error(
            f"Invalid {field_name}: '{state}' is not a pipeline stage"
        ) from None


def validate_triggered_by(triggered_by: Any) -> TriggeredBy:
    """
    Validate the trigger kind of a transition request.

    Raises:
        ToolError: If the value is not one of agent, human, webhook
    """
    if isinstance(triggered_by, TriggeredBy):
        return triggered_by

    if triggered_by is None:
        raise create_validation_error("Missing required parameter: 'triggered_by'")

    if not isinstance(triggered_by, str):
        raise create_validation_error(
            f"Invalid triggered_by type: expected string, got {type(triggered_by).__name__}"
        )

    try:
        return TriggeredBy(triggered_by.strip().lower())
    except ValueError:
        allowed = ", ".join(t.value for t in TriggeredBy)
        raise create_validation_error(
            f"Invalid triggered_by: '{triggered_by}'. Allowed values: {allowed}"
        ) from None


def validate_limit(limit: Optional[int]) -> int:
    """
    Validate the limit parameter.

    Args:
        limit: The requested batch size (None for default)

    Returns:
        Validated limit value

    Raises:
        ToolError: If limit is invalid
    """
    # Use default if not provided
    if limit is None:
        return DEFAULT_LIMIT

    # Check type (bool is a subclass of int in Python, reject explicitly)
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise create_validation_error(
            f"Invalid limit type: expected integer, got {type(limit).__name__}"
        )

    # Check range
    if limit < MIN_LIMIT:
        raise create_validation_error(f"Invalid limit: {limit} is below minimum of {MIN_LIMIT}")

    if limit > MAX_LIMIT:
        raise create_validation_error(f"Invalid limit: {limit} exceeds maximum of {MAX_LIMIT}")

    return limit


def format_utc_timestamp(moment: datetime) -> str:
    """Format an aware datetime as ``YYYY-MM-DDTHH:MM:SS.ffffffZ``."""
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds").replace(
        "+00:00", "Z"
    )


def parse_utc_timestamp(value: str) -> datetime:
    """Parse a timestamp produced by ``format_utc_timestamp``."""
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def get_current_utc_timestamp() -> str:
    """
    Generate a UTC timestamp in ISO 8601 format with microsecond precision.

    Example: 2026-02-04T03:47:36.966123Z

    Returns:
        ISO 8601 UTC timestamp string with microsecond precision and Z suffix
    """
    return format_utc_timestamp(datetime.now(timezone.utc))


def next_commit_timestamp(previous: Optional[str]) -> str:
    """
    Produce a commit timestamp strictly later than ``previous``.

    ``updated_at`` is the optimistic-concurrency token, so two commits on the
    same record must never share a value even when they land within the same
    clock tick (or the clock steps backwards).

    Args:
        previous: The record's current ``updated_at`` (None for new records)

    Returns:
        Timestamp string strictly greater than ``previous``
    """
    now = datetime.now(timezone.utc)
    if previous:
        floor = parse_utc_timestamp(previous) + timedelta(microseconds=1)
        if now < floor:
            now = floor
    return format_utc_timestamp(now)

"""
MCP tool handler for request_transition.

The generic trigger entry point: agents, humans and webhooks all move a
record through this one gate. The record is re-read, the transition is
validated against the transition table, and the commit is conditioned on
the record not having changed in between.
"""

from typing import Any, Dict

from pydantic import ValidationError

from config import get_config
from models.errors import ToolError, create_internal_error
from schemas.pipeline import TransitionMeta
from schemas.records import RequestTransitionRequest, TransitionResponse
from utils.pydantic_error_mapper import map_pydantic_validation_error
from utils.validation import (
    validate_identifier,
    validate_optional_text,
    validate_state,
    validate_triggered_by,
)


def request_transition(args: Dict[str, Any]) -> Dict[str, Any]:
    """
    Move a pipeline record to a new stage.

    Args:
        args: Dictionary containing parameters:
            - job_id (str): Job identifier
            - candidate_id (str): Candidate identifier
            - to_state (str): Target stage, e.g. "CV_SUBMITTED"
            - triggered_by (str): "agent", "human" or "webhook"
            - actor_id (str, optional): Who requested the change
            - notes (str, optional): Replaces the record's agent_notes
            - rejection_reason (str, optional): Replaces the record's rejection_reason
            - db_path (str, optional): Database path override

    Returns:
        Dictionary with structure:
        {
            "record": {...},       # Record after the commit
            "event": {...},        # Appended audit event
            "sync": str,           # "ok", "failed" or "skipped"
            "sync_error": {...}    # Present when sync failed; commit still stands
        }

        On error, returns:
        {
            "error": {
                "code": str,        # VALIDATION_ERROR, RECORD_NOT_FOUND, INVALID_TRANSITION,
                                    # STALE_RECORD, DB_ERROR, INTERNAL_ERROR
                "message": str,
                "retryable": bool   # true for STALE_RECORD: re-read and decide again
            }
        }
    """
    try:
        request = RequestTransitionRequest.model_validate(args)
        job_id = validate_identifier(request.job_id, "job_id")
        candidate_id = validate_identifier(request.candidate_id, "candidate_id")
        to_state = validate_state(request.to_state, "to_state")
        meta = TransitionMeta(
            triggered_by=validate_triggered_by(request.triggered_by),
            actor_id=validate_optional_text(request.actor_id, "actor_id"),
            notes=validate_optional_text(request.notes, "notes"),
            rejection_reason=validate_optional_text(request.rejection_reason, "rejection_reason"),
        )

        machine = get_config().build_state_machine(request.db_path)
        outcome = machine.request_transition(job_id, candidate_id, to_state, meta)
        return TransitionResponse(**outcome.to_dict()).model_dump(exclude_none=True)

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except ToolError as e:
        return e.to_dict()

    except Exception as e:
        internal_error = create_internal_error(message=str(e), original_error=e)
        return internal_error.to_dict()

"""MCP tool handler for list_transition_events (audit ledger queries)."""

from typing import Any, Dict

from pydantic import ValidationError

from db.pipeline_store import PipelineStore
from models.errors import ToolError, create_internal_error
from schemas.records import ListTransitionEventsRequest, TransitionEventsResponse
from utils.pydantic_error_mapper import map_pydantic_validation_error
from utils.validation import validate_identifier


def list_transition_events(args: Dict[str, Any]) -> Dict[str, Any]:
    """
    List audit events for a job, or for one (job_id, candidate_id) pair.

    Args:
        args: Dictionary containing parameters:
            - job_id (str): Job identifier
            - candidate_id (str, optional): Narrow to one candidate
            - db_path (str, optional): Database path override

    Returns:
        Dictionary with structure:
        {
            "job_id": str,
            "candidate_id": str,   # Present when filtered
            "count": int,
            "events": [...]        # Commit order
        }

        On error, returns {"error": {"code", "message", "retryable"}}.
    """
    try:
        request = ListTransitionEventsRequest.model_validate(args)
        job_id = validate_identifier(request.job_id, "job_id")
        candidate_id = (
            validate_identifier(request.candidate_id, "candidate_id")
            if request.candidate_id is not None
            else None
        )

        with PipelineStore(request.db_path) as store:
            events = store.list_events(job_id, candidate_id)

        return TransitionEventsResponse(
            job_id=job_id,
            candidate_id=candidate_id,
            count=len(events),
            events=[event.model_dump(mode="json") for event in events],
        ).model_dump(exclude_none=True)

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except ToolError as e:
        return e.to_dict()

    except Exception as e:
        internal_error = create_internal_error(message=str(e), original_error=e)
        return internal_error.to_dict()

"""MCP tool handler for record_rejection (feedback store append)."""

from typing import Any, Dict

from pydantic import ValidationError

from models.errors import ToolError, create_internal_error, create_validation_error
from schemas.feedback import RecordRejectionRequest, RecordRejectionResponse
from utils.feedback import record_rejection as append_rejection
from utils.pydantic_error_mapper import map_pydantic_validation_error
from utils.validation import validate_identifier, validate_optional_text, validate_state


def record_rejection(args: Dict[str, Any]) -> Dict[str, Any]:
    """
    Append a rejection reason for a (job_id, candidate_id) pair.

    Does not change the pipeline record; use request_transition or
    mark_cv_rejected for that.

    Args:
        args: Dictionary containing parameters:
            - job_id (str): Job identifier
            - candidate_id (str): Candidate identifier
            - stage (str): Stage at which the rejection happened
            - reason (str): Rejection reason
            - db_path (str, optional): Database path override

    Returns:
        {"rejection": {"job_id", "candidate_id", "stage", "reason", "timestamp"}}

        On error, returns {"error": {"code", "message", "retryable"}}.
    """
    try:
        request = RecordRejectionRequest.model_validate(args)
        job_id = validate_identifier(request.job_id, "job_id")
        candidate_id = validate_identifier(request.candidate_id, "candidate_id")
        stage = validate_state(request.stage, "stage")
        reason = validate_optional_text(request.reason, "reason")
        if reason is None:
            raise create_validation_error("Invalid reason: cannot be empty")

        rejection = append_rejection(job_id, candidate_id, stage, reason, request.db_path)
        return RecordRejectionResponse(rejection=rejection.model_dump(mode="json")).model_dump()

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except ToolError as e:
        return e.to_dict()

    except Exception as e:
        internal_error = create_internal_error(message=str(e), original_error=e)
        return internal_error.to_dict()

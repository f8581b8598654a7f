"""
MCP tool handler for mark_cv_rejected.

Client HR rejected a submitted CV: the record goes to CV_REJECTED, the
reason is stored for future scoring on the same job, and the record loops
back to SOURCING.
"""

from typing import Any, Dict

from pydantic import ValidationError

from config import get_config
from models.errors import ToolError, create_internal_error, create_validation_error
from schemas.feedback import MarkCvRejectedRequest, MarkCvRejectedResponse
from schemas.pipeline import record_to_dict
from utils.orchestrator import PipelineOrchestrator
from utils.pydantic_error_mapper import map_pydantic_validation_error
from utils.validation import validate_identifier, validate_optional_text


def mark_cv_rejected(args: Dict[str, Any]) -> Dict[str, Any]:
    """
    Record a CV rejection and route the record back to sourcing.

    Args:
        args: Dictionary containing parameters:
            - job_id (str): Job identifier
            - candidate_id (str): Candidate identifier
            - reason (str): Rejection reason given by the client
            - db_path (str, optional): Database path override

    Returns:
        Dictionary with structure:
        {
            "record": {...},             # Record after the loop-back (SOURCING)
            "rejection_recorded": true
        }

        On error, returns {"error": {"code", "message", "retryable"}}.
        INVALID_TRANSITION when the record is not in CV_SUBMITTED.
    """
    try:
        request = MarkCvRejectedRequest.model_validate(args)
        job_id = validate_identifier(request.job_id, "job_id")
        candidate_id = validate_identifier(request.candidate_id, "candidate_id")
        reason = validate_optional_text(request.reason, "reason")
        if reason is None:
            raise create_validation_error("Invalid reason: cannot be empty")

        machine = get_config().build_state_machine(request.db_path)
        orchestrator = PipelineOrchestrator(machine)
        record = orchestrator.mark_cv_rejected(machine.get_record(job_id, candidate_id), reason)

        return MarkCvRejectedResponse(
            record=record_to_dict(record), rejection_recorded=True
        ).model_dump()

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except ToolError as e:
        return e.to_dict()

    except Exception as e:
        internal_error = create_internal_error(message=str(e), original_error=e)
        return internal_error.to_dict()

"""
MCP tool handler for get_pipeline_record.

Read-only view of one (job_id, candidate_id) record together with the
stages it may legally move to next.
"""

from typing import Any, Dict

from pydantic import ValidationError

from config import get_config
from models.errors import ToolError, create_internal_error
from schemas.pipeline import PipelineRecord, record_to_dict
from schemas.records import GetPipelineRecordRequest, RecordResponse
from utils.pydantic_error_mapper import map_pydantic_validation_error
from utils.state_machine import is_terminal, next_states
from utils.validation import validate_identifier


def build_record_response(record: PipelineRecord) -> Dict[str, Any]:
    """Serialize a record with its legal successors."""
    return RecordResponse(
        record=record_to_dict(record),
        allowed_next_states=[state.value for state in next_states(record.state)],
        is_terminal=is_terminal(record.state),
        local_only=record.is_local_only,
    ).model_dump()


def get_pipeline_record(args: Dict[str, Any]) -> Dict[str, Any]:
    """
    Fetch the current pipeline record for a (job_id, candidate_id) pair.

    Args:
        args: Dictionary containing parameters:
            - job_id (str): Job identifier
            - candidate_id (str): Candidate identifier
            - db_path (str, optional): Database path override

    Returns:
        Dictionary with structure:
        {
            "record": {...},               # Current PipelineRecord
            "allowed_next_states": [str],  # Legal successors, table order
            "is_terminal": bool,
            "local_only": bool             # True when sync is skipped
        }

        On error, returns:
        {
            "error": {
                "code": str,        # VALIDATION_ERROR, RECORD_NOT_FOUND, DB_ERROR, INTERNAL_ERROR
                "message": str,
                "retryable": bool
            }
        }
    """
    try:
        request = GetPipelineRecordRequest.model_validate(args)
        job_id = validate_identifier(request.job_id, "job_id")
        candidate_id = validate_identifier(request.candidate_id, "candidate_id")

        machine = get_config().build_state_machine(request.db_path)
        record = machine.get_record(job_id, candidate_id)
        return build_record_response(record)

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except ToolError as e:
        return e.to_dict()

    except Exception as e:
        internal_error = create_internal_error(message=str(e), original_error=e)
        return internal_error.to_dict()

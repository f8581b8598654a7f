"""
MCP tool handler for create_pipeline_record.

Creates the record for a new (job_id, candidate_id) pair at JD_RECEIVED.
Records without both external references stay local-only and are never
pushed to the system of record.
"""

import logging
from typing import Any, Dict

from pydantic import ValidationError

from config import get_config
from models.errors import ToolError, create_internal_error
from schemas.records import CreatePipelineRecordRequest
from tools.get_pipeline_record import build_record_response
from utils.pydantic_error_mapper import map_pydantic_validation_error
from utils.validation import validate_identifier

logger = logging.getLogger(__name__)


def create_pipeline_record(args: Dict[str, Any]) -> Dict[str, Any]:
    """
    Create a pipeline record.

    Args:
        args: Dictionary containing parameters:
            - job_id (str): Job identifier
            - candidate_id (str): Candidate identifier
            - external_job_ref (str, optional): System-of-record job id
            - external_candidate_ref (str, optional): System-of-record candidate id
            - db_path (str, optional): Database path override

    Returns:
        Same structure as get_pipeline_record for the new record.

        On error, returns:
        {
            "error": {
                "code": str,        # VALIDATION_ERROR, RECORD_EXISTS, DB_ERROR, INTERNAL_ERROR
                "message": str,
                "retryable": bool
            }
        }
    """
    try:
        request = CreatePipelineRecordRequest.model_validate(args)
        job_id = validate_identifier(request.job_id, "job_id")
        candidate_id = validate_identifier(request.candidate_id, "candidate_id")
        external_job_ref = (
            validate_identifier(request.external_job_ref, "external_job_ref")
            if request.external_job_ref is not None
            else None
        )
        external_candidate_ref = (
            validate_identifier(request.external_candidate_ref, "external_candidate_ref")
            if request.external_candidate_ref is not None
            else None
        )
        if bool(external_job_ref) != bool(external_candidate_ref):
            logger.warning(
                "Only one external reference given for (%s, %s); record is local-only",
                job_id,
                candidate_id,
            )

        machine = get_config().build_state_machine(request.db_path)
        record = machine.create_record(
            job_id,
            candidate_id,
            external_job_ref=external_job_ref,
            external_candidate_ref=external_candidate_ref,
        )
        return build_record_response(record)

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except ToolError as e:
        return e.to_dict()

    except Exception as e:
        internal_error = create_internal_error(message=str(e), original_error=e)
        return internal_error.to_dict()

"""MCP tool handler for list_rejections (feedback store queries)."""

from typing import Any, Dict

from pydantic import ValidationError

from models.errors import ToolError, create_internal_error, create_validation_error
from schemas.feedback import ListRejectionsRequest, ListRejectionsResponse
from utils.feedback import list_rejections as load_rejections
from utils.feedback import summarize_rejections
from utils.pydantic_error_mapper import map_pydantic_validation_error
from utils.validation import validate_identifier


def list_rejections(args: Dict[str, Any]) -> Dict[str, Any]:
    """
    List rejection history for a job, optionally with an aggregate summary.

    Args:
        args: Dictionary containing parameters:
            - job_id (str): Job identifier
            - include_summary (bool, optional): Add the by-stage / top-reason
              summary (default: False)
            - min_rejections (int, optional): Summary threshold (default: 2)
            - db_path (str, optional): Database path override

    Returns:
        Dictionary with structure:
        {
            "job_id": str,
            "count": int,
            "rejections": [...],
            "summary": {...}   # Present when requested and above threshold
        }

        On error, returns {"error": {"code", "message", "retryable"}}.
    """
    try:
        request = ListRejectionsRequest.model_validate(args)
        job_id = validate_identifier(request.job_id, "job_id")
        if request.min_rejections < 1:
            raise create_validation_error(
                f"Invalid min_rejections: {request.min_rejections} is below minimum of 1"
            )

        rejections = load_rejections(job_id, request.db_path)
        summary = None
        if request.include_summary:
            summary = summarize_rejections(job_id, request.min_rejections, request.db_path)

        return ListRejectionsResponse(
            job_id=job_id,
            count=len(rejections),
            rejections=[r.model_dump(mode="json") for r in rejections],
            summary=summary,
        ).model_dump(exclude_none=True)

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except ToolError as e:
        return e.to_dict()

    except Exception as e:
        internal_error = create_internal_error(message=str(e), original_error=e)
        return internal_error.to_dict()

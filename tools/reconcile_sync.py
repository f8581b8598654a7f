"""
MCP tool handler for reconcile_sync.

Re-drives system-of-record pushes that failed after their local commit.
Meant to be called periodically (cron or agent loop); dry_run only reports
which records are out of sync.
"""

from typing import Any, Dict, Optional

from pydantic import ValidationError

from config import get_config
from models.errors import ToolError, create_internal_error, create_validation_error
from schemas.sync import ReconcileSyncRequest, ReconcileSyncResponse
from utils.pydantic_error_mapper import map_pydantic_validation_error
from utils.sync_reconciler import list_out_of_sync, reconcile_pending_syncs
from utils.validation import validate_limit


def reconcile_sync(args: Dict[str, Any], sync_adapter: Optional[Any] = None) -> Dict[str, Any]:
    """
    Reconcile pending sync failures.

    Args:
        args: Dictionary containing parameters:
            - limit (int, optional): Records to push this run, 1-500 (default: 50)
            - max_attempts (int, optional): Retry ceiling per record
              (default: RECRUITFLOW_SYNC_MAX_ATTEMPTS)
            - dry_run (bool, optional): Only list out-of-sync records (default: False)
            - db_path (str, optional): Database path override
        sync_adapter: Adapter override; defaults to the configured ATS adapter

    Returns:
        Dictionary with structure:
        {
            "dry_run": bool,
            "out_of_sync": [...],   # Records with pending outbox rows before the run
            "attempted": int,
            "resolved": int,
            "failed": int,
            "exhausted": int,
            "results": [...]
        }

        On error, returns {"error": {"code", "message", "retryable"}}.
        VALIDATION_ERROR when sync is not configured and dry_run is false.
    """
    try:
        request = ReconcileSyncRequest.model_validate(args)
        config = get_config()
        limit = validate_limit(request.limit)
        max_attempts = request.max_attempts
        if max_attempts is None:
            max_attempts = config.sync_max_attempts
        if max_attempts < 1:
            raise create_validation_error(
                f"Invalid max_attempts: {max_attempts} is below minimum of 1"
            )

        out_of_sync = list_out_of_sync(request.db_path)
        if request.dry_run:
            return ReconcileSyncResponse(dry_run=True, out_of_sync=out_of_sync).model_dump()

        adapter = sync_adapter if sync_adapter is not None else config.get_sync_adapter()
        if adapter is None:
            raise create_validation_error(
                "System-of-record sync is not configured (set RECRUITFLOW_ATS_BASE_URL)"
            )

        summary = reconcile_pending_syncs(
            adapter, db_path=request.db_path, limit=limit, max_attempts=max_attempts
        )
        return ReconcileSyncResponse(dry_run=False, out_of_sync=out_of_sync, **summary).model_dump()

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except ToolError as e:
        return e.to_dict()

    except Exception as e:
        internal_error = create_internal_error(message=str(e), original_error=e)
        return internal_error.to_dict()

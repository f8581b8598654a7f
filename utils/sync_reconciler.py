"""
Reconciliation of system-of-record pushes that failed after a local commit.

Failed pushes sit in the ``sync_failures`` outbox. Each run collapses the
pending rows to one per record and pushes the record's *current* state, so
a burst of failed transitions costs a single request. Only rows listed at the
start of the run are resolved; a failure queued during a push stays pending.
Rows that reached ``max_attempts`` are reported as exhausted and left for an operator.
"""

import logging
from typing import Any, Dict, List, Optional

from db.pipeline_store import PipelineStore
from models.errors import SyncError, create_sync_error, sanitize_collaborator_error
from schemas.pipeline import SyncFailure
from utils.validation import get_current_utc_timestamp

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5


def list_out_of_sync(db_path: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Answer "which records are out of sync with the system of record".

    Returns:
        One entry per record with pending outbox rows, oldest first:
        ``{"job_id", "candidate_id", "pending", "attempt_count", "last_error",
        "since"}``
    """
    with PipelineStore(db_path) as store:
        pending = store.list_pending_sync_failures()

    grouped: Dict[tuple, Dict[str, Any]] = {}
    for failure in pending:
        key = (failure.job_id, failure.candidate_id)
        entry = grouped.get(key)
        if entry is None:
            grouped[key] = {
                "job_id": failure.job_id,
                "candidate_id": failure.candidate_id,
                "pending": 1,
                "attempt_count": failure.attempt_count,
                "last_error": failure.error,
                "since": failure.created_at,
            }
        else:
            entry["pending"] += 1
            entry["attempt_count"] = max(entry["attempt_count"], failure.attempt_count)
            entry["last_error"] = failure.error
    return list(grouped.values())


def _latest_per_record(pending: List[SyncFailure]) -> List[SyncFailure]:
    latest: Dict[tuple, SyncFailure] = {}
    for failure in pending:
        latest[(failure.job_id, failure.candidate_id)] = failure
    return list(latest.values())


def reconcile_pending_syncs(
    sync_adapter: Any,
    db_path: Optional[str] = None,
    limit: Optional[int] = None,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> Dict[str, Any]:
    """
    Re-drive pending outbox rows against the system of record.

    Args:
        sync_adapter: Adapter with the ``AtsSyncAdapter.push`` signature
        db_path: Optional database path override
        limit: Maximum number of records to push in this run
        max_attempts: Rows at or above this attempt count are not retried

    Returns:
        Summary dict: ``{"attempted", "resolved", "failed", "exhausted",
        "results": [{"job_id", "candidate_id", "state", "outcome", "error"?}]}``
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    with PipelineStore(db_path) as store:
        pending = store.list_pending_sync_failures()

    summary: Dict[str, Any] = {
        "attempted": 0,
        "resolved": 0,
        "failed": 0,
        "exhausted": 0,
        "results": [],
    }

    for failure in _latest_per_record(pending):
        if limit is not None and summary["attempted"] >= limit:
            break

        result: Dict[str, Any] = {
            "job_id": failure.job_id,
            "candidate_id": failure.candidate_id,
        }
        if failure.attempt_count >= max_attempts:
            summary["exhausted"] += 1
            result.update(state=failure.state.value, outcome="exhausted", error=failure.error)
            summary["results"].append(result)
            continue

        with PipelineStore(db_path) as store:
            record = store.get_record(failure.job_id, failure.candidate_id)
            if record is None or record.is_local_only:
                # Nothing left to push for this pair
                store.resolve_sync_failures(
                    failure.job_id,
                    failure.candidate_id,
                    get_current_utc_timestamp(),
                    up_to_id=failure.id,
                )
                result.update(state=failure.state.value, outcome="dropped")
                summary["results"].append(result)
                continue

        summary["attempted"] += 1
        result["state"] = record.state.value
        try:
            sync_adapter.push(
                record.external_job_ref,
                record.external_candidate_ref,
                record.state,
                note=record.agent_notes,
            )
        except Exception as e:
            error = e if isinstance(e, SyncError) else create_sync_error(
                sanitize_collaborator_error(e), original_error=e
            )
            with PipelineStore(db_path) as store:
                store.bump_sync_failure(failure.id, error.message, get_current_utc_timestamp())
            logger.warning(
                "Reconciliation push failed (job_id=%s, candidate_id=%s, attempt=%d): %s",
                failure.job_id,
                failure.candidate_id,
                failure.attempt_count + 1,
                error.message,
            )
            summary["failed"] += 1
            result.update(outcome="failed", error=error.message)
            summary["results"].append(result)
            continue

        with PipelineStore(db_path) as store:
            resolved = store.resolve_sync_failures(
                failure.job_id,
                failure.candidate_id,
                get_current_utc_timestamp(),
                up_to_id=failure.id,
            )
        logger.info(
            "Reconciled %s (job_id=%s, candidate_id=%s, rows=%d)",
            record.state.value,
            failure.job_id,
            failure.candidate_id,
            resolved,
        )
        summary["resolved"] += 1
        result["outcome"] = "resolved"
        summary["results"].append(result)

    return summary

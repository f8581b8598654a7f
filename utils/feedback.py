"""
Escalation / feedback loop: rejection reasons captured at loss states.

Rows are append-only and keyed by job so later sourcing and scoring for the
same job can learn from earlier rejections.
"""

import logging
from collections import Counter
from typing import Any, Dict, List, Optional

from db.pipeline_store import PipelineStore
from models.errors import create_validation_error
from models.status import PipelineState
from schemas.pipeline import RejectionRecord
from utils.validation import get_current_utc_timestamp

logger = logging.getLogger(__name__)

# Fewer rejections than this carry no usable signal
DEFAULT_MIN_REJECTIONS = 2
TOP_REASONS = 5


def record_rejection(
    job_id: str,
    candidate_id: str,
    stage: PipelineState,
    reason: str,
    db_path: Optional[str] = None,
) -> RejectionRecord:
    """
    Append a rejection row to the feedback store.

    Args:
        job_id: Job the candidate was rejected for
        candidate_id: Rejected candidate
        stage: Stage at which the rejection happened
        reason: Free-text reason given by the client or candidate
        db_path: Optional database path override

    Returns:
        The stored RejectionRecord

    Raises:
        ToolError: VALIDATION_ERROR for an empty reason, DB_ERROR on write failure
    """
    if not reason or not reason.strip():
        raise create_validation_error("Invalid reason: cannot be empty")

    rejection = RejectionRecord(
        job_id=job_id,
        candidate_id=candidate_id,
        stage=stage,
        reason=reason.strip(),
        timestamp=get_current_utc_timestamp(),
    )
    with PipelineStore(db_path) as store:
        store.append_rejection(rejection)

    logger.info(
        "Rejection logged (job_id=%s, candidate_id=%s, stage=%s): %s",
        job_id,
        candidate_id,
        stage.value,
        rejection.reason[:80],
    )
    return rejection


def list_rejections(job_id: str, db_path: Optional[str] = None) -> List[RejectionRecord]:
    """Return every rejection recorded for a job, oldest first."""
    with PipelineStore(db_path) as store:
        return store.list_rejections(job_id)


def summarize_rejections(
    job_id: str,
    min_rejections: int = DEFAULT_MIN_REJECTIONS,
    db_path: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """
    Aggregate a job's rejection history for the scoring collaborator.

    Returns None when the job has fewer than ``min_rejections`` rows.
    Otherwise returns::

        {
            "job_id": ...,
            "total": 4,
            "by_stage": {"CV_REJECTED": 3, "REJECTED": 1},
            "top_reasons": [{"reason": "...", "count": 2}, ...],
            "history": ["[CV_REJECTED] reason", ...],
        }
    """
    rejections = list_rejections(job_id, db_path)
    if len(rejections) < min_rejections:
        logger.info(
            "Not enough rejections to analyze for job %s (%d < %d)",
            job_id,
            len(rejections),
            min_rejections,
        )
        return None

    by_stage = Counter(r.stage.value for r in rejections)
    # Reasons compare case-insensitively; the first spelling seen is reported
    spellings: Dict[str, str] = {}
    reason_counts: Counter = Counter()
    for rejection in rejections:
        key = rejection.reason.casefold()
        spellings.setdefault(key, rejection.reason)
        reason_counts[key] += 1

    return {
        "job_id": job_id,
        "total": len(rejections),
        "by_stage": dict(by_stage),
        "top_reasons": [
            {"reason": spellings[key], "count": count}
            for key, count in reason_counts.most_common(TOP_REASONS)
        ],
        "history": [f"[{r.stage.value}] {r.reason}" for r in rejections],
    }

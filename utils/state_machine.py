"""
Pipeline state machine: the single gate through which records change stage.

Policy rules:
1. A transition is legal iff the target is in ``TRANSITION_TABLE[current]``
2. Terminal states have no successors, so terminal records never change
3. ``INTERVIEW_ROUNDS -> INTERVIEW_ROUNDS`` is bounded by a configurable
   maximum round count
4. The commit is a compare-and-swap on the record's ``(state, updated_at)``;
   a lost race is reported as ``StaleRecordError``, never retried here
5. Every commit appends exactly one audit event in the same transaction
6. The system-of-record push runs after the commit; its failure is logged,
   queued in the sync outbox and returned, but never rolls the commit back
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from db.pipeline_store import PipelineStore
from models.errors import (
    SyncError,
    create_invalid_transition_error,
    create_record_not_found_error,
    create_sync_error,
    create_validation_error,
    sanitize_collaborator_error,
)
from models.status import INITIAL_STATE, TERMINAL_STATES, PipelineState
from models.transitions import TRANSITION_TABLE
from schemas.pipeline import PipelineRecord, TransitionEvent, TransitionMeta, record_to_dict
from utils.validation import get_current_utc_timestamp, next_commit_timestamp, validate_state

logger = logging.getLogger(__name__)

DEFAULT_MAX_INTERVIEW_ROUNDS = 5


def can_transition(from_state: PipelineState, to_state: PipelineState) -> bool:
    """Pure lookup: is ``to_state`` a legal successor of ``from_state``?"""
    return to_state in TRANSITION_TABLE.get(from_state, ())


def next_states(from_state: PipelineState) -> Tuple[PipelineState, ...]:
    """Legal successors in table order; empty exactly for terminal states."""
    return TRANSITION_TABLE.get(from_state, ())


def is_terminal(state: PipelineState) -> bool:
    """True when the state has no legal successors."""
    return not TRANSITION_TABLE.get(state, ())


class TransitionOutcome:
    """Result of a committed transition."""

    def __init__(
        self,
        record: PipelineRecord,
        event: TransitionEvent,
        sync_error: Optional[SyncError] = None,
        sync_skipped: bool = False,
    ):
        """
        Initialize a transition outcome.

        Args:
            record: The record after the commit
            event: The appended audit event
            sync_error: System-of-record failure, if the push failed
            sync_skipped: True when the record is local-only or sync is disabled
        """
        self.record = record
        self.event = event
        self.sync_error = sync_error
        self.sync_skipped = sync_skipped

    def to_dict(self) -> Dict[str, Any]:
        """Convert outcome to dictionary format."""
        result: Dict[str, Any] = {
            "record": record_to_dict(self.record),
            "event": self.event.model_dump(mode="json"),
            "sync": "skipped" if self.sync_skipped else ("failed" if self.sync_error else "ok"),
        }
        if self.sync_error is not None:
            result["sync_error"] = self.sync_error.to_dict()["error"]
        return result


MetaLike = Union[TransitionMeta, Mapping[str, Any]]


class PipelineStateMachine:
    """
    Validates and commits single transitions against the record store.

    Usage:
        machine = PipelineStateMachine(db_path, sync_adapter=adapter)
        record = machine.create_record("job-1", "cand-7")
        record = machine.transition(
            record, PipelineState.JD_PROCESSED, TransitionMeta(triggered_by="agent")
        )
    """

    def __init__(
        self,
        db_path: Optional[str] = None,
        sync_adapter: Any = None,
        max_interview_rounds: int = DEFAULT_MAX_INTERVIEW_ROUNDS,
    ):
        """
        Initialize the state machine.

        Args:
            db_path: Optional database path override
            sync_adapter: Object with ``push(job_ref, candidate_ref, state, note=...,
                actor_id=..., triggered_by=...)``; None disables sync
            max_interview_rounds: Highest ``interview_round`` reachable through
                the ``INTERVIEW_ROUNDS`` self-loop
        """
        if max_interview_rounds < 1:
            raise ValueError("max_interview_rounds must be at least 1")
        self.db_path = db_path
        self.sync_adapter = sync_adapter
        self.max_interview_rounds = max_interview_rounds

    # ------------------------------------------------------------------
    # Pure lookups
    # ------------------------------------------------------------------

    def can_transition(self, from_state: PipelineState, to_state: PipelineState) -> bool:
        return can_transition(from_state, to_state)

    def next_states(self, from_state: PipelineState) -> Tuple[PipelineState, ...]:
        return next_states(from_state)

    def is_terminal(self, state: PipelineState) -> bool:
        return is_terminal(state)

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def create_record(
        self,
        job_id: str,
        candidate_id: str,
        external_job_ref: Optional[str] = None,
        external_candidate_ref: Optional[str] = None,
    ) -> PipelineRecord:
        """
        Create and persist a fresh record at the initial state.

        Raises:
            ToolError: RECORD_EXISTS if the pair already has a record
        """
        record = PipelineRecord(
            job_id=job_id,
            candidate_id=candidate_id,
            state=INITIAL_STATE,
            updated_at=get_current_utc_timestamp(),
            interview_round=0,
            external_job_ref=external_job_ref,
            external_candidate_ref=external_candidate_ref,
        )
        with PipelineStore(self.db_path) as store:
            store.insert_record(record)

        logger.info(
            "Pipeline record created (job_id=%s, candidate_id=%s, local_only=%s)",
            job_id,
            candidate_id,
            record.is_local_only,
        )
        return record

    def get_record(self, job_id: str, candidate_id: str) -> PipelineRecord:
        """
        Read the current persisted record.

        Raises:
            RecordNotFoundError: If the pair has no record
        """
        with PipelineStore(self.db_path) as store:
            record = store.get_record(job_id, candidate_id)
        if record is None:
            raise create_record_not_found_error(job_id, candidate_id)
        return record

    def list_events(self, job_id: str, candidate_id: Optional[str] = None) -> List[TransitionEvent]:
        with PipelineStore(self.db_path) as store:
            return store.list_events(job_id, candidate_id)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def check_transition(self, record: PipelineRecord, to_state: PipelineState) -> None:
        """
        Validate a transition against the table and the interview round bound.

        Raises:
            InvalidTransitionError: If the transition is not allowed
        """
        to_state = validate_state(to_state, "to_state")
        allowed = next_states(record.state)
        if to_state not in allowed:
            reason = "Record is closed" if record.state in TERMINAL_STATES else None
            raise create_invalid_transition_error(record.state, to_state, allowed, reason)

        if (
            record.state == PipelineState.INTERVIEW_ROUNDS
            and to_state == PipelineState.INTERVIEW_ROUNDS
            and record.interview_round >= self.max_interview_rounds
        ):
            raise create_invalid_transition_error(
                record.state,
                to_state,
                [s for s in allowed if s != PipelineState.INTERVIEW_ROUNDS],
                f"Interview round limit of {self.max_interview_rounds} reached; "
                "record a decision instead",
            )

    def build_next_record(
        self, record: PipelineRecord, to_state: PipelineState, meta: TransitionMeta
    ) -> PipelineRecord:
        """Compute the post-transition record value (no persistence)."""
        interview_round = record.interview_round
        if to_state == PipelineState.INTERVIEW_ROUNDS:
            if record.state == PipelineState.INTERVIEW_ROUNDS:
                interview_round += 1
            else:
                interview_round = max(interview_round, 1)

        return record.model_copy(
            update={
                "state": to_state,
                "previous_state": record.state,
                "updated_at": next_commit_timestamp(record.updated_at),
                "interview_round": interview_round,
                "agent_notes": meta.notes if meta.notes is not None else record.agent_notes,
                "rejection_reason": (
                    meta.rejection_reason
                    if meta.rejection_reason is not None
                    else record.rejection_reason
                ),
            }
        )

    def commit(
        self, record: PipelineRecord, to_state: PipelineState, meta: MetaLike
    ) -> TransitionOutcome:
        """
        Validate and commit one transition, then push it to the system of record.

        Args:
            record: The record as the caller read it
            to_state: Requested target state
            meta: Trigger metadata (TransitionMeta or equivalent dict)

        Returns:
            TransitionOutcome with the new record, audit event and sync result

        Raises:
            InvalidTransitionError: If ``to_state`` is not a legal successor
            StaleRecordError: If the record changed since ``record`` was read
            RecordNotFoundError: If the record no longer exists
            ToolError: VALIDATION_ERROR if ``to_state`` is not a known stage
        """
        to_state = validate_state(to_state, "to_state")
        meta = _coerce_meta(meta)
        self.check_transition(record, to_state)

        updated = self.build_next_record(record, to_state, meta)
        event = TransitionEvent(
            job_id=record.job_id,
            candidate_id=record.candidate_id,
            from_state=record.state,
            to_state=to_state,
            triggered_by=meta.triggered_by,
            actor_id=meta.actor_id,
            notes=meta.notes,
            timestamp=updated.updated_at,
        )

        with PipelineStore(self.db_path) as store:
            try:
                event = store.commit_transition(record, updated, event)
            except Exception as e:
                logger.info(
                    "Transition %s -> %s not committed (job_id=%s, candidate_id=%s): %s",
                    record.state.value,
                    to_state.value,
                    record.job_id,
                    record.candidate_id,
                    e,
                )
                raise

        logger.info(
            "Transition: %s -> %s (job_id=%s, candidate_id=%s, triggered_by=%s)",
            record.state.value,
            to_state.value,
            record.job_id,
            record.candidate_id,
            meta.triggered_by.value,
        )

        if self.sync_adapter is None or updated.is_local_only:
            return TransitionOutcome(updated, event, sync_skipped=True)

        sync_error = self._push_to_system_of_record(updated, event, meta)
        return TransitionOutcome(updated, event, sync_error=sync_error)

    def transition(
        self, record: PipelineRecord, to_state: PipelineState, meta: MetaLike
    ) -> PipelineRecord:
        """Commit a transition and return only the new record."""
        return self.commit(record, to_state, meta).record

    def request_transition(
        self, job_id: str, candidate_id: str, to_state: PipelineState, meta: MetaLike
    ) -> TransitionOutcome:
        """
        Trigger entry point: read the current record, then commit.

        Raises:
            RecordNotFoundError, InvalidTransitionError, StaleRecordError
        """
        record = self.get_record(job_id, candidate_id)
        return self.commit(record, to_state, meta)

    def _push_to_system_of_record(
        self, record: PipelineRecord, event: TransitionEvent, meta: TransitionMeta
    ) -> Optional[SyncError]:
        try:
            self.sync_adapter.push(
                record.external_job_ref,
                record.external_candidate_ref,
                record.state,
                note=meta.notes,
                actor_id=meta.actor_id,
                triggered_by=meta.triggered_by,
            )
            return None
        except SyncError as e:
            sync_error = e
        except Exception as e:
            sync_error = create_sync_error(sanitize_collaborator_error(e), original_error=e)

        try:
            with PipelineStore(self.db_path) as store:
                failure_id = store.record_sync_failure(
                    record.job_id,
                    record.candidate_id,
                    event.event_id,
                    record.state,
                    meta.notes,
                    sync_error.message,
                    get_current_utc_timestamp(),
                )
            logger.warning(
                "Sync to system of record failed (job_id=%s, candidate_id=%s, state=%s, "
                "outbox_id=%s): %s",
                record.job_id,
                record.candidate_id,
                record.state.value,
                failure_id,
                sync_error.message,
            )
        except Exception:
            logger.exception(
                "Sync failed and could not be queued for reconciliation "
                "(job_id=%s, candidate_id=%s, event_id=%s)",
                record.job_id,
                record.candidate_id,
                event.event_id,
            )
        return sync_error


def _coerce_meta(meta: MetaLike) -> TransitionMeta:
    if isinstance(meta, TransitionMeta):
        return meta
    if isinstance(meta, Mapping):
        return TransitionMeta.model_validate(dict(meta))
    raise create_validation_error(
        f"Invalid transition metadata type: {type(meta).__name__}"
    )

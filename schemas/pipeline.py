"""Pydantic value types for pipeline records, audit events and feedback rows."""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models.status import PipelineState, SyncStatus, TriggeredBy


class PipelineRecord(BaseModel):
    """Current-value view of one (job_id, candidate_id) pair.

    Instances are frozen; the state machine returns a new record for every
    committed transition. ``updated_at`` doubles as the optimistic
    concurrency token.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    job_id: str
    candidate_id: str
    state: PipelineState
    previous_state: Optional[PipelineState] = None
    updated_at: str
    interview_round: int = Field(default=0, ge=0)
    agent_notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    external_job_ref: Optional[str] = None
    external_candidate_ref: Optional[str] = None

    @field_validator("job_id", "candidate_id")
    @classmethod
    def validate_identity(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("cannot be empty")
        return value

    @property
    def is_local_only(self) -> bool:
        """True when the record has no system-of-record foreign keys."""
        return not (self.external_job_ref and self.external_candidate_ref)

    @classmethod
    def from_row(cls, row: Any) -> "PipelineRecord":
        """Build a record from a ``sqlite3.Row`` of ``pipeline_records``."""
        return cls.model_validate({key: row[key] for key in row.keys()})


class TransitionMeta(BaseModel):
    """Caller-supplied metadata attached to a transition request."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    triggered_by: TriggeredBy
    actor_id: Optional[str] = None
    notes: Optional[str] = None
    rejection_reason: Optional[str] = None


class TransitionEvent(BaseModel):
    """Immutable audit entry appended for every committed transition."""

    model_config = ConfigDict(frozen=True)

    event_id: Optional[int] = None
    job_id: str
    candidate_id: str
    from_state: PipelineState
    to_state: PipelineState
    triggered_by: TriggeredBy
    actor_id: Optional[str] = None
    notes: Optional[str] = None
    timestamp: str

    @classmethod
    def from_row(cls, row: Any) -> "TransitionEvent":
        return cls.model_validate({key: row[key] for key in row.keys()})


class RejectionRecord(BaseModel):
    """Feedback row captured at a loss state for the same job's scoring."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    candidate_id: str
    stage: PipelineState
    reason: str
    timestamp: str

    @classmethod
    def from_row(cls, row: Any) -> "RejectionRecord":
        return cls.model_validate({key: row[key] for key in row.keys() if key != "id"})


class PipelineArtifact(BaseModel):
    """Generated artifact persisted so a two-phase stage can resume."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    candidate_id: str
    kind: str
    content: str
    created_at: str

    @classmethod
    def from_row(cls, row: Any) -> "PipelineArtifact":
        return cls.model_validate({key: row[key] for key in row.keys() if key != "id"})


class SyncFailure(BaseModel):
    """Outbox row for a system-of-record push that has not landed yet."""

    model_config = ConfigDict(frozen=True)

    id: int
    job_id: str
    candidate_id: str
    event_id: Optional[int] = None
    state: PipelineState
    note: Optional[str] = None
    error: str
    attempt_count: int
    status: SyncStatus
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, row: Any) -> "SyncFailure":
        return cls.model_validate({key: row[key] for key in row.keys()})


def record_to_dict(record: PipelineRecord) -> Dict[str, Any]:
    """Serialize a record to a JSON-friendly dict (enum values as strings)."""
    return record.model_dump(mode="json")

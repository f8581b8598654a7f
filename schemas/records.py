"""Pydantic schemas for the record-level pipeline tools."""

from __future__ import annotations

from typing import Any, Optional

from schemas.common import DbPathMixin, PairMixin, StrictIgnoreRequest, StrictResponse


class CreatePipelineRecordRequest(PairMixin, DbPathMixin, StrictIgnoreRequest):
    """Request schema for create_pipeline_record."""

    external_job_ref: Optional[str] = None
    external_candidate_ref: Optional[str] = None


class GetPipelineRecordRequest(PairMixin, DbPathMixin, StrictIgnoreRequest):
    """Request schema for get_pipeline_record."""


class RequestTransitionRequest(PairMixin, DbPathMixin, StrictIgnoreRequest):
    """Request schema for request_transition."""

    to_state: str
    triggered_by: str
    actor_id: Optional[str] = None
    notes: Optional[str] = None
    rejection_reason: Optional[str] = None


class ListTransitionEventsRequest(DbPathMixin, StrictIgnoreRequest):
    """Request schema for list_transition_events."""

    job_id: str
    candidate_id: Optional[str] = None


class RecordResponse(StrictResponse):
    """Response schema for create_pipeline_record and get_pipeline_record."""

    record: dict[str, Any]
    allowed_next_states: list[str]
    is_terminal: bool
    local_only: bool


class TransitionResponse(StrictResponse):
    """Response schema for request_transition."""

    record: dict[str, Any]
    event: dict[str, Any]
    sync: str
    sync_error: Optional[dict[str, Any]] = None


class TransitionEventsResponse(StrictResponse):
    """Response schema for list_transition_events."""

    job_id: str
    candidate_id: Optional[str] = None
    count: int
    events: list[dict[str, Any]]

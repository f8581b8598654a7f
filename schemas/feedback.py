"""Pydantic schemas for the rejection feedback tools."""

from __future__ import annotations

from typing import Any, Optional

from schemas.common import DbPathMixin, PairMixin, StrictIgnoreRequest, StrictResponse


class MarkCvRejectedRequest(PairMixin, DbPathMixin, StrictIgnoreRequest):
    """Request schema for mark_cv_rejected."""

    reason: str


class RecordRejectionRequest(PairMixin, DbPathMixin, StrictIgnoreRequest):
    """Request schema for record_rejection."""

    stage: str
    reason: str


class ListRejectionsRequest(DbPathMixin, StrictIgnoreRequest):
    """Request schema for list_rejections."""

    job_id: str
    include_summary: bool = False
    min_rejections: int = 2


class MarkCvRejectedResponse(StrictResponse):
    """Response schema for mark_cv_rejected."""

    record: dict[str, Any]
    rejection_recorded: bool


class RecordRejectionResponse(StrictResponse):
    """Response schema for record_rejection."""

    rejection: dict[str, Any]


class ListRejectionsResponse(StrictResponse):
    """Response schema for list_rejections."""

    job_id: str
    count: int
    rejections: list[dict[str, Any]]
    summary: Optional[dict[str, Any]] = None

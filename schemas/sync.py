"""Pydantic schemas for the reconcile_sync tool."""

from __future__ import annotations

from typing import Any, Optional

from schemas.common import DbPathMixin, StrictIgnoreRequest, StrictResponse


class ReconcileSyncRequest(DbPathMixin, StrictIgnoreRequest):
    """Request schema for reconcile_sync."""

    limit: Optional[int] = None
    max_attempts: Optional[int] = None
    dry_run: bool = False


class ReconcileSyncResponse(StrictResponse):
    """Response schema for reconcile_sync."""

    dry_run: bool
    out_of_sync: list[dict[str, Any]]
    attempted: int = 0
    resolved: int = 0
    failed: int = 0
    exhausted: int = 0
    results: list[dict[str, Any]] = []

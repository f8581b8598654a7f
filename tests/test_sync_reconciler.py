"""
Tests for sync outbox reconciliation and the reconcile_sync tool.
"""

import os
import tempfile

import pytest

from db.pipeline_store import PipelineStore
from models.status import PipelineState, TriggeredBy
from schemas.pipeline import TransitionMeta
from tools.reconcile_sync import reconcile_sync
from utils.state_machine import PipelineStateMachine
from utils.sync_reconciler import list_out_of_sync, reconcile_pending_syncs

S = PipelineState
AGENT = TransitionMeta(triggered_by=TriggeredBy.AGENT)


@pytest.fixture
def temp_db():
    """Create a temporary database path."""
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    yield path
    if os.path.exists(path):
        os.unlink(path)


class FlakyAdapter:
    """Sync adapter double that fails until ``healthy`` is set."""

    def __init__(self, healthy=False):
        self.healthy = healthy
        self.pushes = []

    def push(self, job_ref, candidate_ref, state, note=None, actor_id=None, triggered_by=None):
        self.pushes.append((job_ref, candidate_ref, state))
        if not self.healthy:
            raise ConnectionError("ATS down")


class RacingAdapter:
    """Healthy adapter; during its first push another worker commits with the ATS down."""

    def __init__(self, db_path):
        self.db_path = db_path
        self.pushes = []

    def push(self, job_ref, candidate_ref, state, note=None, actor_id=None, triggered_by=None):
        self.pushes.append(state)
        if len(self.pushes) == 1:
            machine = PipelineStateMachine(self.db_path, sync_adapter=FlakyAdapter())
            machine.transition(machine.get_record("job-1", "cand-1"), S.SOURCING, AGENT)


def queue_failures(db_path, adapter, candidate_id="cand-1", steps=2):
    """Commit ``steps`` transitions for a synced record while the ATS is down."""
    machine = PipelineStateMachine(db_path, sync_adapter=adapter)
    record = machine.create_record("job-1", candidate_id, "J-1", f"C-{candidate_id}")
    for target in (S.JD_PROCESSED, S.SOURCING, S.RESUME_MATCHED)[:steps]:
        record = machine.transition(record, target, AGENT)
    return record


class TestListOutOfSync:
    """Tests for the out-of-sync query."""

    def test_groups_rows_per_record(self, temp_db):
        queue_failures(temp_db, FlakyAdapter(), steps=2)
        queue_failures(temp_db, FlakyAdapter(), candidate_id="cand-2", steps=1)

        entries = list_out_of_sync(temp_db)

        assert [(e["candidate_id"], e["pending"]) for e in entries] == [
            ("cand-1", 2),
            ("cand-2", 1),
        ]
        assert entries[0]["last_error"] == "Sync error: ATS down"

    def test_empty_when_in_sync(self, temp_db):
        queue_failures(temp_db, FlakyAdapter(healthy=True))
        assert list_out_of_sync(temp_db) == []


class TestReconcilePendingSyncs:
    """Tests for re-driving the outbox."""

    def test_pushes_current_state_once_per_record(self, temp_db):
        queue_failures(temp_db, FlakyAdapter(), steps=2)
        adapter = FlakyAdapter(healthy=True)

        summary = reconcile_pending_syncs(adapter, db_path=temp_db)

        assert adapter.pushes == [("J-1", "C-cand-1", S.SOURCING)]
        assert summary["attempted"] == 1
        assert summary["resolved"] == 1
        assert summary["results"][0]["outcome"] == "resolved"
        assert list_out_of_sync(temp_db) == []

    def test_failure_queued_during_push_stays_pending(self, temp_db):
        queue_failures(temp_db, FlakyAdapter(), steps=1)
        adapter = RacingAdapter(temp_db)

        summary = reconcile_pending_syncs(adapter, db_path=temp_db)

        assert adapter.pushes == [S.JD_PROCESSED]
        assert summary["resolved"] == 1
        entries = list_out_of_sync(temp_db)
        assert [(e["candidate_id"], e["pending"]) for e in entries] == [("cand-1", 1)]

        healthy = FlakyAdapter(healthy=True)
        reconcile_pending_syncs(healthy, db_path=temp_db)
        assert healthy.pushes == [("J-1", "C-cand-1", S.SOURCING)]
        assert list_out_of_sync(temp_db) == []

    def test_failure_bumps_attempts(self, temp_db):
        queue_failures(temp_db, FlakyAdapter(), steps=1)

        summary = reconcile_pending_syncs(FlakyAdapter(), db_path=temp_db)

        assert summary["failed"] == 1
        entry = list_out_of_sync(temp_db)[0]
        assert entry["attempt_count"] == 2

    def test_exhausted_rows_are_not_retried(self, temp_db):
        queue_failures(temp_db, FlakyAdapter(), steps=1)
        for _ in range(2):
            reconcile_pending_syncs(FlakyAdapter(), db_path=temp_db, max_attempts=3)

        adapter = FlakyAdapter(healthy=True)
        summary = reconcile_pending_syncs(adapter, db_path=temp_db, max_attempts=3)

        assert adapter.pushes == []
        assert summary["exhausted"] == 1
        assert summary["results"][0]["outcome"] == "exhausted"

    def test_limit(self, temp_db):
        for candidate_id in ("cand-1", "cand-2", "cand-3"):
            queue_failures(temp_db, FlakyAdapter(), candidate_id=candidate_id, steps=1)

        summary = reconcile_pending_syncs(FlakyAdapter(healthy=True), db_path=temp_db, limit=2)

        assert summary["attempted"] == 2
        assert len(list_out_of_sync(temp_db)) == 1

    def test_missing_record_rows_dropped(self, temp_db):
        with PipelineStore(temp_db) as store:
            store.record_sync_failure(
                "job-9", "ghost", None, S.SOURCING, None, "down", "2026-01-01T00:00:00.000000Z"
            )

        adapter = FlakyAdapter(healthy=True)
        summary = reconcile_pending_syncs(adapter, db_path=temp_db)

        assert adapter.pushes == []
        assert summary["results"][0]["outcome"] == "dropped"
        assert list_out_of_sync(temp_db) == []

    def test_invalid_max_attempts(self, temp_db):
        with pytest.raises(ValueError):
            reconcile_pending_syncs(FlakyAdapter(), db_path=temp_db, max_attempts=0)


class TestReconcileSyncTool:
    """Tests for the reconcile_sync MCP tool handler."""

    def test_dry_run_lists_only(self, temp_db):
        queue_failures(temp_db, FlakyAdapter(), steps=1)
        adapter = FlakyAdapter(healthy=True)

        result = reconcile_sync({"db_path": temp_db, "dry_run": True}, sync_adapter=adapter)

        assert result["dry_run"] is True
        assert len(result["out_of_sync"]) == 1
        assert result["attempted"] == 0
        assert adapter.pushes == []

    def test_run_resolves(self, temp_db):
        queue_failures(temp_db, FlakyAdapter(), steps=1)

        result = reconcile_sync({"db_path": temp_db}, sync_adapter=FlakyAdapter(healthy=True))

        assert result["dry_run"] is False
        assert result["resolved"] == 1
        assert len(result["out_of_sync"]) == 1

    def test_not_configured(self, temp_db, monkeypatch):
        monkeypatch.setattr("config.config.ats_base_url", None)
        result = reconcile_sync({"db_path": temp_db})
        assert result["error"]["code"] == "VALIDATION_ERROR"
        assert "not configured" in result["error"]["message"]

    def test_invalid_limit(self, temp_db):
        result = reconcile_sync({"db_path": temp_db, "limit": 0}, sync_adapter=FlakyAdapter())
        assert result["error"]["code"] == "VALIDATION_ERROR"

    def test_invalid_max_attempts(self, temp_db):
        result = reconcile_sync(
            {"db_path": temp_db, "max_attempts": 0}, sync_adapter=FlakyAdapter()
        )
        assert result["error"]["code"] == "VALIDATION_ERROR"
        assert "max_attempts" in result["error"]["message"]

    def test_wrong_type(self, temp_db):
        result = reconcile_sync({"db_path": temp_db, "dry_run": "yes"})
        assert result["error"]["code"] == "VALIDATION_ERROR"

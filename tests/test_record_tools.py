"""
Tests for the record-level MCP tools: create_pipeline_record,
get_pipeline_record, request_transition and list_transition_events.
"""

import os
import tempfile

import pytest

from tools.create_pipeline_record import create_pipeline_record
from tools.get_pipeline_record import get_pipeline_record
from tools.list_transition_events import list_transition_events
from tools.request_transition import request_transition


@pytest.fixture
def temp_db():
    """Create a temporary database path."""
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    yield path
    if os.path.exists(path):
        os.unlink(path)


def move(db_path, to_state, triggered_by="agent", **extra):
    args = {
        "job_id": "job-1",
        "candidate_id": "cand-1",
        "to_state": to_state,
        "triggered_by": triggered_by,
        "db_path": db_path,
    }
    args.update(extra)
    return request_transition(args)


class TestCreateAndGet:
    """Tests for record creation and lookup tools."""

    def test_create_returns_initial_view(self, temp_db):
        result = create_pipeline_record(
            {"job_id": " job-1 ", "candidate_id": "cand-1", "db_path": temp_db}
        )

        assert result["record"]["job_id"] == "job-1"
        assert result["record"]["state"] == "JD_RECEIVED"
        assert result["allowed_next_states"] == ["JD_PROCESSED"]
        assert result["is_terminal"] is False
        assert result["local_only"] is True

    def test_create_with_external_refs(self, temp_db):
        result = create_pipeline_record(
            {
                "job_id": "job-1",
                "candidate_id": "cand-1",
                "external_job_ref": "ATS-J-1",
                "external_candidate_ref": "ATS-C-1",
                "db_path": temp_db,
            }
        )
        assert result["local_only"] is False

    def test_duplicate(self, temp_db):
        args = {"job_id": "job-1", "candidate_id": "cand-1", "db_path": temp_db}
        create_pipeline_record(args)
        result = create_pipeline_record(args)
        assert result["error"]["code"] == "RECORD_EXISTS"

    def test_get(self, temp_db):
        create_pipeline_record({"job_id": "job-1", "candidate_id": "cand-1", "db_path": temp_db})
        result = get_pipeline_record(
            {"job_id": "job-1", "candidate_id": "cand-1", "db_path": temp_db}
        )
        assert result["record"]["state"] == "JD_RECEIVED"

    def test_get_missing(self, temp_db):
        result = get_pipeline_record({"job_id": "job-1", "candidate_id": "x", "db_path": temp_db})
        assert result["error"]["code"] == "RECORD_NOT_FOUND"
        assert result["error"]["retryable"] is False

    def test_missing_candidate_id(self, temp_db):
        result = get_pipeline_record({"job_id": "job-1", "db_path": temp_db})
        assert result["error"]["code"] == "VALIDATION_ERROR"
        assert result["error"]["message"] == "Invalid candidate_id: Field required"

    def test_wrong_type(self, temp_db):
        result = create_pipeline_record({"job_id": 7, "candidate_id": "c", "db_path": temp_db})
        assert result["error"]["code"] == "VALIDATION_ERROR"
        assert "job_id" in result["error"]["message"]

    def test_blank_db_path(self):
        result = get_pipeline_record({"job_id": "j", "candidate_id": "c", "db_path": "  "})
        assert result["error"]["code"] == "VALIDATION_ERROR"
        assert "db_path" in result["error"]["message"]


class TestRequestTransition:
    """Tests for the generic trigger tool."""

    def test_commit(self, temp_db):
        create_pipeline_record({"job_id": "job-1", "candidate_id": "cand-1", "db_path": temp_db})

        result = move(temp_db, "JD_PROCESSED", "Webhook", actor_id="ats-hook", notes="parsed")

        assert result["record"]["state"] == "JD_PROCESSED"
        assert result["record"]["previous_state"] == "JD_RECEIVED"
        assert result["record"]["agent_notes"] == "parsed"
        assert result["event"]["triggered_by"] == "webhook"
        assert result["event"]["actor_id"] == "ats-hook"
        assert result["sync"] == "skipped"
        assert "sync_error" not in result

    def test_invalid_transition(self, temp_db):
        create_pipeline_record({"job_id": "job-1", "candidate_id": "cand-1", "db_path": temp_db})

        result = move(temp_db, "CLOSED_PLACED")

        assert result["error"]["code"] == "INVALID_TRANSITION"
        assert result["error"]["retryable"] is False
        assert "Allowed: [JD_PROCESSED]" in result["error"]["message"]

    def test_unknown_state(self, temp_db):
        result = move(temp_db, "HIRED")
        assert result["error"]["code"] == "VALIDATION_ERROR"

    def test_unknown_trigger(self, temp_db):
        result = move(temp_db, "JD_PROCESSED", "robot")
        assert result["error"]["code"] == "VALIDATION_ERROR"
        assert "triggered_by" in result["error"]["message"]

    def test_missing_record(self, temp_db):
        result = move(temp_db, "JD_PROCESSED")
        assert result["error"]["code"] == "RECORD_NOT_FOUND"

    def test_closed_record(self, temp_db):
        create_pipeline_record({"job_id": "job-1", "candidate_id": "cand-1", "db_path": temp_db})
        for state in ("JD_PROCESSED", "SOURCING", "RESUME_MATCHED", "CALLING", "NOT_INTERESTED",
                      "CLOSED_DROPPED"):
            assert "error" not in move(temp_db, state)

        result = move(temp_db, "SOURCING", "human")

        assert result["error"]["code"] == "INVALID_TRANSITION"
        assert "Record is closed" in result["error"]["message"]

    def test_rejection_reason_stored(self, temp_db):
        create_pipeline_record({"job_id": "job-1", "candidate_id": "cand-1", "db_path": temp_db})
        for state in ("JD_PROCESSED", "SOURCING", "RESUME_MATCHED", "CALLING"):
            move(temp_db, state)

        result = move(temp_db, "NOT_INTERESTED", rejection_reason="Not looking")

        assert result["record"]["rejection_reason"] == "Not looking"


class TestListTransitionEvents:
    """Tests for the audit ledger tool."""

    def test_lists_in_commit_order(self, temp_db):
        for candidate_id in ("cand-1", "cand-2"):
            create_pipeline_record(
                {"job_id": "job-1", "candidate_id": candidate_id, "db_path": temp_db}
            )
        move(temp_db, "JD_PROCESSED")
        move(temp_db, "SOURCING")

        result = list_transition_events({"job_id": "job-1", "db_path": temp_db})
        assert result["count"] == 2
        assert "candidate_id" not in result
        assert [e["to_state"] for e in result["events"]] == ["JD_PROCESSED", "SOURCING"]

        filtered = list_transition_events(
            {"job_id": "job-1", "candidate_id": "cand-2", "db_path": temp_db}
        )
        assert filtered == {"job_id": "job-1", "candidate_id": "cand-2", "count": 0, "events": []}

    def test_missing_job_id(self, temp_db):
        result = list_transition_events({"db_path": temp_db})
        assert result["error"]["code"] == "VALIDATION_ERROR"

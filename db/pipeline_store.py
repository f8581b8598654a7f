"""
SQLite persistence layer for the hiring pipeline.

Holds the authoritative local state:

- ``pipeline_records``: one row per (job_id, candidate_id), the current value
- ``transition_events``: append-only audit ledger
- ``rejections``: append-only feedback rows captured at loss states
- ``pipeline_artifacts``: generated artifacts kept for checkpoint resume
- ``sync_failures``: outbox of system-of-record pushes awaiting reconciliation

Record mutation goes exclusively through ``commit_transition``, a
compare-and-swap on ``(state, updated_at)`` executed together with the audit
insert inside one ``BEGIN IMMEDIATE`` transaction. SQLite arbitrates
concurrent writers, so the check holds across processes without a shared
in-memory lock.
"""

import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

from models.errors import (
    create_db_error,
    create_db_not_found_error,
    create_record_exists_error,
    create_record_not_found_error,
    create_stale_record_error,
)
from models.status import PipelineState, SyncStatus
from schemas.pipeline import (
    PipelineArtifact,
    PipelineRecord,
    RejectionRecord,
    SyncFailure,
    TransitionEvent,
)

# Default database path relative to repository root
DEFAULT_DB_PATH = "data/pipeline.db"

# Seconds a writer waits for a competing writer's lock before failing
BUSY_TIMEOUT_SECONDS = 10.0


def resolve_db_path(db_path: Optional[str] = None) -> Path:
    """
    Resolve the database path with support for overrides and defaults.

    Resolution order:
    1. Provided db_path parameter
    2. RECRUITFLOW_DB environment variable
    3. RECRUITFLOW_ROOT/data/pipeline.db
    4. Default path: data/pipeline.db

    Args:
        db_path: Optional database path override

    Returns:
        Resolved absolute Path to the database
    """
    # Use provided path first
    if db_path is not None:
        path_str = db_path
    else:
        # Then explicit env override
        db_env = os.getenv("RECRUITFLOW_DB")
        if db_env:
            path_str = db_env
        else:
            # Then RECRUITFLOW_ROOT fallback
            root_env = os.getenv("RECRUITFLOW_ROOT")
            if root_env:
                return Path(root_env) / "data" / "pipeline.db"
            # Final default
            path_str = DEFAULT_DB_PATH

    path = Path(path_str)

    # If relative, resolve from repository root
    if not path.is_absolute():
        repo_root = Path(__file__).resolve().parents[1]  # db/ -> repo/
        path = repo_root / path

    return path


def bootstrap_schema(conn: sqlite3.Connection) -> None:
    """
    Create the pipeline tables and indexes if they don't exist.

    This operation is idempotent - safe to call on existing databases.

    Args:
        conn: Database connection

    Raises:
        ToolError: If schema creation fails
    """
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS pipeline_records (
                job_id TEXT NOT NULL,
                candidate_id TEXT NOT NULL,
                state TEXT NOT NULL,
                previous_state TEXT,
                updated_at TEXT NOT NULL,
                interview_round INTEGER NOT NULL DEFAULT 0,
                agent_notes TEXT,
                rejection_reason TEXT,
                external_job_ref TEXT,
                external_candidate_ref TEXT,
                PRIMARY KEY (job_id, candidate_id)
            );

            CREATE TABLE IF NOT EXISTS transition_events (
                event_id INTEGER PRIMARY KEY AUTOINCREMENT,
                job_id TEXT NOT NULL,
                candidate_id TEXT NOT NULL,
                from_state TEXT NOT NULL,
                to_state TEXT NOT NULL,
                triggered_by TEXT NOT NULL,
                actor_id TEXT,
                notes TEXT,
                timestamp TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_transition_events_pair
                ON transition_events (job_id, candidate_id, event_id);

            CREATE TABLE IF NOT EXISTS rejections (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                job_id TEXT NOT NULL,
                candidate_id TEXT NOT NULL,
                stage TEXT NOT NULL,
                reason TEXT NOT NULL,
                timestamp TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_rejections_job ON rejections (job_id, id);

            CREATE TABLE IF NOT EXISTS pipeline_artifacts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                job_id TEXT NOT NULL,
                candidate_id TEXT NOT NULL,
                kind TEXT NOT NULL,
                content TEXT NOT NULL,
                created_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_pipeline_artifacts_pair
                ON pipeline_artifacts (job_id, candidate_id, kind, id);

            CREATE TABLE IF NOT EXISTS sync_failures (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                job_id TEXT NOT NULL,
                candidate_id TEXT NOT NULL,
                event_id INTEGER,
                state TEXT NOT NULL,
                note TEXT,
                error TEXT NOT NULL,
                attempt_count INTEGER NOT NULL DEFAULT 1,
                status TEXT NOT NULL DEFAULT 'pending',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_sync_failures_status ON sync_failures (status, id);
        """)
    except sqlite3.Error as e:
        raise create_db_error(
            f"Failed to bootstrap schema: {str(e)}", retryable=False, original_error=e
        ) from e


class PipelineStore:
    """
    Context manager for operations on the pipeline database.

    Each public method runs in its own short transaction; the connection is
    opened on enter and always closed on exit.

    Usage:
        with PipelineStore(db_path) as store:
            record = store.get_record("job-1", "cand-7")
            event = store.commit_transition(record, updated, event)
    """

    def __init__(self, db_path: Optional[str] = None, create: bool = True):
        """
        Initialize store with database path.

        Args:
            db_path: Optional database path override
            create: Create the database file (and parent dirs) when missing.
                When False a missing file raises DB_NOT_FOUND.
        """
        self.db_path = db_path
        self.create = create
        self.resolved_path: Optional[Path] = None
        self.conn: Optional[sqlite3.Connection] = None

    def __enter__(self):
        """
        Open connection and bootstrap the schema.

        Returns:
            self: The PipelineStore instance

        Raises:
            ToolError: If database file doesn't exist (create=False) or connection fails
        """
        self.resolved_path = resolve_db_path(self.db_path)

        if self.resolved_path.exists() and not self.resolved_path.is_file():
            raise create_db_not_found_error(str(self.resolved_path))

        if not self.resolved_path.exists():
            if not self.create:
                raise create_db_not_found_error(str(self.resolved_path))
            try:
                self.resolved_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise create_db_error(
                    f"Failed to create parent directories: {str(e)}",
                    retryable=False,
                    original_error=e,
                ) from e

        try:
            # Autocommit mode; write transactions are opened explicitly
            self.conn = sqlite3.connect(
                str(self.resolved_path), timeout=BUSY_TIMEOUT_SECONDS, isolation_level=None
            )
            self.conn.row_factory = sqlite3.Row
            bootstrap_schema(self.conn)
            return self

        except sqlite3.OperationalError as e:
            self._close()
            error_msg = str(e)
            if "unable to open database" in error_msg.lower():
                raise create_db_not_found_error(str(self.resolved_path)) from e
            raise create_db_error(error_msg, retryable=True, original_error=e) from e

        except sqlite3.Error as e:
            self._close()
            raise create_db_error(str(e), retryable=False, original_error=e) from e

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Close the connection; never suppresses exceptions."""
        self._close()
        return False

    def _close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None

    def _require_conn(self) -> sqlite3.Connection:
        if self.conn is None:
            raise create_db_error("Connection not established", retryable=False)
        return self.conn

    @contextmanager
    def _write(self) -> Iterator[sqlite3.Connection]:
        """
        Run a block inside a ``BEGIN IMMEDIATE`` transaction.

        Commits on success, rolls back on any exception and re-raises.
        sqlite3 errors are translated to DB_ERROR; lock contention is
        reported as retryable.
        """
        conn = self._require_conn()
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.OperationalError as e:
            raise create_db_error(str(e), retryable=True, original_error=e) from e

        try:
            yield conn
        except sqlite3.Error as e:
            conn.rollback()
            raise create_db_error(str(e), retryable=False, original_error=e) from e
        except BaseException:
            conn.rollback()
            raise
        else:
            try:
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise create_db_error(
                    f"Failed to commit transaction: {str(e)}", retryable=True, original_error=e
                ) from e

    def _query(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        conn = self._require_conn()
        try:
            return conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise create_db_error(str(e), retryable=False, original_error=e) from e

    # ------------------------------------------------------------------
    # Pipeline records
    # ------------------------------------------------------------------

    def insert_record(self, record: PipelineRecord) -> None:
        """
        Insert a freshly created record.

        Raises:
            ToolError: RECORD_EXISTS if the pair already has a record
        """
        with self._write() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO pipeline_records (
                        job_id, candidate_id, state, previous_state, updated_at,
                        interview_round, agent_notes, rejection_reason,
                        external_job_ref, external_candidate_ref
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    _record_params(record),
                )
            except sqlite3.IntegrityError as e:
                raise create_record_exists_error(record.job_id, record.candidate_id) from e

    def get_record(self, job_id: str, candidate_id: str) -> Optional[PipelineRecord]:
        """Return the current record for a pair, or None."""
        rows = self._query(
            "SELECT * FROM pipeline_records WHERE job_id = ? AND candidate_id = ?",
            (job_id, candidate_id),
        )
        return PipelineRecord.from_row(rows[0]) if rows else None

    def commit_transition(
        self, expected: PipelineRecord, updated: PipelineRecord, event: TransitionEvent
    ) -> TransitionEvent:
        """
        Conditionally replace a record and append its audit event atomically.

        The UPDATE only matches when the stored ``state`` and ``updated_at``
        still equal the values the caller read (``expected``).

        Args:
            expected: Record as read by the caller
            updated: New record value to store
            event: Audit event for this transition (event_id is assigned here)

        Returns:
            The stored event with its ``event_id``

        Raises:
            StaleRecordError: If the stored record no longer matches ``expected``
            RecordNotFoundError: If the record does not exist
        """
        with self._write() as conn:
            cursor = conn.execute(
                """
                UPDATE pipeline_records
                SET state = ?,
                    previous_state = ?,
                    updated_at = ?,
                    interview_round = ?,
                    agent_notes = ?,
                    rejection_reason = ?
                WHERE job_id = ?
                  AND candidate_id = ?
                  AND state = ?
                  AND updated_at = ?
                """,
                (
                    updated.state.value,
                    updated.previous_state.value if updated.previous_state else None,
                    updated.updated_at,
                    updated.interview_round,
                    updated.agent_notes,
                    updated.rejection_reason,
                    expected.job_id,
                    expected.candidate_id,
                    expected.state.value,
                    expected.updated_at,
                ),
            )

            if cursor.rowcount == 0:
                exists = conn.execute(
                    "SELECT 1 FROM pipeline_records WHERE job_id = ? AND candidate_id = ?",
                    (expected.job_id, expected.candidate_id),
                ).fetchone()
                if exists is None:
                    raise create_record_not_found_error(expected.job_id, expected.candidate_id)
                raise create_stale_record_error(
                    expected.job_id, expected.candidate_id, expected.state
                )

            cursor = conn.execute(
                """
                INSERT INTO transition_events (
                    job_id, candidate_id, from_state, to_state,
                    triggered_by, actor_id, notes, timestamp
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event.job_id,
                    event.candidate_id,
                    event.from_state.value,
                    event.to_state.value,
                    event.triggered_by.value,
                    event.actor_id,
                    event.notes,
                    event.timestamp,
                ),
            )
            return event.model_copy(update={"event_id": cursor.lastrowid})

    # ------------------------------------------------------------------
    # Audit ledger
    # ------------------------------------------------------------------

    def list_events(
        self, job_id: str, candidate_id: Optional[str] = None
    ) -> List[TransitionEvent]:
        """List audit events for a job (optionally one candidate) in commit order."""
        if candidate_id is None:
            rows = self._query(
                "SELECT * FROM transition_events WHERE job_id = ? ORDER BY event_id",
                (job_id,),
            )
        else:
            rows = self._query(
                """
                SELECT * FROM transition_events
                WHERE job_id = ? AND candidate_id = ?
                ORDER BY event_id
                """,
                (job_id, candidate_id),
            )
        return [TransitionEvent.from_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Feedback store
    # ------------------------------------------------------------------

    def append_rejection(self, rejection: RejectionRecord) -> int:
        """Append a feedback row and return its id."""
        with self._write() as conn:
            cursor = conn.execute(
                """
                INSERT INTO rejections (job_id, candidate_id, stage, reason, timestamp)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    rejection.job_id,
                    rejection.candidate_id,
                    rejection.stage.value,
                    rejection.reason,
                    rejection.timestamp,
                ),
            )
            return cursor.lastrowid

    def list_rejections(self, job_id: str) -> List[RejectionRecord]:
        """List feedback rows for a job in insertion order."""
        rows = self._query("SELECT * FROM rejections WHERE job_id = ? ORDER BY id", (job_id,))
        return [RejectionRecord.from_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Artifacts
    # ------------------------------------------------------------------

    def save_artifact(self, artifact: PipelineArtifact) -> int:
        """Persist a generated artifact and return its id."""
        with self._write() as conn:
            cursor = conn.execute(
                """
                INSERT INTO pipeline_artifacts (job_id, candidate_id, kind, content, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    artifact.job_id,
                    artifact.candidate_id,
                    artifact.kind,
                    artifact.content,
                    artifact.created_at,
                ),
            )
            return cursor.lastrowid

    def get_latest_artifact(
        self, job_id: str, candidate_id: str, kind: str
    ) -> Optional[PipelineArtifact]:
        """Return the most recently saved artifact of a kind, or None."""
        rows = self._query(
            """
            SELECT * FROM pipeline_artifacts
            WHERE job_id = ? AND candidate_id = ? AND kind = ?
            ORDER BY id DESC
            LIMIT 1
            """,
            (job_id, candidate_id, kind),
        )
        return PipelineArtifact.from_row(rows[0]) if rows else None

    # ------------------------------------------------------------------
    # Sync outbox
    # ------------------------------------------------------------------

    def record_sync_failure(
        self,
        job_id: str,
        candidate_id: str,
        event_id: Optional[int],
        state: PipelineState,
        note: Optional[str],
        error: str,
        timestamp: str,
    ) -> int:
        """Queue a failed system-of-record push and return the outbox id."""
        with self._write() as conn:
            cursor = conn.execute(
                """
                INSERT INTO sync_failures (
                    job_id, candidate_id, event_id, state, note, error,
                    attempt_count, status, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, 1, ?, ?, ?)
                """,
                (
                    job_id,
                    candidate_id,
                    event_id,
                    state.value,
                    note,
                    error,
                    SyncStatus.PENDING.value,
                    timestamp,
                    timestamp,
                ),
            )
            return cursor.lastrowid

    def list_pending_sync_failures(self, limit: Optional[int] = None) -> List[SyncFailure]:
        """List pending outbox rows, oldest first."""
        sql = "SELECT * FROM sync_failures WHERE status = ? ORDER BY id"
        params: tuple = (SyncStatus.PENDING.value,)
        if limit is not None:
            sql += " LIMIT ?"
            params = params + (limit,)
        return [SyncFailure.from_row(row) for row in self._query(sql, params)]

    def bump_sync_failure(self, failure_id: int, error: str, timestamp: str) -> None:
        """Record another failed attempt for an outbox row."""
        with self._write() as conn:
            conn.execute(
                """
                UPDATE sync_failures
                SET attempt_count = attempt_count + 1,
                    error = ?,
                    updated_at = ?
                WHERE id = ?
                """,
                (error, timestamp, failure_id),
            )

    def resolve_sync_failures(
        self,
        job_id: str,
        candidate_id: str,
        timestamp: str,
        up_to_id: Optional[int] = None,
    ) -> int:
        """
        Mark pending outbox rows of a pair resolved; returns the row count.

        With ``up_to_id`` only rows with ``id <= up_to_id`` are resolved, so
        failures queued after the caller read the record stay pending.
        """
        sql = """
            UPDATE sync_failures
            SET status = ?,
                updated_at = ?
            WHERE job_id = ? AND candidate_id = ? AND status = ?
        """
        params: tuple = (
            SyncStatus.RESOLVED.value,
            timestamp,
            job_id,
            candidate_id,
            SyncStatus.PENDING.value,
        )
        if up_to_id is not None:
            sql += " AND id <= ?"
            params = params + (up_to_id,)
        with self._write() as conn:
            cursor = conn.execute(sql, params)
            return cursor.rowcount


def _record_params(record: PipelineRecord) -> tuple:
    return (
        record.job_id,
        record.candidate_id,
        record.state.value,
        record.previous_state.value if record.previous_state else None,
        record.updated_at,
        record.interview_round,
        record.agent_notes,
        record.rejection_reason,
        record.external_job_ref,
        record.external_candidate_ref,
    )

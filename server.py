#!/usr/bin/env python3
"""
MCP Server entry point for the RecruitFlow hiring pipeline.

This server exposes the pipeline state machine to LLM agents, recruiters'
tooling and webhook relays via the Model Context Protocol. Every stage change
goes through request_transition (or a stage tool built on it), which validates
the move against the transition table and commits it with an optimistic
concurrency check and an audit event.

Usage:
    python server.py

The server runs in stdio mode by default, which is the standard transport
for MCP servers that are invoked by LLM agents.
"""

import logging
from mcp.server.fastmcp import FastMCP
from tools.create_pipeline_record import create_pipeline_record
from tools.get_pipeline_record import get_pipeline_record
from tools.request_transition import request_transition
from tools.list_transition_events import list_transition_events
from tools.mark_cv_rejected import mark_cv_rejected
from tools.record_rejection import record_rejection
from tools.list_rejections import list_rejections
from tools.reconcile_sync import reconcile_sync
from tools.handle_candidate_message import handle_candidate_message
from config import get_config

# Create FastMCP server instance
config = get_config()
mcp = FastMCP(
    name=config.server_name,
    instructions=(
        "This server manages the hiring pipeline for (job, candidate) pairs. "
        "\n\n"
        "RECORDS:\n"
        "Use create_pipeline_record to start a pair at JD_RECEIVED. "
        "Use get_pipeline_record to read the current stage and the stages it may move to next. "
        "Use list_transition_events to read the audit trail."
        "\n\n"
        "TRANSITIONS:\n"
        "Use request_transition for every stage change. Illegal moves return INVALID_TRANSITION "
        "and are never committed. STALE_RECORD means the record changed since you read it: "
        "re-read it with get_pipeline_record and decide again instead of repeating the request. "
        "A failed system-of-record push is reported as sync='failed' but the local commit stands; "
        "reconcile_sync re-drives such pushes."
        "\n\n"
        "FEEDBACK AND ENGAGEMENT:\n"
        "Use mark_cv_rejected when client HR rejects a CV: it stores the reason and loops the "
        "record back to SOURCING. Use record_rejection and list_rejections for the feedback "
        "history of a job. Use handle_candidate_message to apply your decision about an inbound "
        "candidate message; low-confidence or refused proposals are flagged for a human."
    ),
)


@mcp.tool(
    name="create_pipeline_record",
    description=(
        "Create the pipeline record for a new (job_id, candidate_id) pair at JD_RECEIVED. "
        "Pass both external references to enable system-of-record sync for the pair."
    ),
)
def create_pipeline_record_tool(
    job_id: str,
    candidate_id: str,
    external_job_ref: str | None = None,
    external_candidate_ref: str | None = None,
    db_path: str | None = None,
) -> dict:
    """
    Create a pipeline record.

    Args:
        job_id: Job identifier.
        candidate_id: Candidate identifier.
        external_job_ref: System-of-record job id (optional).
        external_candidate_ref: System-of-record candidate id (optional).
        db_path: Optional database path override (default: data/pipeline.db).

    Returns:
        {"record": {...}, "allowed_next_states": [...], "is_terminal": bool, "local_only": bool}
        or {"error": {"code", "message", "retryable"}} (RECORD_EXISTS for duplicates).
    """
    args = {"job_id": job_id, "candidate_id": candidate_id}
    if external_job_ref is not None:
        args["external_job_ref"] = external_job_ref
    if external_candidate_ref is not None:
        args["external_candidate_ref"] = external_candidate_ref
    if db_path is not None:
        args["db_path"] = db_path

    return create_pipeline_record(args)


@mcp.tool(
    name="get_pipeline_record",
    description=(
        "Read the current pipeline record for a (job_id, candidate_id) pair, "
        "including the legal next stages."
    ),
)
def get_pipeline_record_tool(
    job_id: str,
    candidate_id: str,
    db_path: str | None = None,
) -> dict:
    """
    Read a pipeline record.

    Args:
        job_id: Job identifier.
        candidate_id: Candidate identifier.
        db_path: Optional database path override.

    Returns:
        {"record": {...}, "allowed_next_states": [...], "is_terminal": bool, "local_only": bool}
        or {"error": {...}} (RECORD_NOT_FOUND when the pair has no record).
    """
    args = {"job_id": job_id, "candidate_id": candidate_id}
    if db_path is not None:
        args["db_path"] = db_path

    return get_pipeline_record(args)


@mcp.tool(
    name="request_transition",
    description=(
        "Move a pipeline record to a new stage. The move is validated against the "
        "transition table and committed atomically with an audit event."
    ),
)
def request_transition_tool(
    job_id: str,
    candidate_id: str,
    to_state: str,
    triggered_by: str,
    actor_id: str | None = None,
    notes: str | None = None,
    rejection_reason: str | None = None,
    db_path: str | None = None,
) -> dict:
    """
    Request a stage transition.

    Args:
        job_id: Job identifier.
        candidate_id: Candidate identifier.
        to_state: Target stage name, e.g. "CV_SUBMITTED".
        triggered_by: One of "agent", "human", "webhook".
        actor_id: Who requested the change (optional).
        notes: Replaces the record's agent_notes (optional).
        rejection_reason: Replaces the record's rejection_reason (optional).
        db_path: Optional database path override.

    Returns:
        {"record": {...}, "event": {...}, "sync": "ok"|"failed"|"skipped", "sync_error"?: {...}}
        or {"error": {...}}:
        - INVALID_TRANSITION: to_state is not a legal successor; nothing committed
        - STALE_RECORD: the record changed concurrently; re-read and decide again
        - RECORD_NOT_FOUND: no record for the pair
    """
    args = {
        "job_id": job_id,
        "candidate_id": candidate_id,
        "to_state": to_state,
        "triggered_by": triggered_by,
    }
    if actor_id is not None:
        args["actor_id"] = actor_id
    if notes is not None:
        args["notes"] = notes
    if rejection_reason is not None:
        args["rejection_reason"] = rejection_reason
    if db_path is not None:
        args["db_path"] = db_path

    return request_transition(args)


@mcp.tool(
    name="list_transition_events",
    description="List the audit trail for a job, or for one (job_id, candidate_id) pair.",
)
def list_transition_events_tool(
    job_id: str,
    candidate_id: str | None = None,
    db_path: str | None = None,
) -> dict:
    """
    List audit events in commit order.

    Args:
        job_id: Job identifier.
        candidate_id: Narrow to one candidate (optional).
        db_path: Optional database path override.

    Returns:
        {"job_id": str, "candidate_id"?: str, "count": int, "events": [...]}
        or {"error": {...}}.
    """
    args = {"job_id": job_id}
    if candidate_id is not None:
        args["candidate_id"] = candidate_id
    if db_path is not None:
        args["db_path"] = db_path

    return list_transition_events(args)


@mcp.tool(
    name="mark_cv_rejected",
    description=(
        "Record that client HR rejected a submitted CV. Commits CV_REJECTED, stores the "
        "reason for future scoring, and loops the record back to SOURCING."
    ),
)
def mark_cv_rejected_tool(
    job_id: str,
    candidate_id: str,
    reason: str,
    db_path: str | None = None,
) -> dict:
    """
    Reject a CV and re-source.

    Args:
        job_id: Job identifier.
        candidate_id: Candidate identifier.
        reason: Rejection reason given by the client.
        db_path: Optional database path override.

    Returns:
        {"record": {...}, "rejection_recorded": true} or {"error": {...}}.
    """
    args = {"job_id": job_id, "candidate_id": candidate_id, "reason": reason}
    if db_path is not None:
        args["db_path"] = db_path

    return mark_cv_rejected(args)


@mcp.tool(
    name="record_rejection",
    description="Append a rejection reason to a job's feedback history without changing the record.",
)
def record_rejection_tool(
    job_id: str,
    candidate_id: str,
    stage: str,
    reason: str,
    db_path: str | None = None,
) -> dict:
    """
    Append a feedback row.

    Args:
        job_id: Job identifier.
        candidate_id: Candidate identifier.
        stage: Stage at which the rejection happened.
        reason: Rejection reason.
        db_path: Optional database path override.

    Returns:
        {"rejection": {...}} or {"error": {...}}.
    """
    args = {"job_id": job_id, "candidate_id": candidate_id, "stage": stage, "reason": reason}
    if db_path is not None:
        args["db_path"] = db_path

    return record_rejection(args)


@mcp.tool(
    name="list_rejections",
    description=(
        "List a job's rejection history, optionally with a summary of rejections by stage "
        "and the most frequent reasons."
    ),
)
def list_rejections_tool(
    job_id: str,
    include_summary: bool | None = None,
    min_rejections: int | None = None,
    db_path: str | None = None,
) -> dict:
    """
    List feedback rows for a job.

    Args:
        job_id: Job identifier.
        include_summary: Add an aggregate summary (default: false).
        min_rejections: Rows needed before a summary is produced (default: 2).
        db_path: Optional database path override.

    Returns:
        {"job_id": str, "count": int, "rejections": [...], "summary"?: {...}}
        or {"error": {...}}.
    """
    args = {"job_id": job_id}
    if include_summary is not None:
        args["include_summary"] = include_summary
    if min_rejections is not None:
        args["min_rejections"] = min_rejections
    if db_path is not None:
        args["db_path"] = db_path

    return list_rejections(args)


@mcp.tool(
    name="reconcile_sync",
    description=(
        "Re-drive system-of-record pushes that failed after their local commit. "
        "Use dry_run to only list records that are out of sync."
    ),
)
def reconcile_sync_tool(
    limit: int | None = None,
    max_attempts: int | None = None,
    dry_run: bool | None = None,
    db_path: str | None = None,
) -> dict:
    """
    Reconcile pending sync failures.

    Args:
        limit: Records to push this run, 1-500 (default: 50).
        max_attempts: Retry ceiling per record (default: RECRUITFLOW_SYNC_MAX_ATTEMPTS).
        dry_run: Only report out-of-sync records (default: false).
        db_path: Optional database path override.

    Returns:
        {"dry_run": bool, "out_of_sync": [...], "attempted": int, "resolved": int,
         "failed": int, "exhausted": int, "results": [...]} or {"error": {...}}.
    """
    args = {}
    if limit is not None:
        args["limit"] = limit
    if max_attempts is not None:
        args["max_attempts"] = max_attempts
    if dry_run is not None:
        args["dry_run"] = dry_run
    if db_path is not None:
        args["db_path"] = db_path

    return reconcile_sync(args)


@mcp.tool(
    name="handle_candidate_message",
    description=(
        "Apply your decision about an inbound candidate message during engagement "
        "(CALLING through CANDIDATE_CONFIRMED): send the reply, move the record when the "
        "proposal is confident and legal, and persist the conversation."
    ),
)
def handle_candidate_message_tool(
    job_id: str,
    candidate_id: str,
    proposal: dict,
    message: str | None = None,
    webhook: dict | None = None,
    recipient: str | None = None,
    db_path: str | None = None,
) -> dict:
    """
    Handle one inbound candidate message.

    Args:
        job_id: Job identifier.
        candidate_id: Candidate identifier.
        proposal: {"intent": "interested"|"not_interested"|"needs_info"|"unclear",
                   "reply"?: str, "suggested_next_state"?: str, "confidence": 0..1,
                   "flag_for_human"?: bool, "flag_reason"?: str}
        message: The candidate's message text (or pass webhook instead).
        webhook: Raw WhatsApp webhook payload carrying the message (optional).
        recipient: Candidate phone number for the reply (default: the webhook sender).
        db_path: Optional database path override.

    Returns:
        {"record": {...}, "proposal": {...}, "reply_sent": bool, "committed_state": str|None,
         "flagged_for_human": bool, "flag_reason": str|None, ...} or {"error": {...}}.
    """
    args = {"job_id": job_id, "candidate_id": candidate_id, "proposal": proposal}
    if message is not None:
        args["message"] = message
    if webhook is not None:
        args["webhook"] = webhook
    if recipient is not None:
        args["recipient"] = recipient
    if db_path is not None:
        args["db_path"] = db_path

    return handle_candidate_message(args)


def main():
    """
    Main entry point for the MCP server.

    Runs the server in stdio mode, which is the standard transport
    for MCP servers that are invoked by LLM agents.
    """
    # Load and setup configuration
    config.setup_logging()

    # Log startup information
    logger = logging.getLogger(__name__)
    logger.info("Starting RecruitFlow MCP Server")
    logger.info(f"Server name: {config.server_name}")
    logger.info(f"Database path: {config.db_path}")

    # Validate configuration and log warnings
    warnings = config.validate()
    for warning in warnings:
        logger.warning(warning)

    # Start the server
    logger.info("Server starting in stdio mode")
    try:
        mcp.run(transport="stdio")
    finally:
        config.close()


if __name__ == "__main__":
    main()

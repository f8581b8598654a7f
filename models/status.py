"""
Centralized, type-safe status definitions for the RecruitFlow pipeline.

This module is the single source of truth for all stage values used across
the application. It defines:

- ``PipelineState``: the 30 hiring stages a (job, candidate) pair moves through.
- ``TriggeredBy``: the kind of actor that requested a transition.
- ``SyncStatus``: lifecycle of a failed system-of-record push in the outbox.

All Enums inherit from ``(str, Enum)`` so that members are directly
comparable to plain strings and serialize naturally to JSON at API
boundaries.
"""

from enum import Enum


class PipelineState(str, Enum):
    """Enum for the hiring stages stored in the ``pipeline_records`` table.

    ``JD_RECEIVED`` is the only initial state. ``CLOSED_PLACED`` and
    ``CLOSED_DROPPED`` are terminal; everything else is intermediate.
    Legal successors live in ``models.transitions.TRANSITION_TABLE``.
    """

    JD_RECEIVED = "JD_RECEIVED"
    JD_PROCESSED = "JD_PROCESSED"
    SOURCING = "SOURCING"
    RESUME_MATCHED = "RESUME_MATCHED"
    CALLING = "CALLING"
    CONSENTED = "CONSENTED"
    NOT_INTERESTED = "NOT_INTERESTED"
    NOT_REACHED = "NOT_REACHED"
    JD_SHARED = "JD_SHARED"
    CANDIDATE_CONFIRMED = "CANDIDATE_CONFIRMED"
    CANDIDATE_NOT_INTERESTED = "CANDIDATE_NOT_INTERESTED"
    CV_REFINED = "CV_REFINED"
    CV_SUBMITTED = "CV_SUBMITTED"
    CV_SHORTLISTED = "CV_SHORTLISTED"
    CV_REJECTED = "CV_REJECTED"
    INTERVIEW_SCHEDULED = "INTERVIEW_SCHEDULED"
    INTERVIEW_ROUNDS = "INTERVIEW_ROUNDS"
    SELECTED = "SELECTED"
    REJECTED = "REJECTED"
    DOCUMENTATION = "DOCUMENTATION"
    OFFER_STAGE = "OFFER_STAGE"
    NEGOTIATION_POSITIVE = "NEGOTIATION_POSITIVE"
    NEGOTIATION_NEGATIVE = "NEGOTIATION_NEGATIVE"
    OFFER_ACCEPTED = "OFFER_ACCEPTED"
    NOT_POSITIVE = "NOT_POSITIVE"
    DOJ_CONFIRMED = "DOJ_CONFIRMED"
    INVOICE_RAISED = "INVOICE_RAISED"
    PAYMENT_FOLLOWUP = "PAYMENT_FOLLOWUP"
    CLOSED_PLACED = "CLOSED_PLACED"
    CLOSED_DROPPED = "CLOSED_DROPPED"


INITIAL_STATE = PipelineState.JD_RECEIVED

TERMINAL_STATES = frozenset({PipelineState.CLOSED_PLACED, PipelineState.CLOSED_DROPPED})

# Candidate engagement region handled by the conversational sub-state
ENGAGEMENT_STATES = frozenset(
    {
        PipelineState.CALLING,
        PipelineState.NOT_REACHED,
        PipelineState.CONSENTED,
        PipelineState.JD_SHARED,
        PipelineState.CANDIDATE_CONFIRMED,
    }
)


class TriggeredBy(str, Enum):
    """Who requested a transition; recorded on every audit event."""

    AGENT = "agent"
    HUMAN = "human"
    WEBHOOK = "webhook"


class SyncStatus(str, Enum):
    """Status of a row in the ``sync_failures`` outbox."""

    PENDING = "pending"
    RESOLVED = "resolved"

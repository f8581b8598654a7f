"""
External sync adapter: keeps the system of record's stage labels in step
with the local pipeline state.

The internal -> external stage mapping is data. Several internal states
collapse onto one ATS stage (every screening step is "Screening", every loss
is "Rejected"). A state missing from the mapping is passed through verbatim.
Deployments can override labels with a YAML file of ``STATE: Label`` pairs.
"""

import logging
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Mapping, Optional

import yaml

from models.errors import create_sync_error
from models.status import PipelineState, TriggeredBy
from utils.ats_client import AtsClient, AtsClientError

logger = logging.getLogger(__name__)

S = PipelineState

DEFAULT_STAGE_LABELS: Mapping[PipelineState, str] = MappingProxyType(
    {
        S.JD_RECEIVED: "New Requirement",
        S.JD_PROCESSED: "New Requirement",
        S.SOURCING: "Sourcing",
        S.RESUME_MATCHED: "Sourced",
        S.CALLING: "Screening",
        S.CONSENTED: "Screening",
        S.NOT_INTERESTED: "Rejected",
        S.NOT_REACHED: "Screening",
        S.JD_SHARED: "Screening",
        S.CANDIDATE_CONFIRMED: "Screening",
        S.CANDIDATE_NOT_INTERESTED: "Rejected",
        S.CV_REFINED: "Profile Submission",
        S.CV_SUBMITTED: "Submitted",
        S.CV_SHORTLISTED: "Shortlisted",
        S.CV_REJECTED: "Rejected",
        S.INTERVIEW_SCHEDULED: "Interview Scheduled",
        S.INTERVIEW_ROUNDS: "Interview",
        S.SELECTED: "Selected",
        S.REJECTED: "Rejected",
        S.DOCUMENTATION: "Documentation",
        S.OFFER_STAGE: "Offered",
        S.NEGOTIATION_POSITIVE: "Offered",
        S.NEGOTIATION_NEGATIVE: "Rejected",
        S.OFFER_ACCEPTED: "Offer Accepted",
        S.NOT_POSITIVE: "Rejected",
        S.DOJ_CONFIRMED: "Joining Confirmed",
        S.INVOICE_RAISED: "Joined",
        S.PAYMENT_FOLLOWUP: "Joined",
        S.CLOSED_PLACED: "Joined",
        S.CLOSED_DROPPED: "Rejected",
    }
)


def load_stage_labels(override_path: Optional[str] = None) -> Dict[PipelineState, str]:
    """
    Build the stage label mapping, merging an optional YAML override file.

    Args:
        override_path: Path to a YAML mapping of state name -> ATS label

    Returns:
        Mapping of every overridden/default state to its ATS label

    Raises:
        ValueError: If the file is not a mapping, names an unknown state, or
            maps a state to an empty label
    """
    labels = dict(DEFAULT_STAGE_LABELS)
    if not override_path:
        return labels

    content = Path(override_path).read_text(encoding="utf-8")
    try:
        overrides = yaml.safe_load(content) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in stage map: {str(e)}") from e

    if not isinstance(overrides, dict):
        raise ValueError("Stage map must be a YAML mapping of state -> label")

    for key, label in overrides.items():
        try:
            state = PipelineState(str(key))
        except ValueError:
            raise ValueError(f"Stage map names unknown state: {key}") from None
        if not isinstance(label, str) or not label.strip():
            raise ValueError(f"Stage map label for {key} must be a non-empty string")
        labels[state] = label.strip()

    return labels


def to_external_stage(
    state: PipelineState, labels: Optional[Mapping[PipelineState, str]] = None
) -> str:
    """Translate an internal state to the ATS label (verbatim when unmapped)."""
    mapping = DEFAULT_STAGE_LABELS if labels is None else labels
    return mapping.get(state, state.value)


def format_ats_note(note: str, triggered_by: Optional[TriggeredBy] = None) -> str:
    """Prefix a transition note with the trigger kind, e.g. ``[HUMAN] ...``."""
    if triggered_by is None:
        return note
    return f"[{triggered_by.value.upper()}] {note}"


class AtsSyncAdapter:
    """Pushes stage updates and notes for one transition to the ATS."""

    def __init__(self, client: AtsClient, stage_labels: Optional[Mapping[PipelineState, str]] = None):
        self.client = client
        self.stage_labels = dict(DEFAULT_STAGE_LABELS if stage_labels is None else stage_labels)

    def push(
        self,
        job_ref: str,
        candidate_ref: str,
        internal_state: PipelineState,
        note: Optional[str] = None,
        actor_id: Optional[str] = None,
        triggered_by: Optional[TriggeredBy] = None,
    ) -> None:
        """
        Push the external stage (and optional note) for a pair.

        Args:
            job_ref: External job reference
            candidate_ref: External candidate reference
            internal_state: Local pipeline state to mirror
            note: Optional note, also posted as an ATS note
            actor_id: Who made the change (``updated_by``)
            triggered_by: Trigger kind used to prefix the posted note

        Raises:
            SyncError: If any ATS request fails
        """
        stage_label = to_external_stage(internal_state, self.stage_labels)
        logger.info(
            "ATS stage update: %s -> '%s' (job_ref=%s, candidate_ref=%s)",
            internal_state.value,
            stage_label,
            job_ref,
            candidate_ref,
        )

        try:
            self.client.push_stage(
                job_ref, candidate_ref, stage_label, note=note, updated_by=actor_id
            )
            if note:
                self.client.add_note(
                    job_ref, candidate_ref, format_ats_note(note, triggered_by)
                )
        except AtsClientError as e:
            raise create_sync_error(str(e), original_error=e) from e

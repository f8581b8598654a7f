"""
Conversational sub-state for candidate engagement.

Handles one inbound candidate message at a time for records inside the
engagement region (CALLING through CANDIDATE_CONFIRMED):

1. Load the conversation history (system of record first, local copy otherwise)
2. Run the decision step, which returns a structured ``EngagementProposal``
3. Send the proposed reply, if any
4. Hand a proposed state to the state machine like any other agent trigger
5. Persist the updated history

Proposals below the confidence threshold, proposals the decision step
flags, and proposals the state machine refuses are never committed; the
session is flagged for human takeover instead.
"""

import json
import logging
from typing import List, Optional

from pydantic import ValidationError

from db.pipeline_store import PipelineStore
from models.errors import (
    DeliveryError,
    GenerationError,
    InvalidTransitionError,
    StaleRecordError,
    ToolError,
    create_validation_error,
    sanitize_collaborator_error,
)
from models.status import ENGAGEMENT_STATES, TriggeredBy
from schemas.engagement import (
    ConversationMessage,
    EngagementContext,
    EngagementOutcome,
    EngagementProposal,
)
from schemas.pipeline import PipelineArtifact, PipelineRecord, TransitionMeta
from utils.ats_client import AtsClient, AtsClientError
from utils.collaborators import EngagementDecider, NotificationPayload, Notifier
from utils.state_machine import PipelineStateMachine
from utils.validation import get_current_utc_timestamp

logger = logging.getLogger(__name__)

HISTORY_ARTIFACT = "conversation_history"
DEFAULT_MIN_CONFIDENCE = 0.6
ENGAGEMENT_ACTOR = "engagement-agent"


def parse_history(blob: str) -> List[ConversationMessage]:
    """
    Decode a stored conversation blob.

    Raises:
        ValueError: If the blob is not a JSON list of messages
    """
    if not blob:
        return []
    try:
        items = json.loads(blob)
    except json.JSONDecodeError as e:
        raise ValueError(f"Conversation history is not valid JSON: {e.msg}") from e
    if not isinstance(items, list):
        raise ValueError("Conversation history must be a JSON list")
    try:
        return [ConversationMessage.model_validate(item) for item in items]
    except ValidationError as e:
        raise ValueError(f"Conversation history has malformed entries: {e.error_count()} errors") from e


def dump_history(history: List[ConversationMessage]) -> str:
    return json.dumps([message.model_dump() for message in history], ensure_ascii=False)


class EngagementSession:
    """
    Drives candidate conversations through the state machine.

    Usage:
        session = EngagementSession(machine, decider, notifier=whatsapp, ats_client=ats)
        outcome = session.handle_message("job-1", "cand-7", "Yes, I'm interested",
                                         recipient="+15550100")
    """

    def __init__(
        self,
        state_machine: PipelineStateMachine,
        decider: EngagementDecider,
        notifier: Optional[Notifier] = None,
        ats_client: Optional[AtsClient] = None,
        min_confidence: float = DEFAULT_MIN_CONFIDENCE,
    ):
        if not 0.0 <= min_confidence <= 1.0:
            raise ValueError("min_confidence must be between 0 and 1")
        self.state_machine = state_machine
        self.decider = decider
        self.notifier = notifier
        self.ats_client = ats_client
        self.min_confidence = min_confidence

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def _uses_ats(self, record: PipelineRecord) -> bool:
        return self.ats_client is not None and not record.is_local_only

    def load_history(self, record: PipelineRecord) -> List[ConversationMessage]:
        """
        Load the conversation for a record.

        The system of record is authoritative when reachable; the local copy
        is used for local-only records and when the fetch fails. A corrupt
        blob is logged and replaced by an empty history.
        """
        blob = None
        if self._uses_ats(record):
            try:
                blob = self.ats_client.fetch_conversation_history(
                    record.external_candidate_ref, record.external_job_ref
                )
            except AtsClientError as e:
                logger.warning(
                    "Falling back to local conversation history (job_id=%s, candidate_id=%s): %s",
                    record.job_id,
                    record.candidate_id,
                    e,
                )

        if blob is None:
            with PipelineStore(self.state_machine.db_path) as store:
                artifact = store.get_latest_artifact(
                    record.job_id, record.candidate_id, HISTORY_ARTIFACT
                )
            blob = artifact.content if artifact else ""

        try:
            return parse_history(blob)
        except ValueError as e:
            logger.warning(
                "Discarding unreadable conversation history (job_id=%s, candidate_id=%s): %s",
                record.job_id,
                record.candidate_id,
                e,
            )
            return []

    def save_history(
        self, record: PipelineRecord, history: List[ConversationMessage]
    ) -> Optional[str]:
        """
        Persist the conversation locally and, when configured, to the system of record.

        Returns:
            The system-of-record error message, or None when it succeeded or
            was not attempted
        """
        blob = dump_history(history)
        with PipelineStore(self.state_machine.db_path) as store:
            store.save_artifact(
                PipelineArtifact(
                    job_id=record.job_id,
                    candidate_id=record.candidate_id,
                    kind=HISTORY_ARTIFACT,
                    content=blob,
                    created_at=get_current_utc_timestamp(),
                )
            )

        if not self._uses_ats(record):
            return None
        try:
            self.ats_client.save_conversation_history(
                record.external_candidate_ref, record.external_job_ref, blob
            )
            return None
        except AtsClientError as e:
            logger.warning(
                "Conversation history not saved to system of record "
                "(job_id=%s, candidate_id=%s): %s",
                record.job_id,
                record.candidate_id,
                e,
            )
            return str(e)

    # ------------------------------------------------------------------
    # Message handling
    # ------------------------------------------------------------------

    def _decide(self, record: PipelineRecord, context: EngagementContext) -> EngagementProposal:
        try:
            proposal = self.decider.decide(context)
        except ToolError as e:
            if isinstance(e, GenerationError):
                raise
            raise GenerationError(f"Engagement decider failed: {e.message}", e, record) from e
        except Exception as e:
            summary = sanitize_collaborator_error(e)
            logger.warning(
                "Engagement decider failed (job_id=%s, candidate_id=%s): %s",
                record.job_id,
                record.candidate_id,
                summary,
            )
            raise GenerationError(f"Engagement decider failed: {summary}", e, record) from e

        if not isinstance(proposal, EngagementProposal):
            try:
                proposal = EngagementProposal.model_validate(proposal)
            except ValidationError as e:
                raise GenerationError(
                    f"Engagement decider returned a malformed proposal: {e.error_count()} errors",
                    e,
                    record,
                ) from e
        return proposal

    def _send_reply(self, record: PipelineRecord, recipient: str, reply: str) -> str:
        try:
            delivery_id = self.notifier.send(recipient, NotificationPayload(body=reply))
        except Exception as e:
            summary = sanitize_collaborator_error(e)
            logger.warning(
                "Engagement reply not delivered (job_id=%s, candidate_id=%s): %s",
                record.job_id,
                record.candidate_id,
                summary,
            )
            raise DeliveryError(f"Reply delivery failed: {summary}", e, record) from e
        return delivery_id

    def handle_message(
        self,
        job_id: str,
        candidate_id: str,
        message: str,
        recipient: Optional[str] = None,
    ) -> EngagementOutcome:
        """
        Process one inbound candidate message.

        Args:
            job_id: Job identifier of the record
            candidate_id: Candidate identifier of the record
            message: Inbound message text
            recipient: Candidate address for the reply; no reply is sent when
                None or when no notifier is configured

        Returns:
            EngagementOutcome describing the reply, any committed state and
            any human-takeover flag

        Raises:
            RecordNotFoundError: If the pair has no record
            ToolError: VALIDATION_ERROR if the record is outside the engagement region
            GenerationError: If the decision step fails
            DeliveryError: If the reply cannot be delivered
        """
        record = self.state_machine.get_record(job_id, candidate_id)
        if record.state not in ENGAGEMENT_STATES:
            raise create_validation_error(
                f"Record ({job_id}, {candidate_id}) is in {record.state.value}, "
                "outside candidate engagement"
            )

        history = self.load_history(record)
        history.append(ConversationMessage(role="user", content=message))

        proposal = self._decide(
            record,
            EngagementContext(
                job_id=job_id,
                candidate_id=candidate_id,
                state=record.state,
                history=history,
                incoming_message=message,
            ),
        )
        logger.info(
            "Engagement proposal (job_id=%s, candidate_id=%s): intent=%s next=%s confidence=%.2f",
            job_id,
            candidate_id,
            proposal.intent.value,
            proposal.suggested_next_state.value if proposal.suggested_next_state else None,
            proposal.confidence,
        )

        outcome = EngagementOutcome(record=record, proposal=proposal)
        if proposal.flag_for_human:
            outcome.flagged_for_human = True
            outcome.flag_reason = proposal.flag_reason or "Flagged by decision step"

        if proposal.reply and recipient and self.notifier is not None:
            outcome.delivery_id = self._send_reply(record, recipient, proposal.reply)
            outcome.reply_sent = True
            history.append(ConversationMessage(role="assistant", content=proposal.reply))

        target = proposal.suggested_next_state
        if target is not None and target != record.state and not outcome.flagged_for_human:
            if proposal.confidence < self.min_confidence:
                outcome.flagged_for_human = True
                outcome.flag_reason = (
                    f"Low confidence {proposal.confidence:.2f} < {self.min_confidence:.2f} "
                    f"for proposed {target.value}"
                )
            else:
                try:
                    outcome.record = self.state_machine.transition(
                        record,
                        target,
                        TransitionMeta(
                            triggered_by=TriggeredBy.AGENT,
                            actor_id=ENGAGEMENT_ACTOR,
                            notes=f"Engagement: candidate {proposal.intent.value}",
                        ),
                    )
                    outcome.committed_state = target
                except (InvalidTransitionError, StaleRecordError) as e:
                    outcome.flagged_for_human = True
                    outcome.flag_reason = e.message
                    outcome.transition_error = e.to_dict()["error"]

        if outcome.flagged_for_human:
            logger.warning(
                "Engagement flagged for human takeover (job_id=%s, candidate_id=%s): %s",
                job_id,
                candidate_id,
                outcome.flag_reason,
            )

        outcome.history_sync_error = self.save_history(outcome.record, history)
        return outcome

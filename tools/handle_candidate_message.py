"""
MCP tool handler for handle_candidate_message.

The calling agent is the decision step: it reads the candidate's message,
decides, and passes its structured proposal here. The engagement session
then sends the reply (when a messaging channel is configured), hands any
proposed stage to the state machine, and persists the conversation.
"""

from typing import Any, Dict, Optional, Tuple

from pydantic import ValidationError

from config import get_config
from models.errors import ToolError, create_internal_error, create_validation_error
from schemas.engagement import EngagementContext, EngagementProposal, HandleCandidateMessageRequest
from utils.collaborators import Notifier
from utils.engagement import EngagementSession
from utils.notifiers import parse_whatsapp_webhook
from utils.pydantic_error_mapper import map_pydantic_validation_error
from utils.validation import validate_identifier, validate_optional_text


class ProvidedProposal:
    """Decider that returns a proposal the caller already made."""

    def __init__(self, proposal: EngagementProposal):
        self.proposal = proposal

    def decide(self, context: EngagementContext) -> EngagementProposal:
        return self.proposal


def _resolve_message(request: HandleCandidateMessageRequest) -> Tuple[str, Optional[str]]:
    """Return the message text and reply recipient from text or a webhook payload."""
    if request.webhook is not None:
        if request.message is not None:
            raise create_validation_error(
                "Invalid request: provide either message or webhook, not both"
            )
        inbound = parse_whatsapp_webhook(request.webhook)
        if inbound is None:
            raise create_validation_error(
                "Invalid webhook: payload carries no inbound text message"
            )
        text = validate_optional_text(inbound["text"], "message")
        recipient = request.recipient or inbound["from"]
    else:
        text = validate_optional_text(request.message, "message")
        recipient = request.recipient
    if text is None:
        raise create_validation_error("Invalid message: cannot be empty")
    return text, recipient


def handle_candidate_message(
    args: Dict[str, Any], notifier: Optional[Notifier] = None
) -> Dict[str, Any]:
    """
    Apply the agent's decision for one inbound candidate message.

    Args:
        args: Dictionary containing parameters:
            - job_id (str): Job identifier
            - candidate_id (str): Candidate identifier
            - message (str, optional): The candidate's message text
            - webhook (dict, optional): Raw WhatsApp webhook payload carrying the
              message; exactly one of message and webhook is required
            - proposal (dict): {"intent", "reply"?, "suggested_next_state"?,
              "confidence", "flag_for_human"?, "flag_reason"?}
            - recipient (str, optional): Candidate phone number for the reply
              (default: the webhook sender)
            - db_path (str, optional): Database path override
        notifier: Messaging channel override; defaults to the configured
            WhatsApp notifier

    Returns:
        Dictionary with structure:
        {
            "record": {...},              # Record after any commit
            "proposal": {...},
            "reply_sent": bool,
            "delivery_id": str | None,
            "committed_state": str | None,
            "flagged_for_human": bool,
            "flag_reason": str | None,
            "transition_error": {...} | None,   # Why the state machine refused
            "history_sync_error": str | None
        }

        On error, returns {"error": {"code", "message", "retryable"}}.
    """
    try:
        request = HandleCandidateMessageRequest.model_validate(args)
        job_id = validate_identifier(request.job_id, "job_id")
        candidate_id = validate_identifier(request.candidate_id, "candidate_id")
        message, recipient = _resolve_message(request)
        proposal = EngagementProposal.model_validate(request.proposal)

        config = get_config()
        machine = config.build_state_machine(request.db_path)
        sync_adapter = machine.sync_adapter
        session = EngagementSession(
            machine,
            ProvidedProposal(proposal),
            notifier=notifier if notifier is not None else config.get_candidate_notifier(),
            ats_client=sync_adapter.client if sync_adapter is not None else None,
            min_confidence=config.engagement_min_confidence,
        )
        outcome = session.handle_message(
            job_id, candidate_id, message, recipient=recipient
        )
        return outcome.model_dump(mode="json")

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except ToolError as e:
        return e.to_dict()

    except Exception as e:
        internal_error = create_internal_error(message=str(e), original_error=e)
        return internal_error.to_dict()

"""Pydantic models for the conversational engagement sub-state."""

from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from models.status import PipelineState
from schemas.common import DbPathMixin, PairMixin, StrictIgnoreRequest
from schemas.pipeline import PipelineRecord


class EngagementIntent(str, Enum):
    """Candidate intent as classified by the decision step."""

    INTERESTED = "interested"
    NOT_INTERESTED = "not_interested"
    NEEDS_INFO = "needs_info"
    UNCLEAR = "unclear"


class ConversationMessage(BaseModel):
    """One turn of the candidate conversation."""

    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant"]
    content: str


class EngagementContext(BaseModel):
    """Everything the decision step sees for one inbound message."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    candidate_id: str
    state: PipelineState
    history: List[ConversationMessage] = Field(default_factory=list)
    incoming_message: str


class EngagementProposal(BaseModel):
    """Structured output of the decision step; never applied directly."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    intent: EngagementIntent
    reply: Optional[str] = None
    suggested_next_state: Optional[PipelineState] = None
    confidence: float = Field(..., ge=0.0, le=1.0)
    flag_for_human: bool = False
    flag_reason: Optional[str] = None


class EngagementOutcome(BaseModel):
    """What happened while handling one inbound message."""

    record: PipelineRecord
    proposal: EngagementProposal
    reply_sent: bool = False
    delivery_id: Optional[str] = None
    committed_state: Optional[PipelineState] = None
    flagged_for_human: bool = False
    flag_reason: Optional[str] = None
    transition_error: Optional[Dict[str, Any]] = None
    history_sync_error: Optional[str] = None


class HandleCandidateMessageRequest(PairMixin, DbPathMixin, StrictIgnoreRequest):
    """Request schema for handle_candidate_message.

    ``proposal`` is the calling agent's decision for this message, in the
    ``EngagementProposal`` shape. The message is given either as text or as
    the raw WhatsApp ``webhook`` payload it arrived in.
    """

    proposal: Dict[str, Any]
    message: Optional[str] = None
    webhook: Optional[Dict[str, Any]] = None
    recipient: Optional[str] = None

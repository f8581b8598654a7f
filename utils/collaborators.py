"""
Narrow contracts for the external collaborators the orchestrator drives.

Collaborators are black boxes: content generators (JD parsing, resume
scoring, CV refinement, grooming kits), notification channels (email,
messaging), the meeting scheduler and the engagement decision step. Any
object with the right method satisfies the contract; tests pass in small
fakes.
"""

from typing import List, Literal, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from schemas.engagement import EngagementContext, EngagementProposal


class NotificationPayload(BaseModel):
    """Message handed to a notification channel."""

    model_config = ConfigDict(frozen=True)

    subject: Optional[str] = None
    body: str = Field(..., min_length=1)


class MeetingRequest(BaseModel):
    """Interview scheduling request handed to the meeting scheduler."""

    model_config = ConfigDict(frozen=True)

    title: str = Field(..., min_length=1)
    attendees: List[str] = Field(..., min_length=1)
    mode: Literal["f2f", "virtual"] = "virtual"
    proposed_slots: List[str] = Field(default_factory=list)
    location: Optional[str] = None


@runtime_checkable
class Generator(Protocol):
    """Produces text content from a job description and a candidate profile."""

    def generate(self, job_description: str, candidate_profile: str) -> str:
        ...


@runtime_checkable
class Notifier(Protocol):
    """Delivers a payload to a recipient and returns a delivery id."""

    def send(self, recipient: str, payload: NotificationPayload) -> str:
        ...


@runtime_checkable
class MeetingScheduler(Protocol):
    """Creates a calendar event and returns its id."""

    def create_meeting(self, request: MeetingRequest) -> str:
        ...


@runtime_checkable
class EngagementDecider(Protocol):
    """Classifies an inbound candidate message and proposes the next step."""

    def decide(self, context: EngagementContext) -> EngagementProposal:
        ...

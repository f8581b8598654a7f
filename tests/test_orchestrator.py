"""
Tests for PipelineOrchestrator.

Collaborators are small in-memory fakes. Covers the single-step,
two-phase checkpoint and loop-back shapes.
"""

import os
import tempfile

import pytest
from pydantic import ValidationError

from db.pipeline_store import PipelineStore
from models.errors import (
    DeliveryError,
    ErrorCode,
    GenerationError,
    InvalidTransitionError,
    ToolError,
)
from models.status import PipelineState, TriggeredBy
from schemas.pipeline import TransitionMeta
from utils.collaborators import MeetingRequest, MeetingScheduler, Notifier
from utils.feedback import list_rejections
from utils.orchestrator import REFINED_CV_ARTIFACT, PipelineOrchestrator
from utils.state_machine import PipelineStateMachine

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


class FakeGenerator:
    def __init__(self, output="generated text", error=None):
        self.output = output
        self.error = error
        self.calls = []

    def generate(self, job_description, candidate_profile):
        self.calls.append((job_description, candidate_profile))
        if self.error is not None:
            raise self.error
        return self.output


class FakeNotifier:
    def __init__(self, error=None):
        self.error = error
        self.sent = []

    def send(self, recipient, payload):
        if self.error is not None:
            raise self.error
        self.sent.append((recipient, payload))
        return f"msg-{len(self.sent)}"


class FakeScheduler:
    def __init__(self):
        self.requests = []

    def create_meeting(self, request):
        self.requests.append(request)
        return "evt-42"


@pytest.fixture
def machine(temp_db):
    return PipelineStateMachine(temp_db)


def advance(machine, record, *targets):
    for target in targets:
        record = machine.transition(record, target, AGENT)
    return record


TO_CONFIRMED = (
    S.JD_PROCESSED,
    S.SOURCING,
    S.RESUME_MATCHED,
    S.CALLING,
    S.CONSENTED,
    S.JD_SHARED,
    S.CANDIDATE_CONFIRMED,
)


class TestCollaboratorContracts:
    """The fakes satisfy the runtime-checkable protocols."""

    def test_fakes_match_protocols(self):
        assert isinstance(FakeNotifier(), Notifier)
        assert isinstance(FakeScheduler(), MeetingScheduler)

    def test_meeting_request_validation(self):
        with pytest.raises(ValidationError):
            MeetingRequest(title="Round 1", attendees=[])
        with pytest.raises(ValidationError):
            MeetingRequest(title="Round 1", attendees=["a@x.com"], mode="phone")


class TestSingleStepStages:
    """Collaborator call followed by one commit."""

    def test_process_jd(self, machine):
        parser = FakeGenerator("Senior Java role, 5+ years, Kafka")
        orchestrator = PipelineOrchestrator(machine, jd_parser=parser)
        record = machine.create_record("job-1", "cand-1")

        record = orchestrator.process_jd(record, "raw JD text")

        assert record.state == S.JD_PROCESSED
        assert record.agent_notes.startswith("JD parsed. Senior Java role")
        assert parser.calls == [("raw JD text", "")]
        assert machine.list_events("job-1")[-1].actor_id == "jd-parser-agent"

    def test_generator_failure_commits_nothing(self, machine):
        orchestrator = PipelineOrchestrator(
            machine, jd_parser=FakeGenerator(error=TimeoutError("LLM timed out"))
        )
        record = machine.create_record("job-1", "cand-1")

        with pytest.raises(GenerationError) as exc_info:
            orchestrator.process_jd(record, "raw JD text")

        assert "LLM timed out" in exc_info.value.message
        assert exc_info.value.record == record
        assert machine.get_record("job-1", "cand-1").state == S.JD_RECEIVED

    def test_empty_generation_is_failure(self, machine):
        orchestrator = PipelineOrchestrator(machine, jd_parser=FakeGenerator(""))
        record = machine.create_record("job-1", "cand-1")
        with pytest.raises(GenerationError, match="empty result"):
            orchestrator.process_jd(record, "raw JD text")

    def test_missing_collaborator(self, machine):
        orchestrator = PipelineOrchestrator(machine)
        record = machine.create_record("job-1", "cand-1")
        with pytest.raises(ToolError) as exc_info:
            orchestrator.process_jd(record, "raw JD text")
        assert exc_info.value.code == ErrorCode.VALIDATION_ERROR

    def test_sourcing_and_matching(self, machine):
        scorer = FakeGenerator("Score 82/100")
        orchestrator = PipelineOrchestrator(machine, resume_scorer=scorer)
        record = advance(machine, machine.create_record("job-1", "cand-1"), S.JD_PROCESSED)

        record = orchestrator.start_sourcing(record, 12)
        assert record.agent_notes == "12 candidates pulled for evaluation"

        record = orchestrator.match_resume(record, "jd", "profile")
        assert record.state == S.RESUME_MATCHED
        assert record.agent_notes == "Score 82/100"

    def test_calling_retry_loop(self, machine):
        notifier = FakeNotifier()
        orchestrator = PipelineOrchestrator(machine, candidate_notifier=notifier)
        record = advance(
            machine, machine.create_record("job-1", "cand-1"), S.JD_PROCESSED, S.SOURCING,
            S.RESUME_MATCHED,
        )

        record = orchestrator.start_calling(record, "+15550100", "Hi, quick chat?")
        record = orchestrator.mark_not_reached(record)
        record = orchestrator.retry_call(record, "+15550100", "Trying again")
        record = orchestrator.mark_consented(record, "Happy to talk")

        assert record.state == S.CONSENTED
        assert [recipient for recipient, _ in notifier.sent] == ["+15550100", "+15550100"]

    def test_delivery_failure_before_commit(self, machine):
        orchestrator = PipelineOrchestrator(
            machine, candidate_notifier=FakeNotifier(error=ConnectionError("gateway down"))
        )
        record = advance(
            machine, machine.create_record("job-1", "cand-1"), S.JD_PROCESSED, S.SOURCING,
            S.RESUME_MATCHED,
        )
        with pytest.raises(DeliveryError):
            orchestrator.start_calling(record, "+15550100", "Hello")
        assert machine.get_record("job-1", "cand-1").state == S.RESUME_MATCHED

    def test_schedule_interview(self, machine):
        scheduler = FakeScheduler()
        orchestrator = PipelineOrchestrator(machine, scheduler=scheduler)
        record = advance(
            machine,
            machine.create_record("job-1", "cand-1"),
            *TO_CONFIRMED,
            S.CV_REFINED,
            S.CV_SUBMITTED,
            S.CV_SHORTLISTED,
        )

        request = MeetingRequest(title="Round 1", attendees=["hr@client.com"], mode="f2f")
        record = orchestrator.schedule_interview(record, request)

        assert record.state == S.INTERVIEW_SCHEDULED
        assert "evt-42" in record.agent_notes
        assert "(f2f)" in record.agent_notes
        assert scheduler.requests == [request]

    def test_interview_rounds(self, machine):
        orchestrator = PipelineOrchestrator(machine)
        record = advance(
            machine,
            machine.create_record("job-1", "cand-1"),
            *TO_CONFIRMED,
            S.CV_REFINED,
            S.CV_SUBMITTED,
            S.CV_SHORTLISTED,
            S.INTERVIEW_SCHEDULED,
        )

        record = orchestrator.start_interview_round(record)
        assert record.agent_notes == "Interview round 1"
        record = orchestrator.start_interview_round(record)
        assert record.agent_notes == "Interview round 2"
        assert record.interview_round == 2

        record = orchestrator.mark_selected(record, "Strong system design")
        assert record.state == S.SELECTED


class TestTwoPhaseStages:
    """Generate, checkpoint, deliver, commit."""

    def _confirmed(self, machine):
        return advance(machine, machine.create_record("job-1", "cand-1"), *TO_CONFIRMED)

    def test_refine_and_submit(self, machine):
        email = FakeNotifier()
        orchestrator = PipelineOrchestrator(
            machine, cv_refiner=FakeGenerator("Refined CV body"), email_notifier=email
        )

        record = orchestrator.refine_and_submit_cv(
            self._confirmed(machine), "jd", "profile", "hr@client.com"
        )

        assert record.state == S.CV_SUBMITTED
        assert record.previous_state == S.CV_REFINED
        recipient, payload = email.sent[0]
        assert recipient == "hr@client.com"
        assert payload.body == "Refined CV body"
        assert payload.subject == "Candidate profile for job job-1"

    def test_delivery_failure_leaves_checkpoint_and_resume_finishes(self, machine):
        email = FakeNotifier(error=ConnectionError("SMTP refused"))
        refiner = FakeGenerator("Refined CV body")
        orchestrator = PipelineOrchestrator(machine, cv_refiner=refiner, email_notifier=email)

        with pytest.raises(DeliveryError) as exc_info:
            orchestrator.refine_and_submit_cv(
                self._confirmed(machine), "jd", "profile", "hr@client.com"
            )

        checkpoint = exc_info.value.record
        assert checkpoint.state == S.CV_REFINED
        assert machine.get_record("job-1", "cand-1") == checkpoint
        with PipelineStore(machine.db_path) as store:
            artifact = store.get_latest_artifact("job-1", "cand-1", REFINED_CV_ARTIFACT)
        assert artifact.content == "Refined CV body"

        email.error = None
        record = orchestrator.resume_cv_submission(checkpoint, "hr@client.com")

        assert record.state == S.CV_SUBMITTED
        assert len(refiner.calls) == 1
        assert email.sent[0][1].body == "Refined CV body"

    def test_illegal_state_skips_generation(self, machine):
        refiner = FakeGenerator()
        orchestrator = PipelineOrchestrator(
            machine, cv_refiner=refiner, email_notifier=FakeNotifier()
        )
        record = machine.create_record("job-1", "cand-1")

        with pytest.raises(InvalidTransitionError):
            orchestrator.refine_and_submit_cv(record, "jd", "profile", "hr@client.com")
        assert refiner.calls == []

    def test_resume_requires_checkpoint_state(self, machine):
        orchestrator = PipelineOrchestrator(machine, email_notifier=FakeNotifier())
        with pytest.raises(ToolError, match="expected CV_REFINED"):
            orchestrator.resume_cv_submission(self._confirmed(machine), "hr@client.com")

    def test_resume_requires_artifact(self, machine):
        orchestrator = PipelineOrchestrator(machine, email_notifier=FakeNotifier())
        record = advance(machine, self._confirmed(machine), S.CV_REFINED)
        with pytest.raises(ToolError, match="No refined CV stored"):
            orchestrator.resume_cv_submission(record, "hr@client.com")

    def test_doj_and_invoice(self, machine):
        email = FakeNotifier(error=ConnectionError("SMTP refused"))
        orchestrator = PipelineOrchestrator(machine, email_notifier=email)
        record = advance(
            machine,
            self._confirmed(machine),
            S.CV_REFINED,
            S.CV_SUBMITTED,
            S.CV_SHORTLISTED,
            S.INTERVIEW_SCHEDULED,
            S.INTERVIEW_ROUNDS,
            S.SELECTED,
            S.DOCUMENTATION,
            S.OFFER_STAGE,
            S.NEGOTIATION_POSITIVE,
            S.OFFER_ACCEPTED,
        )

        with pytest.raises(DeliveryError) as exc_info:
            orchestrator.confirm_doj(record, "2026-03-01", "hr@client.com")
        assert exc_info.value.record.state == S.DOJ_CONFIRMED

        email.error = None
        record = orchestrator.resume_invoice_request(
            exc_info.value.record, "2026-03-01", "hr@client.com"
        )
        assert record.state == S.INVOICE_RAISED
        assert "joins on 2026-03-01" in email.sent[0][1].body

        record = orchestrator.close_placement(record, payment_received=False)
        assert record.state == S.PAYMENT_FOLLOWUP
        record = orchestrator.close_placement(record)
        assert record.state == S.CLOSED_PLACED
        assert machine.is_terminal(record.state)


class TestLoopBackStages:
    """Rejection commit, feedback append, follow-up commit."""

    def test_cv_rejection_resources(self, machine):
        orchestrator = PipelineOrchestrator(machine)
        record = advance(
            machine,
            machine.create_record("job-1", "cand-1"),
            *TO_CONFIRMED,
            S.CV_REFINED,
            S.CV_SUBMITTED,
        )

        record = orchestrator.mark_cv_rejected(record, "Lacks Kafka experience")

        assert record.state == S.SOURCING
        assert record.previous_state == S.CV_REJECTED
        assert record.rejection_reason == "Lacks Kafka experience"
        rejections = list_rejections("job-1", db_path=machine.db_path)
        assert [(r.stage, r.reason) for r in rejections] == [
            (S.CV_REJECTED, "Lacks Kafka experience")
        ]
        events = machine.list_events("job-1")
        assert events[-2].triggered_by == TriggeredBy.HUMAN
        assert events[-1].to_state == S.SOURCING

    def test_empty_reason_rejected_before_commit(self, machine):
        orchestrator = PipelineOrchestrator(machine)
        record = advance(
            machine,
            machine.create_record("job-1", "cand-1"),
            *TO_CONFIRMED,
            S.CV_REFINED,
            S.CV_SUBMITTED,
        )
        with pytest.raises(ToolError, match="reason"):
            orchestrator.mark_cv_rejected(record, "  ")
        assert machine.get_record("job-1", "cand-1").state == S.CV_SUBMITTED

    @pytest.mark.parametrize(
        "setup, method, rejection_state",
        [
            ((S.JD_PROCESSED, S.SOURCING, S.RESUME_MATCHED, S.CALLING),
             "mark_not_interested", S.NOT_INTERESTED),
            ((S.JD_PROCESSED, S.SOURCING, S.RESUME_MATCHED, S.CALLING, S.CONSENTED, S.JD_SHARED),
             "mark_candidate_not_interested", S.CANDIDATE_NOT_INTERESTED),
        ],
    )
    def test_candidate_declines_close_dropped(self, machine, setup, method, rejection_state):
        orchestrator = PipelineOrchestrator(machine)
        record = advance(machine, machine.create_record("job-1", "cand-1"), *setup)

        record = getattr(orchestrator, method)(record, "Happy in current role")

        assert record.state == S.CLOSED_DROPPED
        assert record.previous_state == rejection_state
        assert list_rejections("job-1", db_path=machine.db_path)[0].stage == rejection_state

    def test_offer_outcomes(self, machine):
        orchestrator = PipelineOrchestrator(machine)
        base = (
            *TO_CONFIRMED,
            S.CV_REFINED,
            S.CV_SUBMITTED,
            S.CV_SHORTLISTED,
            S.INTERVIEW_SCHEDULED,
            S.INTERVIEW_ROUNDS,
            S.SELECTED,
            S.DOCUMENTATION,
            S.OFFER_STAGE,
        )
        record = advance(machine, machine.create_record("job-1", "cand-1"), *base)
        with pytest.raises(ToolError, match="Allowed values: positive, negative"):
            orchestrator.process_offer(record, "maybe", "unclear")

        dropped = orchestrator.process_offer(record, "negative", "CTC gap too wide")
        assert dropped.state == S.CLOSED_DROPPED
        assert dropped.previous_state == S.NEGOTIATION_NEGATIVE

        record = advance(machine, machine.create_record("job-1", "cand-2"), *base)
        record = orchestrator.process_offer(record, "positive", "Agreed on CTC")
        declined = orchestrator.mark_offer_declined(record, "Counter offer accepted")
        assert declined.state == S.CLOSED_DROPPED
        assert declined.previous_state == S.NOT_POSITIVE

        stages = [r.stage for r in list_rejections("job-1", db_path=machine.db_path)]
        assert stages == [S.NEGOTIATION_NEGATIVE, S.NOT_POSITIVE]

    def test_post_interview_rejection(self, machine):
        orchestrator = PipelineOrchestrator(machine)
        record = advance(
            machine,
            machine.create_record("job-1", "cand-1"),
            *TO_CONFIRMED,
            S.CV_REFINED,
            S.CV_SUBMITTED,
            S.CV_SHORTLISTED,
            S.INTERVIEW_SCHEDULED,
            S.INTERVIEW_ROUNDS,
        )
        record = orchestrator.mark_rejected_post_interview(record, "Weak on system design")
        assert record.state == S.CLOSED_DROPPED
        assert record.previous_state == S.REJECTED


class TestShortlistAndDocumentation:
    """Optional notification followed by one commit."""

    def test_shortlist_sends_grooming_kit(self, machine):
        notifier = FakeNotifier()
        groomer = FakeGenerator("Prepare for system design")
        orchestrator = PipelineOrchestrator(
            machine, grooming_generator=groomer, candidate_notifier=notifier
        )
        record = advance(
            machine,
            machine.create_record("job-1", "cand-1"),
            *TO_CONFIRMED,
            S.CV_REFINED,
            S.CV_SUBMITTED,
        )

        record = orchestrator.mark_cv_shortlisted(
            record, grooming_recipient="+15550100", job_description="jd", candidate_profile="cv"
        )

        assert record.state == S.CV_SHORTLISTED
        assert notifier.sent[0][1].subject == "Interview preparation"
        assert groomer.calls == [("jd", "cv")]

    def test_grooming_failure_commits_nothing(self, machine):
        orchestrator = PipelineOrchestrator(
            machine,
            grooming_generator=FakeGenerator(error=RuntimeError("model overloaded")),
            candidate_notifier=FakeNotifier(),
        )
        record = advance(
            machine,
            machine.create_record("job-1", "cand-1"),
            *TO_CONFIRMED,
            S.CV_REFINED,
            S.CV_SUBMITTED,
        )

        with pytest.raises(GenerationError) as exc_info:
            orchestrator.mark_cv_shortlisted(record, grooming_recipient="+15550100")

        assert exc_info.value.record.state == S.CV_SUBMITTED
        assert machine.get_record("job-1", "cand-1").state == S.CV_SUBMITTED

    def test_grooming_delivery_failure_can_be_retried(self, machine):
        notifier = FakeNotifier(error=ConnectionError("gateway down"))
        orchestrator = PipelineOrchestrator(
            machine, grooming_generator=FakeGenerator("Kit"), candidate_notifier=notifier
        )
        record = advance(
            machine,
            machine.create_record("job-1", "cand-1"),
            *TO_CONFIRMED,
            S.CV_REFINED,
            S.CV_SUBMITTED,
        )

        with pytest.raises(DeliveryError) as exc_info:
            orchestrator.mark_cv_shortlisted(record, grooming_recipient="+15550100")

        assert exc_info.value.retryable is True
        assert machine.get_record("job-1", "cand-1").state == S.CV_SUBMITTED

        notifier.error = None
        record = orchestrator.mark_cv_shortlisted(
            machine.get_record("job-1", "cand-1"), grooming_recipient="+15550100"
        )
        assert record.state == S.CV_SHORTLISTED
        assert record.agent_notes == "CV approved by HR. Grooming kit sent (delivery msg-1)"

    def test_grooming_from_wrong_state_skips_generation(self, machine):
        groomer = FakeGenerator("Kit")
        orchestrator = PipelineOrchestrator(
            machine, grooming_generator=groomer, candidate_notifier=FakeNotifier()
        )
        record = machine.create_record("job-1", "cand-1")

        with pytest.raises(InvalidTransitionError):
            orchestrator.mark_cv_shortlisted(record, grooming_recipient="+15550100")
        assert groomer.calls == []

    def test_empty_outreach_message_is_validation_error(self, machine):
        notifier = FakeNotifier()
        orchestrator = PipelineOrchestrator(machine, candidate_notifier=notifier)
        record = advance(
            machine,
            machine.create_record("job-1", "cand-1"),
            S.JD_PROCESSED,
            S.SOURCING,
            S.RESUME_MATCHED,
        )

        with pytest.raises(ToolError) as exc_info:
            orchestrator.start_calling(record, "+15550100", "   ")

        assert exc_info.value.code == ErrorCode.VALIDATION_ERROR
        assert "cannot be empty" in exc_info.value.message
        assert notifier.sent == []
        assert machine.get_record("job-1", "cand-1").state == S.RESUME_MATCHED

    def test_whitespace_generator_output_is_empty_result(self, machine):
        orchestrator = PipelineOrchestrator(machine, jd_parser=FakeGenerator("  \n "))
        record = machine.create_record("job-1", "cand-1")

        with pytest.raises(GenerationError, match="empty result"):
            orchestrator.process_jd(record, "raw JD text")

    def test_documentation_request(self, machine):
        notifier = FakeNotifier()
        orchestrator = PipelineOrchestrator(machine, candidate_notifier=notifier)
        record = advance(
            machine,
            machine.create_record("job-1", "cand-1"),
            *TO_CONFIRMED,
            S.CV_REFINED,
            S.CV_SUBMITTED,
            S.CV_SHORTLISTED,
            S.INTERVIEW_SCHEDULED,
            S.INTERVIEW_ROUNDS,
            S.SELECTED,
        )

        record = orchestrator.request_documentation(record, recipient="+15550100")

        assert record.state == S.DOCUMENTATION
        assert record.agent_notes == "Documentation requested (delivery msg-1)"
        assert notifier.sent[0][1].subject == "Documents required"

        record = orchestrator.enter_offer_stage(record)
        assert record.state == S.OFFER_STAGE

"""
Stage orchestration: sequences collaborator calls around state transitions.

Every stage method takes the record as the caller last read it and returns
the settled record. Three shapes are used:

1. Single-step: call the collaborator(s), then commit one transition. A
   collaborator failure raises before anything is committed.
2. Two-phase with checkpoint: generate, persist the artifact, commit the
   checkpoint state, deliver, commit the delivered state. A delivery failure
   raises ``DeliveryError`` whose ``record`` is the checkpoint, and the
   matching ``resume_*`` method retries only the delivery.
3. Loop-back on a negative outcome: commit the rejection state, append the
   feedback row, then commit the follow-up state.

Transition errors (invalid, stale, not found) propagate unchanged.
"""

import logging
from typing import Any, Callable, Optional, TypeVar

from db.pipeline_store import PipelineStore
from models.errors import (
    DeliveryError,
    GenerationError,
    ToolError,
    create_validation_error,
    sanitize_collaborator_error,
)
from models.status import PipelineState, TriggeredBy
from schemas.pipeline import PipelineArtifact, PipelineRecord, TransitionMeta
from utils.collaborators import (
    Generator,
    MeetingRequest,
    MeetingScheduler,
    NotificationPayload,
    Notifier,
)
from utils.feedback import record_rejection
from utils.state_machine import PipelineStateMachine
from utils.validation import get_current_utc_timestamp

logger = logging.getLogger(__name__)

S = PipelineState

REFINED_CV_ARTIFACT = "refined_cv"
NOTES_PREVIEW_LENGTH = 300

T = TypeVar("T")


def _preview(text: str, limit: int = NOTES_PREVIEW_LENGTH) -> str:
    text = " ".join(text.split())
    return text if len(text) <= limit else text[: limit - 3] + "..."


class PipelineOrchestrator:
    """
    Drives a pipeline record through its stages.

    Usage:
        orchestrator = PipelineOrchestrator(
            machine,
            cv_refiner=refiner,
            email_notifier=email,
            candidate_notifier=whatsapp,
            scheduler=calendar,
        )
        record = orchestrator.refine_and_submit_cv(record, jd_text, profile, "hr@client.com")
    """

    def __init__(
        self,
        state_machine: PipelineStateMachine,
        jd_parser: Optional[Generator] = None,
        resume_scorer: Optional[Generator] = None,
        cv_refiner: Optional[Generator] = None,
        grooming_generator: Optional[Generator] = None,
        email_notifier: Optional[Notifier] = None,
        candidate_notifier: Optional[Notifier] = None,
        scheduler: Optional[MeetingScheduler] = None,
    ):
        self.state_machine = state_machine
        self.jd_parser = jd_parser
        self.resume_scorer = resume_scorer
        self.cv_refiner = cv_refiner
        self.grooming_generator = grooming_generator
        self.email_notifier = email_notifier
        self.candidate_notifier = candidate_notifier
        self.scheduler = scheduler

    @property
    def db_path(self) -> Optional[str]:
        return self.state_machine.db_path

    # ------------------------------------------------------------------
    # Collaborator helpers
    # ------------------------------------------------------------------

    def _commit(
        self,
        record: PipelineRecord,
        to_state: PipelineState,
        triggered_by: TriggeredBy,
        notes: Optional[str] = None,
        actor_id: Optional[str] = None,
        rejection_reason: Optional[str] = None,
    ) -> PipelineRecord:
        meta = TransitionMeta(
            triggered_by=triggered_by,
            actor_id=actor_id,
            notes=notes,
            rejection_reason=rejection_reason,
        )
        return self.state_machine.transition(record, to_state, meta)

    def _call(
        self,
        collaborator: Any,
        name: str,
        error_cls: Callable[..., ToolError],
        record: PipelineRecord,
        call: Callable[[], T],
    ) -> T:
        """Invoke a collaborator, translating any failure into ``error_cls``."""
        if collaborator is None:
            raise create_validation_error(f"No {name} configured for this orchestrator")
        try:
            result = call()
        except ToolError as e:
            if isinstance(e, (GenerationError, DeliveryError)):
                raise
            logger.warning("%s failed (job_id=%s, candidate_id=%s): %s",
                           name, record.job_id, record.candidate_id, e.message)
            raise error_cls(f"{name} failed: {e.message}", original_error=e, record=record) from e
        except Exception as e:
            summary = sanitize_collaborator_error(e)
            logger.warning("%s failed (job_id=%s, candidate_id=%s): %s",
                           name, record.job_id, record.candidate_id, summary)
            raise error_cls(f"{name} failed: {summary}", original_error=e, record=record) from e

        if not result or (isinstance(result, str) and not result.strip()):
            logger.warning("%s returned an empty result (job_id=%s, candidate_id=%s)",
                           name, record.job_id, record.candidate_id)
            raise error_cls(f"{name} returned an empty result", record=record)
        return result

    def _generate(
        self,
        generator: Optional[Generator],
        name: str,
        record: PipelineRecord,
        job_description: str,
        candidate_profile: str,
    ) -> str:
        return self._call(
            generator,
            name,
            GenerationError,
            record,
            lambda: generator.generate(job_description, candidate_profile),
        )

    def _send(
        self,
        notifier: Optional[Notifier],
        name: str,
        record: PipelineRecord,
        recipient: str,
        body: str,
        subject: Optional[str] = None,
    ) -> str:
        if not body or not body.strip():
            raise create_validation_error(f"Invalid message for {name}: cannot be empty")
        payload = NotificationPayload(subject=subject, body=body)
        return self._call(
            notifier, name, DeliveryError, record, lambda: notifier.send(recipient, payload)
        )

    def _reject_and_route(
        self,
        record: PipelineRecord,
        rejection_state: PipelineState,
        follow_up: PipelineState,
        reason: str,
        rejected_by: TriggeredBy,
        follow_up_notes: str,
    ) -> PipelineRecord:
        """Loop-back shape: rejection commit, feedback append, follow-up commit."""
        if not reason or not reason.strip():
            raise create_validation_error("Invalid reason: cannot be empty")

        rejected = self._commit(
            record, rejection_state, rejected_by, notes=reason, rejection_reason=reason
        )
        record_rejection(
            rejected.job_id, rejected.candidate_id, rejection_state, reason, self.db_path
        )
        return self._commit(rejected, follow_up, TriggeredBy.AGENT, notes=follow_up_notes)

    # ------------------------------------------------------------------
    # JD intake and sourcing
    # ------------------------------------------------------------------

    def process_jd(self, record: PipelineRecord, raw_jd_text: str) -> PipelineRecord:
        """JD_RECEIVED -> JD_PROCESSED after the JD parser summarizes the text."""
        logger.info("Processing JD (job_id=%s)", record.job_id)
        summary = self._generate(self.jd_parser, "JD parser", record, raw_jd_text, "")
        return self._commit(
            record,
            S.JD_PROCESSED,
            TriggeredBy.AGENT,
            notes=f"JD parsed. {_preview(summary)}",
            actor_id="jd-parser-agent",
        )

    def start_sourcing(self, record: PipelineRecord, candidate_count: int) -> PipelineRecord:
        """JD_PROCESSED -> SOURCING (also the re-source target after CV rejection)."""
        return self._commit(
            record,
            S.SOURCING,
            TriggeredBy.AGENT,
            notes=f"{candidate_count} candidates pulled for evaluation",
        )

    def match_resume(
        self, record: PipelineRecord, job_description: str, candidate_profile: str
    ) -> PipelineRecord:
        """SOURCING -> RESUME_MATCHED once the scorer has evaluated the resume."""
        score_summary = self._generate(
            self.resume_scorer, "Resume scorer", record, job_description, candidate_profile
        )
        return self._commit(
            record,
            S.RESUME_MATCHED,
            TriggeredBy.AGENT,
            notes=_preview(score_summary),
            actor_id="resume-scorer-agent",
        )

    # ------------------------------------------------------------------
    # Candidate engagement
    # ------------------------------------------------------------------

    def start_calling(self, record: PipelineRecord, recipient: str, message: str) -> PipelineRecord:
        """RESUME_MATCHED -> CALLING after the first outreach message is delivered."""
        delivery_id = self._send(
            self.candidate_notifier,
            "Candidate notifier",
            record,
            recipient,
            message,
        )
        return self._commit(
            record,
            S.CALLING,
            TriggeredBy.AGENT,
            notes=f"Initial contact sent (delivery {delivery_id})",
            actor_id="engagement-agent",
        )

    def mark_not_reached(self, record: PipelineRecord, notes: Optional[str] = None) -> PipelineRecord:
        return self._commit(
            record, S.NOT_REACHED, TriggeredBy.AGENT, notes=notes or "Candidate not reachable"
        )

    def retry_call(self, record: PipelineRecord, recipient: str, message: str) -> PipelineRecord:
        """NOT_REACHED -> CALLING: another contact attempt."""
        delivery_id = self._send(
            self.candidate_notifier,
            "Candidate notifier",
            record,
            recipient,
            message,
        )
        return self._commit(
            record,
            S.CALLING,
            TriggeredBy.AGENT,
            notes=f"Contact retried (delivery {delivery_id})",
            actor_id="engagement-agent",
        )

    def mark_consented(self, record: PipelineRecord, notes: str) -> PipelineRecord:
        return self._commit(record, S.CONSENTED, TriggeredBy.AGENT, notes=notes)

    def mark_not_interested(self, record: PipelineRecord, reason: str) -> PipelineRecord:
        """CALLING -> NOT_INTERESTED -> CLOSED_DROPPED with feedback captured."""
        return self._reject_and_route(
            record,
            S.NOT_INTERESTED,
            S.CLOSED_DROPPED,
            reason,
            TriggeredBy.AGENT,
            "Closed: candidate not interested",
        )

    def share_jd(self, record: PipelineRecord, recipient: str, jd_message: str) -> PipelineRecord:
        """CONSENTED -> JD_SHARED after the JD pitch is delivered."""
        delivery_id = self._send(
            self.candidate_notifier,
            "Candidate notifier",
            record,
            recipient,
            jd_message,
        )
        return self._commit(
            record,
            S.JD_SHARED,
            TriggeredBy.AGENT,
            notes=f"JD shared with candidate (delivery {delivery_id})",
            actor_id="engagement-agent",
        )

    def mark_candidate_confirmed(self, record: PipelineRecord, notes: str) -> PipelineRecord:
        return self._commit(record, S.CANDIDATE_CONFIRMED, TriggeredBy.AGENT, notes=notes)

    def mark_candidate_not_interested(self, record: PipelineRecord, reason: str) -> PipelineRecord:
        """JD_SHARED -> CANDIDATE_NOT_INTERESTED -> CLOSED_DROPPED with feedback."""
        return self._reject_and_route(
            record,
            S.CANDIDATE_NOT_INTERESTED,
            S.CLOSED_DROPPED,
            reason,
            TriggeredBy.AGENT,
            "Closed: candidate declined after JD",
        )

    # ------------------------------------------------------------------
    # CV submission
    # ------------------------------------------------------------------

    def refine_and_submit_cv(
        self,
        record: PipelineRecord,
        job_description: str,
        candidate_profile: str,
        hr_email: str,
    ) -> PipelineRecord:
        """
        CANDIDATE_CONFIRMED -> CV_REFINED -> CV_SUBMITTED (two-phase).

        Args:
            record: Record in CANDIDATE_CONFIRMED
            job_description: JD text for the refiner
            candidate_profile: Candidate resume / profile text
            hr_email: Client HR address the refined CV is emailed to

        Returns:
            Record in CV_SUBMITTED

        Raises:
            GenerationError: Refinement failed; nothing committed
            DeliveryError: Email failed; ``error.record`` is in CV_REFINED and
                ``resume_cv_submission`` completes the stage
        """
        logger.info(
            "Refining CV (job_id=%s, candidate_id=%s)", record.job_id, record.candidate_id
        )
        # Validate before generating so an illegal request costs no generator call
        self.state_machine.check_transition(record, S.CV_REFINED)
        refined_cv = self._generate(
            self.cv_refiner, "CV refiner", record, job_description, candidate_profile
        )

        with PipelineStore(self.db_path) as store:
            store.save_artifact(
                PipelineArtifact(
                    job_id=record.job_id,
                    candidate_id=record.candidate_id,
                    kind=REFINED_CV_ARTIFACT,
                    content=refined_cv,
                    created_at=get_current_utc_timestamp(),
                )
            )

        refined = self._commit(
            record,
            S.CV_REFINED,
            TriggeredBy.AGENT,
            notes=f"CV refined. {_preview(refined_cv, 120)}",
            actor_id="cv-refiner-agent",
        )
        return self._deliver_cv(refined, refined_cv, hr_email)

    def resume_cv_submission(self, record: PipelineRecord, hr_email: str) -> PipelineRecord:
        """Finish a CV submission whose delivery failed: CV_REFINED -> CV_SUBMITTED."""
        if record.state != S.CV_REFINED:
            raise create_validation_error(
                f"Cannot resume CV submission from state {record.state.value}; "
                f"expected {S.CV_REFINED.value}"
            )
        with PipelineStore(self.db_path) as store:
            artifact = store.get_latest_artifact(
                record.job_id, record.candidate_id, REFINED_CV_ARTIFACT
            )
        if artifact is None:
            raise create_validation_error(
                f"No refined CV stored for ({record.job_id}, {record.candidate_id})"
            )
        logger.info(
            "Resuming CV submission (job_id=%s, candidate_id=%s)",
            record.job_id,
            record.candidate_id,
        )
        return self._deliver_cv(record, artifact.content, hr_email)

    def _deliver_cv(self, refined: PipelineRecord, refined_cv: str, hr_email: str) -> PipelineRecord:
        self._send(
            self.email_notifier,
            "Email notifier",
            refined,
            hr_email,
            refined_cv,
            subject=f"Candidate profile for job {refined.job_id}",
        )
        return self._commit(
            refined,
            S.CV_SUBMITTED,
            TriggeredBy.AGENT,
            notes=f"CV emailed to HR ({hr_email})",
            actor_id="email-agent",
        )

    def mark_cv_shortlisted(
        self,
        record: PipelineRecord,
        notes: str = "CV approved by HR",
        grooming_recipient: Optional[str] = None,
        job_description: Optional[str] = None,
        candidate_profile: Optional[str] = None,
    ) -> PipelineRecord:
        """
        CV_SUBMITTED -> CV_SHORTLISTED, optionally sending a grooming kit first.

        Raises:
            GenerationError / DeliveryError: The grooming kit could not be
                produced or sent; nothing committed
        """
        if grooming_recipient is None:
            return self._commit(record, S.CV_SHORTLISTED, TriggeredBy.HUMAN, notes=notes)

        self.state_machine.check_transition(record, S.CV_SHORTLISTED)
        kit = self._generate(
            self.grooming_generator,
            "Grooming generator",
            record,
            job_description or "",
            candidate_profile or "",
        )
        delivery_id = self._send(
            self.candidate_notifier,
            "Candidate notifier",
            record,
            grooming_recipient,
            kit,
            subject="Interview preparation",
        )
        logger.info(
            "Grooming kit sent (job_id=%s, candidate_id=%s)",
            record.job_id,
            record.candidate_id,
        )
        return self._commit(
            record,
            S.CV_SHORTLISTED,
            TriggeredBy.HUMAN,
            notes=f"{notes}. Grooming kit sent (delivery {delivery_id})",
        )

    def mark_cv_rejected(self, record: PipelineRecord, reason: str) -> PipelineRecord:
        """CV_SUBMITTED -> CV_REJECTED -> SOURCING, logging the client's reason."""
        return self._reject_and_route(
            record,
            S.CV_REJECTED,
            S.SOURCING,
            reason,
            TriggeredBy.HUMAN,
            "Re-sourcing after CV rejection feedback",
        )

    # ------------------------------------------------------------------
    # Interviews
    # ------------------------------------------------------------------

    def schedule_interview(self, record: PipelineRecord, request: MeetingRequest) -> PipelineRecord:
        """CV_SHORTLISTED -> INTERVIEW_SCHEDULED once the calendar event exists."""
        event_id = self._call(
            self.scheduler,
            "Meeting scheduler",
            DeliveryError,
            record,
            lambda: self.scheduler.create_meeting(request),
        )
        return self._commit(
            record,
            S.INTERVIEW_SCHEDULED,
            TriggeredBy.AGENT,
            notes=f"Interview scheduled ({request.mode}). Calendar event: {event_id}",
            actor_id="scheduling-agent",
        )

    def start_interview_round(self, record: PipelineRecord, notes: Optional[str] = None) -> PipelineRecord:
        """Enter INTERVIEW_ROUNDS, or advance to the next round when already there."""
        next_round = (
            record.interview_round + 1
            if record.state == S.INTERVIEW_ROUNDS
            else max(record.interview_round, 1)
        )
        return self._commit(
            record,
            S.INTERVIEW_ROUNDS,
            TriggeredBy.HUMAN,
            notes=notes or f"Interview round {next_round}",
        )

    def mark_selected(self, record: PipelineRecord, notes: str) -> PipelineRecord:
        return self._commit(record, S.SELECTED, TriggeredBy.HUMAN, notes=notes)

    def mark_rejected_post_interview(self, record: PipelineRecord, reason: str) -> PipelineRecord:
        """INTERVIEW_ROUNDS -> REJECTED -> CLOSED_DROPPED with feedback."""
        return self._reject_and_route(
            record,
            S.REJECTED,
            S.CLOSED_DROPPED,
            reason,
            TriggeredBy.HUMAN,
            "Closed: rejected after interview",
        )

    # ------------------------------------------------------------------
    # Offer and joining
    # ------------------------------------------------------------------

    def request_documentation(
        self,
        record: PipelineRecord,
        recipient: Optional[str] = None,
        message: Optional[str] = None,
    ) -> PipelineRecord:
        """SELECTED -> DOCUMENTATION, optionally messaging the document checklist first."""
        notes = "Documentation requested"
        if recipient is not None:
            delivery_id = self._send(
                self.candidate_notifier,
                "Candidate notifier",
                record,
                recipient,
                message or "Please share your documents for the offer process.",
                subject="Documents required",
            )
            notes = f"Documentation requested (delivery {delivery_id})"
        return self._commit(record, S.DOCUMENTATION, TriggeredBy.AGENT, notes=notes)

    def enter_offer_stage(self, record: PipelineRecord, notes: Optional[str] = None) -> PipelineRecord:
        return self._commit(
            record, S.OFFER_STAGE, TriggeredBy.HUMAN, notes=notes or "Offer discussion started"
        )

    def process_offer(self, record: PipelineRecord, outcome: str, notes: str) -> PipelineRecord:
        """
        OFFER_STAGE -> NEGOTIATION_POSITIVE, or
        OFFER_STAGE -> NEGOTIATION_NEGATIVE -> CLOSED_DROPPED with feedback.

        Raises:
            ToolError: VALIDATION_ERROR if outcome is not "positive" or "negative"
        """
        if outcome == "positive":
            return self._commit(record, S.NEGOTIATION_POSITIVE, TriggeredBy.HUMAN, notes=notes)
        if outcome == "negative":
            return self._reject_and_route(
                record,
                S.NEGOTIATION_NEGATIVE,
                S.CLOSED_DROPPED,
                notes,
                TriggeredBy.HUMAN,
                "Closed: offer negotiation failed",
            )
        raise create_validation_error(
            f"Invalid outcome: '{outcome}'. Allowed values: positive, negative"
        )

    def mark_offer_accepted(self, record: PipelineRecord, notes: Optional[str] = None) -> PipelineRecord:
        return self._commit(
            record, S.OFFER_ACCEPTED, TriggeredBy.HUMAN, notes=notes or "Offer accepted"
        )

    def mark_offer_declined(self, record: PipelineRecord, reason: str) -> PipelineRecord:
        """NEGOTIATION_POSITIVE -> NOT_POSITIVE -> CLOSED_DROPPED with feedback."""
        return self._reject_and_route(
            record,
            S.NOT_POSITIVE,
            S.CLOSED_DROPPED,
            reason,
            TriggeredBy.HUMAN,
            "Closed: offer declined",
        )

    def confirm_doj(self, record: PipelineRecord, doj: str, hr_email: str) -> PipelineRecord:
        """
        OFFER_ACCEPTED -> DOJ_CONFIRMED -> INVOICE_RAISED (two-phase).

        Raises:
            DeliveryError: The offer/CTC request email failed; ``error.record``
                is in DOJ_CONFIRMED and ``resume_invoice_request`` completes it
        """
        confirmed = self._commit(
            record, S.DOJ_CONFIRMED, TriggeredBy.HUMAN, notes=f"DOJ confirmed: {doj}"
        )
        return self._request_invoice(confirmed, doj, hr_email)

    def resume_invoice_request(self, record: PipelineRecord, doj: str, hr_email: str) -> PipelineRecord:
        """Finish a DOJ confirmation whose HR email failed: DOJ_CONFIRMED -> INVOICE_RAISED."""
        if record.state != S.DOJ_CONFIRMED:
            raise create_validation_error(
                f"Cannot resume invoice request from state {record.state.value}; "
                f"expected {S.DOJ_CONFIRMED.value}"
            )
        return self._request_invoice(record, doj, hr_email)

    def _request_invoice(self, confirmed: PipelineRecord, doj: str, hr_email: str) -> PipelineRecord:
        self._send(
            self.email_notifier,
            "Email notifier",
            confirmed,
            hr_email,
            (
                f"Candidate {confirmed.candidate_id} joins on {doj}. "
                "Please share the final offer and CTC details for invoicing."
            ),
            subject=f"Offer and CTC details for job {confirmed.job_id}",
        )
        return self._commit(
            confirmed,
            S.INVOICE_RAISED,
            TriggeredBy.AGENT,
            notes=f"Invoice request sent to HR ({hr_email})",
            actor_id="email-agent",
        )

    def close_placement(
        self, record: PipelineRecord, payment_received: bool = True, notes: Optional[str] = None
    ) -> PipelineRecord:
        """
        Close a placement from INVOICE_RAISED or PAYMENT_FOLLOWUP.

        When the payment has not arrived yet an INVOICE_RAISED record moves to
        PAYMENT_FOLLOWUP instead of closing.
        """
        if not payment_received:
            return self._commit(
                record,
                S.PAYMENT_FOLLOWUP,
                TriggeredBy.AGENT,
                notes=notes or "Payment pending; follow-up started",
            )
        return self._commit(
            record, S.CLOSED_PLACED, TriggeredBy.HUMAN, notes=notes or "Placement closed"
        )

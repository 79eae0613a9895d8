# carefront/services/intake_session.py
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Tuple, Union

from carefront.audit import AuditOutcome, AuditSink, LoggingAuditSink, safe_record
from carefront.directory import DoctorDirectory
from carefront.errors import (
    CarefrontError,
    InvalidTransitionError,
    PersistenceError,
    RecordNotFoundError,
    SessionStateError,
    ValidationError,
)
from carefront.intake.agent import IntakeAgent
from carefront.intake.extractor import ReportExtractor
from carefront.intake.sanitizer import validate_login, validate_medical_card_id
from carefront.intake.schema import ClinicalReport, UrgencyLevel
from carefront.intake.stages import SessionStage
from carefront.intake.state import ConversationSession, ImageAttachment
from carefront.llm import LLMClient
from carefront.records.appointments import new_appointment, transition
from carefront.records.schema import (
    Appointment,
    AppointmentStatus,
    Patient,
    VisitRecord,
    human_date,
    utcnow,
)
from carefront.records.store import PatientRecordStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TurnOutcome:
    reply: str
    completed: bool = False
    degraded: bool = False
    # Filled when the completion sentinel triggered extraction
    report: Optional[ClinicalReport] = None
    extraction_error: Optional[CarefrontError] = None


@dataclass(frozen=True)
class AppointmentListing:
    medical_card_id: str
    patient_name: str
    appointment: Appointment


def enforce_red_flag_urgency(report: ClinicalReport) -> ClinicalReport:
    """
    Red flags imply at least Urgent. Escalate model output that says
    otherwise instead of trusting it.
    """
    if report.red_flags and report.urgency_level < UrgencyLevel.URGENT:
        logger.warning(
            "Report has %d red flags but urgency %s; escalating to Urgent",
            len(report.red_flags),
            report.urgency_level.value,
        )
        return report.model_copy(update={"urgency_level": UrgencyLevel.URGENT})
    return report


def history_digest(visit: VisitRecord) -> str:
    report = visit.report
    return (
        f"Last visit on {visit.visit_date} for {report.chief_complaint}. "
        f"Findings: {report.urgency_level.value} urgency."
    )


def append_history(existing: str, digest: str) -> str:
    existing = existing.strip()
    if not existing:
        return digest
    separator = " " if existing.endswith((".", "!", "?")) else ". "
    return f"{existing}{separator}{digest}"


class IntakeSessionService:
    """
    Service that coordinates:
      - resolving the patient context for a new intake
      - driving the IntakeAgent turn by turn
      - triggering report extraction on completion or on request
      - persisting visits and appointments to the PatientRecordStore

    Sessions are passed in by the caller; this class keeps no session state.
    It does not lock: callers serialize turns for one session, and writers
    for one patient.
    """

    def __init__(
        self,
        llm_client: LLMClient,
        store: PatientRecordStore,
        directory: Optional[DoctorDirectory] = None,
        audit: Optional[AuditSink] = None,
        agent: Optional[IntakeAgent] = None,
        extractor: Optional[ReportExtractor] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.directory = directory or DoctorDirectory()
        self.audit = audit or LoggingAuditSink()
        self.agent = agent or IntakeAgent(llm_client)
        self.extractor = extractor or ReportExtractor(llm_client)
        self.clock = clock

    # ------------------------------------------------------------------
    # Patients
    # ------------------------------------------------------------------

    def register_patient(self, name: str, medical_card_id: str) -> Patient:
        """
        Login flow: return the stored patient, or create a new record.
        """
        login = validate_login(name, medical_card_id)

        existing = self.store.find(login.medical_card_id)
        if existing is not None:
            safe_record(self.audit, existing.medical_card_id, "LOGIN", "Successful user login")
            return existing

        patient = Patient(medical_card_id=login.medical_card_id, name=login.name)
        self.store.upsert(patient)
        safe_record(self.audit, patient.medical_card_id, "REGISTER", "New patient registration")
        return patient

    def get_patient(self, medical_card_id: str) -> Optional[Patient]:
        validate_medical_card_id(medical_card_id)
        patient = self.store.find(medical_card_id)
        if patient is None:
            safe_record(
                self.audit,
                "system",
                "ACCESS_ATTEMPT_FAILED",
                f"Failed lookup for ID: {medical_card_id}",
                AuditOutcome.WARNING,
            )
        else:
            safe_record(
                self.audit,
                medical_card_id,
                "ACCESS_RECORD",
                f"Patient record retrieved for ID: {medical_card_id}",
            )
        return patient

    def record_unauthorized_access(self, actor_id: str, description: str) -> None:
        safe_record(
            self.audit,
            actor_id,
            "UNAUTHORIZED_ACCESS_ATTEMPT",
            description,
            AuditOutcome.WARNING,
        )

    def list_patients(self) -> List[Patient]:
        safe_record(self.audit, "admin", "BULK_EXPORT", "Accessed all patient records")
        return self.store.list_all()

    # ------------------------------------------------------------------
    # Conversation
    # ------------------------------------------------------------------

    async def start_session(
        self, medical_card_id: Optional[str] = None
    ) -> Tuple[ConversationSession, str]:
        """
        Start a new intake session.

        Returns:
          - the session handle (owned by the caller from now on)
          - the first assistant message
        """
        patient = self.get_patient(medical_card_id) if medical_card_id else None

        session = ConversationSession()
        greeting = await self.agent.start(session, patient)

        safe_record(
            self.audit,
            session.actor_id,
            "CHAT_SESSION_START",
            f"Intake session {session.session_id} initiated",
        )
        logger.info(
            "Started session %s (known patient: %s)", session.session_id, patient is not None
        )
        return session, greeting

    async def handle_turn(
        self,
        session: ConversationSession,
        text: str,
        image: Union[ImageAttachment, str, None] = None,
    ) -> TurnOutcome:
        """
        Handle a single patient message. When the assistant signals
        completion, extraction runs immediately; an extraction failure is
        reported on the outcome and the session is back in the active stage.
        """
        try:
            result = await self.agent.submit(session, text, image)
        except ValidationError as exc:
            safe_record(
                self.audit,
                session.actor_id,
                "MESSAGE_REJECTED",
                f"Message rejected: {exc.user_message}",
                AuditOutcome.WARNING,
            )
            raise

        if not result.completed:
            return TurnOutcome(reply=result.reply, degraded=result.degraded)

        try:
            report = await self.end_assessment(session, force=True)
        except CarefrontError as exc:
            return TurnOutcome(reply=result.reply, completed=True, extraction_error=exc)
        return TurnOutcome(reply=result.reply, completed=True, report=report)

    async def end_assessment(
        self, session: ConversationSession, force: bool = False
    ) -> ClinicalReport:
        """
        Extract a report from the session's transcript and persist it.

        Unforced calls need at least one patient message. On any failure the
        patient record is untouched and the session is active again.
        """
        if session.stage == SessionStage.UNINITIALIZED:
            raise SessionStateError(f"Session {session.session_id} was never started")
        if session.is_abandoned:
            raise SessionStateError(f"Session {session.session_id} was abandoned")
        if session.report is not None:
            raise SessionStateError(f"Session {session.session_id} already has a report")
        if not force and session.patient_turn_count() < 1:
            reason = "Please provide some information first."
            raise ValidationError(reason, user_message=reason)

        safe_record(
            self.audit,
            session.actor_id,
            "REPORT_GENERATION",
            f"Generating clinical report for session {session.session_id}",
        )

        try:
            report = await self.extractor.extract(session.turns, self.directory.list())
        except CarefrontError as exc:
            logger.warning("Extraction failed for session %s: %s", session.session_id, exc)
            self._report_failed(session, exc)
            raise

        if session.is_abandoned:
            # Abandoned while the extraction call was in flight
            raise SessionStateError(f"Session {session.session_id} was abandoned")

        report = enforce_red_flag_urgency(report)
        safe_record(
            self.audit,
            session.actor_id,
            "REPORT_GENERATED",
            f"Clinical report generated. Urgency: {report.urgency_level.value}",
        )

        if session.patient_context is not None:
            try:
                session.patient_context = self.attach_report(
                    session.patient_context.medical_card_id,
                    report,
                    visit_id=session.session_id,
                )
            except CarefrontError as exc:
                self._report_failed(session, exc)
                raise
            except Exception as exc:
                logger.exception("Saving report for session %s failed", session.session_id)
                self._report_failed(session, exc)
                raise PersistenceError(str(exc)) from exc

        session.report = report
        session.stage = SessionStage.COMPLETED
        return report

    def _report_failed(self, session: ConversationSession, exc: Exception) -> None:
        safe_record(
            self.audit,
            session.actor_id,
            "REPORT_FAILURE",
            f"Failed to generate clinical report: {type(exc).__name__}",
            AuditOutcome.FAILURE,
        )
        self.agent.reopen(session)

    def abandon_session(self, session: ConversationSession) -> None:
        """
        End a session without a report. Later turns and end_assessment
        calls on it raise SessionStateError. A session that already has a
        report stays completed.
        """
        if session.report is not None or session.is_abandoned:
            return
        if session.stage != SessionStage.UNINITIALIZED:
            safe_record(
                self.audit,
                session.actor_id,
                "CHAT_SESSION_ABANDONED",
                f"Intake session {session.session_id} abandoned",
                AuditOutcome.WARNING,
            )
        session.stage = SessionStage.ABANDONED

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def attach_report(
        self,
        medical_card_id: str,
        report: ClinicalReport,
        visit_id: Optional[str] = None,
    ) -> Patient:
        """
        Append a VisitRecord and extend the rolling history summary in one
        write. Re-attaching with a visit_id already on file changes nothing.
        """
        patient = self.store.find(medical_card_id)
        if patient is None:
            raise RecordNotFoundError(f"Patient {medical_card_id} not found")

        if visit_id is not None and patient.has_visit(visit_id):
            logger.info("Visit %s already recorded for %s", visit_id, medical_card_id)
            return patient

        now = self.clock()
        visit = VisitRecord(
            visit_id=visit_id or uuid.uuid4().hex,
            recorded_at=now,
            visit_date=human_date(now),
            report=report.model_copy(deep=True),
        )
        updated = patient.model_copy(
            update={
                "visits": [*patient.visits, visit],
                "history_summary": append_history(patient.history_summary, history_digest(visit)),
            }
        )
        self.store.upsert(updated)

        safe_record(
            self.audit,
            medical_card_id,
            "CLINICAL_REPORT_SAVED",
            f"New report generated. Urgency: {report.urgency_level.value}",
        )
        return updated

    def request_appointment(
        self,
        medical_card_id: str,
        doctor_id: str,
        date: str,
        time: str,
        visit_id: Optional[str] = None,
    ) -> Appointment:
        """
        Book a Pending appointment. With `visit_id`, the doctor must be the
        one that visit's report assigned.
        """
        if not date.strip() or not time.strip():
            reason = "Please choose a time slot."
            raise ValidationError(reason, user_message=reason)

        patient = self.store.find(medical_card_id)
        if patient is None:
            raise RecordNotFoundError(f"Patient {medical_card_id} not found")
        doctor = self.directory.get(doctor_id)
        if doctor is None:
            raise RecordNotFoundError(f"Doctor {doctor_id} not found")

        if visit_id is not None:
            visit = next((v for v in patient.visits if v.visit_id == visit_id), None)
            if visit is None:
                raise RecordNotFoundError(f"Visit {visit_id} not found")
            if visit.report.assigned_doctor_id != doctor_id:
                reason = "This doctor was not assigned by your report."
                raise ValidationError(reason, user_message=reason)

        appointment = new_appointment(doctor, date, time)
        self.store.upsert(
            patient.model_copy(update={"appointments": [*patient.appointments, appointment]})
        )

        safe_record(
            self.audit,
            medical_card_id,
            "APPOINTMENT_REQUEST",
            f"Request for {doctor.name}",
        )
        return appointment

    def update_appointment_status(
        self,
        medical_card_id: str,
        appointment_id: str,
        status: AppointmentStatus,
        actor_id: str = "admin",
    ) -> Appointment:
        patient = self.store.find(medical_card_id)
        if patient is None:
            raise RecordNotFoundError(f"Patient {medical_card_id} not found")
        current = patient.find_appointment(appointment_id)
        if current is None:
            raise RecordNotFoundError(f"Appointment {appointment_id} not found")

        try:
            updated_appt = transition(current, status)
        except InvalidTransitionError:
            safe_record(
                self.audit,
                actor_id,
                "APPOINTMENT_STATUS_CHANGE",
                f"Rejected {current.status.value} -> {status.value} for appointment {appointment_id}",
                AuditOutcome.WARNING,
            )
            raise

        appointments = [
            updated_appt if appt.id == appointment_id else appt for appt in patient.appointments
        ]
        self.store.upsert(patient.model_copy(update={"appointments": appointments}))

        safe_record(
            self.audit,
            actor_id,
            "APPOINTMENT_STATUS_CHANGE",
            f"Appointment {status.value} for Patient {medical_card_id}",
        )
        return updated_appt

    def list_appointments(
        self, status: Optional[AppointmentStatus] = None
    ) -> List[AppointmentListing]:
        """Appointments across all patients, oldest request first."""
        listings = [
            AppointmentListing(p.medical_card_id, p.name, appt)
            for p in self.store.list_all()
            for appt in p.appointments
            if status is None or appt.status == status
        ]
        listings.sort(key=lambda item: item.appointment.requested_at)
        return listings

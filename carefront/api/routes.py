# carefront/api/routes.py
from __future__ import annotations

from functools import lru_cache
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from carefront.audit import build_audit_sink
from carefront.auth import Authenticator, Principal, TokenAuthenticator
from carefront.directory import DoctorDirectory
from carefront.errors import RecordNotFoundError
from carefront.intake.schema import ClinicalReport, Doctor
from carefront.intake.state import ConversationSession
from carefront.llm import OpenAILLMClient
from carefront.records.schema import Appointment, AppointmentStatus, Patient
from carefront.records.store import SqlPatientRecordStore
from carefront.services import IntakeSessionService
from .schemas import (
    AppointmentListingSchema,
    AppointmentListResponse,
    AppointmentRequest,
    AppointmentStatusRequest,
    DoctorCreateRequest,
    DoctorStatusRequest,
    EndAssessmentRequest,
    IntakeMessageRequest,
    IntakeMessageResponse,
    LoginRequest,
    StartIntakeRequest,
    StartIntakeResponse,
)

router = APIRouter()
security = HTTPBearer(auto_error=False)

# Session handles owned by this HTTP caller, keyed by session id
_session_states: Dict[str, ConversationSession] = {}


@lru_cache(maxsize=1)
def get_service() -> IntakeSessionService:
    # OpenAILLMClient only needs OPENAI_API_KEY once a route calls the model
    return IntakeSessionService(
        llm_client=OpenAILLMClient(),
        store=SqlPatientRecordStore(),
        directory=DoctorDirectory(),
        audit=build_audit_sink(),
    )


@lru_cache(maxsize=1)
def get_authenticator() -> Authenticator:
    return TokenAuthenticator()


def require_admin(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    authenticator: Authenticator = Depends(get_authenticator),
    service: IntakeSessionService = Depends(get_service),
) -> Principal:
    token = credentials.credentials if credentials else None
    principal = authenticator.authenticate(token)
    if principal is None or not principal.is_admin:
        service.record_unauthorized_access(
            "guest", f"Attempted admin access to {request.method} {request.url.path}"
        )
        raise HTTPException(
            status_code=401,
            detail="Access restricted: administrators only.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal


def _get_session_state(session_id: str) -> ConversationSession:
    session = _session_states.get(session_id)
    if session is None:
        raise HTTPException(
            status_code=404,
            detail="Intake session not found. Start a new intake session.",
        )
    return session


# ----------------------------------------------------------------------
# Patients
# ----------------------------------------------------------------------


@router.post("/patients/login", response_model=Patient)
def login(
    payload: LoginRequest,
    service: IntakeSessionService = Depends(get_service),
) -> Patient:
    return service.register_patient(payload.name, payload.medical_card_id)


@router.get("/patients/{medical_card_id}", response_model=Patient)
def get_patient(
    medical_card_id: str,
    service: IntakeSessionService = Depends(get_service),
) -> Patient:
    patient = service.get_patient(medical_card_id)
    if patient is None:
        raise RecordNotFoundError(f"Patient {medical_card_id} not found")
    return patient


@router.post("/patients/{medical_card_id}/appointments", response_model=Appointment)
def request_appointment(
    medical_card_id: str,
    payload: AppointmentRequest,
    service: IntakeSessionService = Depends(get_service),
) -> Appointment:
    return service.request_appointment(
        medical_card_id,
        payload.doctor_id,
        payload.date,
        payload.time,
        visit_id=payload.visit_id,
    )


# ----------------------------------------------------------------------
# Intake
# ----------------------------------------------------------------------


@router.post("/intake/start", response_model=StartIntakeResponse)
async def start_intake(
    payload: StartIntakeRequest,
    service: IntakeSessionService = Depends(get_service),
) -> StartIntakeResponse:
    """
    Start a new intake session and return the first assistant message.
    """
    session, greeting = await service.start_session(payload.medical_card_id)
    _session_states[session.session_id] = session

    return StartIntakeResponse(
        session_id=session.session_id,
        greeting=greeting,
        stage=session.stage.value,
    )


@router.post("/intake/{session_id}/message", response_model=IntakeMessageResponse)
async def intake_message(
    session_id: str,
    payload: IntakeMessageRequest,
    service: IntakeSessionService = Depends(get_service),
) -> IntakeMessageResponse:
    session = _get_session_state(session_id)
    outcome = await service.handle_turn(session, payload.message, payload.image)
    if session.report is not None:
        _session_states.pop(session_id, None)

    error = outcome.extraction_error
    return IntakeMessageResponse(
        reply=outcome.reply,
        is_complete=outcome.report is not None,
        degraded=outcome.degraded,
        stage=session.stage.value,
        report=outcome.report,
        error=error.user_message if error else None,
        retryable=getattr(error, "retryable", None) if error else None,
    )


@router.post("/intake/{session_id}/end", response_model=ClinicalReport)
async def end_assessment(
    session_id: str,
    payload: EndAssessmentRequest,
    service: IntakeSessionService = Depends(get_service),
) -> ClinicalReport:
    session = _get_session_state(session_id)
    report = await service.end_assessment(session, force=payload.force)
    _session_states.pop(session_id, None)
    return report


@router.delete("/intake/{session_id}", status_code=204)
def abandon_intake(
    session_id: str,
    service: IntakeSessionService = Depends(get_service),
) -> None:
    session = _session_states.pop(session_id, None)
    if session is not None:
        service.abandon_session(session)


# ----------------------------------------------------------------------
# Doctors
# ----------------------------------------------------------------------


@router.get("/doctors", response_model=List[Doctor])
def list_doctors(service: IntakeSessionService = Depends(get_service)) -> List[Doctor]:
    return service.directory.list()


@router.patch("/doctors/{doctor_id}", response_model=Doctor)
def set_doctor_status(
    doctor_id: str,
    payload: DoctorStatusRequest,
    service: IntakeSessionService = Depends(get_service),
    principal: Principal = Depends(require_admin),
) -> Doctor:
    return service.directory.set_status(doctor_id, payload.status)


@router.post("/doctors", response_model=Doctor, status_code=201)
def add_doctor(
    payload: DoctorCreateRequest,
    service: IntakeSessionService = Depends(get_service),
    principal: Principal = Depends(require_admin),
) -> Doctor:
    return service.directory.add(payload.name, payload.specialty, payload.experience)


@router.delete("/doctors/{doctor_id}", status_code=204)
def remove_doctor(
    doctor_id: str,
    service: IntakeSessionService = Depends(get_service),
    principal: Principal = Depends(require_admin),
) -> None:
    service.directory.remove(doctor_id)


# ----------------------------------------------------------------------
# Admin
# ----------------------------------------------------------------------


@router.get("/admin/patients", response_model=List[Patient])
def list_patients(
    service: IntakeSessionService = Depends(get_service),
    principal: Principal = Depends(require_admin),
) -> List[Patient]:
    return service.list_patients()


@router.get("/admin/appointments", response_model=AppointmentListResponse)
def list_appointments(
    status: Optional[AppointmentStatus] = None,
    service: IntakeSessionService = Depends(get_service),
    principal: Principal = Depends(require_admin),
) -> AppointmentListResponse:
    listings = service.list_appointments(status)
    return AppointmentListResponse(
        appointments=[
            AppointmentListingSchema(
                medical_card_id=item.medical_card_id,
                patient_name=item.patient_name,
                appointment=item.appointment,
            )
            for item in listings
        ]
    )


@router.patch(
    "/admin/patients/{medical_card_id}/appointments/{appointment_id}",
    response_model=Appointment,
)
def update_appointment_status(
    medical_card_id: str,
    appointment_id: str,
    payload: AppointmentStatusRequest,
    service: IntakeSessionService = Depends(get_service),
    principal: Principal = Depends(require_admin),
) -> Appointment:
    return service.update_appointment_status(
        medical_card_id, appointment_id, payload.status, actor_id=principal.actor_id
    )

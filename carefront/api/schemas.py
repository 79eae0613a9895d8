# carefront/api/schemas.py
from __future__ import annotations

from typing import Optional, List

from pydantic import BaseModel

from carefront.intake.schema import ClinicalReport, DoctorStatus
from carefront.records.schema import Appointment, AppointmentStatus


class LoginRequest(BaseModel):
    name: str
    medical_card_id: str


class StartIntakeRequest(BaseModel):
    medical_card_id: Optional[str] = None


class StartIntakeResponse(BaseModel):
    session_id: str
    greeting: str
    stage: str


class IntakeMessageRequest(BaseModel):
    message: str
    # data:<mime>;base64,<payload>
    image: Optional[str] = None


class IntakeMessageResponse(BaseModel):
    reply: str
    is_complete: bool
    degraded: bool
    stage: str
    report: Optional[ClinicalReport] = None
    error: Optional[str] = None
    retryable: Optional[bool] = None


class EndAssessmentRequest(BaseModel):
    force: bool = False


class AppointmentRequest(BaseModel):
    doctor_id: str
    date: str
    time: str
    # Visit whose report assigned this doctor
    visit_id: Optional[str] = None


class AppointmentStatusRequest(BaseModel):
    status: AppointmentStatus


class DoctorStatusRequest(BaseModel):
    status: DoctorStatus


class DoctorCreateRequest(BaseModel):
    name: str
    specialty: str
    experience: Optional[str] = None


class AppointmentListingSchema(BaseModel):
    medical_card_id: str
    patient_name: str
    appointment: Appointment


class AppointmentListResponse(BaseModel):
    appointments: List[AppointmentListingSchema]

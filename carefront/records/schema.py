# carefront/records/schema.py
from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import List

from pydantic import BaseModel, ConfigDict, Field

from carefront.intake.schema import ClinicalReport

MEDICAL_CARD_ID_PATTERN = re.compile(r"^\d{3}-\d{3}-\d{3}$")

NEW_PATIENT_HISTORY = "No previous records in this system."


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def human_date(value: datetime) -> str:
    """M/D/YYYY without zero padding, e.g. 10/7/2026."""
    return f"{value.month}/{value.day}/{value.year}"


class AppointmentStatus(str, Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    CANCELLED = "Cancelled"


class VisitRecord(BaseModel):
    visit_id: str
    recorded_at: datetime = Field(default_factory=utcnow)
    visit_date: str
    report: ClinicalReport

    model_config = ConfigDict(frozen=True)


class Appointment(BaseModel):
    id: str
    doctor_id: str
    # Snapshot of the doctor's name at request time
    doctor_name: str
    date: str
    time: str
    status: AppointmentStatus = AppointmentStatus.PENDING
    requested_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(frozen=True)


class Patient(BaseModel):
    medical_card_id: str = Field(..., pattern=MEDICAL_CARD_ID_PATTERN.pattern)
    name: str
    history_summary: str = NEW_PATIENT_HISTORY
    visits: List[VisitRecord] = Field(default_factory=list)
    appointments: List[Appointment] = Field(default_factory=list)

    def has_visit(self, visit_id: str) -> bool:
        return any(v.visit_id == visit_id for v in self.visits)

    def find_appointment(self, appointment_id: str) -> Appointment | None:
        for appt in self.appointments:
            if appt.id == appointment_id:
                return appt
        return None

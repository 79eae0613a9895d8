# carefront/records/appointments.py
from __future__ import annotations

import uuid
from typing import Dict, FrozenSet

from carefront.errors import InvalidTransitionError
from carefront.intake.schema import Doctor
from carefront.records.schema import Appointment, AppointmentStatus

# Pending is the only non-terminal status
ALLOWED_TRANSITIONS: Dict[AppointmentStatus, FrozenSet[AppointmentStatus]] = {
    AppointmentStatus.PENDING: frozenset(
        {AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED}
    ),
    AppointmentStatus.CONFIRMED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
}


def new_appointment(doctor: Doctor, date: str, time: str) -> Appointment:
    return Appointment(
        id=uuid.uuid4().hex,
        doctor_id=doctor.id,
        doctor_name=doctor.name,
        date=date.strip(),
        time=time.strip(),
        status=AppointmentStatus.PENDING,
    )


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def transition(appointment: Appointment, target: AppointmentStatus) -> Appointment:
    """
    Return a copy of `appointment` moved to `target`.

    Raises InvalidTransitionError for anything other than
    Pending -> Confirmed / Pending -> Cancelled.
    """
    if not can_transition(appointment.status, target):
        raise InvalidTransitionError(
            f"Appointment {appointment.id}: {appointment.status.value} -> {target.value} is not allowed"
        )
    return appointment.model_copy(update={"status": target})

# carefront/directory.py
from __future__ import annotations

import logging
import uuid
from typing import Dict, Iterable, List, Optional

from carefront.errors import RecordNotFoundError, ValidationError
from carefront.intake.schema import Doctor, DoctorStatus

logger = logging.getLogger(__name__)

DEFAULT_EXPERIENCE = "1 year"


DEFAULT_ROSTER: List[Doctor] = [
    Doctor(id="d1", name="Dr. Sarah Chen", specialty="Cardiology", experience="12 years"),
    Doctor(id="d2", name="Dr. James Wilson", specialty="General Practice", experience="8 years"),
    Doctor(id="d3", name="Dr. Emily Carter", specialty="Dermatology", experience="15 years"),
    Doctor(
        id="d4",
        name="Dr. Michael Ross",
        specialty="Orthopedics",
        experience="20 years",
        status=DoctorStatus.IN_SURGERY,
    ),
    Doctor(id="d5", name="Dr. Alan Grant", specialty="Psychiatry", experience="14 years"),
    Doctor(
        id="d6",
        name="Dr. Lisa Ray",
        specialty="Physiotherapy",
        experience="6 years",
        status=DoctorStatus.ON_CALL,
    ),
    Doctor(id="d7", name="Dr. Raj Patel", specialty="Neurology", experience="18 years"),
    Doctor(id="d8", name="Dr. Sofia Vergara", specialty="Pediatrics", experience="10 years"),
]


class DoctorDirectory:
    """
    In-memory roster keyed by doctor id. Insertion order is preserved so the
    roster is rendered to the extraction prompt in a stable order.
    """

    def __init__(self, doctors: Optional[Iterable[Doctor]] = None):
        roster = DEFAULT_ROSTER if doctors is None else doctors
        self._doctors: Dict[str, Doctor] = {}
        for doctor in roster:
            if doctor.id in self._doctors:
                raise ValueError(f"Duplicate doctor id {doctor.id}")
            self._doctors[doctor.id] = doctor

    def list(self) -> List[Doctor]:
        return list(self._doctors.values())

    def get(self, doctor_id: str) -> Optional[Doctor]:
        return self._doctors.get(doctor_id)

    def available(self) -> List[Doctor]:
        return [d for d in self._doctors.values() if d.status == DoctorStatus.AVAILABLE]

    def add(
        self,
        name: str,
        specialty: str,
        experience: Optional[str] = None,
        doctor_id: Optional[str] = None,
    ) -> Doctor:
        """Add an Available doctor. The id is generated unless given."""
        if not name.strip() or not specialty.strip():
            reason = "Doctor name and specialty are required."
            raise ValidationError(reason, user_message=reason)

        doctor_id = doctor_id or uuid.uuid4().hex[:9]
        if doctor_id in self._doctors:
            reason = f"Doctor id {doctor_id} already exists."
            raise ValidationError(reason, user_message=reason)

        doctor = Doctor(
            id=doctor_id,
            name=name.strip(),
            specialty=specialty.strip(),
            experience=(experience or "").strip() or DEFAULT_EXPERIENCE,
            status=DoctorStatus.AVAILABLE,
        )
        self._doctors[doctor_id] = doctor
        logger.info("Added doctor %s (%s)", doctor_id, doctor.specialty)
        return doctor

    def remove(self, doctor_id: str) -> Doctor:
        doctor = self._doctors.pop(doctor_id, None)
        if doctor is None:
            raise RecordNotFoundError(f"Doctor {doctor_id} not found")
        logger.info("Removed doctor %s", doctor_id)
        return doctor

    def set_status(self, doctor_id: str, status: DoctorStatus) -> Doctor:
        doctor = self._doctors.get(doctor_id)
        if doctor is None:
            raise RecordNotFoundError(f"Doctor {doctor_id} not found")

        updated = doctor.model_copy(update={"status": status})
        self._doctors[doctor_id] = updated
        logger.info("Doctor %s status %s -> %s", doctor_id, doctor.status.value, status.value)
        return updated

# carefront/records/store.py
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from carefront.db import db_session, get_sessionmaker
from carefront.intake.schema import ClinicalReport
from carefront.models import AppointmentRow, PatientRow, VisitRow
from carefront.records.schema import Appointment, AppointmentStatus, Patient, VisitRecord

logger = logging.getLogger(__name__)


class PatientRecordStore(ABC):
    """
    Key-value store of Patient aggregates keyed by medical card id.

    Last write wins per key; no transactions across patients.
    """

    @abstractmethod
    def find(self, medical_card_id: str) -> Optional[Patient]:
        ...

    @abstractmethod
    def upsert(self, patient: Patient) -> None:
        ...

    @abstractmethod
    def list_all(self) -> List[Patient]:
        ...


class InMemoryPatientRecordStore(PatientRecordStore):
    """In-memory store for tests and demos. Copies on the way in and out."""

    def __init__(self) -> None:
        self._patients: Dict[str, Patient] = {}

    def find(self, medical_card_id: str) -> Optional[Patient]:
        patient = self._patients.get(medical_card_id)
        return patient.model_copy(deep=True) if patient is not None else None

    def upsert(self, patient: Patient) -> None:
        self._patients[patient.medical_card_id] = patient.model_copy(deep=True)

    def list_all(self) -> List[Patient]:
        return [p.model_copy(deep=True) for p in self._patients.values()]


class SqlPatientRecordStore(PatientRecordStore):
    """
    SQLAlchemy-backed store. The whole aggregate is written in one
    transaction, so a visit and its history-summary update land together.
    """

    def __init__(self, session_factory: sessionmaker | None = None):
        self.session_factory = session_factory or get_sessionmaker()

    def find(self, medical_card_id: str) -> Optional[Patient]:
        with db_session(self.session_factory) as session:
            row = session.get(PatientRow, medical_card_id)
            if row is None:
                return None
            return _row_to_patient(row)

    def upsert(self, patient: Patient) -> None:
        with db_session(self.session_factory) as session:
            row = session.get(PatientRow, patient.medical_card_id)
            if row is None:
                row = PatientRow(medical_card_id=patient.medical_card_id)
                session.add(row)
            else:
                row.updated_at = datetime.now(timezone.utc)

            row.name = patient.name
            row.history_summary = patient.history_summary
            _sync_visits(row, patient.visits)
            _sync_appointments(row, patient.appointments)

        logger.debug(
            "Stored patient %s (%d visits, %d appointments)",
            patient.medical_card_id,
            len(patient.visits),
            len(patient.appointments),
        )

    def list_all(self) -> List[Patient]:
        with db_session(self.session_factory) as session:
            stmt = select(PatientRow).order_by(PatientRow.created_at.asc())
            return [_row_to_patient(row) for row in session.scalars(stmt)]


def _sync_visits(row: PatientRow, visits: List[VisitRecord]) -> None:
    existing = {v.visit_id: v for v in row.visits}
    wanted = {v.visit_id for v in visits}

    for visit_id, visit_row in existing.items():
        if visit_id not in wanted:
            row.visits.remove(visit_row)

    for position, visit in enumerate(visits):
        visit_row = existing.get(visit.visit_id)
        if visit_row is None:
            visit_row = VisitRow(visit_id=visit.visit_id)
            row.visits.append(visit_row)
        visit_row.position = position
        visit_row.recorded_at = visit.recorded_at
        visit_row.visit_date = visit.visit_date
        visit_row.report = visit.report.model_dump(mode="json", by_alias=True)


def _sync_appointments(row: PatientRow, appointments: List[Appointment]) -> None:
    existing = {a.id: a for a in row.appointments}
    wanted = {a.id for a in appointments}

    for appt_id, appt_row in existing.items():
        if appt_id not in wanted:
            row.appointments.remove(appt_row)

    for position, appt in enumerate(appointments):
        appt_row = existing.get(appt.id)
        if appt_row is None:
            appt_row = AppointmentRow(id=appt.id)
            row.appointments.append(appt_row)
        appt_row.position = position
        appt_row.doctor_id = appt.doctor_id
        appt_row.doctor_name = appt.doctor_name
        appt_row.date = appt.date
        appt_row.time = appt.time
        appt_row.status = appt.status.value
        appt_row.requested_at = appt.requested_at


def _row_to_patient(row: PatientRow) -> Patient:
    return Patient(
        medical_card_id=row.medical_card_id,
        name=row.name,
        history_summary=row.history_summary,
        visits=[
            VisitRecord(
                visit_id=v.visit_id,
                recorded_at=v.recorded_at,
                visit_date=v.visit_date,
                report=ClinicalReport.model_validate(v.report),
            )
            for v in row.visits
        ],
        appointments=[
            Appointment(
                id=a.id,
                doctor_id=a.doctor_id,
                doctor_name=a.doctor_name,
                date=a.date,
                time=a.time,
                status=AppointmentStatus(a.status),
                requested_at=a.requested_at,
            )
            for a in row.appointments
        ],
    )

# carefront/models.py
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from carefront.db import Base

# JSONB on PostgreSQL, plain JSON everywhere else (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PatientRow(Base):
    __tablename__ = "patients"

    medical_card_id: Mapped[str] = mapped_column(String(11), primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    history_summary: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    visits: Mapped[list["VisitRow"]] = relationship(
        "VisitRow",
        back_populates="patient",
        cascade="all, delete-orphan",
        order_by="VisitRow.position",
    )
    appointments: Mapped[list["AppointmentRow"]] = relationship(
        "AppointmentRow",
        back_populates="patient",
        cascade="all, delete-orphan",
        order_by="AppointmentRow.position",
    )


class VisitRow(Base):
    __tablename__ = "visits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    medical_card_id: Mapped[str] = mapped_column(
        String, ForeignKey("patients.medical_card_id", ondelete="CASCADE"), nullable=False
    )
    visit_id: Mapped[str] = mapped_column(String, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    visit_date: Mapped[str] = mapped_column(String, nullable=False)
    report: Mapped[dict] = mapped_column(JSONType, nullable=False)

    __table_args__ = (
        UniqueConstraint("medical_card_id", "visit_id", name="uq_visits_patient_visit"),
    )

    patient: Mapped[PatientRow] = relationship("PatientRow", back_populates="visits")


class AppointmentRow(Base):
    __tablename__ = "appointments"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    medical_card_id: Mapped[str] = mapped_column(
        String, ForeignKey("patients.medical_card_id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    doctor_id: Mapped[str] = mapped_column(String, nullable=False)
    doctor_name: Mapped[str] = mapped_column(String, nullable=False)
    date: Mapped[str] = mapped_column(String, nullable=False)
    time: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "status IN ('Pending', 'Confirmed', 'Cancelled')",
            name="ck_appointments_status_valid",
        ),
    )

    patient: Mapped[PatientRow] = relationship("PatientRow", back_populates="appointments")


class AuditEventRow(Base):
    __tablename__ = "audit_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    actor_id: Mapped[str] = mapped_column(String, nullable=False)
    action: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    outcome: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "outcome IN ('SUCCESS', 'FAILURE', 'WARNING')",
            name="ck_audit_events_outcome_valid",
        ),
    )

# carefront/intake/schema.py
from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class UrgencyLevel(str, Enum):
    ROUTINE = "Routine"
    NON_URGENT = "Non-Urgent"
    URGENT = "Urgent"
    EMERGENCY = "Emergency"

    @property
    def rank(self) -> int:
        # Declaration order is severity order
        return list(UrgencyLevel).index(self)

    def __lt__(self, other: "UrgencyLevel") -> bool:  # type: ignore[override]
        if not isinstance(other, UrgencyLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: "UrgencyLevel") -> bool:  # type: ignore[override]
        if not isinstance(other, UrgencyLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: "UrgencyLevel") -> bool:  # type: ignore[override]
        if not isinstance(other, UrgencyLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: "UrgencyLevel") -> bool:  # type: ignore[override]
        if not isinstance(other, UrgencyLevel):
            return NotImplemented
        return self.rank >= other.rank


class DoctorStatus(str, Enum):
    AVAILABLE = "Available"
    IN_SURGERY = "In Surgery"
    ON_CALL = "On Call"


class Doctor(BaseModel):
    id: str
    name: str
    specialty: str
    experience_label: str = Field(..., alias="experience")
    status: DoctorStatus = DoctorStatus.AVAILABLE

    model_config = ConfigDict(populate_by_name=True, frozen=True)


def _dedupe(values: List[str]) -> List[str]:
    seen = set()
    result = []
    for value in values:
        key = value.strip()
        if not key or key.lower() in seen:
            continue
        seen.add(key.lower())
        result.append(key)
    return result


class ClinicalReport(BaseModel):
    """
    Structured clinical report produced from one intake transcript.

    Field aliases are the JSON keys the extraction backend returns;
    `model_dump(by_alias=True)` reproduces that wire shape.
    """

    chief_complaint: str = Field(..., alias="chiefComplaint")
    history_of_present_illness: str = Field(..., alias="hpi")
    medications: List[str] = Field(default_factory=list)
    allergies: List[str] = Field(default_factory=list)
    red_flags: List[str] = Field(..., alias="redFlags")
    review_of_systems: List[str] = Field(default_factory=list, alias="ros")
    patient_summary: str = Field(..., alias="patientSummary")
    # Usually three, not enforced
    suggested_questions: List[str] = Field(default_factory=list, alias="suggestedQuestions")
    urgency_level: UrgencyLevel = Field(..., alias="urgencyLevel")
    assigned_doctor_id: Optional[str] = Field(None, alias="assignedDoctorId")
    assignment_reason: Optional[str] = Field(None, alias="assignmentReason")

    model_config = ConfigDict(
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    @field_validator("medications", "allergies")
    @classmethod
    def _as_set(cls, values: List[str]) -> List[str]:
        return _dedupe(values)

    @property
    def has_red_flags(self) -> bool:
        return bool(self.red_flags)


class ReportPayload(ClinicalReport):
    """
    The backend's extraction response. Same shape as ClinicalReport, but a
    doctor assignment is mandatory on the wire.
    """

    assigned_doctor_id: str = Field(..., alias="assignedDoctorId")

    def to_report(self) -> ClinicalReport:
        return ClinicalReport.model_validate(self.model_dump(by_alias=True))

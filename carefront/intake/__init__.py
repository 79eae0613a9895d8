# carefront/intake/__init__.py
from .schema import ClinicalReport, Doctor, DoctorStatus, UrgencyLevel

__all__ = ["ClinicalReport", "Doctor", "DoctorStatus", "UrgencyLevel"]

# carefront/records/__init__.py
from .schema import Appointment, AppointmentStatus, Patient, VisitRecord
from .store import InMemoryPatientRecordStore, PatientRecordStore, SqlPatientRecordStore

__all__ = [
    "Appointment",
    "AppointmentStatus",
    "Patient",
    "VisitRecord",
    "PatientRecordStore",
    "InMemoryPatientRecordStore",
    "SqlPatientRecordStore",
]

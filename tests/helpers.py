import copy
import json

from carefront.audit import AuditOutcome, AuditSink
from carefront.intake.schema import Doctor, DoctorStatus
from carefront.llm import LLMClient


class ScriptedLLMClient(LLMClient):
    """Returns (or raises) the scripted replies in order and records every call."""

    def __init__(self, replies=None):
        self.replies = list(replies or [])
        self.calls = []

    async def chat(self, messages, temperature=0.2, model=None, json_mode=False):
        self.calls.append(
            {
                "messages": copy.deepcopy(messages),
                "temperature": temperature,
                "model": model,
                "json_mode": json_mode,
            }
        )
        if not self.replies:
            raise AssertionError("ScriptedLLMClient ran out of replies")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class RecordingAuditSink(AuditSink):
    def __init__(self):
        self.events = []

    def record(self, actor_id, action, description, outcome=AuditOutcome.SUCCESS):
        self.events.append((actor_id, action, description, outcome))

    def actions(self):
        return [event[1] for event in self.events]


class ExplodingAuditSink(AuditSink):
    def record(self, actor_id, action, description, outcome=AuditOutcome.SUCCESS):
        raise RuntimeError("audit backend down")


TWO_DOCTOR_ROSTER = [
    Doctor(
        id="d2",
        name="Dr. James Wilson",
        specialty="General Practice",
        experience="8 years",
        status=DoctorStatus.AVAILABLE,
    ),
    Doctor(
        id="d4",
        name="Dr. Michael Ross",
        specialty="Orthopedics",
        experience="20 years",
        status=DoctorStatus.IN_SURGERY,
    ),
]


def report_json(**overrides):
    data = {
        "chiefComplaint": "Sore throat",
        "hpi": "Sore throat for two days, no fever.",
        "medications": ["Ibuprofen"],
        "allergies": [],
        "redFlags": [],
        "ros": ["ENT: sore throat"],
        "patientSummary": "You have a sore throat.",
        "suggestedQuestions": ["Is it viral?", "Do I need antibiotics?", "When should I return?"],
        "urgencyLevel": "Routine",
        "assignedDoctorId": "d2",
        "assignmentReason": "General practice, available now.",
    }
    data.update(overrides)
    return json.dumps(data)


EMERGENCY_REPORT = report_json(
    chiefComplaint="Severe chest pain",
    hpi="Severe chest pain since this morning.",
    medications=[],
    redFlags=["Severe chest pain"],
    ros=["Cardiovascular: chest pain"],
    patientSummary="You have strong chest pain. This needs emergency care now.",
    urgencyLevel="Emergency",
    assignedDoctorId="d1",
    assignmentReason="Cardiology, available.",
)

# carefront/intake/extractor.py
from __future__ import annotations

import json
import logging
from typing import List, Sequence

from pydantic import ValidationError as SchemaValidationError

from carefront.config import get_settings
from carefront.errors import (
    BackendError,
    ExtractionError,
    ExtractionParseError,
)
from carefront.intake.schema import ClinicalReport, Doctor, ReportPayload
from carefront.intake.state import ChatTurn
from carefront.llm import LLMClient

logger = logging.getLogger(__name__)


SCHEMA_DESCRIPTION = """
You must return a single JSON object with the following structure
(fields marked * are required):

{
  "chiefComplaint"*: string,            // primary reason for visit
  "hpi"*: string,                       // medical summary of the history of present illness
  "medications": [string, ...],
  "allergies": [string, ...],
  "redFlags"*: [string, ...],           // critical alerts only; [] if routine
  "ros": [string, ...],                 // review of systems highlights
  "patientSummary"*: string,            // 6th-grade reading level, for the patient
  "suggestedQuestions": [string, ...],  // 3 questions the patient could ask the doctor
  "urgencyLevel"*: "Routine" | "Non-Urgent" | "Urgent" | "Emergency",
  "assignedDoctorId"*: string,          // id of exactly one doctor from the list
  "assignmentReason": string            // brief reason for the assignment
}
"""

RED_FLAG_RULES = """
CRITICAL INSTRUCTION ON RED FLAGS:
- Only include symptoms in "redFlags" if they indicate IMMEDIATE DANGER or URGENT care
  needs (e.g. chest pain, difficulty breathing, severe bleeding, suicidal ideation,
  signs of stroke).
- Do NOT list chronic conditions, mild pain, common colds, or routine symptoms as red flags.
- If there are no dangerous symptoms, return an empty list for "redFlags".
"""


def build_transcript_text(turns: Sequence[ChatTurn]) -> str:
    """
    Build a plain text transcript like:

      ASSISTANT: ...
      PATIENT: ... [Image Uploaded]

    for use in the LLM prompt. Turn text is already sanitized.
    """
    lines: List[str] = []
    for turn in turns:
        line = f"{turn.speaker.value.upper()}: {turn.text}"
        if turn.image is not None:
            line += " [Image Uploaded]"
        lines.append(line)
    return "\n".join(lines)


def build_roster_text(roster: Sequence[Doctor]) -> str:
    return "\n".join(
        f"ID: {d.id}, Name: {d.name}, Specialty: {d.specialty}, "
        f"Experience: {d.experience_label}, Status: {d.status.value}"
        for d in roster
    )


def clean_json_from_llm(raw: str) -> dict:
    """
    Parse JSON from the LLM response.
    Handles cases where the model wraps it in ```json ... ``` fences.
    """
    text = raw.strip()
    if not text:
        raise ExtractionParseError("Empty response")

    if text.startswith("```"):
        text = text.lstrip("`")
        if text.lower().startswith("json"):
            text = text[4:]
        text = text.rstrip("`").strip()

    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ExtractionParseError(f"Response is not JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise ExtractionParseError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def parse_report(raw: str) -> ClinicalReport:
    """
    Validate a raw backend response against the report schema.
    Anything missing a required field, or with the wrong types, is rejected.
    """
    data = clean_json_from_llm(raw)
    try:
        payload = ReportPayload.model_validate(data)
    except SchemaValidationError as exc:
        raise ExtractionParseError(
            f"Response does not match report schema ({exc.error_count()} errors)"
        ) from exc
    return payload.to_report()


class ReportExtractor:
    """
    Turns a finished transcript plus the doctor roster into one
    ClinicalReport. Performs no persistence.
    """

    def __init__(self, llm_client: LLMClient, temperature: float | None = None, model: str | None = None):
        settings = get_settings()
        self.llm_client = llm_client
        self.temperature = (
            temperature if temperature is not None else settings.extraction_temperature
        )
        self.model = model or settings.extraction_model

    def build_messages(self, turns: Sequence[ChatTurn], roster: Sequence[Doctor]) -> list[dict]:
        transcript = build_transcript_text(turns)
        roster_text = build_roster_text(roster) or "(no doctors on the roster)"

        return [
            {
                "role": "system",
                "content": (
                    "You are an AI clinical intake assistant. "
                    "Given a patient-assistant intake conversation, "
                    "you extract key clinical information and output strictly formatted JSON.\n\n"
                    "Do NOT invent details that are not clearly implied. "
                    "Leave optional lists empty if information is missing.\n"
                ),
            },
            {
                "role": "user",
                "content": (
                    "Analyze this patient intake. Extract clinical data.\n"
                    f"{RED_FLAG_RULES}\n"
                    "Then, select exactly ONE doctor from the list below, the most "
                    "appropriate for the patient's symptoms. Prioritize doctors whose "
                    "status is 'Available'; prefer an available generalist over a "
                    "matching specialist who is not available.\n\n"
                    f"AVAILABLE DOCTORS:\n{roster_text}\n\n"
                    f"{SCHEMA_DESCRIPTION}\n"
                    f"TRANSCRIPT:\n{transcript}\n\n"
                    "Return ONLY the JSON object, with no additional commentary."
                ),
            },
        ]

    async def extract(self, turns: Sequence[ChatTurn], roster: Sequence[Doctor]) -> ClinicalReport:
        """
        Raises RateLimitedError / BackendUnavailableError (retryable),
        ExtractionParseError for a non-conforming response, and
        ExtractionError for any other backend failure.
        """
        messages = self.build_messages(turns, roster)
        try:
            raw = await self.llm_client.chat(
                messages,
                temperature=self.temperature,
                model=self.model,
                json_mode=True,
            )
        except BackendError as exc:
            raise ExtractionError(f"Backend error during extraction: {exc}") from exc

        report = parse_report(raw)

        roster_ids = {d.id for d in roster}
        if roster_ids and report.assigned_doctor_id not in roster_ids:
            logger.warning(
                "Extractor assigned unknown doctor %s; roster has %s",
                report.assigned_doctor_id,
                sorted(roster_ids),
            )
        logger.info(
            "Extracted report: urgency=%s red_flags=%d doctor=%s",
            report.urgency_level.value,
            len(report.red_flags),
            report.assigned_doctor_id,
        )
        return report

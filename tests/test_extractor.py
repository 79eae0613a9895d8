import json
import unittest

from carefront.errors import (
    BackendError,
    BackendUnavailableError,
    ExtractionError,
    ExtractionParseError,
    RateLimitedError,
)
from carefront.intake.extractor import (
    ReportExtractor,
    build_roster_text,
    build_transcript_text,
    clean_json_from_llm,
    parse_report,
)
from carefront.intake.schema import UrgencyLevel
from carefront.intake.state import ChatTurn, ImageAttachment, Speaker
from tests.helpers import EMERGENCY_REPORT, TWO_DOCTOR_ROSTER, ScriptedLLMClient, report_json

REQUIRED_FIELDS = (
    "chiefComplaint",
    "hpi",
    "redFlags",
    "patientSummary",
    "urgencyLevel",
    "assignedDoctorId",
)

TRANSCRIPT = [
    ChatTurn(Speaker.ASSISTANT, "Name and main reason for visit?"),
    ChatTurn(Speaker.PATIENT, "Sam. I fell and my arm looks broken."),
    ChatTurn(Speaker.ASSISTANT, "Any allergies?"),
    ChatTurn(Speaker.PATIENT, "None", ImageAttachment("image/jpeg", b"\xff\xd8")),
]


class TranscriptFormattingTests(unittest.TestCase):
    def test_speaker_labelled_lines(self):
        text = build_transcript_text(TRANSCRIPT)
        self.assertEqual(
            text.splitlines(),
            [
                "ASSISTANT: Name and main reason for visit?",
                "PATIENT: Sam. I fell and my arm looks broken.",
                "ASSISTANT: Any allergies?",
                "PATIENT: None [Image Uploaded]",
            ],
        )

    def test_roster_lines_include_status(self):
        text = build_roster_text(TWO_DOCTOR_ROSTER)
        self.assertIn("ID: d2, Name: Dr. James Wilson, Specialty: General Practice", text)
        self.assertIn("Experience: 20 years, Status: In Surgery", text)


class ParseReportTests(unittest.TestCase):
    def test_accepts_fenced_json(self):
        report = parse_report("```json\n" + report_json() + "\n```")
        self.assertEqual(report.chief_complaint, "Sore throat")

    def test_missing_required_field_always_rejected(self):
        for field in REQUIRED_FIELDS:
            data = json.loads(report_json())
            del data[field]
            raw = json.dumps(data)
            with self.subTest(field=field):
                # Same input, same verdict
                for _ in range(2):
                    with self.assertRaises(ExtractionParseError):
                        parse_report(raw)

    def test_optional_fields_may_be_missing(self):
        data = json.loads(report_json())
        for field in ("medications", "allergies", "ros", "suggestedQuestions", "assignmentReason"):
            del data[field]
        report = parse_report(json.dumps(data))
        self.assertEqual(report.medications, [])
        self.assertIsNone(report.assignment_reason)

    def test_wrong_types_rejected(self):
        for overrides in (
            {"redFlags": "chest pain"},
            {"chiefComplaint": 42},
            {"urgencyLevel": "Whenever"},
        ):
            with self.subTest(overrides=overrides):
                with self.assertRaises(ExtractionParseError):
                    parse_report(report_json(**overrides))

    def test_non_object_and_garbage_rejected(self):
        for raw in ("", "not json", "[1, 2]", '"text"'):
            with self.subTest(raw=raw):
                with self.assertRaises(ExtractionParseError):
                    clean_json_from_llm(raw)


class ReportExtractorTests(unittest.IsolatedAsyncioTestCase):
    async def test_extract_returns_report_and_prompts_with_roster(self):
        llm = ScriptedLLMClient([report_json(assignedDoctorId="d2")])
        extractor = ReportExtractor(llm)

        report = await extractor.extract(TRANSCRIPT, TWO_DOCTOR_ROSTER)

        self.assertEqual(report.assigned_doctor_id, "d2")
        call = llm.calls[0]
        self.assertTrue(call["json_mode"])
        prompt = call["messages"][1]["content"]
        self.assertIn("Status: Available", prompt)
        self.assertIn("Status: In Surgery", prompt)
        self.assertIn("Prioritize doctors whose status is 'Available'", prompt)
        self.assertIn("Do NOT list chronic conditions", prompt)
        self.assertIn("PATIENT: Sam. I fell and my arm looks broken.", prompt)

    async def test_emergency_shaped_response(self):
        extractor = ReportExtractor(ScriptedLLMClient([EMERGENCY_REPORT]))

        report = await extractor.extract(TRANSCRIPT, TWO_DOCTOR_ROSTER)

        self.assertTrue(report.red_flags)
        self.assertEqual(report.urgency_level, UrgencyLevel.EMERGENCY)

    async def test_rate_limit_is_distinct_and_retryable(self):
        extractor = ReportExtractor(ScriptedLLMClient([RateLimitedError("429")]))
        with self.assertRaises(RateLimitedError) as ctx:
            await extractor.extract(TRANSCRIPT, TWO_DOCTOR_ROSTER)
        self.assertTrue(ctx.exception.retryable)

    async def test_timeout_is_retryable(self):
        extractor = ReportExtractor(ScriptedLLMClient([BackendUnavailableError("timed out")]))
        with self.assertRaises(BackendUnavailableError):
            await extractor.extract(TRANSCRIPT, TWO_DOCTOR_ROSTER)

    async def test_other_backend_errors_become_extraction_errors(self):
        extractor = ReportExtractor(ScriptedLLMClient([BackendError("400 bad request")]))
        with self.assertRaises(ExtractionError) as ctx:
            await extractor.extract(TRANSCRIPT, TWO_DOCTOR_ROSTER)
        self.assertFalse(ctx.exception.retryable)
        self.assertEqual(ctx.exception.user_message, "Failed to generate report.")

    async def test_non_conforming_response_is_parse_error(self):
        extractor = ReportExtractor(ScriptedLLMClient(['{"chiefComplaint": "x"}']))
        with self.assertRaises(ExtractionParseError):
            await extractor.extract(TRANSCRIPT, TWO_DOCTOR_ROSTER)


if __name__ == "__main__":
    unittest.main()

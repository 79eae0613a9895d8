import base64
import unittest

from carefront.errors import (
    BackendError,
    BackendUnavailableError,
    RateLimitedError,
    SessionStateError,
    ValidationError,
)
from carefront.intake.agent import IntakeAgent
from carefront.intake.sentinel import COMPLETION_SENTINEL
from carefront.intake.stages import SessionStage
from carefront.intake.state import ConversationSession, ImageAttachment, Speaker
from carefront.records.schema import Patient
from tests.helpers import ScriptedLLMClient

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake"
PNG_DATA_URL = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode("ascii")


class IntakeAgentStartTests(unittest.IsolatedAsyncioTestCase):
    async def test_anonymous_start_asks_for_name(self):
        llm = ScriptedLLMClient(["Name and main reason for visit?"])
        agent = IntakeAgent(llm)
        session = ConversationSession()

        greeting = await agent.start(session)

        self.assertEqual(greeting, "Name and main reason for visit?")
        self.assertEqual(session.stage, SessionStage.ACTIVE)
        self.assertEqual([t.speaker for t in session.turns], [Speaker.ASSISTANT])
        system_prompt = llm.calls[0]["messages"][0]["content"]
        self.assertIn("Unknown patient", system_prompt)
        self.assertIn(COMPLETION_SENTINEL, system_prompt)

    async def test_known_patient_start_uses_history(self):
        patient = Patient(
            medical_card_id="123-456-789",
            name="Ada Lovelace",
            history_summary="Asthma since childhood.",
        )
        llm = ScriptedLLMClient(["Hello Ada. Is this about your asthma?"])
        agent = IntakeAgent(llm)
        session = ConversationSession()

        await agent.start(session, patient)

        system_prompt = llm.calls[0]["messages"][0]["content"]
        self.assertIn("Do NOT ask for their name", system_prompt)
        self.assertIn("Asthma since childhood.", system_prompt)
        self.assertEqual(session.turns[0].speaker, Speaker.SYSTEM)
        self.assertIs(session.patient_context, patient)

    async def test_empty_reply_falls_back_to_default_greeting(self):
        patient = Patient(medical_card_id="123-456-789", name="Ada")
        agent = IntakeAgent(ScriptedLLMClient([""]))
        session = ConversationSession()

        greeting = await agent.start(session, patient)

        self.assertEqual(greeting, "Hello Ada. What brings you in today?")

    async def test_backend_failure_at_start_is_degraded_but_active(self):
        agent = IntakeAgent(ScriptedLLMClient([RateLimitedError("429")]))
        session = ConversationSession()

        greeting = await agent.start(session)

        self.assertIn("wait 1 minute", greeting)
        self.assertEqual(session.stage, SessionStage.ACTIVE)
        self.assertEqual(session.turns, [])

    async def test_start_twice_rejected(self):
        agent = IntakeAgent(ScriptedLLMClient(["hi", "hi"]))
        session = ConversationSession()
        await agent.start(session)
        with self.assertRaises(SessionStateError):
            await agent.start(session)


class IntakeAgentSubmitTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.llm = ScriptedLLMClient(["Name and main reason for visit?"])
        self.agent = IntakeAgent(self.llm)
        self.session = ConversationSession()
        await self.agent.start(self.session)

    async def test_submit_appends_sanitized_patient_turn_and_reply(self):
        self.llm.replies.append("How long has it hurt?")

        result = await self.agent.submit(self.session, "Bob, knee pain <3 weeks")

        self.assertEqual(result.reply, "How long has it hurt?")
        self.assertFalse(result.completed)
        self.assertFalse(result.degraded)
        patient_turn = self.session.turns[-2]
        self.assertEqual(patient_turn.speaker, Speaker.PATIENT)
        self.assertEqual(patient_turn.text, "Bob, knee pain &lt;3 weeks")
        self.assertEqual(self.session.turns[-1].text, "How long has it hurt?")

        sent = self.llm.calls[-1]["messages"]
        self.assertEqual(sent[-1], {"role": "user", "content": "Bob, knee pain &lt;3 weeks"})
        self.assertEqual(sent[-2]["role"], "assistant")

    async def test_sentinel_completes_session_and_is_stripped(self):
        self.llm.replies.append(f"Thank you. {COMPLETION_SENTINEL} A nurse will follow up.")

        result = await self.agent.submit(self.session, "No allergies")

        self.assertTrue(result.completed)
        self.assertEqual(result.reply, "Thank you.  A nurse will follow up.")
        self.assertNotIn(COMPLETION_SENTINEL, self.session.turns[-1].text)
        self.assertEqual(self.session.stage, SessionStage.COMPLETED)

    async def test_no_sentinel_never_completes(self):
        self.llm.replies.extend(["Any meds?", "Any allergies?", "intake complete, thanks"])
        for text in ("headache", "none", "none"):
            result = await self.agent.submit(self.session, text)
            self.assertFalse(result.completed)
        self.assertEqual(self.session.stage, SessionStage.ACTIVE)

    async def test_rejected_input_never_recorded_or_forwarded(self):
        calls_before = len(self.llm.calls)
        turns_before = list(self.session.turns)

        with self.assertRaises(ValidationError):
            await self.agent.submit(self.session, "<script>alert(1)</script>")

        self.assertEqual(self.session.turns, turns_before)
        self.assertEqual(len(self.llm.calls), calls_before)

    async def test_backend_errors_degrade_without_state_change(self):
        for error in (
            RateLimitedError("quota"),
            BackendUnavailableError("timeout"),
            BackendError("500"),
        ):
            with self.subTest(error=type(error).__name__):
                turns_before = list(self.session.turns)
                self.llm.replies.append(error)

                result = await self.agent.submit(self.session, "still here")

                self.assertTrue(result.degraded)
                self.assertFalse(result.completed)
                self.assertEqual(result.reply, error.user_message)
                self.assertEqual(self.session.turns, turns_before)
                self.assertEqual(self.session.stage, SessionStage.ACTIVE)

    async def test_empty_reply_asks_to_repeat(self):
        self.llm.replies.append("   ")
        result = await self.agent.submit(self.session, "mumble")
        self.assertEqual(result.reply, "Repeat that?")

    async def test_image_sent_as_content_part(self):
        self.llm.replies.append("I see a rash.")

        await self.agent.submit(self.session, "What is this rash?", PNG_DATA_URL)

        turn = self.session.turns[-2]
        self.assertEqual(turn.image, ImageAttachment("image/png", PNG_BYTES))
        content = self.llm.calls[-1]["messages"][-1]["content"]
        self.assertEqual(content[0], {"type": "text", "text": "What is this rash?"})
        self.assertEqual(content[1]["type"], "image_url")
        self.assertEqual(content[1]["image_url"]["url"], PNG_DATA_URL)

    async def test_undecodable_image_degrades_to_text_only(self):
        self.llm.replies.extend(["ok", "ok", "ok"])
        for bad in ("not a data url", "data:image/png;base64,@@@", "data:text/plain;base64,aGk="):
            with self.subTest(bad=bad):
                result = await self.agent.submit(self.session, "see attached", bad)
                self.assertFalse(result.degraded)
                self.assertIsNone(self.session.turns[-2].image)
                self.assertEqual(
                    self.llm.calls[-1]["messages"][-1],
                    {"role": "user", "content": "see attached"},
                )

    async def test_submit_after_completion_rejected(self):
        self.llm.replies.append(f"Done {COMPLETION_SENTINEL}")
        await self.agent.submit(self.session, "that is all")

        with self.assertRaises(SessionStateError):
            await self.agent.submit(self.session, "one more thing")

        self.agent.reopen(self.session)
        self.assertEqual(self.session.stage, SessionStage.ACTIVE)

    async def test_late_reply_is_discarded(self):
        session = self.session

        class ClosingLLM(ScriptedLLMClient):
            async def chat(self, messages, **kwargs):
                session.stage = SessionStage.COMPLETED
                return "Too late"

        agent = IntakeAgent(ClosingLLM())
        turns_before = list(session.turns)

        result = await agent.submit(session, "hello")

        self.assertTrue(result.degraded)
        self.assertEqual(session.turns, turns_before)

    async def test_submit_before_start_rejected(self):
        with self.assertRaises(SessionStateError):
            await self.agent.submit(ConversationSession(), "hello")


if __name__ == "__main__":
    unittest.main()

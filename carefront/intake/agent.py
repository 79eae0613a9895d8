# carefront/intake/agent.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from carefront.config import get_settings
from carefront.errors import BackendError, BackendUnavailableError, SessionStateError
from carefront.intake.sanitizer import sanitize, validate_message
from carefront.intake.sentinel import (
    COMPLETION_SENTINEL,
    is_completion_reply,
    strip_completion_sentinel,
)
from carefront.intake.stages import SessionStage
from carefront.intake.state import ChatTurn, ConversationSession, ImageAttachment, Speaker
from carefront.llm import LLMClient
from carefront.records.schema import Patient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TurnResult:
    reply: str
    completed: bool = False
    # True when `reply` is a service-degradation notice, not a model answer
    degraded: bool = False


class IntakeAgent:
    """
    IntakeAgent drives one model-backed intake conversation.

    Stages:
      - uninitialized: nothing sent yet
      - active: patient and assistant take turns
      - completed: the assistant emitted the completion sentinel
      - abandoned: the user left; the session takes no further calls

    The agent never stores sessions; every call takes the caller's
    ConversationSession and mutates it in place.
    """

    BASE_INSTRUCTIONS = (
        "You are an efficient, direct AI Intake Nurse.\n"
        "1. GOAL: Gather concise medical info (Chief Complaint, HPI, Meds, Allergies).\n"
        "2. STYLE: Be extremely brief. No pleasantries. No \"I understand\". "
        "Just ask the next question.\n"
        "3. PROTOCOL:\n"
        "   - Ask only ONE question at a time.\n"
        "   - If emergency symptoms appear (chest pain, severe bleeding, difficulty "
        "breathing), STOP and tell the patient to call emergency services (911).\n"
        "   - Once you have gathered the Chief Complaint, History of Present Illness "
        "(HPI), Medications, and Allergies, you MUST end the interview.\n"
        f"   - TO END: Append the exact token \"{COMPLETION_SENTINEL}\" to your final "
        f"response. Example: \"Thank you. I have all the info. {COMPLETION_SENTINEL}\"\n"
        "4. ROLE: Info gathering only. NEVER diagnose.\n"
    )

    KICKOFF_MESSAGE = "Start intake. Brief."
    ANONYMOUS_GREETING = "Name and main reason for visit?"
    EMPTY_REPLY_FALLBACK = "Repeat that?"
    COMPLETION_FALLBACK = "Thank you. I have all the information I need."

    def __init__(
        self,
        llm_client: LLMClient,
        temperature: Optional[float] = None,
        model: Optional[str] = None,
    ):
        settings = get_settings()
        self.llm_client = llm_client
        self.temperature = (
            temperature if temperature is not None else settings.conversation_temperature
        )
        self.model = model

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def start(
        self,
        session: ConversationSession,
        patient: Optional[Patient] = None,
    ) -> str:
        """
        Move `session` from uninitialized to active and return the greeting.

        A backend failure still activates the session (so the patient can
        type) and returns the degraded-service notice instead of a greeting.
        """
        if session.stage != SessionStage.UNINITIALIZED:
            raise SessionStateError(f"Session {session.session_id} already started")

        session.patient_context = patient
        session.instructions = self.build_instructions(patient)
        if patient is not None:
            session.append(
                ChatTurn(Speaker.SYSTEM, f"Welcome, {patient.name}. History loaded.")
            )
        session.stage = SessionStage.ACTIVE

        try:
            raw = await self.llm_client.chat(
                self._build_messages(session),
                temperature=self.temperature,
                model=self.model,
            )
        except (BackendUnavailableError, BackendError) as exc:
            logger.warning("Intake start for session %s degraded: %s", session.session_id, exc)
            return exc.user_message

        greeting = strip_completion_sentinel(raw) or self._fallback_greeting(patient)
        session.append(ChatTurn(Speaker.ASSISTANT, greeting))
        return greeting

    async def submit(
        self,
        session: ConversationSession,
        text: str,
        image: Union[ImageAttachment, str, None] = None,
    ) -> TurnResult:
        """
        Send one patient message and return the assistant's reply.

        Raises ValidationError for inadmissible text (nothing is recorded)
        and SessionStateError outside the active stage. Backend failures
        never raise: they come back as a degraded TurnResult and the
        transcript is left exactly as it was.
        """
        if not session.is_active:
            raise SessionStateError(
                f"Session {session.session_id} is {session.stage.value}, not active"
            )

        safe_text = sanitize(validate_message(text))
        attachment = self._decode_image(image)
        patient_turn = ChatTurn(Speaker.PATIENT, safe_text, attachment)
        turns_before = len(session.turns)

        try:
            raw = await self.llm_client.chat(
                self._build_messages(session, pending=patient_turn),
                temperature=self.temperature,
                model=self.model,
            )
        except (BackendUnavailableError, BackendError) as exc:
            logger.warning("Turn for session %s degraded: %s", session.session_id, exc)
            return TurnResult(reply=exc.user_message, degraded=True)

        if not session.is_active or len(session.turns) != turns_before:
            # The session moved on while we were waiting; drop the late reply
            logger.warning("Discarding late reply for session %s", session.session_id)
            return TurnResult(
                reply=BackendUnavailableError.default_user_message, degraded=True
            )

        completed = is_completion_reply(raw)
        reply = strip_completion_sentinel(raw)
        if not reply:
            reply = self.COMPLETION_FALLBACK if completed else self.EMPTY_REPLY_FALLBACK

        session.append(patient_turn)
        session.append(ChatTurn(Speaker.ASSISTANT, reply))
        if completed:
            session.stage = SessionStage.COMPLETED
            logger.info("Session %s reached completion sentinel", session.session_id)

        return TurnResult(reply=reply, completed=completed)

    def reopen(self, session: ConversationSession) -> None:
        """Return a completed session to active, e.g. after a failed extraction."""
        if session.stage == SessionStage.COMPLETED:
            session.stage = SessionStage.ACTIVE

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def build_instructions(self, patient: Optional[Patient]) -> str:
        if patient is not None:
            history = patient.history_summary or "None provided"
            context = (
                f"5. CONTEXT: You are speaking to {patient.name}.\n"
                "   - Do NOT ask for their name. You already know it.\n"
                f"   - KNOWN HISTORY: {history}\n"
                "   - Start by confirming if the visit is related to their history "
                "or something new, but keep it brief.\n"
            )
        else:
            context = (
                "5. CONTEXT: Unknown patient.\n"
                f"   - Start with: \"{self.ANONYMOUS_GREETING}\"\n"
            )
        return self.BASE_INSTRUCTIONS + context

    def _fallback_greeting(self, patient: Optional[Patient]) -> str:
        if patient is not None:
            return f"Hello {patient.name}. What brings you in today?"
        return self.ANONYMOUS_GREETING

    def _decode_image(self, image: Union[ImageAttachment, str, None]) -> Optional[ImageAttachment]:
        if image is None or isinstance(image, ImageAttachment):
            return image
        return ImageAttachment.from_data_url(image)

    def _build_messages(
        self,
        session: ConversationSession,
        pending: Optional[ChatTurn] = None,
    ) -> List[Dict]:
        messages: List[Dict] = [
            {"role": "system", "content": session.instructions},
            {"role": "user", "content": self.KICKOFF_MESSAGE},
        ]
        turns = list(session.turns)
        if pending is not None:
            turns.append(pending)

        for turn in turns:
            if turn.speaker == Speaker.SYSTEM:
                continue
            messages.append(self._turn_to_message(turn))
        return messages

    def _turn_to_message(self, turn: ChatTurn) -> Dict:
        role = "assistant" if turn.speaker == Speaker.ASSISTANT else "user"
        if turn.image is None:
            return {"role": role, "content": turn.text}
        return {
            "role": role,
            "content": [
                {"type": "text", "text": turn.text},
                {"type": "image_url", "image_url": {"url": turn.image.to_data_url()}},
            ],
        }

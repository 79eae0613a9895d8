# carefront/intake/state.py
from __future__ import annotations

import base64
import binascii
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from carefront.intake.schema import ClinicalReport
from carefront.intake.stages import SessionStage
from carefront.records.schema import Patient

logger = logging.getLogger(__name__)

DATA_URL_PATTERN = re.compile(r"^data:([\w.+-]+/[\w.+-]+);base64,(.+)$", re.DOTALL)


class Speaker(str, Enum):
    PATIENT = "patient"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass(frozen=True)
class ImageAttachment:
    mime_type: str
    data: bytes

    @classmethod
    def from_data_url(cls, data_url: str) -> Optional["ImageAttachment"]:
        """
        Decode a `data:<mime>;base64,<payload>` URL. Returns None when the
        payload is not a decodable image; the turn then goes out text-only.
        """
        match = DATA_URL_PATTERN.match(data_url.strip())
        if match is None:
            logger.warning("Dropping image: not a base64 data URL")
            return None

        mime_type, payload = match.groups()
        if not mime_type.startswith("image/"):
            logger.warning("Dropping attachment with non-image type %s", mime_type)
            return None

        try:
            data = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError):
            logger.warning("Dropping image: payload is not valid base64")
            return None

        if not data:
            return None
        return cls(mime_type=mime_type, data=data)

    def to_data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


@dataclass(frozen=True)
class ChatTurn:
    speaker: Speaker
    text: str  # already sanitized
    image: Optional[ImageAttachment] = None
    sent_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class ConversationSession:
    """
    One intake dialogue. The caller owns this handle and passes it to every
    IntakeAgent / IntakeSessionService call; nothing keeps it globally.

    `turns` only ever grows by appending.
    """

    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    stage: SessionStage = SessionStage.UNINITIALIZED
    turns: List[ChatTurn] = field(default_factory=list)
    patient_context: Optional[Patient] = None

    # System instructions chosen at start(), reused for every later turn
    instructions: str = ""

    # Set once a report has been extracted; the session is then archived
    report: Optional[ClinicalReport] = None

    @property
    def is_complete(self) -> bool:
        return self.stage == SessionStage.COMPLETED

    @property
    def is_active(self) -> bool:
        return self.stage == SessionStage.ACTIVE

    @property
    def is_abandoned(self) -> bool:
        return self.stage == SessionStage.ABANDONED

    @property
    def actor_id(self) -> str:
        if self.patient_context is not None:
            return self.patient_context.medical_card_id
        return "anonymous"

    def append(self, turn: ChatTurn) -> None:
        self.turns.append(turn)

    def patient_turn_count(self) -> int:
        return sum(1 for t in self.turns if t.speaker == Speaker.PATIENT)

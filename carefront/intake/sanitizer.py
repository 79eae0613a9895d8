# carefront/intake/sanitizer.py
from __future__ import annotations

import re

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as SchemaValidationError

from carefront.errors import ValidationError
from carefront.records.schema import MEDICAL_CARD_ID_PATTERN

MAX_MESSAGE_LENGTH = 1000

# Applied in this order; "&" first so the other entities are not re-escaped
HTML_ESCAPES = (
    ("&", "&amp;"),
    ("<", "&lt;"),
    (">", "&gt;"),
    ('"', "&quot;"),
    ("'", "&#039;"),
)

SCRIPT_INJECTION_PATTERN = re.compile(r"<\s*script\b|javascript\s*:", re.IGNORECASE)
PATIENT_NAME_PATTERN = re.compile(r"^[a-zA-Z\s\-\.]+$")


def sanitize(text: str) -> str:
    """
    Escape HTML-significant characters. Not idempotent: apply exactly once,
    where raw input enters the system.
    """
    for raw, escaped in HTML_ESCAPES:
        text = text.replace(raw, escaped)
    return text


class IncomingMessage(BaseModel):
    text: str = Field(..., max_length=MAX_MESSAGE_LENGTH)

    @field_validator("text")
    @classmethod
    def _admissible(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Message cannot be empty")
        if SCRIPT_INJECTION_PATTERN.search(value):
            raise ValueError("Malicious content detected")
        return value


class PatientLogin(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    medical_card_id: str

    @field_validator("name")
    @classmethod
    def _letters_only(cls, value: str) -> str:
        if not PATIENT_NAME_PATTERN.match(value):
            raise ValueError("Name contains invalid characters (letters only)")
        return value.strip()

    @field_validator("medical_card_id")
    @classmethod
    def _card_format(cls, value: str) -> str:
        if not MEDICAL_CARD_ID_PATTERN.match(value):
            raise ValueError("Invalid ID format. Required: 000-000-000")
        return value


def _first_error(exc: SchemaValidationError, too_long: str, too_short: str = "Too short") -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid input."
    err = errors[0]
    if err.get("type") == "string_too_long":
        return too_long
    if err.get("type") == "string_too_short":
        return too_short
    # "Value error, <msg>" -> "<msg>"
    return str(err.get("msg", "Invalid input.")).removeprefix("Value error, ")


def validate_message(text: str) -> str:
    """
    Admission gate for chat input. Returns the text unchanged, or raises
    ValidationError without touching anything else.
    """
    try:
        return IncomingMessage(text=text).text
    except SchemaValidationError as exc:
        reason = _first_error(exc, too_long="Message too long")
        raise ValidationError(f"Message rejected: {reason}", user_message=reason) from exc


def validate_medical_card_id(medical_card_id: str) -> str:
    if not MEDICAL_CARD_ID_PATTERN.match(medical_card_id or ""):
        reason = "Invalid ID format. Required: 000-000-000"
        raise ValidationError(reason, user_message=reason)
    return medical_card_id


def validate_login(name: str, medical_card_id: str) -> PatientLogin:
    try:
        return PatientLogin(name=name, medical_card_id=medical_card_id)
    except SchemaValidationError as exc:
        reason = _first_error(exc, too_long="Name too long", too_short="Name too short")
        raise ValidationError(f"Login rejected: {reason}", user_message=reason) from exc

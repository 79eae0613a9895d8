# carefront/errors.py
from __future__ import annotations


class CarefrontError(Exception):
    """
    Base class for every error raised by the intake core.

    `user_message` is safe to show to a patient or clinician; the exception
    string itself may carry more detail for logs.
    """

    default_user_message = "Something went wrong. Please try again."

    def __init__(self, message: str | None = None, user_message: str | None = None):
        super().__init__(message or user_message or self.default_user_message)
        self.user_message = user_message or self.default_user_message


class ValidationError(CarefrontError):
    """Input rejected before it reached the backend. No state changed."""

    default_user_message = "Invalid input."


class SessionStateError(CarefrontError):
    default_user_message = "This conversation is not accepting messages right now."


class BackendUnavailableError(CarefrontError):
    """Retryable: the language-model backend timed out or could not be reached."""

    default_user_message = "Connection error. Please try again."
    retryable = True


class RateLimitedError(BackendUnavailableError):
    default_user_message = (
        "System traffic is high (quota exceeded). Please wait 1 minute and try again."
    )


class BackendError(CarefrontError):
    """The backend answered with an error that retrying will not fix."""

    default_user_message = "The assistant service returned an error."
    retryable = False


class ExtractionError(CarefrontError):
    """Non-retryable failure of one report extraction attempt."""

    default_user_message = "Failed to generate report."
    retryable = False


class ExtractionParseError(ExtractionError):
    """The backend answered, but not with an object matching the report schema."""


class PersistenceError(CarefrontError):
    """The patient record store failed to save. Nothing was recorded."""

    default_user_message = "Could not save the report. Please try again."
    retryable = True


class RecordNotFoundError(CarefrontError):
    default_user_message = "Record not found."


class InvalidTransitionError(CarefrontError):
    default_user_message = "This appointment has already been resolved."


class ConfigurationError(CarefrontError):
    default_user_message = "Configuration error: secure connection cannot be established."

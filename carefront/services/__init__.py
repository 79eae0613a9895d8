# carefront/services/__init__.py
from .intake_session import IntakeSessionService, TurnOutcome

__all__ = ["IntakeSessionService", "TurnOutcome"]

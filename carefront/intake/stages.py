# carefront/intake/stages.py
from enum import Enum


class SessionStage(str, Enum):
    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    COMPLETED = "completed"
    # Terminal: the user walked away; no report may be produced
    ABANDONED = "abandoned"

# carefront/intake/sentinel.py
"""
Completion signal for the intake conversation.

The assistant is told to put COMPLETION_SENTINEL in its final message.
Everything that decides "is the interview over?" goes through
`is_completion_reply`, so the marker can change without touching the agent.
"""

COMPLETION_SENTINEL = "[INTAKE_COMPLETE]"


def is_completion_reply(raw_reply: str) -> bool:
    # Anywhere in the reply, not only at the end
    return COMPLETION_SENTINEL in raw_reply


def strip_completion_sentinel(raw_reply: str) -> str:
    return raw_reply.replace(COMPLETION_SENTINEL, "").strip()

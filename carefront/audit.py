# carefront/audit.py
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import Enum

from sqlalchemy import delete, select
from sqlalchemy.orm import sessionmaker

from carefront.config import get_settings
from carefront.db import db_session, get_sessionmaker
from carefront.models import AuditEventRow

logger = logging.getLogger(__name__)


class AuditOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    WARNING = "WARNING"


class AuditSink(ABC):
    """
    Receives one structured event per auditable action.

    Callers treat sinks as fire-and-forget; see `safe_record`.
    """

    @abstractmethod
    def record(
        self,
        actor_id: str,
        action: str,
        description: str,
        outcome: AuditOutcome = AuditOutcome.SUCCESS,
    ) -> None:
        ...


class LoggingAuditSink(AuditSink):
    def __init__(self, logger_name: str = "carefront.audit"):
        self._log = logging.getLogger(logger_name)

    def record(self, actor_id, action, description, outcome=AuditOutcome.SUCCESS) -> None:
        level = logging.INFO if outcome == AuditOutcome.SUCCESS else logging.WARNING
        self._log.log(
            level,
            "%s actor=%s outcome=%s %s",
            action,
            actor_id,
            outcome.value,
            description,
        )


class SqlAuditSink(AuditSink):
    """
    Writes events to the audit_events table and keeps only the newest
    `retention` rows.
    """

    def __init__(self, session_factory: sessionmaker | None = None, retention: int | None = None):
        self.session_factory = session_factory or get_sessionmaker()
        self.retention = retention if retention is not None else get_settings().audit_retention

    def record(self, actor_id, action, description, outcome=AuditOutcome.SUCCESS) -> None:
        with db_session(self.session_factory) as session:
            session.add(
                AuditEventRow(
                    actor_id=actor_id,
                    action=action,
                    description=description,
                    outcome=outcome.value,
                )
            )
            session.flush()

            cutoff = session.scalar(
                select(AuditEventRow.id)
                .order_by(AuditEventRow.id.desc())
                .offset(self.retention)
                .limit(1)
            )
            if cutoff is not None:
                session.execute(delete(AuditEventRow).where(AuditEventRow.id <= cutoff))


def build_audit_sink() -> AuditSink:
    backend = get_settings().audit_backend
    if backend == "sql":
        return SqlAuditSink()
    if backend != "log":
        logger.warning("Unknown AUDIT_BACKEND %r, falling back to log sink", backend)
    return LoggingAuditSink()


def safe_record(
    sink: AuditSink,
    actor_id: str,
    action: str,
    description: str,
    outcome: AuditOutcome = AuditOutcome.SUCCESS,
) -> None:
    """Emit an audit event; a failing sink never blocks the caller."""
    try:
        sink.record(actor_id, action, description, outcome)
    except Exception:
        logger.exception("Audit sink failed for action %s", action)

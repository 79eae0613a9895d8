import unittest
from unittest import mock

from sqlalchemy import select

from carefront.audit import (
    AuditOutcome,
    LoggingAuditSink,
    SqlAuditSink,
    build_audit_sink,
    safe_record,
)
from carefront.auth import TokenAuthenticator
from carefront.config import Settings
from carefront.db import init_db, make_engine, make_sessionmaker
from carefront.models import AuditEventRow
from tests.helpers import ExplodingAuditSink


class SqlAuditSinkTests(unittest.TestCase):
    def setUp(self):
        engine = make_engine("sqlite:///:memory:")
        init_db(engine)
        self.factory = make_sessionmaker(engine)

    def _rows(self):
        with self.factory() as session:
            return list(session.scalars(select(AuditEventRow).order_by(AuditEventRow.id)))

    def test_records_event_fields(self):
        sink = SqlAuditSink(self.factory, retention=10)
        sink.record("123-456-789", "LOGIN", "Successful user login")
        sink.record("system", "ACCESS_ATTEMPT_FAILED", "Failed lookup", AuditOutcome.WARNING)

        rows = self._rows()
        self.assertEqual([r.action for r in rows], ["LOGIN", "ACCESS_ATTEMPT_FAILED"])
        self.assertEqual(rows[0].actor_id, "123-456-789")
        self.assertEqual(rows[1].outcome, "WARNING")
        self.assertIsNotNone(rows[0].ts)

    def test_retention_keeps_newest(self):
        sink = SqlAuditSink(self.factory, retention=3)
        for i in range(5):
            sink.record("admin", "BULK_EXPORT", f"export {i}")

        self.assertEqual(
            [r.description for r in self._rows()],
            ["export 2", "export 3", "export 4"],
        )


class SafeRecordTests(unittest.TestCase):
    def test_sink_failure_is_logged_not_raised(self):
        with self.assertLogs("carefront.audit", level="ERROR") as logs:
            safe_record(ExplodingAuditSink(), "admin", "BULK_EXPORT", "x")
        self.assertIn("BULK_EXPORT", logs.output[0])

    def test_logging_sink_levels(self):
        sink = LoggingAuditSink()
        with self.assertLogs("carefront.audit", level="INFO") as logs:
            sink.record("admin", "LOGIN", "ok")
            sink.record("admin", "REPORT_FAILURE", "bad", AuditOutcome.FAILURE)
        self.assertTrue(logs.output[0].startswith("INFO:carefront.audit:LOGIN"))
        self.assertTrue(logs.output[1].startswith("WARNING:carefront.audit:REPORT_FAILURE"))

    def test_build_audit_sink_defaults_to_logging(self):
        with mock.patch("carefront.audit.get_settings", return_value=Settings(AUDIT_BACKEND="log")):
            self.assertIsInstance(build_audit_sink(), LoggingAuditSink)


class TokenAuthenticatorTests(unittest.TestCase):
    def test_matching_token_is_admin(self):
        principal = TokenAuthenticator(token="s3cret").authenticate("s3cret")
        self.assertTrue(principal.is_admin)
        self.assertEqual(principal.actor_id, "admin")

    def test_denies_wrong_or_missing(self):
        auth = TokenAuthenticator(token="s3cret")
        self.assertIsNone(auth.authenticate("nope"))
        self.assertIsNone(auth.authenticate(None))
        self.assertIsNone(TokenAuthenticator(token="").authenticate(""))


if __name__ == "__main__":
    unittest.main()

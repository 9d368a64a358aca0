"""
Unit tests for audit context helpers and AuditTrail.
"""

import json

from pinguard.security import AuditTrail, build_audit_context, compact_reason, encode_audit_context
from pinguard.storage import connect, init_db


class TestAuditContext:
    def test_build_context(self):
        ctx = build_audit_context(device_id="abc", failed_attempts=2, remaining_seconds=120, extra={"step": "confirm"})
        assert ctx["device_id"] == "abc"
        assert ctx["failed_attempts"] == 2
        assert ctx["remaining_seconds"] == 120
        assert ctx["step"] == "confirm"
        assert "host" in ctx

    def test_encode_truncates(self):
        s = encode_audit_context({"blob": "x" * 1000}, max_len=64)
        assert len(s) == 64
        assert s.endswith("...")

    def test_encode_compact(self):
        assert encode_audit_context({"a": 1}) == '{"a":1}'

    def test_compact_reason(self):
        assert compact_reason("bad_pin") == "bad_pin"
        assert compact_reason("  ") == "unknown"
        assert compact_reason("bad_pin", '{"a":1}') == 'bad_pin|ctx={"a":1}'


class TestAuditTrail:
    def test_record_and_recent(self, audit):
        audit.record("pin_login", "DENY", "bad_pin", failed_attempts=1)
        audit.record("pin_login", "ALLOW", "ok_pin")

        rows = audit.recent()
        assert [r["outcome"] for r in rows] == ["ALLOW", "DENY"]
        reason, ctx = rows[1]["reason"].split("|ctx=", 1)
        assert reason == "bad_pin"
        assert json.loads(ctx)["failed_attempts"] == 1

    def test_without_database(self):
        trail = AuditTrail()
        assert trail.record("pin_setup", "DENY", "pin_mismatch") == "pin_mismatch"
        assert trail.recent() == []

    def test_write_failure_does_not_raise(self, tmp_path):
        conn = connect(str(tmp_path / "a.db"))
        init_db(conn)
        trail = AuditTrail(conn)
        conn.execute("DROP TABLE auth_events")

        assert trail.record("pin_login", "ALLOW", "ok_pin") == "ok_pin"
        conn.close()

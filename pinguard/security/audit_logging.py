# pinguard/security/audit_logging.py
from __future__ import annotations

import json
import logging
import platform
import sqlite3
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


def _host_identity() -> str:
    """
    Best-effort host tag for audit rows.
    Not the trusted-device identifier; that one lives in DeviceTrustRegistry.
    """
    host = platform.node() or "unknown-host"
    sysname = platform.system() or "unknown-os"
    return f"{sysname}:{host}"


def build_audit_context(
    *,
    device_id: Optional[str] = None,
    failed_attempts: Optional[int] = None,
    remaining_seconds: Optional[int] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Build a JSON-serializable dict for audit rows.
    Never pass PINs, digests or salts here.
    """
    d: Dict[str, Any] = {
        "host": _host_identity(),
    }

    if device_id is not None:
        d["device_id"] = str(device_id)
    if failed_attempts is not None:
        d["failed_attempts"] = int(failed_attempts)
    if remaining_seconds is not None:
        d["remaining_seconds"] = int(remaining_seconds)

    if extra:
        for k, v in extra.items():
            d[str(k)] = v

    return d


def encode_audit_context(ctx: Dict[str, Any], max_len: int = 512) -> str:
    """
    Encode context as compact JSON string.
    If too long, truncate deterministically.
    """
    s = json.dumps(ctx, separators=(",", ":"), ensure_ascii=False, default=str)
    if len(s) <= max_len:
        return s
    return s[: max_len - 3] + "..."


def compact_reason(reason: str, audit_context_json: Optional[str] = None) -> str:
    """
    Pack reason + audit context into a single string for auth_events.reason.

    Example:
      "bad_pin|ctx={...}"
    """
    r = (reason or "").strip() or "unknown"
    if not audit_context_json:
        return r
    return f"{r}|ctx={audit_context_json}"


class AuditTrail:
    """
    Append-only record of security decisions in the auth_events table.

    Every row is mirrored to the module logger. A failing audit write is
    logged and never blocks the authentication decision it describes.
    """

    def __init__(self, conn: Optional[sqlite3.Connection] = None):
        self.conn = conn

    def record(self, event: str, outcome: str, reason: str, **ctx: Any) -> str:
        packed = compact_reason(reason, encode_audit_context(build_audit_context(extra=ctx)) if ctx else None)
        logger.info("auth_event event=%s outcome=%s reason=%s", event, outcome, packed)

        if self.conn is None:
            return packed
        try:
            self.conn.execute(
                "INSERT INTO auth_events(event, outcome, reason) VALUES(?, ?, ?)",
                (event, outcome, packed),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            logger.error("audit write failed event=%s: %s", event, e)
        return packed

    def recent(self, limit: int = 20) -> List[Dict[str, Any]]:
        if self.conn is None:
            return []
        rows = self.conn.execute(
            "SELECT id, ts, event, outcome, reason FROM auth_events ORDER BY id DESC LIMIT ?",
            (int(limit),),
        ).fetchall()
        return [dict(r) for r in rows]

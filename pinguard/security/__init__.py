# pinguard/security/__init__.py
"""
Security primitives.

This package centralizes:
- PIN digests (salted SHA-256, or PBKDF2-HMAC-SHA256) with optional pepper
- Audit context encoding (compact, log-friendly)
"""

from .pin_hashing import (
    DIGEST_PBKDF2,
    DIGEST_SHA256,
    generate_salt,
    hash_pin,
    verify_pin_digest,
)
from .audit_logging import (
    AuditTrail,
    build_audit_context,
    encode_audit_context,
    compact_reason,
)

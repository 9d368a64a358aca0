# pinguard/security/pin_hashing.py
from __future__ import annotations

import base64
import hashlib
import hmac
import os
import secrets


DIGEST_SHA256 = "sha256"
DIGEST_PBKDF2 = "pbkdf2_sha256"

SALT_BYTES = 16
_DEFAULT_ITERATIONS = 200_000


def _load_pepper() -> str:
    """
    Optional app-level secret (pepper) mixed in after the salt.
    - If unset: return "" (no pepper).
    - If set: raw string, or base64 prefixed with "base64:" (decoded to hex).

    Environment variable:
      PINGUARD_PIN_PEPPER
        examples:
          export PINGUARD_PIN_PEPPER="my-long-random-pepper"
          export PINGUARD_PIN_PEPPER="base64:8cS7...=="
    """
    v = (os.environ.get("PINGUARD_PIN_PEPPER") or "").strip()
    if not v:
        return ""
    if v.startswith("base64:"):
        return base64.b64decode(v[len("base64:") :].encode("utf-8")).hex()
    return v


def generate_salt() -> str:
    """16 random bytes, hex-encoded."""
    return secrets.token_bytes(SALT_BYTES).hex()


def _digest(pin: str, salt: str, pepper: str, algo: str, iterations: int) -> str:
    material = (pin + salt + pepper).encode("utf-8")
    if algo == DIGEST_SHA256:
        return hashlib.sha256(material).hexdigest()
    if algo == DIGEST_PBKDF2:
        dk = hashlib.pbkdf2_hmac("sha256", material, bytes.fromhex(salt), iterations, dklen=32)
        return dk.hex()
    raise ValueError(f"unknown_digest:{algo}")


def hash_pin(pin: str, salt: str, algo: str = DIGEST_SHA256, iterations: int = _DEFAULT_ITERATIONS) -> str:
    """
    Return the lowercase hex digest of pin + salt (+ pepper).

    NOTE:
    - The pepper is NOT stored with the credential.
    - verify_pin_digest() still accepts digests made before a pepper was set.
    """
    return _digest(pin, salt, _load_pepper(), algo, iterations)


def verify_pin_digest(
    pin: str,
    salt: str,
    expected_hex: str,
    algo: str = DIGEST_SHA256,
    iterations: int = _DEFAULT_ITERATIONS,
) -> bool:
    """
    Constant-time verification.

    If a pepper is configured, try with pepper first, then without it
    (credentials created before the pepper was introduced).
    """
    expected = (expected_hex or "").strip().lower()
    try:
        bytes.fromhex(expected)
    except ValueError:
        raise ValueError("stored_digest_not_hex") from None
    pepper = _load_pepper()

    if hmac.compare_digest(_digest(pin, salt, pepper, algo, iterations), expected):
        return True

    if pepper:
        return hmac.compare_digest(_digest(pin, salt, "", algo, iterations), expected)

    return False

from __future__ import annotations

import json
import logging
import math
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from .config import PinConfig
from .errors import IncorrectCredentialError, NotConfiguredError, StorageError, ValidationError
from .security import DIGEST_PBKDF2, DIGEST_SHA256, generate_salt, hash_pin, verify_pin_digest
from .storage import KeyValueStore

logger = logging.getLogger(__name__)

CREDENTIAL_KEY = "user_pin_credential"

_DIGITS = re.compile(r"\d+", re.ASCII)


@dataclass
class CredentialRecord:
    pin_hash: str
    salt: str
    algo: str
    last_changed: float

    def to_json(self) -> str:
        return json.dumps(
            {
                "pin_hash": self.pin_hash,
                "salt": self.salt,
                "algo": self.algo,
                "last_changed": self.last_changed,
            },
            separators=(",", ":"),
        )

    @classmethod
    def from_json(cls, raw: Optional[str]) -> Optional["CredentialRecord"]:
        """Parse a stored record. Partial or unreadable state means no PIN."""
        if not raw:
            return None
        try:
            d = json.loads(raw)
        except ValueError:
            return None
        if not isinstance(d, dict):
            return None
        pin_hash = d.get("pin_hash")
        salt = d.get("salt")
        if not pin_hash or not salt:
            return None
        try:
            last_changed = float(d.get("last_changed") or 0.0)
        except (TypeError, ValueError):
            # digest is intact; only the age is unknown
            last_changed = 0.0
        if not math.isfinite(last_changed):
            last_changed = 0.0
        return cls(
            pin_hash=str(pin_hash),
            salt=str(salt),
            algo=str(d.get("algo") or DIGEST_SHA256),
            last_changed=last_changed,
        )


def validate_pin(pin, length: int = 6) -> str:
    if not pin or not isinstance(pin, str):
        raise ValidationError("PIN is required")
    if not _DIGITS.fullmatch(pin):
        raise ValidationError("PIN must contain only numbers")
    if len(pin) != length:
        raise ValidationError(f"PIN must be {length} digits")
    return pin


class PinCredentialStore:
    """
    Salted PIN digest kept in secure storage.

    Verification never touches lockout state; counting failures is the
    caller's job.
    """

    def __init__(
        self,
        secure: KeyValueStore,
        cfg: Optional[PinConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.secure = secure
        self.cfg = cfg or PinConfig()
        self.clock = clock
        if self.cfg.digest not in (DIGEST_SHA256, DIGEST_PBKDF2):
            raise ValueError(f"unknown_digest:{self.cfg.digest}")

    def _load(self) -> Optional[CredentialRecord]:
        return CredentialRecord.from_json(self.secure.get(CREDENTIAL_KEY))

    def setup_pin(self, pin: str) -> CredentialRecord:
        validate_pin(pin, self.cfg.length)

        salt = generate_salt()
        record = CredentialRecord(
            pin_hash=hash_pin(pin, salt, self.cfg.digest, self.cfg.pbkdf2_iterations),
            salt=salt,
            algo=self.cfg.digest,
            last_changed=float(self.clock()),
        )
        self.secure.set(CREDENTIAL_KEY, record.to_json())
        logger.info("pin credential stored algo=%s", record.algo)
        return record

    def verify_pin(self, pin: str) -> bool:
        record = self._load()
        if record is None:
            raise NotConfiguredError()

        if not isinstance(pin, str) or not _DIGITS.fullmatch(pin) or len(pin) != self.cfg.length:
            return False

        try:
            return verify_pin_digest(pin, record.salt, record.pin_hash, record.algo, self.cfg.pbkdf2_iterations)
        except (TypeError, ValueError) as e:
            logger.error("stored pin credential unreadable: %s", e)
            raise StorageError("Failed to verify PIN. Please try again.") from e

    def update_pin(self, current_pin: str, new_pin: str) -> CredentialRecord:
        if not current_pin or not new_pin:
            raise ValidationError("Both current and new PIN are required")
        if not self.verify_pin(current_pin):
            raise IncorrectCredentialError()
        return self.setup_pin(new_pin)

    def delete_pin(self) -> None:
        self.secure.delete(CREDENTIAL_KEY)
        logger.info("pin credential deleted")

    def has_pin(self) -> bool:
        return self._load() is not None

    def last_changed(self) -> Optional[datetime]:
        record = self._load()
        if record is None or record.last_changed <= 0:
            return None
        return datetime.fromtimestamp(record.last_changed, tz=timezone.utc)

    def is_pin_expired(self) -> bool:
        if self.cfg.expiry_days <= 0:
            return False
        record = self._load()
        if record is None:
            return False
        age = float(self.clock()) - record.last_changed
        return age > self.cfg.expiry_days * 86400

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .config import LockoutConfig
from .errors import LockedError
from .storage import KeyValueStore

logger = logging.getLogger(__name__)

FAILED_ATTEMPTS_KEY = "failed_attempts"
LOCKED_UNTIL_KEY = "locked_until"


@dataclass
class LockStatus:
    is_locked: bool
    remaining_time: int
    failed_attempts: int


class LockoutPolicy:
    """
    Consecutive-failure counter with a timed lockout.

    Unlocked(0..max-1) --failure--> Unlocked(n+1), the failure that reaches
    `max_failed_attempts` locks until now + lockout_seconds. Success or an
    elapsed window returns to Unlocked(0). Expiry is detected lazily by
    is_account_locked(); nothing runs in the background.

    Callers must check is_account_locked() before verifying a PIN.
    """

    def __init__(
        self,
        store: KeyValueStore,
        cfg: Optional[LockoutConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.cfg = cfg or LockoutConfig()
        self.clock = clock

    def _failed_attempts(self) -> int:
        raw = self.store.get(FAILED_ATTEMPTS_KEY)
        try:
            return max(0, int(raw)) if raw else 0
        except ValueError:
            logger.warning("failed_attempts unreadable, treating as 0: %r", raw)
            return 0

    def _locked_until(self) -> Optional[float]:
        raw = self.store.get(LOCKED_UNTIL_KEY)
        if not raw:
            return None
        try:
            return float(raw)
        except ValueError:
            logger.warning("locked_until unreadable, ignoring: %r", raw)
            return None

    def _lock_window(self) -> int:
        return max(1, int(self.cfg.lockout_seconds))

    def lock_account(self) -> float:
        window = self._lock_window()
        locked_until = float(self.clock()) + window
        self.store.set(LOCKED_UNTIL_KEY, repr(locked_until))
        logger.warning("account locked for %ss", window)
        return locked_until

    def track_failed_attempt(self) -> int:
        """
        Count one wrong PIN. Returns the new count, or raises LockedError on
        the attempt that reaches the threshold.
        """
        attempts = self._failed_attempts() + 1
        self.store.set(FAILED_ATTEMPTS_KEY, str(attempts))
        logger.info("failed pin attempt %d/%d", attempts, self.cfg.max_failed_attempts)

        if self.cfg.max_failed_attempts > 0 and attempts >= self.cfg.max_failed_attempts:
            self.lock_account()
            raise LockedError(remaining_seconds=self._lock_window())
        return attempts

    def reset_failed_attempts(self) -> None:
        self.store.set(FAILED_ATTEMPTS_KEY, "0")
        self.store.delete(LOCKED_UNTIL_KEY)

    def get_remaining_lockout_time(self) -> int:
        locked_until = self._locked_until()
        if locked_until is None:
            return 0
        return max(0, int(math.floor(locked_until - float(self.clock()))))

    def is_account_locked(self) -> LockStatus:
        locked_until = self._locked_until()
        if locked_until is None:
            return LockStatus(is_locked=False, remaining_time=0, failed_attempts=self._failed_attempts())

        now = float(self.clock())
        if now < locked_until:
            return LockStatus(
                is_locked=True,
                remaining_time=max(0, int(math.floor(locked_until - now))),
                failed_attempts=self._failed_attempts(),
            )

        logger.info("lockout window elapsed, resetting counter")
        self.reset_failed_attempts()
        return LockStatus(is_locked=False, remaining_time=0, failed_attempts=0)

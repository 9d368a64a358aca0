from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Optional

from .config import BiometricConfig
from .errors import BiometricHardwareError, UnavailableError
from .storage import KeyValueStore

logger = logging.getLogger(__name__)

BIOMETRIC_ENABLED_KEY = "biometric_enabled"


class BiometricType(Enum):
    FINGERPRINT = "fingerprint"
    FACE = "face"
    IRIS = "iris"
    NONE = "none"


class AuthMethod(Enum):
    PIN = "pin"
    BIOMETRIC = "biometric"
    NONE = "none"


class BiometricErrorKind(Enum):
    """Why a biometric challenge did not succeed."""

    USER_CANCEL = "user_cancel"
    AUTHENTICATION_FAILED = "authentication_failed"
    NOT_ENROLLED = "not_enrolled"
    NOT_AVAILABLE = "not_available"
    TIMEOUT = "timeout"
    LOCKOUT = "lockout"
    HARDWARE_ERROR = "hardware_error"


@dataclass(frozen=True)
class BiometricCapability:
    available: bool
    type: BiometricType


@dataclass(frozen=True)
class PlatformAuthOutcome:
    success: bool
    error: Optional[BiometricErrorKind] = None
    message: Optional[str] = None


@dataclass(frozen=True)
class AuthenticationResult:
    success: bool
    method: AuthMethod
    error: Optional[BiometricErrorKind] = None
    message: Optional[str] = None


class BiometricPlatform(ABC):
    """
    Native biometric API of the device.

    Implementations report user-level outcomes (cancel, mismatch, timeout)
    through PlatformAuthOutcome and raise BiometricHardwareError or OSError
    only when the sensor itself fails.
    """

    @abstractmethod
    def has_hardware(self) -> bool:
        ...

    @abstractmethod
    def is_enrolled(self) -> bool:
        ...

    @abstractmethod
    def supported_types(self) -> FrozenSet[BiometricType]:
        ...

    @abstractmethod
    def authenticate(self, prompt_message: str, fallback_label: str, cancel_label: str) -> PlatformAuthOutcome:
        ...


class NullBiometricPlatform(BiometricPlatform):
    """Device without any biometric sensor."""

    def has_hardware(self) -> bool:
        return False

    def is_enrolled(self) -> bool:
        return False

    def supported_types(self) -> FrozenSet[BiometricType]:
        return frozenset()

    def authenticate(self, prompt_message: str, fallback_label: str, cancel_label: str) -> PlatformAuthOutcome:
        return PlatformAuthOutcome(success=False, error=BiometricErrorKind.NOT_AVAILABLE)


_UNAVAILABLE = BiometricCapability(available=False, type=BiometricType.NONE)


class BiometricGate:
    """
    Fingerprint-only gate over a BiometricPlatform plus the local
    "use fingerprint" preference.

    Face and iris modalities are never accepted. Capability is re-queried
    on every call; the preference flag alone never implies capability.
    """

    def __init__(self, platform: BiometricPlatform, store: KeyValueStore, cfg: Optional[BiometricConfig] = None):
        self.platform = platform
        self.store = store
        self.cfg = cfg or BiometricConfig()

    def get_biometric_capability(self) -> BiometricCapability:
        try:
            if not self.platform.has_hardware() or not self.platform.is_enrolled():
                return _UNAVAILABLE
            types = self.platform.supported_types()
        except (BiometricHardwareError, OSError) as e:
            logger.error("biometric capability check failed: %s", e)
            return _UNAVAILABLE

        if BiometricType.FINGERPRINT in types:
            return BiometricCapability(available=True, type=BiometricType.FINGERPRINT)
        return _UNAVAILABLE

    def authenticate_with_biometric(self) -> AuthenticationResult:
        """
        Run one native prompt. Cancellation and mismatch come back as
        success=False; only sensor failure raises BiometricHardwareError.
        """
        try:
            outcome = self.platform.authenticate(
                self.cfg.prompt_message,
                self.cfg.fallback_label,
                self.cfg.cancel_label,
            )
        except BiometricHardwareError:
            raise
        except OSError as e:
            logger.error("biometric sensor failure: %s", e)
            raise BiometricHardwareError() from e

        if outcome.error is BiometricErrorKind.HARDWARE_ERROR:
            logger.error("biometric sensor failure: %s", outcome.message)
            raise BiometricHardwareError()

        if not outcome.success:
            logger.info("biometric challenge not passed: %s", outcome.error.value if outcome.error else "unknown")
            return AuthenticationResult(
                success=False,
                method=AuthMethod.BIOMETRIC,
                error=outcome.error or BiometricErrorKind.AUTHENTICATION_FAILED,
                message=outcome.message,
            )
        return AuthenticationResult(success=True, method=AuthMethod.BIOMETRIC)

    def enable_biometric(self) -> None:
        if not self.get_biometric_capability().available:
            raise UnavailableError()
        self.store.set(BIOMETRIC_ENABLED_KEY, "true")
        logger.info("fingerprint unlock enabled")

    def disable_biometric(self) -> None:
        self.store.set(BIOMETRIC_ENABLED_KEY, "false")
        logger.info("fingerprint unlock disabled")

    def is_biometric_enabled(self) -> bool:
        return self.store.get(BIOMETRIC_ENABLED_KEY) == "true"

"""
Pytest fixtures for pinguard tests.

Provides common test fixtures including:
- In-memory keyring backend and a temporary SQLite database
- A controllable clock
- A scripted biometric platform
- Synthetic ridge images for the fingerprint matcher
"""

from typing import Dict, FrozenSet, List, Optional, Tuple

import numpy as np
import pytest
from keyring.backend import KeyringBackend
from keyring.errors import KeyringError, PasswordDeleteError

from pinguard.biometric import (
    BiometricErrorKind,
    BiometricGate,
    BiometricPlatform,
    BiometricType,
    PlatformAuthOutcome,
)
from pinguard.config import BiometricConfig, LockoutConfig, PinConfig
from pinguard.credentials import PinCredentialStore
from pinguard.device import DeviceTrustRegistry
from pinguard.errors import BiometricHardwareError
from pinguard.flow import AuthFlowController
from pinguard.lockout import LockoutPolicy
from pinguard.security import AuditTrail
from pinguard.storage import KeyringSecureStore, SqliteStore, connect, init_db


class MemoryKeyring(KeyringBackend):
    """Keyring backend kept in a dict, never registered globally."""

    priority = 1

    def __init__(self):
        super().__init__()
        self.passwords: Dict[Tuple[str, str], str] = {}

    def get_password(self, service, username):
        return self.passwords.get((service, username))

    def set_password(self, service, username, password):
        self.passwords[(service, username)] = password

    def delete_password(self, service, username):
        if (service, username) not in self.passwords:
            raise PasswordDeleteError("not found")
        del self.passwords[(service, username)]


class BrokenKeyring(KeyringBackend):
    """Backend whose vault is locked: every call fails."""

    priority = 1

    def get_password(self, service, username):
        raise KeyringError("vault locked")

    def set_password(self, service, username, password):
        raise KeyringError("vault locked")

    def delete_password(self, service, username):
        raise KeyringError("vault locked")


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedPlatform(BiometricPlatform):
    """
    Biometric platform whose answers are set by the test.
    `outcomes` are consumed in order; the last one repeats.
    """

    def __init__(
        self,
        hardware: bool = True,
        enrolled: bool = True,
        types: FrozenSet[BiometricType] = frozenset({BiometricType.FINGERPRINT}),
        outcomes: Optional[List[PlatformAuthOutcome]] = None,
        raise_on_auth: Optional[Exception] = None,
    ):
        self.hardware = hardware
        self.enrolled = enrolled
        self.types = types
        self.outcomes = list(outcomes or [PlatformAuthOutcome(success=True)])
        self.raise_on_auth = raise_on_auth
        self.prompts: List[Tuple[str, str, str]] = []

    def has_hardware(self) -> bool:
        return self.hardware

    def is_enrolled(self) -> bool:
        return self.enrolled

    def supported_types(self) -> FrozenSet[BiometricType]:
        return self.types

    def authenticate(self, prompt_message, fallback_label, cancel_label) -> PlatformAuthOutcome:
        self.prompts.append((prompt_message, fallback_label, cancel_label))
        if self.raise_on_auth is not None:
            raise self.raise_on_auth
        if len(self.outcomes) > 1:
            return self.outcomes.pop(0)
        return self.outcomes[0]


@pytest.fixture(autouse=True)
def _no_pepper(monkeypatch):
    monkeypatch.delenv("PINGUARD_PIN_PEPPER", raising=False)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db(tmp_path):
    conn = connect(str(tmp_path / "pinguard.db"))
    init_db(conn)
    yield conn
    conn.close()


@pytest.fixture
def plain_store(db):
    return SqliteStore(db)


@pytest.fixture
def keyring_backend():
    return MemoryKeyring()


@pytest.fixture
def secure_store(keyring_backend):
    return KeyringSecureStore("pinguard-test", backend=keyring_backend)


@pytest.fixture
def credentials(secure_store, clock):
    return PinCredentialStore(secure_store, PinConfig(), clock=clock)


@pytest.fixture
def lockout(plain_store, clock):
    return LockoutPolicy(plain_store, LockoutConfig(max_failed_attempts=5, lockout_seconds=300), clock=clock)


@pytest.fixture
def trust(plain_store):
    return DeviceTrustRegistry(plain_store)


@pytest.fixture
def platform():
    return ScriptedPlatform()


@pytest.fixture
def no_sensor():
    return ScriptedPlatform(hardware=False, enrolled=False, types=frozenset())


@pytest.fixture
def gate(platform, plain_store):
    return BiometricGate(platform, plain_store, BiometricConfig())


@pytest.fixture
def audit(db):
    return AuditTrail(db)


@pytest.fixture
def controller(credentials, lockout, trust, gate, audit):
    return AuthFlowController(credentials, lockout, trust, gate, audit=audit)


@pytest.fixture
def hardware_fault():
    return ScriptedPlatform(raise_on_auth=BiometricHardwareError())


@pytest.fixture
def cancelled_prompt():
    return ScriptedPlatform(outcomes=[PlatformAuthOutcome(success=False, error=BiometricErrorKind.USER_CANCEL)])


def generate_ridge_image(orientation: str = "vertical", size: int = 160) -> np.ndarray:
    """
    Generate a synthetic grayscale "ridge" image.

    Args:
        orientation: "vertical" ramps along x, "horizontal" ramps along y.
        size: Side length in pixels.

    Returns:
        uint8 image whose LBP codes are uniform across the frame.
    """
    ramp = np.linspace(0, 255, size).astype(np.uint8)
    img = np.tile(ramp, (size, 1))
    if orientation == "horizontal":
        img = np.ascontiguousarray(img.T)
    return img


@pytest.fixture
def ridge_vertical():
    return generate_ridge_image("vertical")


@pytest.fixture
def ridge_horizontal():
    return generate_ridge_image("horizontal")


@pytest.fixture
def broken_secure_store():
    return KeyringSecureStore("pinguard-test", backend=BrokenKeyring())


@pytest.fixture
def make_platform():
    """Factory for ScriptedPlatform with per-test answers."""
    return ScriptedPlatform

from __future__ import annotations

import logging
import sqlite3
import time
from dataclasses import dataclass
from typing import Callable, Optional

from keyring.backend import KeyringBackend

from .biometric import BiometricGate, BiometricPlatform
from .config import AppConfig
from .credentials import PinCredentialStore
from .device import DeviceTrustRegistry
from .fingerprint import FingerprintImagePlatform
from .flow import AuthFlowController, ProfileLookup
from .lockout import LockoutPolicy
from .security import AuditTrail
from .storage import KeyringSecureStore, KeyValueStore, SqliteStore, connect, init_db

logger = logging.getLogger(__name__)


@dataclass
class SecurityServices:
    """Instances built once per process and injected into screens/scripts."""

    conn: sqlite3.Connection
    credentials: PinCredentialStore
    lockout: LockoutPolicy
    trust: DeviceTrustRegistry
    biometric: BiometricGate
    audit: AuditTrail

    def controller(self, profile_lookup: Optional[ProfileLookup] = None) -> AuthFlowController:
        return AuthFlowController(
            credentials=self.credentials,
            lockout=self.lockout,
            trust=self.trust,
            biometric=self.biometric,
            audit=self.audit,
            profile_lookup=profile_lookup,
        )

    def close(self) -> None:
        self.conn.close()


def build_services(
    cfg: AppConfig,
    platform: Optional[BiometricPlatform] = None,
    secure: Optional[KeyValueStore] = None,
    keyring_backend: Optional[KeyringBackend] = None,
    clock: Callable[[], float] = time.time,
) -> SecurityServices:
    conn = connect(cfg.storage.db_path)
    init_db(conn)

    plain = SqliteStore(conn)
    if secure is None:
        secure = KeyringSecureStore(cfg.storage.keyring_service, backend=keyring_backend)
    if platform is None:
        platform = FingerprintImagePlatform(cfg.biometric)

    logger.debug("security services ready db=%s", cfg.storage.db_path)
    return SecurityServices(
        conn=conn,
        credentials=PinCredentialStore(secure, cfg.pin, clock=clock),
        lockout=LockoutPolicy(plain, cfg.lockout, clock=clock),
        trust=DeviceTrustRegistry(plain, cfg.device),
        biometric=BiometricGate(platform, plain, cfg.biometric),
        audit=AuditTrail(conn),
    )

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import yaml


@dataclass
class StorageConfig:
    db_path: str = "data/pinguard.db"
    keyring_service: str = "pinguard"


@dataclass
class PinConfig:
    length: int = 6
    digest: str = "sha256"
    pbkdf2_iterations: int = 200_000
    expiry_days: int = 90


@dataclass
class LockoutConfig:
    max_failed_attempts: int = 5
    lockout_seconds: int = 300


@dataclass
class BiometricConfig:
    prompt_message: str = "Authenticate to continue"
    fallback_label: str = "Use PIN"
    cancel_label: str = "Cancel"
    template_dir: str = "data/fingerprints"
    scan_path: str = "data/scan.png"
    scan_timeout_seconds: float = 15.0
    score_threshold: float = 0.92


@dataclass
class DeviceConfig:
    device_name: Optional[str] = None
    device_type: Optional[str] = None


@dataclass
class LoggingConfig:
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[str] = None


@dataclass
class AppConfig:
    storage: StorageConfig = field(default_factory=StorageConfig)
    pin: PinConfig = field(default_factory=PinConfig)
    lockout: LockoutConfig = field(default_factory=LockoutConfig)
    biometric: BiometricConfig = field(default_factory=BiometricConfig)
    device: DeviceConfig = field(default_factory=DeviceConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _opt_str(v: Any) -> Optional[str]:
    if v is None:
        return None
    s = str(v).strip()
    return s or None


def load_config(path: str = "config.yaml") -> AppConfig:
    if not os.path.exists(path):
        return AppConfig()

    with open(path, "r", encoding="utf-8") as f:
        raw: Dict[str, Any] = yaml.safe_load(f) or {}

    sto = raw.get("storage", {}) or {}
    pin = raw.get("pin", {}) or {}
    lock = raw.get("lockout", {}) or {}
    bio = raw.get("biometric", {}) or {}
    dev = raw.get("device", {}) or {}
    log = raw.get("logging", {}) or {}

    return AppConfig(
        storage=StorageConfig(
            db_path=str(sto.get("db_path", "data/pinguard.db")),
            keyring_service=str(sto.get("keyring_service", "pinguard")),
        ),
        pin=PinConfig(
            length=int(pin.get("length", 6)),
            digest=str(pin.get("digest", "sha256")),
            pbkdf2_iterations=int(pin.get("pbkdf2_iterations", 200_000)),
            expiry_days=int(pin.get("expiry_days", 90)),
        ),
        lockout=LockoutConfig(
            max_failed_attempts=int(lock.get("max_failed_attempts", 5)),
            lockout_seconds=int(lock.get("lockout_seconds", 300)),
        ),
        biometric=BiometricConfig(
            prompt_message=str(bio.get("prompt_message", "Authenticate to continue")),
            fallback_label=str(bio.get("fallback_label", "Use PIN")),
            cancel_label=str(bio.get("cancel_label", "Cancel")),
            template_dir=str(bio.get("template_dir", "data/fingerprints")),
            scan_path=str(bio.get("scan_path", "data/scan.png")),
            scan_timeout_seconds=float(bio.get("scan_timeout_seconds", 15.0)),
            score_threshold=float(bio.get("score_threshold", 0.92)),
        ),
        device=DeviceConfig(
            device_name=_opt_str(dev.get("device_name")),
            device_type=_opt_str(dev.get("device_type")),
        ),
        logging=LoggingConfig(
            level=str(log.get("level", "INFO")).upper(),
            format=str(log.get("format", LoggingConfig.format)),
            file=_opt_str(log.get("file")),
        ),
    )


def setup_logging(cfg: AppConfig) -> None:
    """Configure root logging from the `logging` section."""
    level = getattr(logging, cfg.logging.level, logging.INFO)
    handlers: list = [logging.StreamHandler(sys.stderr)]

    if cfg.logging.file:
        parent = os.path.dirname(cfg.logging.file)
        if parent:
            os.makedirs(parent, exist_ok=True)
        handlers.append(logging.FileHandler(cfg.logging.file))

    logging.basicConfig(level=level, format=cfg.logging.format, handlers=handlers)

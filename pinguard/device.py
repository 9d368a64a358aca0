from __future__ import annotations

import json
import logging
import platform
import uuid
from dataclasses import dataclass
from typing import List, Optional

from .config import DeviceConfig
from .storage import KeyValueStore

logger = logging.getLogger(__name__)

KNOWN_DEVICES_KEY = "known_devices"
INSTALL_ID_KEY = "install_id"


@dataclass
class DeviceInfo:
    device_id: str
    device_name: str
    device_type: str


class DeviceTrustRegistry:
    """
    Local memory of installs that completed a full PIN/biometric challenge.

    The identifier is scoped to the install (a random id kept in plain
    storage), not to the hardware: clearing storage makes a new device.
    Membership is never checked against a server.
    """

    def __init__(self, store: KeyValueStore, cfg: Optional[DeviceConfig] = None):
        self.store = store
        self.cfg = cfg or DeviceConfig()

    def _install_id(self) -> str:
        v = self.store.get(INSTALL_ID_KEY)
        if v:
            return v
        v = uuid.uuid4().hex
        self.store.set(INSTALL_ID_KEY, v)
        logger.info("new install id generated")
        return v

    def get_device_info(self) -> DeviceInfo:
        return DeviceInfo(
            device_id=self._install_id(),
            device_name=self.cfg.device_name or platform.node() or "Unknown Device",
            device_type=(self.cfg.device_type or platform.system() or "unknown").lower(),
        )

    def known_devices(self) -> List[str]:
        raw = self.store.get(KNOWN_DEVICES_KEY)
        if not raw:
            return []
        try:
            ids = json.loads(raw)
        except ValueError:
            logger.warning("known_devices unreadable, treating as empty")
            return []
        if not isinstance(ids, list):
            return []
        return [str(x) for x in ids]

    def is_new_device(self) -> bool:
        if not self.store.get(KNOWN_DEVICES_KEY):
            return True
        return self.get_device_info().device_id not in self.known_devices()

    def mark_device_as_known(self) -> None:
        device_id = self.get_device_info().device_id
        ids = self.known_devices()
        if device_id in ids:
            return
        ids.append(device_id)
        self.store.set(KNOWN_DEVICES_KEY, json.dumps(ids))
        logger.info("device marked as known")

# FILE: pinguard/fingerprint.py
from __future__ import annotations

import hashlib
import json
import logging
import os
import time
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple

import cv2
import numpy as np

from .biometric import BiometricErrorKind, BiometricPlatform, BiometricType, PlatformAuthOutcome
from .config import BiometricConfig

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"
_SIGNATURE_SIZE = 160
_GRID = 4


def sha256_file(path: str) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            h.update(chunk)
    return h.hexdigest()


# -----------------------------
# Ridge signature (grid LBP hist)
# -----------------------------
def _lbp8u(gray: np.ndarray) -> np.ndarray:
    """
    Basic LBP (8 neighbors, radius=1) returning uint8 codes.
    """
    g = gray
    h, w = g.shape
    lbp = np.zeros((h - 2, w - 2), dtype=np.uint8)
    c = g[1:-1, 1:-1]

    lbp |= ((g[0:-2, 0:-2] >= c) << 7).astype(np.uint8)
    lbp |= ((g[0:-2, 1:-1] >= c) << 6).astype(np.uint8)
    lbp |= ((g[0:-2, 2:  ] >= c) << 5).astype(np.uint8)
    lbp |= ((g[1:-1, 2:  ] >= c) << 4).astype(np.uint8)
    lbp |= ((g[2:  , 2:  ] >= c) << 3).astype(np.uint8)
    lbp |= ((g[2:  , 1:-1] >= c) << 2).astype(np.uint8)
    lbp |= ((g[2:  , 0:-2] >= c) << 1).astype(np.uint8)
    lbp |= ((g[1:-1, 0:-2] >= c) << 0).astype(np.uint8)

    return lbp


def _to_gray(image: np.ndarray) -> np.ndarray:
    if image.ndim == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    return image


def fingerprint_signature(image: np.ndarray) -> np.ndarray:
    """
    Concatenated LBP histograms over a 4x4 grid. Ridge orientation changes
    the dominant codes per cell, so layout matters, not just texture.
    """
    gray = cv2.equalizeHist(_to_gray(image).astype(np.uint8))
    gray = cv2.resize(gray, (_SIGNATURE_SIZE, _SIGNATURE_SIZE), interpolation=cv2.INTER_AREA)
    lbp = _lbp8u(gray)

    h, w = lbp.shape
    ch, cw = h // _GRID, w // _GRID
    parts: List[np.ndarray] = []
    for gy in range(_GRID):
        for gx in range(_GRID):
            cell = np.ascontiguousarray(lbp[gy * ch:(gy + 1) * ch, gx * cw:(gx + 1) * cw])
            hist = cv2.calcHist([cell], [0], None, [256], [0, 256]).astype(np.float32).flatten()
            s = float(np.sum(hist))
            if s > 0:
                hist /= s
            parts.append(hist)
    return np.concatenate(parts).astype(np.float32)


def _corr_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """
    Correlation in [-1,1] mapped to [0,1].
    """
    corr = float(cv2.compareHist(a.astype(np.float32), b.astype(np.float32), cv2.HISTCMP_CORREL))
    corr = min(1.0, max(-1.0, corr))
    return 0.5 * (corr + 1.0)


def compare_fingerprint(scan: Optional[np.ndarray], template: Optional[np.ndarray]) -> float:
    """Similarity score in [0,1]; 0.0 if either image is missing."""
    if scan is None or template is None or scan.size == 0 or template.size == 0:
        return 0.0
    return _corr_similarity(fingerprint_signature(scan), fingerprint_signature(template))


class FingerprintImagePlatform(BiometricPlatform):
    """
    Fingerprint reader that drops each scan as an image file at `scan_path`.

    Enrolled templates live in `template_dir`, each pinned by a SHA-256 entry
    in manifest.json; a template whose bytes no longer match is ignored.
    A `<scan_path>.cancel` marker is the reader's cancel button. No scan
    before the timeout is a timeout, not an error.
    """

    def __init__(
        self,
        cfg: Optional[BiometricConfig] = None,
        poll_interval: float = 0.2,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cfg = cfg or BiometricConfig()
        self.poll_interval = poll_interval
        self.sleep = sleep
        self.clock = clock

    @property
    def cancel_path(self) -> str:
        return self.cfg.scan_path + ".cancel"

    def _manifest_path(self) -> str:
        return os.path.join(self.cfg.template_dir, MANIFEST_NAME)

    def _read_manifest(self) -> Dict[str, str]:
        path = self._manifest_path()
        if not os.path.isfile(path):
            return {}
        with open(path, "r", encoding="utf-8") as f:
            try:
                d = json.load(f)
            except ValueError:
                logger.warning("fingerprint manifest unreadable: %s", path)
                return {}
        return {str(k): str(v).lower() for k, v in d.items()} if isinstance(d, dict) else {}

    def enroll_template(self, image: np.ndarray, name: str) -> str:
        """Store one template image and pin its digest. Returns the file path."""
        os.makedirs(self.cfg.template_dir, exist_ok=True)
        filename = f"{name}.png"
        path = os.path.join(self.cfg.template_dir, filename)
        if not cv2.imwrite(path, image):
            raise OSError(f"template_write_failed:{path}")

        manifest = self._read_manifest()
        manifest[filename] = sha256_file(path)
        with open(self._manifest_path(), "w", encoding="utf-8") as f:
            json.dump(manifest, f, indent=2, sort_keys=True)
        logger.info("fingerprint template enrolled: %s", filename)
        return path

    def remove_template(self, name: str) -> None:
        filename = f"{name}.png"
        manifest = self._read_manifest()
        manifest.pop(filename, None)
        path = os.path.join(self.cfg.template_dir, filename)
        if os.path.exists(path):
            os.remove(path)
        if os.path.isdir(self.cfg.template_dir):
            with open(self._manifest_path(), "w", encoding="utf-8") as f:
                json.dump(manifest, f, indent=2, sort_keys=True)

    def template_paths(self) -> List[str]:
        out: List[str] = []
        for filename, expected in sorted(self._read_manifest().items()):
            path = os.path.join(self.cfg.template_dir, filename)
            if not os.path.isfile(path):
                continue
            if sha256_file(path) != expected:
                logger.warning("fingerprint template tampered, ignoring: %s", filename)
                continue
            out.append(path)
        return out

    def has_hardware(self) -> bool:
        return os.path.isdir(os.path.dirname(self.cfg.scan_path) or ".")

    def is_enrolled(self) -> bool:
        return len(self.template_paths()) > 0

    def supported_types(self) -> FrozenSet[BiometricType]:
        return frozenset({BiometricType.FINGERPRINT})

    def _wait_for_scan(self) -> Tuple[Optional[str], Optional[BiometricErrorKind]]:
        deadline = self.clock() + max(0.0, self.cfg.scan_timeout_seconds)
        while True:
            if os.path.exists(self.cancel_path):
                os.remove(self.cancel_path)
                return None, BiometricErrorKind.USER_CANCEL
            if os.path.exists(self.cfg.scan_path):
                return self.cfg.scan_path, None
            if self.clock() >= deadline:
                return None, BiometricErrorKind.TIMEOUT
            self.sleep(self.poll_interval)

    def capture_scan(self) -> Tuple[Optional[np.ndarray], Optional[BiometricErrorKind]]:
        """
        Wait for one scan and consume it. An unreadable scan file is a
        sensor fault (HARDWARE_ERROR).
        """
        path, err = self._wait_for_scan()
        if path is None:
            return None, err

        scan = cv2.imread(path, cv2.IMREAD_GRAYSCALE)
        os.remove(path)
        if scan is None:
            return None, BiometricErrorKind.HARDWARE_ERROR
        return scan, None

    def authenticate(self, prompt_message: str, fallback_label: str, cancel_label: str) -> PlatformAuthOutcome:
        if not self.has_hardware():
            return PlatformAuthOutcome(success=False, error=BiometricErrorKind.NOT_AVAILABLE)

        templates = self.template_paths()
        if not templates:
            return PlatformAuthOutcome(success=False, error=BiometricErrorKind.NOT_ENROLLED)

        logger.info("%s (%s / %s)", prompt_message, fallback_label, cancel_label)
        scan, err = self.capture_scan()
        if scan is None:
            msg = "scan_unreadable" if err is BiometricErrorKind.HARDWARE_ERROR else None
            return PlatformAuthOutcome(success=False, error=err, message=msg)

        best = 0.0
        for tpl_path in templates:
            tpl = cv2.imread(tpl_path, cv2.IMREAD_GRAYSCALE)
            best = max(best, compare_fingerprint(scan, tpl))

        logger.info("fingerprint best_score=%.3f threshold=%.3f", best, self.cfg.score_threshold)
        if best >= self.cfg.score_threshold:
            return PlatformAuthOutcome(success=True)
        return PlatformAuthOutcome(success=False, error=BiometricErrorKind.AUTHENTICATION_FAILED)

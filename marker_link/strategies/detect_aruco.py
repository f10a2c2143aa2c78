from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import cv2
import numpy as np

from ..errors import DetectionError
from ..link_types import CameraIntrinsics, Detection


def get_dict(name: str):
    """
    ArUco dictionary resolver.
    Falls back to 4x4_50 if name not recognized.
    Works on OpenCV >= 4.7 (getPredefinedDictionary) and older (Dictionary_get).
    """
    key = (name or "").strip().lower()
    if key.startswith("dict_"):
        key = key[5:]
    table = {
        "4x4_50":  cv2.aruco.DICT_4X4_50,
        "4x4_100": cv2.aruco.DICT_4X4_100,
        "5x5_50":  cv2.aruco.DICT_5X5_50,
        "5x5_100": cv2.aruco.DICT_5X5_100,
        "6x6_50":  cv2.aruco.DICT_6X6_50,
        "6x6_100": cv2.aruco.DICT_6X6_100,
        "7x7_50":  cv2.aruco.DICT_7X7_50,
        "7x7_100": cv2.aruco.DICT_7X7_100,
    }
    code = table.get(key, cv2.aruco.DICT_4X4_50)

    if hasattr(cv2.aruco, "getPredefinedDictionary"):           # OpenCV >= 4.7
        return cv2.aruco.getPredefinedDictionary(code)
    return cv2.aruco.Dictionary_get(code)                        # Older OpenCV


def _make_params():
    """Create detector parameters across OpenCV versions."""
    if hasattr(cv2.aruco, "DetectorParameters_create"):
        return cv2.aruco.DetectorParameters_create()
    return cv2.aruco.DetectorParameters()


class ArucoPatternDetector:
    """
    Strategy: find catalog patterns in the frame image.

    The image is binarized at `threshold` before the ArUco search. ArUco
    corners are already ordered upper-left first, so every detection
    carries dir=0. The detector reports no confidence; all hits get cf=1.0.
    """

    def __init__(self, dict_name: str = "4x4_50", threshold: int = 100,
                 logger: Optional[logging.Logger] = None):
        self.dictionary = get_dict(dict_name)
        self.params = _make_params()
        self.threshold = int(threshold)
        self.logger = logger or logging.getLogger(__name__)
        self._detector = None
        # Prefer the newer ArucoDetector API if present
        if hasattr(cv2.aruco, "ArucoDetector"):
            self._detector = cv2.aruco.ArucoDetector(self.dictionary, self.params)
        self._gray: Optional[np.ndarray] = None
        self.configured = False

    def configure(self, intrinsics: CameraIntrinsics) -> None:
        """Allocate the working buffer once, sized to the first frame."""
        if self.configured:
            return
        self._gray = np.zeros((intrinsics.ysize, intrinsics.xsize), dtype=np.uint8)
        self.configured = True

    def _find(self, image):
        if self._detector is not None:
            return self._detector.detectMarkers(image)
        return cv2.aruco.detectMarkers(image, self.dictionary, parameters=self.params)

    def _binarize(self, image: np.ndarray) -> np.ndarray:
        if image.ndim == 3:
            if self._gray is not None and self._gray.shape == image.shape[:2]:
                gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY, dst=self._gray)
            else:
                gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        else:
            gray = image
        _, binary = cv2.threshold(gray, self.threshold, 255, cv2.THRESH_BINARY)
        return binary

    def detect(self, image) -> list[Detection]:
        if image is None:
            raise DetectionError("frame carries no image")
        try:
            binary = self._binarize(np.asarray(image))
            corners, ids, _rej = self._find(binary)
        except cv2.error as exc:
            raise DetectionError(str(exc)) from exc

        dets: list[Detection] = []
        if ids is not None and len(ids) > 0:
            for i, mid in enumerate(np.asarray(ids).flatten()):
                vertices = np.asarray(corners[i], dtype=float).reshape(4, 2)
                dets.append(Detection(int(mid), vertices, 1.0, 0))
        return dets

    def load_pattern(self, token: str, data_directory: str | Path) -> int:
        """
        Resolve a catalog pattern token to the id this detector reports.

        Integer tokens are taken as the marker code. Anything else is an
        image path relative to `data_directory` holding exactly one marker.
        """
        token = token.strip()
        try:
            return int(token)
        except ValueError:
            pass

        path = Path(data_directory) / token
        if not path.exists():
            raise FileNotFoundError(f"Pattern image not found: {path}")
        image = cv2.imread(str(path), cv2.IMREAD_GRAYSCALE)
        if image is None:
            raise ValueError(f"Could not read pattern image: {path}")
        _corners, ids, _rej = self._find(image)
        if ids is None or len(ids) != 1:
            found = 0 if ids is None else len(ids)
            raise ValueError(f"Pattern image {path} must contain exactly one marker, found {found}")
        return int(np.asarray(ids).flatten()[0])

"""
Marker detection module.

This module handles detection of ArUco markers in camera frames and the
optional coarse lens-distortion correction of their corners.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import cv2
import numpy as np

from .rack import DetectedMarker

LOGGER = logging.getLogger(__name__)

DEFAULT_DICTIONARY = "DICT_4X4_50"


@dataclass
class LensCorrection:
    """Coarse camera model used to undistort marker corners."""

    camera_matrix: np.ndarray
    dist_coeffs: np.ndarray

    @classmethod
    def from_config(cls, config: Optional[Dict]) -> Optional[LensCorrection]:
        """Build from the ``lens_correction`` config section; None when disabled."""
        cfg = config or {}
        if not cfg.get("enabled", False):
            return None

        calibration_file = cfg.get("calibration_file")
        if calibration_file:
            path = Path(calibration_file)
            if not path.exists():
                raise FileNotFoundError(f"Calibration file not found: {calibration_file}")
            with path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        else:
            data = cfg

        if data.get("camera_matrix") is None:
            raise ValueError("Camera matrix must be provided for lens correction.")

        camera_matrix = np.array(data["camera_matrix"], dtype=np.float64).reshape(3, 3)
        coeffs = data.get("dist_coeffs") or [0.0, 0.0, 0.0, 0.0, 0.0]
        dist_coeffs = np.array(coeffs, dtype=np.float64).reshape(-1, 1)
        return cls(camera_matrix=camera_matrix, dist_coeffs=dist_coeffs)

    def undistort(self, points: np.ndarray) -> np.ndarray:
        """Undistort pixel points, keeping them in pixel coordinates."""
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 1, 2)
        corrected = cv2.undistortPoints(pts, self.camera_matrix, self.dist_coeffs, P=self.camera_matrix)
        return corrected.reshape(-1, 2)


class MarkerDetector:
    """Handles marker detection in video frames."""

    def __init__(self, config: Optional[Dict] = None):
        """Initialize marker detector.

        Args:
            config: ``markers`` configuration section; may carry a nested
                ``lens_correction`` section
        """
        self.config = config or {}
        self.dictionary_name = self.config.get("dictionary", DEFAULT_DICTIONARY)
        self.allowed_ids: Optional[Sequence[int]] = self.config.get("allowed_ids")
        self.lens: Optional[LensCorrection] = LensCorrection.from_config(self.config.get("lens_correction"))

        self._detector: Optional[cv2.aruco.ArucoDetector] = None
        self.initialized = False

    def initialize(self) -> bool:
        """Set up the ArUco dictionary and detector parameters."""
        dict_id = getattr(cv2.aruco, self.dictionary_name, None)
        if dict_id is None:
            raise ValueError(f"Unknown ArUco dictionary: {self.dictionary_name}")

        dictionary = cv2.aruco.getPredefinedDictionary(dict_id)
        parameters = cv2.aruco.DetectorParameters()
        parameters.cornerRefinementMethod = cv2.aruco.CORNER_REFINE_SUBPIX
        self._detector = cv2.aruco.ArucoDetector(dictionary, parameters)
        self.initialized = True
        LOGGER.info(
            "Marker detector initialized (%s, lens correction %s)",
            self.dictionary_name,
            "on" if self.lens else "off",
        )
        return True

    def detect(self, frame: Optional[np.ndarray]) -> List[DetectedMarker]:
        """Detect markers in the given frame.

        Returns:
            Detected markers; empty when nothing was found or detection failed
        """
        if frame is None or frame.size == 0:
            return []
        if not self.initialized:
            self.initialize()

        gray = frame if frame.ndim == 2 else cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
        try:
            corners, ids, _rejected = self._detector.detectMarkers(gray)
        except cv2.error as exc:
            LOGGER.error("ArUco detection failed: %s", exc)
            return []

        if ids is None or len(ids) == 0:
            return []

        markers: List[DetectedMarker] = []
        for marker_corners, marker_id in zip(corners, ids.flatten()):
            if self.allowed_ids is not None and int(marker_id) not in self.allowed_ids:
                continue
            points = self.get_marker_corners(marker_corners)
            markers.append(DetectedMarker(id=int(marker_id), corners=points))

        LOGGER.debug("Detected markers %s", [m.id for m in markers])
        return markers

    async def detect_async(self, frame: Optional[np.ndarray]) -> List[DetectedMarker]:
        """Run :meth:`detect` off the event loop thread."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.detect, frame)

    def get_marker_corners(self, marker_corners) -> np.ndarray:
        """Extract (4, 2) corner coordinates, clockwise from top-left."""
        points = np.asarray(marker_corners, dtype=np.float64).reshape(4, 2)
        if self.lens is not None:
            points = self.lens.undistort(points)
        return points

    @staticmethod
    def get_marker_id(marker: DetectedMarker) -> int:
        """Extract ID from detected marker."""
        return marker.id

"""
Live projection of stored item locations onto camera frames.

Projects a normalized rack location into the current frame using whichever
calibration markers are visible. The transform model degrades with the
number of matched markers:

- 4 or more: full homography
- 3: affine
- 2: similarity (uniform scale + rotation)
- 1: translation only
- 0: tracking lost

Raw projections are smoothed with an exponential moving average. The match
count is also reported as a coarse accuracy level (NONE, LOW, MEDIUM, HIGH).
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

import cv2
import numpy as np

from .frames import FrameGate, FrameSource, detect_or_empty, iterate_frames
from .geometry import is_colinear
from .homography import HomographyEstimator, HomographyFailure, apply_homography
from .rack import DetectedMarker, ItemLocation, MarkerPosition, RackDefinition

LOGGER = logging.getLogger(__name__)

Point = Tuple[float, float]
MarkerMatch = Tuple[DetectedMarker, MarkerPosition]


class AccuracyLevel(Enum):
    """Projection quality by number of matched rack markers."""

    NONE = "NONE"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @classmethod
    def from_match_count(cls, count: int) -> AccuracyLevel:
        if count <= 0:
            return cls.NONE
        if count == 1:
            return cls.LOW
        if count == 2:
            return cls.MEDIUM
        return cls.HIGH


@dataclass
class ProjectionFilterConfig:
    """Configuration for projection smoothing."""

    enable_smoothing: bool = True
    smoothing_alpha: float = 0.3  # EMA factor (0 = max smooth, 1 = no smooth)


class ProjectionSmoother:
    """
    Exponential moving average over projected screen points.

    The first point after a reset passes through unchanged. Feeding ``None``
    (tracking lost) clears the state so re-acquisition starts fresh.
    """

    def __init__(self, config: Optional[ProjectionFilterConfig] = None):
        self.config = config or ProjectionFilterConfig()
        self._ema: Optional[np.ndarray] = None

    @property
    def value(self) -> Optional[Point]:
        if self._ema is None:
            return None
        return float(self._ema[0]), float(self._ema[1])

    def reset(self):
        """Reset filter state."""
        self._ema = None

    def update(self, point: Optional[Point]) -> Optional[Point]:
        if point is None:
            self.reset()
            return None

        raw = np.asarray(point, dtype=np.float64)
        if not self.config.enable_smoothing or self._ema is None:
            self._ema = raw
        else:
            alpha = self.config.smoothing_alpha
            self._ema = alpha * raw + (1 - alpha) * self._ema
        return self.value


def normalized_to_rack_pixels(location: Point, rack: RackDefinition) -> Point:
    """Map a normalized location into the calibration image via the markers' bounding box."""
    min_x, min_y, max_x, max_y = rack.bounds()
    x, y = location
    return min_x + x * (max_x - min_x), min_y + y * (max_y - min_y)


class LiveProjectionService:
    """
    Projects stored item locations into live frames.

    Holds no I/O: every call is a function of the detected markers, the rack
    definition and the smoothing state.
    """

    def __init__(self, config: Optional[Dict] = None):
        self.config = config or {}
        self.filter_config = ProjectionFilterConfig(
            enable_smoothing=self.config.get("enable_smoothing", True),
            smoothing_alpha=self.config.get("smoothing_alpha", 0.3),
        )
        self.ransac_threshold = self.config.get("ransac_threshold", 5.0)
        self.min_homography_markers = self.config.get("min_homography_markers", 4)

        self.estimator = HomographyEstimator(self.config)
        self.smoother = ProjectionSmoother(self.filter_config)

        self.last_method = "lost"
        self.last_raw: Optional[Point] = None
        self.last_error: Optional[str] = None
        self.last_match_count = 0

    @property
    def accuracy(self) -> AccuracyLevel:
        """Quality of the most recent projection."""
        return AccuracyLevel.from_match_count(self.last_match_count)

    def reset(self):
        """Forget motion history; call when switching item or rack."""
        self.smoother.reset()
        self.last_raw = None
        self.last_method = "lost"
        self.last_error = None
        self.last_match_count = 0

    @staticmethod
    def match_markers(detected: Sequence[DetectedMarker], rack: RackDefinition) -> List[MarkerMatch]:
        """Pair detected markers with their calibration positions (first detection per id)."""
        expected = set(rack.marker_ids)
        seen = set()
        matches: List[MarkerMatch] = []
        for marker in detected:
            if marker.id not in expected or marker.id in seen:
                continue
            position = rack.position_of(marker.id)
            if position is None:
                LOGGER.debug("No calibration position for marker %d", marker.id)
                continue
            seen.add(marker.id)
            matches.append((marker, position))
        return matches

    def project(
        self,
        location: Union[ItemLocation, Point],
        detected: Sequence[DetectedMarker],
        rack: RackDefinition,
    ) -> Optional[Point]:
        """Project ``location`` into the current frame.

        Args:
            location: Normalized rack location
            detected: Markers visible in the current frame
            rack: Calibrated rack definition

        Returns:
            Smoothed screen point, or None when tracking is lost
        """
        point = location.as_point() if isinstance(location, ItemLocation) else tuple(location)
        self.last_error = None

        raw = self._project_raw(point, detected, rack)
        if raw is not None and not all(math.isfinite(v) for v in raw):
            LOGGER.debug("Discarding non-finite projection %s", raw)
            self.last_error = HomographyFailure.COMPUTATION_FAILED.message
            raw = None

        self.last_raw = raw
        return self.smoother.update(raw)

    def _project_raw(self, point: Point, detected: Sequence[DetectedMarker], rack: RackDefinition) -> Optional[Point]:
        matches = self.match_markers(detected, rack)
        self.last_match_count = len(matches)
        calib_point = normalized_to_rack_pixels(point, rack)

        try:
            if len(matches) >= self.min_homography_markers:
                self.last_method = "homography"
                return self._project_homography(calib_point, matches)
            if len(matches) == 3:
                self.last_method = "affine"
                return self._project_affine(calib_point, matches)
            if len(matches) == 2:
                self.last_method = "similarity"
                return self._project_similarity(calib_point, matches)
            if len(matches) == 1:
                self.last_method = "translation"
                return self._project_translation(calib_point, matches[0])
        except (cv2.error, np.linalg.LinAlgError, FloatingPointError) as exc:
            LOGGER.debug("%s projection failed: %s", self.last_method, exc)
            self.last_error = HomographyFailure.COMPUTATION_FAILED.message
            return None

        self.last_method = "lost"
        return None

    # ------------------------------------------------------------------ #
    # Strategies
    # ------------------------------------------------------------------ #
    @staticmethod
    def _correspondences(matches: Sequence[MarkerMatch]) -> Tuple[np.ndarray, np.ndarray]:
        src = np.array([[position.x, position.y] for _, position in matches], dtype=np.float64)
        dst = np.array([marker.center for marker, _ in matches], dtype=np.float64)
        return src, dst

    def _project_homography(self, calib_point: Point, matches: Sequence[MarkerMatch]) -> Optional[Point]:
        src, dst = self._correspondences(matches)
        H = self.estimator.estimate(src, dst, threshold=self.ransac_threshold)
        if H is None:
            self.last_error = self.estimator.last_error
            return None
        return apply_homography(H, calib_point)

    def _project_affine(self, calib_point: Point, matches: Sequence[MarkerMatch]) -> Optional[Point]:
        src, dst = self._correspondences(matches)
        if is_colinear(src, self.estimator.config.colinear_area_ratio):
            self.last_error = HomographyFailure.COLINEAR.message
            return None
        M = cv2.getAffineTransform(src.astype(np.float32), dst.astype(np.float32))
        x, y = M @ np.array([calib_point[0], calib_point[1], 1.0])
        return float(x), float(y)

    def _project_similarity(self, calib_point: Point, matches: Sequence[MarkerMatch]) -> Optional[Point]:
        (marker_a, calib_a), (marker_b, calib_b) = matches[:2]
        live_a = marker_a.center
        live_b = marker_b.center

        calib_dx, calib_dy = calib_b.x - calib_a.x, calib_b.y - calib_a.y
        live_dx, live_dy = live_b[0] - live_a[0], live_b[1] - live_a[1]

        calib_dist = math.hypot(calib_dx, calib_dy)
        if calib_dist == 0:
            self.last_error = HomographyFailure.DEGENERATE.message
            return None

        scale = math.hypot(live_dx, live_dy) / calib_dist
        rotation = math.atan2(live_dy, live_dx) - math.atan2(calib_dy, calib_dx)
        cos_r, sin_r = math.cos(rotation), math.sin(rotation)

        rel_x = calib_point[0] - calib_a.x
        rel_y = calib_point[1] - calib_a.y
        return (
            float(live_a[0] + (rel_x * cos_r - rel_y * sin_r) * scale),
            float(live_a[1] + (rel_x * sin_r + rel_y * cos_r) * scale),
        )

    @staticmethod
    def _project_translation(calib_point: Point, match: MarkerMatch) -> Point:
        marker, position = match
        live = marker.center
        return (
            float(calib_point[0] + live[0] - position.x),
            float(calib_point[1] + live[1] - position.y),
        )


class LocateSession:
    """Per-frame driver that follows one item on one rack."""

    def __init__(
        self,
        detector,
        service: LiveProjectionService,
        rack: RackDefinition,
        location: Union[ItemLocation, Point],
    ):
        self.detector = detector
        self.service = service
        self.rack = rack
        self.location = location
        self.last_point: Optional[Point] = None
        self.last_markers: List[DetectedMarker] = []
        self._gate = FrameGate()
        self._stop_requested = False

    @property
    def dropped_frames(self) -> int:
        return self._gate.dropped

    def retarget(self, rack: RackDefinition, location: Union[ItemLocation, Point]):
        """Follow a different item; smoothing starts over."""
        self.rack = rack
        self.location = location
        self.reset()

    def reset(self):
        self.service.reset()
        self.last_point = None

    def stop(self):
        self._stop_requested = True

    async def process_frame(self, frame) -> Optional[Point]:
        if self._stop_requested:
            return None
        return await self._gate.run(self._detect_and_project, frame)

    async def _detect_and_project(self, frame) -> Optional[Point]:
        markers = await detect_or_empty(self.detector, frame)
        if self._stop_requested:
            return None
        self.last_markers = markers
        self.last_point = self.service.project(self.location, markers, self.rack)
        return self.last_point

    async def run(self, frame_source: FrameSource, on_point: Optional[Callable[[Optional[Point]], None]] = None):
        """Project into every frame of ``frame_source`` until stopped."""
        self._stop_requested = False
        async for frame in iterate_frames(frame_source):
            if self._stop_requested:
                break
            point = await self.process_frame(frame)
            if on_point is not None:
                on_point(point)

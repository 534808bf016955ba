"""
Homography estimation and validation.

Wraps ``cv2.findHomography`` (RANSAC) with the geometric pre-checks and
post-hoc sanity checks needed for rack calibration and live projection.
Failures never raise: the estimator returns ``None`` and keeps a
human-readable diagnostic that the UI can show to the user.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .geometry import bbox_diagonal, convex_hull, is_colinear, is_too_distorted, order_geometrically

LOGGER = logging.getLogger(__name__)


class HomographyFailure(Enum):
    """Validation failures, in the order they are checked."""

    INSUFFICIENT_POINTS = "need at least 4 markers"
    COLINEAR = "markers arranged in a line"
    TOO_DISTORTED = "rack too distorted"
    COMPUTATION_FAILED = "homography computation failed"
    DEGENERATE = "degenerate homography"
    EXTREME_SCALING = "extreme scaling"
    EXCESSIVE_SHEAR = "excessive shear"

    @property
    def message(self) -> str:
        return self.value


@dataclass
class EstimatorConfig:
    """Thresholds for homography estimation and validation."""

    min_points: int = 4
    min_ransac_threshold: float = 3.0  # pixels
    ransac_threshold_ratio: float = 0.01  # fraction of the source bbox diagonal
    colinear_area_ratio: float = 0.05
    max_side_ratio: float = 5.0
    min_determinant: float = 1e-10
    min_scale: float = 1e-4
    max_scale: float = 10.0
    max_shear_ratio: float = 10.0

    @classmethod
    def from_config(cls, config: Optional[Dict] = None) -> EstimatorConfig:
        cfg = config or {}
        return cls(
            min_points=cfg.get("min_points", 4),
            min_ransac_threshold=cfg.get("min_ransac_threshold", 3.0),
            ransac_threshold_ratio=cfg.get("ransac_threshold_ratio", 0.01),
            colinear_area_ratio=cfg.get("colinear_area_ratio", 0.05),
            max_side_ratio=cfg.get("max_side_ratio", 5.0),
            min_determinant=cfg.get("min_determinant", 1e-10),
            min_scale=cfg.get("min_scale", 1e-4),
            max_scale=cfg.get("max_scale", 10.0),
            max_shear_ratio=cfg.get("max_shear_ratio", 10.0),
        )


@dataclass
class HomographyResult:
    """Outcome of a single estimation call."""

    success: bool
    matrix: Optional[np.ndarray] = None
    failure: Optional[HomographyFailure] = None
    threshold: Optional[float] = None
    inliers: int = 0

    @property
    def error(self) -> Optional[str]:
        return self.failure.message if self.failure else None


class NumericWorkspace:
    """Holds the native buffers of one estimation call.

    Used as a context manager: every buffer registered with :meth:`hold` is
    released when the block exits, whichever way it exits.
    """

    def __init__(self):
        self._buffers: List[np.ndarray] = []
        self.released = False

    def hold(self, buffer):
        if buffer is not None:
            self._buffers.append(buffer)
        return buffer

    def __len__(self) -> int:
        return len(self._buffers)

    def release(self):
        self._buffers.clear()
        self.released = True

    def __enter__(self) -> NumericWorkspace:
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False


class HomographyEstimator:
    """
    Robust homography estimator with validity checks.

    Check order (first failure wins):
    1. at least 4 correspondences
    2. source points not colinear
    3. source quadrilateral not too distorted
    4. solver produced a 3x3 matrix
    5. determinant away from zero
    6. horizontal/vertical scale within bounds
    7. shear bounded relative to the diagonal
    """

    def __init__(self, config: Optional[Dict] = None):
        self.config = EstimatorConfig.from_config(config)
        self.last_result: Optional[HomographyResult] = None
        self.workspaces_released = 0
        self._workspace: Optional[NumericWorkspace] = None

    @property
    def last_error(self) -> Optional[str]:
        """Diagnostic of the most recent failed estimation, if any."""
        return self.last_result.error if self.last_result else None

    @property
    def open_buffers(self) -> int:
        """Native buffers currently held by an in-flight estimation."""
        return len(self._workspace) if self._workspace is not None else 0

    def calibration_threshold(self, src_points) -> float:
        """Inlier threshold that grows with the size of the marker layout."""
        diagonal = bbox_diagonal(src_points)
        return max(self.config.min_ransac_threshold, diagonal * self.config.ransac_threshold_ratio)

    def estimate(
        self,
        src_points: Sequence,
        dst_points: Sequence,
        threshold: Optional[float] = None,
    ) -> Optional[np.ndarray]:
        """Estimate the 3x3 homography mapping ``src_points`` onto ``dst_points``.

        Args:
            src_points: N source points (N >= 4)
            dst_points: N destination points
            threshold: RANSAC inlier threshold; adaptive when omitted

        Returns:
            3x3 matrix, or None with the reason available on ``last_error``
        """
        result = self.estimate_with_diagnostics(src_points, dst_points, threshold)
        return result.matrix if result.success else None

    def estimate_with_diagnostics(
        self,
        src_points: Sequence,
        dst_points: Sequence,
        threshold: Optional[float] = None,
    ) -> HomographyResult:
        src = np.asarray(src_points, dtype=np.float64).reshape(-1, 2)
        dst = np.asarray(dst_points, dtype=np.float64).reshape(-1, 2)

        failure = self._check_inputs(src, dst)
        if failure is not None:
            return self._finish(HomographyResult(success=False, failure=failure, threshold=threshold))

        if threshold is None:
            threshold = self.calibration_threshold(src)

        with NumericWorkspace() as workspace:
            self._workspace = workspace
            try:
                result = self._solve(workspace, src, dst, threshold)
            except cv2.error as exc:
                LOGGER.debug("findHomography failed: %s", exc)
                result = HomographyResult(
                    success=False,
                    failure=HomographyFailure.COMPUTATION_FAILED,
                    threshold=threshold,
                )
            finally:
                self._workspace = None
                self.workspaces_released += 1

        return self._finish(result)

    def _check_inputs(self, src: np.ndarray, dst: np.ndarray) -> Optional[HomographyFailure]:
        if len(src) < self.config.min_points or len(src) != len(dst):
            return HomographyFailure.INSUFFICIENT_POINTS
        if not (np.all(np.isfinite(src)) and np.all(np.isfinite(dst))):
            return HomographyFailure.COMPUTATION_FAILED
        if is_colinear(src, self.config.colinear_area_ratio):
            return HomographyFailure.COLINEAR
        outline = order_geometrically(src) if len(src) == 4 else convex_hull(src)
        if is_too_distorted(outline, self.config.max_side_ratio):
            return HomographyFailure.TOO_DISTORTED
        return None

    def _solve(
        self,
        workspace: NumericWorkspace,
        src: np.ndarray,
        dst: np.ndarray,
        threshold: float,
    ) -> HomographyResult:
        src_mat = workspace.hold(src.astype(np.float32).reshape(-1, 1, 2))
        dst_mat = workspace.hold(dst.astype(np.float32).reshape(-1, 1, 2))

        H, mask = cv2.findHomography(src_mat, dst_mat, cv2.RANSAC, float(threshold))
        workspace.hold(H)
        workspace.hold(mask)

        if H is None or H.shape != (3, 3) or not np.all(np.isfinite(H)):
            return HomographyResult(
                success=False,
                failure=HomographyFailure.COMPUTATION_FAILED,
                threshold=threshold,
            )

        matrix = np.array(H, dtype=np.float64, copy=True)
        inliers = int(np.count_nonzero(mask)) if mask is not None else len(src)

        failure = self.validate(matrix)
        if failure is not None:
            return HomographyResult(success=False, failure=failure, threshold=threshold, inliers=inliers)

        return HomographyResult(success=True, matrix=matrix, threshold=threshold, inliers=inliers)

    def validate(self, H: np.ndarray) -> Optional[HomographyFailure]:
        """Post-hoc sanity checks on a solved matrix."""
        cfg = self.config
        if abs(float(np.linalg.det(H))) < cfg.min_determinant:
            return HomographyFailure.DEGENERATE

        scale_x = float(np.hypot(H[0, 0], H[1, 0]))
        scale_y = float(np.hypot(H[0, 1], H[1, 1]))
        for scale in (scale_x, scale_y):
            if scale < cfg.min_scale or scale > cfg.max_scale:
                return HomographyFailure.EXTREME_SCALING

        diagonal = float(np.hypot(H[0, 0], H[1, 1]))
        off_diagonal = float(np.hypot(H[0, 1], H[1, 0]))
        if off_diagonal > cfg.max_shear_ratio * diagonal:
            return HomographyFailure.EXCESSIVE_SHEAR

        return None

    def _finish(self, result: HomographyResult) -> HomographyResult:
        if not result.success:
            LOGGER.debug("Homography rejected: %s", result.error)
        self.last_result = result
        return result


# ---------------------------------------------------------------------- #
# Point mapping helpers
# ---------------------------------------------------------------------- #
def apply_homography_points(H: np.ndarray, points) -> np.ndarray:
    """Map an (N, 2) point set through ``H``."""
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 1, 2)
    return cv2.perspectiveTransform(pts, np.asarray(H, dtype=np.float64)).reshape(-1, 2)


def apply_homography(H: np.ndarray, point) -> Tuple[float, float]:
    """Map a single (x, y) point through ``H``."""
    x, y = apply_homography_points(H, [point])[0]
    return float(x), float(y)


def invert_homography(H: np.ndarray) -> Optional[np.ndarray]:
    """Inverse transform, or None when ``H`` is singular."""
    try:
        inverse = np.linalg.inv(np.asarray(H, dtype=np.float64))
    except np.linalg.LinAlgError:
        return None
    if not np.all(np.isfinite(inverse)):
        return None
    return inverse


def homography_to_list(H: np.ndarray) -> List[float]:
    """Row-major list of the 9 coefficients."""
    return [float(v) for v in np.asarray(H, dtype=np.float64).ravel()]


def homography_from_list(values: Sequence[float]) -> np.ndarray:
    return np.array(values, dtype=np.float64).reshape(3, 3)


def calibration_to_normalized(rack, pixel_point) -> Tuple[float, float]:
    """Map a calibration-image pixel into the rack's unit square."""
    return apply_homography(rack.homography_matrix(), pixel_point)


def normalized_to_calibration(rack, location) -> Optional[Tuple[float, float]]:
    """Map a normalized rack location back to calibration-image pixels."""
    inverse = invert_homography(rack.homography_matrix())
    if inverse is None:
        return None
    point = location.as_point() if hasattr(location, "as_point") else location
    return apply_homography(inverse, point)

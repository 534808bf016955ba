"""
Overlay rendering for the calibration and locate views.

Draws detected markers, the calibration rack outline and the projected item
crosshair onto BGR frames.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

import cv2
import numpy as np

from .calibration import CalibrationPreview
from .projection import AccuracyLevel
from .rack import DetectedMarker

LOGGER = logging.getLogger(__name__)

GUIDANCE_COLOR = (83, 200, 0)  # BGR for #00C853


@dataclass
class OverlayConfiguration:
    """Configuration for overlay rendering."""

    marker_color: Tuple[int, int, int] = (255, 200, 0)
    outline_color: Tuple[int, int, int] = GUIDANCE_COLOR
    target_color: Tuple[int, int, int] = GUIDANCE_COLOR
    warning_color: Tuple[int, int, int] = (0, 0, 255)
    target_radius: int = 18
    thickness: int = 2
    antialiasing: bool = True


class OverlayRenderer:
    """Renders calibration and guidance overlays."""

    def __init__(self, config: Optional[Dict] = None):
        cfg = config or {}
        self.config = OverlayConfiguration(
            marker_color=tuple(cfg.get("marker_color", (255, 200, 0))),
            outline_color=tuple(cfg.get("outline_color", GUIDANCE_COLOR)),
            target_color=tuple(cfg.get("target_color", GUIDANCE_COLOR)),
            target_radius=cfg.get("target_radius", 18),
            thickness=cfg.get("thickness", 2),
            antialiasing=cfg.get("antialiasing", True),
        )

    @property
    def _line_type(self) -> int:
        return cv2.LINE_AA if self.config.antialiasing else cv2.LINE_8

    def draw_markers(self, frame: np.ndarray, markers: Sequence[DetectedMarker]) -> np.ndarray:
        """Outline each detected marker and label it with its ID."""
        for marker in markers:
            pts = marker.corners.reshape((-1, 1, 2)).astype(np.int32)
            cv2.polylines(frame, [pts], True, self.config.marker_color, self.config.thickness, self._line_type)
            cx, cy = marker.center.astype(int)
            cv2.putText(
                frame,
                str(marker.id),
                (int(cx) - 6, int(cy) + 6),
                cv2.FONT_HERSHEY_SIMPLEX,
                0.6,
                self.config.marker_color,
                2,
                self._line_type,
            )
        return frame

    def draw_calibration_preview(self, frame: np.ndarray, preview: CalibrationPreview) -> np.ndarray:
        """Rack outline when ready, otherwise the reason calibration is not ready."""
        if preview.homography_ready and preview.rack_corners:
            pts = np.array(preview.rack_corners, dtype=np.float64).reshape((-1, 1, 2)).astype(np.int32)
            cv2.polylines(frame, [pts], True, self.config.outline_color, self.config.thickness + 1, self._line_type)
            status = f"Rack ready ({preview.markers_visible} markers) - press S to save"
            color = self.config.outline_color
        else:
            status = f"Markers visible: {preview.markers_visible}/4"
            if preview.error:
                status += f" - {preview.error}"
            color = self.config.warning_color

        self.draw_status(frame, status, color)
        return frame

    def draw_target(
        self,
        frame: np.ndarray,
        point: Optional[Tuple[float, float]],
        accuracy: Optional[AccuracyLevel] = None,
    ) -> np.ndarray:
        """Crosshair on the projected item location, or a tracking-lost notice.

        When ``accuracy`` is given it is printed in the bottom-left corner.
        """
        if accuracy is not None:
            color = self.config.target_color
            if accuracy in (AccuracyLevel.NONE, AccuracyLevel.LOW):
                color = self.config.warning_color
            cv2.putText(
                frame,
                f"Accuracy: {accuracy.value}",
                (10, frame.shape[0] - 12),
                cv2.FONT_HERSHEY_SIMPLEX,
                0.6,
                color,
                2,
                self._line_type,
            )

        if point is None:
            self.draw_status(frame, "Rack markers not visible", self.config.warning_color)
            return frame

        x, y = int(round(point[0])), int(round(point[1]))
        r = self.config.target_radius
        color = self.config.target_color
        cv2.circle(frame, (x, y), r, color, self.config.thickness, self._line_type)
        cv2.line(frame, (x - 2 * r, y), (x - r // 2, y), color, self.config.thickness, self._line_type)
        cv2.line(frame, (x + r // 2, y), (x + 2 * r, y), color, self.config.thickness, self._line_type)
        cv2.line(frame, (x, y - 2 * r), (x, y - r // 2), color, self.config.thickness, self._line_type)
        cv2.line(frame, (x, y + r // 2), (x, y + 2 * r), color, self.config.thickness, self._line_type)
        return frame

    def draw_status(self, frame: np.ndarray, text: str, color: Tuple[int, int, int]) -> np.ndarray:
        cv2.putText(frame, text, (10, 28), cv2.FONT_HERSHEY_SIMPLEX, 0.7, color, 2, self._line_type)
        return frame

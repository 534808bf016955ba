"""
Rack data model.

Ephemeral detector output (:class:`DetectedMarker`) and the persisted
structures: :class:`RackDefinition` and :class:`ItemLocation`.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .geometry import center

MIN_DETERMINANT = 1e-10


@dataclass
class DetectedMarker:
    """A fiducial marker found in a single frame."""

    id: int
    corners: np.ndarray  # shape (4, 2), pixel space

    def __post_init__(self):
        self.id = int(self.id)
        self.corners = np.asarray(self.corners, dtype=np.float64).reshape(4, 2)

    @property
    def center(self) -> np.ndarray:
        return center(self.corners)

    @classmethod
    def from_dict(cls, payload: Dict) -> DetectedMarker:
        return cls(id=payload["id"], corners=payload["corners"])

    def to_dict(self) -> Dict:
        return {"id": self.id, "corners": self.corners.tolist()}


@dataclass
class MarkerPosition:
    """Marker center as observed in the calibration image."""

    id: int
    x: float
    y: float

    def to_dict(self) -> Dict:
        return {"id": self.id, "x": self.x, "y": self.y}

    @classmethod
    def from_dict(cls, payload: Dict) -> MarkerPosition:
        return cls(id=int(payload["id"]), x=float(payload["x"]), y=float(payload["y"]))


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class RackDefinition:
    """Calibrated rack: which markers frame it and how pixels map to its unit square."""

    name: str
    marker_ids: List[int]
    marker_positions: List[MarkerPosition]
    homography: List[float]
    calibration_image: Optional[str] = None
    last_calibration: str = field(default_factory=_utc_now)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self):
        self.marker_ids = [int(m) for m in self.marker_ids]
        self.homography = [float(v) for v in np.asarray(self.homography, dtype=np.float64).ravel()]
        if len(self.homography) != 9:
            raise ValueError(f"Homography needs 9 coefficients, got {len(self.homography)}")
        if not all(math.isfinite(v) for v in self.homography):
            raise ValueError("Homography contains non-finite coefficients")
        if abs(np.linalg.det(self.homography_matrix())) < MIN_DETERMINANT:
            raise ValueError("Homography is degenerate")
        if not self.marker_positions:
            raise ValueError("Rack definition needs at least one marker position")

    def homography_matrix(self) -> np.ndarray:
        return np.array(self.homography, dtype=np.float64).reshape(3, 3)

    def position_of(self, marker_id: int) -> Optional[MarkerPosition]:
        for position in self.marker_positions:
            if position.id == marker_id:
                return position
        return None

    def bounds(self) -> Tuple[float, float, float, float]:
        """``(min_x, min_y, max_x, max_y)`` of the calibration marker centers."""
        xs = [p.x for p in self.marker_positions]
        ys = [p.y for p in self.marker_positions]
        return min(xs), min(ys), max(xs), max(ys)

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "name": self.name,
            "markerIds": list(self.marker_ids),
            "markerPositions": [p.to_dict() for p in self.marker_positions],
            "homography": list(self.homography),
            "calibrationImage": self.calibration_image,
            "lastCalibration": self.last_calibration,
        }

    @classmethod
    def from_dict(cls, payload: Dict) -> RackDefinition:
        return cls(
            id=payload["id"],
            name=payload["name"],
            marker_ids=payload["markerIds"],
            marker_positions=[MarkerPosition.from_dict(p) for p in payload["markerPositions"]],
            homography=payload["homography"],
            calibration_image=payload.get("calibrationImage"),
            last_calibration=payload["lastCalibration"],
        )


@dataclass
class ItemLocation:
    """Normalized position of an item inside a rack's unit square."""

    rack_id: str
    x: float
    y: float

    def __post_init__(self):
        self.x = float(self.x)
        self.y = float(self.y)
        for label, value in (("x", self.x), ("y", self.y)):
            if not (0.0 <= value <= 1.0):
                raise ValueError(f"Normalized {label} must be within [0, 1], got {value}")

    def as_point(self) -> Tuple[float, float]:
        return self.x, self.y

    def to_dict(self) -> Dict:
        return {"rackId": self.rack_id, "x": self.x, "y": self.y}

    @classmethod
    def from_dict(cls, payload: Dict) -> ItemLocation:
        return cls(rack_id=payload["rackId"], x=payload["x"], y=payload["y"])


def markers_from_payload(payload: Sequence[Dict]) -> List[DetectedMarker]:
    """Convert detector wire output ``[{id, corners}]`` into markers."""
    return [DetectedMarker.from_dict(item) for item in payload]

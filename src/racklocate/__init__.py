"""
RACKLOCATE - Find catalogued items on storage racks with fiducial markers.

This package provides functionality for:
- Marker detection and geometry checks
- Rack calibration (markers -> normalized rack space)
- Live projection of stored item locations into camera frames
- Single-tag pose caching
- Rack and item-location persistence
"""

from .calibration import (
    CalibrationNotReadyError,
    CalibrationPreview,
    CalibrationSession,
    CalibrationState,
    compute_preview,
)
from .homography import HomographyEstimator, HomographyFailure, HomographyResult
from .marker_detect import LensCorrection, MarkerDetector
from .projection import AccuracyLevel, LiveProjectionService, LocateSession, ProjectionSmoother
from .rack import DetectedMarker, ItemLocation, MarkerPosition, RackDefinition
from .storage import RackNotFoundError, RackStore, StorageError
from .tag_pose import ReferenceTag, TagPoseCache, find_tag_by_id

__version__ = "0.1.0"

__all__ = [
    # Data model
    "DetectedMarker",
    "ItemLocation",
    "MarkerPosition",
    "RackDefinition",
    # Detection
    "LensCorrection",
    "MarkerDetector",
    # Estimation
    "HomographyEstimator",
    "HomographyFailure",
    "HomographyResult",
    # Calibration
    "CalibrationNotReadyError",
    "CalibrationPreview",
    "CalibrationSession",
    "CalibrationState",
    "compute_preview",
    # Projection
    "AccuracyLevel",
    "LiveProjectionService",
    "LocateSession",
    "ProjectionSmoother",
    # Tag pose
    "ReferenceTag",
    "TagPoseCache",
    "find_tag_by_id",
    # Storage
    "RackNotFoundError",
    "RackStore",
    "StorageError",
]

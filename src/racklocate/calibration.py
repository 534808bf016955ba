"""
Rack calibration.

Turns a stream of marker detections into a rack definition. The per-frame
computation (:func:`compute_preview`) is pure; :class:`CalibrationSession`
wraps it with the frame loop, the state machine and persistence.

States::

    IDLE -> PREVIEWING <-> READY -> SAVED
      ^__________ stop() from any state
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from .frames import FrameGate, FrameSource, detect_or_empty, iterate_frames
from .geometry import extreme_corners, geometric_order, outer_corners
from .homography import HomographyEstimator, calibration_to_normalized, homography_to_list
from .rack import DetectedMarker, ItemLocation, MarkerPosition, RackDefinition
from .storage import StorageError

LOGGER = logging.getLogger(__name__)

UNIT_SQUARE = np.array([[0.0, 0.0], [1.0, 0.0], [1.0, 1.0], [0.0, 1.0]], dtype=np.float64)


class CalibrationNotReadyError(RuntimeError):
    """``save()`` was called before a valid homography was available."""


class CalibrationState(Enum):
    IDLE = "idle"
    PREVIEWING = "previewing"
    READY = "ready"
    SAVED = "saved"


@dataclass(frozen=True)
class CalibrationPreview:
    """Immutable per-frame calibration state for overlays."""

    markers_visible: int = 0
    homography_ready: bool = False
    homography: Optional[Tuple[float, ...]] = None
    rack_corners: Optional[Tuple[Tuple[float, float], ...]] = None
    marker_ids: Tuple[int, ...] = ()
    error: Optional[str] = None

    @classmethod
    def cleared(cls, markers_visible: int = 0, error: Optional[str] = None) -> CalibrationPreview:
        return cls(markers_visible=markers_visible, error=error)

    def to_dict(self) -> Dict:
        return {
            "markersVisible": self.markers_visible,
            "homographyReady": self.homography_ready,
            "homography": list(self.homography) if self.homography else None,
            "rackCorners": [{"x": x, "y": y} for x, y in self.rack_corners] if self.rack_corners else None,
        }


@dataclass
class CalibrationConfig:
    """Calibration loop settings."""

    required_markers: int = 4
    allow_hull_fallback: bool = False
    snapshot_on_save: bool = True

    @classmethod
    def from_config(cls, config: Optional[Dict] = None) -> CalibrationConfig:
        cfg = config or {}
        return cls(
            required_markers=cfg.get("required_markers", 4),
            allow_hull_fallback=cfg.get("allow_hull_fallback", False),
            snapshot_on_save=cfg.get("snapshot_on_save", True),
        )


@dataclass
class CalibrationFrame:
    """Result of processing one set of detections."""

    preview: CalibrationPreview
    markers: List[DetectedMarker] = field(default_factory=list)
    homography: Optional[np.ndarray] = None


def _snap_to_unit(value: float, tolerance: float = 1e-6) -> float:
    # round-off at the rack edges must not push a pinned point out of [0, 1]
    if -tolerance <= value <= 1.0 + tolerance:
        return min(max(value, 0.0), 1.0)
    return value


def _index_of(points: np.ndarray, point: np.ndarray) -> int:
    matches = np.where(np.all(np.isclose(points, point), axis=1))[0]
    return int(matches[0])


def _select_markers(
    markers: Sequence[DetectedMarker],
    config: CalibrationConfig,
) -> Tuple[Optional[List[DetectedMarker]], Optional[str]]:
    """Pick the four markers (TL, TR, BR, BL) the homography is computed from."""
    count = len(markers)
    if count == config.required_markers:
        centers = np.array([m.center for m in markers])
        return [markers[i] for i in geometric_order(centers)], None

    if count > config.required_markers and config.allow_hull_fallback:
        centers = np.array([m.center for m in markers])
        corners = extreme_corners(centers)
        indices = [_index_of(centers, c) for c in corners]
        if len(set(indices)) != 4:
            return None, "markers do not outline a rack"
        LOGGER.debug("Using hull fallback with %d markers", count)
        return [markers[i] for i in indices], None

    if count == 0:
        return None, None
    return None, f"need exactly {config.required_markers} markers ({count} visible)"


def compute_preview(
    markers: Sequence[DetectedMarker],
    estimator: HomographyEstimator,
    config: Optional[CalibrationConfig] = None,
) -> CalibrationFrame:
    """Compute the calibration preview for one frame's markers.

    With exactly four markers they are ordered by image position and their
    centers mapped onto the unit square; the overlay outline comes from the
    markers' own outermost corners. Any other count clears the preview.
    """
    config = config or CalibrationConfig()
    markers = list(markers)
    selected, reason = _select_markers(markers, config)
    if selected is None:
        return CalibrationFrame(preview=CalibrationPreview.cleared(len(markers), reason))

    src = np.array([m.center for m in selected])
    H = estimator.estimate(src, UNIT_SQUARE)
    if H is None:
        return CalibrationFrame(preview=CalibrationPreview.cleared(len(markers), estimator.last_error))

    outline = outer_corners([m.corners for m in selected])
    rack_markers = markers if len(markers) > config.required_markers else selected

    preview = CalibrationPreview(
        markers_visible=len(markers),
        homography_ready=True,
        homography=tuple(homography_to_list(H)),
        rack_corners=tuple((float(x), float(y)) for x, y in outline),
        marker_ids=tuple(m.id for m in rack_markers),
    )
    return CalibrationFrame(preview=preview, markers=rack_markers, homography=H)


class CalibrationSession:
    """
    Drives rack calibration from live frames.

    The host either hands frames to :meth:`process_frame` from its own
    per-frame callback or lets :meth:`run` pull them from an iterable.
    """

    def __init__(
        self,
        detector,
        store,
        config: Optional[Dict] = None,
        on_preview: Optional[Callable[[CalibrationPreview], None]] = None,
    ):
        self.config = config or {}
        self.calibration_config = CalibrationConfig.from_config(self.config)
        self.estimator = HomographyEstimator(self.config)
        self.detector = detector
        self.store = store

        self._subscribers: List[Callable[[CalibrationPreview], None]] = []
        if on_preview is not None:
            self._subscribers.append(on_preview)

        self._state = CalibrationState.IDLE
        self._frame = CalibrationFrame(preview=CalibrationPreview.cleared())
        self._gate = FrameGate()
        self._frame_source: Optional[FrameSource] = None
        self._stop_requested = False
        self.saved_rack: Optional[RackDefinition] = None
        self.detected_markers: List[DetectedMarker] = []

    # ------------------------------------------------------------------ #
    # Read-only state
    # ------------------------------------------------------------------ #
    @property
    def state(self) -> CalibrationState:
        return self._state

    @property
    def preview(self) -> CalibrationPreview:
        return self._frame.preview

    @property
    def markers(self) -> List[DetectedMarker]:
        return list(self._frame.markers)

    @property
    def dropped_frames(self) -> int:
        return self._gate.dropped

    def subscribe(self, callback: Callable[[CalibrationPreview], None]) -> Callable[[], None]:
        """Register a preview listener; returns a function that removes it."""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    # ------------------------------------------------------------------ #
    # Loop control
    # ------------------------------------------------------------------ #
    def start(self, frame_source: Optional[FrameSource] = None) -> CalibrationPreview:
        """Enter PREVIEWING and remember the frame source for :meth:`run`."""
        self._frame_source = frame_source
        self._stop_requested = False
        self.saved_rack = None
        self._set_frame(CalibrationFrame(preview=CalibrationPreview.cleared()))
        self._state = CalibrationState.PREVIEWING
        LOGGER.info("Calibration started")
        return self.preview

    def stop(self):
        """Stop the loop and clear the preview. Legal from any state."""
        self._stop_requested = True
        self._frame_source = None
        self._state = CalibrationState.IDLE
        self.detected_markers = []
        self._set_frame(CalibrationFrame(preview=CalibrationPreview.cleared()))
        LOGGER.info("Calibration stopped")

    async def run(self, frame_source: Optional[FrameSource] = None):
        """Process frames until the source is exhausted, :meth:`stop` or :meth:`save`."""
        if frame_source is not None or self._state not in (CalibrationState.PREVIEWING, CalibrationState.READY):
            self.start(frame_source if frame_source is not None else self._frame_source)
        source = self._frame_source
        if source is None:
            raise ValueError("No frame source to calibrate from")

        async for frame in iterate_frames(source):
            if self._stop_requested:
                break
            await self.process_frame(frame)

        LOGGER.debug(
            "Calibration loop finished: %d processed, %d dropped",
            self._gate.processed,
            self._gate.dropped,
        )

    async def process_frame(self, frame) -> Optional[CalibrationPreview]:
        """Detect markers in ``frame`` and update the preview.

        Returns:
            New preview, or None when the frame was dropped or the session
            is not previewing
        """
        if not self._accepting_frames():
            return None
        return await self._gate.run(self._detect_and_update, frame)

    async def _detect_and_update(self, frame) -> Optional[CalibrationPreview]:
        markers = await detect_or_empty(self.detector, frame)
        if not self._accepting_frames():
            return None
        return self.update(markers)

    def _accepting_frames(self) -> bool:
        return not self._stop_requested and self._state in (CalibrationState.PREVIEWING, CalibrationState.READY)

    def update(self, markers: Sequence[DetectedMarker]) -> Optional[CalibrationPreview]:
        """Feed one frame's detections into the session."""
        if self._state not in (CalibrationState.PREVIEWING, CalibrationState.READY):
            return None

        self.detected_markers = list(markers)
        frame = compute_preview(markers, self.estimator, self.calibration_config)
        previous = self._frame.preview
        self._state = CalibrationState.READY if frame.preview.homography_ready else CalibrationState.PREVIEWING

        if frame.preview.markers_visible != previous.markers_visible:
            LOGGER.debug("Markers visible: %d -> %d", previous.markers_visible, frame.preview.markers_visible)
        if frame.preview.error and frame.preview.error != previous.error:
            LOGGER.info("Calibration not ready: %s", frame.preview.error)

        self._set_frame(frame)
        return frame.preview

    def _set_frame(self, frame: CalibrationFrame):
        self._frame = frame
        for callback in list(self._subscribers):
            try:
                callback(frame.preview)
            except Exception:
                LOGGER.exception("Preview listener failed")

    # ------------------------------------------------------------------ #
    # Persistence
    # ------------------------------------------------------------------ #
    def save(self, name: str, snapshot: Union[np.ndarray, str, None] = None) -> RackDefinition:
        """Persist the current calibration as a rack definition.

        Args:
            name: User label for the rack
            snapshot: Calibration image (array) or an existing image handle

        Raises:
            CalibrationNotReadyError: no valid homography is available
            StorageError: the store rejected the write (session unchanged,
                any snapshot written for this save is removed)
        """
        frame = self._frame
        if self._state != CalibrationState.READY or not frame.preview.homography_ready or frame.homography is None:
            raise CalibrationNotReadyError(
                f"Calibration not ready. Need to detect all {self.calibration_config.required_markers} markers first."
            )

        markers = list(frame.markers)
        homography = homography_to_list(frame.homography.copy())

        image_handle = snapshot
        written_snapshot = None
        if isinstance(snapshot, np.ndarray):
            image_handle = None
            if self.calibration_config.snapshot_on_save:
                image_handle = written_snapshot = self.store.put_snapshot(snapshot)

        rack = RackDefinition(
            name=name,
            marker_ids=[m.id for m in markers],
            marker_positions=[
                MarkerPosition(id=m.id, x=float(m.center[0]), y=float(m.center[1])) for m in markers
            ],
            homography=homography,
            calibration_image=image_handle,
        )
        try:
            self.store.put_rack(rack)
        except StorageError:
            if written_snapshot is not None:
                self._discard_snapshot(written_snapshot)
            raise

        self.saved_rack = rack
        self._state = CalibrationState.SAVED
        self._stop_requested = True
        LOGGER.info("Rack '%s' calibrated with markers %s", name, rack.marker_ids)
        return rack

    def _discard_snapshot(self, handle: str):
        try:
            self.store.delete_snapshot(handle)
        except StorageError as exc:
            LOGGER.warning("Could not remove orphaned snapshot %s: %s", handle, exc)

    def pin_item(self, item_id: str, pixel_point) -> int:
        """Store an item's location from a point on the calibration image.

        Returns:
            Affected item count (0 when the item no longer exists)
        """
        if self.saved_rack is None:
            raise CalibrationNotReadyError("Calibration not saved yet; cannot pin item locations")
        x, y = (_snap_to_unit(v) for v in calibration_to_normalized(self.saved_rack, pixel_point))
        location = ItemLocation(rack_id=self.saved_rack.id, x=x, y=y)
        return self.store.save_item_location(item_id, location)

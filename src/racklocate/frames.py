"""
Frame scheduling helpers shared by calibration and live projection.

Frames are processed one at a time. While a detection is outstanding any
new frame is dropped rather than queued, so the pipeline always works on the
most recent frame the host could hand over.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, List, Optional, Union

from .rack import DetectedMarker

LOGGER = logging.getLogger(__name__)

FrameSource = Union[Iterable[Any], AsyncIterator[Any]]


async def call_detector(detector, frame) -> List[DetectedMarker]:
    """Run a sync or async detector and normalise its output to markers.

    ``detector`` may be an object with ``detect_async``/``detect`` or a plain
    callable. Dict results in the ``{id, corners}`` wire shape are converted.
    """
    if hasattr(detector, "detect_async"):
        result = detector.detect_async(frame)
    elif hasattr(detector, "detect"):
        result = detector.detect(frame)
    else:
        result = detector(frame)

    if inspect.isawaitable(result):
        result = await result

    markers: List[DetectedMarker] = []
    for item in result or []:
        if isinstance(item, DetectedMarker):
            markers.append(item)
        else:
            markers.append(DetectedMarker.from_dict(item))
    return markers


class FrameGate:
    """Single-flight guard around per-frame work."""

    def __init__(self):
        self.busy = False
        self.dropped = 0
        self.processed = 0

    async def run(self, work: Callable[[Any], Awaitable[Any]], frame) -> Optional[Any]:
        """Run ``work(frame)`` unless another frame is still in flight.

        Returns:
            The work's result, or None when the frame was dropped
        """
        if self.busy:
            self.dropped += 1
            LOGGER.debug("Frame dropped, detection still outstanding (%d dropped)", self.dropped)
            return None

        self.busy = True
        try:
            return await work(frame)
        finally:
            self.busy = False
            self.processed += 1


async def iterate_frames(source: FrameSource) -> AsyncIterator[Any]:
    """Yield frames from a sync or async iterable."""
    if hasattr(source, "__aiter__"):
        async for frame in source:
            yield frame
    else:
        for frame in source:
            yield frame


async def detect_or_empty(detector, frame) -> List[DetectedMarker]:
    """Detector call that treats a failing detector as seeing nothing."""
    try:
        return await call_detector(detector, frame)
    except Exception as exc:
        LOGGER.warning("Marker detection failed: %s", exc)
        return []

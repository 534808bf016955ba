"""
Single-tag pose helpers.

For contexts that only need "where did this one marker move to": a cache of
the homography between a reference observation of a tag and its live
observation, plus point projection and lookup helpers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

import cv2
import numpy as np

from .homography import apply_homography
from .rack import DetectedMarker

LOGGER = logging.getLogger(__name__)

CacheKey = Tuple[int, int]


@dataclass
class ReferenceTag:
    """Tag as it appears in a reference photo."""

    id: int
    corners: np.ndarray

    def __post_init__(self):
        self.id = int(self.id)
        self.corners = np.asarray(self.corners, dtype=np.float64).reshape(4, 2)


@dataclass
class _CacheEntry:
    reference_corners: np.ndarray
    live_corners: np.ndarray
    homography: np.ndarray


class TagPoseCache:
    """Memoized reference-to-live homographies keyed by ``(reference_id, live_id)``.

    An entry is reused only while both corner sets are unchanged; the cache
    never answers for a marker position it did not compute.
    """

    def __init__(self):
        self._entries: Dict[CacheKey, _CacheEntry] = {}
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self):
        self._entries.clear()

    def get_homography(self, reference: ReferenceTag, live: DetectedMarker) -> np.ndarray:
        """Homography mapping reference-photo pixels onto the live frame."""
        key = (reference.id, live.id)
        entry = self._entries.get(key)
        if (
            entry is not None
            and np.array_equal(entry.reference_corners, reference.corners)
            and np.array_equal(entry.live_corners, live.corners)
        ):
            self.hits += 1
            return entry.homography

        self.misses += 1
        H = cv2.getPerspectiveTransform(
            reference.corners.astype(np.float32),
            live.corners.astype(np.float32),
        )
        self._entries[key] = _CacheEntry(
            reference_corners=reference.corners.copy(),
            live_corners=live.corners.copy(),
            homography=H,
        )
        return H

    def project_point(self, point, reference: ReferenceTag, live: DetectedMarker) -> Tuple[float, float]:
        """Project a reference-photo point into the live frame."""
        return apply_homography(self.get_homography(reference, live), point)


def find_tag_by_id(tag_id: int, detections: Iterable[DetectedMarker]) -> Optional[DetectedMarker]:
    """Return the first detection with ``tag_id``, or None when it is not visible."""
    for tag in detections:
        if tag.id == tag_id:
            return tag
    return None

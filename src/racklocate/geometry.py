"""
Marker geometry utilities.

Pure functions on 2D point sets in image coordinates (x to the right,
y downwards). Used by calibration to order rack markers and to reject
marker layouts that cannot produce a stable homography.
"""

from __future__ import annotations

import logging
from typing import List, Sequence, Tuple

import numpy as np

LOGGER = logging.getLogger(__name__)

Point = Tuple[float, float]


def _as_points(points) -> np.ndarray:
    arr = np.asarray(points, dtype=np.float64)
    if arr.size == 0:
        return arr.reshape(0, 2)
    return arr.reshape(-1, 2)


def center(corners) -> np.ndarray:
    """Return the arithmetic mean of a marker's corner points."""
    pts = _as_points(corners)
    if len(pts) == 0:
        raise ValueError("Cannot compute the center of an empty corner set")
    return pts.mean(axis=0)


def bounding_box(points) -> Tuple[float, float, float, float]:
    """Return ``(min_x, min_y, max_x, max_y)`` of a point set."""
    pts = _as_points(points)
    min_x, min_y = pts.min(axis=0)
    max_x, max_y = pts.max(axis=0)
    return float(min_x), float(min_y), float(max_x), float(max_y)


def bbox_diagonal(points) -> float:
    """Length of the bounding-box diagonal of a point set."""
    min_x, min_y, max_x, max_y = bounding_box(points)
    return float(np.hypot(max_x - min_x, max_y - min_y))


def polygon_area(points) -> float:
    """Absolute shoelace area of the polygon traced by ``points`` in order."""
    pts = _as_points(points)
    if len(pts) < 3:
        return 0.0
    x = pts[:, 0]
    y = pts[:, 1]
    return float(0.5 * abs(np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1))))


def side_lengths(points) -> np.ndarray:
    """Lengths of the closed polygon's sides, in traversal order."""
    pts = _as_points(points)
    return np.linalg.norm(np.roll(pts, -1, axis=0) - pts, axis=1)


def _cross(o: np.ndarray, a: np.ndarray, b: np.ndarray) -> float:
    return float((a[0] - o[0]) * (b[1] - o[1]) - (a[1] - o[1]) * (b[0] - o[0]))


def convex_hull(points) -> np.ndarray:
    """Graham-scan convex hull.

    The pivot is the lowest point (smallest y, then smallest x); the other
    points are sorted by polar angle around it and any turn that is not
    strictly counter-clockwise is pruned.

    Args:
        points: Iterable of (x, y) points

    Returns:
        (K, 2) array of hull vertices starting at the pivot
    """
    pts = np.unique(_as_points(points), axis=0)
    if len(pts) < 3:
        return pts

    pivot_idx = int(np.lexsort((pts[:, 0], pts[:, 1]))[0])
    pivot = pts[pivot_idx]
    others = np.delete(pts, pivot_idx, axis=0)

    deltas = others - pivot
    angles = np.arctan2(deltas[:, 1], deltas[:, 0])
    distances = np.hypot(deltas[:, 0], deltas[:, 1])
    order = np.lexsort((distances, angles))

    hull: List[np.ndarray] = [pivot]
    for idx in order:
        candidate = others[idx]
        while len(hull) >= 2 and _cross(hull[-2], hull[-1], candidate) <= 0:
            hull.pop()
        hull.append(candidate)

    return np.array(hull, dtype=np.float64)


def order_geometrically(points) -> np.ndarray:
    """Order four points as ``[top_left, top_right, bottom_right, bottom_left]``.

    Each point is classified into a quadrant of the bounding-box center. If a
    quadrant ends up empty or holds more than one point the layout is
    ambiguous and the input is returned unchanged.
    """
    pts = _as_points(points)
    return pts[geometric_order(pts)]


def geometric_order(points) -> List[int]:
    """Indices that put four points in TL, TR, BR, BL order (identity if ambiguous)."""
    pts = _as_points(points)
    identity = list(range(len(pts)))
    if len(pts) != 4:
        LOGGER.warning("Geometric ordering needs 4 points, got %d", len(pts))
        return identity

    min_x, min_y, max_x, max_y = bounding_box(pts)
    cx = (min_x + max_x) / 2.0
    cy = (min_y + max_y) / 2.0

    # index: 0=TL, 1=TR, 2=BR, 3=BL
    slots: List[List[int]] = [[], [], [], []]
    for i, (x, y) in enumerate(pts):
        left = x < cx
        top = y < cy
        if top and left:
            slots[0].append(i)
        elif top:
            slots[1].append(i)
        elif not left:
            slots[2].append(i)
        else:
            slots[3].append(i)

    if any(len(slot) != 1 for slot in slots):
        LOGGER.warning(
            "Ambiguous marker layout, quadrant counts %s; keeping input order",
            [len(slot) for slot in slots],
        )
        return identity

    return [slot[0] for slot in slots]


def is_colinear(points, area_ratio: float = 0.05) -> bool:
    """True when the points' hull area is below ``area_ratio`` of their bounding box."""
    pts = _as_points(points)
    if len(pts) < 3:
        return True
    min_x, min_y, max_x, max_y = bounding_box(pts)
    bbox_area = (max_x - min_x) * (max_y - min_y)
    if bbox_area <= 0.0:
        return True
    return polygon_area(convex_hull(pts)) < area_ratio * bbox_area


def is_too_distorted(points, max_side_ratio: float = 5.0) -> bool:
    """True when the longest polygon side exceeds ``max_side_ratio`` times the shortest."""
    sides = side_lengths(points)
    if len(sides) == 0:
        return True
    shortest = float(sides.min())
    if shortest <= 0.0:
        return True
    return float(sides.max()) / shortest > max_side_ratio


def outer_corners(ordered_corner_sets: Sequence) -> np.ndarray:
    """Rack outline from four ordered markers' own corner points.

    For each marker (already in TL, TR, BR, BL order) the corner farthest
    from the centroid of the four marker centers is taken as the rack corner.
    """
    corner_sets = [_as_points(c) for c in ordered_corner_sets]
    centers = np.array([c.mean(axis=0) for c in corner_sets])
    centroid = centers.mean(axis=0)

    outline = []
    for corners in corner_sets:
        distances = np.linalg.norm(corners - centroid, axis=1)
        outline.append(corners[int(np.argmax(distances))])
    return np.array(outline, dtype=np.float64)


def extreme_corners(points) -> np.ndarray:
    """Pick TL, TR, BR, BL from the convex hull of more than four points.

    Best-effort ordering for the hull fallback: extremes of ``x + y`` and
    ``x - y`` over the hull vertices. Unlike :func:`order_geometrically` this
    gives no guarantee on non-convex or heavily rotated layouts.
    """
    hull = convex_hull(points)
    if len(hull) < 4:
        return hull
    s = hull.sum(axis=1)
    d = hull[:, 0] - hull[:, 1]
    picks = [int(np.argmin(s)), int(np.argmax(d)), int(np.argmax(s)), int(np.argmin(d))]
    if len(set(picks)) != 4:
        LOGGER.warning("Hull fallback could not find 4 distinct extreme corners")
    return hull[picks]

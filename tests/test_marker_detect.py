"""
Tests for marker detection functionality.
"""

import asyncio
import os
import sys
import unittest

import cv2
import numpy as np

sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from racklocate.calibration import compute_preview  # type: ignore
from racklocate.homography import HomographyEstimator  # type: ignore
from racklocate.marker_detect import LensCorrection, MarkerDetector  # type: ignore

MARKER_SIZE = 100
# top-left placement of ids 0..3 on a 640x480 canvas
PLACEMENTS = {0: (50, 50), 1: (490, 50), 2: (490, 330), 3: (50, 330)}


def synthetic_frame(ids=(0, 1, 2, 3)):
    dictionary = cv2.aruco.getPredefinedDictionary(cv2.aruco.DICT_4X4_50)
    canvas = np.full((480, 640), 255, dtype=np.uint8)
    for marker_id in ids:
        x, y = PLACEMENTS[marker_id]
        canvas[y:y + MARKER_SIZE, x:x + MARKER_SIZE] = cv2.aruco.generateImageMarker(
            dictionary, marker_id, MARKER_SIZE
        )
    return cv2.cvtColor(canvas, cv2.COLOR_GRAY2BGR)


class TestMarkerDetector(unittest.TestCase):
    """Test cases for ArUco detection."""

    def setUp(self):
        self.detector = MarkerDetector({"dictionary": "DICT_4X4_50"})
        self.detector.initialize()

    def test_detects_all_markers(self):
        markers = self.detector.detect(synthetic_frame())
        self.assertEqual(sorted(m.id for m in markers), [0, 1, 2, 3])
        for m in markers:
            x, y = PLACEMENTS[m.id]
            expected = (x + MARKER_SIZE / 2 - 0.5, y + MARKER_SIZE / 2 - 0.5)
            np.testing.assert_allclose(m.center, expected, atol=2.0)
            self.assertEqual(m.corners.shape, (4, 2))

    def test_grayscale_frame(self):
        gray = cv2.cvtColor(synthetic_frame((1,)), cv2.COLOR_BGR2GRAY)
        self.assertEqual([m.id for m in self.detector.detect(gray)], [1])

    def test_empty_frame(self):
        self.assertEqual(self.detector.detect(None), [])
        blank = np.full((120, 160, 3), 255, dtype=np.uint8)
        self.assertEqual(self.detector.detect(blank), [])

    def test_allowed_ids_filter(self):
        detector = MarkerDetector({"allowed_ids": [0, 2]})
        self.assertEqual(sorted(m.id for m in detector.detect(synthetic_frame())), [0, 2])

    def test_unknown_dictionary(self):
        with self.assertRaises(ValueError):
            MarkerDetector({"dictionary": "DICT_NOPE"}).initialize()

    def test_async_detection(self):
        markers = asyncio.run(self.detector.detect_async(synthetic_frame((3,))))
        self.assertEqual([m.id for m in markers], [3])

    def test_detections_calibrate_a_rack(self):
        markers = self.detector.detect(synthetic_frame())
        preview = compute_preview(markers, HomographyEstimator()).preview
        self.assertTrue(preview.homography_ready)
        self.assertEqual(preview.marker_ids, (0, 1, 2, 3))


class TestLensCorrection(unittest.TestCase):
    def test_disabled_by_default(self):
        self.assertIsNone(LensCorrection.from_config(None))
        self.assertIsNone(LensCorrection.from_config({"enabled": False}))

    def test_requires_camera_matrix(self):
        with self.assertRaises(ValueError):
            LensCorrection.from_config({"enabled": True})

    def test_zero_distortion_keeps_points(self):
        lens = LensCorrection.from_config(
            {
                "enabled": True,
                "camera_matrix": [[800.0, 0.0, 320.0], [0.0, 800.0, 240.0], [0.0, 0.0, 1.0]],
                "dist_coeffs": [0.0, 0.0, 0.0, 0.0, 0.0],
            }
        )
        points = np.array([[100.0, 100.0], [400.0, 300.0]])
        np.testing.assert_allclose(lens.undistort(points), points, atol=1e-6)


if __name__ == "__main__":
    unittest.main()

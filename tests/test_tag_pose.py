"""
Tests for the single-tag pose cache.
"""

import os
import sys
import unittest

import numpy as np

sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from racklocate.rack import DetectedMarker  # type: ignore
from racklocate.tag_pose import ReferenceTag, TagPoseCache, find_tag_by_id  # type: ignore

REFERENCE_CORNERS = [(0, 0), (10, 0), (10, 10), (0, 10)]


def live_tag(tag_id=0, dx=100.0, dy=50.0, scale=1.0):
    corners = [(x * scale + dx, y * scale + dy) for x, y in REFERENCE_CORNERS]
    return DetectedMarker(id=tag_id, corners=corners)


class TestTagPoseCache(unittest.TestCase):
    def setUp(self):
        self.cache = TagPoseCache()
        self.reference = ReferenceTag(id=0, corners=REFERENCE_CORNERS)

    def test_projects_reference_point(self):
        point = self.cache.project_point((5, 5), self.reference, live_tag())
        np.testing.assert_allclose(point, (105, 55), atol=1e-6)

    def test_follows_scale(self):
        point = self.cache.project_point((5, 5), self.reference, live_tag(scale=2.0))
        np.testing.assert_allclose(point, (110, 60), atol=1e-6)

    def test_unchanged_corners_hit_the_cache(self):
        first = self.cache.get_homography(self.reference, live_tag())
        second = self.cache.get_homography(self.reference, live_tag())
        self.assertIs(first, second)
        self.assertEqual(self.cache.misses, 1)
        self.assertEqual(self.cache.hits, 1)

    def test_moved_live_tag_recomputes(self):
        self.cache.project_point((5, 5), self.reference, live_tag())
        point = self.cache.project_point((5, 5), self.reference, live_tag(dx=200.0))
        np.testing.assert_allclose(point, (205, 55), atol=1e-6)
        self.assertEqual(self.cache.misses, 2)
        self.assertEqual(len(self.cache), 1)

    def test_new_reference_recomputes(self):
        self.cache.get_homography(self.reference, live_tag())
        moved = ReferenceTag(id=0, corners=[(x + 1, y) for x, y in REFERENCE_CORNERS])
        self.cache.get_homography(moved, live_tag())
        self.assertEqual(self.cache.misses, 2)
        self.assertEqual(self.cache.hits, 0)

    def test_clear(self):
        self.cache.get_homography(self.reference, live_tag())
        self.cache.clear()
        self.assertEqual(len(self.cache), 0)


class TestFindTag(unittest.TestCase):
    def test_returns_first_match(self):
        tags = [live_tag(3), live_tag(1, dx=0.0), live_tag(1, dx=500.0)]
        found = find_tag_by_id(1, tags)
        self.assertIs(found, tags[1])

    def test_absent_tag(self):
        self.assertIsNone(find_tag_by_id(4, [live_tag(3)]))
        self.assertIsNone(find_tag_by_id(4, []))


if __name__ == "__main__":
    unittest.main()

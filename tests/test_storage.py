"""
Tests for rack and item-location persistence.
"""

import os
import sys
import tempfile
import unittest
from unittest import mock

import numpy as np

sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from racklocate.rack import ItemLocation, MarkerPosition, RackDefinition  # type: ignore
from racklocate.storage import RackNotFoundError, RackStore, StorageError  # type: ignore


def make_rack(name="Rack A"):
    return RackDefinition(
        name=name,
        marker_ids=[0, 1, 2, 3],
        marker_positions=[
            MarkerPosition(0, 5.0, 5.0),
            MarkerPosition(1, 95.0, 5.0),
            MarkerPosition(2, 95.0, 95.0),
            MarkerPosition(3, 5.0, 95.0),
        ],
        homography=[1 / 90, 0, -5 / 90, 0, 1 / 90, -5 / 90, 0, 0, 1],
    )


class TestRackStore(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.store = RackStore(self.tmpdir.name)

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_rack_survives_reload(self):
        rack = make_rack()
        self.store.put_rack(rack)

        loaded = RackStore(self.tmpdir.name).get_rack(rack.id)
        self.assertEqual(loaded, rack)

    def test_unknown_rack(self):
        self.assertIsNone(self.store.get_rack("missing"))
        self.assertFalse(self.store.delete_rack("missing"))

    def test_list_racks(self):
        self.store.put_rack(make_rack("A"))
        self.store.put_rack(make_rack("B"))
        self.assertEqual(sorted(r.name for r in self.store.list_racks()), ["A", "B"])

    def test_item_location_round_trip(self):
        rack = make_rack()
        self.store.put_rack(rack)
        self.store.add_item("widget")

        self.assertEqual(self.store.save_item_location("widget", ItemLocation(rack.id, 0.25, 0.75)), 1)
        location = RackStore(self.tmpdir.name).get_item_location("widget")
        self.assertEqual(location, ItemLocation(rack.id, 0.25, 0.75))

    def test_location_for_deleted_item_is_not_saved(self):
        rack = make_rack()
        self.store.put_rack(rack)
        self.assertEqual(self.store.save_item_location("ghost", ItemLocation(rack.id, 0.5, 0.5)), 0)
        self.assertIsNone(self.store.get_item_location("ghost"))

    def test_location_on_unknown_rack_raises(self):
        self.store.add_item("widget")
        with self.assertRaises(RackNotFoundError):
            self.store.save_item_location("widget", ItemLocation("missing", 0.5, 0.5))

    def test_delete_rack_clears_its_item_locations(self):
        kept, doomed = make_rack("kept"), make_rack("doomed")
        self.store.put_rack(kept)
        self.store.put_rack(doomed)
        for item in ("a", "b"):
            self.store.add_item(item)
        self.store.save_item_location("a", ItemLocation(doomed.id, 0.1, 0.1))
        self.store.save_item_location("b", ItemLocation(kept.id, 0.9, 0.9))

        self.assertTrue(self.store.delete_rack(doomed.id))

        reloaded = RackStore(self.tmpdir.name)
        self.assertIsNone(reloaded.get_rack(doomed.id))
        self.assertIsNone(reloaded.get_item_location("a"))
        self.assertEqual(reloaded.get_item_location("b").rack_id, kept.id)

    def test_clear_and_remove_item(self):
        rack = make_rack()
        self.store.put_rack(rack)
        self.store.add_item("widget")
        self.store.save_item_location("widget", ItemLocation(rack.id, 0.5, 0.5))

        self.assertEqual(self.store.clear_item_location("widget"), 1)
        self.assertEqual(self.store.clear_item_location("widget"), 0)
        self.assertTrue(self.store.remove_item("widget"))
        self.assertFalse(self.store.remove_item("widget"))

    def test_failed_write_changes_nothing(self):
        rack = make_rack()
        with mock.patch.object(self.store, "_flush", side_effect=StorageError("disk full")):
            with self.assertRaises(StorageError):
                self.store.put_rack(rack)
        self.assertIsNone(self.store.get_rack(rack.id))
        self.assertEqual(self.store.list_racks(), [])

    def test_failed_replace_removes_temp_file(self):
        rack = make_rack()
        with mock.patch("racklocate.storage.os.replace", side_effect=OSError("read-only")):
            with self.assertRaises(StorageError):
                self.store.put_rack(rack)
        self.assertEqual(os.listdir(self.tmpdir.name), [])
        self.assertIsNone(self.store.get_rack(rack.id))

    def test_corrupt_document_raises(self):
        with open(os.path.join(self.tmpdir.name, "racks.json"), "w") as f:
            f.write("{not json")
        with self.assertRaises(StorageError):
            RackStore(self.tmpdir.name)

    def test_snapshot_round_trip(self):
        image = np.zeros((60, 80, 3), dtype=np.uint8)
        image[10:50, 10:70] = (0, 200, 80)
        handle = self.store.put_snapshot(image)

        self.assertTrue(handle.endswith(".jpg"))
        loaded = self.store.load_snapshot(handle)
        self.assertEqual(loaded.shape, image.shape)

    def test_delete_snapshot(self):
        handle = self.store.put_snapshot(np.zeros((20, 20, 3), dtype=np.uint8))

        self.assertTrue(self.store.delete_snapshot(handle))
        self.assertIsNone(self.store.load_snapshot(handle))
        self.assertFalse(self.store.delete_snapshot(handle))


class TestRackDefinition(unittest.TestCase):
    """Validation of persisted structures."""

    def test_needs_nine_coefficients(self):
        with self.assertRaises(ValueError):
            RackDefinition("A", [0], [MarkerPosition(0, 1.0, 1.0)], homography=[1, 0, 0, 0, 1, 0])

    def test_rejects_degenerate_homography(self):
        with self.assertRaises(ValueError):
            RackDefinition("A", [0], [MarkerPosition(0, 1.0, 1.0)], homography=[0] * 9)

    def test_rejects_non_finite_homography(self):
        with self.assertRaises(ValueError):
            RackDefinition("A", [0], [MarkerPosition(0, 1.0, 1.0)], homography=[float("nan")] + [0] * 8)

    def test_wire_format(self):
        payload = make_rack().to_dict()
        self.assertEqual(
            set(payload),
            {"id", "name", "markerIds", "markerPositions", "homography", "calibrationImage", "lastCalibration"},
        )
        self.assertEqual(payload["markerPositions"][0], {"id": 0, "x": 5.0, "y": 5.0})

    def test_location_outside_unit_square(self):
        with self.assertRaises(ValueError):
            ItemLocation("rack", 1.2, 0.5)
        with self.assertRaises(ValueError):
            ItemLocation("rack", 0.5, -0.1)


if __name__ == "__main__":
    unittest.main()

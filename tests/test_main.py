"""
Tests for the command-line calibration loop.
"""

import asyncio
import os
import sys
import unittest
from unittest import mock

import numpy as np

sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from racklocate.main import run_calibration  # type: ignore
from racklocate.rack import DetectedMarker  # type: ignore
from racklocate.utils import get_config  # type: ignore


def rack_markers():
    markers = []
    for marker_id, (x0, y0) in enumerate([(20, 20), (160, 20), (160, 160), (20, 160)]):
        corners = [(x0, y0), (x0 + 20, y0), (x0 + 20, y0 + 20), (x0, y0 + 20)]
        markers.append(DetectedMarker(id=marker_id, corners=corners))
    return markers


class SingleFrameVideo:
    """Video source yielding one blank frame."""

    def __init__(self, config):
        self.frame = np.zeros((200, 200, 3), dtype=np.uint8)
        self.cleaned_up = False

    def initialize(self):
        return True

    def frames(self):
        yield self.frame

    def cleanup(self):
        self.cleaned_up = True


class FixedDetector:
    """Detector that finds the same markers in every frame."""

    def __init__(self, config=None):
        self.markers = rack_markers()

    def detect(self, frame):
        return list(self.markers)


class RecordingStore:
    def __init__(self):
        self.racks = {}
        self.snapshots = []

    def put_rack(self, rack):
        self.racks[rack.id] = rack
        return rack.id

    def put_snapshot(self, image):
        self.snapshots.append(image.copy())
        return f"snapshots/{len(self.snapshots)}.jpg"

    def delete_snapshot(self, handle):
        return True


class TestRunCalibration(unittest.TestCase):
    """Saving from the interactive calibration view."""

    def setUp(self):
        self.store = RecordingStore()
        patchers = [
            mock.patch("racklocate.main.VideoProcessor", SingleFrameVideo),
            mock.patch("racklocate.main.MarkerDetector", FixedDetector),
            mock.patch("racklocate.main.UserInterface"),
        ]
        mocks = [p.start() for p in patchers]
        for p in patchers:
            self.addCleanup(p.stop)
        self.ui = mocks[2].return_value
        self.ui.show_markers = True
        self.ui.poll_action.return_value = "save"

    def test_snapshot_has_no_overlays(self):
        with mock.patch("builtins.print"):
            result = asyncio.run(run_calibration(get_config(None), self.store, "Rack A"))

        self.assertEqual(result, 0)
        self.assertEqual(len(self.store.racks), 1)
        self.assertEqual(len(self.store.snapshots), 1)
        self.assertEqual(np.count_nonzero(self.store.snapshots[0]), 0)

        displayed = self.ui.display_frame.call_args[0][0]
        self.assertGreater(np.count_nonzero(displayed), 0)

    def test_quit_saves_nothing(self):
        self.ui.poll_action.return_value = "quit"
        asyncio.run(run_calibration(get_config(None), self.store, "Rack A"))

        self.assertEqual(self.store.racks, {})
        self.assertEqual(self.store.snapshots, [])
        self.ui.cleanup.assert_called_once()


if __name__ == "__main__":
    unittest.main()

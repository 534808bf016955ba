"""
Tests for configuration helpers.
"""

import json
import os
import sys
import tempfile
import unittest

sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from racklocate.utils import DEFAULT_CONFIG, get_config, save_config, validate_config  # type: ignore


class TestConfig(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmpdir.name, "config.json")

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_defaults_without_file(self):
        config = get_config(None)
        self.assertEqual(config, DEFAULT_CONFIG)
        self.assertIsNot(config["projection"], DEFAULT_CONFIG["projection"])
        self.assertEqual(config["projection"]["smoothing_alpha"], 0.3)

    def test_sections_merge_over_defaults(self):
        with open(self.path, "w") as f:
            json.dump({"projection": {"smoothing_alpha": 0.5}, "camera_id": 2}, f)

        config = get_config(self.path)
        self.assertEqual(config["projection"]["smoothing_alpha"], 0.5)
        self.assertEqual(config["projection"]["ransac_threshold"], 5.0)
        self.assertEqual(config["camera_id"], 2)
        self.assertEqual(DEFAULT_CONFIG["projection"]["smoothing_alpha"], 0.3)

    def test_unreadable_file_falls_back_to_defaults(self):
        with open(self.path, "w") as f:
            f.write("not json")
        self.assertEqual(get_config(self.path), DEFAULT_CONFIG)

    def test_save_and_reload(self):
        config = get_config(None)
        config["storage"]["path"] = "elsewhere"
        self.assertTrue(save_config(config, self.path))
        self.assertEqual(get_config(self.path)["storage"]["path"], "elsewhere")

    def test_validation(self):
        self.assertTrue(validate_config(get_config(None)))

        bad_alpha = get_config(None)
        bad_alpha["projection"]["smoothing_alpha"] = 0.0
        self.assertFalse(validate_config(bad_alpha))

        too_few = get_config(None)
        too_few["calibration"]["required_markers"] = 3
        self.assertFalse(validate_config(too_few))

        missing = get_config(None)
        del missing["storage"]
        self.assertFalse(validate_config(missing))


if __name__ == "__main__":
    unittest.main()

"""
Generate printable rack markers for RackLocate.

Writes one PNG per marker plus a combined sheet. Stick markers 0-3 on the
top-left, top-right, bottom-right and bottom-left corners of a rack, then run
``racklocate calibrate``.

Usage:
    python print_markers.py --output ./markers
    python print_markers.py --ids 4 5 6 7 --size 400
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import List

import cv2
import numpy as np

# Add src directory to path for imports
sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from racklocate.marker_detect import DEFAULT_DICTIONARY  # type: ignore
from racklocate.utils import setup_logging  # type: ignore

LOGGER = logging.getLogger(__name__)


def render_marker(dictionary, marker_id: int, size: int, margin: int) -> np.ndarray:
    """Marker image with a white quiet zone and its ID printed underneath."""
    marker = cv2.aruco.generateImageMarker(dictionary, marker_id, size)
    canvas = np.full((size + 3 * margin, size + 2 * margin), 255, dtype=np.uint8)
    canvas[margin:margin + size, margin:margin + size] = marker
    cv2.putText(
        canvas,
        f"ID {marker_id}",
        (margin, size + 2 * margin + margin // 2),
        cv2.FONT_HERSHEY_SIMPLEX,
        max(size / 300.0, 0.5),
        0,
        2,
    )
    return canvas


def build_sheet(images: List[np.ndarray], columns: int = 2) -> np.ndarray:
    """Tile marker images into a grid."""
    h, w = images[0].shape
    rows = (len(images) + columns - 1) // columns
    sheet = np.full((rows * h, columns * w), 255, dtype=np.uint8)
    for i, image in enumerate(images):
        r, c = divmod(i, columns)
        sheet[r * h:(r + 1) * h, c * w:(c + 1) * w] = image
    return sheet


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate printable RackLocate markers")
    parser.add_argument("--output", "-o", default="markers", help="Output directory (default: markers)")
    parser.add_argument("--ids", type=int, nargs="+", default=[0, 1, 2, 3], help="Marker IDs (default: 0 1 2 3)")
    parser.add_argument("--size", type=int, default=300, help="Marker side in pixels (default: 300)")
    parser.add_argument("--dictionary", default=DEFAULT_DICTIONARY, help=f"ArUco dictionary (default: {DEFAULT_DICTIONARY})")
    return parser.parse_args()


def main():
    args = parse_args()
    setup_logging()

    dict_id = getattr(cv2.aruco, args.dictionary, None)
    if dict_id is None:
        print(f"Unknown ArUco dictionary: {args.dictionary}")
        sys.exit(1)
    dictionary = cv2.aruco.getPredefinedDictionary(dict_id)

    os.makedirs(args.output, exist_ok=True)
    margin = args.size // 6
    images = []
    for marker_id in args.ids:
        image = render_marker(dictionary, marker_id, args.size, margin)
        path = os.path.join(args.output, f"marker_{marker_id}.png")
        cv2.imwrite(path, image)
        LOGGER.info("Wrote %s", path)
        images.append(image)

    sheet_path = os.path.join(args.output, "sheet.png")
    cv2.imwrite(sheet_path, build_sheet(images))
    print(f"Wrote {len(images)} markers and {sheet_path}")


if __name__ == "__main__":
    main()

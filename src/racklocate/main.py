"""
Command-line entry point for RackLocate.

Usage:
    racklocate calibrate --name "Rack A"        # Calibrate a rack from the camera
    racklocate pin --rack ID --item ITEM --x 0.3 --y 0.6
    racklocate locate --item ITEM               # Show where an item sits
    racklocate racks                            # List calibrated racks
    racklocate delete --rack ID                 # Delete a rack and its item locations
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from .calibration import CalibrationNotReadyError, CalibrationSession
from .marker_detect import MarkerDetector
from .overlay import OverlayRenderer
from .projection import LiveProjectionService, LocateSession
from .rack import ItemLocation
from .storage import RackNotFoundError, RackStore, StorageError
from .ui import UserInterface
from .utils import get_config, setup_logging, validate_config
from .video import VideoProcessor

LOGGER = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="RackLocate - find catalogued items on marker-framed racks",
    )
    parser.add_argument("--config", "-c", help="Path to JSON configuration file")
    parser.add_argument("--verbose", "-V", action="store_true", help="Enable debug logging")
    parser.add_argument("--video", help="Read frames from a video file instead of the camera")

    sub = parser.add_subparsers(dest="command", required=True)

    calibrate = sub.add_parser("calibrate", help="Calibrate a rack from its 4 corner markers")
    calibrate.add_argument("--name", required=True, help="Rack label")

    pin = sub.add_parser("pin", help="Store an item's normalized location on a rack")
    pin.add_argument("--rack", required=True)
    pin.add_argument("--item", required=True)
    pin.add_argument("--x", type=float, required=True)
    pin.add_argument("--y", type=float, required=True)

    locate = sub.add_parser("locate", help="Show an item's location in the live view")
    locate.add_argument("--item", help="Item whose stored location to show")
    locate.add_argument("--rack", help="Rack ID (with --x/--y instead of --item)")
    locate.add_argument("--x", type=float)
    locate.add_argument("--y", type=float)

    sub.add_parser("racks", help="List calibrated racks")

    delete = sub.add_parser("delete", help="Delete a rack and clear its item locations")
    delete.add_argument("--rack", required=True)

    return parser.parse_args(argv)


async def run_calibration(config, store: RackStore, name: str) -> int:
    video = VideoProcessor(config)
    if not video.initialize():
        return 1

    detector = MarkerDetector(config["markers"])
    session = CalibrationSession(detector, store, config["calibration"])
    renderer = OverlayRenderer()
    ui = UserInterface(config, title="RackLocate - calibrate")
    ui.initialize()
    session.start()

    try:
        for frame in video.frames():
            preview = await session.process_frame(frame)
            if preview is None:
                preview = session.preview
            # overlays go on a copy; the raw frame is the calibration snapshot
            display = frame.copy()
            if ui.show_markers:
                renderer.draw_markers(display, session.detected_markers)
            renderer.draw_calibration_preview(display, preview)
            ui.display_frame(display)

            action = ui.poll_action()
            if action == "quit":
                break
            if action == "save":
                try:
                    rack = session.save(name, frame)
                except CalibrationNotReadyError as exc:
                    LOGGER.warning("%s", exc)
                    continue
                print(f"Saved rack '{rack.name}' as {rack.id}")
                break
    finally:
        session.stop()
        ui.cleanup()
        video.cleanup()

    return 0


async def run_locate(config, rack, location) -> int:
    video = VideoProcessor(config)
    if not video.initialize():
        return 1

    detector = MarkerDetector(config["markers"])
    locate = LocateSession(detector, LiveProjectionService(config["projection"]), rack, location)
    renderer = OverlayRenderer()
    ui = UserInterface(config, title=f"RackLocate - {rack.name}")
    ui.initialize()

    try:
        for frame in video.frames():
            point = await locate.process_frame(frame)
            if ui.show_markers:
                renderer.draw_markers(frame, locate.last_markers)
            renderer.draw_target(frame, point, locate.service.accuracy)
            ui.display_frame(frame)

            action = ui.poll_action()
            if action == "quit":
                break
            if action == "reset":
                locate.reset()
    finally:
        locate.stop()
        ui.cleanup()
        video.cleanup()
    return 0


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)
    setup_logging(level=logging.DEBUG if args.verbose else logging.INFO)

    config = get_config(args.config)
    if args.video:
        config["video_file"] = args.video
    if not validate_config(config):
        sys.exit(2)

    try:
        store = RackStore(config["storage"]["path"])

        if args.command == "calibrate":
            sys.exit(asyncio.run(run_calibration(config, store, args.name)))

        if args.command == "pin":
            store.add_item(args.item)
            store.save_item_location(args.item, ItemLocation(rack_id=args.rack, x=args.x, y=args.y))
            print(f"Pinned {args.item} at ({args.x:.3f}, {args.y:.3f}) on rack {args.rack}")

        elif args.command == "locate":
            if args.item:
                location = store.get_item_location(args.item)
                if location is None:
                    print(f"No stored location for item {args.item}")
                    sys.exit(1)
            elif args.rack and args.x is not None and args.y is not None:
                location = ItemLocation(rack_id=args.rack, x=args.x, y=args.y)
            else:
                print("locate needs --item, or --rack with --x and --y")
                sys.exit(2)
            rack = store.get_rack(location.rack_id)
            if rack is None:
                print(f"Unknown rack {location.rack_id}")
                sys.exit(1)
            sys.exit(asyncio.run(run_locate(config, rack, location)))

        elif args.command == "racks":
            for rack in store.list_racks():
                print(f"{rack.id}  {rack.name}  markers={rack.marker_ids}  calibrated={rack.last_calibration}")

        elif args.command == "delete":
            if not store.delete_rack(args.rack):
                print(f"Unknown rack {args.rack}")
                sys.exit(1)
            print(f"Deleted rack {args.rack}")

    except (StorageError, RackNotFoundError, ValueError) as exc:
        LOGGER.error("%s", exc)
        sys.exit(1)

    sys.exit(0)


if __name__ == "__main__":
    main()

"""
Rack and item-location persistence.

A small JSON document store: rack definitions, item locations and the set of
known catalogue items live in ``racks.json`` under the storage directory;
calibration snapshots are written next to it as JPEG files.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import uuid
from pathlib import Path
from typing import Dict, List, Optional, Union

import cv2
import numpy as np

from .rack import ItemLocation, RackDefinition

LOGGER = logging.getLogger(__name__)

DOCUMENT_NAME = "racks.json"
SNAPSHOT_DIR = "snapshots"
SNAPSHOT_JPEG_QUALITY = 80


class StorageError(Exception):
    """The store could not read or write its data."""


class RackNotFoundError(KeyError):
    """An operation referenced a rack that does not exist."""


class RackStore:
    """JSON-file backed store for racks and item locations."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        self.document_path = self.root / DOCUMENT_NAME
        self._data: Dict = {"racks": {}, "items": {}}
        self._load()

    # ------------------------------------------------------------------ #
    # Document I/O
    # ------------------------------------------------------------------ #
    def _load(self):
        if not self.document_path.exists():
            return
        try:
            with self.document_path.open("r", encoding="utf-8") as f:
                payload = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageError(f"Failed to read {self.document_path}: {exc}") from exc
        self._data["racks"] = payload.get("racks", {})
        self._data["items"] = payload.get("items", {})
        LOGGER.info("Loaded %d rack(s) from %s", len(self._data["racks"]), self.document_path)

    def _flush(self, data: Dict):
        tmp_path = None
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=str(self.root), prefix=".racks-", suffix=".json")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=4)
            os.replace(tmp_path, self.document_path)
        except OSError as exc:
            raise StorageError(f"Failed to write {self.document_path}: {exc}") from exc
        finally:
            # only left over when the replace did not happen
            if tmp_path is not None and os.path.exists(tmp_path):
                os.unlink(tmp_path)

    def _commit(self, data: Dict):
        """Persist ``data`` first, then adopt it, so a failed write changes nothing."""
        self._flush(data)
        self._data = data

    def _copy(self) -> Dict:
        return json.loads(json.dumps(self._data))

    # ------------------------------------------------------------------ #
    # Racks
    # ------------------------------------------------------------------ #
    def get_rack(self, rack_id: str) -> Optional[RackDefinition]:
        payload = self._data["racks"].get(rack_id)
        if payload is None:
            return None
        return RackDefinition.from_dict(payload)

    def put_rack(self, rack: RackDefinition) -> str:
        data = self._copy()
        data["racks"][rack.id] = rack.to_dict()
        self._commit(data)
        LOGGER.info("Saved rack '%s' (%s) with markers %s", rack.name, rack.id, rack.marker_ids)
        return rack.id

    def list_racks(self) -> List[RackDefinition]:
        return [RackDefinition.from_dict(payload) for payload in self._data["racks"].values()]

    def delete_rack(self, rack_id: str) -> bool:
        """Delete a rack and clear every item location that points at it."""
        if rack_id not in self._data["racks"]:
            return False
        data = self._copy()
        del data["racks"][rack_id]
        cleared = 0
        for item_id, location in data["items"].items():
            if location and location.get("rackId") == rack_id:
                data["items"][item_id] = None
                cleared += 1
        self._commit(data)
        LOGGER.info("Deleted rack %s, cleared %d item location(s)", rack_id, cleared)
        return True

    # ------------------------------------------------------------------ #
    # Items
    # ------------------------------------------------------------------ #
    def add_item(self, item_id: str):
        """Register a catalogue item so locations can be stored for it."""
        item_id = str(item_id)
        if item_id in self._data["items"]:
            return
        data = self._copy()
        data["items"][item_id] = None
        self._commit(data)

    def remove_item(self, item_id: str) -> bool:
        item_id = str(item_id)
        if item_id not in self._data["items"]:
            return False
        data = self._copy()
        del data["items"][item_id]
        self._commit(data)
        return True

    def save_item_location(self, item_id: str, location: ItemLocation) -> int:
        """Store an item's location.

        Returns:
            Number of items updated; 0 when the item no longer exists
        """
        item_id = str(item_id)
        if location.rack_id not in self._data["racks"]:
            raise RackNotFoundError(location.rack_id)
        if item_id not in self._data["items"]:
            LOGGER.warning("Item %s no longer exists; location not saved", item_id)
            return 0
        data = self._copy()
        data["items"][item_id] = location.to_dict()
        self._commit(data)
        return 1

    def get_item_location(self, item_id: str) -> Optional[ItemLocation]:
        payload = self._data["items"].get(str(item_id))
        return ItemLocation.from_dict(payload) if payload else None

    def clear_item_location(self, item_id: str) -> int:
        item_id = str(item_id)
        if not self._data["items"].get(item_id):
            return 0
        data = self._copy()
        data["items"][item_id] = None
        self._commit(data)
        return 1

    # ------------------------------------------------------------------ #
    # Snapshots
    # ------------------------------------------------------------------ #
    def put_snapshot(self, image: np.ndarray) -> str:
        """Write a calibration snapshot and return its handle (relative path)."""
        snapshot_dir = self.root / SNAPSHOT_DIR
        handle = f"{SNAPSHOT_DIR}/{uuid.uuid4().hex}.jpg"
        try:
            snapshot_dir.mkdir(parents=True, exist_ok=True)
            ok = cv2.imwrite(
                str(self.root / handle),
                image,
                [int(cv2.IMWRITE_JPEG_QUALITY), SNAPSHOT_JPEG_QUALITY],
            )
        except (OSError, cv2.error) as exc:
            raise StorageError(f"Failed to write snapshot: {exc}") from exc
        if not ok:
            raise StorageError(f"Failed to write snapshot {handle}")
        return handle

    def delete_snapshot(self, handle: str) -> bool:
        """Remove a snapshot file; False when it does not exist."""
        path = self.root / handle
        if not path.is_file():
            return False
        try:
            path.unlink()
        except OSError as exc:
            raise StorageError(f"Failed to delete snapshot {handle}: {exc}") from exc
        return True

    def load_snapshot(self, handle: str) -> Optional[np.ndarray]:
        return cv2.imread(str(self.root / handle))

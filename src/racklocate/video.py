"""
Frame acquisition.

Wraps ``cv2.VideoCapture`` for cameras and video files and exposes frames
as an iterator the calibration and locate loops can consume.
"""

import logging
import platform
import time
from typing import Iterator, List, Optional

import cv2
import numpy as np


class VideoProcessor:
    """Camera or video-file frame source."""

    def __init__(self, config=None):
        """Initialize frame source.

        Args:
            config: Configuration dictionary
        """
        self.config = config or {}
        self.cap: Optional[cv2.VideoCapture] = None
        self.logger = logging.getLogger(__name__)

        self.camera_id = self.config.get('camera_id', 0)
        self.width = self.config.get('video_width', 1280)
        self.height = self.config.get('video_height', 720)
        self.fps = self.config.get('video_fps', 30)
        self.video_file: Optional[str] = self.config.get('video_file')

        self.backend_priority = self._resolve_backend_priority(
            self.config.get('camera_backend_priority')
        )
        self.selected_backend: Optional[int] = None
        self.max_init_attempts = self.config.get('camera_init_attempts', 10)
        self.frame_count = 0

    @staticmethod
    def _resolve_backend_priority(user_priority: Optional[List[int]]) -> List[int]:
        """Determine backend priority order based on platform and config."""
        if user_priority:
            return user_priority

        system = platform.system()
        names = {
            'Darwin': ['CAP_AVFOUNDATION'],
            'Windows': ['CAP_DSHOW', 'CAP_MSMF'],
        }.get(system, ['CAP_V4L2', 'CAP_GSTREAMER'])
        names.append('CAP_ANY')

        backends = [getattr(cv2, name) for name in names if getattr(cv2, name, None) is not None]
        return backends or [cv2.CAP_ANY]

    @staticmethod
    def _backend_name(backend: Optional[int]) -> str:
        """Return human-readable name for backend constant."""
        if backend is None:
            return "Unknown"
        for attr in dir(cv2):
            if attr.startswith("CAP_") and getattr(cv2, attr) == backend:
                return attr
        return f"Backend({backend})"

    def initialize(self) -> bool:
        """Open the video file or the first camera backend that delivers frames.

        Returns:
            bool: True if initialization successful, False otherwise
        """
        self.cleanup()
        if self.video_file:
            return self.load_video_file(self.video_file)

        for backend in self.backend_priority:
            cap = self._open_camera(backend)
            if cap is None:
                continue
            self.cap = cap
            self.selected_backend = backend
            self.logger.info(
                "Camera %s ready on %s at %sx%s",
                self.camera_id,
                self._backend_name(backend),
                int(cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
                int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
            )
            return True

        self.logger.error(
            "No backend could open camera %s (tried %s)",
            self.camera_id,
            ", ".join(self._backend_name(b) for b in self.backend_priority),
        )
        return False

    def _open_camera(self, backend: int) -> Optional[cv2.VideoCapture]:
        """Open the camera on one backend; None unless it delivers frames."""
        name = self._backend_name(backend)
        cap = cv2.VideoCapture(self.camera_id, backend)
        if not cap.isOpened():
            self.logger.warning("Camera %s did not open with %s", self.camera_id, name)
            cap.release()
            return None

        for prop, value in (
            (cv2.CAP_PROP_FRAME_WIDTH, self.width),
            (cv2.CAP_PROP_FRAME_HEIGHT, self.height),
            (cv2.CAP_PROP_FPS, self.fps),
        ):
            cap.set(prop, value)

        if self._warmup_camera(cap) is None:
            self.logger.warning("Camera opened with %s but delivered no frames", name)
            cap.release()
            return None
        return cap

    def _warmup_camera(self, cap: cv2.VideoCapture) -> Optional[np.ndarray]:
        """Read until the camera delivers a non-black frame."""
        for attempt in range(1, self.max_init_attempts + 1):
            ret, frame = cap.read()
            if ret and frame is not None and frame.size > 0:
                if frame.mean() == 0:
                    self.logger.debug("Warmup frame %s is black; retrying", attempt)
                    continue
                return frame
        return None

    def load_video_file(self, filepath: str) -> bool:
        """Use a recorded video instead of a camera."""
        self.cap = cv2.VideoCapture(filepath)
        if not self.cap.isOpened():
            self.logger.error("Failed to open video file: %s", filepath)
            self.cap = None
            return False
        self.logger.info("Video file loaded: %s", filepath)
        return True

    def capture_frame(self) -> Optional[np.ndarray]:
        """Capture a frame from the video source.

        Returns:
            np.ndarray or None: Captured frame or None if failed
        """
        if self.cap is None or not self.cap.isOpened():
            return None
        ret, frame = self.cap.read()
        if not ret:
            return None
        self.frame_count += 1
        return frame

    def frames(self, max_frames: Optional[int] = None) -> Iterator[np.ndarray]:
        """Yield frames until the source ends or ``max_frames`` is reached."""
        started = time.monotonic()
        yielded = 0
        while max_frames is None or yielded < max_frames:
            frame = self.capture_frame()
            if frame is None:
                break
            yielded += 1
            yield frame
        elapsed = time.monotonic() - started
        self.logger.debug("Frame source yielded %d frames in %.1fs", yielded, elapsed)

    def cleanup(self):
        """Release the capture device."""
        if self.cap is not None:
            self.cap.release()
            self.cap = None
            self.logger.info("Video source released")

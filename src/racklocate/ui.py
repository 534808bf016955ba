"""
User interface module.

OpenCV window and keyboard handling for the calibrate and locate commands.
"""

import logging
from typing import Optional

import cv2

KEY_ACTIONS = {
    ord('q'): 'quit',
    27: 'quit',  # ESC
    ord('s'): 'save',
    ord('r'): 'reset',
    ord('m'): 'toggle_markers',
    ord('h'): 'help',
}


class UserInterface:
    """Display window and key handling using OpenCV."""

    def __init__(self, config=None, title="RackLocate"):
        """Initialize user interface.

        Args:
            config: Configuration dictionary
            title: Window title
        """
        self.config = config or {}
        self.logger = logging.getLogger(__name__)
        self.window_name = title
        self.display_width = self.config.get('display_width', 1280)
        self.display_height = self.config.get('display_height', 720)
        self.show_markers = self.config.get('show_markers', True)

    def initialize(self):
        """Create the display window.

        Returns:
            bool: True if initialization successful, False otherwise
        """
        try:
            cv2.namedWindow(self.window_name, cv2.WINDOW_NORMAL)
            cv2.resizeWindow(self.window_name, self.display_width, self.display_height)
        except cv2.error as e:
            self.logger.error("UI initialization failed: %s", e)
            return False
        self.logger.info("UI initialized: %sx%s", self.display_width, self.display_height)
        return True

    def display_frame(self, frame):
        """Show a frame in the window."""
        if frame is not None:
            cv2.imshow(self.window_name, frame)

    def poll_action(self) -> Optional[str]:
        """Return the action bound to the pressed key, if any."""
        key = cv2.waitKey(1) & 0xFF
        action = KEY_ACTIONS.get(key)
        if action == 'toggle_markers':
            self.show_markers = not self.show_markers
            self.logger.info("Marker display: %s", self.show_markers)
        elif action == 'help':
            self._print_help()
        return action

    def _print_help(self):
        """Print help information to console."""
        print(
            """
        RackLocate Controls:
        ====================
        s       - Save calibration (calibrate)
        r       - Reset smoothing (locate)
        m       - Toggle marker display
        q / ESC - Quit
        h       - Show this help
        """
        )

    def cleanup(self):
        """Close all windows."""
        cv2.destroyAllWindows()
        self.logger.info("UI cleaned up")

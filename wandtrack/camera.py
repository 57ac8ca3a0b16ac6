"""Thin wrapper around ``cv2.VideoCapture`` delivering mirrored RGB frames."""

import logging

import cv2
import numpy as np

from .config import CAMERA_INDEX, WIDTH, HEIGHT
from .errors import CameraError

logger = logging.getLogger(__name__)


class Camera:
    def __init__(self, index: int = CAMERA_INDEX, width: int = WIDTH, height: int = HEIGHT,
                 mirror: bool = True):
        self.index = index
        self.width = width
        self.height = height
        self.mirror = mirror
        self._cap: cv2.VideoCapture | None = None

    @property
    def is_open(self) -> bool:
        return self._cap is not None and self._cap.isOpened()

    def open(self):
        """Open the device.  Calling again while open is a no-op."""
        if self.is_open:
            return
        cap = cv2.VideoCapture(self.index)
        if not cap.isOpened():
            cap.release()
            raise CameraError(f"Could not open camera {self.index} (missing device or permission denied)")
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        self._cap = cap
        logger.info("Camera %d opened at %dx%d", self.index, self.width, self.height)

    def read(self) -> np.ndarray | None:
        """Next frame as RGB, or ``None`` when the device delivered nothing."""
        if self._cap is None:
            return None
        ret, frame = self._cap.read()
        if not ret or frame is None:
            return None
        if self.mirror:
            frame = cv2.flip(frame, 1)
        return cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)

    def release(self):
        if self._cap is not None:
            self._cap.release()
            self._cap = None
            logger.info("Camera %d released", self.index)

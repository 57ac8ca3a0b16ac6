"""Frame-driven orchestrator: camera -> throttle -> calibrate -> track.

``VisionTuner`` owns one :class:`CalibrationManager` and one
:class:`BallTrackerEngine` and publishes their results once per processed
frame.  It is single-threaded; call :meth:`VisionTuner.update` from the host
loop.  Calibrated balls and the hue tolerance survive restarts through a
:class:`~wandtrack.storage.KeyValueStore`.
"""

import logging
import time

import cv2
import numpy as np

from .ball_tracker import BallTrackerEngine, TrackedBall
from .calibration import CalibratedBall, CalibrationManager
from .camera import Camera
from .config import (
    FRAME_INTERVAL_S,
    MAX_BALLS,
    DEFAULT_HUE_TOLERANCE,
    STORE_KEY_HUE_TOLERANCE,
    STORE_KEY_BALLS,
    STORED_HUE_TOLERANCE_MAX,
)
from .errors import VisionRuntimeError
from .ranges import ColorRange
from .storage import (
    KeyValueStore,
    MemoryStore,
    serialize_balls,
    parse_saved_balls,
    parse_hue_tolerance,
)

logger = logging.getLogger(__name__)


class FrameGate:
    """Caps processing to one frame per ``interval_s`` and converts to HSV."""

    def __init__(self, interval_s: float = FRAME_INTERVAL_S, clock=time.monotonic):
        self.interval_s = interval_s
        self._clock = clock
        self._last: float | None = None

    def should_process(self) -> bool:
        now = self._clock()
        if self._last is not None and now - self._last < self.interval_s:
            return False
        self._last = now
        return True

    def reset(self):
        self._last = None

    @staticmethod
    def to_hsv(frame: np.ndarray) -> np.ndarray:
        """RGB or RGBA frame -> OpenCV HSV (H 0-179)."""
        if frame.ndim == 3 and frame.shape[2] == 4:
            frame = cv2.cvtColor(frame, cv2.COLOR_RGBA2RGB)
        return cv2.cvtColor(frame, cv2.COLOR_RGB2HSV)


class VisionTuner:
    def __init__(
        self,
        store: KeyValueStore | None = None,
        camera: Camera | None = None,
        max_balls: int = MAX_BALLS,
        frame_interval: float = FRAME_INTERVAL_S,
        clock=time.monotonic,
    ):
        self.store = store if store is not None else MemoryStore()
        self.camera = camera if camera is not None else Camera()
        self.gate = FrameGate(frame_interval, clock)
        self.tracker = BallTrackerEngine()

        hue_tolerance = parse_hue_tolerance(self.store.get(STORE_KEY_HUE_TOLERANCE))
        self.calibration = CalibrationManager(
            max_balls=max_balls,
            hue_tolerance=hue_tolerance if hue_tolerance is not None else DEFAULT_HUE_TOLERANCE,
        )
        saved = parse_saved_balls(self.store.get(STORE_KEY_BALLS))
        if saved:
            self.calibration.load_saved_balls(saved)
            logger.info("Restored %d calibrated ball(s)", len(self.calibration.get_balls()))

        self._camera_started = False
        self.tracked_balls: list[TrackedBall] = []
        self.last_frame: np.ndarray | None = None
        self.last_calibrated: CalibratedBall | None = None
        self.primary_x: float | None = None
        self.primary_y: float | None = None
        self.primary_radius: float | None = None
        self.primary_params: ColorRange | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def when_ready(self, timeout: float | None = None) -> bool:
        """Check that the OpenCV runtime is usable.

        OpenCV is loaded at import time so there is nothing to wait for;
        ``timeout`` is accepted for hosts that poll with a deadline.
        """
        try:
            probe = np.zeros((2, 2, 3), dtype=np.uint8)
            cv2.cvtColor(probe, cv2.COLOR_RGB2HSV)
        except cv2.error as e:
            raise VisionRuntimeError(f"OpenCV runtime unusable: {e}") from e
        return True

    @property
    def camera_started(self) -> bool:
        return self._camera_started

    def start_camera(self):
        if self._camera_started:
            return
        self.camera.open()
        self._camera_started = True
        self.gate.reset()

    def stop_camera(self):
        if not self._camera_started:
            return
        self.camera.release()
        self._camera_started = False

    # ------------------------------------------------------------------
    # Per-frame pipeline
    # ------------------------------------------------------------------
    def update(self) -> bool:
        """Process one camera frame if due; ``True`` when one was processed."""
        if not self._camera_started:
            return False
        if not self.gate.should_process():
            return False
        frame = self.camera.read()
        if frame is None:
            return False
        self.process_frame(frame)
        return True

    def process_frame(self, frame: np.ndarray) -> list[TrackedBall]:
        """Run calibration and tracking on one RGB(A) frame, bypassing the gate."""
        self.last_frame = frame
        hsv = FrameGate.to_hsv(frame)

        ball = self.calibration.process_frame(hsv)
        self.last_calibrated = ball
        if ball is not None:
            self._persist_balls()

        self.tracked_balls = self.tracker.track_balls(hsv, self.calibration.get_balls())
        self._publish_primary()
        return self.get_tracked_balls()

    def _publish_primary(self):
        primary = next((b for b in self.tracked_balls if b.found), None)
        if primary is None:
            self.primary_x = self.primary_y = self.primary_radius = None
            self.primary_params = None
            return
        self.primary_x = primary.x
        self.primary_y = primary.y
        self.primary_radius = primary.radius
        self.primary_params = primary.params.copy()

    # ------------------------------------------------------------------
    # Read API
    # ------------------------------------------------------------------
    def get_tracked_balls(self) -> list[TrackedBall]:
        return [b.copy() for b in self.tracked_balls]

    def get_balls(self) -> list[CalibratedBall]:
        return self.calibration.get_balls()

    @property
    def debug_mask(self) -> np.ndarray | None:
        return self.tracker.mask

    def calibration_progress(self) -> float:
        return self.calibration.calibration_progress()

    # ------------------------------------------------------------------
    # Mutations (each one persists)
    # ------------------------------------------------------------------
    def clear_balls(self):
        self.calibration.clear_balls()
        self.tracked_balls = []
        self._publish_primary()
        self._persist_balls()

    def get_hue_tolerance(self) -> int:
        return self.calibration.get_hue_tolerance()

    def set_hue_tolerance(self, degrees: float):
        self.calibration.set_hue_tolerance(degrees)
        tolerance = self.calibration.get_hue_tolerance()
        if tolerance > STORED_HUE_TOLERANCE_MAX:
            logger.warning(
                "Hue tolerance %d is above the reloadable maximum %d; "
                "it will revert to the default on restart",
                tolerance, STORED_HUE_TOLERANCE_MAX,
            )
        self.store.set(STORE_KEY_HUE_TOLERANCE, str(tolerance))
        self._persist_balls()

    def add_manual_ball(self, params: ColorRange) -> CalibratedBall:
        ball = self.calibration.add_manual_ball(params)
        self._persist_balls()
        return ball

    def update_manual_ball(self, ball_id: int, params: ColorRange) -> CalibratedBall | None:
        ball = self.calibration.update_ball(ball_id, params)
        if ball is not None:
            self._persist_balls()
        return ball

    def remove_ball(self, ball_id: int) -> bool:
        removed = self.calibration.remove_ball(ball_id)
        if removed:
            self.tracked_balls = [b for b in self.tracked_balls if b.id != ball_id]
            self._publish_primary()
            self._persist_balls()
        return removed

    def _persist_balls(self):
        self.store.set(STORE_KEY_BALLS, serialize_balls(self.calibration.get_balls()))

"""Webcam colour-wand calibration and tracking."""

from .ball_tracker import BallTrackerEngine, BlobResult, TrackedBall
from .calibration import CalibratedBall, CalibrationManager
from .camera import Camera
from .errors import CameraError, VisionRuntimeError, WandTrackError
from .ranges import ColorRange
from .storage import JsonFileStore, MemoryStore
from .trails import Spell, WandTrails, spell_for_gesture
from .vision import FrameGate, VisionTuner

__version__ = "0.1.0"

"""Exceptions raised across the wandtrack package."""


class WandTrackError(Exception):
    """Base class for wandtrack failures the host UI should report."""


class CameraError(WandTrackError):
    """The camera could not be opened (missing device or permission denied)."""


class VisionRuntimeError(WandTrackError):
    """The OpenCV runtime is not usable in this process."""

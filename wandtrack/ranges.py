"""HSV colour-range model and circular hue arithmetic.

Hue is an angle: OpenCV stores it as 0-179 (two degrees per unit), so 179 and
0 are neighbours.  Everything in here that averages or compares hues does it
on the circle, never linearly.

A :class:`ColorRange` whose ``wrap_hue`` flag is set describes the interval
``[h_min..179] U [0..h_max]`` (``h_min > h_max``).  ``range_mask`` matches such
ranges as the union of the two sub-ranges because ``cv2.inRange`` compares
each channel independently and matches nothing when ``low > high``.
"""

import math
from dataclasses import dataclass, asdict

import cv2
import numpy as np

from .config import HUE_RANGE, CHANNEL_MAX


@dataclass
class ColorRange:
    """Rectangular box in HSV space (hue may wrap across the 179/0 seam)."""
    h_min: int
    h_max: int
    s_min: int
    s_max: int
    v_min: int
    v_max: int
    wrap_hue: bool = False

    def copy(self) -> "ColorRange":
        return ColorRange(**asdict(self))

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ColorRange":
        """Build from a stored dict.  Raises on missing or non-numeric bounds."""
        return cls(
            h_min=float(data["h_min"]),
            h_max=float(data["h_max"]),
            s_min=float(data.get("s_min", 0)),
            s_max=float(data.get("s_max", CHANNEL_MAX)),
            v_min=float(data.get("v_min", 0)),
            v_max=float(data.get("v_max", CHANNEL_MAX)),
            wrap_hue=bool(data.get("wrap_hue", False)),
        )


# ---------------------------------------------------------------------------
# Scalar helpers
# ---------------------------------------------------------------------------
def clamp(value, lo, hi):
    return min(hi, max(lo, value))


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def normalize_hue(h):
    """Map any hue onto ``[0, 180)``."""
    h = h % HUE_RANGE
    # Tiny negative floats round up to exactly HUE_RANGE
    return 0 if h >= HUE_RANGE else h


def hue_distance(a: float, b: float) -> float:
    """Shortest distance between two hues around the circle (0-90)."""
    diff = abs(a - b) % HUE_RANGE
    return min(diff, HUE_RANGE - diff)


def signed_hue_delta(reference: float, value: float) -> float:
    """``value - reference`` folded into ``(-90, 90]``."""
    delta = value - reference
    half = HUE_RANGE / 2
    if delta > half:
        delta -= HUE_RANGE
    if delta < -half:
        delta += HUE_RANGE
    return delta


def _hue_to_radians(hues):
    return np.asarray(hues, dtype=float) * (2.0 * math.pi / HUE_RANGE)


def circular_mean_hue(hues) -> float:
    """Circular mean of hue values (unit-vector sum, then ``atan2``)."""
    rad = _hue_to_radians(hues)
    x = float(np.sum(np.cos(rad)))
    y = float(np.sum(np.sin(rad)))
    return float(normalize_hue(math.atan2(y, x) * HUE_RANGE / (2.0 * math.pi)))


# ---------------------------------------------------------------------------
# Range construction
# ---------------------------------------------------------------------------
def build_hue_bounds(center_hue: float, tolerance: float) -> tuple[int, int, bool]:
    """Return ``(h_min, h_max, wrap_hue)`` for ``center_hue +/- tolerance``."""
    return hue_bounds_for_interval(center_hue - tolerance, center_hue + tolerance)


def hue_bounds_for_interval(lower: float, upper: float) -> tuple[int, int, bool]:
    """Integer hue bounds for the unnormalised interval ``[lower, upper]``.

    Every hue interval the engine derives goes through here so the wrap
    convention is decided in exactly one place.
    """
    # Spans the whole circle; folding the ends would give the complement
    if upper - lower >= HUE_RANGE - 1:
        return 0, HUE_RANGE - 1, False

    if lower < 0 or upper >= HUE_RANGE:
        h_min = int(normalize_hue(math.floor(lower)))
        h_max = int(normalize_hue(math.ceil(upper)))
        if h_min == h_max:
            h_max = (h_max + 1) % HUE_RANGE
        return h_min, h_max, True

    h_min = clamp(math.floor(lower), 0, HUE_RANGE - 1)
    h_max = clamp(math.ceil(upper), 0, HUE_RANGE - 1)
    if h_max <= h_min:
        h_max = min(HUE_RANGE - 1, h_min + 4)
        h_min = min(h_min, h_max - 1)
    return h_min, h_max, False


def _sanitize_linear(lo: float, hi: float) -> tuple[int, int]:
    lo = clamp(round_half_up(lo), 0, CHANNEL_MAX)
    hi = clamp(round_half_up(hi), 0, CHANNEL_MAX)
    if lo > hi:
        lo, hi = hi, lo
    if lo == hi:
        if hi < CHANNEL_MAX:
            hi += 1
        else:
            lo -= 1
    return lo, hi


def sanitize_params(params: ColorRange) -> ColorRange:
    """Round, clamp and repair a range so it satisfies the wrap convention.

    The result always has ``s_min < s_max``, ``v_min < v_max`` and either
    ``h_min < h_max`` (not wrapped) or ``h_min > h_max`` (wrapped).
    """
    raw_h_min = float(params.h_min)
    raw_h_max = float(params.h_max)
    wrap_hue = bool(params.wrap_hue) or raw_h_min > raw_h_max

    if wrap_hue:
        h_min = int(normalize_hue(round_half_up(raw_h_min)))
        h_max = int(normalize_hue(round_half_up(raw_h_max)))
        if h_min == h_max:
            h_max = (h_max + 1) % HUE_RANGE
        wrap_hue = h_min > h_max
    else:
        h_min = clamp(round_half_up(raw_h_min), 0, HUE_RANGE - 1)
        h_max = clamp(round_half_up(raw_h_max), 0, HUE_RANGE - 1)
        if h_min == h_max:
            if h_max < HUE_RANGE - 1:
                h_max += 1
            else:
                h_min -= 1

    s_min, s_max = _sanitize_linear(params.s_min, params.s_max)
    v_min, v_max = _sanitize_linear(params.v_min, params.v_max)
    return ColorRange(h_min, h_max, s_min, s_max, v_min, v_max, wrap_hue)


def resolve_center_hue(params: ColorRange) -> float:
    """Centre hue of a range; wrapped ranges use a span-weighted circular mean."""
    if params.wrap_hue and params.h_min > params.h_max:
        high_span = HUE_RANGE - params.h_min
        low_span = params.h_max
        high_rad = _hue_to_radians(normalize_hue(params.h_min + high_span / 2))
        low_rad = _hue_to_radians(normalize_hue(low_span / 2))

        hx = math.cos(high_rad) * high_span + math.cos(low_rad) * low_span
        hy = math.sin(high_rad) * high_span + math.sin(low_rad) * low_span
        if hx == 0 and hy == 0:
            return float(normalize_hue(params.h_min))
        return float(normalize_hue(math.atan2(hy, hx) * HUE_RANGE / (2.0 * math.pi)))

    return float(normalize_hue((params.h_min + params.h_max) / 2))


def expand_or_fallback(lo: int, hi: int, fallback: tuple[int, int], min_span: int = 16) -> tuple[int, int]:
    """Widen a too-narrow linear span around its midpoint, or use ``fallback``."""
    if hi - lo < min_span:
        mid = (hi + lo) / 2
        lo = math.floor(mid - min_span / 2)
        hi = math.ceil(mid + min_span / 2)
    if lo >= hi:
        return fallback[0], fallback[1]
    return clamp(lo, 0, CHANNEL_MAX), clamp(hi, 0, CHANNEL_MAX)


# ---------------------------------------------------------------------------
# Thresholding
# ---------------------------------------------------------------------------
def range_mask(hsv: np.ndarray, params: ColorRange) -> np.ndarray:
    """Binary mask (0/255) of pixels inside ``params``, wrap-aware."""
    if params.wrap_hue and params.h_min > params.h_max:
        upper_part = cv2.inRange(
            hsv,
            np.array([params.h_min, params.s_min, params.v_min], dtype=np.uint8),
            np.array([HUE_RANGE - 1, params.s_max, params.v_max], dtype=np.uint8),
        )
        lower_part = cv2.inRange(
            hsv,
            np.array([0, params.s_min, params.v_min], dtype=np.uint8),
            np.array([params.h_max, params.s_max, params.v_max], dtype=np.uint8),
        )
        return cv2.bitwise_or(upper_part, lower_part)

    lower = np.array([params.h_min, params.s_min, params.v_min], dtype=np.uint8)
    upper = np.array([params.h_max, params.s_max, params.v_max], dtype=np.uint8)
    return cv2.inRange(hsv, lower, upper)

"""Auto-calibration: learn a wand colour from a steadily presented object.

The user holds the wand (or any solid-coloured object) close to the lens so
it fills the view.  Each frame a 3x3 grid of probes is sampled; when every
probe agrees on hue and saturation for an unbroken run of frames, the
samples are folded into a :class:`ColorRange` and registered as a ball.
"""

import logging
import math
from dataclasses import dataclass, field

import numpy as np

from .config import (
    MAX_BALLS,
    RECALIBRATE_HUE_DISTANCE,
    DEFAULT_HUE_TOLERANCE,
    HUE_TOLERANCE_MIN,
    HUE_TOLERANCE_MAX,
    PROBE_POSITIONS,
    PROBE_NEIGHBOR_RADIUS,
    CALIB_MIN_VALUE,
    CALIB_HUE_UNIFORM_TOL,
    CALIB_SAT_UNIFORM_TOL,
    CALIB_REQUIRED_FRAMES,
    CALIB_HUE_MARGIN_MIN,
    CALIB_HUE_MARGIN_SPREAD,
    CALIB_SAT_MARGIN,
    CALIB_VAL_MARGIN,
    CALIB_MIN_SPAN,
    DEFAULT_SAT_RANGE,
    DEFAULT_VAL_RANGE,
    CHANNEL_MAX,
)
from .ranges import (
    ColorRange,
    build_hue_bounds,
    circular_mean_hue,
    clamp,
    expand_or_fallback,
    hue_bounds_for_interval,
    hue_distance,
    normalize_hue,
    resolve_center_hue,
    round_half_up,
    sanitize_params,
    signed_hue_delta,
)

logger = logging.getLogger(__name__)


@dataclass
class CalibratedBall:
    id: int
    center_hue: float
    params: ColorRange

    def copy(self) -> "CalibratedBall":
        return CalibratedBall(self.id, self.center_hue, self.params.copy())


@dataclass
class FrameSample:
    """Neighbourhood-averaged probe readings of one uniform frame."""
    hues: list[float] = field(default_factory=list)
    sats: list[float] = field(default_factory=list)
    vals: list[float] = field(default_factory=list)
    mean_hue: float = 0.0
    mean_sat: float = 0.0
    mean_val: float = 0.0


# ---------------------------------------------------------------------------
# Probe sampling
# ---------------------------------------------------------------------------
def sample_probes(hsv: np.ndarray) -> FrameSample | None:
    """Sample every probe; ``None`` when any probe pixel is too dark."""
    height, width = hsv.shape[:2]
    offsets = np.arange(-PROBE_NEIGHBOR_RADIUS, PROBE_NEIGHBOR_RADIUS + 1)
    sample = FrameSample()

    for nx, ny in PROBE_POSITIONS:
        base_x = clamp(round_half_up(width * nx), 0, width - 1)
        base_y = clamp(round_half_up(height * ny), 0, height - 1)
        xs = np.clip(base_x + offsets, 0, width - 1)
        ys = np.clip(base_y + offsets, 0, height - 1)
        window = hsv[np.ix_(ys, xs)].reshape(-1, 3).astype(float)

        if np.any(window[:, 2] < CALIB_MIN_VALUE):
            return None

        sample.hues.append(circular_mean_hue(window[:, 0]))
        sample.sats.append(float(np.mean(window[:, 1])))
        sample.vals.append(float(np.mean(window[:, 2])))

    sample.mean_hue = circular_mean_hue(sample.hues)
    sample.mean_sat = float(np.mean(sample.sats))
    sample.mean_val = float(np.mean(sample.vals))
    return sample


def is_uniform(sample: FrameSample) -> bool:
    for h, s in zip(sample.hues, sample.sats):
        if hue_distance(h, sample.mean_hue) > CALIB_HUE_UNIFORM_TOL:
            return False
        if abs(s - sample.mean_sat) > CALIB_SAT_UNIFORM_TOL:
            return False
    return True


# ---------------------------------------------------------------------------
# Calibration manager
# ---------------------------------------------------------------------------
class CalibrationManager:
    """Owns the calibrated balls and the uniform-frame accumulator."""

    def __init__(self, max_balls: int = MAX_BALLS, hue_tolerance: int = DEFAULT_HUE_TOLERANCE):
        self.max_balls = max(1, int(max_balls))
        self._hue_tolerance = clamp(round_half_up(hue_tolerance), HUE_TOLERANCE_MIN, HUE_TOLERANCE_MAX)
        self._balls: list[CalibratedBall] = []
        self._uniform_frames: list[FrameSample] = []
        self._next_ball_id = 1
        self._replace_index = 0

    # ------------------------------------------------------------------
    # Per-frame entry point
    # ------------------------------------------------------------------
    def process_frame(self, hsv: np.ndarray) -> CalibratedBall | None:
        """Feed one HSV frame; returns the ball registered on commit."""
        sample = sample_probes(hsv)
        if sample is None or not is_uniform(sample):
            if self._uniform_frames:
                logger.debug(
                    "Uniform run broken after %d frame(s) (%s)",
                    len(self._uniform_frames),
                    "too dark" if sample is None else "non-uniform",
                )
                self.reset_accumulator()
            return None

        self._uniform_frames.append(sample)
        if len(self._uniform_frames) < CALIB_REQUIRED_FRAMES:
            return None

        ball = self._register_ball_from_frames(self._uniform_frames)
        self.reset_accumulator()
        return ball.copy()

    @property
    def uniform_frame_count(self) -> int:
        return len(self._uniform_frames)

    def calibration_progress(self) -> float:
        return min(len(self._uniform_frames) / CALIB_REQUIRED_FRAMES, 1.0)

    def reset_accumulator(self):
        self._uniform_frames = []

    # ------------------------------------------------------------------
    # Ball registry
    # ------------------------------------------------------------------
    def get_balls(self) -> list[CalibratedBall]:
        return [ball.copy() for ball in self._balls]

    def clear_balls(self):
        self._balls = []
        self._next_ball_id = 1
        self._replace_index = 0
        self.reset_accumulator()

    def load_saved_balls(self, saved: list[CalibratedBall]):
        """Replace the registry with previously persisted balls."""
        limited = list(saved)[:self.max_balls]
        self._balls = [
            CalibratedBall(
                id=int(ball.id),
                center_hue=float(normalize_hue(ball.center_hue)),
                params=sanitize_params(ball.params),
            )
            for ball in limited
        ]
        highest_id = max((ball.id for ball in self._balls), default=0)
        self._next_ball_id = highest_id + 1 if highest_id > 0 else 1
        self._replace_index = len(self._balls) % self.max_balls

    def add_manual_ball(self, params: ColorRange) -> CalibratedBall:
        prepared = sanitize_params(params)
        ball = CalibratedBall(
            id=self._take_id(),
            center_hue=resolve_center_hue(prepared),
            params=prepared,
        )
        self._store_new_ball(ball)
        return ball.copy()

    def update_ball(self, ball_id: int, params: ColorRange) -> CalibratedBall | None:
        ball = self._find(ball_id)
        if ball is None:
            return None
        ball.params = sanitize_params(params)
        ball.center_hue = resolve_center_hue(ball.params)
        return ball.copy()

    def remove_ball(self, ball_id: int) -> bool:
        ball = self._find(ball_id)
        if ball is None:
            return False
        self._balls.remove(ball)
        if self._replace_index >= len(self._balls):
            self._replace_index = 0
        return True

    # ------------------------------------------------------------------
    # Hue tolerance
    # ------------------------------------------------------------------
    def get_hue_tolerance(self) -> int:
        return self._hue_tolerance

    def set_hue_tolerance(self, degrees: float):
        """Set the tolerance and rebuild every ball's hue bounds from its centre."""
        self._hue_tolerance = clamp(round_half_up(degrees), HUE_TOLERANCE_MIN, HUE_TOLERANCE_MAX)
        for ball in self._balls:
            h_min, h_max, wrap_hue = build_hue_bounds(ball.center_hue, self._hue_tolerance)
            p = ball.params
            ball.params = sanitize_params(
                ColorRange(h_min, h_max, p.s_min, p.s_max, p.v_min, p.v_max, wrap_hue)
            )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _find(self, ball_id: int) -> CalibratedBall | None:
        for ball in self._balls:
            if ball.id == ball_id:
                return ball
        return None

    def _take_id(self) -> int:
        ball_id = self._next_ball_id
        self._next_ball_id += 1
        return ball_id

    def _store_new_ball(self, ball: CalibratedBall):
        if len(self._balls) < self.max_balls:
            self._balls.append(ball)
            return
        replaced = self._balls[self._replace_index]
        logger.info("Ball registry full: ball %d replaces ball %d", ball.id, replaced.id)
        self._balls[self._replace_index] = ball
        self._replace_index = (self._replace_index + 1) % self.max_balls

    def _register_ball_from_frames(self, frames: list[FrameSample]) -> CalibratedBall:
        center_hue, params = self.build_aggregate_params(frames)

        for existing in self._balls:
            if hue_distance(existing.center_hue, center_hue) <= RECALIBRATE_HUE_DISTANCE:
                existing.center_hue = center_hue
                existing.params = params
                logger.info("Recalibrated ball %d at hue %.1f", existing.id, center_hue)
                return existing

        ball = CalibratedBall(id=self._take_id(), center_hue=center_hue, params=params)
        self._store_new_ball(ball)
        logger.info(
            "Calibrated ball %d at hue %.1f (H %d-%d%s, S %d-%d, V %d-%d)",
            ball.id, center_hue, params.h_min, params.h_max,
            " wrapped" if params.wrap_hue else "",
            params.s_min, params.s_max, params.v_min, params.v_max,
        )
        return ball

    def build_aggregate_params(self, frames: list[FrameSample]) -> tuple[float, ColorRange]:
        """Fold every probe sample of ``frames`` into ``(center_hue, range)``."""
        hue_values = [h for frame in frames for h in frame.hues]
        sat_values = [s for frame in frames for s in frame.sats]
        val_values = [v for frame in frames for v in frame.vals]

        if not hue_values:
            fallback_hue = float(normalize_hue(frames[-1].mean_hue)) if frames else 0.0
            h_min, h_max, wrap_hue = build_hue_bounds(fallback_hue, self._hue_tolerance)
            params = ColorRange(h_min, h_max, *DEFAULT_SAT_RANGE, *DEFAULT_VAL_RANGE, wrap_hue)
            return fallback_hue, sanitize_params(params)

        center_hue = circular_mean_hue(hue_values)
        hue_diffs = [signed_hue_delta(center_hue, h) for h in hue_values]
        min_diff = min(hue_diffs)
        max_diff = max(hue_diffs)
        dynamic_margin = max(CALIB_HUE_MARGIN_MIN, round_half_up((max_diff - min_diff) * CALIB_HUE_MARGIN_SPREAD))

        # Observed spread plus margin, never narrower than the slider tolerance
        raw_lower = min(center_hue + min_diff - dynamic_margin, center_hue - self._hue_tolerance)
        raw_upper = max(center_hue + max_diff + dynamic_margin, center_hue + self._hue_tolerance)
        h_min, h_max, wrap_hue = hue_bounds_for_interval(raw_lower, raw_upper)

        sat_min = clamp(math.floor(min(sat_values)) - CALIB_SAT_MARGIN, 0, CHANNEL_MAX)
        sat_max = clamp(math.ceil(max(sat_values)) + CALIB_SAT_MARGIN, 0, CHANNEL_MAX)
        val_min = clamp(math.floor(min(val_values)) - CALIB_VAL_MARGIN, 0, CHANNEL_MAX)
        val_max = clamp(math.ceil(max(val_values)) + CALIB_VAL_MARGIN, 0, CHANNEL_MAX)

        s_lo, s_hi = expand_or_fallback(sat_min, sat_max, DEFAULT_SAT_RANGE, CALIB_MIN_SPAN)
        v_lo, v_hi = expand_or_fallback(val_min, val_max, DEFAULT_VAL_RANGE, CALIB_MIN_SPAN)

        params = sanitize_params(ColorRange(h_min, h_max, s_lo, s_hi, v_lo, v_hi, wrap_hue))
        return center_hue, params

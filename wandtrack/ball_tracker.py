"""Per-frame blob detector for calibrated wand colours.

Every frame is a fresh detection pass per ball; there is no temporal state
and no cross-ball disambiguation.  Two balls with overlapping colour ranges
may both report the same blob.
"""

import math
from dataclasses import dataclass

import cv2
import numpy as np

from .calibration import CalibratedBall
from .config import (
    MORPH_KERNEL_SIZE,
    MASK_BLUR_KSIZE,
    MIN_CONTOUR_AREA,
    MIN_CIRCULARITY,
    FALLBACK_MIN_COVERAGE,
)
from .ranges import ColorRange, range_mask


@dataclass
class BlobResult:
    x: float
    y: float
    radius: float
    coverage: float
    score: float
    fallback: bool = False


@dataclass
class TrackedBall:
    id: int
    center_hue: float
    params: ColorRange
    x: float | None
    y: float | None
    radius: float | None
    coverage: float

    @property
    def found(self) -> bool:
        return self.x is not None and self.y is not None

    def copy(self) -> "TrackedBall":
        return TrackedBall(
            self.id, self.center_hue, self.params.copy(),
            self.x, self.y, self.radius, self.coverage,
        )


# ---------------------------------------------------------------------------
# Contour helpers
# ---------------------------------------------------------------------------
_KERN = cv2.getStructuringElement(cv2.MORPH_ELLIPSE, (MORPH_KERNEL_SIZE, MORPH_KERNEL_SIZE))


def contour_circularity(c: np.ndarray) -> float:
    """``4*pi*area / perimeter^2``: 1.0 for a disc, toward 0 for slivers."""
    area = cv2.contourArea(c)
    perimeter = cv2.arcLength(c, True)
    if perimeter <= 0:
        return 0.0
    return (4.0 * math.pi * area) / (perimeter * perimeter)


def clean_mask(mask: np.ndarray) -> np.ndarray:
    """Open (speckle removal), dilate (restore edges), blur (soften contour)."""
    mask = cv2.morphologyEx(mask, cv2.MORPH_OPEN, _KERN)
    mask = cv2.dilate(mask, _KERN, iterations=1)
    return cv2.GaussianBlur(mask, (MASK_BLUR_KSIZE, MASK_BLUR_KSIZE), 0)


# ---------------------------------------------------------------------------
# Tracker engine
# ---------------------------------------------------------------------------
class BallTrackerEngine:
    """Finds the best round blob for each calibrated colour range."""

    def __init__(self):
        self._mask: np.ndarray | None = None

    @property
    def mask(self) -> np.ndarray | None:
        """Union of every ball's cleaned mask from the last ``track_balls``."""
        return self._mask

    def track_balls(self, hsv: np.ndarray, balls: list[CalibratedBall]) -> list[TrackedBall]:
        self._mask = np.zeros(hsv.shape[:2], dtype=np.uint8)
        results: list[TrackedBall] = []

        for ball in balls:
            blob, coverage, mask = self._evaluate(hsv, ball.params)
            self._mask = cv2.bitwise_or(self._mask, mask)
            results.append(TrackedBall(
                id=ball.id,
                center_hue=ball.center_hue,
                params=ball.params.copy(),
                x=blob.x if blob else None,
                y=blob.y if blob else None,
                radius=blob.radius if blob else None,
                coverage=coverage,
            ))

        return results

    def evaluate_ball(self, hsv: np.ndarray, params: ColorRange) -> BlobResult | None:
        """Best blob for ``params`` in ``hsv``, or ``None``."""
        blob, _, _ = self._evaluate(hsv, params)
        return blob

    def _evaluate(self, hsv: np.ndarray, params: ColorRange) -> tuple[BlobResult | None, float, np.ndarray]:
        height, width = hsv.shape[:2]
        mask = clean_mask(range_mask(hsv, params))

        coverage = cv2.countNonZero(mask) / float(width * height)
        contours, _ = cv2.findContours(mask, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)

        best: BlobResult | None = None
        for c in contours:
            area = cv2.contourArea(c)
            if area < MIN_CONTOUR_AREA:
                continue
            circularity = contour_circularity(c)
            if circularity < MIN_CIRCULARITY:
                continue
            m = cv2.moments(c)
            if m["m00"] == 0:
                continue

            score = area * circularity
            if best is None or score > best.score:
                best = BlobResult(
                    x=float(m["m10"] / m["m00"]),
                    y=float(m["m01"] / m["m00"]),
                    radius=math.sqrt(area / math.pi),
                    coverage=coverage,
                    score=score,
                )

        # Object fills most of the view (e.g. held against the lens)
        if best is None and coverage > FALLBACK_MIN_COVERAGE:
            best = BlobResult(
                x=width / 2.0,
                y=height / 2.0,
                radius=math.sqrt(coverage * width * height / math.pi),
                coverage=coverage,
                score=coverage,
                fallback=True,
            )

        return best, coverage, mask

"""Per-player wand trails and the spell lookup tables.

Each tracked ball feeds a trail of timestamped points keyed by its ball id.
A separate gesture classifier consumes ready trails and returns a gesture
name; :func:`spell_for_gesture` maps that name to a :class:`Spell`.
"""

import time
from enum import Enum

from .ball_tracker import TrackedBall
from .config import TRAIL_MAX_AGE_S, TRAIL_MIN_POINTS, TRAIL_SETTLE_S


class Spell(Enum):
    NONE = "NONE"
    NULL = "NULL"
    STAR = "STAR"
    TRIANGLE = "TRIANGLE"
    ARROW = "ARROW"


GESTURE_SPELLS = {
    "null": Spell.NULL,
    "five-point star": Spell.STAR,
    "triangle": Spell.TRIANGLE,
    "arrow": Spell.ARROW,
    "arrowhead": Spell.ARROW,
}

SPELL_ASSETS = {
    Spell.NULL: "glyph-null",
    Spell.STAR: "glyph-star",
    Spell.TRIANGLE: "glyph-triangle",
    Spell.ARROW: "glyph-arrow",
    Spell.NONE: "",
}


def spell_for_gesture(name: str | None) -> Spell:
    if not name:
        return Spell.NONE
    return GESTURE_SPELLS.get(name.strip().lower(), Spell.NONE)


class WandTrails:
    """Owns every player's ``(x, y, t)`` points, pruned by age."""

    def __init__(self, max_age_s: float = TRAIL_MAX_AGE_S, clock=time.monotonic):
        self.max_age_s = max_age_s
        self._clock = clock
        self._trails: dict[int, list[tuple[float, float, float]]] = {}

    def add_point(self, player_id: int, x: float, y: float):
        now = self._clock()
        self._trails.setdefault(player_id, []).append((float(x), float(y), now))
        self._prune(player_id, now)

    def feed(self, tracked_balls: list[TrackedBall]):
        """Append the position of every found ball to its own trail."""
        for ball in tracked_balls:
            if ball.found:
                self.add_point(ball.id, ball.x, ball.y)

    def points(self, player_id: int) -> list[tuple[float, float, float]]:
        if player_id not in self._trails:
            return []
        self._prune(player_id, self._clock())
        return list(self._trails[player_id])

    def players(self) -> list[int]:
        return list(self._trails.keys())

    def ready_players(self, min_points: int = TRAIL_MIN_POINTS,
                      settle_s: float = TRAIL_SETTLE_S) -> list[int]:
        """Players whose trail is long enough and has been still for ``settle_s``."""
        now = self._clock()
        ready = []
        for player_id in list(self._trails):
            self._prune(player_id, now)
            pts = self._trails[player_id]
            if len(pts) < min_points:
                continue
            if now - pts[-1][2] < settle_s:
                continue
            ready.append(player_id)
        return ready

    def remove_player(self, player_id: int) -> bool:
        return self._trails.pop(player_id, None) is not None

    def clear(self):
        self._trails.clear()

    def _prune(self, player_id: int, now: float):
        pts = self._trails[player_id]
        cutoff = now - self.max_age_s
        keep_from = 0
        while keep_from < len(pts) and pts[keep_from][2] < cutoff:
            keep_from += 1
        if keep_from:
            del pts[:keep_from]

"""Key-value persistence for remembered balls and the hue tolerance.

Stored values are plain strings; balls are a JSON list of
``{"id", "center_hue", "params"}``.  Anything unreadable is dropped with a
warning and the caller falls back to defaults.
"""

import json
import logging
import math
from pathlib import Path
from typing import Protocol

from .calibration import CalibratedBall
from .config import HUE_TOLERANCE_MIN, STORED_HUE_TOLERANCE_MAX
from .ranges import ColorRange, normalize_hue, sanitize_params

logger = logging.getLogger(__name__)

_DEFAULT_STORE_PATH = Path(__file__).resolve().parent / "wandtrack_store.json"


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...


class MemoryStore:
    """In-process store (tests, headless runs)."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = str(value)


class JsonFileStore:
    """All keys in a single JSON object on disk."""

    def __init__(self, path: Path | str = _DEFAULT_STORE_PATH):
        self.path = Path(path)

    def _read(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable store %s: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring store %s: top level is not an object", self.path)
            return {}
        return data

    def get(self, key: str) -> str | None:
        value = self._read().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = str(value)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            json.dump(data, f, indent=2)


# ---------------------------------------------------------------------------
# Ball / tolerance codecs
# ---------------------------------------------------------------------------
def serialize_balls(balls: list[CalibratedBall]) -> str:
    return json.dumps([
        {"id": ball.id, "center_hue": ball.center_hue, "params": ball.params.to_dict()}
        for ball in balls
    ])


def parse_saved_balls(text: str | None) -> list[CalibratedBall]:
    """Decode stored balls, skipping malformed entries."""
    if not text:
        return []
    try:
        data = json.loads(text)
    except ValueError as e:
        logger.warning("Discarding stored balls: %s", e)
        return []
    if not isinstance(data, list):
        logger.warning("Discarding stored balls: expected a list, got %s", type(data).__name__)
        return []

    balls: list[CalibratedBall] = []
    seen_ids: set[int] = set()
    for entry in data:
        try:
            ball_id = int(entry["id"])
            if ball_id < 1 or ball_id in seen_ids:
                raise ValueError(f"bad id {ball_id}")
            params = sanitize_params(ColorRange.from_dict(entry["params"]))
            raw_hue = float(entry["center_hue"])
            if not math.isfinite(raw_hue):
                raise ValueError(f"non-finite center_hue {raw_hue}")
            center_hue = float(normalize_hue(raw_hue))
        except (KeyError, TypeError, ValueError, OverflowError) as e:
            logger.warning("Discarding stored ball entry %r: %s", entry, e)
            continue
        seen_ids.add(ball_id)
        balls.append(CalibratedBall(ball_id, center_hue, params))
    return balls


def parse_hue_tolerance(text: str | None) -> int | None:
    """Stored tolerance in degrees, or ``None`` when absent or out of range."""
    if text is None:
        return None
    try:
        value = int(text)
    except ValueError:
        logger.warning("Discarding stored hue tolerance %r", text)
        return None
    if not HUE_TOLERANCE_MIN <= value <= STORED_HUE_TOLERANCE_MAX:
        logger.warning("Discarding out-of-range hue tolerance %d", value)
        return None
    return value

#!/usr/bin/env python3
"""Standalone wand calibration and tracking diagnostics tool.

Run:
    wandtrack-calibrate [--camera N] [--store PATH]

Or as a module:
    python -m wandtrack

Hold a solid-coloured object over the lens until the progress bar fills;
the colour is then remembered (up to two wands) and tracked live.

Keyboard controls (active in the main window):
  C       - Clear every calibrated wand
  + / -   - Widen / narrow the hue tolerance
  1 / 2   - Forget wand 1 / wand 2
  S       - Save a snapshot (frame, mask and session report) to disk
  Q / ESC - Quit
"""

import argparse
import json
import threading
import time
from pathlib import Path

import cv2
import numpy as np

from .camera import Camera
from .config import (
    WIDTH, HEIGHT, CAMERA_INDEX,
    PROBE_POSITIONS,
    BALL_DRAW_COLORS,
    CALIBRATED_CHIME_FREQS, CALIBRATED_CHIME_DURATION,
)
from .errors import WandTrackError
from .storage import JsonFileStore
from .trails import WandTrails
from .vision import VisionTuner

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------
_SNAPSHOT_DIR = Path(__file__).resolve().parent / "calibration_reports"
_STORE_PATH = Path(__file__).resolve().parent / "wandtrack_store.json"

_WINDOW = "WandTrack"
_TOLERANCE_STEP = 2

# ---------------------------------------------------------------------------
# Colour constants for drawing (BGR)
# ---------------------------------------------------------------------------
COL_GREEN = (0, 255, 0)
COL_YELLOW = (0, 255, 255)
COL_WHITE = (255, 255, 255)
COL_GRAY = (140, 140, 140)
COL_DARK = (40, 40, 40)
COL_ORANGE = (0, 140, 255)


# ===================================================================
# Session stats: how often each wand was found
# ===================================================================
class SessionStats:
    def __init__(self):
        self.start_time = time.time()
        self.frames = 0
        self.found: dict[int, int] = {}
        self.calibrations: list[dict] = []

    def log_frame(self, tracked):
        self.frames += 1
        for ball in tracked:
            if ball.found:
                self.found[ball.id] = self.found.get(ball.id, 0) + 1

    def log_calibration(self, ball):
        self.calibrations.append({
            "t": round(time.time() - self.start_time, 2),
            "id": ball.id,
            "center_hue": round(ball.center_hue, 2),
            "params": ball.params.to_dict(),
        })

    def aggregate(self) -> dict:
        return {
            "total_frames": self.frames,
            "duration_s": round(time.time() - self.start_time, 2),
            "found_pct": {
                str(ball_id): round(100.0 * n / self.frames, 1) if self.frames else 0.0
                for ball_id, n in self.found.items()
            },
            "calibrations": self.calibrations,
        }

    def save(self, filepath: Path) -> Path:
        filepath.parent.mkdir(parents=True, exist_ok=True)
        with open(filepath, "w") as f:
            json.dump(self.aggregate(), f, indent=2)
        return filepath


# ===================================================================
# Audio cue
# ===================================================================
class Chime:
    """Two-tone beep played when a wand colour is learned."""

    def __init__(self):
        self.ready = False
        try:
            import pygame
            pygame.mixer.init(frequency=44100, size=-16, channels=1, buffer=512)
            self.ready = True
        except (ImportError, RuntimeError) as e:
            print(f"[CalibApp] Audio disabled: {e}")

    def play(self):
        if not self.ready:
            return

        def _play():
            import pygame
            sr = 44100
            duration = CALIBRATED_CHIME_DURATION
            for freq in CALIBRATED_CHIME_FREQS:
                t = np.linspace(0, duration, int(sr * duration), endpoint=False)
                wave = (np.sin(2 * np.pi * freq * t) * 16000).astype(np.int16)
                pygame.mixer.Sound(buffer=wave.tobytes()).play()
                pygame.time.wait(int(duration * 1000))

        threading.Thread(target=_play, daemon=True).start()


# ===================================================================
# Drawing
# ===================================================================
def _draw_probes(vis, progress: float):
    h, w = vis.shape[:2]
    col = COL_GREEN if progress > 0 else COL_GRAY
    for nx, ny in PROBE_POSITIONS:
        cv2.drawMarker(vis, (int(w * nx), int(h * ny)), col, cv2.MARKER_CROSS, 14, 1)


def _draw_progress(vis, progress: float):
    bar_x, bar_y, bar_w = 10, 10, 200
    pct = int(progress * 100)
    cv2.rectangle(vis, (bar_x, bar_y), (bar_x + bar_w, bar_y + 16), COL_DARK, -1)
    fill = int(bar_w * progress)
    if fill > 0:
        cv2.rectangle(vis, (bar_x, bar_y + 1), (bar_x + fill, bar_y + 15), COL_ORANGE, -1)
    cv2.putText(vis, f"Calib {pct}%", (bar_x + 3, bar_y + 13),
                 cv2.FONT_HERSHEY_PLAIN, 0.9, COL_WHITE, 1)


def _draw_tracked(vis, tracked):
    for i, ball in enumerate(tracked):
        color = BALL_DRAW_COLORS[i % len(BALL_DRAW_COLORS)]
        if not ball.found:
            continue
        cx, cy = int(ball.x), int(ball.y)
        cv2.circle(vis, (cx, cy), max(3, int(ball.radius)), color, 3)
        cv2.drawMarker(vis, (cx, cy), color, cv2.MARKER_DIAMOND, 16, 2)
        cv2.putText(vis, f"W{ball.id}", (cx + 8, max(20, cy - 12)),
                     cv2.FONT_HERSHEY_SIMPLEX, 0.55, color, 2)


def _draw_trails(vis, trails: WandTrails, tracked):
    for i, ball in enumerate(tracked):
        color = BALL_DRAW_COLORS[i % len(BALL_DRAW_COLORS)]
        pts = trails.points(ball.id)
        for (x0, y0, _), (x1, y1, _) in zip(pts, pts[1:]):
            cv2.line(vis, (int(x0), int(y0)), (int(x1), int(y1)), color, 2)


def _build_info_panel(tuner: VisionTuner, tracked, frame_w: int):
    panel = np.full((90, frame_w, 3), 25, dtype=np.uint8)
    cv2.putText(panel, f"Hue tolerance: {tuner.get_hue_tolerance()}",
                 (10, 20), cv2.FONT_HERSHEY_SIMPLEX, 0.55, COL_WHITE, 1)

    by_id = {b.id: b for b in tracked}
    balls = tuner.get_balls()
    if not balls:
        cv2.putText(panel, "No wands yet - hold a coloured object over the lens",
                     (10, 50), cv2.FONT_HERSHEY_PLAIN, 1.0, COL_YELLOW, 1)
        return panel

    for i, ball in enumerate(balls):
        p = ball.params
        color = BALL_DRAW_COLORS[i % len(BALL_DRAW_COLORS)]
        tb = by_id.get(ball.id)
        status = "FOUND" if tb is not None and tb.found else "lost"
        cov = tb.coverage * 100 if tb is not None else 0.0
        wrap = " wrap" if p.wrap_hue else ""
        cv2.putText(panel,
                     f"W{ball.id} hue {ball.center_hue:5.1f}  H {p.h_min}-{p.h_max}{wrap}  "
                     f"S {p.s_min}-{p.s_max}  V {p.v_min}-{p.v_max}  {status} cov {cov:.1f}%",
                     (10, 45 + i * 20), cv2.FONT_HERSHEY_PLAIN, 0.9, color, 1)
    return panel


def _compose(tuner: VisionTuner, trails: WandTrails):
    frame_bgr = cv2.cvtColor(tuner.last_frame, cv2.COLOR_RGB2BGR)
    tracked = tuner.get_tracked_balls()
    progress = tuner.calibration_progress()

    vis = frame_bgr.copy()
    _draw_probes(vis, progress)
    _draw_trails(vis, trails, tracked)
    _draw_tracked(vis, tracked)
    _draw_progress(vis, progress)

    h, w = vis.shape[:2]
    mask = tuner.debug_mask
    if mask is not None:
        thumb = cv2.resize(cv2.cvtColor(mask, cv2.COLOR_GRAY2BGR), (w // 4, h // 4))
        vis[h - thumb.shape[0]:h, w - thumb.shape[1]:w] = thumb
        cv2.rectangle(vis, (w - thumb.shape[1], h - thumb.shape[0]), (w - 1, h - 1), COL_GRAY, 1)

    panel = _build_info_panel(tuner, tracked, w)
    return np.vstack([vis, panel])


def _save_snapshot(tuner: VisionTuner, stats: SessionStats, composed) -> Path:
    ts = time.strftime("%Y%m%d_%H%M%S")
    _SNAPSHOT_DIR.mkdir(parents=True, exist_ok=True)
    cv2.imwrite(str(_SNAPSHOT_DIR / f"frame_{ts}.png"), composed)
    if tuner.debug_mask is not None:
        cv2.imwrite(str(_SNAPSHOT_DIR / f"mask_{ts}.png"), tuner.debug_mask)
    return stats.save(_SNAPSHOT_DIR / f"report_{ts}.json")


# ===================================================================
# Main loop
# ===================================================================
def run_calibration(camera_index: int = CAMERA_INDEX, store_path: Path = _STORE_PATH):
    tuner = VisionTuner(
        store=JsonFileStore(store_path),
        camera=Camera(camera_index, WIDTH, HEIGHT),
    )
    tuner.when_ready()
    tuner.start_camera()

    trails = WandTrails()
    stats = SessionStats()
    chime = Chime()
    composed = None

    restored = tuner.get_balls()
    if restored:
        print(f"[CalibApp] Restored {len(restored)} wand(s) from {store_path}")

    cv2.namedWindow(_WINDOW, cv2.WINDOW_NORMAL)

    print("=" * 60)
    print("  WandTrack - Calibration & Diagnostics Tool")
    print("=" * 60)
    print("  C = clear wands   +/- = hue tolerance   1/2 = forget wand")
    print("  S = save snapshot   Q/ESC = quit")
    print("=" * 60)

    try:
        while True:
            if tuner.update():
                tracked = tuner.get_tracked_balls()
                stats.log_frame(tracked)
                trails.feed(tracked)

                ball = tuner.last_calibrated
                if ball is not None:
                    stats.log_calibration(ball)
                    chime.play()
                    print(f"[CalibApp] Wand {ball.id} calibrated at hue {ball.center_hue:.1f}")

                composed = _compose(tuner, trails)
                cv2.imshow(_WINDOW, composed)

            key = cv2.waitKey(1) & 0xFF
            if key == ord("q") or key == 27:
                break
            elif key == ord("c"):
                tuner.clear_balls()
                trails.clear()
                print("[CalibApp] All wands cleared")
            elif key in (ord("+"), ord("=")):
                tuner.set_hue_tolerance(tuner.get_hue_tolerance() + _TOLERANCE_STEP)
                print(f"[CalibApp] Hue tolerance: {tuner.get_hue_tolerance()}")
            elif key in (ord("-"), ord("_")):
                tuner.set_hue_tolerance(tuner.get_hue_tolerance() - _TOLERANCE_STEP)
                print(f"[CalibApp] Hue tolerance: {tuner.get_hue_tolerance()}")
            elif key in (ord("1"), ord("2")):
                slot = key - ord("1")
                balls = tuner.get_balls()
                if slot < len(balls):
                    ball_id = balls[slot].id
                    tuner.remove_ball(ball_id)
                    trails.remove_player(ball_id)
                    print(f"[CalibApp] Wand {ball_id} forgotten")
                else:
                    print(f"[CalibApp] No wand in slot {slot + 1}")
            elif key == ord("s"):
                if composed is None:
                    print("[CalibApp] Nothing to save yet")
                else:
                    saved = _save_snapshot(tuner, stats, composed)
                    print(f"[CalibApp] Snapshot saved: {saved}")
    finally:
        tuner.stop_camera()
        cv2.destroyAllWindows()

    _print_summary(stats.aggregate())


def _print_summary(agg: dict):
    print("\n" + "=" * 60)
    print("  SESSION SUMMARY")
    print("=" * 60)
    print(f"  Total frames: {agg.get('total_frames', 0)}")
    print(f"  Duration: {agg.get('duration_s', 0):.1f}s")
    for ball_id, pct in agg.get("found_pct", {}).items():
        print(f"  Wand {ball_id} found in {pct}% of frames")
    print(f"  Calibrations: {len(agg.get('calibrations', []))}")
    print("=" * 60 + "\n")


def main(argv=None):
    parser = argparse.ArgumentParser(description="Wand colour calibration and tracking diagnostics")
    parser.add_argument("--camera", type=int, default=CAMERA_INDEX, help="camera device index")
    parser.add_argument("--store", type=Path, default=_STORE_PATH,
                        help="JSON file holding calibrated wands")
    args = parser.parse_args(argv)

    try:
        run_calibration(args.camera, args.store)
    except WandTrackError as e:
        print(f"[CalibApp] {e}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

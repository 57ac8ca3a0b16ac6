"""
Unit tests for auto-calibration and the ball registry.

Frames are synthetic HSV images, so every probe reads an exact value and
the expected colour ranges can be worked out by hand.
"""
import unittest

import numpy as np

from wandtrack.calibration import (
    CalibratedBall,
    CalibrationManager,
    FrameSample,
    is_uniform,
    sample_probes,
)
from wandtrack.config import CALIB_HUE_MARGIN_MIN, CALIB_REQUIRED_FRAMES
from wandtrack.ranges import ColorRange, circular_mean_hue, hue_distance, range_mask

W, H = 640, 480


def solid_hsv(hue, sat=200, val=200):
    frame = np.empty((H, W, 3), dtype=np.uint8)
    frame[:, :] = (hue, sat, val)
    return frame


def split_hsv(left_hue, right_hue, split_x=400, sat=200, val=200):
    """Left of ``split_x`` one hue, right of it another (probes at x=128/320/512)."""
    frame = solid_hsv(left_hue, sat, val)
    frame[:, split_x:, 0] = right_hue
    return frame


def noisy_hsv(rng, hue, sat=200, val=200, hue_jitter=2, sv_jitter=5):
    """Per-pixel noise: hue +/- ``hue_jitter``, sat/val +/- ``sv_jitter``."""
    frame = np.empty((H, W, 3), dtype=np.uint8)
    frame[:, :, 0] = hue + rng.integers(-hue_jitter, hue_jitter + 1, size=(H, W))
    frame[:, :, 1] = sat + rng.integers(-sv_jitter, sv_jitter + 1, size=(H, W))
    frame[:, :, 2] = val + rng.integers(-sv_jitter, sv_jitter + 1, size=(H, W))
    return frame


def frame_sample(hues, sats, vals):
    return FrameSample(
        hues=list(hues), sats=list(sats), vals=list(vals),
        mean_hue=circular_mean_hue(hues),
        mean_sat=float(np.mean(sats)), mean_val=float(np.mean(vals)),
    )


class TestProbeSampling(unittest.TestCase):

    def test_uniform_frame(self):
        sample = sample_probes(solid_hsv(60))
        self.assertEqual(len(sample.hues), 9)
        self.assertAlmostEqual(sample.mean_hue, 60.0, places=4)
        self.assertAlmostEqual(sample.mean_sat, 200.0)
        self.assertTrue(is_uniform(sample))

    def test_dark_pixel_rejects_frame(self):
        frame = solid_hsv(60)
        frame[H // 2, W // 2, 2] = 40
        self.assertIsNone(sample_probes(frame))

    def test_mixed_hues_are_not_uniform(self):
        sample = sample_probes(split_hsv(60, 120))
        self.assertFalse(is_uniform(sample))

    def test_seam_hues_are_uniform(self):
        sample = sample_probes(split_hsv(178, 2))
        self.assertTrue(is_uniform(sample))


class TestCalibrationManager(unittest.TestCase):

    def setUp(self):
        self.manager = CalibrationManager()

    def _calibrate(self, frame):
        result = None
        for _ in range(CALIB_REQUIRED_FRAMES):
            result = self.manager.process_frame(frame)
        return result

    def test_end_to_end_green(self):
        frame = solid_hsv(60)
        for _ in range(CALIB_REQUIRED_FRAMES - 1):
            self.assertIsNone(self.manager.process_frame(frame))
        ball = self.manager.process_frame(frame)

        self.assertIsNotNone(ball)
        self.assertEqual(ball.id, 1)
        self.assertLess(hue_distance(ball.center_hue, 60), 1e-3)
        p = ball.params
        self.assertFalse(p.wrap_hue)
        self.assertLessEqual(abs(p.h_min - 48), 1)
        self.assertLessEqual(abs(p.h_max - 72), 1)
        self.assertEqual((p.s_min, p.s_max), (185, 215))
        self.assertEqual((p.v_min, p.v_max), (185, 215))
        self.assertEqual(self.manager.uniform_frame_count, 0)
        self.assertEqual(len(self.manager.get_balls()), 1)

    def test_progress_and_non_uniform_reset(self):
        for _ in range(CALIB_REQUIRED_FRAMES - 1):
            self.manager.process_frame(solid_hsv(60))
        self.assertEqual(self.manager.uniform_frame_count, CALIB_REQUIRED_FRAMES - 1)
        self.assertAlmostEqual(self.manager.calibration_progress(), 0.9)

        self.assertIsNone(self.manager.process_frame(split_hsv(60, 120)))
        self.assertEqual(self.manager.uniform_frame_count, 0)
        self.assertEqual(self.manager.get_balls(), [])

    def test_dark_frame_resets(self):
        for _ in range(5):
            self.manager.process_frame(solid_hsv(60))
        self.manager.process_frame(solid_hsv(60, val=50))
        self.assertEqual(self.manager.uniform_frame_count, 0)

    def test_recalibration_refreshes_same_ball(self):
        first = self._calibrate(solid_hsv(60))
        second = self._calibrate(solid_hsv(64))
        self.assertEqual(first.id, second.id)
        balls = self.manager.get_balls()
        self.assertEqual(len(balls), 1)
        self.assertLess(hue_distance(balls[0].center_hue, 64), 1e-3)

    def test_capacity_round_robin(self):
        self._calibrate(solid_hsv(30))
        self._calibrate(solid_hsv(90))
        self._calibrate(solid_hsv(150))
        self.assertEqual([b.id for b in self.manager.get_balls()], [3, 2])

        self._calibrate(solid_hsv(120))
        self.assertEqual([b.id for b in self.manager.get_balls()], [3, 4])

    def test_calibration_across_seam_wraps(self):
        ball = self._calibrate(split_hsv(178, 2))
        self.assertIsNotNone(ball)
        self.assertTrue(ball.params.wrap_hue)
        self.assertGreater(ball.params.h_min, ball.params.h_max)
        self.assertLess(hue_distance(ball.center_hue, 0), 2)

        pixels = np.zeros((1, 2, 3), dtype=np.uint8)
        pixels[0, :] = [(179, 200, 200), (1, 200, 200)]
        self.assertEqual(range_mask(pixels, ball.params)[0].tolist(), [255, 255])

    def test_returned_ball_is_a_copy(self):
        ball = self._calibrate(solid_hsv(60))
        ball.params.h_min = 0
        self.assertNotEqual(self.manager.get_balls()[0].params.h_min, 0)

    def test_clear_resets_ids(self):
        self._calibrate(solid_hsv(30))
        self._calibrate(solid_hsv(90))
        self.manager.clear_balls()
        self.assertEqual(self.manager.get_balls(), [])
        self.assertEqual(self._calibrate(solid_hsv(60)).id, 1)

    def test_noisy_green_covers_tolerance(self):
        rng = np.random.default_rng(3)
        ball = None
        for _ in range(CALIB_REQUIRED_FRAMES):
            ball = self.manager.process_frame(noisy_hsv(rng, 60))

        self.assertIsNotNone(ball)
        self.assertLess(hue_distance(ball.center_hue, 60), 1)
        p = ball.params
        self.assertFalse(p.wrap_hue)
        self.assertLessEqual(p.h_min, 48)
        self.assertGreaterEqual(p.h_max, 72)
        self.assertLessEqual(p.s_min, 195)
        self.assertGreaterEqual(p.s_max, 205)

    def test_wide_hue_spread_matches_whole_circle(self):
        frames = [solid_hsv(90)] * 6 + [solid_hsv(20)] * 2 + [solid_hsv(160)] * 2
        ball = None
        for frame in frames:
            ball = self.manager.process_frame(frame)

        self.assertIsNotNone(ball)
        self.assertLess(hue_distance(ball.center_hue, 90), 1e-3)
        p = ball.params
        self.assertFalse(p.wrap_hue)
        self.assertEqual((p.h_min, p.h_max), (0, 179))
        pixel = np.array([[[90, 200, 200]]], dtype=np.uint8)
        self.assertEqual(range_mask(pixel, p)[0, 0], 255)


class TestAggregateParams(unittest.TestCase):

    def test_spread_margin_exceeds_floor(self):
        manager = CalibrationManager()
        manager.set_hue_tolerance(4)
        sample = frame_sample(
            [50] * 4 + [60] + [70] * 4,
            [180, 190, 200, 210, 220, 200, 200, 200, 200],
            [200] * 9,
        )
        center, p = manager.build_aggregate_params([sample])

        # 20 units of spread -> margin of 7
        self.assertGreater(7, CALIB_HUE_MARGIN_MIN)
        self.assertLess(hue_distance(center, 60), 1e-6)
        self.assertFalse(p.wrap_hue)
        self.assertIn(p.h_min, (42, 43))
        self.assertIn(p.h_max, (77, 78))
        self.assertEqual((p.s_min, p.s_max), (165, 235))
        self.assertEqual((p.v_min, p.v_max), (185, 215))

    def test_narrow_spread_uses_tolerance(self):
        manager = CalibrationManager()
        sample = frame_sample([59, 60, 61] * 3, [200] * 9, [200] * 9)
        _, p = manager.build_aggregate_params([sample])
        self.assertIn(p.h_min, (47, 48))
        self.assertIn(p.h_max, (72, 73))


class TestManualBalls(unittest.TestCase):

    def setUp(self):
        self.manager = CalibrationManager()

    def test_add_update_remove(self):
        ball = self.manager.add_manual_ball(ColorRange(100, 120, 50, 255, 50, 255))
        self.assertEqual(ball.id, 1)
        self.assertEqual(ball.center_hue, 110)

        updated = self.manager.update_ball(1, ColorRange(170, 10, 50, 255, 50, 255))
        self.assertTrue(updated.params.wrap_hue)
        self.assertLess(hue_distance(updated.center_hue, 0), 1e-6)

        self.assertIsNone(self.manager.update_ball(99, ColorRange(0, 10, 0, 255, 0, 255)))
        self.assertTrue(self.manager.remove_ball(1))
        self.assertFalse(self.manager.remove_ball(1))
        self.assertEqual(self.manager.get_balls(), [])

    def test_manual_add_respects_capacity(self):
        for lo in (10, 50, 90):
            self.manager.add_manual_ball(ColorRange(lo, lo + 20, 50, 255, 50, 255))
        self.assertEqual([b.id for b in self.manager.get_balls()], [3, 2])

    def test_load_saved_balls(self):
        saved = [
            CalibratedBall(5, 20.0, ColorRange(10, 30, 50, 255, 50, 255)),
            CalibratedBall(7, 100.0, ColorRange(90, 110, 50, 255, 50, 255)),
            CalibratedBall(9, 150.0, ColorRange(140, 160, 50, 255, 50, 255)),
        ]
        self.manager.load_saved_balls(saved)
        self.assertEqual([b.id for b in self.manager.get_balls()], [5, 7])

        added = self.manager.add_manual_ball(ColorRange(60, 80, 50, 255, 50, 255))
        self.assertEqual(added.id, 8)
        self.assertEqual([b.id for b in self.manager.get_balls()], [8, 7])


class TestHueTolerance(unittest.TestCase):

    def setUp(self):
        self.manager = CalibrationManager()

    def test_clamped_and_rounded(self):
        self.manager.set_hue_tolerance(100)
        self.assertEqual(self.manager.get_hue_tolerance(), 60)
        self.manager.set_hue_tolerance(2.4)
        self.assertEqual(self.manager.get_hue_tolerance(), 4)
        self.manager.set_hue_tolerance(17.5)
        self.assertEqual(self.manager.get_hue_tolerance(), 18)

    def test_rebuilds_ball_bounds(self):
        self.manager.add_manual_ball(ColorRange(100, 120, 50, 255, 60, 250))
        self.manager.set_hue_tolerance(20)
        p = self.manager.get_balls()[0].params
        self.assertEqual((p.h_min, p.h_max, p.wrap_hue), (90, 130, False))
        self.assertEqual((p.s_min, p.s_max, p.v_min, p.v_max), (50, 255, 60, 250))

    def test_rebuild_near_seam_wraps(self):
        self.manager.add_manual_ball(ColorRange(170, 10, 50, 255, 50, 255))
        self.manager.set_hue_tolerance(10)
        p = self.manager.get_balls()[0].params
        self.assertTrue(p.wrap_hue)
        self.assertIn(p.h_min, (169, 170))
        self.assertEqual(p.h_max, 10)


if __name__ == '__main__':
    unittest.main()

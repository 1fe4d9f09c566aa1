import os
import tempfile
import unittest

import cv2
import numpy as np

from camera import CameraConfig, create_camera
from core.roast import RoastLevel
from detect import create_estimator
from detect.lightness import bean_lightness
from detect.simulated import INDEX_CEIL, INDEX_FLOOR


def _solid_bgr(bgr, size=(40, 60)) -> np.ndarray:
    img = np.zeros((size[0], size[1], 3), dtype=np.uint8)
    img[:, :] = bgr
    return img


class TestCameras(unittest.TestCase):
    def test_capture_outside_session_fails(self):
        cam = create_camera("synthetic", CameraConfig(width=16, height=8, seed=1))
        res = cam.capture_once(1)
        self.assertFalse(res.success)
        self.assertEqual(res.error, "camera_not_started")

    def test_synthetic_frames_darken_over_time(self):
        cam = create_camera("synthetic", CameraConfig(width=32, height=24, seed=3))
        with cam.session():
            self.assertTrue(cam.is_open)
            first = cam.capture_once(1)
            for i in range(2, 60):
                last = cam.capture_once(i)
        self.assertFalse(cam.is_open)
        self.assertEqual(first.image.shape, (24, 32, 3))
        self.assertGreater(float(first.image.mean()), float(last.image.mean()))

    def test_mock_camera_replays_folder_in_order(self):
        with tempfile.TemporaryDirectory() as tmp:
            for name, value in (("b.png", 200), ("a.png", 50)):
                cv2.imwrite(os.path.join(tmp, name), _solid_bgr((value, value, value)))
            cfg = CameraConfig(image_dir=tmp, order="name_asc", end_mode="stop")
            cam = create_camera("mock", cfg)
            with cam.session():
                r1 = cam.capture_once(1)
                r2 = cam.capture_once(2)
                r3 = cam.capture_once(3)
        self.assertEqual(int(r1.image[0, 0, 0]), 50)
        self.assertEqual(int(r2.image[0, 0, 0]), 200)
        self.assertFalse(r3.success)
        self.assertEqual(r3.error, "no_more_images")

    def test_mock_camera_requires_image_dir(self):
        cam = create_camera("mock", CameraConfig(image_dir=""))
        with self.assertRaises(RuntimeError):
            with cam.session():
                pass
        self.assertFalse(cam.is_open)

    def test_unknown_camera_type(self):
        with self.assertRaises(ValueError):
            create_camera("thermal", CameraConfig())


class TestEstimators(unittest.TestCase):
    def test_simulated_readings_stay_in_bounds(self):
        est = create_estimator("simulated", {"seed": 5})
        for _ in range(200):
            r = est.estimate(None, target_index=65)
            self.assertGreaterEqual(r.roast_index, INDEX_FLOOR)
            self.assertLessEqual(r.roast_index, INDEX_CEIL)
            self.assertGreaterEqual(r.confidence, 0.85)
            self.assertLessEqual(r.confidence, 0.95)
            self.assertGreaterEqual(r.temperature, 180)
            self.assertLessEqual(r.temperature, 220)

    def test_simulated_clamps_extreme_targets(self):
        est = create_estimator("simulated", {"seed": 1, "spread": 0})
        self.assertEqual(est.estimate(None, target_index=5).roast_index, INDEX_FLOOR)
        self.assertEqual(est.estimate(None, target_index=99).roast_index, INDEX_CEIL)

    def test_simulated_labels_follow_index_bands(self):
        est = create_estimator("simulated", {"seed": 1, "spread": 0})
        cases = [
            (95, RoastLevel.EXTRA_LIGHT),
            (85, RoastLevel.LIGHT),
            (20, RoastLevel.EXTRA_DARK),
        ]
        for target, expected in cases:
            with self.subTest(target=target):
                self.assertEqual(est.estimate(None, target_index=target).roast_label, expected)

    def test_lightness_orders_light_and_dark_beans(self):
        est = create_estimator("lightness", {}, language="en")
        light = est.estimate(_solid_bgr((120, 170, 190)))
        dark = est.estimate(_solid_bgr((20, 28, 40)))
        self.assertGreater(light.roast_index, dark.roast_index)
        self.assertEqual(dark.roast_label, RoastLevel.EXTRA_DARK)
        self.assertTrue(light.advisory)
        self.assertGreater(light.confidence, 0.9)

    def test_lightness_ignores_background(self):
        img = _solid_bgr((255, 255, 255))
        img[:, :30] = (20, 28, 40)
        mean_l, _std, fraction = bean_lightness(img)
        self.assertAlmostEqual(fraction, 0.5, places=2)
        self.assertLess(mean_l, 30)

    def test_lightness_rejects_bad_params(self):
        with self.assertRaises(ValueError):
            create_estimator("lightness", {"l_dark": 70, "l_light": 60})


if __name__ == "__main__":
    unittest.main()

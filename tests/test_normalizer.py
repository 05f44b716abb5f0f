import unittest

import numpy as np

from posebind.core.landmarks import Landmark, LandmarkSet, PoseLandmark as L
from posebind.motion.normalizer import (
    NormalizerSettings,
    hip_midpoint,
    normalize_hip_centered,
    normalize_landmarks,
)
from pose_fixtures import standing_pose


def _positions(landmarks):
    return np.array([lm.position for lm in landmarks])


class TestNormalizeLandmarks(unittest.TestCase):
    def test_image_center_maps_to_origin(self):
        result = normalize_landmarks(LandmarkSet((Landmark(0.5, 0.5, 0.0),)))
        np.testing.assert_allclose(result[0].position, [0.0, 0.0, 0.0], atol=1e-12)

    def test_axes_and_scales(self):
        result = normalize_landmarks(LandmarkSet((Landmark(0.75, 0.25, 0.1, 0.8),)))
        # x scaled, y flipped to point up, z scaled by depth
        np.testing.assert_allclose(result[0].position, [1.0, 1.0, 0.2])
        self.assertEqual(result[0].visibility, 0.8)

    def test_axis_toggles(self):
        settings = NormalizerSettings(invert_y=False, invert_z=True, scale=2.0, depth_scale=1.0)
        result = normalize_landmarks(LandmarkSet((Landmark(0.75, 0.25, 0.1),)), settings)
        np.testing.assert_allclose(result[0].position, [0.5, -0.5, -0.2])

    def test_missing_entries_preserved(self):
        result = normalize_landmarks(LandmarkSet((None, Landmark(0.5, 0.5))))
        self.assertIsNone(result[0])
        self.assertIsNotNone(result[1])

    def test_invalid_reference_rejected(self):
        with self.assertRaises(ValueError):
            NormalizerSettings(body_scale_reference="height")


class TestHipCentered(unittest.TestCase):
    def setUp(self):
        self.landmarks = LandmarkSet.from_sequence(standing_pose())

    def test_hips_centered_on_origin(self):
        result = normalize_hip_centered(self.landmarks)
        center = (result[L.LEFT_HIP].position + result[L.RIGHT_HIP].position) / 2.0
        np.testing.assert_allclose(center, [0.0, 0.0, 0.0], atol=1e-12)

    def test_torso_scaled(self):
        # Torso is 0.3 tall; nose sits 0.45 above the hips
        result = normalize_hip_centered(self.landmarks)
        np.testing.assert_allclose(result[L.NOSE].position, [0.0, 0.45 * 2.5 / 0.3, 0.0], atol=1e-9)

    def test_fixed_scale_without_reference(self):
        settings = NormalizerSettings(body_scale_reference="none")
        result = normalize_hip_centered(self.landmarks, settings)
        np.testing.assert_allclose(result[L.LEFT_HIP].position, [0.06 * 2.5, 0.0, 0.0], atol=1e-9)

    def test_independent_of_camera_distance(self):
        center = hip_midpoint(self.landmarks)
        # Same figure twice as large in the image
        scaled = LandmarkSet(tuple(
            lm.with_position(center + (lm.position - center) * 2.0) for lm in self.landmarks
        ))
        np.testing.assert_allclose(
            _positions(normalize_hip_centered(scaled)),
            _positions(normalize_hip_centered(self.landmarks)),
            atol=1e-9,
        )

    def test_falls_back_without_hips(self):
        entries = list(self.landmarks)
        entries[L.LEFT_HIP] = None
        partial = LandmarkSet(tuple(entries))
        centered = normalize_hip_centered(partial)
        plain = normalize_landmarks(partial)
        self.assertIsNone(centered[L.LEFT_HIP])
        np.testing.assert_allclose(centered[L.NOSE].position, plain[L.NOSE].position)

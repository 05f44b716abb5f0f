"""
Landmark normalization - estimator space to target space.

Coordinate Systems:
- Estimator (MediaPipe): X=right, Y=down, Z=depth, x/y normalized to 0-1
- Target (OpenGL-style rig space): X=right, Y=up, Z=depth
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from posebind.core.config import Config
from posebind.core.landmarks import LandmarkSet, PoseLandmark


BODY_SCALE_REFERENCES = ("none", "torso", "hip_width")


@dataclass
class NormalizerSettings:
    """Axis conventions and scales for landmark normalization."""
    scale: float = 4.0
    origin: Tuple[float, float] = (0.5, 0.5)
    invert_y: bool = True
    depth_scale: float = 0.5
    invert_z: bool = False

    # Hip-centered variant
    hip_scale: float = 2.5
    body_scale_reference: str = "torso"

    def __post_init__(self):
        if self.body_scale_reference not in BODY_SCALE_REFERENCES:
            raise ValueError(
                f"body_scale_reference must be one of {BODY_SCALE_REFERENCES}, "
                f"got {self.body_scale_reference!r}"
            )
        self.origin = (float(self.origin[0]), float(self.origin[1]))

    @classmethod
    def from_config(cls, config: Config) -> "NormalizerSettings":
        section = config.normalizer
        defaults = cls()
        return cls(
            scale=float(section.get("scale", defaults.scale)),
            origin=tuple(section.get("origin", defaults.origin)),
            invert_y=bool(section.get("invert_y", defaults.invert_y)),
            depth_scale=float(section.get("depth_scale", defaults.depth_scale)),
            invert_z=bool(section.get("invert_z", defaults.invert_z)),
            hip_scale=float(section.get("hip_scale", defaults.hip_scale)),
            body_scale_reference=str(section.get("body_scale_reference", defaults.body_scale_reference)),
        )


def _axis_signs(settings: NormalizerSettings) -> np.ndarray:
    return np.array([
        1.0,
        -1.0 if settings.invert_y else 1.0,
        (-1.0 if settings.invert_z else 1.0) * settings.depth_scale,
    ], dtype=np.float64)


def _transform(landmarks: LandmarkSet, origin: np.ndarray, factors: np.ndarray) -> LandmarkSet:
    entries = []
    for lm in landmarks:
        if lm is None:
            entries.append(None)
            continue
        entries.append(lm.with_position((lm.position - origin) * factors))
    return LandmarkSet(tuple(entries))


def normalize_landmarks(
    landmarks: LandmarkSet,
    settings: Optional[NormalizerSettings] = None,
) -> LandmarkSet:
    """
    Map estimator-native landmarks into target space.

    x' = (x - origin_x) * scale
    y' = -(y - origin_y) * scale          (sign kept when invert_y is off)
    z' = z * scale * depth_scale          (negated when invert_z is on)
    """
    settings = settings or NormalizerSettings()
    origin = np.array([settings.origin[0], settings.origin[1], 0.0], dtype=np.float64)
    return _transform(landmarks, origin, _axis_signs(settings) * settings.scale)


def hip_midpoint(landmarks: LandmarkSet) -> Optional[np.ndarray]:
    """Raw midpoint of the two hips, or None if either is missing."""
    left = landmarks.get(PoseLandmark.LEFT_HIP)
    right = landmarks.get(PoseLandmark.RIGHT_HIP)
    if left is None or right is None:
        return None
    return (left.position + right.position) / 2.0


def body_reference_length(
    landmarks: LandmarkSet,
    signs: np.ndarray,
    reference: str,
) -> Optional[float]:
    """Length used to make hip-centered output independent of camera distance."""
    if reference == "none":
        return None

    def axis_converted(index: int) -> Optional[np.ndarray]:
        lm = landmarks.get(index)
        return None if lm is None else lm.position * signs

    left_hip = axis_converted(PoseLandmark.LEFT_HIP)
    right_hip = axis_converted(PoseLandmark.RIGHT_HIP)
    if left_hip is None or right_hip is None:
        return None

    if reference == "hip_width":
        length = float(np.linalg.norm(left_hip - right_hip))
    else:
        left_shoulder = axis_converted(PoseLandmark.LEFT_SHOULDER)
        right_shoulder = axis_converted(PoseLandmark.RIGHT_SHOULDER)
        if left_shoulder is None or right_shoulder is None:
            return None
        shoulder_center = (left_shoulder + right_shoulder) / 2.0
        hip_center = (left_hip + right_hip) / 2.0
        length = float(np.linalg.norm(shoulder_center - hip_center))

    return length if length > 1e-6 else None


def normalize_hip_centered(
    landmarks: LandmarkSet,
    settings: Optional[NormalizerSettings] = None,
) -> LandmarkSet:
    """
    Recenter landmarks on the hip midpoint and rescale by body size.

    Falls back to normalize_landmarks when either hip is missing. When the
    body reference length is unavailable only hip_scale is applied.
    """
    settings = settings or NormalizerSettings()
    center = hip_midpoint(landmarks)
    if center is None:
        return normalize_landmarks(landmarks, settings)

    signs = _axis_signs(settings)
    factor = settings.hip_scale
    reference = body_reference_length(landmarks, signs, settings.body_scale_reference)
    if reference is not None:
        factor = factor / reference

    return _transform(landmarks, center, signs * factor)

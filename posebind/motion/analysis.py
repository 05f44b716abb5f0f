"""Pose analysis helpers: joint angles and frame-to-frame stability."""

from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

import numpy as np

from posebind.core.config import Config
from posebind.core.landmarks import LandmarkSet, PoseLandmark as L
from posebind.core.quaternion import EPSILON


# Angle name -> (outer point, joint, outer point)
JOINT_ANGLE_TRIPLES: Dict[str, Tuple[int, int, int]] = {
    "left_elbow": (L.LEFT_SHOULDER, L.LEFT_ELBOW, L.LEFT_WRIST),
    "right_elbow": (L.RIGHT_SHOULDER, L.RIGHT_ELBOW, L.RIGHT_WRIST),
    "left_knee": (L.LEFT_HIP, L.LEFT_KNEE, L.LEFT_ANKLE),
    "right_knee": (L.RIGHT_HIP, L.RIGHT_KNEE, L.RIGHT_ANKLE),
}


def joint_angle(
    point1: Sequence[float],
    joint: Sequence[float],
    point2: Sequence[float],
) -> Optional[float]:
    """Interior angle at `joint` in radians, None if a limb has zero length."""
    v1 = np.asarray(point1, dtype=np.float64) - np.asarray(joint, dtype=np.float64)
    v2 = np.asarray(point2, dtype=np.float64) - np.asarray(joint, dtype=np.float64)
    n1 = np.linalg.norm(v1)
    n2 = np.linalg.norm(v2)
    if n1 < EPSILON or n2 < EPSILON:
        return None
    cosine = float(np.dot(v1 / n1, v2 / n2))
    return float(np.arccos(max(-1.0, min(1.0, cosine))))


def joint_angles(landmarks: LandmarkSet) -> Dict[str, float]:
    """Elbow and knee angles for every triple whose points are all present."""
    angles = {}
    for name, (a, b, c) in JOINT_ANGLE_TRIPLES.items():
        points = [landmarks.get(idx) for idx in (a, b, c)]
        if any(p is None for p in points):
            continue
        angle = joint_angle(points[0].position, points[1].position, points[2].position)
        if angle is not None:
            angles[name] = angle
    return angles


@dataclass
class StabilitySettings:
    movement_threshold: float = 0.1
    stable_ratio: float = 0.8

    @classmethod
    def from_config(cls, config: Config) -> "StabilitySettings":
        section = config.analysis
        return cls(
            movement_threshold=float(section.get("movement_threshold", 0.1)),
            stable_ratio=float(section.get("stable_ratio", 0.8)),
        )


class PoseStabilityTracker:
    """
    Judges whether the pose is holding still.

    A frame is stable when more than `stable_ratio` of the joints present
    in both it and the previous frame moved less than `movement_threshold`.
    The first frame after a reset is never stable.
    """

    def __init__(self, settings: Optional[StabilitySettings] = None):
        self.settings = settings or StabilitySettings()
        self._previous: Optional[np.ndarray] = None

    def update(self, landmarks: LandmarkSet) -> bool:
        positions = landmarks.positions()
        previous = self._previous
        self._previous = positions

        if previous is None:
            return False

        count = min(len(previous), len(positions))
        a, b = previous[:count], positions[:count]
        present = ~(np.isnan(a).any(axis=1) | np.isnan(b).any(axis=1))
        if not present.any():
            return False

        distances = np.linalg.norm(a[present] - b[present], axis=1)
        still = np.count_nonzero(distances < self.settings.movement_threshold)
        return still / distances.size > self.settings.stable_ratio

    def reset(self) -> None:
        self._previous = None

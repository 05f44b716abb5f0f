"""Virtual joint synthesis.

Derives joints the estimator does not track (shoulder center, hip center,
neck, spine root) from the physical landmarks. A synthesized joint carries
the lowest confidence of its inputs; when any input is missing or below
the threshold it is left out for that frame.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

import numpy as np

from posebind.core.config import Config
from posebind.core.landmarks import (
    EXTENDED_LANDMARK_COUNT,
    LANDMARK_COUNT,
    Landmark,
    LandmarkSet,
    PoseLandmark,
    VirtualJoint,
)


@dataclass
class VirtualJointSettings:
    min_confidence: float = 0.5
    # Neck height above the shoulder line, as a fraction of shoulder width
    neck_offset: float = 0.2
    up_axis: Tuple[float, float, float] = (0.0, 1.0, 0.0)

    @classmethod
    def from_config(cls, config: Config) -> "VirtualJointSettings":
        section = config.virtual_joints
        defaults = cls()
        return cls(
            min_confidence=float(section.get("min_confidence", defaults.min_confidence)),
            neck_offset=float(section.get("neck_offset", defaults.neck_offset)),
            up_axis=tuple(float(v) for v in section.get("up_axis", defaults.up_axis)),
        )


def _usable(inputs: Sequence[Optional[Landmark]], min_confidence: float) -> bool:
    return all(lm is not None and lm.confidence >= min_confidence for lm in inputs)


def combine_landmarks(
    inputs: Sequence[Landmark],
    position: np.ndarray,
) -> Landmark:
    """Landmark at `position` whose visibility is the minimum of `inputs`."""
    return Landmark.from_position(position, min(lm.confidence for lm in inputs))


def midpoint_joint(a: Landmark, b: Landmark) -> Landmark:
    return combine_landmarks((a, b), (a.position + b.position) / 2.0)


def synthesize_virtual_joints(
    landmarks: LandmarkSet,
    settings: Optional[VirtualJointSettings] = None,
) -> LandmarkSet:
    """
    Append virtual joints to a normalized landmark set.

    Returns:
        Extended set of EXTENDED_LANDMARK_COUNT entries; virtual joints that
        could not be synthesized this frame are None.
    """
    settings = settings or VirtualJointSettings()
    threshold = settings.min_confidence

    physical = LandmarkSet(tuple(landmarks.landmarks[:LANDMARK_COUNT]))
    left_shoulder = physical.get(PoseLandmark.LEFT_SHOULDER)
    right_shoulder = physical.get(PoseLandmark.RIGHT_SHOULDER)
    left_hip = physical.get(PoseLandmark.LEFT_HIP)
    right_hip = physical.get(PoseLandmark.RIGHT_HIP)

    joints: Dict[int, Optional[Landmark]] = {joint: None for joint in VirtualJoint}

    shoulders_ok = _usable((left_shoulder, right_shoulder), threshold)
    hips_ok = _usable((left_hip, right_hip), threshold)

    if shoulders_ok:
        shoulder_center = midpoint_joint(left_shoulder, right_shoulder)
        joints[VirtualJoint.SHOULDER_CENTER] = shoulder_center

        shoulder_width = float(np.linalg.norm(left_shoulder.position - right_shoulder.position))
        up = np.asarray(settings.up_axis, dtype=np.float64)
        neck_position = shoulder_center.position + up * settings.neck_offset * shoulder_width
        joints[VirtualJoint.NECK] = combine_landmarks((left_shoulder, right_shoulder), neck_position)

    if hips_ok:
        joints[VirtualJoint.HIP_CENTER] = midpoint_joint(left_hip, right_hip)

    if shoulders_ok and hips_ok:
        spine_position = (
            joints[VirtualJoint.SHOULDER_CENTER].position
            + joints[VirtualJoint.HIP_CENTER].position
        ) / 2.0
        joints[VirtualJoint.SPINE] = combine_landmarks(
            (left_shoulder, right_shoulder, left_hip, right_hip), spine_position
        )

    return physical.replace(
        {int(idx): lm for idx, lm in joints.items()},
        size=EXTENDED_LANDMARK_COUNT,
    )

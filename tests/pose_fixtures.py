"""Synthetic poses and rigs shared by the tests."""

from typing import Dict, List, Optional

from posebind.core.landmarks import PoseLandmark as L


# Upright figure in estimator image space (x right, y down, 0-1), arms
# hanging straight down beside the torso
STANDING_POSE: Dict[int, tuple] = {
    L.NOSE: (0.50, 0.15),
    L.LEFT_EYE_INNER: (0.51, 0.13), L.LEFT_EYE: (0.52, 0.13), L.LEFT_EYE_OUTER: (0.53, 0.13),
    L.RIGHT_EYE_INNER: (0.49, 0.13), L.RIGHT_EYE: (0.48, 0.13), L.RIGHT_EYE_OUTER: (0.47, 0.13),
    L.LEFT_EAR: (0.54, 0.14), L.RIGHT_EAR: (0.46, 0.14),
    L.MOUTH_LEFT: (0.51, 0.18), L.MOUTH_RIGHT: (0.49, 0.18),
    L.LEFT_SHOULDER: (0.60, 0.30), L.RIGHT_SHOULDER: (0.40, 0.30),
    L.LEFT_ELBOW: (0.60, 0.45), L.RIGHT_ELBOW: (0.40, 0.45),
    L.LEFT_WRIST: (0.60, 0.60), L.RIGHT_WRIST: (0.40, 0.60),
    L.LEFT_PINKY: (0.61, 0.64), L.RIGHT_PINKY: (0.39, 0.64),
    L.LEFT_INDEX: (0.60, 0.65), L.RIGHT_INDEX: (0.40, 0.65),
    L.LEFT_THUMB: (0.59, 0.63), L.RIGHT_THUMB: (0.41, 0.63),
    L.LEFT_HIP: (0.56, 0.60), L.RIGHT_HIP: (0.44, 0.60),
    L.LEFT_KNEE: (0.56, 0.75), L.RIGHT_KNEE: (0.44, 0.75),
    L.LEFT_ANKLE: (0.56, 0.90), L.RIGHT_ANKLE: (0.44, 0.90),
    L.LEFT_HEEL: (0.56, 0.92), L.RIGHT_HEEL: (0.44, 0.92),
    L.LEFT_FOOT_INDEX: (0.58, 0.94), L.RIGHT_FOOT_INDEX: (0.42, 0.94),
}


def standing_pose(
    visibility: float = 1.0,
    visibilities: Optional[Dict[int, float]] = None,
    offsets: Optional[Dict[int, tuple]] = None,
) -> List[dict]:
    """33 landmark records as an estimator would emit them."""
    visibilities = visibilities or {}
    offsets = offsets or {}
    frame = []
    for index in range(len(L)):
        x, y = STANDING_POSE[index]
        dx, dy = offsets.get(index, (0.0, 0.0))
        frame.append({
            "x": x + dx,
            "y": y + dy,
            "z": 0.0,
            "visibility": visibilities.get(index, visibility),
        })
    return frame


MIXAMO_BONES = [
    "mixamorig:Hips", "mixamorig:Spine", "mixamorig:Spine1", "mixamorig:Neck", "mixamorig:Head",
    "mixamorig:LeftShoulder", "mixamorig:LeftArm", "mixamorig:LeftForeArm", "mixamorig:LeftHand",
    "mixamorig:RightShoulder", "mixamorig:RightArm", "mixamorig:RightForeArm", "mixamorig:RightHand",
    "mixamorig:LeftUpLeg", "mixamorig:LeftLeg", "mixamorig:LeftFoot",
    "mixamorig:RightUpLeg", "mixamorig:RightLeg", "mixamorig:RightFoot",
]


def handles_for(names) -> Dict[str, object]:
    """Name -> opaque handle, as a rig loader would supply."""
    return {name: f"handle:{name}" for name in names}

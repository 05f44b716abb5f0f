"""Static retargeting topology.

Bone mappings drive skinned rigs: each role rotates so its rest direction
points from the parent landmark to the child landmark. Part and segment
mappings drive skeleton-less proxy avatars, where every landmark is an
independently placed mesh part and segments are drawn between them.
"""

from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Tuple

from posebind.core.landmarks import (
    EXTENDED_LANDMARK_COUNT,
    PoseLandmark as L,
    VirtualJoint as V,
    landmark_name,
)


UP = (0.0, 1.0, 0.0)


@dataclass(frozen=True)
class BoneMapping:
    role: str
    parent: int
    child: int
    alternates: Tuple[str, ...] = ()
    rest_direction: Tuple[float, float, float] = UP


@dataclass(frozen=True)
class PartMapping:
    role: str
    landmark: int
    alternates: Tuple[str, ...] = ()


@dataclass(frozen=True)
class SegmentMapping:
    name: str
    start: str
    end: str


BONE_MAPPINGS: Tuple[BoneMapping, ...] = (
    # Spine and core
    BoneMapping("spine", V.HIP_CENTER, V.SPINE,
                ("Spine", "spine_01", "Hips", "pelvis")),
    BoneMapping("spine1", V.SPINE, V.SHOULDER_CENTER,
                ("Spine1", "Spine2", "spine_02", "Chest", "chest")),
    BoneMapping("neck", V.NECK, L.NOSE,
                ("Neck", "neck1", "neck_01", "Head")),

    # Left arm
    BoneMapping("left_shoulder", V.SHOULDER_CENTER, L.LEFT_SHOULDER,
                ("LeftShoulder", "L_Shoulder", "leftShoulder", "clavicle_l")),
    BoneMapping("left_arm", L.LEFT_SHOULDER, L.LEFT_ELBOW,
                ("LeftArm", "L_Arm", "leftArm", "LeftUpperArm", "upperarm_l")),
    BoneMapping("left_forearm", L.LEFT_ELBOW, L.LEFT_WRIST,
                ("LeftForeArm", "L_ForeArm", "leftForeArm", "lowerarm_l")),
    BoneMapping("left_hand", L.LEFT_WRIST, L.LEFT_INDEX,
                ("LeftHand", "L_Hand", "leftHand", "hand_l")),

    # Right arm
    BoneMapping("right_shoulder", V.SHOULDER_CENTER, L.RIGHT_SHOULDER,
                ("RightShoulder", "R_Shoulder", "rightShoulder", "clavicle_r")),
    BoneMapping("right_arm", L.RIGHT_SHOULDER, L.RIGHT_ELBOW,
                ("RightArm", "R_Arm", "rightArm", "RightUpperArm", "upperarm_r")),
    BoneMapping("right_forearm", L.RIGHT_ELBOW, L.RIGHT_WRIST,
                ("RightForeArm", "R_ForeArm", "rightForeArm", "lowerarm_r")),
    BoneMapping("right_hand", L.RIGHT_WRIST, L.RIGHT_INDEX,
                ("RightHand", "R_Hand", "rightHand", "hand_r")),

    # Left leg
    BoneMapping("left_thigh", L.LEFT_HIP, L.LEFT_KNEE,
                ("LeftThigh", "L_Thigh", "leftThigh", "LeftUpLeg", "thigh_l")),
    BoneMapping("left_shin", L.LEFT_KNEE, L.LEFT_ANKLE,
                ("LeftShin", "L_Shin", "leftShin", "LeftLeg", "calf_l")),
    BoneMapping("left_foot", L.LEFT_ANKLE, L.LEFT_FOOT_INDEX,
                ("LeftFoot", "L_Foot", "leftFoot", "foot_l")),

    # Right leg
    BoneMapping("right_thigh", L.RIGHT_HIP, L.RIGHT_KNEE,
                ("RightThigh", "R_Thigh", "rightThigh", "RightUpLeg", "thigh_r")),
    BoneMapping("right_shin", L.RIGHT_KNEE, L.RIGHT_ANKLE,
                ("RightShin", "R_Shin", "rightShin", "RightLeg", "calf_r")),
    BoneMapping("right_foot", L.RIGHT_ANKLE, L.RIGHT_FOOT_INDEX,
                ("RightFoot", "R_Foot", "rightFoot", "foot_r")),
)


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _build_proxy_parts() -> Tuple[PartMapping, ...]:
    parts: List[PartMapping] = []
    for index in range(EXTENDED_LANDMARK_COUNT):
        role = landmark_name(index)
        parts.append(PartMapping(role, index, (f"joint_{index}", _camel(role))))
    return tuple(parts)


# One anchor per physical landmark plus the synthesized joints
PROXY_PARTS: Tuple[PartMapping, ...] = _build_proxy_parts()


_PROXY_CONNECTIONS: Tuple[Tuple[int, int], ...] = (
    # Face
    (L.NOSE, L.LEFT_EYE_INNER), (L.LEFT_EYE_INNER, L.LEFT_EYE),
    (L.LEFT_EYE, L.LEFT_EYE_OUTER), (L.LEFT_EYE_OUTER, L.LEFT_EAR),
    (L.NOSE, L.RIGHT_EYE_INNER), (L.RIGHT_EYE_INNER, L.RIGHT_EYE),
    (L.RIGHT_EYE, L.RIGHT_EYE_OUTER), (L.RIGHT_EYE_OUTER, L.RIGHT_EAR),
    (L.MOUTH_LEFT, L.MOUTH_RIGHT),
    # Torso and arms
    (L.LEFT_SHOULDER, L.RIGHT_SHOULDER),
    (L.LEFT_SHOULDER, L.LEFT_ELBOW), (L.LEFT_ELBOW, L.LEFT_WRIST),
    (L.LEFT_WRIST, L.LEFT_PINKY), (L.LEFT_WRIST, L.LEFT_INDEX), (L.LEFT_WRIST, L.LEFT_THUMB),
    (L.RIGHT_SHOULDER, L.RIGHT_ELBOW), (L.RIGHT_ELBOW, L.RIGHT_WRIST),
    (L.RIGHT_WRIST, L.RIGHT_PINKY), (L.RIGHT_WRIST, L.RIGHT_INDEX), (L.RIGHT_WRIST, L.RIGHT_THUMB),
    (L.LEFT_SHOULDER, L.LEFT_HIP), (L.RIGHT_SHOULDER, L.RIGHT_HIP),
    (L.LEFT_HIP, L.RIGHT_HIP),
    # Legs
    (L.LEFT_HIP, L.LEFT_KNEE), (L.LEFT_KNEE, L.LEFT_ANKLE),
    (L.LEFT_ANKLE, L.LEFT_HEEL), (L.LEFT_HEEL, L.LEFT_FOOT_INDEX),
    (L.RIGHT_HIP, L.RIGHT_KNEE), (L.RIGHT_KNEE, L.RIGHT_ANKLE),
    (L.RIGHT_ANKLE, L.RIGHT_HEEL), (L.RIGHT_HEEL, L.RIGHT_FOOT_INDEX),
    # Spine
    (V.NECK, L.NOSE), (V.NECK, V.SPINE), (V.SPINE, V.HIP_CENTER),
)


PROXY_SEGMENTS: Tuple[SegmentMapping, ...] = tuple(
    SegmentMapping(
        f"{landmark_name(start)}-{landmark_name(end)}",
        landmark_name(start),
        landmark_name(end),
    )
    for start, end in _PROXY_CONNECTIONS
)


def load_bone_mappings(entries: Iterable[Mapping[str, Any]]) -> Tuple[BoneMapping, ...]:
    """
    Build a bone mapping table from plain records (e.g. a config section).

    Landmark references may be indices or landmark names such as
    "left_elbow" or "hip_center".

    Example entry:
        {"role": "left_arm", "parent": "left_shoulder", "child": "left_elbow",
         "alternates": ["LeftArm"], "rest_direction": [0, 1, 0]}
    """
    names = {landmark_name(idx): idx for idx in range(EXTENDED_LANDMARK_COUNT)}

    def index_of(value: Any) -> int:
        if isinstance(value, str):
            key = value.strip().lower()
            if key not in names:
                raise ValueError(f"Unknown landmark name: {value!r}")
            return names[key]
        index = int(value)
        if not 0 <= index < EXTENDED_LANDMARK_COUNT:
            raise ValueError(f"Landmark index out of range: {index}")
        return index

    mappings = []
    for entry in entries:
        rest = tuple(float(v) for v in entry.get("rest_direction", UP))
        if len(rest) != 3:
            raise ValueError(f"rest_direction for {entry.get('role')!r} must have 3 values")
        mappings.append(BoneMapping(
            role=str(entry["role"]),
            parent=index_of(entry["parent"]),
            child=index_of(entry["child"]),
            alternates=tuple(str(name) for name in entry.get("alternates", ())),
            rest_direction=rest,
        ))
    return tuple(mappings)


def with_rest_directions(
    mappings: Iterable[BoneMapping],
    overrides: Mapping[str, Iterable[float]],
) -> Tuple[BoneMapping, ...]:
    """Copy of `mappings` with per-role rest directions replaced."""
    result = []
    for mapping in mappings:
        if mapping.role in overrides:
            rest = tuple(float(v) for v in overrides[mapping.role])
            mapping = BoneMapping(mapping.role, mapping.parent, mapping.child,
                                  mapping.alternates, rest)
        result.append(mapping)
    return tuple(result)

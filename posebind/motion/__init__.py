"""Motion processing module - normalization, solving, smoothing, dispatch"""

from .normalizer import NormalizerSettings, normalize_landmarks, normalize_hip_centered
from .virtual_joints import VirtualJointSettings, synthesize_virtual_joints
from .bone_mapping import (
    BoneMapping, PartMapping, SegmentMapping,
    BONE_MAPPINGS, PROXY_PARTS, PROXY_SEGMENTS,
    load_bone_mappings, with_rest_directions,
)
from .bone_solver import solve_bone_rotation, solve_mapping
from .smoothing import TemporalSmoothingFilter, PositionSmoother, OneEuroFilterParams
from .rig_resolver import MatchStrategy, Resolution, ResolverSettings, resolve_bone_name, resolve_mappings
from .analysis import joint_angles, PoseStabilityTracker, StabilitySettings
from .dispatcher import (
    DispatcherState, RigDescriptor, RetargetSettings, RetargetDispatcher,
    PoseSnapshot, BoneUpdate, PartUpdate, SegmentUpdate,
)

__all__ = [
    "NormalizerSettings", "normalize_landmarks", "normalize_hip_centered",
    "VirtualJointSettings", "synthesize_virtual_joints",
    "BoneMapping", "PartMapping", "SegmentMapping",
    "BONE_MAPPINGS", "PROXY_PARTS", "PROXY_SEGMENTS",
    "load_bone_mappings", "with_rest_directions",
    "solve_bone_rotation", "solve_mapping",
    "TemporalSmoothingFilter", "PositionSmoother", "OneEuroFilterParams",
    "MatchStrategy", "Resolution", "ResolverSettings", "resolve_bone_name", "resolve_mappings",
    "joint_angles", "PoseStabilityTracker", "StabilitySettings",
    "DispatcherState", "RigDescriptor", "RetargetSettings", "RetargetDispatcher",
    "PoseSnapshot", "BoneUpdate", "PartUpdate", "SegmentUpdate",
]

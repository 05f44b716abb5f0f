"""
Retarget dispatcher - drives a loaded rig from per-frame landmark sets.

States:
    UNBOUND             no rig loaded; frames are ignored
    BOUND_NO_SKELETON   proxy avatar of independent mesh parts
    BOUND_SKELETON      skinned rig with a resolved bone hierarchy

Per frame (bound states only):
1. Reject incomplete or low-confidence frames (pose held, nothing raised)
2. Normalize landmarks and synthesize virtual joints
3. Skeleton: solve, smooth and write a local rotation for every resolved
   bone whose endpoints pass the confidence gate
   Proxy: move every part whose landmark passes the gate to its smoothed,
   hip-relative position and redraw the connecting segments
4. Bones and parts that failed the gate keep their previous value
5. The hip midpoint, in scene space, is reported as the root translation
"""

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Iterable, Mapping, Optional, Set, Tuple, Union

import numpy as np

from posebind.core import get_logger, Config, RateLimitedLogger, FrameTimer, LatestFrameSlot
from posebind.core.landmarks import (
    KEY_JOINTS,
    LANDMARK_COUNT,
    Landmark,
    LandmarkSet,
    PoseFrame,
    PoseLandmark,
)
from posebind.core.quaternion import quat_slerp, quat_to_xyzw
from .analysis import PoseStabilityTracker, StabilitySettings, joint_angles
from .bone_mapping import (
    BONE_MAPPINGS,
    PROXY_PARTS,
    PROXY_SEGMENTS,
    BoneMapping,
    PartMapping,
    SegmentMapping,
    load_bone_mappings,
    with_rest_directions,
)
from .bone_solver import solve_bone_rotation
from .normalizer import NormalizerSettings, normalize_hip_centered, normalize_landmarks
from .rig_resolver import Resolution, ResolverSettings, resolve_bone_name
from .smoothing import OneEuroFilterParams, PositionSmoother, TemporalSmoothingFilter
from .virtual_joints import VirtualJointSettings, synthesize_virtual_joints


class DispatcherState(Enum):
    UNBOUND = "unbound"
    BOUND_NO_SKELETON = "bound_no_skeleton"
    BOUND_SKELETON = "bound_skeleton"


# Position smoother key for the root translation
ROOT_KEY = "__root__"


def _frozen(values) -> np.ndarray:
    array = np.array(values, dtype=np.float64)
    array.setflags(write=False)
    return array


# =============================================================================
# RIG BINDING
# =============================================================================

@dataclass
class RigDescriptor:
    """
    What the rig loader hands over when a model finishes loading.

    Attributes:
        handles: Flat name -> bone handle (skeleton) or mesh part handle (proxy)
        has_skeleton: Whether the rig has a bone hierarchy
        name: Label used in log messages
        apply_rotation: Optional callback(handle, quaternion_wxyz) per written bone
        apply_position: Optional callback(handle, position) per written part
        root_handle: Optional handle moved to the subject's hip position each
                     frame through apply_position
    """
    handles: Dict[str, Any]
    has_skeleton: bool
    name: str = "rig"
    apply_rotation: Optional[Callable[[Any, np.ndarray], None]] = None
    apply_position: Optional[Callable[[Any, np.ndarray], None]] = None
    root_handle: Any = None


@dataclass(frozen=True)
class ResolvedBone:
    mapping: BoneMapping
    resolution: Resolution
    handle: Any

    @property
    def role(self) -> str:
        return self.mapping.role

    @property
    def bone_name(self) -> str:
        return self.resolution.name


@dataclass(frozen=True)
class ResolvedPart:
    mapping: PartMapping
    resolution: Resolution
    handle: Any

    @property
    def role(self) -> str:
        return self.mapping.role

    @property
    def part_name(self) -> str:
        return self.resolution.name


# =============================================================================
# OUTPUT
# =============================================================================

@dataclass(frozen=True)
class BoneUpdate:
    """Local rotation for one resolved bone, [w, x, y, z]."""
    role: str
    bone_name: str
    handle: Any
    rotation: np.ndarray

    @property
    def rotation_xyzw(self) -> np.ndarray:
        return quat_to_xyzw(self.rotation)


@dataclass(frozen=True)
class PartUpdate:
    """Anchor position for one proxy mesh part."""
    role: str
    part_name: str
    handle: Any
    position: np.ndarray


@dataclass(frozen=True)
class SegmentUpdate:
    """Endpoints of a connecting segment between two proxy anchors."""
    name: str
    start: np.ndarray
    end: np.ndarray
    confidence: float


@dataclass(frozen=True)
class PoseSnapshot:
    """Consistent, read-only view of the pose after one processed frame."""
    timestamp: float
    frame_number: int
    state: DispatcherState
    confidence: float
    bones: Mapping[str, BoneUpdate] = field(default_factory=dict)
    parts: Mapping[str, PartUpdate] = field(default_factory=dict)
    segments: Mapping[str, SegmentUpdate] = field(default_factory=dict)
    updated: FrozenSet[str] = frozenset()
    joint_angles: Mapping[str, float] = field(default_factory=dict)
    stable: bool = False
    # Scene position of the hip midpoint, None until the hips are first seen
    root: Optional[np.ndarray] = None


# =============================================================================
# SETTINGS
# =============================================================================

@dataclass
class RetargetSettings:
    """Tunable retargeting constants. Defaults mirror the empirical values
    the engine was tuned with; none of them is known to be optimal."""
    joint_confidence_gate: float = 0.5
    pose_confidence_floor: float = 0.5
    key_joint_ratio: float = 0.7
    history_size: int = 5
    output_blend: float = 1.0
    position_filter: str = "lerp"
    position_blend: float = 0.15
    one_euro: OneEuroFilterParams = field(default_factory=OneEuroFilterParams)
    normalizer: NormalizerSettings = field(default_factory=NormalizerSettings)
    virtual_joints: VirtualJointSettings = field(default_factory=VirtualJointSettings)
    resolver: ResolverSettings = field(default_factory=ResolverSettings)
    stability: StabilitySettings = field(default_factory=StabilitySettings)
    diagnostics_interval: float = 5.0

    def __post_init__(self):
        if not 0.0 < self.output_blend <= 1.0:
            raise ValueError(f"output_blend must be in (0, 1], got {self.output_blend}")

    @classmethod
    def from_config(cls, config: Config) -> "RetargetSettings":
        confidence = config.confidence
        smoothing = config.smoothing
        defaults = cls()
        position_smoother = PositionSmoother.from_config(config)
        return cls(
            joint_confidence_gate=float(confidence.get("joint_gate", defaults.joint_confidence_gate)),
            pose_confidence_floor=float(confidence.get("pose_floor", defaults.pose_confidence_floor)),
            key_joint_ratio=float(confidence.get("key_joint_ratio", defaults.key_joint_ratio)),
            history_size=int(smoothing.get("history_size", defaults.history_size)),
            output_blend=float(config.output.get("blend", defaults.output_blend)),
            position_filter=position_smoother.mode,
            position_blend=position_smoother.blend,
            one_euro=position_smoother.params,
            normalizer=NormalizerSettings.from_config(config),
            virtual_joints=VirtualJointSettings.from_config(config),
            resolver=ResolverSettings.from_config(config),
            stability=StabilitySettings.from_config(config),
            diagnostics_interval=float(config.logging.get("diagnostics_interval", defaults.diagnostics_interval)),
        )


# =============================================================================
# DISPATCHER
# =============================================================================

class RetargetDispatcher:
    """
    Applies landmark frames to whichever rig is currently bound.

    All mutable state (bindings, smoothing histories, written pose) is
    guarded by one lock, so binding, unbinding, reset and frame processing
    never interleave.
    """

    def __init__(
        self,
        settings: Optional[RetargetSettings] = None,
        bone_mappings: Iterable[BoneMapping] = BONE_MAPPINGS,
        part_mappings: Iterable[PartMapping] = PROXY_PARTS,
        segments: Iterable[SegmentMapping] = PROXY_SEGMENTS,
    ):
        self.logger = get_logger("motion.dispatcher")
        self.settings = settings or RetargetSettings()
        self.bone_mappings: Tuple[BoneMapping, ...] = tuple(bone_mappings)
        self.part_mappings: Tuple[PartMapping, ...] = tuple(part_mappings)
        self.segments: Tuple[SegmentMapping, ...] = tuple(segments)

        self._diagnostics = RateLimitedLogger(self.logger, self.settings.diagnostics_interval)
        self._lock = threading.RLock()
        self._timer = FrameTimer()

        self._state = DispatcherState.UNBOUND
        self._rig: Optional[RigDescriptor] = None
        self._bones: Dict[str, ResolvedBone] = {}
        self._parts: Dict[str, ResolvedPart] = {}
        self._unresolved: Tuple[str, ...] = ()

        self._smoother = TemporalSmoothingFilter(self.settings.history_size)
        self._positions = PositionSmoother(
            mode=self.settings.position_filter,
            blend=self.settings.position_blend,
            params=self.settings.one_euro,
        )
        self._stability = PoseStabilityTracker(self.settings.stability)

        self._bone_state: Dict[str, BoneUpdate] = {}
        self._part_state: Dict[str, PartUpdate] = {}
        self._segment_state: Dict[str, SegmentUpdate] = {}
        self._anchors: Dict[str, np.ndarray] = {}
        self._anchor_confidence: Dict[str, float] = {}
        self._root: Optional[np.ndarray] = None
        self._snapshot: Optional[PoseSnapshot] = None

        self._frames_processed = 0
        self._frames_dropped = 0

    @classmethod
    def from_config(cls, config: Config) -> "RetargetDispatcher":
        """Build a dispatcher from config, including optional mapping overrides."""
        bone_entries = config.get("mappings.bones")
        mappings = load_bone_mappings(bone_entries) if bone_entries else BONE_MAPPINGS
        rest_overrides = config.get("mappings.rest_directions") or {}
        if rest_overrides:
            mappings = with_rest_directions(mappings, rest_overrides)
        return cls(RetargetSettings.from_config(config), bone_mappings=mappings)

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def state(self) -> DispatcherState:
        return self._state

    @property
    def is_bound(self) -> bool:
        return self._state is not DispatcherState.UNBOUND

    @property
    def rig(self) -> Optional[RigDescriptor]:
        return self._rig

    @property
    def resolved_bones(self) -> Dict[str, ResolvedBone]:
        with self._lock:
            return dict(self._bones)

    @property
    def resolved_parts(self) -> Dict[str, ResolvedPart]:
        with self._lock:
            return dict(self._parts)

    @property
    def unresolved_roles(self) -> Tuple[str, ...]:
        return self._unresolved

    @property
    def snapshot(self) -> Optional[PoseSnapshot]:
        """Pose after the last processed frame, None before the first one."""
        return self._snapshot

    @property
    def stats(self) -> Dict[str, float]:
        return {
            "frames_processed": self._frames_processed,
            "frames_dropped": self._frames_dropped,
            "average_frame_ms": self._timer.average_frame_time * 1000.0,
            "fps": self._timer.fps,
        }

    # -------------------------------------------------------------------------
    # Rig lifecycle
    # -------------------------------------------------------------------------

    def bind_rig(self, rig: RigDescriptor) -> DispatcherState:
        """
        Bind a freshly loaded rig, replacing any previous one.

        Name resolution happens here, once; roles that do not resolve are
        skipped for the lifetime of this binding.
        """
        with self._lock:
            self._clear_binding()
            strip = self.settings.resolver.strip_namespaces
            names = list(rig.handles.keys())
            unresolved = []

            if rig.has_skeleton:
                for mapping in self.bone_mappings:
                    resolution = resolve_bone_name(mapping.role, mapping.alternates, names, strip)
                    if resolution is None:
                        unresolved.append(mapping.role)
                        continue
                    self._bones[mapping.role] = ResolvedBone(
                        mapping, resolution, rig.handles[resolution.name]
                    )
                self._warn_shared_targets(
                    (bone.role, bone.bone_name) for bone in self._bones.values()
                )
                self._state = DispatcherState.BOUND_SKELETON
                total = len(self.bone_mappings)
                resolved = len(self._bones)
            else:
                for mapping in self.part_mappings:
                    resolution = resolve_bone_name(mapping.role, mapping.alternates, names, strip)
                    if resolution is None:
                        unresolved.append(mapping.role)
                        continue
                    self._parts[mapping.role] = ResolvedPart(
                        mapping, resolution, rig.handles[resolution.name]
                    )
                self._state = DispatcherState.BOUND_NO_SKELETON
                total = len(self.part_mappings)
                resolved = len(self._parts)

            self._rig = rig
            self._unresolved = tuple(unresolved)

            self.logger.info(
                f"Bound rig '{rig.name}' ({self._state.value}): "
                f"{resolved}/{total} roles resolved"
            )
            if unresolved:
                self.logger.warning(
                    f"Unresolved roles on '{rig.name}' will be skipped: {', '.join(unresolved)}"
                )
            return self._state

    def unbind_rig(self) -> None:
        """Drop the current rig and everything derived from it."""
        with self._lock:
            if self._rig is not None:
                self.logger.info(f"Unbound rig '{self._rig.name}'")
            self._clear_binding()

    def reset(self, clear_pose: bool = False) -> None:
        """
        Clear smoothing histories, keeping the rig binding.

        Args:
            clear_pose: Also forget every written bone/part value
        """
        with self._lock:
            self._smoother.reset()
            self._positions.reset()
            self._stability.reset()
            if clear_pose:
                self._clear_pose()
            self.logger.debug("Retargeting state reset")

    def _clear_binding(self) -> None:
        self._state = DispatcherState.UNBOUND
        self._rig = None
        self._bones.clear()
        self._parts.clear()
        self._unresolved = ()
        self._smoother.reset()
        self._positions.reset()
        self._stability.reset()
        self._clear_pose()

    def _clear_pose(self) -> None:
        self._bone_state.clear()
        self._part_state.clear()
        self._segment_state.clear()
        self._anchors.clear()
        self._anchor_confidence.clear()
        self._root = None
        self._snapshot = None

    def _warn_shared_targets(self, pairs: Iterable[Tuple[str, str]]) -> None:
        owners: Dict[str, str] = {}
        for role, name in pairs:
            if name in owners:
                self.logger.warning(
                    f"Roles '{owners[name]}' and '{role}' both resolved to '{name}'; "
                    f"the later role overwrites the earlier each frame"
                )
            else:
                owners[name] = role

    # -------------------------------------------------------------------------
    # Frame processing
    # -------------------------------------------------------------------------

    @staticmethod
    def pose_confidence(landmarks: Union[LandmarkSet, Iterable[Any]]) -> float:
        """Mean landmark visibility of the physical landmarks."""
        if not isinstance(landmarks, LandmarkSet):
            try:
                landmarks = LandmarkSet.from_sequence(landmarks)
            except ValueError:
                return 0.0
        return LandmarkSet(tuple(landmarks.landmarks[:LANDMARK_COUNT])).mean_confidence()

    def process_latest(self, slot: LatestFrameSlot) -> Optional[PoseSnapshot]:
        """Retarget the newest frame waiting in `slot`, if any."""
        frame = slot.take()
        if frame is None:
            return None
        return self.process_frame(frame)

    def process_frame(
        self,
        landmarks: Union[PoseFrame, LandmarkSet, Iterable[Any]],
        timestamp: Optional[float] = None,
    ) -> Optional[PoseSnapshot]:
        """
        Retarget one frame onto the bound rig.

        Args:
            landmarks: PoseFrame, LandmarkSet, or 33 landmark-like values
            timestamp: Frame time in seconds (defaults to the PoseFrame's
                       timestamp, else the monotonic clock)

        Returns:
            Snapshot of the updated pose, or None if the frame was ignored
            (no rig bound) or dropped (incomplete / unreliable)
        """
        if isinstance(landmarks, PoseFrame):
            if timestamp is None:
                timestamp = landmarks.timestamp
            landmarks = landmarks.landmarks
        if timestamp is None:
            timestamp = time.monotonic()

        with self._lock:
            if self._state is DispatcherState.UNBOUND:
                return None

            self._timer.start()
            accepted = self._accept(landmarks)
            if accepted is None:
                self._frames_dropped += 1
                self._timer.stop()
                return None
            frame_set, confidence = accepted

            if self._state is DispatcherState.BOUND_SKELETON:
                extended, updated = self._apply_skeleton(frame_set)
            else:
                extended, updated = self._apply_proxy(frame_set, timestamp)
            self._update_root(frame_set, timestamp)

            self._frames_processed += 1
            self._snapshot = PoseSnapshot(
                timestamp=float(timestamp),
                frame_number=self._frames_processed,
                state=self._state,
                confidence=confidence,
                bones=dict(self._bone_state),
                parts=dict(self._part_state),
                segments=dict(self._segment_state),
                updated=frozenset(updated),
                joint_angles=joint_angles(extended),
                stable=self._stability.update(extended),
                root=self._root,
            )
            self._timer.stop()
            snapshot = self._snapshot
            rig = self._rig

        self._apply_callbacks(rig, snapshot)
        return snapshot

    def _accept(self, landmarks: Union[LandmarkSet, Iterable[Any]]) -> Optional[Tuple[LandmarkSet, float]]:
        """Validate a frame, returning it with its pose confidence or None to drop it."""
        try:
            frame_set = LandmarkSet.from_sequence(landmarks, require_complete=True)
        except (TypeError, ValueError) as e:
            self._diagnostics.warning("incomplete", f"Dropped incomplete frame: {e}")
            return None

        confidence = self.pose_confidence(frame_set)
        if confidence < self.settings.pose_confidence_floor:
            self._diagnostics.debug(
                "low_confidence",
                f"Dropped frame with pose confidence {confidence:.2f} "
                f"(floor {self.settings.pose_confidence_floor:.2f})",
            )
            return None

        gate = self.settings.joint_confidence_gate
        reliable = sum(1 for idx in KEY_JOINTS if frame_set[idx].confidence >= gate)
        if reliable < self.settings.key_joint_ratio * len(KEY_JOINTS):
            self._diagnostics.debug(
                "unreliable",
                f"Dropped frame with {reliable}/{len(KEY_JOINTS)} reliable key joints",
            )
            return None

        return frame_set, confidence

    def _passes_gate(self, landmark: Optional[Landmark]) -> bool:
        return landmark is not None and landmark.confidence >= self.settings.joint_confidence_gate

    def _apply_skeleton(self, landmarks: LandmarkSet) -> Tuple[LandmarkSet, Set[str]]:
        normalized = normalize_landmarks(landmarks, self.settings.normalizer)
        extended = synthesize_virtual_joints(normalized, self.settings.virtual_joints)
        updated: Set[str] = set()

        for role, bone in self._bones.items():
            parent = extended.get(bone.mapping.parent)
            child = extended.get(bone.mapping.child)
            if not (self._passes_gate(parent) and self._passes_gate(child)):
                continue

            rotation = solve_bone_rotation(
                parent.position, child.position, bone.mapping.rest_direction
            )
            smoothed = self._smoother.smooth(role, rotation)

            previous = self._bone_state.get(role)
            if previous is not None and self.settings.output_blend < 1.0:
                smoothed = quat_slerp(previous.rotation, smoothed, self.settings.output_blend)

            self._bone_state[role] = BoneUpdate(role, bone.bone_name, bone.handle, _frozen(smoothed))
            updated.add(role)

        return extended, updated

    def _apply_proxy(self, landmarks: LandmarkSet, timestamp: float) -> Tuple[LandmarkSet, Set[str]]:
        normalized = normalize_hip_centered(landmarks, self.settings.normalizer)
        extended = synthesize_virtual_joints(normalized, self.settings.virtual_joints)
        updated: Set[str] = set()

        for mapping in self.part_mappings:
            landmark = extended.get(mapping.landmark)
            if not self._passes_gate(landmark):
                continue

            position = _frozen(self._positions.smooth(mapping.role, landmark.position, timestamp))
            self._anchors[mapping.role] = position
            self._anchor_confidence[mapping.role] = landmark.confidence

            part = self._parts.get(mapping.role)
            if part is not None:
                self._part_state[mapping.role] = PartUpdate(
                    mapping.role, part.part_name, part.handle, position
                )
                updated.add(mapping.role)

        for segment in self.segments:
            start = self._anchors.get(segment.start)
            end = self._anchors.get(segment.end)
            if start is None or end is None:
                continue
            confidence = (
                self._anchor_confidence[segment.start] + self._anchor_confidence[segment.end]
            ) / 2.0
            self._segment_state[segment.name] = SegmentUpdate(segment.name, start, end, confidence)

        return extended, updated

    def _update_root(self, landmarks: LandmarkSet, timestamp: float) -> None:
        """Track the hip midpoint in scene space; held while either hip is unreliable."""
        left = landmarks.get(PoseLandmark.LEFT_HIP)
        right = landmarks.get(PoseLandmark.RIGHT_HIP)
        if not (self._passes_gate(left) and self._passes_gate(right)):
            return
        center = Landmark.from_position((left.position + right.position) / 2.0)
        normalized = normalize_landmarks(LandmarkSet((center,)), self.settings.normalizer)
        self._root = _frozen(self._positions.smooth(ROOT_KEY, normalized[0].position, timestamp))

    def _apply_callbacks(self, rig: Optional[RigDescriptor], snapshot: PoseSnapshot) -> None:
        """Push a snapshot to the rig that was bound when it was produced."""
        if rig is None:
            return
        if rig.apply_rotation is not None:
            for role in snapshot.updated:
                bone = snapshot.bones.get(role)
                if bone is not None:
                    rig.apply_rotation(bone.handle, bone.rotation)
        if rig.apply_position is not None:
            for role in snapshot.updated:
                part = snapshot.parts.get(role)
                if part is not None:
                    rig.apply_position(part.handle, part.position)
            if rig.root_handle is not None and snapshot.root is not None:
                rig.apply_position(rig.root_handle, snapshot.root)

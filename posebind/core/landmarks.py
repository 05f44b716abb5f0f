"""Body landmark data model.

Landmarks follow the 33-point MediaPipe Pose topology. Synthesized joints
(shoulder center, hip center, neck, spine) live at reserved indices after
the physical ones so a single table can be indexed by either.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple
import math

import numpy as np


class PoseLandmark(IntEnum):
    """MediaPipe Pose landmark indices."""
    NOSE = 0
    LEFT_EYE_INNER = 1
    LEFT_EYE = 2
    LEFT_EYE_OUTER = 3
    RIGHT_EYE_INNER = 4
    RIGHT_EYE = 5
    RIGHT_EYE_OUTER = 6
    LEFT_EAR = 7
    RIGHT_EAR = 8
    MOUTH_LEFT = 9
    MOUTH_RIGHT = 10
    LEFT_SHOULDER = 11
    RIGHT_SHOULDER = 12
    LEFT_ELBOW = 13
    RIGHT_ELBOW = 14
    LEFT_WRIST = 15
    RIGHT_WRIST = 16
    LEFT_PINKY = 17
    RIGHT_PINKY = 18
    LEFT_INDEX = 19
    RIGHT_INDEX = 20
    LEFT_THUMB = 21
    RIGHT_THUMB = 22
    LEFT_HIP = 23
    RIGHT_HIP = 24
    LEFT_KNEE = 25
    RIGHT_KNEE = 26
    LEFT_ANKLE = 27
    RIGHT_ANKLE = 28
    LEFT_HEEL = 29
    RIGHT_HEEL = 30
    LEFT_FOOT_INDEX = 31
    RIGHT_FOOT_INDEX = 32


class VirtualJoint(IntEnum):
    """Reserved indices for synthesized joints."""
    SHOULDER_CENTER = 33
    HIP_CENTER = 34
    NECK = 35
    SPINE = 36


LANDMARK_COUNT = len(PoseLandmark)
EXTENDED_LANDMARK_COUNT = LANDMARK_COUNT + len(VirtualJoint)

# Every physical landmark must be present for a frame to be retargeted
REQUIRED_LANDMARKS: Tuple[int, ...] = tuple(int(lm) for lm in PoseLandmark)

# Joints used for the whole-pose reliability check
KEY_JOINTS: Tuple[int, ...] = (
    PoseLandmark.LEFT_SHOULDER, PoseLandmark.RIGHT_SHOULDER,
    PoseLandmark.LEFT_ELBOW, PoseLandmark.RIGHT_ELBOW,
    PoseLandmark.LEFT_WRIST, PoseLandmark.RIGHT_WRIST,
    PoseLandmark.LEFT_HIP, PoseLandmark.RIGHT_HIP,
    PoseLandmark.LEFT_KNEE, PoseLandmark.RIGHT_KNEE,
)


def landmark_name(index: int) -> str:
    """Snake-case name of a physical or virtual landmark index."""
    if 0 <= index < LANDMARK_COUNT:
        return PoseLandmark(index).name.lower()
    if LANDMARK_COUNT <= index < EXTENDED_LANDMARK_COUNT:
        return VirtualJoint(index).name.lower()
    raise ValueError(f"Unknown landmark index: {index}")


def clamp_visibility(value: Any) -> float:
    """Visibility clamped to [0, 1]; NaN means unknown and counts as invisible."""
    value = float(value)
    if math.isnan(value):
        return 0.0
    return min(1.0, max(0.0, value))


class IncompleteFrameError(ValueError):
    """Raised when a landmark set is too short or has required entries missing."""

    def __init__(self, message: str, missing: Sequence[int] = ()):
        super().__init__(message)
        self.missing = tuple(missing)


@dataclass(frozen=True)
class Landmark:
    """One observed (or synthesized) body point."""
    x: float
    y: float
    z: float = 0.0
    visibility: Optional[float] = None

    @property
    def confidence(self) -> float:
        """Effective confidence in [0, 1]; an absent visibility counts as fully visible."""
        if self.visibility is None:
            return 1.0
        return clamp_visibility(self.visibility)

    @property
    def position(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z], dtype=np.float64)

    def with_position(self, position: Sequence[float]) -> "Landmark":
        return Landmark(
            x=float(position[0]),
            y=float(position[1]),
            z=float(position[2]),
            visibility=self.visibility,
        )

    @classmethod
    def from_position(cls, position: Sequence[float], visibility: Optional[float] = None) -> "Landmark":
        return cls(float(position[0]), float(position[1]), float(position[2]), visibility)

    @classmethod
    def from_any(cls, value: Any) -> "Landmark":
        """
        Build a Landmark from common estimator representations.

        Accepts a Landmark, a mapping with x/y/z[/visibility] keys, a
        sequence of 3 or 4 numbers, or any object exposing x, y, z (and
        optionally visibility) attributes.

        Raises:
            ValueError: if the value cannot be interpreted or is not finite
        """
        if isinstance(value, Landmark):
            return value

        if isinstance(value, Mapping):
            try:
                x, y = value["x"], value["y"]
            except KeyError as e:
                raise ValueError(f"Landmark mapping missing key {e}") from e
            z = value.get("z", 0.0)
            visibility = value.get("visibility")
        elif isinstance(value, (Sequence, np.ndarray)) and not isinstance(value, (str, bytes)):
            if len(value) not in (3, 4):
                raise ValueError(f"Landmark sequence must have 3 or 4 values, got {len(value)}")
            x, y, z = value[0], value[1], value[2]
            visibility = value[3] if len(value) == 4 else None
        elif hasattr(value, "x") and hasattr(value, "y"):
            x, y = value.x, value.y
            z = getattr(value, "z", 0.0)
            visibility = getattr(value, "visibility", None)
        else:
            raise ValueError(f"Cannot interpret {type(value).__name__} as a landmark")

        coords = (float(x), float(y), float(z or 0.0))
        if not all(math.isfinite(c) for c in coords):
            raise ValueError(f"Landmark has non-finite coordinates: {coords}")
        if visibility is not None:
            visibility = clamp_visibility(visibility)

        return cls(coords[0], coords[1], coords[2], visibility)


@dataclass(frozen=True)
class LandmarkSet:
    """Ordered, immutable landmark table. Missing entries are None."""
    landmarks: Tuple[Optional[Landmark], ...]

    def __len__(self) -> int:
        return len(self.landmarks)

    def __getitem__(self, index: int) -> Optional[Landmark]:
        return self.landmarks[index]

    def __iter__(self) -> Iterator[Optional[Landmark]]:
        return iter(self.landmarks)

    def get(self, index: int) -> Optional[Landmark]:
        """Landmark at index, or None if out of range or missing."""
        if 0 <= index < len(self.landmarks):
            return self.landmarks[index]
        return None

    def missing_indices(self, required: Iterable[int] = REQUIRED_LANDMARKS) -> List[int]:
        return [idx for idx in required if self.get(idx) is None]

    def is_complete(self, required: Iterable[int] = REQUIRED_LANDMARKS) -> bool:
        if len(self.landmarks) < LANDMARK_COUNT:
            return False
        return not self.missing_indices(required)

    def mean_confidence(self) -> float:
        """Mean effective visibility over present entries (0.0 when empty)."""
        present = [lm.confidence for lm in self.landmarks if lm is not None]
        if not present:
            return 0.0
        return float(sum(present) / len(present))

    def positions(self) -> np.ndarray:
        """(N, 3) array of positions, NaN rows for missing entries."""
        result = np.full((len(self.landmarks), 3), np.nan, dtype=np.float64)
        for idx, lm in enumerate(self.landmarks):
            if lm is not None:
                result[idx] = (lm.x, lm.y, lm.z)
        return result

    def replace(self, updates: Mapping[int, Optional[Landmark]], size: Optional[int] = None) -> "LandmarkSet":
        """Return a copy with entries replaced, padded with None up to `size`."""
        entries = list(self.landmarks)
        target = max(size or 0, len(entries), max(updates, default=-1) + 1)
        entries.extend([None] * (target - len(entries)))
        for idx, lm in updates.items():
            entries[idx] = lm
        return LandmarkSet(tuple(entries))

    @classmethod
    def from_sequence(cls, values: Iterable[Any], require_complete: bool = False) -> "LandmarkSet":
        """
        Build a set from any iterable of landmark-like values (None allowed).

        Args:
            values: Landmarks in body-part index order
            require_complete: Raise IncompleteFrameError for incomplete input

        Raises:
            IncompleteFrameError: if require_complete and the set is incomplete
            ValueError: if an entry cannot be interpreted as a landmark
        """
        if isinstance(values, LandmarkSet):
            result = values
        else:
            if isinstance(values, np.ndarray) and values.ndim == 2:
                values = list(values)
            result = cls(tuple(
                None if value is None else Landmark.from_any(value)
                for value in values
            ))

        if require_complete:
            if len(result) < LANDMARK_COUNT:
                raise IncompleteFrameError(
                    f"Expected {LANDMARK_COUNT} landmarks, got {len(result)}"
                )
            missing = result.missing_indices()
            if missing:
                raise IncompleteFrameError(
                    f"Missing required landmarks: {missing}", missing=missing
                )

        return result


@dataclass(frozen=True)
class PoseFrame:
    """One unit of work: a landmark set and its capture timestamp."""
    landmarks: LandmarkSet
    timestamp: float = 0.0

    @classmethod
    def from_landmarks(cls, values: Iterable[Any], timestamp: float = 0.0) -> "PoseFrame":
        return cls(LandmarkSet.from_sequence(values), float(timestamp))

"""
Bone rotation solver.

Computes, for a parent→child joint pair, the shortest-arc rotation that
turns a bone's rest direction onto the observed direction. Works purely in
normalized landmark space and knows nothing about any particular rig.
"""

from typing import Optional, Sequence

import numpy as np

from posebind.core.landmarks import LandmarkSet
from posebind.core.quaternion import EPSILON, quat_from_two_vectors, quat_identity
from .bone_mapping import UP, BoneMapping


def bone_direction(parent: Sequence[float], child: Sequence[float]) -> Optional[np.ndarray]:
    """Unit parent→child direction, or None when the points coincide."""
    direction = np.asarray(child, dtype=np.float64) - np.asarray(parent, dtype=np.float64)
    length = np.linalg.norm(direction)
    if length < EPSILON or not np.isfinite(length):
        return None
    return direction / length


def solve_bone_rotation(
    parent: Sequence[float],
    child: Sequence[float],
    rest_direction: Sequence[float] = UP,
) -> np.ndarray:
    """
    Rotation [w, x, y, z] mapping `rest_direction` onto parent→child.

    Degenerate input (coincident points or a zero rest direction) yields
    the identity rotation.
    """
    direction = bone_direction(parent, child)
    if direction is None:
        return quat_identity()
    return quat_from_two_vectors(np.asarray(rest_direction, dtype=np.float64), direction)


def solve_mapping(mapping: BoneMapping, landmarks: LandmarkSet) -> Optional[np.ndarray]:
    """
    Solve one bone mapping against an extended landmark set.

    Returns None when either endpoint is missing from the set.
    """
    parent = landmarks.get(mapping.parent)
    child = landmarks.get(mapping.child)
    if parent is None or child is None:
        return None
    return solve_bone_rotation(parent.position, child.position, mapping.rest_direction)

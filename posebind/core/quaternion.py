"""Quaternion utilities.

All quaternions are numpy arrays in [w, x, y, z] order.
"""

import numpy as np


EPSILON = 1e-8


def normalize(v: np.ndarray) -> np.ndarray:
    """Normalize a vector, return zero if length is too small."""
    v = np.asarray(v, dtype=np.float64)
    n = np.linalg.norm(v)
    if n < EPSILON:
        return np.zeros_like(v)
    return v / n


def quat_identity() -> np.ndarray:
    """Return identity quaternion [w, x, y, z]."""
    return np.array([1.0, 0.0, 0.0, 0.0], dtype=np.float64)


def quat_normalize(q: np.ndarray) -> np.ndarray:
    """Normalize a quaternion, falling back to identity when degenerate."""
    q = np.asarray(q, dtype=np.float64)
    n = np.linalg.norm(q)
    if n < EPSILON:
        return quat_identity()
    return q / n


def quat_from_two_vectors(v_from: np.ndarray, v_to: np.ndarray) -> np.ndarray:
    """
    Shortest-arc quaternion that rotates v_from onto v_to.

    Returns identity when either vector has zero length.
    """
    v_from = normalize(v_from)
    v_to = normalize(v_to)
    if not v_from.any() or not v_to.any():
        return quat_identity()

    dot = float(np.dot(v_from, v_to))

    # Vectors are nearly parallel
    if dot > 0.99999:
        return quat_identity()

    # Vectors are nearly opposite: 180 degrees about any orthogonal axis
    if dot < -0.99999:
        ortho = np.array([1.0, 0.0, 0.0])
        if abs(v_from[0]) > 0.9:
            ortho = np.array([0.0, 1.0, 0.0])
        axis = normalize(np.cross(v_from, ortho))
        return np.array([0.0, axis[0], axis[1], axis[2]], dtype=np.float64)

    axis = np.cross(v_from, v_to)
    s = np.sqrt((1.0 + dot) * 2.0)
    invs = 1.0 / s

    return quat_normalize(np.array([
        s * 0.5,
        axis[0] * invs,
        axis[1] * invs,
        axis[2] * invs
    ], dtype=np.float64))


def quat_multiply(q1: np.ndarray, q2: np.ndarray) -> np.ndarray:
    """Multiply two quaternions: q1 * q2."""
    w1, x1, y1, z1 = q1
    w2, x2, y2, z2 = q2
    return np.array([
        w1*w2 - x1*x2 - y1*y2 - z1*z2,
        w1*x2 + x1*w2 + y1*z2 - z1*y2,
        w1*y2 - x1*z2 + y1*w2 + z1*x2,
        w1*z2 + x1*y2 - y1*x2 + z1*w2
    ], dtype=np.float64)


def quat_conjugate(q: np.ndarray) -> np.ndarray:
    """Return conjugate (inverse for unit quaternion)."""
    return np.array([q[0], -q[1], -q[2], -q[3]], dtype=np.float64)


def quat_rotate_vector(q: np.ndarray, v: np.ndarray) -> np.ndarray:
    """Rotate vector v by quaternion q."""
    qv = np.array([0.0, v[0], v[1], v[2]], dtype=np.float64)
    rotated = quat_multiply(quat_multiply(q, qv), quat_conjugate(q))
    return rotated[1:4]


def quat_slerp(q1: np.ndarray, q2: np.ndarray, t: float) -> np.ndarray:
    """Spherical linear interpolation between quaternions."""
    q1 = np.asarray(q1, dtype=np.float64)
    q2 = np.asarray(q2, dtype=np.float64)
    dot = float(np.dot(q1, q2))

    # Ensure shortest path
    if dot < 0:
        q2 = -q2
        dot = -dot

    if dot > 0.9995:
        # Linear interpolation for close quaternions
        return quat_normalize(q1 + t * (q2 - q1))

    theta_0 = np.arccos(min(dot, 1.0))
    theta = theta_0 * t

    q2_perp = quat_normalize(q2 - q1 * dot)

    return quat_normalize(q1 * np.cos(theta) + q2_perp * np.sin(theta))


def quat_angle(q1: np.ndarray, q2: np.ndarray) -> float:
    """Angle in radians between two rotations."""
    dot = abs(float(np.dot(quat_normalize(q1), quat_normalize(q2))))
    return float(2.0 * np.arccos(min(dot, 1.0)))


def quat_to_xyzw(q: np.ndarray) -> np.ndarray:
    """Reorder [w, x, y, z] to [x, y, z, w] for renderers that expect it."""
    return np.array([q[1], q[2], q[3], q[0]], dtype=np.float64)

"""
Temporal smoothing for retargeted rotations and proxy part positions.

Rotations are damped with a bounded history per bone blended by weighted
spherical interpolation, newer samples weighing more. Positions use either
a fixed-fraction approach (lerp) or the One Euro Filter, which adapts its
cutoff to movement speed:
- When moving slowly: more smoothing (reduces jitter)
- When moving fast: less smoothing (reduces lag)

Reference: https://cristal.univ-lille.fr/~casiez/1euro/
"""

import math
import threading
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Hashable, Iterable, Optional

import numpy as np

from posebind.core.config import Config
from posebind.core.quaternion import quat_normalize, quat_slerp


POSITION_FILTER_MODES = ("lerp", "one_euro", "none")


def weighted_slerp_average(rotations: Iterable[np.ndarray]) -> np.ndarray:
    """
    Blend rotations (oldest first) into one.

    Sample i of n has weight (i + 1) / n. The blend is accumulated by
    successive slerps, each moving toward the next sample by its share of
    the weight seen so far. A single sample is returned unchanged.
    """
    samples = [np.asarray(q, dtype=np.float64) for q in rotations]
    if not samples:
        raise ValueError("Cannot average an empty rotation history")

    n = len(samples)
    smoothed = samples[0]
    total = 1.0 / n
    for index in range(1, n):
        weight = (index + 1) / n
        smoothed = quat_slerp(smoothed, samples[index], weight / (total + weight))
        total += weight
    return smoothed


class TemporalSmoothingFilter:
    """
    Per-key bounded rotation histories.

    Keys are bone roles. reset() empties every history at once so nothing
    from a previous rig survives into the next binding.
    """

    def __init__(self, capacity: int = 5):
        if capacity < 1:
            raise ValueError(f"History capacity must be at least 1, got {capacity}")
        self.capacity = capacity
        self._histories: Dict[Hashable, Deque[np.ndarray]] = {}
        self._lock = threading.Lock()

    def smooth(self, key: Hashable, rotation: np.ndarray) -> np.ndarray:
        """Add a rotation to the key's history and return the smoothed rotation."""
        with self._lock:
            history = self._histories.get(key)
            if history is None:
                history = deque(maxlen=self.capacity)
                self._histories[key] = history
            history.append(quat_normalize(rotation))
            return weighted_slerp_average(history)

    def current(self, key: Hashable) -> Optional[np.ndarray]:
        """Smoothed rotation for the key without adding a sample."""
        with self._lock:
            history = self._histories.get(key)
            if not history:
                return None
            return weighted_slerp_average(history)

    def history_length(self, key: Hashable) -> int:
        with self._lock:
            return len(self._histories.get(key, ()))

    def reset(self) -> None:
        """Clear all histories."""
        with self._lock:
            self._histories.clear()

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return bool(self._histories.get(key))

    def __len__(self) -> int:
        with self._lock:
            return len(self._histories)


@dataclass
class OneEuroFilterParams:
    """Parameters for One Euro Filter."""
    min_cutoff: float = 1.0      # Minimum cutoff frequency (Hz) - lower = more smoothing
    beta: float = 0.007          # Speed coefficient - higher = less lag when moving
    d_cutoff: float = 1.0        # Derivative cutoff frequency


class VectorOneEuroFilter:
    """One Euro Filter applied independently to each component of a vector."""

    def __init__(self, params: Optional[OneEuroFilterParams] = None):
        self.params = params or OneEuroFilterParams()
        self._x: Optional[np.ndarray] = None
        self._dx: Optional[np.ndarray] = None
        self._last_time: Optional[float] = None

    def reset(self):
        self._x = None
        self._dx = None
        self._last_time = None

    @staticmethod
    def _alpha(cutoff: np.ndarray, dt: float) -> np.ndarray:
        """Smoothing factor alpha from cutoff frequency."""
        tau = 1.0 / (2.0 * math.pi * cutoff)
        return 1.0 / (1.0 + tau / dt)

    def filter(self, value: np.ndarray, timestamp: float) -> np.ndarray:
        value = np.asarray(value, dtype=np.float64)
        if self._x is None:
            self._x = value.copy()
            self._dx = np.zeros_like(value)
            self._last_time = timestamp
            return value.copy()

        dt = timestamp - self._last_time
        if dt <= 0:
            dt = 1.0 / 30.0  # Default to 30 FPS
        self._last_time = timestamp

        # Filtered velocity drives the adaptive cutoff
        dx = (value - self._x) / dt
        d_alpha = self._alpha(np.full_like(value, self.params.d_cutoff), dt)
        self._dx = d_alpha * dx + (1.0 - d_alpha) * self._dx

        cutoff = self.params.min_cutoff + self.params.beta * np.abs(self._dx)
        alpha = self._alpha(cutoff, dt)
        self._x = alpha * value + (1.0 - alpha) * self._x
        return self._x.copy()


class PositionSmoother:
    """
    Per-key position smoothing for proxy avatar anchors.

    Modes:
        lerp: move `blend` of the way toward each new target
        one_euro: adaptive One Euro Filter driven by timestamps
        none: pass through
    The first sample for a key is always returned unchanged.
    """

    def __init__(
        self,
        mode: str = "lerp",
        blend: float = 0.15,
        params: Optional[OneEuroFilterParams] = None,
    ):
        if mode not in POSITION_FILTER_MODES:
            raise ValueError(f"Position filter mode must be one of {POSITION_FILTER_MODES}, got {mode!r}")
        if not 0.0 < blend <= 1.0:
            raise ValueError(f"Blend must be in (0, 1], got {blend}")
        self.mode = mode
        self.blend = blend
        self.params = params or OneEuroFilterParams()
        self._previous: Dict[Hashable, np.ndarray] = {}
        self._filters: Dict[Hashable, VectorOneEuroFilter] = {}
        self._lock = threading.Lock()

    def smooth(self, key: Hashable, position: np.ndarray, timestamp: float = 0.0) -> np.ndarray:
        position = np.asarray(position, dtype=np.float64)
        with self._lock:
            if self.mode == "none":
                result = position.copy()
            elif self.mode == "one_euro":
                filt = self._filters.get(key)
                if filt is None:
                    filt = VectorOneEuroFilter(self.params)
                    self._filters[key] = filt
                result = filt.filter(position, timestamp)
            else:
                previous = self._previous.get(key)
                if previous is None:
                    result = position.copy()
                else:
                    result = previous + (position - previous) * self.blend

            self._previous[key] = result
            return result.copy()

    def reset(self) -> None:
        with self._lock:
            self._previous.clear()
            self._filters.clear()

    @classmethod
    def from_config(cls, config: Config) -> "PositionSmoother":
        section = config.smoothing
        euro = section.get("one_euro", {}) or {}
        defaults = OneEuroFilterParams()
        return cls(
            mode=str(section.get("position_filter", "lerp")),
            blend=float(section.get("position_blend", 0.15)),
            params=OneEuroFilterParams(
                min_cutoff=float(euro.get("min_cutoff", defaults.min_cutoff)),
                beta=float(euro.get("beta", defaults.beta)),
                d_cutoff=float(euro.get("d_cutoff", defaults.d_cutoff)),
            ),
        )

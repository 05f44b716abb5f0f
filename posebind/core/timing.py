"""Frame timing and latest-frame hand-off"""

import threading
import time
from collections import deque
from typing import Deque, Generic, Optional, TypeVar


T = TypeVar("T")


class FrameTimer:
    """Measures and tracks per-frame retargeting times."""

    def __init__(self, window_size: int = 60):
        self._window_size = window_size
        self._frame_times: Deque[float] = deque(maxlen=window_size)
        self._start_time: Optional[float] = None
        self._last_frame_time: Optional[float] = None

    def start(self) -> None:
        """Start timing a frame."""
        self._start_time = time.perf_counter()

    def stop(self) -> float:
        """Stop timing and return elapsed time."""
        if self._start_time is None:
            return 0.0

        elapsed = time.perf_counter() - self._start_time
        self._frame_times.append(elapsed)
        self._last_frame_time = elapsed
        self._start_time = None
        return elapsed

    @property
    def last_frame_time(self) -> float:
        """Last frame processing time in seconds."""
        return self._last_frame_time or 0.0

    @property
    def average_frame_time(self) -> float:
        """Average frame processing time over window."""
        if not self._frame_times:
            return 0.0
        return sum(self._frame_times) / len(self._frame_times)

    @property
    def fps(self) -> float:
        """Sustainable frames per second based on processing time."""
        avg = self.average_frame_time
        return 1.0 / avg if avg > 0 else 0.0

    @property
    def sample_count(self) -> int:
        return len(self._frame_times)

    def reset(self) -> None:
        """Reset all timing data."""
        self._frame_times.clear()
        self._start_time = None
        self._last_frame_time = None


class LatestFrameSlot(Generic[T]):
    """
    Single-slot mailbox between a frame producer and the retarget loop.

    The producer overwrites whatever is waiting; the consumer always takes
    the newest item. Overwritten items are counted as coalesced.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._item: Optional[T] = None
        self._has_item = False
        self._coalesced = 0

    def put(self, item: T) -> None:
        with self._lock:
            if self._has_item:
                self._coalesced += 1
            self._item = item
            self._has_item = True

    def take(self) -> Optional[T]:
        """Remove and return the newest item, or None if empty."""
        with self._lock:
            if not self._has_item:
                return None
            item = self._item
            self._item = None
            self._has_item = False
            return item

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._has_item

    @property
    def coalesced(self) -> int:
        """Number of items overwritten before being consumed."""
        with self._lock:
            return self._coalesced

    def clear(self) -> None:
        with self._lock:
            self._item = None
            self._has_item = False

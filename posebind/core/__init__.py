"""Core systems - config, logging, timing, landmarks, quaternion math"""

from .config import Config
from .logging import setup_logging, get_logger, RateLimitedLogger
from .timing import FrameTimer, LatestFrameSlot
from .landmarks import (
    PoseLandmark,
    VirtualJoint,
    LANDMARK_COUNT,
    EXTENDED_LANDMARK_COUNT,
    REQUIRED_LANDMARKS,
    KEY_JOINTS,
    Landmark,
    LandmarkSet,
    PoseFrame,
    IncompleteFrameError,
    landmark_name,
)

__all__ = [
    "Config", "setup_logging", "get_logger", "RateLimitedLogger",
    "FrameTimer", "LatestFrameSlot",
    "PoseLandmark", "VirtualJoint",
    "LANDMARK_COUNT", "EXTENDED_LANDMARK_COUNT", "REQUIRED_LANDMARKS", "KEY_JOINTS",
    "Landmark", "LandmarkSet", "PoseFrame", "IncompleteFrameError",
    "landmark_name",
]

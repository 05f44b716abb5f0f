"""posebind - drives 3D avatar rigs from per-frame body landmarks"""

__version__ = "0.1.0"

"""Configuration management system"""

from pathlib import Path
from typing import Any, Optional
import yaml


class Config:
    """Centralized retargeting configuration with dot-notation access."""

    _instance: Optional["Config"] = None
    _config: dict = {}

    def __new__(cls, config_path: Optional[str] = None):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self, config_path: Optional[str] = None):
        if self._initialized and config_path is None:
            return

        if config_path is None:
            config_path = self._find_config()

        self._load(config_path)
        self._initialized = True

    def _find_config(self) -> str:
        """Find config.yaml in the working directory or above the package."""
        candidates = [Path.cwd()]
        current = Path(__file__).parent
        for _ in range(4):
            candidates.append(current)
            current = current.parent

        for directory in candidates:
            config_file = directory / "config.yaml"
            if config_file.exists():
                return str(config_file)

        raise FileNotFoundError("config.yaml not found")

    def _load(self, config_path: str) -> None:
        """Load configuration from YAML file."""
        with open(config_path, "r") as f:
            self._config = yaml.safe_load(f) or {}
        self._config_path = config_path

    def reload(self) -> None:
        """Reload configuration from file."""
        self._load(self._config_path)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get config value using dot notation.

        Example:
            config.get("confidence.joint_gate", 0.5)
            config.get("smoothing.history_size")
        """
        keys = key.split(".")
        value = self._config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value: Any) -> None:
        """Set config value using dot notation (runtime only, not persisted)."""
        keys = key.split(".")
        config = self._config

        for k in keys[:-1]:
            if not isinstance(config.get(k), dict):
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value

    def save(self, path: Optional[str] = None) -> None:
        """Save current configuration to file."""
        save_path = path or self._config_path
        with open(save_path, "w") as f:
            yaml.safe_dump(self._config, f, default_flow_style=False)

    def section(self, name: str) -> dict:
        """Return a top-level section, empty if absent or malformed."""
        value = self._config.get(name, {})
        return value if isinstance(value, dict) else {}

    @property
    def app(self) -> dict:
        return self.section("app")

    @property
    def normalizer(self) -> dict:
        return self.section("normalizer")

    @property
    def virtual_joints(self) -> dict:
        return self.section("virtual_joints")

    @property
    def smoothing(self) -> dict:
        return self.section("smoothing")

    @property
    def confidence(self) -> dict:
        return self.section("confidence")

    @property
    def resolver(self) -> dict:
        return self.section("resolver")

    @property
    def output(self) -> dict:
        return self.section("output")

    @property
    def analysis(self) -> dict:
        return self.section("analysis")

    @property
    def logging(self) -> dict:
        return self.section("logging")

    def __repr__(self) -> str:
        return f"Config({getattr(self, '_config_path', None)})"

"""
Engine bootstrap.

Loads config.yaml, sets up logging and returns a dispatcher ready for
bind_rig(). Hosts embed the engine through this instead of wiring the
pieces by hand.
"""

from pathlib import Path
from typing import Optional, Union

from posebind.core import Config, setup_logging, get_logger
from posebind.motion.dispatcher import RetargetDispatcher


def create_dispatcher(
    config_path: Optional[Union[str, Path]] = None,
    log_level: Optional[str] = None,
) -> RetargetDispatcher:
    """
    Build a RetargetDispatcher from configuration.

    Args:
        config_path: Path to config.yaml (searched for when omitted)
        log_level: Overrides logging.level from config

    Raises:
        FileNotFoundError: if no config file can be found
    """
    if config_path is not None:
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        config = Config(str(config_path))
    else:
        config = Config()

    setup_logging(
        level=log_level or config.get("logging.level", "INFO"),
        log_file=config.get("logging.log_file"),
        log_dir=config.get("logging.log_dir", "logs"),
    )

    logger = get_logger("engine")
    logger.info(
        f"{config.get('app.name', 'posebind')} v{config.get('app.version', '0.1.0')}"
    )

    dispatcher = RetargetDispatcher.from_config(config)
    logger.debug(
        f"Dispatcher ready: {len(dispatcher.bone_mappings)} bone roles, "
        f"{len(dispatcher.part_mappings)} proxy parts"
    )
    return dispatcher

"""
bimsync startup initialization.

Initializes, in order:
1. Config (with validation)
2. Logging
3. Typed engine settings
"""

import os
from pathlib import Path

from bimsync.config.loader import Config, load_config
from bimsync.config.settings import Settings, load_settings
from bimsync.config.singleton import GlobalConfig
from bimsync.exceptions import ConfigurationError
from bimsync.utils.logging import setup_logging_from_config


def initialize(project_dir: Path, env: str | None = None, verbose: bool = False) -> tuple[Config, Settings]:
    """
    Initialize a bimsync project directory.

    Args:
        project_dir: Directory holding config.yaml (optional file)
        env: Environment overlay name (default: $BIMSYNC_ENV or "dev")
        verbose: Force DEBUG logging

    Returns:
        Tuple of (config, settings)

    Raises:
        ConfigurationError: If the configuration cannot be loaded or is invalid
    """
    project_dir = Path(project_dir)
    env = env or os.environ.get("BIMSYNC_ENV", "dev")

    try:
        config = load_config(project_dir, env=env)
        config.validate()
    except (FileNotFoundError, PermissionError, ValueError) as e:
        raise ConfigurationError(str(e)) from None

    config.data["_env"] = env
    config.data["_project_dir"] = str(project_dir)
    GlobalConfig.set_config(config)

    if verbose:
        config.data["logging"] = {**(config.data.get("logging") or {}), "level": "DEBUG"}
    setup_logging_from_config(config.data, project_dir)

    return config, load_settings(config)

"""Configuration loading for the dot-agent engine.

This module handles loading engine configuration from a YAML file
and environment variables.

Contract:
- Inputs: Config file path, engine home, environment variables
- Outputs: EngineSettings objects
- Side Effects: Creates default config file if missing
"""

import logging
import os
from pathlib import Path

import yaml

from .settings import EngineSettings

logger = logging.getLogger(__name__)

ENV_PREFIX = "DOT_AGENT_"
CONFIG_FILENAME = "config.yaml"

DEFAULT_CONFIG = """# dot-agent engine configuration
# Environment variables (DOT_AGENT_<KEY>) take precedence over this file.

# Seconds to wait for another operation on the same target to finish
lock_timeout: 30

# Prefix agents/commands/rules/skills entries with the profile name on install
prefix_by_default: true

# Profile-relative paths that are never overwritten or deleted
protected_paths:
  - CLAUDE.md

# Take a snapshot of the target before switching profiles
snapshot_before_switch: true
"""


def get_config_path(home: Path | str | None = None) -> Path:
    """Get path to config file.

    Args:
        home: Engine home directory (default: DOT_AGENT_HOME or ~/.dot-agent)

    Returns:
        Path to config.yaml in the engine home

    Example:
        >>> config_path = get_config_path("/tmp/dot-agent")
        >>> assert config_path.name == "config.yaml"
    """
    if home is None:
        home = os.environ.get(f"{ENV_PREFIX}HOME", "~/.dot-agent")
    return Path(home).expanduser().resolve() / CONFIG_FILENAME


def create_default_config(config_path: Path) -> None:
    """Create default config file if it doesn't exist."""
    if config_path.exists():
        logger.debug(f"Config file already exists: {config_path}")
        return

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(DEFAULT_CONFIG, encoding="utf-8")
    logger.info(f"Created default config: {config_path}")


def load_config(config_path: Path | None = None, home: Path | str | None = None) -> EngineSettings:
    """Load engine configuration from YAML and environment.

    Precedence: defaults < YAML < environment variables.

    Args:
        config_path: Optional config file path (default: config.yaml in engine home)
        home: Optional engine home; used when config_path is not given

    Returns:
        Validated engine settings
    """
    if config_path is None:
        config_path = get_config_path(home)

    if not config_path.exists():
        create_default_config(config_path)

    yaml_settings: dict = {}
    try:
        with open(config_path, encoding="utf-8") as f:
            yaml_settings = yaml.safe_load(f) or {}
        logger.debug(f"Loaded config from {config_path}")
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Failed to load config from {config_path}: {e}")
        logger.info("Using default settings and environment variables")

    if not isinstance(yaml_settings, dict):
        logger.warning(f"Ignoring config {config_path}: top level must be a mapping")
        yaml_settings = {}

    # Only pass YAML values that don't have corresponding env vars
    filtered_yaml = {}
    for key, value in yaml_settings.items():
        env_key = f"{ENV_PREFIX}{str(key).upper()}"
        if env_key not in os.environ:
            filtered_yaml[key] = value

    if home is not None and f"{ENV_PREFIX}HOME" not in os.environ:
        filtered_yaml.setdefault("home", str(home))

    settings = EngineSettings(**filtered_yaml)

    logger.info(f"Engine configuration loaded: home={settings.home}, lock_timeout={settings.lock_timeout}")

    return settings

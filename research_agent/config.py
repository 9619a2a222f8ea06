"""
Configuration loader for the research agent.

The application configuration is stored in a YAML file: router options,
extra model catalog entries per provider, tool settings, prompts and the
log level. API keys are not stored there; they live in the provider
credentials file or in environment variables (see
`research_agent.models.config_store`).
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from research_agent.errors import ConfigurationError

DEFAULT_LOG_LEVEL = "WARNING"


def load_app_config(path: Optional[str]) -> Dict[str, Any]:
    """
    Load the application configuration from a YAML file.

    Args:
        path: Path to the YAML configuration file, or None for an empty config.

    Returns:
        A dictionary representing the configuration.

    Raises:
        ConfigurationError: If the file is missing, is not valid YAML, or
            its top level is not a mapping.
    """
    if path is None:
        return {}
    if not os.path.exists(path):
        raise ConfigurationError(f"Config file not found at: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Config file '{path}' is not valid YAML: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigurationError("Top-level configuration must be a mapping/dictionary.")

    return data


def log_level(cfg: Dict[str, Any]) -> int:
    """`logging.level` from the config, else LOG_LEVEL, else WARNING."""
    name = (cfg.get("logging") or {}).get("level") or os.getenv("LOG_LEVEL") or DEFAULT_LOG_LEVEL
    level = logging.getLevelName(str(name).upper())
    if not isinstance(level, int):
        raise ConfigurationError(f"Unknown log level '{name}'.")
    return level


def credentials_path(cfg: Dict[str, Any]) -> Optional[Path]:
    """Credentials file named in the config, if any."""
    path = cfg.get("credentials_file")
    return Path(path).expanduser() if path else None

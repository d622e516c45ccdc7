"""
Configuration file loader for Incident Commander.

Supports loading configuration from YAML and TOML files with environment variable
overrides and a standard search path. Files use nested sections::

    approval:
      mode: copilot
      timeout_seconds: 120
    planner:
      url: http://reasoner.internal/plan
      timeout_seconds: 5
    dispatch:
      default_provider: AWS
      denied_targets: ["RESTART:prod-*"]
    audit:
      file: /var/log/incident-commander/audit.jsonl
    incidents:
      retained: 1000
    logging:
      level: INFO
"""

import os
import sys
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from .constants import ENV_PREFIX
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# (section, key) -> CommanderConfig field
SECTION_FIELDS = {
    ("approval", "mode"): "approval_mode",
    ("approval", "timeout_seconds"): "approval_timeout_seconds",
    ("planner", "url"): "planner_url",
    ("planner", "timeout_seconds"): "planner_timeout_seconds",
    ("planner", "failure_threshold"): "planner_failure_threshold",
    ("planner", "recovery_seconds"): "planner_recovery_seconds",
    ("supervisor", "settle_seconds"): "verification_settle_seconds",
    ("dispatch", "default_provider"): "default_provider",
    ("dispatch", "default_target"): "default_target",
    ("dispatch", "denied_targets"): "denied_targets",
    ("audit", "file"): "audit_log_file",
    ("audit", "recent_events_limit"): "recent_events_limit",
    ("incidents", "retained"): "retained_incidents",
    ("logging", "level"): "log_level",
    ("logging", "file"): "log_file",
}

# env suffix -> (section, key, converter)
ENV_FIELDS = {
    "HITL_MODE": ("approval", "mode", lambda v: v.lower()),
    "APPROVAL_TIMEOUT": ("approval", "timeout_seconds", int),
    "PLANNER_URL": ("planner", "url", str),
    "PLANNER_TIMEOUT": ("planner", "timeout_seconds", int),
    "PLANNER_FAILURE_THRESHOLD": ("planner", "failure_threshold", int),
    "PLANNER_RECOVERY": ("planner", "recovery_seconds", int),
    "SETTLE_SECONDS": ("supervisor", "settle_seconds", float),
    "DEFAULT_PROVIDER": ("dispatch", "default_provider", str),
    "DEFAULT_TARGET": ("dispatch", "default_target", str),
    "DENIED_TARGETS": (
        "dispatch", "denied_targets",
        lambda v: [item.strip() for item in v.split(",") if item.strip()],
    ),
    "AUDIT_LOG_FILE": ("audit", "file", str),
    "RECENT_EVENTS_LIMIT": ("audit", "recent_events_limit", int),
    "RETAINED_INCIDENTS": ("incidents", "retained", int),
    "LOG_LEVEL": ("logging", "level", str),
    "LOG_FILE": ("logging", "file", str),
}


def load_yaml_file(path: Path) -> dict:
    """
    Load configuration from a YAML file.

    Raises:
        FileNotFoundError: If file doesn't exist
        ConfigurationError: If YAML parsing fails or the document is not a mapping
    """
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        with open(path, 'r') as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse YAML config file {path}: {e}") from e

    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ConfigurationError(f"YAML config file {path} must contain a mapping")
    return config


def load_toml_file(path: Path) -> dict:
    """
    Load configuration from a TOML file.

    Raises:
        FileNotFoundError: If file doesn't exist
        ConfigurationError: If TOML parsing fails
    """
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        with open(path, 'rb') as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Failed to parse TOML config file {path}: {e}") from e


def load_config_file(path: str) -> dict:
    """
    Load configuration from a YAML or TOML file.

    The file format is determined by the file extension (.yaml, .yml, or .toml).

    Raises:
        ValueError: If file extension is not supported
        FileNotFoundError: If file doesn't exist
        ConfigurationError: If parsing fails
    """
    file_path = Path(path)
    suffix = file_path.suffix.lower()

    if suffix in ['.yaml', '.yml']:
        return load_yaml_file(file_path)
    elif suffix == '.toml':
        return load_toml_file(file_path)
    else:
        raise ValueError(
            f"Unsupported config file format: {suffix}. "
            "Supported formats: .yaml, .yml, .toml"
        )


def find_config_file() -> Optional[Path]:
    """
    Search for a configuration file in standard locations.

    Search order:
    1. ./incident-commander.yaml
    2. ./incident-commander.toml
    3. ~/.incident-commander.yaml
    4. ~/.incident-commander.toml
    5. /etc/incident-commander.yaml
    6. /etc/incident-commander.toml

    Returns:
        Path to the first configuration file found, or None if no file is found
    """
    search_paths = [
        Path.cwd() / "incident-commander.yaml",
        Path.cwd() / "incident-commander.toml",
        Path.home() / ".incident-commander.yaml",
        Path.home() / ".incident-commander.toml",
        Path("/etc/incident-commander.yaml"),
        Path("/etc/incident-commander.toml"),
    ]

    for path in search_paths:
        if path.exists() and path.is_file():
            logger.info(f"Found configuration file: {path}")
            return path

    logger.debug("No configuration file found in standard locations")
    return None


def get_env_config() -> dict:
    """
    Extract configuration from ``INCIDENT_COMMANDER_*`` environment variables.

    Values that fail to convert are logged and ignored.

    Returns:
        Nested dictionary in the same shape as a config file
    """
    config: Dict[str, Dict[str, Any]] = {}

    for suffix, (section, key, convert) in ENV_FIELDS.items():
        env_key = f"{ENV_PREFIX}{suffix}"
        raw = os.getenv(env_key)
        if not raw:
            continue
        try:
            value = convert(raw)
        except ValueError:
            logger.warning(f"Invalid {env_key}, ignoring")
            continue
        config.setdefault(section, {})[key] = value

    return config


def deep_merge(base: dict, override: dict) -> dict:
    """
    Deep merge two dictionaries, with override values taking precedence.
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def flatten_config(config: dict) -> dict:
    """
    Flatten a nested configuration dictionary to CommanderConfig fields.

    Unknown sections and keys are logged and dropped.
    """
    flat = {}

    for section, values in config.items():
        if not isinstance(values, dict):
            logger.warning(f"Ignoring non-mapping config section: {section}")
            continue
        for key, value in values.items():
            field_name = SECTION_FIELDS.get((section, key))
            if field_name is None:
                logger.warning(f"Ignoring unknown config key: {section}.{key}")
                continue
            flat[field_name] = value

    return flat


def merge_config(file_config: dict, env_config: dict) -> dict:
    """
    Merge file-based and environment-based configuration.

    Environment variables take precedence over file-based configuration.

    Returns:
        Merged configuration dictionary (flattened)
    """
    merged = deep_merge(file_config, env_config)
    return flatten_config(merged)


def load_config_with_overrides(config_path: Optional[str] = None) -> dict:
    """
    Load configuration from file with environment variable overrides.

    Args:
        config_path: Optional explicit path to config file.
                    If None, searches standard locations.

    Returns:
        Dictionary of CommanderConfig keyword arguments

    Raises:
        FileNotFoundError: If explicit config_path is provided but doesn't exist
        ConfigurationError: If config parsing fails
    """
    file_config = {}

    if config_path:
        file_config = load_config_file(config_path)
        logger.info(f"Loaded configuration from: {config_path}")
    else:
        found_path = find_config_file()
        if found_path:
            file_config = load_config_file(str(found_path))
            logger.info(f"Loaded configuration from: {found_path}")

    env_config = get_env_config()
    if env_config:
        logger.info("Applying environment variable overrides")

    return merge_config(file_config, env_config)

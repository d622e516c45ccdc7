"""Configuration management for Incident Commander.

Configuration can be loaded from environment variables, YAML/TOML files, or
direct instantiation.

Classes:
    CommanderConfig: Main configuration dataclass with validation.

Example:
    >>> from incident_commander.config import CommanderConfig
    >>>
    >>> # Load from environment variables
    >>> config = CommanderConfig.from_env()
    >>>
    >>> # Recommended: automatic loading with fallback
    >>> config = CommanderConfig.load()
    >>> config.validate()
"""
import os
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .constants import (
    DEFAULT_APPROVAL_TIMEOUT_SECONDS,
    DEFAULT_PLANNER_FAILURE_THRESHOLD,
    DEFAULT_PLANNER_RECOVERY_SECONDS,
    DEFAULT_PLANNER_TIMEOUT_SECONDS,
    DEFAULT_PROVIDER,
    DEFAULT_RECENT_EVENTS_LIMIT,
    DEFAULT_RETAINED_INCIDENTS,
    DEFAULT_SETTLE_SECONDS,
    DEFAULT_TARGET,
    ENV_PREFIX,
    VALID_APPROVAL_MODES,
    VALID_LOG_LEVELS,
)
from .dispatch.policy import DenyRule
from .exceptions import ConfigurationError, InvalidConfigError

logger = logging.getLogger(__name__)


def _get_int_env(key: str, default: int) -> int:
    """Safely get a positive integer from an environment variable.

    Returns the default value if the variable is not set, cannot be parsed,
    or is not positive.

    Example:
        >>> _get_int_env('MISSING_VAR', 50)
        50
    """
    value = os.getenv(key)
    if value is None:
        return default

    try:
        result = int(value)
        if result <= 0:
            logger.warning(
                f"Environment variable {key}={value} must be positive. Using default: {default}"
            )
            return default
        return result
    except ValueError:
        logger.warning(
            f"Environment variable {key}={value} is not a valid integer. Using default: {default}"
        )
        return default


def _get_float_env(key: str, default: float) -> float:
    """Safely get a non-negative float from an environment variable."""
    value = os.getenv(key)
    if value is None:
        return default

    try:
        result = float(value)
    except ValueError:
        logger.warning(
            f"Environment variable {key}={value} is not a valid number. Using default: {default}"
        )
        return default
    if result < 0:
        logger.warning(
            f"Environment variable {key}={value} must not be negative. Using default: {default}"
        )
        return default
    return result


def _get_list_env(key: str) -> List[str]:
    """Comma-separated list from an environment variable."""
    value = os.getenv(key, "")
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class CommanderConfig:
    """
    Configuration for Incident Commander.

    Environment variables (prefix ``INCIDENT_COMMANDER_``):
        HITL_MODE: ``autonomous`` or ``copilot`` (default: autonomous)
        APPROVAL_TIMEOUT: Approval wait bound in seconds (default: 300)
        PLANNER_URL: Reasoning service endpoint (optional)
        PLANNER_TIMEOUT: Planner call bound in seconds (default: 10)
        PLANNER_FAILURE_THRESHOLD: Failures before the planner circuit opens (default: 3)
        PLANNER_RECOVERY: Seconds before retrying an open planner circuit (default: 60)
        SETTLE_SECONDS: Delay before verification (default: 2.0)
        DEFAULT_PROVIDER: Provider for plans without one (default: AWS)
        DEFAULT_TARGET: Target for plans without one (default: unknown-resource)
        DENIED_TARGETS: Comma-separated ``ACTION:glob`` veto rules
        AUDIT_LOG_FILE: JSONL audit mirror (optional)
        RECENT_EVENTS_LIMIT: Size of the recent events view (default: 500)
        RETAINED_INCIDENTS: Finished incidents kept for queries (default: 1000)
        LOG_LEVEL: Logging level (default: INFO)
        LOG_FILE: Log file path (optional)

    Config file locations (searched in order):
        ./incident-commander.yaml, ./incident-commander.toml
        ~/.incident-commander.yaml, ~/.incident-commander.toml
        /etc/incident-commander.yaml, /etc/incident-commander.toml
    """
    # Approval gate
    approval_mode: str = "autonomous"
    approval_timeout_seconds: int = DEFAULT_APPROVAL_TIMEOUT_SECONDS

    # Planning collaborator
    planner_url: Optional[str] = None
    planner_timeout_seconds: int = DEFAULT_PLANNER_TIMEOUT_SECONDS
    planner_failure_threshold: int = DEFAULT_PLANNER_FAILURE_THRESHOLD
    planner_recovery_seconds: int = DEFAULT_PLANNER_RECOVERY_SECONDS

    # Supervisor loop
    verification_settle_seconds: float = DEFAULT_SETTLE_SECONDS

    # Dispatch
    default_provider: str = DEFAULT_PROVIDER
    default_target: str = DEFAULT_TARGET
    denied_targets: List[str] = field(default_factory=list)

    # Audit
    audit_log_file: Optional[str] = None
    recent_events_limit: int = DEFAULT_RECENT_EVENTS_LIMIT

    # Lifecycle
    retained_incidents: int = DEFAULT_RETAINED_INCIDENTS

    # Logging configuration
    log_level: str = "INFO"
    log_file: Optional[str] = None

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            InvalidConfigError: If any configuration value is invalid
        """
        errors = []

        if self.approval_mode.lower() not in VALID_APPROVAL_MODES:
            errors.append(
                f"approval_mode must be one of {VALID_APPROVAL_MODES}, got '{self.approval_mode}'"
            )

        for name in (
            "approval_timeout_seconds",
            "planner_timeout_seconds",
            "planner_failure_threshold",
            "planner_recovery_seconds",
            "recent_events_limit",
            "retained_incidents",
        ):
            value = getattr(self, name)
            if value <= 0:
                errors.append(f"{name} must be positive, got {value}")

        if self.verification_settle_seconds < 0:
            errors.append(
                f"verification_settle_seconds must not be negative, got {self.verification_settle_seconds}"
            )

        if not self.default_provider.strip():
            errors.append("default_provider must not be empty")
        if not self.default_target.strip():
            errors.append("default_target must not be empty")

        for rule in self.denied_targets:
            try:
                DenyRule.parse(rule)
            except ValueError as e:
                errors.append(str(e))

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            errors.append(
                f"log_level must be one of {VALID_LOG_LEVELS}, got '{self.log_level}'"
            )

        if errors:
            raise InvalidConfigError("Configuration validation failed:\n  - " + "\n  - ".join(errors))

    @classmethod
    def from_env(cls) -> 'CommanderConfig':
        """
        Create configuration from environment variables only.

        Returns:
            CommanderConfig instance populated from environment variables
        """
        p = ENV_PREFIX
        return cls(
            approval_mode=os.getenv(f"{p}HITL_MODE", "autonomous").lower(),
            approval_timeout_seconds=_get_int_env(f"{p}APPROVAL_TIMEOUT", DEFAULT_APPROVAL_TIMEOUT_SECONDS),
            planner_url=os.getenv(f"{p}PLANNER_URL") or None,
            planner_timeout_seconds=_get_int_env(f"{p}PLANNER_TIMEOUT", DEFAULT_PLANNER_TIMEOUT_SECONDS),
            planner_failure_threshold=_get_int_env(
                f"{p}PLANNER_FAILURE_THRESHOLD", DEFAULT_PLANNER_FAILURE_THRESHOLD
            ),
            planner_recovery_seconds=_get_int_env(f"{p}PLANNER_RECOVERY", DEFAULT_PLANNER_RECOVERY_SECONDS),
            verification_settle_seconds=_get_float_env(f"{p}SETTLE_SECONDS", DEFAULT_SETTLE_SECONDS),
            default_provider=os.getenv(f"{p}DEFAULT_PROVIDER", DEFAULT_PROVIDER),
            default_target=os.getenv(f"{p}DEFAULT_TARGET", DEFAULT_TARGET),
            denied_targets=_get_list_env(f"{p}DENIED_TARGETS"),
            audit_log_file=os.getenv(f"{p}AUDIT_LOG_FILE") or None,
            recent_events_limit=_get_int_env(f"{p}RECENT_EVENTS_LIMIT", DEFAULT_RECENT_EVENTS_LIMIT),
            retained_incidents=_get_int_env(f"{p}RETAINED_INCIDENTS", DEFAULT_RETAINED_INCIDENTS),
            log_level=os.getenv(f"{p}LOG_LEVEL", "INFO"),
            log_file=os.getenv(f"{p}LOG_FILE") or None,
        )

    @classmethod
    def from_file(cls, config_path: Optional[str] = None) -> 'CommanderConfig':
        """
        Create configuration from file with environment variable overrides.

        If no path is provided, searches standard locations. Unreadable
        files fall back to environment-only configuration.

        Args:
            config_path: Optional explicit path to config file.

        Returns:
            CommanderConfig instance with merged configuration
        """
        from .config_loader import load_config_with_overrides

        try:
            config_dict = load_config_with_overrides(config_path)
            return cls(**config_dict)
        except (OSError, ValueError, TypeError, ConfigurationError) as e:
            logger.error(f"Failed to load configuration from file: {e}")
            logger.warning("Falling back to environment variable configuration")
            return cls.from_env()

    @classmethod
    def load(cls, config_path: Optional[str] = None, use_file: bool = True) -> 'CommanderConfig':
        """
        Load configuration with automatic fallback.

        Args:
            config_path: Optional explicit path to config file
            use_file: If True, attempts to load from file before env vars

        Example:
            >>> config = CommanderConfig.load()                 # file, then env
            >>> config = CommanderConfig.load(use_file=False)   # env only
        """
        if use_file:
            return cls.from_file(config_path)
        else:
            return cls.from_env()

"""Configuration loading for screenwatch.

Loads settings from TOML config file with CLI override support.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import timedelta
from pathlib import Path
from typing import Any, Optional

import tomli

from screenwatch.exceptions import ConfigError
from screenwatch.models import AgeGroup
from screenwatch.policies.models import AgeGroupPolicy, DEFAULT_POLICIES, parse_clock

logger = logging.getLogger(__name__)


def get_default_config_path() -> Path:
    """Get the default config file path."""
    return Path.home() / ".config" / "screenwatch" / "screenwatch.toml"


def get_config_search_paths() -> list[Path]:
    """Get list of paths to search for config file."""
    return [
        Path("screenwatch.toml"),  # Current directory
        get_default_config_path(),
        Path("/etc/screenwatch/screenwatch.toml"),
    ]


def find_config_file() -> Optional[Path]:
    """Find the first existing config file."""
    for path in get_config_search_paths():
        if path.exists():
            return path
    return None


@dataclass
class Config:
    """Loaded configuration with all sections."""

    # Database
    db_path: Path = field(
        default_factory=lambda: Path.home() / ".local" / "share" / "screenwatch" / "history.db"
    )

    # Monitoring
    detection_interval_ms: int = 30_000
    confidence_threshold: float = 75.0
    silence_timeout_ms: int = 300_000  # 5 minutes

    # Age-group policies
    policies: dict[AgeGroup, AgeGroupPolicy] = field(
        default_factory=lambda: dict(DEFAULT_POLICIES)
    )

    # Classifier
    classifier_url: Optional[str] = None
    classifier_health_url: Optional[str] = None
    classifier_timeout: float = 10.0

    # Sensor
    frames_dir: Optional[Path] = None
    frame_max_age: float = 120.0

    # Lock action
    lock_command: Optional[str] = None

    # Webhook
    webhook_enabled: bool = False
    webhook_url: Optional[str] = None

    # History retention
    retention_days: int = 90

    @property
    def silence_timeout(self) -> timedelta:
        return timedelta(milliseconds=self.silence_timeout_ms)


def _as_int(value: Any, name: str) -> int:
    """Coerce a config value to int, raising ConfigError on a wrong type."""
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be a number, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be a number, got {value!r}") from e


def _as_float(value: Any, name: str) -> float:
    """Coerce a config value to float, raising ConfigError on a wrong type."""
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be a number, got {value!r}") from e


def _parse_age_groups(config: Config, data: dict[str, Any]) -> None:
    """Apply [age_groups.<label>] overrides on top of the default table."""
    for label, group_data in data.items():
        try:
            age_group = AgeGroup(label)
        except ValueError:
            logger.warning(f"Unknown age group '{label}' in config, ignoring")
            continue

        if not isinstance(group_data, dict):
            raise ConfigError(f"[age_groups.{label}] must be a table")

        policy = config.policies[age_group]
        if "limit_minutes" in group_data:
            limit = _as_int(group_data["limit_minutes"], f"limit_minutes for {label}")
            if limit < 0:
                raise ConfigError(f"limit_minutes for {label} must be >= 0, got {limit}")
            policy = replace(policy, limit_minutes=limit)
        if "bedtime" in group_data:
            policy = replace(policy, bedtime=parse_clock(group_data["bedtime"]))
        if "enabled" in group_data and not group_data["enabled"]:
            policy = replace(policy, limit_minutes=0)
        if "description" in group_data:
            policy = replace(policy, description=group_data["description"])

        config.policies[age_group] = policy


def load_config(config_path: Optional[Path] = None) -> Config:
    """Load configuration from TOML file.

    Args:
        config_path: Explicit path to config file, or None to search

    Returns:
        Config object with loaded values

    Raises:
        ConfigError: If a value is present but unusable (e.g. bad bedtime)
    """
    config = Config()

    # Find config file
    if config_path is None:
        config_path = find_config_file()

    if config_path is None or not config_path.exists():
        logger.debug("No config file found, using defaults")
        return config

    logger.info(f"Loading config from {config_path}")

    try:
        with open(config_path, "rb") as f:
            data = tomli.load(f)
    except Exception as e:
        logger.warning(f"Failed to load config file: {e}")
        return config

    # Database section
    if "database" in data:
        db = data["database"]
        if "path" in db:
            config.db_path = Path(db["path"]).expanduser()
        if "retention_days" in db:
            config.retention_days = _as_int(db["retention_days"], "retention_days")

    # Monitoring section
    if "monitoring" in data:
        mon = data["monitoring"]
        if "detection_interval_ms" in mon:
            config.detection_interval_ms = _as_int(
                mon["detection_interval_ms"], "detection_interval_ms"
            )
        if "confidence_threshold" in mon:
            config.confidence_threshold = _as_float(
                mon["confidence_threshold"], "confidence_threshold"
            )
        if "silence_timeout_ms" in mon:
            config.silence_timeout_ms = _as_int(mon["silence_timeout_ms"], "silence_timeout_ms")

        if config.detection_interval_ms <= 0:
            raise ConfigError("detection_interval_ms must be positive")
        if config.silence_timeout_ms <= 0:
            raise ConfigError("silence_timeout_ms must be positive")
        if not 0 <= config.confidence_threshold <= 100:
            raise ConfigError("confidence_threshold must be between 0 and 100")

    # Age groups section
    if "age_groups" in data:
        _parse_age_groups(config, data["age_groups"])

    # Classifier section
    if "classifier" in data:
        cls = data["classifier"]
        if "url" in cls:
            config.classifier_url = cls["url"]
        if "health_url" in cls:
            config.classifier_health_url = cls["health_url"]
        if "timeout_seconds" in cls:
            config.classifier_timeout = _as_float(cls["timeout_seconds"], "timeout_seconds")

    # Sensor section
    if "sensor" in data:
        sensor = data["sensor"]
        if "frames_dir" in sensor:
            config.frames_dir = Path(sensor["frames_dir"]).expanduser()
        if "max_age_seconds" in sensor:
            config.frame_max_age = _as_float(sensor["max_age_seconds"], "max_age_seconds")

    # Lock section
    if "lock" in data:
        lock = data["lock"]
        if "command" in lock:
            config.lock_command = lock["command"]

    # Webhook section
    if "webhook" in data:
        webhook = data["webhook"]
        if "enabled" in webhook:
            config.webhook_enabled = webhook["enabled"]
        if "url" in webhook:
            config.webhook_url = webhook["url"]

    return config


def merge_cli_options(config: Config, **cli_options: Any) -> Config:
    """Merge CLI options into config (CLI takes precedence).

    Args:
        config: Base config from file
        **cli_options: CLI option overrides (None values are ignored)

    Returns:
        Config with CLI overrides applied
    """
    # Map CLI option names to config attributes
    mappings = {
        "interval": "detection_interval_ms",
        "threshold": "confidence_threshold",
        "timeout": "silence_timeout_ms",
        "classifier_url": "classifier_url",
        "frames_dir": "frames_dir",
        "lock_command": "lock_command",
        "db": "db_path",
    }

    for cli_name, config_name in mappings.items():
        if cli_name in cli_options:
            value = cli_options[cli_name]
            # Only override if CLI value is meaningful
            if value is not None and value != "":
                if cli_name in ("db", "frames_dir"):
                    value = Path(value)
                setattr(config, config_name, value)

    return config

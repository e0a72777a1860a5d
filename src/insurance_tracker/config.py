"""Configuration loading and validation for insurance-tracker."""

import logging
import os
import re
from dataclasses import dataclass, field
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "~/.config/insurance-tracker/config.yaml"

KNOWN_KEYS = {
    "database_url",
    "timezone",
    "alert_channel",
    "alert_time",
    "roles",
    "alert_mentions",
    "team_id",
    "health_port",
    "page_size",
    "collector_timeout",
    "removal_password",
}

VALID_ROLE_KEYS = ("admin", "manager", "high_command", "founder", "co_founder")

# Roles pinged by alert posts when alert_mentions is not set.
DEFAULT_MENTION_ROLES = ("founder", "co_founder", "high_command")

ENV_OVERRIDES = {
    "INSURANCE_DATABASE_URL": "database_url",
    "INSURANCE_TIMEZONE": "timezone",
    "INSURANCE_ALERT_CHANNEL_ID": "alert_channel",
    "INSURANCE_TEAM_ID": "team_id",
    "INSURANCE_REMOVAL_PASSWORD": "removal_password",
    "PORT": "health_port",
}

_ALERT_TIME_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


@dataclass
class Config:
    database_url: str = "sqlite:///insurance.db"
    timezone: str = "Asia/Kolkata"
    alert_channel: str | None = None
    alert_time: str = "08:30"
    roles: dict[str, str] = field(default_factory=dict)
    alert_mentions: list[str] = field(default_factory=list)
    team_id: str | None = None
    health_port: int = 3000
    page_size: int = 10
    collector_timeout: float = 60
    removal_password: str | None = None

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def alert_hour_minute(self) -> tuple[int, int]:
        hour, minute = self.alert_time.split(":")
        return int(hour), int(minute)

    @property
    def role_ids(self) -> list[str]:
        """Configured user group IDs, in role-key order."""
        return [self.roles[key] for key in VALID_ROLE_KEYS if self.roles.get(key)]

    @property
    def mention_groups(self) -> list[str]:
        if self.alert_mentions:
            return list(self.alert_mentions)
        return [self.roles[key] for key in DEFAULT_MENTION_ROLES if self.roles.get(key)]


def _validate_config(config: Config) -> None:
    """Validate config values, raising ValueError on invalid fields."""
    try:
        ZoneInfo(config.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"timezone '{config.timezone}' is not a known IANA zone")

    if not _ALERT_TIME_RE.match(str(config.alert_time)):
        raise ValueError(f"alert_time must be HH:MM, got {config.alert_time!r}")

    if not isinstance(config.page_size, int) or isinstance(config.page_size, bool):
        raise ValueError(f"page_size must be an integer, got {type(config.page_size).__name__}")
    if not 1 <= config.page_size <= 25:
        raise ValueError(f"page_size must be between 1 and 25, got {config.page_size}")

    if not isinstance(config.collector_timeout, (int, float)):
        raise ValueError(
            f"collector_timeout must be a number, got {type(config.collector_timeout).__name__}"
        )
    if config.collector_timeout <= 0:
        raise ValueError(f"collector_timeout must be positive, got {config.collector_timeout}")

    if not isinstance(config.health_port, int) or not 1 <= config.health_port <= 65535:
        raise ValueError(f"health_port must be a port number, got {config.health_port!r}")

    if not config.database_url:
        raise ValueError("database_url must not be empty")


def _apply_env(config: Config, environ) -> None:
    for var, attr in ENV_OVERRIDES.items():
        value = environ.get(var)
        if not value:
            continue
        if attr == "health_port":
            try:
                config.health_port = int(value)
            except ValueError:
                raise ValueError(f"{var} must be an integer, got {value!r}")
        else:
            setattr(config, attr, value)

    for key in VALID_ROLE_KEYS:
        value = environ.get(f"INSURANCE_{key.upper()}_GROUP_ID")
        if value:
            config.roles[key] = value


def load_config(path: str | None = None, environ=None) -> Config:
    """Load configuration from a YAML file plus environment overrides.

    Config path resolution order:
    1. Explicit path argument
    2. INSURANCE_CONFIG_PATH environment variable
    3. ~/.config/insurance-tracker/config.yaml (skipped when absent)
    """
    if environ is None:
        environ = os.environ

    explicit = True
    if path is None:
        path = environ.get("INSURANCE_CONFIG_PATH")
    if path is None:
        path = os.path.expanduser(DEFAULT_CONFIG_PATH)
        explicit = False

    raw = None
    if explicit or os.path.exists(path):
        with open(path) as f:
            raw = yaml.safe_load(f)
    else:
        logger.info("No config file at %s; using defaults and environment", path)

    if raw is None:
        raw = {}

    if not isinstance(raw, dict):
        raise ValueError(f"Config file must contain a YAML mapping, got {type(raw).__name__}")

    # Warn about unknown keys
    for key in raw:
        if key not in KNOWN_KEYS:
            logger.warning("Unknown config key '%s' — ignoring", key)

    config = Config()

    # Simple scalar fields
    if "database_url" in raw:
        config.database_url = str(raw["database_url"])
    if "timezone" in raw:
        config.timezone = str(raw["timezone"])
    if raw.get("alert_channel"):
        config.alert_channel = str(raw["alert_channel"])
    if "alert_time" in raw:
        config.alert_time = str(raw["alert_time"])
    if raw.get("team_id"):
        config.team_id = str(raw["team_id"])
    if "health_port" in raw:
        config.health_port = raw["health_port"]
    if "page_size" in raw:
        config.page_size = raw["page_size"]
    if "collector_timeout" in raw:
        config.collector_timeout = raw["collector_timeout"]
    if raw.get("removal_password"):
        config.removal_password = str(raw["removal_password"])

    # Roles: role key -> user group ID
    if "roles" in raw:
        raw_roles = raw["roles"]
        if not isinstance(raw_roles, dict):
            raise ValueError("'roles' must be a mapping")
        for key, value in raw_roles.items():
            if key not in VALID_ROLE_KEYS:
                logger.warning("Unknown role key '%s' — ignoring", key)
                continue
            if value:
                config.roles[key] = str(value)

    if "alert_mentions" in raw:
        raw_mentions = raw["alert_mentions"]
        if not isinstance(raw_mentions, list):
            raise ValueError("'alert_mentions' must be a list")
        config.alert_mentions = [str(group) for group in raw_mentions]

    _apply_env(config, environ)
    _validate_config(config)

    if not config.role_ids:
        logger.warning("No authorization roles configured; every command will be denied")

    return config

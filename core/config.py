"""Configuration loader -- reads config.yaml + .env, validates with Pydantic.

Resolves ${ENV_VAR} references in YAML values from environment variables.
Fails fast with clear errors if the config does not validate.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from core.duration import parse_duration

logger = logging.getLogger(__name__)

# Default home directory for all state files
DEFAULT_HOME = Path.home() / ".homesched"
HOME_ENV_VAR = "HOMESCHED_HOME"


def _resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ${ENV_VAR} references in config values."""
    if isinstance(value, str):
        pattern = re.compile(r"\$\{(\w+)\}")
        def replacer(match: re.Match) -> str:
            var_name = match.group(1)
            env_value = os.environ.get(var_name)
            if env_value is None:
                logger.warning("Environment variable %s not set", var_name)
                return match.group(0)  # leave unresolved
            return env_value
        return pattern.sub(replacer, value)
    elif isinstance(value, dict):
        return {k: _resolve_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_resolve_env_vars(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# Config models (Pydantic)
# ---------------------------------------------------------------------------

class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8321


class SchedulerConfig(BaseModel):
    timezone: str = "UTC"
    scan_interval: str = "60s"
    drain_interval: str = "10s"
    optimize_interval: str = "1d"
    deferral_delay: str = "5m"
    history_limit: int = Field(default=1000, ge=1)
    persist_events: bool = True

    @field_validator("scan_interval", "drain_interval", "optimize_interval", "deferral_delay")
    @classmethod
    def _check_duration(cls, value: str) -> str:
        parse_duration(value)
        return value

    def seconds(self, field: str) -> float:
        """Return one of the duration settings in seconds."""
        return parse_duration(getattr(self, field)).total_seconds()


class SimulatedHomeConfig(BaseModel):
    """In-memory collaborators, for development and dry runs."""

    enabled: bool = True
    presence: str = "home"
    energy_price: float = 0.25
    energy_level: str = "normal"
    devices: dict[str, dict[str, Any]] = Field(default_factory=dict)
    scenes: list[str] = Field(default_factory=list)
    flows: list[str] = Field(default_factory=list)


class EnergyPriceFeedConfig(BaseModel):
    enabled: bool = False
    url: str = ""
    api_key: str = ""
    price_field: str = "price"
    level_field: str = "level"
    cache_ttl: str = "5m"


class WebhookConfig(BaseModel):
    enabled: bool = False
    url: str = ""
    headers: dict[str, str] = Field(default_factory=dict)


class PluginsConfig(BaseModel):
    simulated: SimulatedHomeConfig = Field(default_factory=SimulatedHomeConfig)
    energy_price: EnergyPriceFeedConfig = Field(default_factory=EnergyPriceFeedConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)


class LoggingConfig(BaseModel):
    level: str = "INFO"


class AppConfig(BaseModel):
    """Top-level application configuration."""

    home_dir: str = str(DEFAULT_HOME)
    server: ServerConfig = Field(default_factory=ServerConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    plugins: PluginsConfig = Field(default_factory=PluginsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    default_tasks: list[dict] = Field(default_factory=list)

    @property
    def home_path(self) -> Path:
        """Resolved home directory as a Path."""
        return Path(self.home_dir).expanduser()


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def load_config(
    config_path: str | Path | None = None,
    env_path: str | Path | None = None,
) -> AppConfig:
    """Load configuration from YAML + .env files.

    1. Load .env into environment variables
    2. Load config.yaml and resolve ${ENV_VAR} references
    3. Validate against Pydantic models
    4. Create home directory structure if needed
    """
    home = Path(os.environ.get(HOME_ENV_VAR, str(DEFAULT_HOME))).expanduser()

    if env_path is None:
        env_path = home / ".env"
    if config_path is None:
        config_path = home / "config.yaml"

    env_path = Path(env_path)
    config_path = Path(config_path)

    if env_path.exists():
        load_dotenv(env_path)
        logger.info("Loaded environment from %s", env_path)
    else:
        logger.debug("No .env file at %s", env_path)

    raw_config: dict = {}
    if config_path.exists():
        with open(config_path) as f:
            raw_config = yaml.safe_load(f) or {}
        logger.info("Loaded config from %s", config_path)
    else:
        logger.warning("No config file at %s, using defaults", config_path)

    resolved = _resolve_env_vars(raw_config)

    if HOME_ENV_VAR in os.environ:
        resolved["home_dir"] = os.environ[HOME_ENV_VAR]

    config = AppConfig(**resolved)

    _ensure_directories(config.home_path)

    return config


def _ensure_directories(home: Path) -> None:
    """Create the state directory structure if it doesn't exist."""
    for d in (home, home / "events", home / "tasks"):
        d.mkdir(parents=True, exist_ok=True)

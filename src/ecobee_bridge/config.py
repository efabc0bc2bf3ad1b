"""Configuration management for the ecobee MQTT bridge.

Loads credentials and endpoints from the environment (and .env), and
optional schedule tuning from config/bridge.yaml.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from urllib.parse import urlsplit

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from ecobee_bridge.utils.errors import ConfigError

DEFAULT_API_BASE = "https://api.ecobee.com"


class Schedule(BaseModel):
    """Timer and timeout settings, in seconds."""
    poll_interval: float = 30.0
    poll_start_delay: float = 5.0
    refresh_interval: float = 480.0
    refresh_start_delay: float = 10.0
    pin_confirm_delay: float = 60.0
    mqtt_reconnect_interval: float = 5.0
    http_timeout: float = 30.0


class Settings(BaseModel):
    """Application settings loaded from environment variables."""
    client_id: str = Field(description="ecobee developer API key")
    topic: str = Field(description="MQTT topic root for this thermostat")
    api_base: str = Field(default=DEFAULT_API_BASE, description="ecobee API base URL")
    mqtt_host: str = Field(default="localhost", description="MQTT broker URL or hostname")
    mqtt_username: str = Field(default="", description="MQTT username")
    mqtt_password: str = Field(default="", description="MQTT password")
    redis_host: str = Field(default="localhost", description="Redis host for the token store")
    redis_port: int = Field(default=6379, description="Redis port")
    redis_db: int = Field(default=0, description="Redis database number")
    health_check_url: str = Field(default="", description="Heartbeat URL pinged while healthy")
    health_check_time: int = Field(default=60, description="Heartbeat period in seconds")
    log_level: str = Field(default="INFO", description="Root log level")

    @property
    def mqtt_broker(self) -> tuple[str, int, bool]:
        """(hostname, port, tls) parsed from ``mqtt_host``.

        Accepts ``mqtt://host:1883``, ``mqtts://host`` or a bare hostname.
        """
        raw = self.mqtt_host if "://" in self.mqtt_host else f"mqtt://{self.mqtt_host}"
        parts = urlsplit(raw)
        tls = parts.scheme in ("mqtts", "ssl", "tls")
        port = parts.port or (8883 if tls else 1883)
        return parts.hostname or "localhost", port, tls


class Config(BaseModel):
    """Full application configuration."""
    settings: Settings
    schedule: Schedule = Schedule()

    @property
    def topic_root(self) -> str:
        return self.settings.topic.rstrip("/")


def _find_project_root() -> Path:
    """Walk up from this file to find the project root (where config/ lives)."""
    current = Path(__file__).resolve().parent
    for parent in [current, *current.parents]:
        if (parent / "config" / "bridge.yaml").exists():
            return parent
    # Fallback: cwd
    return Path.cwd()


def _load_schedule(project_root: Path) -> Schedule:
    """Load the optional ``schedule:`` block from bridge.yaml."""
    path = project_root / "config" / "bridge.yaml"
    if not path.exists():
        return Schedule()

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    return Schedule(**(data.get("schedule") or {}))


def _env(*keys: str, default: str = "") -> str:
    """Try multiple env var names, return the first one found."""
    for key in keys:
        val = os.environ.get(key, "")
        if val:
            return val.strip().strip('"')
    return default


def _load_settings() -> Settings:
    """Load settings from environment variables.

    Raises:
        ConfigError: If ECOBEE_CLIENT_ID or ECOBEE_TOPIC is missing.
    """
    client_id = _env("ECOBEE_CLIENT_ID")
    topic = _env("ECOBEE_TOPIC")
    missing = [name for name, value in (("ECOBEE_CLIENT_ID", client_id), ("ECOBEE_TOPIC", topic)) if not value]
    if missing:
        raise ConfigError(f"Missing required configuration: {', '.join(missing)}")

    try:
        return Settings(
            client_id=client_id,
            topic=topic,
            api_base=_env("ECOBEE_API_BASE", default=DEFAULT_API_BASE),
            mqtt_host=_env("MQTT_HOST", default="localhost"),
            mqtt_username=_env("MQTT_USERNAME", "MQTT_USER"),
            mqtt_password=_env("MQTT_PASSWORD", "MQTT_PASS"),
            redis_host=_env("REDIS_HOST", default="localhost"),
            redis_port=int(_env("REDIS_PORT", default="6379")),
            redis_db=int(_env("REDIS_DATABASE", "REDIS_DB", default="0")),
            health_check_url=_env("HEALTH_CHECK_URL"),
            health_check_time=int(_env("HEALTH_CHECK_TIME", default="60")),
            log_level=_env("LOG_LEVEL", default="INFO").upper(),
        )
    except ValueError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


@lru_cache(maxsize=1)
def get_config() -> Config:
    """Load and cache the full application configuration."""
    project_root = _find_project_root()

    # Load .env from project root if it exists
    env_path = project_root / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    settings = _load_settings()
    schedule = _load_schedule(project_root)

    return Config(settings=settings, schedule=schedule)

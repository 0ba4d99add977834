"""Configuration management for mailgram."""

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised when the configuration is missing or has invalid values."""


@dataclass
class ImapConfig:
    """IMAP server configuration.

    Credentials MUST be provided via environment variables:
    - MAILGRAM_IMAP_USERNAME: IMAP username
    - MAILGRAM_IMAP_PASSWORD: IMAP password
    """
    host: str
    port: int = 993
    username: str = ""
    password: str = field(default="", repr=False)
    use_ssl: bool = True
    folder: str = "INBOX"
    idle_timeout_seconds: int = 300  # Servers drop IDLE after ~29 minutes
    timeout_seconds: float = 60  # Socket timeout for every non-IDLE command

    def __post_init__(self):
        """Load credentials from environment variables."""
        env_username = os.environ.get("MAILGRAM_IMAP_USERNAME")
        env_password = os.environ.get("MAILGRAM_IMAP_PASSWORD")

        if env_username:
            self.username = env_username
        if env_password:
            self.password = env_password


@dataclass
class TelegramConfig:
    """Telegram Bot API configuration.

    The bot token can be set via MAILGRAM_TELEGRAM_TOKEN environment variable.
    """
    channel_id: str = ""
    token: str = field(default="", repr=False)
    api_base_url: str = "https://api.telegram.org"
    timeout_seconds: int = 30
    max_content_length: int = 3500  # Telegram rejects messages over 4096 chars
    date_format: str = "%Y-%m-%d %H:%M"

    def __post_init__(self):
        """Load bot token from environment."""
        env_token = os.environ.get("MAILGRAM_TELEGRAM_TOKEN")
        if env_token:
            self.token = env_token


@dataclass
class MonitoringConfig:
    target_emails: list[str] = field(default_factory=list)
    reconnect_delay_seconds: float = 10


@dataclass
class RateLimitConfig:
    window_ms: int = 60000
    max_requests: int = 20


@dataclass
class Config:
    imap: ImapConfig
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)


class _Section(BaseModel):
    model_config = ConfigDict(from_attributes=True, extra="ignore")


class _ImapSchema(_Section):
    host: str = Field(min_length=1)
    port: int = Field(gt=0, le=65535)
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)
    folder: str = Field(min_length=1)
    idle_timeout_seconds: int = Field(gt=0)
    timeout_seconds: float = Field(gt=0)


class _TelegramSchema(_Section):
    channel_id: str = Field(min_length=1)
    token: str = Field(min_length=1)
    timeout_seconds: float = Field(gt=0)
    max_content_length: int = Field(gt=0)


class _MonitoringSchema(_Section):
    target_emails: list[str] = Field(min_length=1)
    reconnect_delay_seconds: float = Field(ge=0)


class _RateLimitSchema(_Section):
    window_ms: int = Field(gt=0)
    max_requests: int = Field(gt=0)


class _ConfigSchema(_Section):
    imap: _ImapSchema
    telegram: _TelegramSchema
    monitoring: _MonitoringSchema
    rate_limit: _RateLimitSchema


# Secrets never come from the config file
_ENV_HINTS = {
    "imap.username": "MAILGRAM_IMAP_USERNAME",
    "imap.password": "MAILGRAM_IMAP_PASSWORD",
    "telegram.token": "MAILGRAM_TELEGRAM_TOKEN",
}


def _describe(error) -> str:
    location = ".".join(str(part) for part in error["loc"])
    message = f"{location}: {error['msg']}"
    if location in _ENV_HINTS:
        message += f" (set {_ENV_HINTS[location]})"
    return message


def validate_config(config: Config) -> None:
    """Check that a configuration is complete enough to run the forwarder.

    Raises:
        ConfigError: Listing every problem found
    """
    try:
        _ConfigSchema.model_validate(config)
    except ValidationError as e:
        problems = [_describe(error) for error in e.errors()]
        raise ConfigError("Invalid configuration: " + "; ".join(problems)) from e


def load_config(path: str | Path) -> Config:
    """Load and validate configuration from a TOML file."""
    path = Path(path)
    with path.open("rb") as f:
        data = tomllib.load(f)

    imap_data = data.get("imap", {})
    imap_config = ImapConfig(
        host=imap_data.get("host", ""),
        port=imap_data.get("port", 993),
        username=imap_data.get("username", ""),
        use_ssl=imap_data.get("use_ssl", True),
        folder=imap_data.get("folder", "INBOX"),
        idle_timeout_seconds=imap_data.get("idle_timeout_seconds", 300),
        timeout_seconds=imap_data.get("timeout_seconds", 60),
    )

    tg_data = data.get("telegram", {})
    telegram_config = TelegramConfig(
        channel_id=str(tg_data.get("channel_id", "")),
        api_base_url=tg_data.get("api_base_url", "https://api.telegram.org"),
        timeout_seconds=tg_data.get("timeout_seconds", 30),
        max_content_length=tg_data.get("max_content_length", 3500),
        date_format=tg_data.get("date_format", "%Y-%m-%d %H:%M"),
    )

    mon_data = data.get("monitoring", {})
    monitoring_config = MonitoringConfig(
        target_emails=list(mon_data.get("target_emails", [])),
        reconnect_delay_seconds=mon_data.get("reconnect_delay_seconds", 10),
    )

    rl_data = data.get("rate_limit", {})
    rate_limit_config = RateLimitConfig(
        window_ms=rl_data.get("window_ms", 60000),
        max_requests=rl_data.get("max_requests", 20),
    )

    config = Config(
        imap=imap_config,
        telegram=telegram_config,
        monitoring=monitoring_config,
        rate_limit=rate_limit_config,
    )
    validate_config(config)
    logger.debug(f"Loaded configuration from {path}")
    return config

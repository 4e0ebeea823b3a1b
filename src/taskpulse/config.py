"""Environment configuration loaded from .env, env vars, or programmatic input."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from taskpulse.db.engine import default_url


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


def _parse_origins(raw: str) -> list[str]:
    """Split a comma-separated origin list, dropping blanks."""
    return [o.strip() for o in raw.split(",") if o.strip()]


@dataclass
class Config:
    """Server configuration. Can be built from env, CLI args, or programmatic input."""

    host: str = "0.0.0.0"
    port: int = 8080
    database_url: str | None = None
    ping_interval: float = 30.0
    read_timeout: float = 60.0
    max_message_size: int = 512
    send_queue_size: int = 256
    cors_origins: list[str] = field(default_factory=list)
    log_level: str = "INFO"

    @property
    def resolved_database_url(self) -> str:
        """Configured URL, or the default SQLite file."""
        return self.database_url or default_url()

    @classmethod
    def from_env(cls) -> Config:
        """Load config from environment variables and .env file."""
        load_dotenv()
        return cls(
            host=os.getenv("HTTP_HOST", "0.0.0.0"),
            port=_env_int("HTTP_PORT", 8080),
            database_url=os.getenv("DATABASE_URL") or None,
            ping_interval=_env_float("WS_PING_INTERVAL", 30.0),
            read_timeout=_env_float("WS_READ_TIMEOUT", 60.0),
            max_message_size=_env_int("WS_MAX_MESSAGE_SIZE", 512),
            send_queue_size=_env_int("WS_SEND_QUEUE_SIZE", 256),
            cors_origins=_parse_origins(os.getenv("CORS_ORIGINS", "")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    @classmethod
    def from_args(
        cls,
        host: str | None = None,
        port: int | None = None,
        database_url: str | None = None,
    ) -> Config:
        """Build config from explicit arguments, falling back to env."""
        env = cls.from_env()
        if host is not None:
            env.host = host
        if port is not None:
            env.port = port
        if database_url is not None:
            env.database_url = database_url
        return env

    def validate(self) -> list[str]:
        """Return list of validation errors, empty if config is valid."""
        errors = []
        if not 0 < self.port < 65536:
            errors.append(f"HTTP_PORT must be between 1 and 65535, got {self.port}.")
        if self.ping_interval <= 0:
            errors.append("WS_PING_INTERVAL must be positive.")
        if self.read_timeout <= 0:
            errors.append("WS_READ_TIMEOUT must be positive.")
        elif self.ping_interval >= self.read_timeout:
            errors.append(
                "WS_PING_INTERVAL must be shorter than WS_READ_TIMEOUT, "
                "otherwise idle clients time out between pings."
            )
        if self.max_message_size < 1:
            errors.append("WS_MAX_MESSAGE_SIZE must be at least 1 byte.")
        if self.send_queue_size < 1:
            errors.append("WS_SEND_QUEUE_SIZE must be at least 1.")
        return errors

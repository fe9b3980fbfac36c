"""
Logger configuration, built in code or from the environment.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Optional

_TRUTHY = ("1", "true", "yes", "on")


@dataclass(frozen=True)
class LoggerConfig:
    """
    Configuration for the booking engine logger.

    Use LoggerConfig.from_env() for env-based config, or build explicitly.
    """

    level: str = "INFO"
    # Directory for the rotating JSON log; file logging is skipped when None
    log_dir: Optional[str] = None
    log_file_basename: str = "booking"
    max_bytes: int = 10 * 1024 * 1024  # 10 MB
    backup_count: int = 5
    # Handlers are attached here; every booking_assistant.* logger inherits them
    root_name: str = "booking_assistant"
    console: bool = True
    # Emit JSON on the console too (useful in containers)
    console_json: bool = False
    # Log raw user messages at DEBUG; off by default (PII)
    log_message_text: bool = False

    def __post_init__(self) -> None:
        if self.max_bytes <= 0:
            raise ValueError(f"max_bytes must be positive, got {self.max_bytes!r}")
        if self.backup_count < 0:
            raise ValueError(f"backup_count must be >= 0, got {self.backup_count!r}")

    @classmethod
    def from_env(cls) -> "LoggerConfig":
        """Build config from LOG_* environment variables."""
        return cls(
            level=os.environ.get("LOG_LEVEL", "INFO").upper(),
            log_dir=os.environ.get("LOG_DIR") or None,
            log_file_basename=os.environ.get("LOG_FILE_BASENAME", "booking"),
            max_bytes=int(os.environ.get("LOG_MAX_BYTES", str(10 * 1024 * 1024))),
            backup_count=int(os.environ.get("LOG_BACKUP_COUNT", "5")),
            root_name=os.environ.get("LOG_ROOT_NAME", "booking_assistant"),
            console=os.environ.get("LOG_CONSOLE", "true").lower() in _TRUTHY,
            console_json=os.environ.get("LOG_CONSOLE_JSON", "false").lower() in _TRUTHY,
            log_message_text=os.environ.get("LOG_MESSAGE_TEXT", "false").lower() in _TRUTHY,
        )

    def with_overrides(self, **overrides: object) -> "LoggerConfig":
        """Return a new config with the given fields replaced."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

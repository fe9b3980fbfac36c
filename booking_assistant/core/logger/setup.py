"""
Logger setup: console + rotating JSON file handlers, and per-turn session binding.
"""
from __future__ import annotations

import contextvars
import logging
import os
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from typing import Iterator, Optional

from booking_assistant.core.logger.config import LoggerConfig
from booking_assistant.core.logger.formatters import JsonFormatter, PlainConsoleFormatter

_current_session: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "booking_session_id", default=None,
)
_active_config: Optional[LoggerConfig] = None


class SessionContextFilter(logging.Filter):
    """Stamp every record with the session id bound for the current turn."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "session_id", None):
            record.session_id = _current_session.get()
        return True


@contextmanager
def bind_session(session_id: Optional[str]) -> Iterator[None]:
    """Bind *session_id* to all log records emitted inside the block."""
    token = _current_session.set(session_id)
    try:
        yield
    finally:
        _current_session.reset(token)


def current_session_id() -> Optional[str]:
    return _current_session.get()


def configure(config: Optional[LoggerConfig] = None) -> LoggerConfig:
    """
    Attach handlers to the configured root logger. Safe to call again (tests,
    reloads): existing handlers are replaced, not duplicated.
    """
    global _active_config
    config = config or LoggerConfig.from_env()
    _active_config = config

    level = getattr(logging, config.level.upper(), logging.INFO)
    root = logging.getLogger(config.root_name)
    root.setLevel(level)
    root.handlers.clear()
    root.filters.clear()
    root.addFilter(SessionContextFilter())

    if config.console:
        root.addHandler(
            build_console_handler(level=config.level, json_lines=config.console_json)
        )

    if config.log_dir and config.log_dir.strip():
        try:
            root.addHandler(
                build_rotating_file_handler(
                    config.log_dir,
                    basename=config.log_file_basename,
                    max_bytes=config.max_bytes,
                    backup_count=config.backup_count,
                    level=config.level,
                )
            )
        except OSError as exc:
            root.warning("Could not open log dir %s (%s), file logging disabled", config.log_dir, exc)

    root.propagate = False
    return config


def get_logger(name: str) -> logging.Logger:
    """Return a logger, configuring from the environment on first use."""
    if _active_config is None:
        configure()
    return logging.getLogger(name)


def active_config() -> LoggerConfig:
    return _active_config or LoggerConfig.from_env()


def build_rotating_file_handler(
    log_dir: str,
    basename: str = "booking",
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    level: str = "INFO",
) -> RotatingFileHandler:
    """Rotating JSON-lines handler writing ``<log_dir>/<basename>.log``."""
    os.makedirs(log_dir, exist_ok=True)
    handler = RotatingFileHandler(
        os.path.join(log_dir, f"{basename}.log"),
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setLevel(getattr(logging, level.upper(), logging.INFO))
    handler.setFormatter(JsonFormatter())
    handler.addFilter(SessionContextFilter())
    return handler


def build_console_handler(level: str = "INFO", *, json_lines: bool = False) -> logging.StreamHandler:
    handler = logging.StreamHandler()
    handler.setLevel(getattr(logging, level.upper(), logging.INFO))
    handler.setFormatter(JsonFormatter() if json_lines else PlainConsoleFormatter())
    handler.addFilter(SessionContextFilter())
    return handler

"""
Booking engine logger: console + rotating JSON file, session-aware.

Usage:
    from booking_assistant.core.logger import configure, bind_session, LoggerConfig

    configure(LoggerConfig(level="DEBUG", log_dir="/var/log/booking"))

    logger = logging.getLogger(__name__)
    with bind_session(session_id):
        logger.info("turn started")   # record carries session_id
"""
from booking_assistant.core.logger.config import LoggerConfig
from booking_assistant.core.logger.formatters import JsonFormatter, PlainConsoleFormatter
from booking_assistant.core.logger.setup import (
    SessionContextFilter,
    active_config,
    bind_session,
    build_console_handler,
    build_rotating_file_handler,
    configure,
    current_session_id,
    get_logger,
)

__all__ = [
    "LoggerConfig",
    "JsonFormatter",
    "PlainConsoleFormatter",
    "SessionContextFilter",
    "active_config",
    "bind_session",
    "configure",
    "current_session_id",
    "get_logger",
    "build_rotating_file_handler",
    "build_console_handler",
]

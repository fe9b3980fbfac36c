"""
Engine config: load from env or JSON.

load_database_config() for the session store, EngineConfig.from_env() for engine behaviour.
"""
from booking_assistant.config.database import DatabaseConfig, load_database_config
from booking_assistant.config.engine import EngineConfig

__all__ = [
    "DatabaseConfig",
    "load_database_config",
    "EngineConfig",
]

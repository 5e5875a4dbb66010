"""
Config package for the Strategy Lab engine.

Provides centralized configuration loading from the root .env file.
"""

from config.settings import (
    EngineSettings,
    load_config,
    get_engine_settings,
    is_config_loaded,
)

__all__ = [
    'EngineSettings',
    'load_config',
    'get_engine_settings',
    'is_config_loaded',
]

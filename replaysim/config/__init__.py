"""
Configuration for the replay simulator.
"""

from replaysim.config.settings import (
    EngineSettings,
    FillModelSettings,
    LoggingSettings,
    Settings,
    get_settings,
    reload_settings,
)

__all__ = [
    "EngineSettings",
    "FillModelSettings",
    "LoggingSettings",
    "Settings",
    "get_settings",
    "reload_settings",
]

"""
Utility modules for the replay simulator.
"""

from replaysim.utils.logger import TradeLogger, get_logger, setup_logging, setup_logging_from_settings

__all__ = [
    "get_logger",
    "setup_logging",
    "setup_logging_from_settings",
    "TradeLogger",
]

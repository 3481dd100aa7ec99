"""
Custom logging configuration using loguru.

This module provides a centralized logging setup with:
- Console and file handlers
- Structured logging support
- Trade lifecycle logging for replayed runs

Nothing is configured at import time; call ``setup_logging`` (or
``setup_logging_from_settings``) from the application entry point.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

from loguru import logger

from replaysim.config.settings import LoggingSettings


def setup_logging(
    level: str = "INFO",
    log_file: Path | str | None = None,
    rotation: str = "10 MB",
    retention: str = "30 days",
    serialize: bool = False,
    console: bool = True,
) -> None:
    """
    Configure the global logger with specified settings.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file (None to disable file logging)
        rotation: When to rotate the log file
        retention: How long to keep old log files
        serialize: Whether to output JSON logs
        console: Whether to log to console
    """
    # Remove default handler
    logger.remove()

    if console:
        logger.add(
            sys.stderr,
            level=level,
            format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
            colorize=True,
        )

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        logger.add(
            str(log_path),
            level="DEBUG",
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}",
            rotation=rotation,
            retention=retention,
            compression="gz",
            serialize=serialize,
        )


def setup_logging_from_settings(config: LoggingSettings) -> None:
    """Configure logging (and the trade file, if any) from settings."""
    setup_logging(
        level=config.level,
        log_file=config.log_file,
        rotation=config.rotation,
        retention=config.retention,
        serialize=config.serialize,
    )
    if config.trade_log_file:
        TradeLogger.add_file_sink(config.trade_log_file, rotation=config.rotation, retention=config.retention)


def get_logger(name: str | None = None) -> "logger":
    """
    Get a logger instance with optional name binding.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        Logger instance
    """
    if name:
        return logger.bind(name=name)
    return logger


class TradeLogger:
    """
    Specialized logger for order lifecycle events of a replayed run.

    Records are bound with ``category="trades"`` so a dedicated sink can
    pick them up (see ``add_file_sink``).
    """

    CATEGORY = "trades"

    def __init__(self, run_id: str = "") -> None:
        self._logger = logger.bind(category=self.CATEGORY, run_id=run_id)

    @classmethod
    def add_file_sink(
        cls,
        path: Path | str,
        rotation: str = "5 MB",
        retention: str = "90 days",
    ) -> int:
        """
        Attach a file sink receiving only trade records.

        Returns:
            The loguru handler id (pass to ``logger.remove`` to detach)
        """
        trade_log = Path(path)
        trade_log.parent.mkdir(parents=True, exist_ok=True)
        return logger.add(
            str(trade_log),
            level="DEBUG",
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {message}",
            rotation=rotation,
            retention=retention,
            filter=lambda record: record["extra"].get("category") == cls.CATEGORY,
        )

    def _emit(self, level: str, message: str, **fields: Any) -> None:
        # bind() keeps the fields structured without str.format on the message
        self._logger.bind(**fields).log(level, message)

    def log_order(self, timestamp: int, order_id: str, side: str, qty: float, price: float | None) -> None:
        """Log an order submission."""
        self._emit(
            "DEBUG",
            f"ORDER | t={timestamp} | {order_id} | {side} | qty={qty} | price={price}",
            timestamp=timestamp, order_id=order_id, side=side, qty=qty, price=price,
        )

    def log_fill(
        self,
        timestamp: int,
        order_id: str,
        side: str,
        qty: float,
        price: float,
        fee: float = 0.0,
        cash_after: float | None = None,
    ) -> None:
        """Log a fill."""
        self._emit(
            "DEBUG",
            f"FILL | t={timestamp} | {order_id} | {side} | qty={qty} | price={price:.6f} | fee={fee:.6f} | cash={cash_after}",
            timestamp=timestamp, order_id=order_id, side=side, qty=qty, price=price, fee=fee,
        )

    def log_cancel(self, timestamp: int, order_id: str, reason: str) -> None:
        """Log a cancellation (user cancel, TTL expiry or rejection)."""
        self._emit(
            "DEBUG",
            f"CANCEL | t={timestamp} | {order_id} | {reason}",
            timestamp=timestamp, order_id=order_id, reason=reason,
        )

    def log_funding(self, timestamp: int, amount: float, rate: float, notional: float) -> None:
        """Log a funding payment."""
        self._emit(
            "DEBUG",
            f"FUNDING | t={timestamp} | amount={amount:.6f} | rate={rate} | notional={notional:.6f}",
            timestamp=timestamp, amount=amount, rate=rate, notional=notional,
        )

    def log_risk_event(self, event_type: str, message: str, severity: str = "WARNING", **kwargs: Any) -> None:
        """
        Log a risk management event.

        Args:
            event_type: Type of risk event
            message: Event description
            severity: Event severity
            **kwargs: Additional event details
        """
        self._emit(severity.upper(), f"RISK | {event_type} | {message}", event_type=event_type, **kwargs)

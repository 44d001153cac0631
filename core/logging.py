"""
Unified Logging Configuration

This module sets up the logging used by every part of the futures client.
Modules never print; they ask for a namespaced logger instead:

Usage:
    from core.logging import get_logger

    logger = get_logger(__name__)
    logger.info("Connected to mark price stream")

Log Levels (from most to least verbose):
    DEBUG    - Frame and request level detail (e.g., "GET /fapi/v1/ping -> 200")
    INFO     - Lifecycle events (e.g., "Monitor 3 registered")
    WARNING  - Recoverable problems (e.g., "Dropped malformed frame")
    ERROR    - Faults surfaced to callers (e.g., "Stream disconnected")
    CRITICAL - Unused by the library itself

Security:
    Secret keys and request signatures must never reach a log line.
    Use mask_query_string() before logging any signed query string.

Configuration:
    Log level is controlled by the LOG_LEVEL setting in the .env file.
"""

import logging
import re
import sys
from typing import Optional

ROOT_LOGGER_NAME = "futuresclient"

_SIGNATURE_PATTERN = re.compile(r"(signature=)[0-9a-fA-F]+")


def setup_logging(
    log_level: str = "INFO",
    log_format: Optional[str] = None,
    include_timestamp: bool = True,
    include_module: bool = True
) -> logging.Logger:
    """
    Configure and return the "futuresclient" logger. The root logger is left alone.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Custom log format string (uses default if None)
        include_timestamp: Include timestamp in log messages
        include_module: Include logger name in log messages

    Returns:
        logging.Logger: Configured logger instance

    Example:
        >>> logger = setup_logging(log_level="DEBUG")
        >>> logger.info("Client started")
        2024-01-01 12:00:00 [INFO] futuresclient Client started
    """
    if log_format is None:
        format_parts = []

        if include_timestamp:
            format_parts.append("%(asctime)s")

        format_parts.append("[%(levelname)s]")

        if include_module:
            format_parts.append("%(name)s")

        format_parts.append("%(message)s")

        log_format = " ".join(format_parts)

    # Only the library logger is configured; the host application owns the root logger
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(log_format, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(handler)
    logger.propagate = False
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    return logger


# ============================================
# Initialize Logger with Settings
# ============================================

try:
    from core.config import settings
    log_level = settings.log_level if hasattr(settings, "log_level") else "INFO"
except ImportError:
    log_level = "INFO"

logger = setup_logging(log_level=log_level)


# ============================================
# Convenience Functions
# ============================================

def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a specific module.

    Args:
        name: Name for the logger (typically __name__)

    Returns:
        logging.Logger: Logger namespaced under "futuresclient."

    Example:
        >>> get_logger("exchanges.binance.ws_client").name
        'futuresclient.exchanges.binance.ws_client'
    """
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def set_log_level(level: str) -> None:
    """
    Change the log level at runtime.

    Args:
        level: New log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))


# ============================================
# Log Helper Functions
# ============================================

def mask_query_string(query_string: str) -> str:
    """
    Replace the signature value of a query string with asterisks.

    Example:
        >>> mask_query_string("symbol=BTCUSDT&timestamp=1&signature=ab12")
        'symbol=BTCUSDT&timestamp=1&signature=***'
    """
    return _SIGNATURE_PATTERN.sub(r"\1***", query_string)


def log_api_request(exchange: str, method: str, endpoint: str, query_string: str = "") -> None:
    """
    Log an outgoing REST request with its signature masked.

    Example:
        >>> log_api_request("binance", "GET", "/fapi/v1/ping")
        [DEBUG] API Request: binance GET /fapi/v1/ping
    """
    if query_string:
        logger.debug(f"API Request: {exchange} {method} {endpoint} | Query: {mask_query_string(query_string)}")
    else:
        logger.debug(f"API Request: {exchange} {method} {endpoint}")


def log_api_response(exchange: str, endpoint: str, status: int, response_time: float = None) -> None:
    """
    Log an API response with status and timing information.

    Args:
        exchange: Exchange name
        endpoint: API endpoint
        status: HTTP status code
        response_time: Response time in seconds (optional)

    Example:
        >>> log_api_response("binance", "/fapi/v1/order", 200, 0.342)
        [DEBUG] API Response: binance /fapi/v1/order | Status: 200 | Time: 0.342s
    """
    time_str = f" | Time: {response_time:.3f}s" if response_time else ""
    logger.debug(f"API Response: {exchange} {endpoint} | Status: {status}{time_str}")


def log_websocket_event(exchange: str, event: str, monitor_id: int = None, details: str = None) -> None:
    """
    Log a WebSocket lifecycle event with consistent formatting.

    Args:
        exchange: Exchange name
        event: Event type (e.g., "connected", "cancelled", "disconnected", "error")
        monitor_id: Monitor the event belongs to (optional)
        details: Additional details (optional)

    Example:
        >>> log_websocket_event("binance", "connected", 3, "wss://fstream.binance.com/ws/btcusdt@bookTicker")
        [INFO] WebSocket: binance connected | Monitor: 3 | wss://fstream.binance.com/ws/btcusdt@bookTicker
    """
    monitor_str = f" | Monitor: {monitor_id}" if monitor_id is not None else ""
    details_str = f" | {details}" if details else ""

    level = logging.ERROR if event in ("error", "disconnected") else logging.INFO
    logger.log(level, f"WebSocket: {exchange} {event}{monitor_str}{details_str}")


logger.debug("Logging system initialized")

"""
Configuration Management Module

This module handles loading, validating, and providing access to the client's
configuration from environment variables (.env file).

Uses Pydantic Settings for automatic validation and type conversion.

Key Features:
- Loads credentials and endpoint URIs from .env
- Provides typed access to timing parameters (receive window, keepalive, timeouts)
- Keeps live and testnet endpoints side by side so a MarketType can select them

Usage:
    from core.config import settings

    print(settings.futures_rest_url)
    print(settings.default_receive_window_ms)
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, SecretStr


class Settings(BaseSettings):
    """
    Client Settings

    Values are automatically loaded from environment variables or .env file.

    Attributes:
        binance_api_key: API key sent in the X-MBX-APIKEY header
        binance_secret_key: Secret used to sign requests (never logged)
        futures_rest_url: Live USD-M Futures REST base URL
        futures_ws_url: Live USD-M Futures WebSocket base URL
        futures_test_rest_url: Testnet REST base URL
        futures_test_ws_url: Testnet WebSocket base URL
        default_receive_window_ms: recvWindow applied to every signed call by default
        listen_key_keepalive_interval: Seconds between listen key refreshes
        request_timeout: Total timeout for a REST call in seconds
        ws_handshake_timeout: Timeout for the WebSocket handshake in seconds
        ws_heartbeat: Interval for WebSocket ping frames in seconds
        log_level: Logging level
    """

    # ============================================
    # Credentials
    # ============================================

    binance_api_key: str = Field(
        default="",
        description="Binance API key (required for account and trading calls)"
    )

    binance_secret_key: SecretStr = Field(
        default=SecretStr(""),
        description="Binance secret key (required for signed calls)"
    )

    # ============================================
    # Endpoints
    # ============================================

    futures_rest_url: str = Field(
        default="https://fapi.binance.com",
        description="USD-M Futures REST base URL"
    )

    futures_ws_url: str = Field(
        default="wss://fstream.binance.com",
        description="USD-M Futures WebSocket base URL"
    )

    futures_test_rest_url: str = Field(
        default="https://testnet.binancefuture.com",
        description="USD-M Futures testnet REST base URL"
    )

    futures_test_ws_url: str = Field(
        default="wss://stream.binancefuture.com",
        description="USD-M Futures testnet WebSocket base URL"
    )

    # ============================================
    # Timing
    # ============================================

    default_receive_window_ms: int = Field(
        default=5000,
        description="Default recvWindow for signed calls in milliseconds"
    )

    listen_key_keepalive_interval: int = Field(
        default=1800,
        description="Seconds between listen key keepalive calls (listen keys expire after 60 minutes)"
    )

    request_timeout: int = Field(
        default=10,
        description="REST request timeout in seconds"
    )

    ws_handshake_timeout: int = Field(
        default=10,
        description="WebSocket handshake timeout in seconds"
    )

    ws_heartbeat: int = Field(
        default=30,
        description="WebSocket ping interval in seconds"
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    # ============================================
    # Pydantic Settings Configuration
    # ============================================

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False
    )

    @property
    def has_credentials(self) -> bool:
        """True if both the API key and the secret key are configured."""
        return bool(self.binance_api_key and self.binance_secret_key.get_secret_value())


# ============================================
# Global Settings Instance
# ============================================

settings = Settings()


# Venue maximum for recvWindow
MAX_RECEIVE_WINDOW_MS = 60_000


def validate_configuration(config: Settings = None) -> None:
    """
    Validate critical configuration settings.

    Args:
        config: Settings to check (defaults to the global instance)

    Raises:
        ValueError: If a setting is missing or out of range
    """
    # logging.py imports config.py, so the logger cannot be imported at module level
    from core.logging import logger

    config = config or settings

    for name in ("futures_rest_url", "futures_test_rest_url"):
        value = getattr(config, name)
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"{name.upper()} must be an http(s) URL, got '{value}'")

    for name in ("futures_ws_url", "futures_test_ws_url"):
        value = getattr(config, name)
        if not value.startswith(("ws://", "wss://")):
            raise ValueError(f"{name.upper()} must be a ws(s) URL, got '{value}'")

    if not (1 <= config.default_receive_window_ms <= MAX_RECEIVE_WINDOW_MS):
        raise ValueError(
            f"Invalid DEFAULT_RECEIVE_WINDOW_MS: {config.default_receive_window_ms}. "
            f"Must be between 1 and {MAX_RECEIVE_WINDOW_MS}"
        )

    # Listen keys expire after 60 minutes
    if not (0 < config.listen_key_keepalive_interval < 3600):
        raise ValueError(
            f"Invalid LISTEN_KEY_KEEPALIVE_INTERVAL: {config.listen_key_keepalive_interval}. "
            f"Must be between 1 and 3599 seconds"
        )

    valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if config.log_level.upper() not in valid_log_levels:
        raise ValueError(
            f"Invalid LOG_LEVEL: '{config.log_level}'. "
            f"Must be one of: {', '.join(valid_log_levels)}"
        )

    logger.info("Configuration validated successfully")
    logger.info(f"REST: {config.futures_rest_url} | WS: {config.futures_ws_url}")
    logger.info(f"Credentials: {'configured' if config.has_credentials else 'not configured'}")
    logger.info(f"Log level: {config.log_level.upper()}")

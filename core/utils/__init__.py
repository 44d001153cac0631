"""
Core Utilities Package

This package contains utility functions and helpers used throughout the client.

Modules:
    - time: Millisecond timestamps for signing and UTC conversion
"""

from core.utils.time import elapsed_ms, timestamp_ms, to_utc_datetime

__all__ = ["elapsed_ms", "timestamp_ms", "to_utc_datetime"]

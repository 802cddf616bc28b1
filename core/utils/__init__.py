"""
Core Utilities Package

This package contains utility functions and helpers used throughout the application.

Modules:
    - time: Timestamp conversion and age helpers
"""

from core.utils.time import (
    DAY_MS,
    age_seconds,
    current_utc_datetime,
    current_utc_timestamp,
)

__all__ = ["DAY_MS", "age_seconds", "current_utc_datetime", "current_utc_timestamp"]

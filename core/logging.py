"""
Logging Configuration

Every module logs through a child of the "pricecache" logger, written to
stdout at the LOG_LEVEL from settings.

Usage:
    from core.logging import get_logger
    logger = get_logger(__name__)

What gets logged where:
    DEBUG    cache hits, upstream requests/responses, swept entries
    INFO     cache misses, history canonicalization and slicing, prewarm progress
    WARNING  retryable upstream errors, prewarm partial failures
    ERROR    failed jobs, failed requests after retries
"""

import logging
import sys

from core.config import settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s %(message)s"


def setup_logging(log_level: str = "INFO") -> logging.Logger:
    """
    Configure the root handler and return the application logger.

    Unknown level names fall back to INFO.

    Example:
        >>> logger = setup_logging("DEBUG")
        >>> logger.info("Application started")
        2024-01-01 12:00:00 [INFO] pricecache Application started
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
        force=True
    )

    app_logger = logging.getLogger("pricecache")
    app_logger.setLevel(level)
    return app_logger


logger = setup_logging(settings.log_level)


def get_logger(name: str) -> logging.Logger:
    """Logger for a module, e.g. "pricecache.services.price_service"."""
    return logging.getLogger(f"pricecache.{name}")


# ============================================
# Log Helper Functions
# ============================================

def log_api_request(provider: str, endpoint: str, params: dict = None) -> None:
    """
    Example:
        >>> log_api_request("coingecko", "/simple/price", {"ids": "bitcoin"})
        [DEBUG] API Request: coingecko /simple/price | Params: {'ids': 'bitcoin'}
    """
    if params:
        logger.debug(f"API Request: {provider} {endpoint} | Params: {params}")
    else:
        logger.debug(f"API Request: {provider} {endpoint}")


def log_api_response(provider: str, endpoint: str, status: int, response_time: float = None) -> None:
    time_str = f" | Time: {response_time:.3f}s" if response_time else ""
    logger.debug(f"API Response: {provider} {endpoint} | Status: {status}{time_str}")


def log_cache_event(category: str, event: str, key: str = None, shared: bool = False) -> None:
    """
    Log a cache hit/miss/share. Misses are INFO since each one costs an
    upstream call; hits and shares are DEBUG.

    Example:
        >>> log_cache_event("history", "miss", "bitcoin:365:daily")
        [INFO] Cache: history miss | Key: bitcoin:365:daily
    """
    key_str = f" | Key: {key}" if key else ""
    shared_str = " | shared" if shared else ""

    level = logging.INFO if event == "miss" else logging.DEBUG
    logger.log(level, f"Cache: {category} {event}{key_str}{shared_str}")

"""
Services Package

Contains the coordination logic sitting between the routes and the
upstream providers:
- Coalescer: one in-flight upstream fetch per key
- PriceService / FXService: cached, coalesced reads and refreshes
- Mapping builder and history canonicalizer/slicer
- BackgroundScheduler: repeating jobs, rate limiter and prewarm worker pool
"""

from .coalescer import Coalescer
from .fx_service import FXService, convert_to_usd
from .price_service import PriceService
from .scheduler import BackgroundScheduler, PoolReport, RateLimiter, RepeatingJob, run_worker_pool

__all__ = [
    "Coalescer",
    "FXService",
    "convert_to_usd",
    "PriceService",
    "BackgroundScheduler",
    "PoolReport",
    "RateLimiter",
    "RepeatingJob",
    "run_worker_pool",
]

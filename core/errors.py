"""
Error Taxonomy

Every failure surfaced by the caching layer is one of these classes, so the
routing layer can map them to responses without inspecting messages.

    PriceCacheError
    ├── ConfigurationError   - missing store path / API credential
    ├── UpstreamError        - provider network/decode/non-2xx after retries
    ├── NotAvailableError    - nothing warm, unsupported range, no mapping
    ├── PersistenceError     - disk read/write/rename failure
    └── PartialFailureError  - prewarm sweep finished with failures
"""

from typing import Any, Optional


class PriceCacheError(Exception):
    """Base class for all caching layer errors."""


class ConfigurationError(PriceCacheError):
    """A required dependency (store path, API credential) is absent."""


class UpstreamError(PriceCacheError):
    """
    A provider request failed after the client's retry policy.

    Attributes:
        provider: Provider name (e.g., "coingecko")
        status: Last HTTP status seen, if any
    """

    def __init__(self, message: str, provider: str = "", status: Optional[int] = None) -> None:
        super().__init__(message)
        self.provider = provider
        self.status = status


class NotAvailableError(PriceCacheError):
    """Client-correctable condition: data not warm, unsupported range, unresolved id."""


class PersistenceError(PriceCacheError):
    """A persistent store could not read or durably write its file."""


class PartialFailureError(PriceCacheError):
    """
    A background sweep completed but some items failed.

    Attributes:
        report: The sweep's PoolReport (failures list, counts)
    """

    def __init__(self, message: str, report: Any) -> None:
        super().__init__(message)
        self.report = report

"""
Upstream HTTP Client Base

Shared aiohttp plumbing for every provider client:
- Session lifecycle (initialize/shutdown, async context manager)
- GET requests with a bounded retry policy
- Classification of failures into UpstreamError

Retry Policy:
    - Retried: timeouts, connection errors, HTTP 408/418/429 and 5xx
    - Not retried: other non-2xx statuses, undecodable bodies
    - Delay before attempt n+1: backoff * n seconds (1.5s, 3.0s, ...)
    - After the last attempt an UpstreamError surfaces to the caller

Every request carries its own aiohttp.ClientTimeout, independent of any
caller waiting on the result.
"""

import asyncio
from typing import Any, Dict, Optional

import aiohttp

from core.errors import UpstreamError
from core.logging import get_logger, log_api_request, log_api_response

RETRYABLE_STATUSES = (408, 418, 429)


class UpstreamHTTPClient:
    """
    Async HTTP client base with retry logic.

    Attributes:
        provider: Provider name used in logs and errors
        base_url: Base URL requests are made against
        session: aiohttp ClientSession (created on initialize or first request)

    Example:
        >>> async with CoinGeckoAPIClient() as client:
        ...     prices = await client.get_simple_prices(["bitcoin"])
    """

    provider = "upstream"

    def __init__(
        self,
        base_url: str,
        timeout: float = 10,
        max_attempts: int = 3,
        backoff: float = 1.5,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.backoff = backoff
        self.headers = headers or {}
        self.logger = get_logger(__name__)
        self.session: Optional[aiohttp.ClientSession] = None

    # ============================================
    # Session Management
    # ============================================

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()

    async def initialize(self) -> None:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession()
            self.logger.debug(f"{self.provider} session created")

    async def shutdown(self) -> None:
        if self.session and not self.session.closed:
            await self.session.close()
            self.logger.debug(f"{self.provider} session closed")
        self.session = None

    # ============================================
    # HTTP Request Handler with Retry Logic
    # ============================================

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None, as_text: bool = False) -> Any:
        """
        Make a GET request with retry logic.

        Args:
            path: Endpoint path appended to base_url ("" for the base URL itself)
            params: Optional query parameters
            as_text: Return the body as text instead of decoded JSON

        Returns:
            Decoded JSON (or text) body of the first 200 response

        Raises:
            UpstreamError: On a non-retryable status, an undecodable body,
                or when all attempts fail
        """
        if self.session is None or self.session.closed:
            await self.initialize()

        url = f"{self.base_url}{path}"
        last_error = "no attempt made"
        last_status: Optional[int] = None

        for attempt in range(self.max_attempts):
            log_api_request(self.provider, path or url, params)
            started = asyncio.get_running_loop().time()

            try:
                async with self.session.get(
                    url,
                    params=params,
                    headers=self.headers,
                    timeout=aiohttp.ClientTimeout(total=self.timeout)
                ) as resp:
                    elapsed = asyncio.get_running_loop().time() - started
                    log_api_response(self.provider, path or url, resp.status, elapsed)

                    if resp.status == 200:
                        try:
                            if as_text:
                                return await resp.text()
                            return await resp.json(content_type=None)
                        except (aiohttp.ContentTypeError, ValueError) as e:
                            raise UpstreamError(
                                f"Failed to decode {self.provider} response from {path}: {e}",
                                provider=self.provider,
                                status=resp.status,
                            ) from e

                    body = await resp.text()
                    last_status = resp.status

                    if resp.status in RETRYABLE_STATUSES or resp.status >= 500:
                        last_error = f"HTTP {resp.status}: {body[:200]}"
                        self.logger.warning(
                            f"Retryable {self.provider} error (HTTP {resp.status}) on {path}. "
                            f"(attempt {attempt + 1}/{self.max_attempts})"
                        )
                    else:
                        self.logger.error(f"HTTP {resp.status} on {self.provider} {path}: {body[:200]}")
                        raise UpstreamError(
                            f"{self.provider} API error: status {resp.status}, body: {body[:200]}",
                            provider=self.provider,
                            status=resp.status,
                        )

            except asyncio.TimeoutError:
                last_error = "timeout"
                self.logger.error(f"Timeout on {self.provider} {path} (attempt {attempt + 1}/{self.max_attempts})")

            except aiohttp.ClientError as e:
                last_error = str(e)
                self.logger.error(
                    f"Request failed on {self.provider} {path}: {e} (attempt {attempt + 1}/{self.max_attempts})"
                )

            if attempt < self.max_attempts - 1:
                await asyncio.sleep(self.backoff * (attempt + 1))

        raise UpstreamError(
            f"Failed to fetch {url} after {self.max_attempts} attempts: {last_error}",
            provider=self.provider,
            status=last_status,
        )

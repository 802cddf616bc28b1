"""
ECB FX Reference Rates Client

Fetches the European Central Bank daily reference rates feed (EUR base).

Feed Format (abridged):
    <gesmes:Envelope ...>
      <Cube>
        <Cube time="2024-01-02">
          <Cube currency="USD" rate="1.0956"/>
          <Cube currency="GBP" rate="0.86518"/>
        </Cube>
      </Cube>
    </gesmes:Envelope>
"""

import xml.etree.ElementTree as ET
from typing import Dict, Optional

from core.errors import UpstreamError
from core.provider_interface import RatesProvider
from core.schemas import RatesResponse
from core.utils.time import current_utc_datetime, current_utc_timestamp
from providers.http import UpstreamHTTPClient

USER_AGENT = "price-cache-backend/1.0"


def parse_ecb_rates(xml_text: str) -> Dict[str, float]:
    """
    Extract {currency: rate} from the ECB daily feed.

    Raises:
        UpstreamError: If the document is not valid XML or has no rates
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise UpstreamError(f"Failed to decode ECB response: {e}", provider="ecb") from e

    rates = {}
    for element in root.iter():
        currency = element.attrib.get("currency")
        rate = element.attrib.get("rate")
        if not currency or rate is None:
            continue
        try:
            rates[currency.upper()] = float(rate)
        except ValueError:
            continue

    if not rates:
        raise UpstreamError("ECB response contained no rates", provider="ecb")
    return rates


class ECBAPIClient(UpstreamHTTPClient, RatesProvider):
    """
    Async client for the ECB daily feed.

    Example:
        >>> async with ECBAPIClient() as client:
        ...     rates = await client.get_latest_rates()
        ...     rates.base
        'EUR'
    """

    name = "ecb"
    provider = "ecb"

    def __init__(
        self,
        feed_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ) -> None:
        from core.config import settings

        super().__init__(
            base_url=feed_url or settings.ecb_daily_url,
            timeout=timeout or settings.request_timeout,
            max_attempts=max_attempts or settings.upstream_max_attempts,
            backoff=0.5,
            headers={"User-Agent": USER_AGENT, "Accept": "application/xml"},
        )

    async def get_latest_rates(self) -> RatesResponse:
        """Fetch and parse the latest ECB daily rates (EUR base)."""
        self.logger.info("Fetching ECB daily FX rates")
        body = await self._get("", as_text=True)
        rates = parse_ecb_rates(body)
        self.logger.info(f"Fetched {len(rates)} ECB rates")

        return RatesResponse(
            base="EUR",
            rates=rates,
            timestamp=current_utc_timestamp(milliseconds=True),
            cached=False,
            updated_at=current_utc_datetime(),
        )

"""Metal spot prices scraped from a commodity quote page."""

from __future__ import annotations

import html
import re
from decimal import Decimal
from typing import Optional

import httpx

from volt_bot.core.errors import AdapterUnavailable
from volt_bot.core.types import Metal
from volt_bot.log import get_logger

logger = get_logger(__name__)

_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)

# <div class="commodity-page__value">₹ 1,012.35</div>
_VALUE_PATTERN = re.compile(
    r'<div[^>]*class="[^"]*\bcommodity-page__value\b[^"]*"[^>]*>(.*?)</div>',
    re.IGNORECASE | re.DOTALL,
)
_TAG_PATTERN = re.compile(r"<[^>]+>")
_NUMBER_PATTERN = re.compile(r"\d[\d,]*(?:\.\d+)?")


def parse_spot_price(page: str) -> Decimal:
    """Extract the quoted price from a commodity page."""
    match = _VALUE_PATTERN.search(page)
    if match is None:
        raise ValueError("price value not found")
    # Currency sign before the number, unit (e.g. "/kg") after it
    text = html.unescape(_TAG_PATTERN.sub(" ", match.group(1)))
    number = _NUMBER_PATTERN.search(text)
    if number is None:
        raise ValueError(f"unparseable price {text.strip()!r}")
    price = Decimal(number.group(0).replace(",", ""))
    if price <= 0:
        raise ValueError(f"implausible price {number.group(0)}")
    return price


class HtmlSpotPriceSource:
    name = "metal_prices"

    def __init__(
        self,
        urls: dict[Metal, str],
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._urls = dict(urls)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            headers={
                "User-Agent": _USER_AGENT,
                "Accept": "text/html",
                "Accept-Language": "en-US,en;q=0.9",
            },
        )

    async def fetch_spot_price(self, metal: Metal) -> Decimal:
        url = self._urls.get(metal)
        if not url:
            raise AdapterUnavailable(self.name, f"no source configured for {metal}")
        try:
            resp = await self._client.get(url)
            resp.raise_for_status()
            price = parse_spot_price(resp.text)
        except httpx.HTTPStatusError as e:
            raise AdapterUnavailable(self.name, f"{metal}: HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise AdapterUnavailable(self.name, f"{metal}: {str(e) or type(e).__name__}") from e
        except ValueError as e:
            raise AdapterUnavailable(self.name, f"{metal}: {e}") from e
        logger.debug("spot_price_fetched", metal=str(metal), price=str(price))
        return price

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

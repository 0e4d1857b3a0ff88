"""Metal spot price cache with a freshness window and single-flight refresh."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable

from volt_bot.adapters.base import MetalSpotPrice
from volt_bot.core.errors import PriceUnavailable, StalePrice
from volt_bot.core.types import Metal
from volt_bot.log import get_logger
from volt_bot.pricing.models import PriceSnapshot, SpotPrice

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PriceCache:
    """Latest spot price per metal.

    A stale or missing entry triggers a refresh. At most one fetch per metal is
    in flight at any time; concurrent callers await that fetch instead of
    issuing their own. When a refresh fails the last good price is served with
    its original ``as_of`` and ``stale=True``.
    """

    def __init__(
        self,
        source: MetalSpotPrice,
        freshness: timedelta = timedelta(minutes=15),
        fetch_timeout: float = 10.0,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._source = source
        self._freshness = freshness
        self._fetch_timeout = fetch_timeout
        self._clock = clock
        self._entries: dict[Metal, SpotPrice] = {}
        # Refresh-in-progress marker per metal
        self._inflight: dict[Metal, asyncio.Future[SpotPrice]] = {}

    def _is_fresh(self, entry: SpotPrice) -> bool:
        return self._clock() - entry.as_of < self._freshness

    def peek(self, metal: Metal) -> SpotPrice | None:
        """Cached entry without triggering a refresh."""
        return self._entries.get(metal)

    async def get_price(self, metal: Metal, require_fresh: bool = False) -> SpotPrice:
        entry = self._entries.get(metal)
        if entry is not None and self._is_fresh(entry):
            return entry

        result = await self.refresh(metal)
        if require_fresh and result.stale:
            raise StalePrice(str(metal), f"last price is from {result.as_of.isoformat()}")
        return result

    async def refresh(self, metal: Metal) -> SpotPrice:
        inflight = self._inflight.get(metal)
        if inflight is None:
            inflight = asyncio.ensure_future(self._fetch(metal))
            self._inflight[metal] = inflight
            inflight.add_done_callback(lambda fut, m=metal: self._clear_inflight(m, fut))
        else:
            logger.debug("price_refresh_joined", metal=str(metal))
        # Shield so one cancelled waiter does not cancel the fetch for the others
        return await asyncio.shield(inflight)

    def _clear_inflight(self, metal: Metal, fut: asyncio.Future[SpotPrice]) -> None:
        if self._inflight.get(metal) is fut:
            del self._inflight[metal]

    async def _fetch(self, metal: Metal) -> SpotPrice:
        try:
            price = await asyncio.wait_for(self._source.fetch_spot_price(metal), timeout=self._fetch_timeout)
        except Exception as e:
            last = self._entries.get(metal)
            logger.warning(
                "price_refresh_failed",
                metal=str(metal),
                error=str(e) or type(e).__name__,
                serving_stale=last is not None,
            )
            if last is None:
                raise PriceUnavailable(str(metal), str(e) or type(e).__name__) from e
            stale = SpotPrice(metal=metal, price=last.price, as_of=last.as_of, stale=True)
            self._entries[metal] = stale
            return stale

        entry = SpotPrice(metal=metal, price=price, as_of=self._clock())
        self._entries[metal] = entry
        logger.info("price_refreshed", metal=str(metal), price=str(price))
        return entry

    async def snapshot(self, metals: Iterable[Metal], require_fresh: bool = False) -> PriceSnapshot:
        """Capture prices for several metals, refreshing concurrently where needed."""
        wanted = sorted(set(metals))
        prices = await asyncio.gather(*(self.get_price(m, require_fresh=require_fresh) for m in wanted))
        return PriceSnapshot(prices=dict(zip(wanted, prices)))

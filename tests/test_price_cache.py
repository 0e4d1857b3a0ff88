import asyncio
from decimal import Decimal

import pytest

from conftest import FakeClock, FakeSpotSource
from volt_bot.core.errors import AdapterUnavailable, PriceUnavailable, StalePrice
from volt_bot.core.types import Metal
from volt_bot.pricing.price_cache import PriceCache


@pytest.mark.asyncio
async def test_concurrent_requests_share_one_fetch(clock: FakeClock) -> None:
    source = FakeSpotSource(delay=0.05)
    cache = PriceCache(source, clock=clock)

    results = await asyncio.gather(*(cache.get_price(Metal.COPPER) for _ in range(5)))

    assert source.calls == [Metal.COPPER]
    assert {r.price for r in results} == {Decimal("900")}
    assert all(not r.stale for r in results)


@pytest.mark.asyncio
async def test_fresh_entry_is_served_from_cache(clock: FakeClock) -> None:
    source = FakeSpotSource()
    cache = PriceCache(source, clock=clock)

    first = await cache.get_price(Metal.COPPER)
    clock.advance(minutes=10)
    second = await cache.get_price(Metal.COPPER)

    assert second is first
    assert len(source.calls) == 1


@pytest.mark.asyncio
async def test_expired_entry_is_refreshed(clock: FakeClock) -> None:
    source = FakeSpotSource()
    cache = PriceCache(source, clock=clock)

    await cache.get_price(Metal.COPPER)
    clock.advance(minutes=16)
    source.prices[Metal.COPPER] = Decimal("912.50")
    refreshed = await cache.get_price(Metal.COPPER)

    assert refreshed.price == Decimal("912.50")
    assert refreshed.as_of == clock.now
    assert len(source.calls) == 2


@pytest.mark.asyncio
async def test_failed_refresh_serves_last_price_as_stale(clock: FakeClock) -> None:
    source = FakeSpotSource()
    cache = PriceCache(source, clock=clock)

    original = await cache.get_price(Metal.COPPER)
    clock.advance(minutes=30)
    source.error = AdapterUnavailable("metal_prices", "HTTP 503")

    stale = await cache.get_price(Metal.COPPER)

    assert stale.stale is True
    assert stale.price == original.price
    assert stale.as_of == original.as_of
    assert cache.peek(Metal.COPPER) == stale


@pytest.mark.asyncio
async def test_require_fresh_rejects_stale_price(clock: FakeClock) -> None:
    source = FakeSpotSource()
    cache = PriceCache(source, clock=clock)

    await cache.get_price(Metal.COPPER)
    clock.advance(minutes=30)
    source.error = AdapterUnavailable("metal_prices", "HTTP 503")

    with pytest.raises(StalePrice):
        await cache.get_price(Metal.COPPER, require_fresh=True)


@pytest.mark.asyncio
async def test_no_price_ever_fetched_is_unavailable(clock: FakeClock) -> None:
    source = FakeSpotSource()
    source.error = AdapterUnavailable("metal_prices", "connection refused")
    cache = PriceCache(source, clock=clock)

    with pytest.raises(PriceUnavailable) as exc_info:
        await cache.get_price(Metal.ALUMINIUM)
    assert exc_info.value.adapter == "metal_prices"
    assert exc_info.value.metal == "aluminium"


@pytest.mark.asyncio
async def test_fetch_timeout_counts_as_failure(clock: FakeClock) -> None:
    source = FakeSpotSource(delay=1.0)
    cache = PriceCache(source, fetch_timeout=0.01, clock=clock)

    with pytest.raises(PriceUnavailable):
        await cache.get_price(Metal.COPPER)


@pytest.mark.asyncio
async def test_cancelled_waiter_does_not_cancel_shared_fetch(clock: FakeClock) -> None:
    source = FakeSpotSource(delay=0.05)
    cache = PriceCache(source, clock=clock)

    impatient = asyncio.create_task(cache.get_price(Metal.COPPER))
    patient = asyncio.create_task(cache.get_price(Metal.COPPER))
    await asyncio.sleep(0.01)
    impatient.cancel()

    result = await patient
    assert result.price == Decimal("900")
    assert len(source.calls) == 1


@pytest.mark.asyncio
async def test_snapshot_covers_each_metal_once(clock: FakeClock) -> None:
    source = FakeSpotSource()
    cache = PriceCache(source, clock=clock)

    snapshot = await cache.snapshot([Metal.COPPER, Metal.ALUMINIUM, Metal.COPPER])

    assert set(snapshot.prices) == {Metal.COPPER, Metal.ALUMINIUM}
    assert sorted(source.calls) == [Metal.ALUMINIUM, Metal.COPPER]
    assert snapshot.as_of == clock.now

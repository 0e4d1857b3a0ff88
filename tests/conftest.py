"""Shared fixtures: temporary database, pricing table, fake providers and adapters."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio

from volt_bot.adapters.base import Availability
from volt_bot.ai.providers import IntentRequest, ProviderReply, ToolCall
from volt_bot.ai.resolver import IntentResolver
from volt_bot.ai.tools import IntentToolset
from volt_bot.billing.rates import RateBook
from volt_bot.core.types import Metal
from volt_bot.fulfilment.coordinator import QueryFulfilment
from volt_bot.pricing.price_cache import PriceCache
from volt_bot.pricing.table import CategoryPricing, PricingTable, SizeBand
from volt_bot.storage.conversation_repo import ConversationRepository
from volt_bot.storage.database import DEFAULT_RATES, Database
from volt_bot.storage.models import CostRate
from volt_bot.storage.rate_repo import CostRateRepository
from volt_bot.storage.session_repo import QuerySessionRepository
from volt_bot.storage.user_repo import UserRepository

TIERS = ["retail", "dealer", "distributor"]
RATES_FROM = datetime(2020, 1, 1, tzinfo=timezone.utc)
T0 = datetime(2026, 1, 5, 6, 30, tzinfo=timezone.utc)

# Sentinel script step: the provider never answers
HANG = object()


class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeProvider:
    """Replays a script of replies and exceptions, recording every request."""

    def __init__(self, name: str, script: list[Any]):
        self.name = name
        self._script = list(script)
        self.requests: list[IntentRequest] = []

    async def resolve_intent(self, request: IntentRequest) -> ProviderReply:
        self.requests.append(request)
        step = self._script.pop(0)
        if step is HANG:
            await asyncio.sleep(60)
        if isinstance(step, BaseException):
            raise step
        return step


class FakeStock:
    def __init__(self, stock_info: str = "3 drums in Mumbai warehouse", error: Exception | None = None):
        self.stock_info = stock_info
        self.error = error
        self.queries: list[str] = []

    async def lookup_stock(self, query: str) -> Availability:
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        return Availability(query=query, stock_info=self.stock_info)


class FakeSpotSource:
    def __init__(self, prices: dict[Metal, Decimal] | None = None, delay: float = 0.0):
        self.prices = dict(prices or {Metal.COPPER: Decimal("900"), Metal.ALUMINIUM: Decimal("250")})
        self.delay = delay
        self.error: Exception | None = None
        self.calls: list[Metal] = []

    async def fetch_spot_price(self, metal: Metal) -> Decimal:
        self.calls.append(metal)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.prices[metal]


def tool_reply(
    name: str,
    arguments: Any,
    provider: str = "anthropic",
    input_tokens: int = 1000,
    output_tokens: int = 200,
) -> ProviderReply:
    return ProviderReply(
        provider=provider,
        model=f"{provider}-test",
        tool_call=ToolCall(name=name, arguments=arguments),
        input_tokens=input_tokens,
        output_tokens=output_tokens,
    )


def lt_item(quantity: int | None = 10, tier: str = "dealer", **product: Any) -> dict[str, Any]:
    """Quotation item for the 4 core 2.5 sq. mm armoured copper cable (list price 100.00)."""
    item: dict[str, Any] = {
        "product": {
            "kind": "lt_cable",
            "conductor": "copper",
            "cores": 4,
            "sqmm": "2.5",
            "armoured": True,
            "frls": True,
            **product,
        },
        "tier": tier,
    }
    if quantity is not None:
        item["quantity"] = quantity
    return item


def default_rates(effective_from: datetime = RATES_FROM) -> list[CostRate]:
    return [
        CostRate(
            service_provider=provider,
            cost_type=cost_type,
            unit_cost=Decimal(unit_cost),
            unit_type=unit_type,
            currency=currency,
            effective_from=effective_from,
        )
        for provider, cost_type, unit_cost, unit_type, currency in DEFAULT_RATES
    ]


@pytest.fixture
def pricing_table() -> PricingTable:
    return PricingTable(
        categories={
            "lt_cable": CategoryPricing(
                sizes=[Decimal("1.5"), Decimal("2.5"), Decimal("4"), Decimal("16")],
                bands=[
                    SizeBand(max_sqmm=Decimal("400"), multiplier=Decimal("1.05")),
                    SizeBand(max_sqmm=Decimal("10"), multiplier=Decimal("1.10")),
                ],
                armoured_multiplier=Decimal("1.20"),
            ),
        },
        list_prices={
            "lt:copper:4c:2.5:arm": Decimal("100.00"),
            "coaxial:RG6": Decimal("10.005"),
        },
        discount_tiers={"retail": Decimal("0"), "dealer": Decimal("0.05"), "distributor": Decimal("0.08")},
    )


@pytest.fixture
def rate_book() -> RateBook:
    return RateBook(default_rates())


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def toolset() -> IntentToolset:
    return IntentToolset.default(tiers=TIERS)


@pytest_asyncio.fixture
async def db(tmp_path) -> AsyncGenerator[Database, None]:
    """Fresh database with the default rates effective since 2020."""
    database = Database(str(tmp_path / "volt_bot.db"))
    await database.initialize(seed_rates=False)
    rates = CostRateRepository(database)
    for rate in default_rates():
        await rates.add(rate)
    yield database
    await database.close()


@pytest.fixture
def make_fulfilment(db: Database, pricing_table: PricingTable, toolset: IntentToolset):
    """Build a QueryFulfilment over the temporary database and the given fakes."""

    def _make(
        providers: list[FakeProvider],
        stock: FakeStock | None = None,
        spot: FakeSpotSource | None = None,
        clock: FakeClock | None = None,
        timeout: float = 1.0,
        **options: Any,
    ) -> QueryFulfilment:
        clock = clock or FakeClock()
        return QueryFulfilment(
            users=UserRepository(db),
            conversations=ConversationRepository(db),
            sessions=QuerySessionRepository(db),
            rates=CostRateRepository(db),
            resolver=IntentResolver(providers, toolset, timeout=timeout),
            price_cache=PriceCache(spot or FakeSpotSource(), clock=clock),
            stock=stock or FakeStock(),
            pricing_table=pricing_table,
            adapter_timeout=0.5,
            clock=clock,
            **options,
        )

    return _make

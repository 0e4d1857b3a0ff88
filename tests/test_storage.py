import sqlite3
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from conftest import T0
from volt_bot.billing.ledger import reconcile
from volt_bot.core.errors import LedgerError
from volt_bot.core.types import Platform, QueryType, ResponseType, UserStatus
from volt_bot.storage.conversation_repo import ConversationRepository
from volt_bot.storage.database import DEFAULT_RATES, Database
from volt_bot.storage.models import ConversationMessage, CostEvent, CostRate, QuerySession
from volt_bot.storage.rate_repo import CostRateRepository
from volt_bot.storage.session_repo import QuerySessionRepository
from volt_bot.storage.user_repo import UserRepository


def _session(session_id: str, user_id: str, conversation_id: str | None, total: str = "0.01") -> QuerySession:
    return QuerySession(
        id=session_id,
        user_id=user_id,
        conversation_id=conversation_id,
        query_text="copper price",
        query_type=QueryType.METAL_PRICING,
        response_type=ResponseType.SUCCESS,
        platform=Platform.WHATSAPP,
        total_cost=Decimal(total),
        processing_time_ms=12,
        created_at=T0,
    )


def _event(session_id: str, user_id: str, amount: str = "0.005") -> CostEvent:
    return CostEvent(
        query_session_id=session_id,
        event_type="message_incoming",
        service_provider="twilio",
        cost_type="whatsapp_incoming",
        unit_cost=Decimal(amount),
        unit_type="message",
        units_consumed=1,
        cost_amount=Decimal(amount),
        platform=Platform.WHATSAPP,
        user_id=user_id,
        metadata={"platform": "whatsapp"},
        created_at=T0,
    )


@pytest.mark.asyncio
async def test_seeded_rates(tmp_path) -> None:
    path = str(tmp_path / "seeded.db")
    first = Database(path)
    await first.initialize()
    await first.close()

    # Reopening does not seed a second time
    db = Database(path)
    await db.initialize()
    try:
        rates = await CostRateRepository(db).list_all()
        assert len(rates) == len(DEFAULT_RATES)
        assert {(r.service_provider, r.cost_type) for r in rates} >= {("anthropic", "input_token"), ("erp", "stock_lookup")}
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_new_users_are_pending(db: Database) -> None:
    users = UserRepository(db)

    user, created = await users.get_or_create(Platform.TELEGRAM, "1001")
    again, created_again = await users.get_or_create(Platform.TELEGRAM, "1001")

    assert created is True
    assert created_again is False
    assert again == user
    assert user.status is UserStatus.PENDING_APPROVAL
    assert user.telegram_id == "1001"
    assert [u.id for u in await users.list_pending()] == [user.id]


@pytest.mark.asyncio
async def test_approve_and_suspend(db: Database) -> None:
    users = UserRepository(db)
    await users.get_or_create(Platform.WHATSAPP, "+919800000001")

    approved = await users.approve(Platform.WHATSAPP, "+919800000001")
    assert approved.is_active
    assert approved.approved_at is not None
    assert approved.phone_number == "+919800000001"
    assert await users.list_pending() == []

    suspended = await users.suspend(Platform.WHATSAPP, "+919800000001")
    stored = await users.get(Platform.WHATSAPP, "+919800000001")
    assert suspended.status is UserStatus.SUSPENDED
    assert stored.status is UserStatus.SUSPENDED
    assert stored.approved_at is not None


@pytest.mark.asyncio
async def test_approving_unknown_user_creates_active_user(db: Database) -> None:
    users = UserRepository(db)
    user = await users.approve(Platform.TELEGRAM, "2002")
    assert user.is_active
    assert (await users.get(Platform.TELEGRAM, "2002")).id == user.id


@pytest.mark.asyncio
async def test_conversation_expiry(db: Database) -> None:
    user, _ = await UserRepository(db).get_or_create(Platform.TELEGRAM, "1001")
    conversations = ConversationRepository(db, expiry=timedelta(hours=24))

    first = await conversations.get_or_start(user.id, T0)
    same = await conversations.get_or_start(user.id, T0 + timedelta(hours=23))
    fresh = await conversations.get_or_start(user.id, T0 + timedelta(hours=24))

    assert same.id == first.id
    assert fresh.id != first.id
    assert (await conversations.latest(user.id)).id == fresh.id


@pytest.mark.asyncio
async def test_commit_writes_session_events_and_message(db: Database) -> None:
    user, _ = await UserRepository(db).get_or_create(Platform.WHATSAPP, "+919800000001")
    conversations = ConversationRepository(db)
    sessions = QuerySessionRepository(db)
    conversation = await conversations.get_or_start(user.id, T0 - timedelta(hours=1))

    session = _session("s1", user.id, conversation.id)
    message = ConversationMessage(
        conversation_id=conversation.id,
        session_id="s1",
        user_query="copper price",
        structured_response={"intent": "metal_pricing", "result": {"copper": {"price": "900"}}},
        created_at=T0,
    )
    await sessions.commit(session, [_event("s1", user.id), _event("s1", user.id)], message)

    stored = await sessions.get("s1")
    assert stored.total_cost == Decimal("0.01")
    assert stored.query_type is QueryType.METAL_PRICING
    assert stored.processing_time_ms == 12

    events = await sessions.cost_events("s1")
    assert [e.cost_amount for e in events] == [Decimal("0.005"), Decimal("0.005")]
    assert events[0].metadata == {"platform": "whatsapp"}

    history = await conversations.recent_messages(conversation.id)
    assert history[0].structured_response["result"]["copper"]["price"] == "900"
    assert (await conversations.latest(user.id)).last_activity_at == T0


@pytest.mark.asyncio
async def test_commit_rejects_total_mismatch(db: Database) -> None:
    user, _ = await UserRepository(db).get_or_create(Platform.WHATSAPP, "+919800000001")
    sessions = QuerySessionRepository(db)

    with pytest.raises(LedgerError):
        await sessions.commit(_session("s1", user.id, None, total="0.02"), [_event("s1", user.id)])

    assert await sessions.get("s1") is None


@pytest.mark.asyncio
async def test_commit_is_all_or_nothing(db: Database) -> None:
    user, _ = await UserRepository(db).get_or_create(Platform.WHATSAPP, "+919800000001")
    sessions = QuerySessionRepository(db)
    # The event points at a session that does not exist, so its insert fails
    orphan = _event("no-such-session", user.id)

    with pytest.raises(sqlite3.IntegrityError):
        await sessions.commit(_session("s1", user.id, None, total="0.005"), [orphan])

    assert await sessions.get("s1") is None
    assert await sessions.list_recent() == []


@pytest.mark.asyncio
async def test_recent_messages_are_bounded_and_ordered(db: Database) -> None:
    user, _ = await UserRepository(db).get_or_create(Platform.TELEGRAM, "1001")
    conversations = ConversationRepository(db)
    sessions = QuerySessionRepository(db)
    conversation = await conversations.get_or_start(user.id, T0)

    for n in range(3):
        session = _session(f"s{n}", user.id, conversation.id, total="0")
        message = ConversationMessage(
            conversation_id=conversation.id, session_id=f"s{n}", user_query=f"query {n}", created_at=T0
        )
        await sessions.commit(session, [], message)

    recent = await conversations.recent_messages(conversation.id, limit=2)

    assert [m.user_query for m in recent] == ["query 1", "query 2"]
    assert recent[0].structured_response is None
    assert await conversations.recent_messages(conversation.id, limit=0) == []
    assert [s.id for s in await sessions.list_recent(limit=2, user_id=user.id)] == ["s2", "s1"]


@pytest.mark.asyncio
async def test_rates_are_append_only(db: Database) -> None:
    rates = CostRateRepository(db)
    later = datetime(2026, 3, 1, tzinfo=timezone.utc)

    saved = await rates.add(
        CostRate(
            service_provider="anthropic",
            cost_type="input_token",
            unit_cost=Decimal("2.5"),
            unit_type="per_1m_tokens",
            effective_from=later,
        )
    )
    book = await rates.rate_book()

    assert saved.id is not None
    assert [r.unit_cost for r in book.history("anthropic", "input_token")] == [Decimal("3.0"), Decimal("2.5")]
    assert book.rate_at("anthropic", "input_token", T0).unit_cost == Decimal("3.0")
    assert book.rate_at("anthropic", "input_token", later).unit_cost == Decimal("2.5")


def _twilio_rate(effective_from: datetime, unit_cost: str = "0.004") -> CostRate:
    return CostRate(
        service_provider="twilio",
        cost_type="whatsapp_incoming",
        unit_cost=Decimal(unit_cost),
        unit_type="message",
        effective_from=effective_from,
    )


@pytest.mark.asyncio
async def test_rates_cannot_be_backdated_over_billed_events(db: Database) -> None:
    user, _ = await UserRepository(db).get_or_create(Platform.WHATSAPP, "+919800000001")
    sessions = QuerySessionRepository(db)
    rates = CostRateRepository(db)
    await sessions.commit(_session("s1", user.id, None, total="0.005"), [_event("s1", user.id)])

    with pytest.raises(LedgerError, match="before"):
        await rates.add(_twilio_rate(T0 - timedelta(days=30)))

    book = await rates.rate_book()
    assert len(book.history("twilio", "whatsapp_incoming")) == 1
    assert reconcile(await sessions.get("s1"), await sessions.cost_events("s1"), book).ok

    await rates.add(_twilio_rate(T0 + timedelta(days=1)))
    book = await rates.rate_book()
    assert reconcile(await sessions.get("s1"), await sessions.cost_events("s1"), book).ok


@pytest.mark.asyncio
async def test_rates_cannot_start_before_the_current_version(db: Database) -> None:
    rates = CostRateRepository(db)

    with pytest.raises(LedgerError):
        await rates.add(_twilio_rate(datetime(2019, 6, 1, tzinfo=timezone.utc)))
    with pytest.raises(ValueError):
        await rates.add(_twilio_rate(datetime(2027, 1, 1)))

    assert len(await rates.list_all()) == len(DEFAULT_RATES)


@pytest.mark.asyncio
async def test_reads_only_see_committed_rows(db: Database) -> None:
    users = UserRepository(db)

    async with db.transaction() as conn:
        await conn.execute(
            "INSERT INTO users (id, telegram_id, status, platform, created_at) VALUES (?, ?, ?, ?, ?)",
            ("u-1", "3003", "active", "telegram", T0.isoformat()),
        )
        assert await users.get(Platform.TELEGRAM, "3003") is None

    assert (await users.get(Platform.TELEGRAM, "3003")).id == "u-1"


@pytest.mark.asyncio
async def test_rolled_back_rows_are_never_read(db: Database) -> None:
    users = UserRepository(db)

    with pytest.raises(RuntimeError):
        async with db.transaction() as conn:
            await conn.execute(
                "INSERT INTO users (id, telegram_id, status, platform, created_at) VALUES (?, ?, ?, ?, ?)",
                ("u-2", "4004", "active", "telegram", T0.isoformat()),
            )
            raise RuntimeError("abort")

    assert await users.get(Platform.TELEGRAM, "4004") is None

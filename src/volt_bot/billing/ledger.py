"""Per-session cost ledger and reconciliation against the rate history."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Iterable, Optional

from volt_bot.billing.rates import RateBook, per_unit_cost
from volt_bot.core.errors import LedgerError
from volt_bot.core.types import Platform
from volt_bot.log import get_logger
from volt_bot.storage.models import CostEvent, CostRate, QuerySession, utcnow

logger = get_logger(__name__)

# (service_provider, incoming cost_type, outgoing cost_type)
_MESSAGE_RATES: dict[Platform, tuple[str, str, str]] = {
    Platform.TELEGRAM: ("telegram", "telegram_incoming", "telegram_outgoing"),
    Platform.WHATSAPP: ("twilio", "whatsapp_incoming", "whatsapp_service"),
}


class CostLedger:
    """Billable events of one QuerySession.

    Events accumulate in memory and are persisted by the coordinator in the
    same transaction as the session row. ``cost_amount`` is fixed when the
    event is recorded, from the rate in force at that moment.
    """

    def __init__(
        self,
        session_id: str,
        platform: Platform,
        rate_book: RateBook,
        user_id: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_id = session_id
        self.platform = platform
        self.user_id = user_id
        self._rate_book = rate_book
        self._clock = clock
        self._events: list[CostEvent] = []

    @property
    def events(self) -> tuple[CostEvent, ...]:
        return tuple(self._events)

    @property
    def total(self) -> Decimal:
        return sum((e.cost_amount for e in self._events), Decimal("0"))

    def rate_for(self, service_provider: str, cost_type: str, at: datetime) -> CostRate:
        rate = self._rate_book.rate_at(service_provider, cost_type, at)
        if rate is None:
            raise LedgerError(f"no {service_provider}/{cost_type} rate effective at {at.isoformat()}")
        return rate

    def record(
        self,
        rate: CostRate,
        units: int,
        event_type: str,
        metadata: Optional[dict[str, Any]] = None,
        at: Optional[datetime] = None,
    ) -> CostEvent:
        if units < 0:
            raise LedgerError(f"negative units for {event_type}")
        unit_cost, unit_type = per_unit_cost(rate)
        event = CostEvent(
            query_session_id=self.session_id,
            event_type=event_type,
            service_provider=rate.service_provider,
            cost_type=rate.cost_type,
            unit_cost=unit_cost,
            unit_type=unit_type,
            units_consumed=units,
            cost_amount=unit_cost * units,
            platform=self.platform,
            user_id=self.user_id,
            metadata=dict(metadata or {}),
            created_at=at or self._clock(),
        )
        self._events.append(event)
        logger.debug(
            "cost_recorded",
            session_id=self.session_id,
            event_type=event_type,
            provider=rate.service_provider,
            cost_type=rate.cost_type,
            units=units,
            cost=str(event.cost_amount),
        )
        return event

    def _record_at_now(self, service_provider: str, cost_type: str, units: int, event_type: str, metadata: dict) -> CostEvent:
        now = self._clock()
        rate = self.rate_for(service_provider, cost_type, now)
        return self.record(rate, units, event_type, metadata, at=now)

    def provider_call(
        self,
        provider: str,
        input_tokens: int,
        output_tokens: int,
        metadata: Optional[dict[str, Any]] = None,
    ) -> list[CostEvent]:
        """One event per token class for a call that reported usage."""
        meta = {"input_tokens": input_tokens, "output_tokens": output_tokens, **(metadata or {})}
        return [
            self._record_at_now(provider, "input_token", input_tokens, "llm_input_tokens", meta),
            self._record_at_now(provider, "output_token", output_tokens, "llm_output_tokens", meta),
        ]

    def failed_call(self, provider: str, reason: str, metadata: Optional[dict[str, Any]] = None) -> CostEvent:
        """Fixed per-call charge for a provider call with no usage reported."""
        return self._record_at_now(provider, "failed_call", 1, "llm_failed_call", {"reason": reason, **(metadata or {})})

    def message(self, direction: str) -> CostEvent:
        provider, incoming, outgoing = _MESSAGE_RATES[self.platform]
        cost_type = incoming if direction == "incoming" else outgoing
        return self._record_at_now(provider, cost_type, 1, f"message_{direction}", {"platform": str(self.platform)})

    def erp_call(self, ok: bool, error: Optional[str] = None) -> CostEvent:
        meta: dict[str, Any] = {"ok": ok}
        if error:
            meta["error"] = error
        return self._record_at_now("erp", "stock_lookup", 1, "erp_stock_lookup", meta)


@dataclass
class Reconciliation:
    session_id: str
    total_cost: Decimal
    events_total: Decimal
    event_count: int
    mismatches: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.mismatches


def reconcile(session: QuerySession, events: Iterable[CostEvent], rate_book: RateBook) -> Reconciliation:
    """Recompute every event from the rate in force at event time."""
    events = list(events)
    events_total = sum((e.cost_amount for e in events), Decimal("0"))
    result = Reconciliation(
        session_id=session.id,
        total_cost=session.total_cost,
        events_total=events_total,
        event_count=len(events),
    )

    if not events:
        result.mismatches.append("session has no cost events")
    for event in events:
        label = f"event {event.id or '?'} ({event.service_provider}/{event.cost_type})"
        if event.query_session_id != session.id:
            result.mismatches.append(f"{label}: belongs to session {event.query_session_id}")
        rate = rate_book.rate_at(event.service_provider, event.cost_type, event.created_at)
        if rate is None:
            result.mismatches.append(f"{label}: no rate effective at {event.created_at.isoformat()}")
            continue
        unit_cost, _ = per_unit_cost(rate)
        if unit_cost != event.unit_cost:
            result.mismatches.append(f"{label}: unit cost {event.unit_cost} != rate {unit_cost}")
        if event.unit_cost * event.units_consumed != event.cost_amount:
            result.mismatches.append(f"{label}: cost amount {event.cost_amount} != unit cost x units")
    if events_total != session.total_cost:
        result.mismatches.append(f"total cost {session.total_cost} != sum of events {events_total}")
    return result

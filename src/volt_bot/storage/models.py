"""Data models for storage layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from volt_bot.core.types import Platform, QueryType, ResponseType, UserPlatform, UserStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class User:
    id: str
    status: UserStatus
    platform: UserPlatform
    telegram_id: Optional[str] = None
    phone_number: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    approved_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE


@dataclass
class Conversation:
    id: str
    user_id: str
    created_at: datetime = field(default_factory=utcnow)
    last_activity_at: datetime = field(default_factory=utcnow)


@dataclass
class ConversationMessage:
    conversation_id: str
    session_id: str
    user_query: str
    structured_response: Optional[dict[str, Any]] = None
    created_at: datetime = field(default_factory=utcnow)
    id: Optional[int] = None


@dataclass
class QuerySession:
    """Audit record of one inbound message. Written once, never updated."""

    id: str
    user_id: Optional[str]
    conversation_id: Optional[str]
    query_text: str
    query_type: QueryType
    response_type: ResponseType
    platform: Platform
    total_cost: Decimal = Decimal("0")
    error_message: Optional[str] = None
    processing_time_ms: int = 0
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class CostRate:
    """One version of the price of a billable unit."""

    service_provider: str
    cost_type: str
    unit_cost: Decimal
    unit_type: str  # "per_1m_tokens" | "message" | "call" | ...
    effective_from: datetime
    currency: str = "USD"
    id: Optional[int] = None


@dataclass
class CostEvent:
    query_session_id: str
    event_type: str
    service_provider: str
    cost_type: str
    unit_cost: Decimal
    unit_type: str
    units_consumed: int
    cost_amount: Decimal
    platform: Platform
    user_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    id: Optional[int] = None

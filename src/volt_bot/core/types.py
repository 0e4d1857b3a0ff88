"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class Platform(StrEnum):
    TELEGRAM = "telegram"
    WHATSAPP = "whatsapp"


class UserPlatform(StrEnum):
    TELEGRAM = "telegram"
    WHATSAPP = "whatsapp"
    BOTH = "both"


class UserStatus(StrEnum):
    PENDING_APPROVAL = "pending_approval"
    ACTIVE = "active"
    SUSPENDED = "suspended"


class Metal(StrEnum):
    COPPER = "copper"
    ALUMINIUM = "aluminium"


class QueryType(StrEnum):
    GET_QUOTATION = "get_quotation"
    GET_PRICES_ONLY = "get_prices_only"
    GET_STOCK = "get_stock"
    METAL_PRICING = "metal_pricing"
    # Recorded on sessions that errored before an intent was resolved
    UNRESOLVED = "unresolved"


class ResponseType(StrEnum):
    SUCCESS = "success"
    ERROR = "error"


class FulfilmentState(StrEnum):
    """Lifecycle of one inbound message. RESPONDED and ERRORED are terminal."""

    RECEIVED = "received"
    CONTEXT_LOADED = "context_loaded"
    INTENT_RESOLVED = "intent_resolved"
    DISPATCHED = "dispatched"
    RESPONDED = "responded"
    ERRORED = "errored"

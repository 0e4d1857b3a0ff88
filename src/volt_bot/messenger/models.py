"""Unified message models for chat transports."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from volt_bot.core.types import Platform


@dataclass(frozen=True, slots=True)
class IncomingMessage:
    platform: Platform
    chat_id: str
    sender_id: str  # telegram user id or phone number
    user_display_name: str
    text: str
    timestamp: datetime
    reply_to_message_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Attachment:
    filename: str
    data: bytes
    mime_type: str = "application/pdf"


@dataclass(frozen=True, slots=True)
class OutgoingMessage:
    chat_id: str
    text: str  # caption when an attachment is present
    reply_to_message_id: Optional[str] = None
    attachment: Optional[Attachment] = None

"""Message handler: chat commands, then query fulfilment, then the reply."""

from __future__ import annotations

import asyncio
from typing import Any

from volt_bot.core.types import Platform, UserStatus
from volt_bot.fulfilment import replies
from volt_bot.fulfilment.coordinator import QueryFulfilment
from volt_bot.log import get_logger
from volt_bot.messenger.base import MessengerAdapter
from volt_bot.messenger.models import Attachment, IncomingMessage, OutgoingMessage
from volt_bot.storage.user_repo import UserRepository

logger = get_logger(__name__)

WELCOME_TEXT = "Welcome! You can ask for cable quotations, rates, stock and metal prices.\n\n"
APPROVE_USAGE = "Usage: /approve [telegram|whatsapp] <id>"


class MessageHandler:
    """Handles the full flow: message -> command or fulfilment -> response."""

    def __init__(
        self,
        adapter: MessengerAdapter,
        fulfilment: QueryFulfilment,
        users: UserRepository,
        admin_ids: list[str] | None = None,
    ):
        self._adapter = adapter
        self._fulfilment = fulfilment
        self._users = users
        self._admin_ids = set(admin_ids or [])
        self._background: set[asyncio.Task[Any]] = set()

    def _is_admin(self, message: IncomingMessage) -> bool:
        return message.sender_id in self._admin_ids

    async def handle(self, message: IncomingMessage) -> None:
        """Process an incoming message end-to-end."""
        text = message.text.strip()
        if not text:
            return

        attachment: Attachment | None = None
        caption = ""
        command, _, rest = text.partition(" ")
        match command.lower():
            case "/start":
                response_text = await self._start(message)
            case "/help":
                response_text = replies.HELP_TEXT
            case "/approve" if self._is_admin(message):
                response_text = await self._approve(rest.split())
            case "/pending" if self._is_admin(message):
                response_text = await self._pending()
            case other if other.startswith("/"):
                response_text = "Unknown command.\n\n" + replies.HELP_TEXT
            case _:
                self._show_typing(message.chat_id)
                response = await self._fulfilment.handle_message(message.platform, message.sender_id, text)
                response_text = response.text
                if response.document is not None:
                    attachment = Attachment(
                        filename=response.document.filename,
                        data=response.document.data,
                        mime_type=response.document.mime_type,
                    )
                    caption = f"Quotation {response.document.number}"

        for chunk in split_message(response_text, max_length=self._adapter.max_message_length):
            await self._adapter.send_message(
                OutgoingMessage(chat_id=message.chat_id, text=chunk, reply_to_message_id=message.reply_to_message_id)
            )
        if attachment is not None:
            await self._adapter.send_message(
                OutgoingMessage(
                    chat_id=message.chat_id,
                    text=caption,
                    reply_to_message_id=message.reply_to_message_id,
                    attachment=attachment,
                )
            )

    def _show_typing(self, chat_id: str) -> None:
        # Not awaited, so queued messages reach the fulfilment layer in arrival order
        task = asyncio.create_task(self._adapter.send_typing_indicator(chat_id))
        self._background.add(task)
        task.add_done_callback(self._typing_done)

    def _typing_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug("typing_indicator_failed", error=str(task.exception()))

    async def _start(self, message: IncomingMessage) -> str:
        user, created = await self._users.get_or_create(message.platform, message.sender_id)
        if created:
            logger.info("user_registered", user_id=user.id, name=message.user_display_name)
        if user.status != UserStatus.ACTIVE:
            return replies.gate_reply(user.status)
        return WELCOME_TEXT + replies.HELP_TEXT

    async def _approve(self, args: list[str]) -> str:
        match args:
            case [sender_id]:
                platform = self._adapter.platform
            case [platform_name, sender_id] if platform_name.lower() in {p.value for p in Platform}:
                platform = Platform(platform_name.lower())
            case _:
                return APPROVE_USAGE

        user = await self._users.approve(platform, sender_id)
        if platform == self._adapter.platform:
            try:
                await self._adapter.send_message(
                    OutgoingMessage(chat_id=sender_id, text="Your access has been approved. " + replies.HELP_TEXT)
                )
            except Exception as e:
                logger.warning("approval_notice_failed", user_id=user.id, error=str(e))
        return f"Approved {platform} user {sender_id}."

    async def _pending(self) -> str:
        pending = await self._users.list_pending()
        if not pending:
            return "No users awaiting approval."
        lines = ["Awaiting approval:"]
        for user in pending:
            identity = user.telegram_id or user.phone_number
            lines.append(f"- {user.platform} {identity} (since {replies.ist_stamp(user.created_at)})")
        return "\n".join(lines)


def split_message(text: str, max_length: int = 4000) -> list[str]:
    """Split a message into chunks that fit within platform limits."""
    if len(text) <= max_length:
        return [text]

    chunks = []
    while text:
        if len(text) <= max_length:
            chunks.append(text)
            break
        # Try to split at a newline
        split_pos = text.rfind("\n", 0, max_length)
        if split_pos <= 0:
            split_pos = max_length
        chunks.append(text[:split_pos])
        text = text[split_pos:].lstrip("\n")
    return chunks

"""Telegram messenger adapter using python-telegram-bot v21+."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from telegram import Update
from telegram.constants import ChatAction
from telegram.ext import Application, MessageHandler as TGMessageHandler, filters

from volt_bot.config import TelegramConfig
from volt_bot.core.types import Platform
from volt_bot.log import get_logger
from volt_bot.messenger.base import MessengerAdapter
from volt_bot.messenger.models import IncomingMessage, OutgoingMessage

logger = get_logger(__name__)


class TelegramAdapter(MessengerAdapter):
    """Telegram bot adapter using python-telegram-bot."""

    max_message_length = 4000

    def __init__(self, config: TelegramConfig):
        super().__init__()
        self._config = config
        self._app: Application | None = None  # type: ignore[type-arg]

    @property
    def platform(self) -> Platform:
        return Platform.TELEGRAM

    async def start(self) -> None:
        if not self._config.token:
            raise ValueError("Telegram bot token not configured")

        # Updates from different chats are handled concurrently; the
        # fulfilment layer keeps each user's messages in order.
        self._app = Application.builder().token(self._config.token).concurrent_updates(True).build()

        # Text and commands (/start, /help, /approve, /pending) go to the same callback
        self._app.add_handler(TGMessageHandler(filters.TEXT, self._on_telegram_message))

        await self._app.initialize()
        await self._app.start()
        await self._app.updater.start_polling(drop_pending_updates=True)  # type: ignore[union-attr]
        logger.info("telegram_adapter_started")

    async def stop(self) -> None:
        if self._app:
            await self._app.updater.stop()  # type: ignore[union-attr]
            await self._app.stop()
            await self._app.shutdown()
            logger.info("telegram_adapter_stopped")

    async def send_message(self, message: OutgoingMessage) -> None:
        if not self._app or not self._app.bot:
            return

        reply_id = int(message.reply_to_message_id) if message.reply_to_message_id else None
        if message.attachment is not None:
            await self._app.bot.send_document(
                chat_id=int(message.chat_id),
                document=message.attachment.data,
                filename=message.attachment.filename,
                caption=message.text or None,
                reply_to_message_id=reply_id,
            )
            return
        await self._app.bot.send_message(
            chat_id=int(message.chat_id),
            text=message.text,
            reply_to_message_id=reply_id,
        )

    async def send_typing_indicator(self, chat_id: str) -> None:
        if self._app and self._app.bot:
            await self._app.bot.send_chat_action(chat_id=int(chat_id), action=ChatAction.TYPING)

    async def _on_telegram_message(self, update: Update, context: Any) -> None:
        """Handle an incoming Telegram text message."""
        if not update.message or not self._message_callback:
            return

        msg = update.message
        text = (msg.text or "").strip()
        if not text:
            return

        incoming = IncomingMessage(
            platform=Platform.TELEGRAM,
            chat_id=str(msg.chat_id),
            sender_id=str(msg.from_user.id) if msg.from_user else str(msg.chat_id),
            user_display_name=msg.from_user.full_name if msg.from_user else "Unknown",
            text=text,
            timestamp=msg.date or datetime.now(timezone.utc),
            reply_to_message_id=str(msg.message_id),
        )

        try:
            await self._message_callback(incoming)
        except Exception as e:
            logger.error("telegram_handler_error", error=str(e), chat_id=str(msg.chat_id))

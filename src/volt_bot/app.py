"""Application orchestrator - wires all components and manages lifecycle."""

from __future__ import annotations

from datetime import timedelta

from volt_bot.adapters.erp import HttpStockLookup
from volt_bot.adapters.metal_price import HtmlSpotPriceSource
from volt_bot.ai.providers import create_providers
from volt_bot.ai.resolver import IntentResolver
from volt_bot.ai.tools import IntentToolset
from volt_bot.config import AppConfig
from volt_bot.core.sequencer import UserSequencer
from volt_bot.fulfilment.coordinator import QueryFulfilment
from volt_bot.log import get_logger
from volt_bot.messenger.base import MessengerAdapter
from volt_bot.messenger.handler import MessageHandler
from volt_bot.messenger.models import OutgoingMessage
from volt_bot.pricing.price_cache import PriceCache
from volt_bot.pricing.table import load_pricing_table
from volt_bot.services.error_alerts import ErrorAlertService
from volt_bot.services.price_alerts import PriceAlertService
from volt_bot.storage.conversation_repo import ConversationRepository
from volt_bot.storage.database import Database
from volt_bot.storage.rate_repo import CostRateRepository
from volt_bot.storage.session_repo import QuerySessionRepository
from volt_bot.storage.user_repo import UserRepository

logger = get_logger(__name__)


class VoltBotApp:
    """Top-level application orchestrator."""

    def __init__(self, config: AppConfig):
        self.config = config
        self.db = Database(config.storage.db_path)
        self.users = UserRepository(self.db)
        self.conversations = ConversationRepository(
            self.db, expiry=timedelta(hours=config.conversation.expiry_hours)
        )
        self.sessions = QuerySessionRepository(self.db)
        self.rates = CostRateRepository(self.db)

        self.pricing_table = load_pricing_table(config.pricing.table_path)
        self.spot_source = HtmlSpotPriceSource(config.metal_prices.urls, timeout=config.metal_prices.timeout)
        self.price_cache = PriceCache(
            self.spot_source,
            freshness=timedelta(minutes=config.metal_prices.freshness_minutes),
            fetch_timeout=config.metal_prices.timeout,
        )
        self.stock = HttpStockLookup(config.stock.base_url, api_key=config.stock.api_key, timeout=config.stock.timeout)

        self.error_alerts: ErrorAlertService | None = None
        if config.telegram and config.telegram.error_chat_id:
            self.error_alerts = ErrorAlertService(
                self._send_admin_text,
                config.telegram.error_chat_id,
                min_interval=config.telegram.error_alert_interval,
            )

        self.resolver = IntentResolver(
            providers=create_providers(config.llm.providers, config.anthropic, config.groq),
            toolset=IntentToolset.default(tiers=self.pricing_table.tier_names),
            system_prompt=config.llm.system_prompt,
            timeout=config.llm.timeout,
        )
        self.fulfilment = QueryFulfilment(
            users=self.users,
            conversations=self.conversations,
            sessions=self.sessions,
            rates=self.rates,
            resolver=self.resolver,
            price_cache=self.price_cache,
            stock=self.stock,
            pricing_table=self.pricing_table,
            sequencer=UserSequencer(),
            context_messages=min(config.llm.context_messages, config.conversation.max_messages),
            adapter_timeout=config.stock.timeout + 5,
            quotation_pdf=config.pricing.quotation_pdf,
            company_name=config.pricing.company_name,
            error_alerts=self.error_alerts,
        )
        self.adapters: list[MessengerAdapter] = []
        self.alerts: PriceAlertService | None = None
        self._admin_adapter: MessengerAdapter | None = None

    async def _send_admin_text(self, chat_id: str, text: str) -> None:
        if self._admin_adapter is None:
            raise RuntimeError("no messenger running for admin alerts")
        await self._admin_adapter.send_message(OutgoingMessage(chat_id=chat_id, text=text))

    async def start(self) -> None:
        """Initialize and start all components."""
        # 1. Database
        await self.db.initialize()

        # 2. Messenger adapters
        if self.config.telegram:
            from volt_bot.messenger.telegram import TelegramAdapter

            adapter = TelegramAdapter(self.config.telegram)
            handler = MessageHandler(
                adapter=adapter,
                fulfilment=self.fulfilment,
                users=self.users,
                admin_ids=self.config.telegram.admin_ids,
            )
            adapter.on_message(handler.handle)
            try:
                await adapter.start()
                self.adapters.append(adapter)
                self._admin_adapter = adapter
                logger.info("messenger_started", platform=str(adapter.platform))
            except Exception as e:
                logger.error("messenger_start_failed", platform=str(adapter.platform), error=str(e))

            # 3. Operational failures go to the admin chat
            if self.error_alerts:
                await self.error_alerts.start()

            # 4. Price alerts go to the Telegram alert chats
            if self.config.alerts.enabled and self.config.telegram.alert_chat_ids:

                async def _send(chat_id: str, text: str) -> None:
                    await adapter.send_message(OutgoingMessage(chat_id=chat_id, text=text))

                self.alerts = PriceAlertService(
                    self.config.alerts, self.price_cache, _send, self.config.telegram.alert_chat_ids
                )
                await self.alerts.start()
        else:
            logger.warning("no_messenger_configured")

        logger.info(
            "volt_bot_started",
            messengers=len(self.adapters),
            providers=self.config.llm.providers,
            tiers=self.pricing_table.tier_names,
        )

    async def stop(self) -> None:
        """Gracefully shut down all components."""
        if self.alerts:
            await self.alerts.stop()
        if self.error_alerts:
            await self.error_alerts.stop()
        for adapter in self.adapters:
            try:
                await adapter.stop()
            except Exception as e:
                logger.error("messenger_stop_error", error=str(e))

        await self.stock.close()
        await self.spot_source.close()
        await self.db.close()
        logger.info("volt_bot_stopped")

"""APScheduler-based metal price alert broadcasts."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Awaitable, Callable, Coroutine, Optional
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from volt_bot.config import AlertsConfig
from volt_bot.core.errors import PriceUnavailable
from volt_bot.core.types import Metal
from volt_bot.fulfilment.replies import format_price_alert
from volt_bot.log import get_logger
from volt_bot.pricing.price_cache import PriceCache

logger = get_logger(__name__)

SendText = Callable[[str, str], Awaitable[None]]


class PriceAlertService:
    """Broadcasts current copper and aluminium prices on a cron schedule."""

    def __init__(
        self,
        config: AlertsConfig,
        price_cache: PriceCache,
        send: SendText,
        chat_ids: list[str],
    ):
        self._config = config
        self._price_cache = price_cache
        self._send = send
        self._chat_ids = list(chat_ids)
        self._tz = ZoneInfo(config.timezone)
        self._scheduler = AsyncIOScheduler(timezone=config.timezone)

    async def start(self) -> None:
        for cron_expr in self._config.schedules:
            self.add_cron_job(cron_expr, self.send_alert)
        self._scheduler.start()
        logger.info(
            "price_alerts_started",
            timezone=self._config.timezone,
            schedules=self._config.schedules,
            chats=len(self._chat_ids),
        )

    async def stop(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        logger.info("price_alerts_stopped")

    def add_cron_job(
        self,
        cron_expr: str,
        callback: Callable[..., Coroutine[Any, Any, None]],
        job_id: Optional[str] = None,
        **kwargs: Any,
    ) -> str:
        """Add a cron-based recurring job. Returns the job ID."""
        job_id = job_id or uuid.uuid4().hex[:12]
        parts = cron_expr.split()
        trigger = CronTrigger(
            minute=parts[0] if len(parts) > 0 else "*",
            hour=parts[1] if len(parts) > 1 else "*",
            day=parts[2] if len(parts) > 2 else "*",
            month=parts[3] if len(parts) > 3 else "*",
            day_of_week=parts[4] if len(parts) > 4 else "*",
            timezone=self._tz,
        )
        self._scheduler.add_job(callback, trigger, id=job_id, kwargs=kwargs)
        logger.info("cron_job_added", job_id=job_id, cron=cron_expr)
        return job_id

    async def send_alert(self) -> int:
        """Send the alert to every configured chat. Returns the number delivered."""
        try:
            snapshot = await self._price_cache.snapshot([Metal.COPPER, Metal.ALUMINIUM])
        except PriceUnavailable as e:
            logger.error("price_alert_skipped", error=e.message)
            return 0

        text = format_price_alert(snapshot, datetime.now(self._tz))
        delivered = 0
        for chat_id in self._chat_ids:
            try:
                await self._send(chat_id, text)
                delivered += 1
            except Exception as e:
                logger.error("price_alert_send_failed", chat_id=chat_id, error=str(e))
        logger.info("price_alert_sent", delivered=delivered, chats=len(self._chat_ids))
        return delivered

    def list_jobs(self) -> list[dict[str, Any]]:
        """List all scheduled jobs."""
        return [
            {
                "id": job.id,
                "next_run_time": str(job.next_run_time) if getattr(job, "next_run_time", None) else None,
                "trigger": str(job.trigger),
            }
            for job in self._scheduler.get_jobs()
        ]

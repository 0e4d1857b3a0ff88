"""Operational failures forwarded to an admin chat."""

from __future__ import annotations

import asyncio
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from volt_bot.fulfilment.replies import format_error_alert
from volt_bot.log import get_logger
from volt_bot.storage.models import utcnow

logger = get_logger(__name__)

SendText = Callable[[str, str], Awaitable[None]]


class ErrorAlertService:
    """Queues failure reports and sends them to the admin chat in order.

    ``report`` never blocks the caller. The same kind and message is sent at
    most once per ``min_interval`` seconds; a full queue drops the report.
    """

    def __init__(
        self,
        send: SendText,
        chat_id: str,
        min_interval: float = 60.0,
        queue_size: int = 100,
        monotonic: Callable[[], float] = time.monotonic,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._send = send
        self._chat_id = chat_id
        self._min_interval = min_interval
        self._monotonic = monotonic
        self._clock = clock
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=queue_size)
        self._last_sent_at_by_key: dict[str, float] = {}
        self._task: Optional[asyncio.Task[Any]] = None

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())
            logger.info("error_alerts_started", chat_id=self._chat_id)

    async def stop(self, drain_timeout: float = 5.0) -> None:
        if self._task is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=drain_timeout)
        except asyncio.TimeoutError:
            logger.warning("error_alerts_not_drained", pending=self._queue.qsize())
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("error_alerts_stopped")

    def report(self, kind: str, message: str, session_id: Optional[str] = None) -> bool:
        """Queue an alert. Returns False when it was deduplicated or dropped."""
        now = self._monotonic()
        key = f"{kind}|{message[:120]}"
        last = self._last_sent_at_by_key.get(key)
        if last is not None and now - last < self._min_interval:
            return False

        text = format_error_alert(kind, message, session_id, self._clock())
        try:
            self._queue.put_nowait(text)
        except asyncio.QueueFull:
            logger.warning("error_alert_dropped", kind=kind, session_id=session_id)
            return False
        self._last_sent_at_by_key[key] = now
        return True

    async def _run(self) -> None:
        while True:
            text = await self._queue.get()
            try:
                await self._send(self._chat_id, text)
            except Exception as e:
                logger.error("error_alert_send_failed", chat_id=self._chat_id, error=str(e))
            finally:
                self._queue.task_done()

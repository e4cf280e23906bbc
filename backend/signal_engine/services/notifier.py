"""
Notification Service

Delivers user and channel messages through the Telegram Bot API.

Watchers never call a Notifier directly. They persist a transition first and
then enqueue the message on the NotificationQueue, whose background worker
delivers it with a timeout. A slow or failing Telegram can therefore never
block or roll back a state transition.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional, Tuple

import httpx

from signal_engine.config import settings

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Sends one message to one target (chat id / channel id)."""

    @abstractmethod
    async def notify(self, target: str, message: str) -> None:
        pass

    async def close(self):
        return None


class RateLimitedError(Exception):
    """The notification backend asked us to wait ``retry_after`` seconds."""

    def __init__(self, retry_after: float):
        self.retry_after = retry_after
        super().__init__(f"rate limited, retry after {retry_after}s")


class TelegramNotifier(Notifier):
    """Notifier posting to https://api.telegram.org/bot<token>/sendMessage"""

    def __init__(
        self,
        bot_token: str,
        api_base: str = "https://api.telegram.org",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.bot_token = bot_token
        self.api_base = api_base.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def notify(self, target: str, message: str) -> None:
        url = f"{self.api_base}/bot{self.bot_token}/sendMessage"
        response = await self._client.post(
            url,
            json={"chat_id": target, "text": message, "disable_web_page_preview": True},
        )
        if response.status_code == 429:
            # Telegram tells us how long to back off; the queue does the waiting
            try:
                retry_after = float(response.json().get("parameters", {}).get("retry_after", 1))
            except ValueError:
                retry_after = 1.0
            raise RateLimitedError(retry_after)
        response.raise_for_status()

    async def close(self):
        await self._client.aclose()


class LogNotifier(Notifier):
    """Fallback used when no bot token is configured: messages go to the log."""

    async def notify(self, target: str, message: str) -> None:
        logger.info(f"[notify -> {target}] {message}")


def build_notifier() -> Notifier:
    if settings.telegram_bot_token:
        return TelegramNotifier(
            settings.telegram_bot_token,
            api_base=settings.telegram_api_base,
            timeout=settings.notification_timeout_seconds,
        )
    logger.warning("TELEGRAM_BOT_TOKEN not set - notifications will only be logged")
    return LogNotifier()


class NotificationQueue:
    """
    Post-commit side-effect queue.

    enqueue() is synchronous and never raises; the worker task delivers
    messages in order, one at a time, each attempt bounded by ``timeout``.
    A rate-limited message is retried up to ``max_attempts`` times.
    """

    def __init__(self, notifier: Notifier, timeout: float = 10.0, max_attempts: int = 3):
        self.notifier = notifier
        self.timeout = timeout
        self.max_attempts = max_attempts
        self._queue: asyncio.Queue[Tuple[str, str]] = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self.delivered = 0
        self.failed = 0

    def enqueue(self, target: Optional[str], message: str) -> bool:
        """Queue a message; returns False (and logs) when there's no target."""
        if not target:
            logger.debug(f"Dropping notification without target: {message[:60]}")
            return False
        try:
            self._queue.put_nowait((str(target), message))
            return True
        except Exception as e:
            logger.error(f"Could not enqueue notification for {target}: {e}")
            return False

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def deliver_one(self, target: str, message: str):
        for attempt in range(1, self.max_attempts + 1):
            try:
                await asyncio.wait_for(self.notifier.notify(target, message), timeout=self.timeout)
                self.delivered += 1
                return
            except RateLimitedError as e:
                if attempt == self.max_attempts:
                    self.failed += 1
                    logger.warning(f"Notification to {target} still rate limited after {attempt} attempts")
                    return
                # Sleep outside wait_for: retry_after may exceed the timeout
                logger.warning(f"Notification to {target} rate limited, retrying in {e.retry_after}s")
                await asyncio.sleep(e.retry_after)
            except asyncio.TimeoutError:
                self.failed += 1
                logger.warning(f"Notification to {target} timed out after {self.timeout}s")
                return
            except Exception as e:
                self.failed += 1
                logger.warning(f"Notification to {target} failed: {e}")
                return

    async def _worker(self):
        while True:
            target, message = await self._queue.get()
            try:
                await self.deliver_one(target, message)
            finally:
                self._queue.task_done()

    def start(self):
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._worker())
            logger.info("Notification worker started")

    async def stop(self, drain_timeout: float = 5.0):
        """Flush what is queued (bounded by drain_timeout) and stop the worker."""
        if self._task is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=drain_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Dropped {self._queue.qsize()} undelivered notifications on shutdown")
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        await self.notifier.close()
        logger.info("Notification worker stopped")

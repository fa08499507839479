"""Chat announcer for milestone and counter-update events.

Announcements are rendered from ``config.announcements.templates``, dropped
if the same text was queued for the channel within
``dedup_window_seconds``, and sent by a background task that allows at most
``max_per_minute`` messages in any sliding 60-second window.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Any, TYPE_CHECKING

from .templates import render

if TYPE_CHECKING:
    from .config import CountersConfig

_RATE_WINDOW_SECONDS = 60.0


class EventAnnouncer:
    """Queues templated announcements and sends them to chat."""

    def __init__(
        self,
        config: CountersConfig,
        client: object,
        logger: logging.Logger,
    ) -> None:
        self._config = config
        self._client = client
        self._logger = logger

        self._last_queued: dict[tuple[str, str], float] = {}
        self._send_times: deque[float] = deque()
        self._queue: asyncio.Queue[tuple[str, str]] = asyncio.Queue()
        self._sender: asyncio.Task | None = None

        self.sent_total: int = 0
        self.dropped_total: int = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        self._sender = asyncio.create_task(self._send_loop())

    async def stop(self) -> None:
        if self._sender:
            self._sender.cancel()
            try:
                await self._sender
            except asyncio.CancelledError:
                pass
            self._sender = None

    async def announce(self, channel: str, kind: str, variables: dict[str, Any]) -> bool:
        """Queue the ``kind`` announcement for *channel*.

        ``kind`` names both the enable flag on ``config.announcements`` and
        the template. Returns True if a message was queued.
        """
        settings = self._config.announcements
        if not getattr(settings, kind, False):
            return False
        template = getattr(settings.templates, kind, None)
        if not template:
            self._logger.debug("No %s template configured", kind)
            return False

        message = render(template, variables).strip()
        if not message or self._seen_recently(channel, message):
            return False
        await self._queue.put((channel, message))
        return True

    def _seen_recently(self, channel: str, message: str) -> bool:
        now = time.monotonic()
        window = self._config.announcements.dedup_window_seconds
        self._last_queued = {k: t for k, t in self._last_queued.items() if now - t < window}
        key = (channel, message)
        if key in self._last_queued:
            self._logger.debug("Duplicate announcement for %s: %s", channel, message[:60])
            return True
        self._last_queued[key] = now
        return False

    def _within_rate_limit(self) -> bool:
        now = time.monotonic()
        while self._send_times and now - self._send_times[0] >= _RATE_WINDOW_SECONDS:
            self._send_times.popleft()
        return len(self._send_times) < self._config.announcements.max_per_minute

    async def _send_loop(self) -> None:
        while True:
            channel, message = await self._queue.get()
            if not self._within_rate_limit():
                self.dropped_total += 1
                self._logger.warning("Announcement rate limit hit, dropping: %s", message[:60])
                continue

            delay = self._config.announcements.batch_delay_seconds
            if delay > 0:
                await asyncio.sleep(delay)
            try:
                await self._client.send_chat(channel, message)
            except Exception:
                self._logger.exception("Announcement to %s failed", channel)
                continue
            self._send_times.append(time.monotonic())
            self.sent_total += 1

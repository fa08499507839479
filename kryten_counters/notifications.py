"""Notification fan-out for counter updates and milestones.

The engine hands every event to one NotificationDispatcher, which delivers
it to each registered sink concurrently. A sink that raises is logged and
skipped; the other sinks and the already-saved counters are unaffected.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Protocol

from .models import BUILTIN_METRICS, CounterUpdateEvent, MilestoneEvent
from .utils import normalize_channel

if TYPE_CHECKING:
    from kryten import KrytenClient

    from .config import CountersConfig
    from .event_announcer import EventAnnouncer


class NotificationSink(Protocol):
    name: str

    async def on_milestone(self, event: MilestoneEvent) -> None: ...

    async def on_counter_update(self, event: CounterUpdateEvent) -> None: ...


def metric_label(metric: str) -> str:
    """``"deaths"`` → ``"Deaths"``, ``"enemy-kills"`` → ``"Enemy Kills"``."""
    return metric.replace("-", " ").replace("_", " ").title()


class NotificationDispatcher:
    """Delivers each event to every sink, isolating failures per sink."""

    def __init__(self, sinks: list[NotificationSink] | None = None, logger: logging.Logger | None = None) -> None:
        self._sinks: list[NotificationSink] = list(sinks or [])
        self._logger = logger or logging.getLogger("counters.notifications")
        self.failures_total: int = 0

    def add_sink(self, sink: NotificationSink) -> None:
        self._sinks.append(sink)

    @property
    def sinks(self) -> list[NotificationSink]:
        return list(self._sinks)

    async def dispatch_milestone(self, event: MilestoneEvent) -> None:
        await self._fan_out("milestone", event, [s.on_milestone(event) for s in self._sinks])

    async def dispatch_counter_update(self, event: CounterUpdateEvent) -> None:
        await self._fan_out("counter_update", event, [s.on_counter_update(event) for s in self._sinks])

    async def _fan_out(self, kind: str, event: Any, calls: list) -> None:
        if not calls:
            return
        results = await asyncio.gather(*calls, return_exceptions=True)
        for sink, result in zip(self._sinks, results):
            if isinstance(result, Exception):
                self.failures_total += 1
                self._logger.error(
                    "%s sink %s failed for %s",
                    kind, sink.name, event.broadcaster_id,
                    exc_info=result,
                )


# ═══════════════════════════════════════════════════════════════
#  Sinks
# ═══════════════════════════════════════════════════════════════

class ChatAnnouncementSink:
    """Announces milestones (and optionally counter changes) in chat."""

    name = "chat"

    def __init__(self, announcer: EventAnnouncer, config: CountersConfig) -> None:
        self._announcer = announcer
        self._config = config

    async def on_milestone(self, event: MilestoneEvent) -> None:
        await self._announcer.announce(
            event.broadcaster_id,
            "milestone",
            {
                "label": metric_label(event.metric),
                "metric": event.metric,
                "threshold": event.threshold,
                "value": event.new_value,
                "previous": event.previous_value,
                "broadcaster": event.broadcaster_id,
            },
        )

    async def on_counter_update(self, event: CounterUpdateEvent) -> None:
        if not self._config.announcements.counter_update:
            return
        for metric in event.changed_metrics:
            await self._announcer.announce(
                event.broadcaster_id,
                "counter_update",
                {
                    "label": metric_label(metric),
                    "metric": metric,
                    "value": event.values.get(metric, 0),
                    "broadcaster": event.broadcaster_id,
                },
            )


class OverlayStateSink:
    """Publishes the latest counter state to a NATS KV bucket for overlays.

    Keys are ``<broadcaster>`` for the full state and
    ``<broadcaster>.milestone`` for the most recent milestone.
    """

    name = "overlay"

    def __init__(self, client: KrytenClient, bucket: str) -> None:
        self._client = client
        self._bucket = bucket

    async def on_counter_update(self, event: CounterUpdateEvent) -> None:
        payload = {
            "broadcaster_id": event.broadcaster_id,
            "counters": {m: event.values.get(m, 0) for m in BUILTIN_METRICS},
            "custom": {k: v for k, v in event.values.items() if k not in BUILTIN_METRICS},
            "changed": list(event.changed_metrics),
            "updated_at": event.updated_at.isoformat(),
        }
        await self._client.kv_put(
            self._bucket, normalize_channel(event.broadcaster_id), payload, as_json=True,
        )

    async def on_milestone(self, event: MilestoneEvent) -> None:
        payload = {
            "metric": event.metric,
            "threshold": event.threshold,
            "new_value": event.new_value,
            "previous_value": event.previous_value,
        }
        await self._client.kv_put(
            self._bucket, f"{normalize_channel(event.broadcaster_id)}.milestone", payload, as_json=True,
        )


class KrytenChatSender:
    """Sends command replies to the broadcaster's channel."""

    def __init__(self, client: KrytenClient) -> None:
        self._client = client

    async def send(self, broadcaster_id: str, text: str) -> None:
        await self._client.send_chat(broadcaster_id, text)

"""Prometheus metrics server for kryten-counters.

Subclasses BaseMetricsServer from kryten-py to expose
counter-specific metrics and health details.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from kryten import BaseMetricsServer

if TYPE_CHECKING:
    from .main import CountersApp


class CountersMetricsServer(BaseMetricsServer):
    """Counter-specific Prometheus metrics endpoint."""

    def __init__(self, app: CountersApp, port: int = 28287) -> None:
        super().__init__(
            service_name="counters",
            port=port,
            client=app.client,
            logger=app.logger,
        )
        self._app = app

    async def _collect_custom_metrics(self) -> list[str]:
        """Collect counter-specific Prometheus metrics."""
        lines: list[str] = []
        engine = self._app.engine

        # ── Counters ─────────────────────────────────────────
        lines.append(f"counters_events_processed_total {self._app.events_processed}")
        lines.append(f"counters_admin_commands_processed_total {self._app.admin_commands_processed}")
        if engine is not None:
            lines.append(f"counters_messages_seen_total {engine.messages_seen}")
            lines.append(f"counters_commands_executed_total {engine.commands_executed}")
            lines.append(f"counters_mutations_total {engine.mutations_applied}")
            lines.append(f"counters_milestones_total {engine.milestones_dispatched}")
            lines.append(f"counters_replies_sent_total {engine.replies_sent}")
            for reason, count in sorted(engine.blocked.items()):
                lines.append(f'counters_commands_blocked_total{{reason="{reason}"}} {count}')
            lines.append(f"counters_cooldown_keys {engine.cooldowns.tracked_keys()}")

        if self._app.dispatcher is not None:
            lines.append(f"counters_notification_failures_total {self._app.dispatcher.failures_total}")
        if self._app.event_announcer is not None:
            lines.append(f"counters_announcements_sent_total {self._app.event_announcer.sent_total}")
            lines.append(f"counters_announcements_dropped_total {self._app.event_announcer.dropped_total}")

        # ── Per-channel gauges ───────────────────────────────
        for ch in self._app.config.channels:
            channel = ch.channel
            tag = f'channel="{channel}"'
            state = await self._app.db.get_counters(channel)
            for metric, value in sorted(state.values().items()):
                lines.append(f'counters_value{{{tag},counter="{metric}"}} {value}')

        return lines

    async def _get_health_details(self) -> dict:
        """Return health details for the /health endpoint."""
        return {
            "database": "connected" if self._app.db else "disconnected",
            "channels_configured": len(self._app.config.channels),
            "tracked_cooldowns": self._app.engine.cooldowns.tracked_keys() if self._app.engine else 0,
        }

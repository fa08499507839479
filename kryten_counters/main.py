"""Service orchestrator — CountersApp.

Follows the canonical kryten-py microservice pattern:
config → DB init → components → register handlers → connect → subscribe → metrics → run.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Any

from kryten import KrytenClient

from . import __version__
from .command_handler import CommandHandler
from .config import CountersConfig, load_config
from .database import CountersDatabase
from .engine import ChatCommandContext, ChatCommandEngine
from .event_announcer import EventAnnouncer
from .metrics_server import CountersMetricsServer
from .notifications import (
    ChatAnnouncementSink,
    KrytenChatSender,
    NotificationDispatcher,
    OverlayStateSink,
)


def _aware_timestamp(value: Any) -> datetime | None:
    """Event timestamps are only trusted when timezone-aware."""
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value
    return None


class CountersApp:
    """Top-level application orchestrator."""

    def __init__(self, config_path: str) -> None:
        self.config_path = Path(config_path)
        self.logger = logging.getLogger("counters")

        # Components (initialized in start())
        self.config: CountersConfig | None = None
        self.client: KrytenClient | None = None
        self.db: CountersDatabase | None = None
        self.engine: ChatCommandEngine | None = None
        self.dispatcher: NotificationDispatcher | None = None
        self.event_announcer: EventAnnouncer | None = None
        self.command_handler: CommandHandler | None = None
        self.metrics_server: CountersMetricsServer | None = None

        # State
        self._running = False
        self._start_time: float | None = None
        self._prune_task: asyncio.Task | None = None
        self._ignored_users: set[str] = set()

        # Counters (for metrics)
        self.events_processed: int = 0
        self.admin_commands_processed: int = 0

    @property
    def uptime_seconds(self) -> float:
        if self._start_time is None:
            return 0.0
        return time.time() - self._start_time

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    async def setup(self, client: Any | None = None) -> None:
        """Load config, open the database and wire components.

        *client* defaults to a KrytenClient built from the loaded config.
        """
        self.config = load_config(str(self.config_path))
        self.logger.info("Config loaded: %d channel(s)", len(self.config.channels))

        self.db = CountersDatabase(self.config.database.path, logging.getLogger("counters.database"))
        await self.db.initialize()
        self.logger.info("Database initialized: %s", self.config.database.path)

        self.client = client if client is not None else KrytenClient(self.config)
        self.event_announcer = EventAnnouncer(
            config=self.config,
            client=self.client,
            logger=logging.getLogger("counters.announcer"),
        )

        self.dispatcher = NotificationDispatcher(logger=logging.getLogger("counters.notifications"))
        self.dispatcher.add_sink(ChatAnnouncementSink(self.event_announcer, self.config))
        if self.config.overlay.enabled:
            self.dispatcher.add_sink(OverlayStateSink(self.client, self.config.overlay.kv_bucket))

        self.engine = ChatCommandEngine(
            config=self.config,
            counters=self.db,
            broadcaster_config=self.db,
            library=self.db,
            dispatcher=self.dispatcher,
            chat_sender=KrytenChatSender(self.client),
            logger=logging.getLogger("counters.engine"),
        )

        self._ignored_users = {u.lower() for u in (self.config.ignored_users or [])}
        self._ignored_users.add(self.config.bot.username.lower())

        @self.client.on("chatmsg")
        async def handle_chatmsg(event):
            try:
                await self.handle_chat_event(event)
            except Exception:
                self.logger.exception("chatmsg handler error for %s", getattr(event, "username", "?"))

    def role_flags(self, rank: int) -> tuple[bool, bool, bool]:
        """Chat rank → (is_subscriber, is_moderator, is_broadcaster)."""
        roles = self.config.roles
        return (
            rank >= roles.subscriber_level,
            rank >= roles.moderator_level,
            rank >= roles.broadcaster_level,
        )

    async def handle_chat_event(self, event: Any) -> None:
        self.events_processed += 1
        username = event.username
        if username.lower() in self._ignored_users:
            return

        is_subscriber, is_moderator, is_broadcaster = self.role_flags(getattr(event, "rank", 0) or 0)
        outcome = await self.engine.handle_message(ChatCommandContext(
            broadcaster_id=event.channel,
            username=username,
            message=event.message,
            is_moderator=is_moderator,
            is_broadcaster=is_broadcaster,
            is_subscriber=is_subscriber,
            timestamp=_aware_timestamp(getattr(event, "timestamp", None)),
        ))
        if outcome.executed:
            self.logger.debug("%s ran %s in %s", username, outcome.command, event.channel)

    # ------------------------------------------------------------------
    # Cooldown pruning
    # ------------------------------------------------------------------

    async def _prune_loop(self) -> None:
        """Periodically drop idle cooldown entries."""
        try:
            while True:
                await asyncio.sleep(self.config.cooldowns.prune_interval_seconds)
                try:
                    self.engine.prune_cooldowns()
                except Exception:
                    self.logger.exception("Cooldown prune failed")
        except asyncio.CancelledError:
            pass

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the counters service — canonical kryten-py sequence."""
        self.logger.info("Starting kryten-counters...")
        self._start_time = time.time()

        # 1-4. Config, database, components, handlers
        await self.setup()

        # 5. Connect to NATS
        await self.client.connect()
        self.logger.info("Connected to NATS")

        if self.config.overlay.enabled:
            await self.client.get_or_create_kv_store(
                self.config.overlay.kv_bucket,
                description="kryten-counters overlay state",
            )

        # 6. Subscribe to robot startup for re-initialization
        await self.client.subscribe(
            "kryten.lifecycle.robot.startup",
            self._handle_robot_startup,
        )

        # 7. Start metrics server
        metrics_port = self.config.metrics.port if self.config.metrics else 28287
        self.metrics_server = CountersMetricsServer(self, port=metrics_port)
        await self.metrics_server.start()
        self.logger.info("Metrics server started on port %d", metrics_port)

        # 8. Start command handler
        self.command_handler = CommandHandler(self, self.client, logging.getLogger("counters.command"))
        await self.command_handler.connect()
        self.logger.info("Command handler ready on %s", CommandHandler.SUBJECT)

        # 9. Background tasks
        await self.event_announcer.start()
        self._prune_task = asyncio.create_task(self._prune_loop())

        # 10. Mark running
        self._running = True
        self.logger.info("kryten-counters started successfully (v%s)", __version__)

        # 11. Block on client event loop
        await self.client.run()

    async def stop(self) -> None:
        """Gracefully shut down all components in reverse order."""
        if not self._running:
            return
        self.logger.info("Shutting down kryten-counters...")
        self._running = False

        if self._prune_task:
            self._prune_task.cancel()
            try:
                await self._prune_task
            except asyncio.CancelledError:
                pass
        if self.event_announcer:
            await self.event_announcer.stop()
        if self.metrics_server:
            await self.metrics_server.stop()
        if self.client:
            await self.client.stop()

        self.logger.info("kryten-counters stopped.")

    async def _handle_robot_startup(self, msg) -> None:
        """Handle kryten-robot restart — re-announce ourselves."""
        self.logger.info("Robot startup detected — re-publishing our startup event")
        if self.client and self.client.lifecycle:
            try:
                await self.client.lifecycle.publish_startup()
                self.logger.info("Re-published counters startup event")
            except Exception:
                self.logger.exception("Failed to re-publish startup event")

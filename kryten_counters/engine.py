"""Chat command engine: the per-message pipeline.

Every chat message runs through the same steps and stops at the first one
that does not pass:

    prefix → resolve → enabled → permission → cooldown → mutate or reply

Mutations persist the new state, publish a counter-update event and one
milestone event per crossed threshold. Display commands render their
response template and send it to chat. Mutating commands are silent.

``handle_message`` never raises; the returned ``CommandOutcome`` says where
processing stopped.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Protocol

from . import permissions
from .cooldowns import CooldownTracker
from .errors import InvalidCommandConfig
from .milestones import crossed
from .models import (
    BUILTIN_METRICS,
    BroadcasterSettings,
    CommandAction,
    CommandDefinition,
    CounterState,
    CounterUpdateEvent,
    CustomCounterDefinition,
    MilestoneEvent,
    parse_targets,
)
from .mutator import CounterMutator
from .resolver import BUILTIN_COMMANDS, CommandResolver, Resolution, build_alias_table
from .templates import render
from .utils import now_utc

if TYPE_CHECKING:
    from .config import CountersConfig


# ═══════════════════════════════════════════════════════════════
#  Collaborator contracts
# ═══════════════════════════════════════════════════════════════

class CounterRepository(Protocol):
    async def get_counters(self, broadcaster_id: str) -> CounterState: ...

    async def save_counters(self, state: CounterState) -> None: ...


class BroadcasterConfigRepository(Protocol):
    async def get_command_overrides(self, broadcaster_id: str) -> Mapping[str, CommandDefinition]: ...

    async def get_custom_counter_config(
        self, broadcaster_id: str,
    ) -> Mapping[str, CustomCounterDefinition]: ...

    async def get_settings_data(self, broadcaster_id: str) -> dict[str, Any]: ...


class CounterLibraryRepository(Protocol):
    async def get_library_items(
        self, counter_ids: Iterable[str] | None = None,
    ) -> list[CustomCounterDefinition]: ...


class EventSink(Protocol):
    async def dispatch_milestone(self, event: MilestoneEvent) -> None: ...

    async def dispatch_counter_update(self, event: CounterUpdateEvent) -> None: ...


class OutboundChatSender(Protocol):
    async def send(self, broadcaster_id: str, text: str) -> None: ...


# ═══════════════════════════════════════════════════════════════
#  Message context and outcome
# ═══════════════════════════════════════════════════════════════

@dataclass
class ChatCommandContext:
    broadcaster_id: str
    username: str
    message: str
    is_moderator: bool = False
    is_broadcaster: bool = False
    is_subscriber: bool = False
    timestamp: datetime | None = None


@dataclass
class CommandOutcome:
    """What happened to one chat message."""

    blocked_by: str | None = None  # None when the command ran to completion
    command: str | None = None
    amount: int | None = None
    changed: bool = False
    milestones: list[MilestoneEvent] = field(default_factory=list)
    reply: str | None = None

    @property
    def executed(self) -> bool:
        return self.blocked_by is None


class ChatCommandEngine:
    """Runs chat messages through resolution, gating and mutation."""

    def __init__(
        self,
        config: CountersConfig,
        counters: CounterRepository,
        broadcaster_config: BroadcasterConfigRepository,
        library: CounterLibraryRepository | None,
        dispatcher: EventSink | None,
        chat_sender: OutboundChatSender | None,
        logger: logging.Logger | None = None,
        cooldowns: CooldownTracker | None = None,
    ) -> None:
        self._config = config
        self._counters = counters
        self._broadcaster_config = broadcaster_config
        self._library = library
        self._dispatcher = dispatcher
        self._chat_sender = chat_sender
        self._logger = logger or logging.getLogger("counters.engine")

        self.cooldowns = cooldowns or CooldownTracker(
            ttl_seconds=config.cooldowns.ttl_seconds,
            max_keys_per_broadcaster=config.cooldowns.max_keys_per_broadcaster,
            logger=self._logger,
        )
        self._resolver = CommandResolver(
            display_cooldown_seconds=config.commands.display_cooldown_seconds,
            counter_cooldown_seconds=config.commands.counter_cooldown_seconds,
            logger=self._logger,
        )
        self._mutator = CounterMutator(self._logger)
        # Serializes load, apply and save of one broadcaster's counters
        self._state_locks: dict[str, asyncio.Lock] = {}

        # Metrics
        self.messages_seen: int = 0
        self.commands_executed: int = 0
        self.mutations_applied: int = 0
        self.milestones_dispatched: int = 0
        self.replies_sent: int = 0
        self.blocked: Counter[str] = Counter()

    # ══════════════════════════════════════════════════════════
    #  Entry point
    # ══════════════════════════════════════════════════════════

    async def handle_message(self, ctx: ChatCommandContext) -> CommandOutcome:
        """Process one chat message. Never raises."""
        self.messages_seen += 1
        try:
            outcome = await self._process(ctx)
        except Exception:
            self._logger.exception(
                "Command processing failed for %s in %s", ctx.username, ctx.broadcaster_id,
            )
            outcome = CommandOutcome(blocked_by="error")

        if outcome.blocked_by is None:
            self.commands_executed += 1
        elif outcome.blocked_by not in ("not_command", "no_match"):
            self.blocked[outcome.blocked_by] += 1
        return outcome

    async def _process(self, ctx: ChatCommandContext) -> CommandOutcome:
        text = (ctx.message or "").strip()
        if not text.startswith(self._config.commands.prefix):
            return CommandOutcome(blocked_by="not_command")

        broadcaster_id = ctx.broadcaster_id
        overrides = await self._broadcaster_config.get_command_overrides(broadcaster_id)
        custom_counters = await self._broadcaster_config.get_custom_counter_config(broadcaster_id)
        aliases = await self._load_aliases(custom_counters)

        resolution = self._resolver.resolve(
            text, BUILTIN_COMMANDS, overrides, custom_counters, aliases,
        )
        if resolution is None:
            self._logger.debug("No command matched %r in %s", text[:40], broadcaster_id)
            return CommandOutcome(blocked_by="no_match")

        definition = resolution.command
        outcome = CommandOutcome(command=definition.name, amount=resolution.amount)

        if not definition.enabled:
            self._logger.debug("Command %s disabled for %s", definition.name, broadcaster_id)
            outcome.blocked_by = "disabled"
            return outcome

        try:
            allowed = permissions.evaluate(
                definition.permission, ctx.is_moderator, ctx.is_broadcaster, ctx.is_subscriber,
            )
        except InvalidCommandConfig:
            self._logger.warning("Command %s has an unusable permission tier", definition.name)
            allowed = False
        if not allowed:
            self._logger.debug(
                "%s lacks %s permission for %s", ctx.username, definition.permission.value, definition.name,
            )
            outcome.blocked_by = "permission"
            return outcome

        now = ctx.timestamp or now_utc()
        if not self.cooldowns.check_and_record(
            broadcaster_id, resolution.cooldown_key, now, definition.cooldown_seconds,
        ):
            self._logger.debug("Command %s on cooldown for %s", resolution.cooldown_key, broadcaster_id)
            outcome.blocked_by = "cooldown"
            return outcome

        settings = await self._load_settings(broadcaster_id)

        if definition.mutates:
            return await self._run_mutation(ctx, resolution, settings, custom_counters, now, outcome)
        return await self._run_display(ctx, definition, outcome)

    # ══════════════════════════════════════════════════════════
    #  Mutation
    # ══════════════════════════════════════════════════════════

    async def _run_mutation(
        self,
        ctx: ChatCommandContext,
        resolution: Resolution,
        settings: BroadcasterSettings,
        custom_counters: Mapping[str, CustomCounterDefinition],
        now: datetime,
        outcome: CommandOutcome,
    ) -> CommandOutcome:
        definition = resolution.command
        amount = max(1, min(resolution.amount or 1, settings.max_increment))
        outcome.amount = amount

        async with self._state_lock(ctx.broadcaster_id):
            state = await self._counters.get_counters(ctx.broadcaster_id)
            before = state.values()
            changed = self._mutator.apply(
                definition.action, definition.targets, amount, state, settings.features,
            )
            outcome.changed = changed
            if not changed:
                self._logger.debug("Command %s changed nothing for %s", definition.name, ctx.broadcaster_id)
                return outcome

            state.last_updated = now
            try:
                await self._counters.save_counters(state)
            except Exception:
                self._logger.exception("Failed to persist counters for %s", ctx.broadcaster_id)
                outcome.blocked_by = "persistence"
                outcome.changed = False
                return outcome
            after = state.values()

        changed_metrics = tuple(m for m in after if after[m] != before.get(m, 0))
        self.mutations_applied += 1
        self._logger.info(
            "%s ran %s x%d in %s: %s",
            ctx.username, definition.name, amount, ctx.broadcaster_id,
            ", ".join(f"{m}={after[m]}" for m in changed_metrics),
        )

        await self._dispatch_update(CounterUpdateEvent(
            broadcaster_id=ctx.broadcaster_id,
            values=after,
            changed_metrics=changed_metrics,
            updated_at=now,
        ))

        for metric in changed_metrics:
            previous = before.get(metric, 0)
            current = after[metric]
            if current <= previous:
                continue
            for threshold in crossed(self._thresholds_for(metric, settings, custom_counters), previous, current):
                event = MilestoneEvent(
                    broadcaster_id=ctx.broadcaster_id,
                    metric=metric,
                    threshold=threshold,
                    new_value=current,
                    previous_value=previous,
                )
                outcome.milestones.append(event)
                await self._dispatch_milestone(event)
        return outcome

    @staticmethod
    def _thresholds_for(
        metric: str,
        settings: BroadcasterSettings,
        custom_counters: Mapping[str, CustomCounterDefinition],
    ) -> list[int]:
        if metric in BUILTIN_METRICS:
            if not settings.notifications_enabled(metric):
                return []
            return settings.thresholds_for(metric)
        counter = custom_counters.get(metric)
        return list(counter.milestones) if counter else []

    async def _dispatch_update(self, event: CounterUpdateEvent) -> None:
        if self._dispatcher is None:
            return
        try:
            await self._dispatcher.dispatch_counter_update(event)
        except Exception:
            self._logger.exception("Counter update dispatch failed for %s", event.broadcaster_id)

    async def _dispatch_milestone(self, event: MilestoneEvent) -> None:
        self._logger.info(
            "Milestone %s=%d reached in %s (now %d)",
            event.metric, event.threshold, event.broadcaster_id, event.new_value,
        )
        self.milestones_dispatched += 1
        if self._dispatcher is None:
            return
        try:
            await self._dispatcher.dispatch_milestone(event)
        except Exception:
            self._logger.exception(
                "Milestone dispatch failed for %s %s=%d",
                event.broadcaster_id, event.metric, event.threshold,
            )

    # ══════════════════════════════════════════════════════════
    #  Display
    # ══════════════════════════════════════════════════════════

    async def _run_display(
        self,
        ctx: ChatCommandContext,
        definition: CommandDefinition,
        outcome: CommandOutcome,
    ) -> CommandOutcome:
        if not definition.response:
            return outcome

        state = await self._counters.get_counters(ctx.broadcaster_id)
        tokens: dict[str, Any] = dict(state.values())
        tokens["user"] = ctx.username
        tokens["broadcaster"] = ctx.broadcaster_id
        reply = render(definition.response, tokens)
        outcome.reply = reply

        if self._chat_sender is None or not reply:
            return outcome
        try:
            await self._chat_sender.send(ctx.broadcaster_id, reply)
            self.replies_sent += 1
        except Exception:
            self._logger.exception("Reply to %s failed in %s", definition.name, ctx.broadcaster_id)
        return outcome

    # ══════════════════════════════════════════════════════════
    #  Per-broadcaster lookups
    # ══════════════════════════════════════════════════════════

    def _state_lock(self, broadcaster_id: str) -> asyncio.Lock:
        lock = self._state_locks.get(broadcaster_id)
        if lock is None:
            lock = self._state_locks[broadcaster_id] = asyncio.Lock()
        return lock

    async def _load_aliases(
        self, custom_counters: Mapping[str, CustomCounterDefinition],
    ) -> dict[str, str]:
        if not custom_counters:
            return {}
        library: list[CustomCounterDefinition] = []
        if self._library is not None:
            try:
                library = await self._library.get_library_items(custom_counters.keys())
            except Exception:
                self._logger.exception("Counter library lookup failed")
        return build_alias_table(custom_counters, library)

    async def _load_settings(self, broadcaster_id: str) -> BroadcasterSettings:
        defaults = self._config.default_broadcaster_settings()
        data = await self._broadcaster_config.get_settings_data(broadcaster_id)
        if not data:
            return defaults
        try:
            settings = defaults.merged(data)
        except (TypeError, ValueError) as exc:
            self._logger.warning("Ignoring invalid settings for %s: %s", broadcaster_id, exc)
            return defaults
        settings.max_increment = self._config.commands.clamp_max_increment(settings.max_increment)
        return settings

    async def get_settings(self, broadcaster_id: str) -> BroadcasterSettings:
        """Effective settings: stored values over config defaults."""
        return await self._load_settings(broadcaster_id)

    async def reset_counters(self, broadcaster_id: str, targets: Iterable[str] = ()) -> CounterState:
        """Admin reset. No targets zeroes deaths, swears and screams only."""
        settings = await self._load_settings(broadcaster_id)
        async with self._state_lock(broadcaster_id):
            state = await self._counters.get_counters(broadcaster_id)
            before = state.values()
            if not self._mutator.apply(
                CommandAction.RESET, parse_targets(list(targets)), 0, state, settings.features,
            ):
                return state

            now = now_utc()
            state.last_updated = now
            await self._counters.save_counters(state)
            after = state.values()
        self._logger.info("Counters reset in %s", broadcaster_id)
        await self._dispatch_update(CounterUpdateEvent(
            broadcaster_id=broadcaster_id,
            values=after,
            changed_metrics=tuple(m for m in after if after[m] != before.get(m, 0)),
            updated_at=now,
        ))
        return state

    def prune_cooldowns(self, now: datetime | None = None) -> int:
        removed = self.cooldowns.prune(now or now_utc())
        if removed:
            self._logger.debug("Pruned %d idle cooldown entries", removed)
        return removed

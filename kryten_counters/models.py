"""Domain data types: command definitions, counter state and events."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .errors import InvalidCommandConfig
from .permissions import PermissionTier
from .utils import (
    is_valid_counter_id,
    normalize_base_command,
    normalize_base_command_or_default,
    parse_timestamp,
)

BUILTIN_METRICS: tuple[str, ...] = ("deaths", "swears", "screams", "bits")
CORE_RESET_METRICS: tuple[str, ...] = ("deaths", "swears", "screams")


# ═══════════════════════════════════════════════════════════════
#  Commands
# ═══════════════════════════════════════════════════════════════

class CommandAction(str, Enum):
    NONE = "none"
    INCREMENT = "increment"
    DECREMENT = "decrement"
    RESET = "reset"

    @classmethod
    def parse(cls, value: str | CommandAction | None) -> CommandAction:
        if isinstance(value, CommandAction):
            return value
        if value is None or not str(value).strip():
            return cls.NONE
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidCommandConfig(f"Unknown command action: {value!r}") from None


def parse_targets(raw: str | list[str] | tuple[str, ...] | None) -> tuple[str, ...]:
    """Comma-separated (or list) counter names → ordered, lowercased, de-duplicated tuple."""
    if raw is None:
        return ()
    items = raw.split(",") if isinstance(raw, str) else list(raw)
    seen: list[str] = []
    for item in items:
        name = str(item).strip().lower()
        if name and name not in seen:
            seen.append(name)
    return tuple(seen)


@dataclass(frozen=True)
class CommandDefinition:
    """A resolved chat command.

    ``name`` is the canonical key: every alias and amount-suffixed form of
    the command shares it, and it is the command's cooldown key.
    """

    name: str
    response: str | None = None
    action: CommandAction = CommandAction.NONE
    targets: tuple[str, ...] = ()
    permission: PermissionTier = PermissionTier.EVERYONE
    cooldown_seconds: int = 0
    enabled: bool = True

    @property
    def mutates(self) -> bool:
        return self.action is not CommandAction.NONE

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> CommandDefinition:
        """Build from a stored override record.

        Raises:
            InvalidCommandConfig: unknown tier/action, bad cooldown, or a
                mutation command without targets (other than reset).
        """
        key = (name or "").strip().lower()
        if not key.startswith("!") or len(key) < 2:
            raise InvalidCommandConfig(f"Command {name!r} must start with '!'")

        action = CommandAction.parse(data.get("action"))
        targets = parse_targets(data.get("targets", data.get("counter")))
        if action in (CommandAction.INCREMENT, CommandAction.DECREMENT) and not targets:
            raise InvalidCommandConfig(f"Command {key} has action {action.value} but no counter targets")

        cooldown = data.get("cooldown", data.get("cooldown_seconds", 0)) or 0
        if isinstance(cooldown, bool) or not isinstance(cooldown, int) or cooldown < 0:
            raise InvalidCommandConfig(f"Command {key} has invalid cooldown: {cooldown!r}")

        response = data.get("response")
        return cls(
            name=key,
            response=str(response) if response is not None else None,
            action=action,
            targets=targets,
            permission=PermissionTier.parse(data.get("permission")),
            cooldown_seconds=cooldown,
            enabled=bool(data.get("enabled", True)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "response": self.response,
            "action": self.action.value,
            "targets": list(self.targets),
            "permission": self.permission.value,
            "cooldown": self.cooldown_seconds,
            "enabled": self.enabled,
        }


# ═══════════════════════════════════════════════════════════════
#  Custom counters
# ═══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class CustomCounterDefinition:
    """A broadcaster-defined counter, or a counter library entry."""

    counter_id: str
    display_name: str = ""
    icon: str = ""
    increment_by: int = 1
    decrement_by: int = 1
    milestones: tuple[int, ...] = ()
    long_command: str | None = None
    alias_command: str | None = None

    @property
    def label(self) -> str:
        return self.display_name or self.counter_id

    def triggers(self) -> list[str]:
        """Normalized ``!base`` chat triggers (long form first, then alias)."""
        primary = normalize_base_command_or_default(self.long_command, f"!{self.counter_id}")
        result = [primary]
        alias = normalize_base_command(self.alias_command)
        if alias and alias != "!" and alias not in result:
            result.append(alias)
        return result

    @classmethod
    def from_dict(cls, counter_id: str, data: dict[str, Any]) -> CustomCounterDefinition:
        cid = (counter_id or "").strip().lower()
        if not is_valid_counter_id(cid):
            raise InvalidCommandConfig(f"Invalid custom counter id: {counter_id!r}")
        try:
            milestones = tuple(sorted({int(m) for m in data.get("milestones") or []}))
            increment_by = max(1, int(data.get("increment_by", 1) or 1))
            decrement_by = max(1, int(data.get("decrement_by", 1) or 1))
        except (TypeError, ValueError) as exc:
            raise InvalidCommandConfig(f"Invalid custom counter {cid}: {exc}") from exc
        return cls(
            counter_id=cid,
            display_name=str(data.get("name") or data.get("display_name") or ""),
            icon=str(data.get("icon") or ""),
            increment_by=increment_by,
            decrement_by=decrement_by,
            milestones=milestones,
            long_command=data.get("long_command") or None,
            alias_command=data.get("alias_command") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.display_name,
            "icon": self.icon,
            "increment_by": self.increment_by,
            "decrement_by": self.decrement_by,
            "milestones": list(self.milestones),
            "long_command": self.long_command,
            "alias_command": self.alias_command,
        }


# ═══════════════════════════════════════════════════════════════
#  Counter state
# ═══════════════════════════════════════════════════════════════

@dataclass
class CounterState:
    """Per-broadcaster counter values. No value is ever negative."""

    broadcaster_id: str
    deaths: int = 0
    swears: int = 0
    screams: int = 0
    bits: int = 0
    custom: dict[str, int] = field(default_factory=dict)
    last_updated: datetime | None = None

    def get(self, metric: str) -> int:
        metric = metric.lower()
        if metric in BUILTIN_METRICS:
            return getattr(self, metric)
        return self.custom.get(metric, 0)

    def set(self, metric: str, value: int) -> None:
        metric = metric.lower()
        value = max(0, int(value))
        if metric in BUILTIN_METRICS:
            setattr(self, metric, value)
        else:
            self.custom[metric] = value

    def values(self) -> dict[str, int]:
        """Built-in and custom values in one mapping (custom ids never shadow built-ins)."""
        result = dict(self.custom)
        for metric in BUILTIN_METRICS:
            result[metric] = getattr(self, metric)
        return result

    def to_dict(self) -> dict[str, Any]:
        return {
            "broadcaster_id": self.broadcaster_id,
            "deaths": self.deaths,
            "swears": self.swears,
            "screams": self.screams,
            "bits": self.bits,
            "custom": dict(self.custom),
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CounterState:
        custom = {
            str(k).lower(): max(0, int(v))
            for k, v in (data.get("custom") or {}).items()
        }
        last = data.get("last_updated")
        return cls(
            broadcaster_id=data["broadcaster_id"],
            deaths=max(0, int(data.get("deaths", 0) or 0)),
            swears=max(0, int(data.get("swears", 0) or 0)),
            screams=max(0, int(data.get("screams", 0) or 0)),
            bits=max(0, int(data.get("bits", 0) or 0)),
            custom=custom,
            last_updated=last if isinstance(last, datetime) else parse_timestamp(last),
        )


# ═══════════════════════════════════════════════════════════════
#  Per-broadcaster settings
# ═══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class FeatureFlags:
    screams: bool = True


@dataclass
class BroadcasterSettings:
    """Per-broadcaster tunables, defaulted from config."""

    max_increment: int = 10
    features: FeatureFlags = field(default_factory=FeatureFlags)
    milestone_thresholds: dict[str, list[int]] = field(default_factory=dict)
    milestone_notifications: dict[str, bool] = field(default_factory=dict)

    def thresholds_for(self, metric: str) -> list[int]:
        return self.milestone_thresholds.get(metric, [])

    def notifications_enabled(self, metric: str) -> bool:
        return self.milestone_notifications.get(metric, False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_increment": self.max_increment,
            "screams_enabled": self.features.screams,
            "milestone_thresholds": {k: list(v) for k, v in self.milestone_thresholds.items()},
            "milestone_notifications": dict(self.milestone_notifications),
        }

    def merged(self, data: dict[str, Any]) -> BroadcasterSettings:
        """Return a copy of these settings with stored *data* layered on top."""
        thresholds = {k: list(v) for k, v in self.milestone_thresholds.items()}
        for metric, values in (data.get("milestone_thresholds") or {}).items():
            thresholds[str(metric).lower()] = sorted({int(v) for v in values})
        notifications = dict(self.milestone_notifications)
        for metric, enabled in (data.get("milestone_notifications") or {}).items():
            notifications[str(metric).lower()] = bool(enabled)
        screams = data.get("screams_enabled")
        return BroadcasterSettings(
            max_increment=int(data.get("max_increment", self.max_increment)),
            features=FeatureFlags(screams=self.features.screams if screams is None else bool(screams)),
            milestone_thresholds=thresholds,
            milestone_notifications=notifications,
        )


# ═══════════════════════════════════════════════════════════════
#  Events emitted to the notification layer
# ═══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class MilestoneEvent:
    broadcaster_id: str
    metric: str
    threshold: int
    new_value: int
    previous_value: int


@dataclass(frozen=True)
class CounterUpdateEvent:
    broadcaster_id: str
    values: dict[str, int]
    changed_metrics: tuple[str, ...]
    updated_at: datetime

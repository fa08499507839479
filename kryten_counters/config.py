"""Configuration system for kryten-counters.

Pydantic models with sensible defaults. Per-broadcaster settings stored in
the database are layered on top of the ``features``, ``milestones`` and
``commands`` sections at runtime.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from kryten import KrytenConfig
from pydantic import BaseModel, Field, field_validator

from .models import BUILTIN_METRICS, BroadcasterSettings, FeatureFlags


# ═══════════════════════════════════════════════════════════════
#  Core
# ═══════════════════════════════════════════════════════════════

class DatabaseConfig(BaseModel):
    path: str = "counters.db"


class BotConfig(BaseModel):
    username: str = "CounterBot"


class RolesConfig(BaseModel):
    """Chat rank → role flag thresholds."""
    subscriber_level: int = 1
    moderator_level: int = 2
    broadcaster_level: int = 4


# ═══════════════════════════════════════════════════════════════
#  Commands & cooldowns
# ═══════════════════════════════════════════════════════════════

class CommandsConfig(BaseModel):
    prefix: str = "!"
    default_max_increment: int = 10
    max_increment_ceiling: int = 10
    display_cooldown_seconds: int = 5
    counter_cooldown_seconds: int = 1

    def clamp_max_increment(self, value: int) -> int:
        return max(1, min(int(value), self.max_increment_ceiling))


class CooldownsConfig(BaseModel):
    ttl_seconds: int = Field(default=3600, description="Idle entries older than this are evicted")
    max_keys_per_broadcaster: int = 256
    prune_interval_seconds: int = 300


# ═══════════════════════════════════════════════════════════════
#  Features & milestones
# ═══════════════════════════════════════════════════════════════

class FeaturesConfig(BaseModel):
    screams: bool = True


class MilestonesConfig(BaseModel):
    thresholds: dict[str, list[int]] = Field(
        default={
            "deaths": [10, 25, 50, 100, 250, 500, 1000],
            "swears": [10, 25, 50, 100, 250, 500, 1000],
            "screams": [10, 25, 50, 100, 250, 500],
            "bits": [100, 500, 1000, 5000, 10000],
        },
        description="Metric → ascending threshold list",
    )
    notifications: dict[str, bool] = Field(
        default={"deaths": True, "swears": True, "screams": True, "bits": False},
    )

    @field_validator("thresholds")
    @classmethod
    def _sort_thresholds(cls, v: dict[str, list[int]]) -> dict[str, list[int]]:
        return {k.lower(): sorted(set(vals)) for k, vals in v.items()}


# ═══════════════════════════════════════════════════════════════
#  Announcements & overlay
# ═══════════════════════════════════════════════════════════════

class AnnouncementTemplatesConfig(BaseModel):
    milestone: str = "🎯 {{label}} milestone reached: {{threshold}}!"
    counter_update: str = "{{label}}: {{value}}"


class AnnouncementsConfig(BaseModel):
    milestone: bool = True
    counter_update: bool = False
    max_per_minute: int = 10
    batch_delay_seconds: float = 2.0
    dedup_window_seconds: float = 30.0
    templates: AnnouncementTemplatesConfig = Field(default_factory=AnnouncementTemplatesConfig)


class OverlayConfig(BaseModel):
    enabled: bool = True
    kv_bucket: str = "kryten_counters_state"


# ═══════════════════════════════════════════════════════════════
#  Top-Level Config
# ═══════════════════════════════════════════════════════════════

class CountersConfig(KrytenConfig):
    """Full service config — extends KrytenConfig with counter sub-models."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    bot: BotConfig = Field(default_factory=BotConfig)
    ignored_users: list[str] = Field(default_factory=list)
    roles: RolesConfig = Field(default_factory=RolesConfig)
    commands: CommandsConfig = Field(default_factory=CommandsConfig)
    cooldowns: CooldownsConfig = Field(default_factory=CooldownsConfig)
    features: FeaturesConfig = Field(default_factory=FeaturesConfig)
    milestones: MilestonesConfig = Field(default_factory=MilestonesConfig)
    announcements: AnnouncementsConfig = Field(default_factory=AnnouncementsConfig)
    overlay: OverlayConfig = Field(default_factory=OverlayConfig)
    # NOTE: metrics is inherited from KrytenConfig (kryten.config.MetricsConfig)

    def default_broadcaster_settings(self) -> BroadcasterSettings:
        """Settings for a broadcaster with nothing stored yet."""
        return BroadcasterSettings(
            max_increment=self.commands.clamp_max_increment(self.commands.default_max_increment),
            features=FeatureFlags(screams=self.features.screams),
            milestone_thresholds={
                metric: list(self.milestones.thresholds.get(metric, []))
                for metric in BUILTIN_METRICS
            },
            milestone_notifications={
                metric: self.milestones.notifications.get(metric, False)
                for metric in BUILTIN_METRICS
            },
        )


# ═══════════════════════════════════════════════════════════════
#  Config Loading
# ═══════════════════════════════════════════════════════════════

def _expand_env_vars(obj: Any) -> Any:
    """Recursively expand ${VAR} and ${VAR:-default} in string values."""
    if isinstance(obj, str):
        return re.sub(
            r"\$\{([^}:]+)(?::-(.*?))?\}",
            lambda m: os.environ.get(m.group(1), m.group(2) or ""),
            obj,
        )
    elif isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(v) for v in obj]
    return obj


def load_config(config_path: str) -> CountersConfig:
    """Load and validate YAML config file into CountersConfig."""
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict):
        raise ValueError("Config file must contain a YAML mapping at the top level.")

    raw = _expand_env_vars(raw)
    return CountersConfig(**raw)

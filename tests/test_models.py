"""Tests for kryten_counters.models and kryten_counters.utils."""

from __future__ import annotations

import pytest

from kryten_counters.errors import InvalidCommandConfig
from kryten_counters.models import (
    BroadcasterSettings,
    CommandAction,
    CommandDefinition,
    CounterState,
    CustomCounterDefinition,
    FeatureFlags,
    parse_targets,
)
from kryten_counters.permissions import PermissionTier
from kryten_counters.utils import (
    is_valid_counter_id,
    normalize_base_command,
    normalize_base_command_or_default,
    normalize_channel,
    parse_timestamp,
)


class TestCommandDefinition:
    """CommandDefinition.from_dict() validation."""

    def test_full_record(self):
        cmd = CommandDefinition.from_dict("!Oops+", {
            "action": "Increment",
            "counter": "oops, Deaths ,oops",
            "permission": "subscriber",
            "cooldown": 3,
            "enabled": False,
        })
        assert cmd.name == "!oops+"
        assert cmd.action is CommandAction.INCREMENT
        assert cmd.targets == ("oops", "deaths")
        assert cmd.permission is PermissionTier.SUBSCRIBER
        assert cmd.cooldown_seconds == 3
        assert cmd.enabled is False
        assert cmd.mutates is True

    def test_response_only(self):
        cmd = CommandDefinition.from_dict("!hello", {"response": "Hi {{user}}"})
        assert cmd.action is CommandAction.NONE
        assert cmd.permission is PermissionTier.EVERYONE
        assert cmd.mutates is False

    def test_unknown_permission_rejected(self):
        with pytest.raises(InvalidCommandConfig):
            CommandDefinition.from_dict("!x", {"permission": "vip"})

    def test_unknown_action_rejected(self):
        with pytest.raises(InvalidCommandConfig):
            CommandDefinition.from_dict("!x", {"action": "multiply", "targets": "deaths"})

    def test_increment_without_targets_rejected(self):
        with pytest.raises(InvalidCommandConfig):
            CommandDefinition.from_dict("!x", {"action": "increment"})

    def test_reset_without_targets_allowed(self):
        assert CommandDefinition.from_dict("!wipe", {"action": "reset"}).targets == ()

    @pytest.mark.parametrize("cooldown", [-1, "5", 1.5, True])
    def test_bad_cooldown_rejected(self, cooldown):
        with pytest.raises(InvalidCommandConfig):
            CommandDefinition.from_dict("!x", {"cooldown": cooldown})

    def test_name_must_start_with_bang(self):
        with pytest.raises(InvalidCommandConfig):
            CommandDefinition.from_dict("deaths", {})

    def test_to_dict_round_trips(self):
        cmd = CommandDefinition.from_dict("!x+", {"action": "increment", "targets": ["x"], "cooldown": 2})
        assert CommandDefinition.from_dict(cmd.name, cmd.to_dict()) == cmd


class TestCustomCounterDefinition:

    def test_defaults_and_label(self):
        counter = CustomCounterDefinition.from_dict("Wipes", {})
        assert counter.counter_id == "wipes"
        assert counter.label == "wipes"
        assert counter.triggers() == ["!wipes"]

    def test_increments_clamped_to_one(self):
        counter = CustomCounterDefinition.from_dict("w", {"increment_by": 0, "decrement_by": -4})
        assert (counter.increment_by, counter.decrement_by) == (1, 1)

    def test_milestones_sorted_and_deduped(self):
        counter = CustomCounterDefinition.from_dict("w", {"milestones": [50, 10, "25", 10]})
        assert counter.milestones == (10, 25, 50)

    def test_invalid_id(self):
        with pytest.raises(InvalidCommandConfig):
            CustomCounterDefinition.from_dict("bad id!", {})

    def test_bad_milestones(self):
        with pytest.raises(InvalidCommandConfig):
            CustomCounterDefinition.from_dict("w", {"milestones": ["ten"]})


class TestParseTargets:

    def test_comma_string(self):
        assert parse_targets(" Deaths, swears,,deaths ") == ("deaths", "swears")

    def test_list_and_none(self):
        assert parse_targets(["Kills", "kills", "bits"]) == ("kills", "bits")
        assert parse_targets(None) == ()


class TestCounterState:

    def test_values_include_custom(self):
        state = CounterState(broadcaster_id="ch", deaths=2, custom={"kills": 3})
        assert state.values() == {"deaths": 2, "swears": 0, "screams": 0, "bits": 0, "kills": 3}

    def test_set_floors_at_zero(self):
        state = CounterState(broadcaster_id="ch")
        state.set("Deaths", -5)
        state.set("kills", -1)
        assert state.deaths == 0
        assert state.custom["kills"] == 0

    def test_from_dict_clamps_negatives(self):
        state = CounterState.from_dict({"broadcaster_id": "ch", "deaths": -3, "custom": {"K": -2}})
        assert state.deaths == 0
        assert state.custom == {"k": 0}


class TestBroadcasterSettings:

    def test_merged_layers_stored_values(self):
        defaults = BroadcasterSettings(
            max_increment=10,
            features=FeatureFlags(screams=True),
            milestone_thresholds={"deaths": [10, 25]},
            milestone_notifications={"deaths": True, "bits": False},
        )
        merged = defaults.merged({
            "max_increment": 3,
            "screams_enabled": False,
            "milestone_thresholds": {"Deaths": [5, 1]},
            "milestone_notifications": {"bits": True},
        })
        assert merged.max_increment == 3
        assert merged.features.screams is False
        assert merged.thresholds_for("deaths") == [1, 5]
        assert merged.notifications_enabled("bits") is True
        assert merged.notifications_enabled("deaths") is True
        assert defaults.max_increment == 10

    def test_merged_empty(self):
        defaults = BroadcasterSettings(max_increment=7)
        assert defaults.merged({}).max_increment == 7


class TestUtils:

    @pytest.mark.parametrize("raw,expected", [
        ("Kills+", "!kills"),
        ("!KILLS-", "!kills"),
        ("  !ek  ", "!ek"),
        ("", ""),
        (None, ""),
    ])
    def test_normalize_base_command(self, raw, expected):
        assert normalize_base_command(raw) == expected

    def test_normalize_falls_back(self):
        assert normalize_base_command_or_default("+", "!wipes") == "!wipes"

    @pytest.mark.parametrize("cid,ok", [
        ("enemy-kills", True),
        ("boss_2", True),
        ("x" * 64, True),
        ("x" * 65, False),
        ("", False),
        ("kills+", False),
        ("émoji", False),
    ])
    def test_is_valid_counter_id(self, cid, ok):
        assert is_valid_counter_id(cid) is ok

    def test_normalize_channel(self):
        assert normalize_channel("My Channel") == "my_channel"

    def test_parse_timestamp_naive_is_utc(self):
        ts = parse_timestamp("2026-03-01 20:00:00")
        assert ts is not None and ts.tzinfo is not None

    def test_parse_timestamp_garbage(self):
        assert parse_timestamp("not a time") is None
        assert parse_timestamp(None) is None

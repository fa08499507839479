"""Chat command resolution.

Turns the first token of a chat message into a concrete command and an
optional amount. Attempts run in a fixed order and the first hit wins:

1. exact          ``!sw+``          → ``!sw+``
2. suffix amount  ``!sw+5``         → ``!sw+``, amount 5
3. embedded       ``!sw5+``         → ``!sw+``, amount 5
4. custom counter ``!kills+2``      → increment ``enemy-kills`` by 2

Static commands (broadcaster overrides, then built-ins) always beat the
dynamic custom-counter form. Amount clamping is the caller's job.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping

from .models import CommandAction, CommandDefinition, CustomCounterDefinition
from .permissions import PermissionTier
from .utils import is_valid_counter_id

_DIGITS = "0123456789"
_OPERATORS = "+-"
_MAX_AMOUNT_DIGITS = 9


@dataclass(frozen=True)
class Resolution:
    command: CommandDefinition
    amount: int | None
    cooldown_key: str
    source: str  # "exact", "suffix", "embedded", "custom"


# ═══════════════════════════════════════════════════════════════
#  Built-in commands
# ═══════════════════════════════════════════════════════════════

def _builtin_table() -> dict[str, CommandDefinition]:
    table: dict[str, CommandDefinition] = {}

    def add(definition: CommandDefinition, *aliases: str) -> None:
        for key in (definition.name, *aliases):
            table[key] = definition

    display = [
        ("!deaths", "Deaths: {{deaths}}"),
        ("!swears", "Swears: {{swears}}"),
        ("!screams", "Screams: {{screams}}"),
        ("!bits", "Bits: {{bits}}"),
        ("!stats", "Deaths: {{deaths}} | Swears: {{swears}} | Screams: {{screams}}"),
    ]
    for name, response in display:
        add(CommandDefinition(name=name, response=response, cooldown_seconds=5))

    mutations = [
        ("!death", "!d", "deaths"),
        ("!swear", "!sw", "swears"),
        ("!scream", "!sc", "screams"),
    ]
    for long_form, short_form, metric in mutations:
        for op, action in (("+", CommandAction.INCREMENT), ("-", CommandAction.DECREMENT)):
            add(
                CommandDefinition(
                    name=f"{long_form}{op}",
                    action=action,
                    targets=(metric,),
                    permission=PermissionTier.MODERATOR,
                    cooldown_seconds=1,
                ),
                f"{short_form}{op}",
            )

    add(CommandDefinition(
        name="!resetcounters",
        action=CommandAction.RESET,
        permission=PermissionTier.MODERATOR,
        cooldown_seconds=5,
    ))
    return table


BUILTIN_COMMANDS: Mapping[str, CommandDefinition] = _builtin_table()


def build_alias_table(
    custom_counters: Mapping[str, CustomCounterDefinition],
    library: Iterable[CustomCounterDefinition] = (),
) -> dict[str, str]:
    """Map normalized ``!trigger`` → counter id for the configured counters.

    Library entries contribute triggers only for counters the broadcaster
    has configured; the broadcaster's own definition wins on conflicts.
    """
    table: dict[str, str] = {}
    for item in library:
        if item.counter_id in custom_counters:
            for trigger in item.triggers():
                table[trigger] = item.counter_id
    for counter_id, definition in custom_counters.items():
        for trigger in definition.triggers():
            table[trigger] = counter_id
    return table


# ═══════════════════════════════════════════════════════════════
#  Token helpers
# ═══════════════════════════════════════════════════════════════

def _split_trailing_digits(token: str) -> tuple[str, str]:
    """``"!sw+15"`` → ``("!sw+", "15")``."""
    i = len(token)
    while i > 0 and token[i - 1] in _DIGITS:
        i -= 1
    return token[:i], token[i:]


def _to_amount(digits: str) -> int:
    if len(digits) > _MAX_AMOUNT_DIGITS:
        return 10 ** _MAX_AMOUNT_DIGITS
    return int(digits)


def _is_letters(text: str) -> bool:
    return bool(text) and text.isascii() and text.isalpha()


class CommandResolver:
    """Resolves raw chat text to a command definition and amount."""

    def __init__(
        self,
        display_cooldown_seconds: int = 5,
        counter_cooldown_seconds: int = 1,
        logger: logging.Logger | None = None,
    ) -> None:
        self._display_cooldown = display_cooldown_seconds
        self._counter_cooldown = counter_cooldown_seconds
        self._logger = logger or logging.getLogger("counters.resolver")

    def resolve(
        self,
        raw_text: str,
        builtin_defaults: Mapping[str, CommandDefinition],
        overrides: Mapping[str, CommandDefinition],
        custom_counters: Mapping[str, CustomCounterDefinition],
        aliases: Mapping[str, str],
    ) -> Resolution | None:
        tokens = raw_text.split()
        if not tokens:
            return None
        candidate = tokens[0].lower()
        trailing = self._trailing_amount(tokens)

        def lookup(key: str) -> CommandDefinition | None:
            if key in overrides:
                return overrides[key]
            builtin = builtin_defaults.get(key)
            if builtin is None:
                return None
            # An override of "!death+" also covers its alias "!d+"
            return overrides.get(builtin.name, builtin)

        # 1. Exact
        definition = lookup(candidate)
        if definition is not None:
            return Resolution(definition, trailing, definition.name, "exact")

        # 2. Suffix amount: <base><digits>
        base, digits = _split_trailing_digits(candidate)
        if digits and len(base) > 1:
            definition = lookup(base)
            if definition is not None:
                return Resolution(definition, _to_amount(digits), definition.name, "suffix")

        # 3. Embedded amount: <letters><digits><op>
        if len(candidate) > 2 and candidate[-1] in _OPERATORS:
            letters, digits = _split_trailing_digits(candidate[:-1])
            if digits and letters.startswith("!") and _is_letters(letters[1:]):
                definition = lookup(letters + candidate[-1])
                if definition is not None:
                    return Resolution(definition, _to_amount(digits), definition.name, "embedded")

        # 4. Dynamic custom counter
        return self._resolve_custom(candidate, trailing, custom_counters, aliases)

    # ── Custom counters ──────────────────────────────────────

    def _resolve_custom(
        self,
        candidate: str,
        trailing: int | None,
        custom_counters: Mapping[str, CustomCounterDefinition],
        aliases: Mapping[str, str],
    ) -> Resolution | None:
        if not custom_counters:
            return None
        token = candidate[1:] if candidate.startswith("!") else candidate

        # Whole token names a counter (ids may legitimately end in "-<digits>")
        counter_id = self._match_counter(token, custom_counters, aliases)
        op: str | None = None
        digits = ""
        if counter_id is None:
            rest, digits = _split_trailing_digits(token)
            if not rest or rest[-1] not in _OPERATORS:
                return None
            op = rest[-1]
            counter_id = self._match_counter(rest[:-1], custom_counters, aliases)
            if counter_id is None:
                if not is_valid_counter_id(rest[:-1]):
                    self._logger.debug("Rejected malformed counter id %r", rest[:-1][:80])
                return None

        counter = custom_counters[counter_id]
        if op is None:
            definition = CommandDefinition(
                name=f"!{counter_id}",
                response=f"{counter.label}: {{{{{counter_id}}}}}",
                cooldown_seconds=self._display_cooldown,
            )
            return Resolution(definition, None, definition.name, "custom")

        increment = op == "+"
        definition = CommandDefinition(
            name=f"!{counter_id}{op}",
            action=CommandAction.INCREMENT if increment else CommandAction.DECREMENT,
            targets=(counter_id,),
            permission=PermissionTier.MODERATOR,
            cooldown_seconds=self._counter_cooldown,
        )
        if digits:
            amount = _to_amount(digits)
        elif trailing is not None:
            amount = trailing
        else:
            amount = counter.increment_by if increment else counter.decrement_by
        return Resolution(definition, amount, definition.name, "custom")

    def _match_counter(
        self,
        body: str,
        custom_counters: Mapping[str, CustomCounterDefinition],
        aliases: Mapping[str, str],
    ) -> str | None:
        if not is_valid_counter_id(body):
            return None
        if body in custom_counters:
            return body
        counter_id = aliases.get(f"!{body}")
        if counter_id is not None and counter_id in custom_counters:
            return counter_id
        return None

    @staticmethod
    def _trailing_amount(tokens: list[str]) -> int | None:
        """``!death+ 3`` → 3. Only a plain positive integer counts."""
        if len(tokens) < 2:
            return None
        arg = tokens[1]
        if not arg or any(ch not in _DIGITS for ch in arg):
            return None
        amount = _to_amount(arg)
        return amount if amount > 0 else None

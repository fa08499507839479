"""Counter mutation: increment, decrement and reset with a floor at zero."""

from __future__ import annotations

import logging
from typing import Sequence

from .models import CORE_RESET_METRICS, CommandAction, CounterState, FeatureFlags


class CounterMutator:
    """Applies command actions to a broadcaster's CounterState in place."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger("counters.mutator")

    def apply(
        self,
        action: CommandAction,
        targets: Sequence[str],
        amount: int,
        state: CounterState,
        features: FeatureFlags,
    ) -> bool:
        """Mutate *state*. Returns True iff at least one value actually changed."""
        if action is CommandAction.NONE:
            return False

        if action is CommandAction.RESET:
            if not targets:
                return self._reset_core(state)
            changed = False
            for target in targets:
                changed = self._set(state, target, 0, features) or changed
            return changed

        if not targets:
            return False

        delta = -amount if action is CommandAction.DECREMENT else amount
        changed = False
        for target in targets:
            name = target.lower()
            changed = self._set(state, name, state.get(name) + delta, features) or changed
        return changed

    def _reset_core(self, state: CounterState) -> bool:
        if not any(state.get(metric) for metric in CORE_RESET_METRICS):
            return False
        for metric in CORE_RESET_METRICS:
            state.set(metric, 0)
        return True

    def _set(self, state: CounterState, target: str, value: int, features: FeatureFlags) -> bool:
        name = target.lower()
        if name == "screams" and not features.screams:
            self._logger.debug("Skipping screams for %s: feature disabled", state.broadcaster_id)
            return False
        if name not in state.values():
            # Custom counters spring into existence at zero
            state.custom[name] = 0
        previous = state.get(name)
        state.set(name, value)
        return state.get(name) != previous

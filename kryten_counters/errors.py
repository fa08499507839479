"""Exception types for kryten-counters."""

from __future__ import annotations


class CountersError(Exception):
    """Base class for kryten-counters errors."""


class InvalidCommandConfig(CountersError, ValueError):
    """A command or counter definition could not be parsed."""

"""Shared utility helpers for kryten-counters."""

from __future__ import annotations

from datetime import datetime, timezone

COUNTER_ID_MAX_LENGTH = 64
_COUNTER_ID_CHARS = frozenset("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_-")


def normalize_channel(channel: str) -> str:
    """Normalize channel name for NATS subject and storage keys.
    Follow kryten-py convention (lowercase, strip special chars)."""
    return channel.lower().replace(" ", "_")


def parse_timestamp(ts: str | None) -> datetime | None:
    """Parse SQLite TIMESTAMP string to timezone-aware datetime, or None."""
    if not ts:
        return None
    try:
        dt = datetime.fromisoformat(ts)
        # SQLite stores naive timestamps as UTC
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt
    except (ValueError, TypeError):
        return None


def now_utc() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def is_valid_counter_id(counter_id: str) -> bool:
    """True if *counter_id* is 1-64 chars of ``[A-Za-z0-9_-]``."""
    if not counter_id or len(counter_id) > COUNTER_ID_MAX_LENGTH:
        return False
    return all(ch in _COUNTER_ID_CHARS for ch in counter_id)


def normalize_base_command(command: str | None) -> str:
    """Canonical ``!base`` form of a chat trigger, or ``""`` if blank.

    Ensures a leading ``!``, strips trailing ``+``/``-`` and lowercases:
    ``"Kills+"`` → ``"!kills"``.
    """
    c = (command or "").strip()
    if not c:
        return ""
    if not c.startswith("!"):
        c = "!" + c
    return c.rstrip("+-").lower()


def normalize_base_command_or_default(command: str | None, fallback: str) -> str:
    """Like :func:`normalize_base_command` but falls back when the result is empty."""
    normalized = normalize_base_command(command)
    if not normalized or normalized == "!":
        normalized = normalize_base_command(fallback)
    return normalized

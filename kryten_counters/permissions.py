"""Permission tiers for chat commands."""

from __future__ import annotations

from enum import Enum

from .errors import InvalidCommandConfig


class PermissionTier(str, Enum):
    """Minimum chat role required to invoke a command."""

    EVERYONE = "everyone"
    SUBSCRIBER = "subscriber"
    MODERATOR = "moderator"
    BROADCASTER = "broadcaster"

    @classmethod
    def parse(cls, value: str | PermissionTier | None) -> PermissionTier:
        """Parse a stored tier name. Unknown names are a configuration error."""
        if isinstance(value, PermissionTier):
            return value
        if value is None or not str(value).strip():
            return cls.EVERYONE
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidCommandConfig(f"Unknown permission tier: {value!r}") from None


def evaluate(
    tier: PermissionTier,
    is_moderator: bool,
    is_broadcaster: bool,
    is_subscriber: bool,
) -> bool:
    """Return True if a caller with these role flags satisfies *tier*."""
    if tier is PermissionTier.EVERYONE:
        return True
    if tier is PermissionTier.SUBSCRIBER:
        return is_subscriber or is_moderator or is_broadcaster
    if tier is PermissionTier.MODERATOR:
        return is_moderator or is_broadcaster
    if tier is PermissionTier.BROADCASTER:
        return is_broadcaster
    raise InvalidCommandConfig(f"Unknown permission tier: {tier!r}")

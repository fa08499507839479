"""Per-broadcaster command cooldowns.

Each (broadcaster, cooldown key) pair remembers when its command last
fired. ``check_and_record`` is the only place a double-fire could slip
through, so the read-compare-write runs under a lock. Entries are bounded
two ways: anything idle longer than ``ttl_seconds`` is dropped by
``prune()``, and each broadcaster keeps at most ``max_keys_per_broadcaster``
keys (least recently used evicted first).
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from datetime import datetime


class CooldownTracker:
    """Atomic check-and-set rate limiter keyed by (broadcaster, cooldown key)."""

    def __init__(
        self,
        ttl_seconds: int = 3600,
        max_keys_per_broadcaster: int = 256,
        logger: logging.Logger | None = None,
    ) -> None:
        self._ttl = ttl_seconds
        self._max_keys = max(1, max_keys_per_broadcaster)
        self._logger = logger or logging.getLogger("counters.cooldowns")
        self._lock = threading.Lock()
        self._entries: dict[str, OrderedDict[str, datetime]] = {}

    def check_and_record(
        self,
        broadcaster_id: str,
        cooldown_key: str,
        now: datetime,
        cooldown_seconds: int,
    ) -> bool:
        """Return True and stamp *now* if the key is off cooldown; else False."""
        with self._lock:
            bucket = self._entries.setdefault(broadcaster_id, OrderedDict())
            last_used = bucket.get(cooldown_key)
            if (
                cooldown_seconds > 0
                and last_used is not None
                and (now - last_used).total_seconds() < cooldown_seconds
            ):
                return False

            bucket[cooldown_key] = now
            bucket.move_to_end(cooldown_key)
            while len(bucket) > self._max_keys:
                evicted, _ = bucket.popitem(last=False)
                self._logger.debug("Evicted cooldown %s/%s (capacity)", broadcaster_id, evicted)
            return True

    def prune(self, now: datetime) -> int:
        """Drop entries idle for longer than the TTL. Returns the number removed."""
        removed = 0
        with self._lock:
            for broadcaster_id in list(self._entries):
                bucket = self._entries[broadcaster_id]
                stale = [
                    key for key, last_used in bucket.items()
                    if (now - last_used).total_seconds() > self._ttl
                ]
                for key in stale:
                    del bucket[key]
                removed += len(stale)
                if not bucket:
                    del self._entries[broadcaster_id]
        return removed

    def tracked_keys(self, broadcaster_id: str | None = None) -> int:
        with self._lock:
            if broadcaster_id is not None:
                return len(self._entries.get(broadcaster_id, ()))
            return sum(len(bucket) for bucket in self._entries.values())

"""Milestone crossing detection."""

from __future__ import annotations

from bisect import bisect_right
from typing import Iterable


def crossed(thresholds: Iterable[int], previous_value: int, new_value: int) -> list[int]:
    """Thresholds ``t`` with ``previous_value < t <= new_value``, ascending.

    A jump across several thresholds yields each of them once. A value that
    stayed the same or went down crosses nothing.
    """
    if new_value <= previous_value:
        return []
    ordered = sorted(set(thresholds))
    lo = bisect_right(ordered, previous_value)
    hi = bisect_right(ordered, new_value)
    return ordered[lo:hi]

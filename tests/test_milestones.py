"""Tests for kryten_counters.milestones module."""

from __future__ import annotations

from kryten_counters.milestones import crossed


class TestCrossed:
    """Milestone threshold crossing."""

    def test_jump_across_two_thresholds(self):
        assert crossed([10, 25, 50], 8, 30) == [10, 25]

    def test_landing_on_threshold(self):
        assert crossed([10, 25], 9, 10) == [10]

    def test_starting_on_threshold_not_recrossed(self):
        assert crossed([10, 25], 10, 11) == []

    def test_decrease_never_crosses(self):
        assert crossed([10, 25], 30, 5) == []

    def test_no_change(self):
        assert crossed([10], 10, 10) == []

    def test_unsorted_duplicate_thresholds(self):
        assert crossed([50, 10, 25, 10], 0, 100) == [10, 25, 50]

    def test_empty_thresholds(self):
        assert crossed([], 0, 100) == []

"""
Unit tests for top-N distribution selection.
"""

from __future__ import annotations

import pytest

from config.settings import RollupConfig
from rollup.top_n import (
    DISTRIBUTION_COLORS,
    OTHER_LABEL,
    DistributionEntry,
    apportion,
    select_top_n,
)

FIVE = [("Pricing", 40), ("Support", 25), ("Integrations", 15), ("Security", 12), ("Onboarding", 8)]


class TestSelectTopN:
    def test_other_bucket(self):
        slices = select_top_n(FIVE, 3)

        assert len(slices) == 4
        assert [s.label for s in slices] == ["Pricing", "Support", "Integrations", OTHER_LABEL]
        assert slices[-1].is_other
        assert slices[-1].value == pytest.approx(20.0)
        assert [s.percentage for s in slices] == [40.0, 25.0, 15.0, 20.0]

    def test_no_other_when_everything_fits(self):
        slices = select_top_n(FIVE, 6)
        assert len(slices) == 5
        assert not any(s.is_other for s in slices)

    def test_explicit_total_produces_residual(self):
        slices = select_top_n([("a.com", 30)], 3, total=100)
        assert [s.label for s in slices] == ["a.com", OTHER_LABEL]
        assert slices[1].value == pytest.approx(70.0)

    def test_residual_below_epsilon_is_dropped(self):
        slices = select_top_n([("a", 50), ("b", 50)], 2, total=100.0000000001)
        assert [s.label for s in slices] == ["a", "b"]

    def test_ties_break_alphabetically(self):
        slices = select_top_n([("beta", 10), ("Alpha", 10), ("gamma", 10)], 2)
        assert [s.label for s in slices] == ["Alpha", "beta", OTHER_LABEL]

    def test_entry_objects(self):
        slices = select_top_n([DistributionEntry("x", 3.0), DistributionEntry("y", 1.0)], 1)
        assert slices[0].label == "x"
        assert slices[0].percentage == 75.0

    def test_non_positive_values_ignored(self):
        slices = select_top_n([("a", 0), ("b", -4), ("c", "5")], 3)
        assert [s.label for s in slices] == ["c"]
        assert slices[0].percentage == 100.0

    def test_empty_universe(self):
        assert select_top_n([], 3) == []
        assert select_top_n([("a", 0)], 3) == []

    def test_invalid_n(self):
        with pytest.raises(ValueError):
            select_top_n(FIVE, 0)

    def test_percentages_sum_to_100(self):
        slices = select_top_n([("a", 1), ("b", 1), ("c", 1), ("d", 1), ("e", 1), ("f", 1), ("g", 1)], 6)
        assert sum(s.percentage for s in slices) == pytest.approx(100.0, abs=0.01)
        assert all(abs(s.percentage - 100 / 7) <= 0.1 for s in slices)

    def test_colors_by_position(self):
        slices = select_top_n(FIVE, 3)
        assert [s.color for s in slices] == DISTRIBUTION_COLORS[:4]

    def test_default_colours_come_from_settings(self):
        assert DISTRIBUTION_COLORS == RollupConfig().palette

    def test_palette_cycles(self):
        slices = select_top_n(FIVE, 3, palette=["#111111", "#222222"])
        assert [s.color for s in slices] == ["#111111", "#222222", "#111111", "#222222"]

    def test_deterministic(self):
        assert select_top_n(FIVE, 2) == select_top_n(list(FIVE), 2)


class TestApportion:
    def test_thirds(self):
        assert apportion([1, 1, 1], 3) == [33.4, 33.3, 33.3]

    def test_exact(self):
        assert apportion([5, 3], 8) == [62.5, 37.5]

    def test_zero_total(self):
        assert apportion([1, 2], 0) == [0.0, 0.0]

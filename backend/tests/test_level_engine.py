"""
Confluence — Level Engine Tests

Grouping of nearby support/resistance prices and nearest-level selection.
"""

import pytest


class TestGroupNearbyLevels:
    def test_empty_input(self):
        from confluence.engines.level_engine import group_nearby_levels
        assert group_nearby_levels([], 100.0) == []

    def test_single_level(self):
        from confluence.engines.level_engine import group_nearby_levels
        assert group_nearby_levels([95.0], 100.0) == [95.0]

    def test_groups_within_threshold(self):
        from confluence.engines.level_engine import group_nearby_levels
        # 1% gaps inside the first two groups, 10% gap between them
        result = group_nearby_levels([100.0, 101.0, 111.0, 112.0], 100.0, 0.02)
        assert result == pytest.approx([100.5, 111.5])

    def test_unsorted_input_and_duplicates(self):
        from confluence.engines.level_engine import group_nearby_levels
        result = group_nearby_levels([112.0, 100.0, 100.0, 111.0], 100.0, 0.02)
        assert result == pytest.approx([100.0, 111.5])

    def test_chaining_spans_beyond_threshold(self):
        from confluence.engines.level_engine import group_nearby_levels
        # each gap is 1.5% of 100 but the whole run spans 6%
        levels = [100.0, 101.5, 103.0, 104.5, 106.0]
        assert group_nearby_levels(levels, 100.0, 0.02) == pytest.approx([103.0])

    def test_output_sorted_and_within_input_range(self):
        from confluence.engines.level_engine import group_nearby_levels
        levels = [50.0, 75.0, 51.0, 90.0, 74.0, 30.0]
        result = group_nearby_levels(levels, 60.0, 0.02)
        assert result == sorted(result)
        assert len(result) <= len(levels)
        assert min(levels) <= result[0]
        assert result[-1] <= max(levels)

    def test_idempotent(self):
        from confluence.engines.level_engine import group_nearby_levels
        levels = [10.0, 10.1, 10.15, 12.0, 12.1, 15.0]
        once = group_nearby_levels(levels, 11.0, 0.02)
        assert group_nearby_levels(once, 11.0, 0.02) == pytest.approx(once)

    def test_exact_threshold_joins(self):
        from confluence.engines.level_engine import group_nearby_levels
        assert group_nearby_levels([100.0, 102.0], 100.0, 0.02) == pytest.approx([101.0])

    def test_negative_level_rejected(self):
        from confluence.engines.level_engine import group_nearby_levels
        with pytest.raises(ValueError):
            group_nearby_levels([-1.0, 5.0], 100.0)

    def test_non_positive_reference_rejected(self):
        from confluence.engines.level_engine import group_nearby_levels
        with pytest.raises(ValueError):
            group_nearby_levels([1.0, 5.0], 0.0)


class TestNearestLevels:
    def test_levels_below_nearest_first(self):
        from confluence.engines.level_engine import levels_below
        assert levels_below([90.0, 95.0, 105.0, 80.0], 100.0) == [95.0, 90.0, 80.0]

    def test_levels_above_with_limit(self):
        from confluence.engines.level_engine import levels_above
        assert levels_above([130.0, 110.0, 95.0, 120.0], 100.0, limit=2) == [110.0, 120.0]

    def test_price_itself_excluded(self):
        from confluence.engines.level_engine import levels_above, levels_below
        assert levels_below([100.0], 100.0) == []
        assert levels_above([100.0], 100.0) == []

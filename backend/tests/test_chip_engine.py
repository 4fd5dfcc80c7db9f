"""
Confluence — Multi-Timeframe Chip Combiner Tests

Weighted strengths, alignment and trend votes, recommendations, levels and
the narrative comment.
"""

import pytest

from confluence.models import Direction


WEIGHTS = {"weekly": 0.3, "daily": 0.5, "1hour": 0.2}


def _chip(
    timeframe,
    buy=50.0,
    short=50.0,
    bias=Direction.NEUTRAL,
    supports=(),
    resistances=(),
    price=100.0,
):
    from confluence.models import ChipAnalysis
    return ChipAnalysis(
        symbol="TEST",
        timeframe=timeframe,
        current_price=price,
        buy_signal_strength=buy,
        short_signal_strength=short,
        overall_recommendation=bias.value,
        recommendation_bias=bias,
        strong_support_levels=list(supports),
        strong_resistance_levels=list(resistances),
        technical_bias=Direction.NEUTRAL,
    )


def _weighted(*analyses):
    from confluence.engines.timeframe_weights import normalize_timeframe
    return [normalize_timeframe(a.timeframe, a, WEIGHTS) for a in analyses]


class TestChipCombinerScenario:
    def _bullish_set(self):
        return _weighted(
            _chip("weekly", 80, 10, Direction.BULLISH, supports=[90.0], resistances=[120.0]),
            _chip("daily", 80, 10, Direction.BULLISH, supports=[91.0, 95.0], resistances=[110.0, 121.0]),
            _chip("1hour", 80, 10, Direction.BULLISH, supports=[98.0], resistances=[104.0]),
        )

    def test_daily_primary_all_bullish(self):
        from confluence.engines.chip_engine import ChipCombiner
        result = ChipCombiner().combine(self._bullish_set(), "daily")

        assert result.combined_buy_signal_strength == 80
        assert result.combined_short_signal_strength == 10
        assert result.combined_recommendation.value == "long"
        assert result.timeframe_alignment.value == "bullish"
        assert result.alignment_strength == 100
        assert result.trend_direction.value == "uptrend"
        assert result.trend_consistency.value == "strong"
        assert "strong buy" in result.recommendation_comment

    def test_levels_grouped_and_plans_built(self):
        from confluence.engines.chip_engine import ChipCombiner
        result = ChipCombiner().combine(self._bullish_set(), "daily")

        # 90 and 91 collapse (1% of 100), 120 and 121 collapse
        assert result.aggregated_support_levels == pytest.approx([90.5, 95.0, 98.0])
        assert result.aggregated_resistance_levels == pytest.approx([104.0, 110.0, 120.5])
        assert result.stop_loss_levels == pytest.approx([98.0, 95.0])
        assert result.take_profit_levels == pytest.approx([104.0, 110.0, 120.5])

    def test_outlooks(self):
        from confluence.engines.chip_engine import ChipCombiner
        result = ChipCombiner().combine(self._bullish_set(), "daily")
        assert result.short_term_outlook == "strongly bullish"
        assert result.medium_term_outlook == "strongly bullish"
        assert result.long_term_outlook == "strongly bullish"

    def test_idempotent(self):
        from confluence.engines.chip_engine import ChipCombiner
        combiner = ChipCombiner()
        analyses = self._bullish_set()
        first = combiner.combine(analyses, "daily")
        second = combiner.combine(analyses, "daily")
        assert first.model_dump_json() == second.model_dump_json()


class TestChipCombinerRecommendations:
    def test_short_recommendation(self):
        from confluence.engines.chip_engine import ChipCombiner
        analyses = _weighted(
            _chip("daily", 10, 80, Direction.BEARISH, supports=[90.0, 85.0, 80.0], resistances=[105.0]),
        )
        result = ChipCombiner().combine(analyses, "daily")
        assert result.combined_recommendation.value == "short"
        assert result.stop_loss_levels == [105.0]
        assert result.take_profit_levels == [90.0, 85.0, 80.0]

    def test_watch_recommendation(self):
        from confluence.engines.chip_engine import ChipCombiner
        analyses = _weighted(
            _chip("daily", 50, 45, supports=[90.0, 95.0], resistances=[105.0, 110.0]),
        )
        result = ChipCombiner().combine(analyses, "daily")
        assert result.combined_recommendation.value == "watch"
        assert result.stop_loss_levels == [95.0, 105.0]
        assert result.take_profit_levels == []

    def test_weak_long_when_alignment_disagrees(self):
        from confluence.engines.chip_engine import ChipCombiner
        analyses = _weighted(
            _chip("weekly", 70, 20, Direction.NEUTRAL),
            _chip("daily", 70, 20, Direction.NEUTRAL),
        )
        result = ChipCombiner().combine(analyses, "daily")
        assert result.combined_recommendation.value == "long"
        assert result.timeframe_alignment.value == "neutral"
        assert "cautiously" in result.recommendation_comment

    def test_mixed_alignment(self):
        from confluence.engines.chip_engine import ChipCombiner
        analyses = _weighted(
            _chip("weekly", bias=Direction.BULLISH),
            _chip("daily", bias=Direction.BEARISH),
        )
        result = ChipCombiner().combine(analyses, "daily")
        assert result.timeframe_alignment.value == "mixed"
        assert result.alignment_strength == 0

    def test_conflicts_in_comment(self):
        from confluence.engines.chip_engine import ChipCombiner
        analyses = _weighted(
            _chip("daily", bias=Direction.BEARISH),
            _chip("1hour", bias=Direction.BULLISH),
        )
        result = ChipCombiner().combine(analyses, "daily")
        assert len(result.timeframe_conflicts) == 1
        assert "Note:" in result.recommendation_comment
        assert "reversal risk" in result.recommendation_comment


class TestChipCombinerEdgeCases:
    def test_missing_primary(self):
        from confluence.engines.chip_engine import ChipCombiner
        from confluence.errors import MissingPrimaryTimeframeError
        with pytest.raises(MissingPrimaryTimeframeError):
            ChipCombiner().combine(_weighted(_chip("weekly")), "daily")

    def test_zero_weights_fall_back_to_mean(self):
        from confluence.engines.chip_engine import ChipCombiner
        from confluence.engines.timeframe_weights import normalize_timeframe
        analyses = [
            normalize_timeframe("weekly", _chip("weekly", 60, 20), {"weekly": 0.0}),
            normalize_timeframe("daily", _chip("daily", 80, 40), {"daily": 0.0}),
        ]
        result = ChipCombiner().combine(analyses, "daily")
        assert result.combined_buy_signal_strength == 70
        assert result.combined_short_signal_strength == 30

    def test_rounds_half_up(self):
        from confluence.engines.chip_engine import ChipCombiner
        from confluence.engines.timeframe_weights import normalize_timeframe
        analyses = [
            normalize_timeframe("weekly", _chip("weekly", 60, 0), {"weekly": 0.5}),
            normalize_timeframe("daily", _chip("daily", 61, 0), {"daily": 0.5}),
        ]
        assert ChipCombiner().combine(analyses, "daily").combined_buy_signal_strength == 61

    def test_monotonic_in_buy_strength(self):
        from confluence.engines.chip_engine import ChipCombiner
        combiner = ChipCombiner()
        previous = -1
        for buy in (0, 20, 40, 60, 80, 100):
            analyses = _weighted(_chip("weekly", 50, 50), _chip("daily", buy, 50), _chip("1hour", 30, 50))
            current = combiner.combine(analyses, "daily").combined_buy_signal_strength
            assert current >= previous
            previous = current

    def test_breakout_levels_pooled(self):
        from confluence.engines.chip_engine import ChipCombiner
        from confluence.models import BreakoutDetection
        breakout = BreakoutDetection(dynamic_support=[93.0], dynamic_resistance=[107.0])
        result = ChipCombiner().combine(_weighted(_chip("daily")), "daily", breakout=breakout)
        assert result.aggregated_support_levels == [93.0]
        assert result.aggregated_resistance_levels == [107.0]

    def test_outlook_without_timeframe(self):
        from confluence.engines.chip_engine import ChipCombiner
        result = ChipCombiner().combine(_weighted(_chip("daily")), "daily")
        assert result.short_term_outlook == "insufficient data"
        assert result.long_term_outlook == "insufficient data"
        assert result.medium_term_outlook == "neutral"

"""
Confluence — Chart Pattern Detector Tests
"""

from datetime import datetime, timedelta

import pytest

from confluence.models import Direction, PatternStatus, PatternType


def _make_bars(closes: list[float], spread: float = 0.5):
    """Helper: candles from close prices with a fixed high/low spread."""
    from confluence.models import Candle
    base = datetime(2024, 1, 1)
    return [
        Candle(
            symbol="TEST",
            timestamp=base + timedelta(days=i),
            open=c,
            high=c + spread,
            low=c - spread,
            close=c,
            volume=1_000,
        )
        for i, c in enumerate(closes)
    ]


def _zigzag(n: int = 40) -> list[float]:
    # peaks (105) at 5, 15, 25, 35; valleys (100) at 0, 10, 20, 30
    return [105.0 - abs((i % 10) - 5) for i in range(n)]


def _double_bottom() -> list[float]:
    closes = [120.0 - 2 * i for i in range(11)]                     # 0..10 → 100
    closes += [100.0 + (i - 10) * 10 / 7 for i in range(11, 18)]    # → 110 at 17
    closes += [110.0 - (i - 17) * 10 / 8 for i in range(18, 26)]    # → 100 at 25
    closes += [100.0 + (i - 25) * 12 / 14 for i in range(26, 40)]   # → 112 at 39
    return closes


class TestSwings:
    def test_peaks_and_valleys(self):
        from confluence.engines.pattern_detectors import PatternDetectors
        pv = PatternDetectors().find_peaks_and_valleys(_make_bars(_zigzag()))
        assert [p.index for p in pv if p.kind == "peak"] == [5, 15, 25, 35]
        assert [p.index for p in pv if p.kind == "valley"] == [10, 20, 30]
        assert [p.index for p in pv] == sorted(p.index for p in pv)

    def test_swing_prices_from_highs_and_lows(self):
        from confluence.engines.pattern_detectors import PatternDetectors
        pv = PatternDetectors().find_peaks_and_valleys(_make_bars(_zigzag()))
        assert all(p.price == 105.5 for p in pv if p.kind == "peak")
        assert all(p.price == 99.5 for p in pv if p.kind == "valley")

    def test_flat_series_has_no_swings(self):
        from confluence.engines.pattern_detectors import PatternDetectors
        assert PatternDetectors().find_peaks_and_valleys(_make_bars([100.0] * 40, spread=1.0)) == []

    def test_plateau_counts_once(self):
        from confluence.engines.pattern_detectors import PatternDetectors
        closes = [100.0, 101.0, 102.0, 103.0, 103.0, 102.0, 101.0, 100.0, 99.0, 98.0]
        pv = PatternDetectors().find_peaks_and_valleys(_make_bars(closes))
        assert [p.index for p in pv if p.kind == "peak"] == [3]


class TestDetectAll:
    def test_insufficient_data(self):
        from confluence.engines.pattern_detectors import PatternDetectors
        from confluence.errors import InsufficientDataWarning
        with pytest.warns(InsufficientDataWarning):
            assert PatternDetectors().detect_all(_make_bars([100.0] * 10), timeframe="weekly") == []

    def test_triple_top_and_bottom_on_range(self):
        from confluence.engines.pattern_detectors import PatternDetectors
        patterns = PatternDetectors().detect_all(_make_bars(_zigzag()))
        types = {p.pattern_type for p in patterns}
        assert PatternType.TRIPLE_TOP in types
        assert PatternType.TRIPLE_BOTTOM in types

    def test_scores_in_range(self):
        from confluence.engines.pattern_detectors import PatternDetectors
        for p in PatternDetectors().detect_all(_make_bars(_zigzag(60))):
            assert 0 <= p.reliability <= 100
            assert 0 <= p.significance <= 100
            assert p.component.start_index <= p.component.end_index <= 59

    def test_flat_market_has_no_patterns(self):
        from confluence.engines.pattern_detectors import PatternDetectors
        assert PatternDetectors().detect_all(_make_bars([100.0] * 100, spread=1.0)) == []

    def test_rectangle_mid_range_is_neutral(self):
        from confluence.engines.pattern_detectors import PatternDetectors
        # Range 99.5 - 105.5, last close on the midpoint
        closes = _zigzag()[:-1] + [102.5]
        rectangles = [
            p for p in PatternDetectors().detect_all(_make_bars(closes))
            if p.pattern_type == PatternType.RECTANGLE
        ]
        assert len(rectangles) == 1
        rect = rectangles[0]
        assert rect.direction == Direction.NEUTRAL
        assert rect.stop_loss is None
        assert rect.price_target is None
        assert rect.breakout_direction is None

    def test_rectangle_below_mid_is_bearish(self):
        from confluence.engines.pattern_detectors import PatternDetectors
        rectangles = [
            p for p in PatternDetectors().detect_all(_make_bars(_zigzag()))
            if p.pattern_type == PatternType.RECTANGLE
        ]
        assert rectangles[0].direction == Direction.BEARISH
        assert rectangles[0].stop_loss == pytest.approx(105.5)

    def test_double_bottom_confirmed(self):
        from confluence.engines.pattern_detectors import PatternDetectors
        patterns = PatternDetectors().detect_all(_make_bars(_double_bottom()))
        doubles = [p for p in patterns if p.pattern_type == PatternType.DOUBLE_BOTTOM]
        assert len(doubles) == 1

        db = doubles[0]
        assert db.direction == Direction.BULLISH
        assert db.status == PatternStatus.CONFIRMED
        assert db.component.start_index == 10
        assert db.component.end_index == 25
        assert db.component.breakout_level == pytest.approx(110.0)
        assert db.stop_loss == pytest.approx(99.5)
        assert db.price_target == pytest.approx(120.5)
        assert db.component.volume_pattern == "steady"
        assert db.probable_breakout_zone is None
        assert "confirmed" in db.trading_implication


class TestStatus:
    def test_bearish_confirmed_below_breakout(self):
        from confluence.engines.pattern_detectors import _status
        assert _status(Direction.BEARISH, 95.0, 100.0, 110.0, False) == PatternStatus.CONFIRMED

    def test_bullish_failed_below_stop(self):
        from confluence.engines.pattern_detectors import _status
        assert _status(Direction.BULLISH, 89.0, 100.0, 90.0, False) == PatternStatus.FAILED

    def test_open_structure_forming(self):
        from confluence.engines.pattern_detectors import _status
        assert _status(Direction.NEUTRAL, 100.0, 105.0, None, True) == PatternStatus.FORMING
        assert _status(Direction.BULLISH, 99.0, 100.0, 90.0, False) == PatternStatus.COMPLETED

    def test_volume_pattern(self):
        import numpy as np
        from confluence.engines.pattern_detectors import _volume_pattern
        assert _volume_pattern(np.array([100, 100, 50, 50.0]), 0, 3) == "declining"
        assert _volume_pattern(np.array([100, 100, 200, 200.0]), 0, 3) == "expanding"
        assert _volume_pattern(np.array([100, 100.0]), 0, 1) == "insufficient"

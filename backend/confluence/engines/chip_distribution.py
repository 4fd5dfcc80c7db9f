"""
Confluence — Chip Distribution Analyzer

Per-timeframe chip (cost) distribution from a volume-at-price histogram.

Computes:
  - Profit ratio: share of traded volume below the current price
  - POC (Point of Control): price bin with the most volume
  - High-volume nodes → strong / moderate support and resistance
  - Technical bias from RSI(14) and the MACD histogram
  - Buy / short signal strengths (0–100)

Uses the `ta` library for indicator calculations on pandas DataFrames.
"""

from __future__ import annotations

from typing import Optional, Protocol, Sequence

import numpy as np
import pandas as pd
import structlog
from ta.momentum import RSIIndicator
from ta.trend import MACD

from confluence.config import get_settings
from confluence.errors import warn_insufficient_data
from confluence.models import Candle, ChipAnalysis, Direction, Timeframe

log = structlog.get_logger(__name__)

MIN_CANDLES = 10


class ChipAnalyzer(Protocol):
    """Anything that turns one timeframe's candles into a ChipAnalysis."""

    def analyze(self, symbol: str, timeframe: Timeframe | str, candles: Sequence[Candle]) -> ChipAnalysis: ...


class VolumeProfileChipAnalyzer:
    """Volume-profile based chip analyzer.

    Usage:
        analyzer = VolumeProfileChipAnalyzer()
        analysis = analyzer.analyze("AAPL", "daily", candles)
    """

    def __init__(self, num_bins: Optional[int] = None):
        self.num_bins = num_bins or get_settings().volume_profile_bins

    def analyze(self, symbol: str, timeframe: Timeframe | str, candles: Sequence[Candle]) -> ChipAnalysis:
        tf = Timeframe(timeframe)
        current_price = float(candles[-1].close) if candles else 0.0

        if len(candles) < MIN_CANDLES:
            warn_insufficient_data("chip_analyzer", tf.value, len(candles), MIN_CANDLES)
            return self._neutral(symbol, tf, current_price, "Insufficient data")

        profile = self.volume_profile(candles)
        if profile is None:
            return self._neutral(symbol, tf, current_price, "No usable price range or volume")
        bin_prices, volumes = profile

        total_volume = volumes.sum()
        profit_ratio = float(volumes[bin_prices < current_price].sum() / total_volume)
        poc_price = float(bin_prices[int(np.argmax(volumes))])

        # High-volume nodes: ≥90th percentile strong, 80–90th moderate
        strong_cut = float(np.percentile(volumes, 90))
        moderate_cut = float(np.percentile(volumes, 80))
        strong = [float(p) for p, v in zip(bin_prices, volumes) if v >= strong_cut and v > 0]
        moderate = [float(p) for p, v in zip(bin_prices, volumes) if moderate_cut <= v < strong_cut and v > 0]

        technical_bias, technical_signal = self._technical(candles)
        shape_buy = current_price > poc_price and profit_ratio > 0.5

        buy = 40 * profit_ratio
        short = 40 * (1 - profit_ratio)
        if current_price > poc_price:
            buy += 20
        elif current_price < poc_price:
            short += 20
        if shape_buy:
            buy += 15
        elif current_price < poc_price and profit_ratio < 0.5:
            short += 15
        if technical_bias == Direction.BULLISH:
            buy += 25
        elif technical_bias == Direction.BEARISH:
            short += 25
        else:
            buy += 10
            short += 10

        if buy > short + 20:
            bias, label = Direction.BULLISH, "Buy"
        elif short > buy + 20:
            bias, label = Direction.BEARISH, "Sell/short"
        else:
            bias, label = Direction.NEUTRAL, "Hold/watch"

        log.debug(
            "chip.analyzed",
            symbol=symbol,
            timeframe=tf.value,
            profit_ratio=round(profit_ratio, 3),
            poc=round(poc_price, 4),
            buy=round(buy, 1),
            short=round(short, 1),
        )
        return ChipAnalysis(
            symbol=symbol,
            timeframe=tf,
            current_price=current_price,
            buy_signal_strength=round(buy, 1),
            short_signal_strength=round(short, 1),
            overall_recommendation=f"{label} (profit ratio {profit_ratio:.0%}, POC {poc_price:.2f})",
            recommendation_bias=bias,
            strong_support_levels=[p for p in strong if p < current_price],
            moderate_support_levels=[p for p in moderate if p < current_price],
            strong_resistance_levels=[p for p in strong if p > current_price],
            moderate_resistance_levels=[p for p in moderate if p > current_price],
            technical_signal=technical_signal,
            technical_bias=technical_bias,
            shape_buy_signal=shape_buy,
        )

    def volume_profile(self, candles: Sequence[Candle]) -> Optional[tuple[np.ndarray, np.ndarray]]:
        """Bin centre prices and the volume traded in each bin.

        Each bar's volume is spread evenly across the bins its range covers.
        Returns None when the price range or total volume is zero.
        """
        num_bins = self.num_bins
        price_min = min(c.low for c in candles)
        price_max = max(c.high for c in candles)
        price_range = price_max - price_min
        if price_range <= 0:
            return None

        bin_size = price_range / num_bins
        profile = np.zeros(num_bins)
        bin_prices = np.array([price_min + (i + 0.5) * bin_size for i in range(num_bins)])

        for bar in candles:
            low_bin = max(0, int((bar.low - price_min) / bin_size))
            high_bin = min(num_bins - 1, int((bar.high - price_min) / bin_size))
            covered = max(1, high_bin - low_bin + 1)
            profile[low_bin:high_bin + 1] += bar.volume / covered

        if profile.sum() <= 0:
            return None
        return bin_prices, profile

    @staticmethod
    def _technical(candles: Sequence[Candle]) -> tuple[Direction, str]:
        close = pd.Series([c.close for c in candles], dtype=float)
        rsi = RSIIndicator(close, window=14).rsi().iloc[-1] if len(close) >= 14 else float("nan")
        hist = MACD(close).macd_diff().iloc[-1] if len(close) >= 26 else float("nan")

        if np.isnan(rsi):
            return Direction.NEUTRAL, "Indicators unavailable"

        if np.isnan(hist):
            if rsi > 55:
                bias = Direction.BULLISH
            elif rsi < 45:
                bias = Direction.BEARISH
            else:
                bias = Direction.NEUTRAL
            return bias, f"RSI {rsi:.1f}: {bias.value}"

        if rsi > 50 and hist > 0:
            bias = Direction.BULLISH
        elif rsi < 50 and hist < 0:
            bias = Direction.BEARISH
        else:
            bias = Direction.NEUTRAL
        return bias, f"RSI {rsi:.1f}, MACD histogram {hist:+.3f}: {bias.value}"

    @staticmethod
    def _neutral(symbol: str, timeframe: Timeframe, current_price: float, reason: str) -> ChipAnalysis:
        return ChipAnalysis(
            symbol=symbol,
            timeframe=timeframe,
            current_price=current_price,
            buy_signal_strength=0.0,
            short_signal_strength=0.0,
            overall_recommendation=reason,
            technical_signal=reason,
        )

"""
Confluence — Pydantic Models

All I/O schemas for the analysis core. Collaborators produce these, engines
combine them, the facade returns them. Result models are frozen: every
pipeline stage returns new records instead of mutating old ones.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def clamp_score(value: float, low: float = 0.0, high: float = 100.0) -> float:
    """Clamp a score into [low, high]."""
    return max(low, min(high, float(value)))


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# ──────────────────────────────────────────────
# Enums
# ──────────────────────────────────────────────

class Timeframe(str, Enum):
    """Analysed candle intervals."""
    WEEKLY = "weekly"
    DAILY = "daily"
    HOUR = "1hour"


class Direction(str, Enum):
    """Directional tag attached to every per-timeframe result."""
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


class Alignment(str, Enum):
    """Cross-timeframe agreement label."""
    BULLISH = "bullish"
    BEARISH = "bearish"
    MIXED = "mixed"
    NEUTRAL = "neutral"


class TrendDirection(str, Enum):
    UPTREND = "uptrend"
    DOWNTREND = "downtrend"
    RANGING = "ranging"


class Consistency(str, Enum):
    STRONG = "strong"
    MODERATE = "moderate"
    WEAK = "weak"


class Recommendation(str, Enum):
    """Combined chip recommendation."""
    LONG = "long"
    SHORT = "short"
    WATCH = "watch"


class PatternType(str, Enum):
    """Chart patterns recognised by the detectors."""
    HEAD_AND_SHOULDERS = "head_and_shoulders"
    INVERSE_HEAD_AND_SHOULDERS = "inverse_head_and_shoulders"
    DOUBLE_TOP = "double_top"
    DOUBLE_BOTTOM = "double_bottom"
    TRIPLE_TOP = "triple_top"
    TRIPLE_BOTTOM = "triple_bottom"
    ASCENDING_TRIANGLE = "ascending_triangle"
    DESCENDING_TRIANGLE = "descending_triangle"
    SYMMETRICAL_TRIANGLE = "symmetrical_triangle"
    RISING_WEDGE = "rising_wedge"
    FALLING_WEDGE = "falling_wedge"
    RECTANGLE = "rectangle"
    FLAG = "flag"
    PENNANT = "pennant"
    CUP_AND_HANDLE = "cup_and_handle"
    ROUNDING_BOTTOM = "rounding_bottom"
    ROUNDING_TOP = "rounding_top"


class PatternStatus(str, Enum):
    """Pattern lifecycle."""
    FORMING = "forming"
    COMPLETED = "completed"      # structure finished, no breakout yet
    CONFIRMED = "confirmed"      # breakout confirmed
    FAILED = "failed"            # broke the wrong way


class TradeDirection(str, Enum):
    LONG = "long"
    SHORT = "short"
    NEUTRAL = "neutral"


class SignalGrade(str, Enum):
    """Overall grade of an integrated report."""
    STRONG = "strong"
    MODERATE = "moderate"
    WEAK = "weak"
    NEUTRAL = "neutral"
    CONFLICTING = "conflicting"


# ──────────────────────────────────────────────
# Market Data Models
# ──────────────────────────────────────────────

class Candle(_Frozen):
    """Single OHLCV bar."""
    symbol: str
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float


# ──────────────────────────────────────────────
# Chip Distribution Models
# ──────────────────────────────────────────────

class ChipAnalysis(_Frozen):
    """One timeframe's chip-distribution analysis."""
    symbol: str
    timeframe: Timeframe
    current_price: float
    buy_signal_strength: float = 0.0
    short_signal_strength: float = 0.0
    overall_recommendation: str = ""          # display text only
    recommendation_bias: Direction = Direction.NEUTRAL
    strong_support_levels: list[float] = []
    moderate_support_levels: list[float] = []
    strong_resistance_levels: list[float] = []
    moderate_resistance_levels: list[float] = []
    technical_signal: str = ""                # display text only
    technical_bias: Direction = Direction.NEUTRAL
    shape_buy_signal: bool = False

    @field_validator("buy_signal_strength", "short_signal_strength", mode="before")
    @classmethod
    def _clamp(cls, v):
        return clamp_score(v)

    @property
    def support_levels(self) -> list[float]:
        return [*self.strong_support_levels, *self.moderate_support_levels]

    @property
    def resistance_levels(self) -> list[float]:
        return [*self.strong_resistance_levels, *self.moderate_resistance_levels]


class WeightedTimeframeAnalysis(_Frozen):
    """A timeframe's analysis paired with its combination weight."""
    timeframe: Timeframe
    analysis: ChipAnalysis
    weight: float = Field(default=0.33, ge=0.0, le=1.0)


class CombinedChipResult(_Frozen):
    """Weighted cross-timeframe chip recommendation."""
    symbol: str
    current_price: float
    primary_timeframe: Timeframe
    timeframes: list[WeightedTimeframeAnalysis]

    combined_buy_signal_strength: int
    combined_short_signal_strength: int

    timeframe_alignment: Alignment
    alignment_strength: int

    primary_timeframe_recommendation: str
    combined_recommendation: Recommendation
    recommendation_comment: str

    trend_consistency: Consistency
    trend_direction: TrendDirection

    aggregated_support_levels: list[float] = []
    aggregated_resistance_levels: list[float] = []

    entry_strategy: str = ""
    exit_strategy: str = ""
    stop_loss_levels: list[float] = []
    take_profit_levels: list[float] = []

    timeframe_conflicts: list[str] = []

    short_term_outlook: str = ""
    medium_term_outlook: str = ""
    long_term_outlook: str = ""

    @field_validator(
        "combined_buy_signal_strength",
        "combined_short_signal_strength",
        "alignment_strength",
        mode="before",
    )
    @classmethod
    def _clamp(cls, v):
        return int(clamp_score(v))


# ──────────────────────────────────────────────
# Breakout Detector Models
# ──────────────────────────────────────────────

class BreakSignal(_Frozen):
    """A support/resistance break reported by the breakout detector."""
    level: float
    direction: Direction
    strength: float = 0.0
    bar_index: Optional[int] = None

    @field_validator("strength", mode="before")
    @classmethod
    def _clamp(cls, v):
        return clamp_score(v)


class BreakoutDetection(_Frozen):
    """Support/resistance breakout detector output."""
    dynamic_support: list[float] = []
    dynamic_resistance: list[float] = []
    break_signals: list[BreakSignal] = []


# ──────────────────────────────────────────────
# Pattern Models
# ──────────────────────────────────────────────

class PeakValley(_Frozen):
    """Swing high ("peak") or swing low ("valley")."""
    index: int
    price: float
    timestamp: Optional[datetime] = None
    kind: str  # "peak" | "valley"


class PatternComponent(_Frozen):
    start_index: int
    end_index: int
    key_points: list[PeakValley] = []
    pattern_height: float = 0.0
    breakout_level: float = 0.0
    volume_pattern: str = ""


class PatternResult(_Frozen):
    """A detected chart pattern."""
    pattern_type: PatternType
    status: PatternStatus
    direction: Direction
    reliability: float
    significance: float
    component: PatternComponent

    price_target: Optional[float] = None
    stop_loss: Optional[float] = None

    breakout_expected: bool = False
    breakout_direction: Optional[Direction] = None
    probable_breakout_zone: Optional[tuple[float, float]] = None

    description: str = ""
    trading_implication: str = ""

    @field_validator("reliability", mode="before")
    @classmethod
    def _clamp_reliability(cls, v):
        return clamp_score(v)

    @field_validator("significance", mode="before")
    @classmethod
    def _floor_significance(cls, v):
        # recency bonuses may lift significance above 100
        return max(0.0, float(v))

    @property
    def weighted_score(self) -> float:
        return self.reliability * self.significance


class TimeframePatternAnalysis(_Frozen):
    """Ranked patterns for one timeframe."""
    timeframe: Timeframe
    patterns: list[PatternResult] = []
    dominant_pattern: Optional[PatternResult] = None
    pattern_signal: Direction = Direction.NEUTRAL


class ComprehensivePatternAnalysis(_Frozen):
    timeframe_analyses: list[TimeframePatternAnalysis]
    combined_signal: Direction
    signal_strength: float
    description: str

    @field_validator("signal_strength", mode="before")
    @classmethod
    def _clamp(cls, v):
        return clamp_score(v)


# ──────────────────────────────────────────────
# Trend Reversal Models
# ──────────────────────────────────────────────

class ReversalTargets(_Frozen):
    target1: float          # prior swing extreme (conservative)
    target2: float          # measured move
    target3: float          # 1.618 extension
    risk_reward_ratio1: float
    risk_reward_ratio2: float
    risk_reward_ratio3: float


class TrendReversalSignal(_Frozen):
    """Raw small-vs-large timeframe reversal detector output."""
    small_timeframe: Timeframe
    large_timeframe: Timeframe
    is_reversal: bool = False
    reversal_strength: float = 0.0
    direction: int = 0      # +1 up, -1 down, 0 none
    entry_price: Optional[float] = None
    stop_loss: Optional[float] = None
    targets: Optional[ReversalTargets] = None
    description: str = ""

    @field_validator("reversal_strength", mode="before")
    @classmethod
    def _clamp(cls, v):
        return clamp_score(v)


class TrendReversalVerdict(_Frozen):
    has_signal: bool
    primary_signal: Optional[TrendReversalSignal] = None
    summary: str


# ──────────────────────────────────────────────
# Integrated Report Models
# ──────────────────────────────────────────────

class KeyLevel(_Frozen):
    price: float
    level_type: str      # "support" | "resistance" | "breakout"
    source: str          # "chip" | "pattern"
    timeframe: Optional[Timeframe] = None
    description: str = ""


class IntegratedReport(_Frozen):
    """Chip + pattern (+ reversal) verdict for one symbol."""
    symbol: str
    current_price: float
    direction: TradeDirection
    signal_grade: SignalGrade
    confidence_score: float
    composite_score: float

    chip_weight: float
    pattern_weight: float
    chip_contribution: float
    pattern_contribution: float

    summary: str
    warnings: list[str] = []
    key_levels: list[KeyLevel] = []

    chip: CombinedChipResult
    patterns: ComprehensivePatternAnalysis
    reversal: Optional[TrendReversalVerdict] = None

    @field_validator("confidence_score", "chip_contribution", "pattern_contribution", mode="before")
    @classmethod
    def _clamp(cls, v):
        return clamp_score(v)

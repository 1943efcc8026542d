"""
Configuration Module for the Confluence Advisor

This module centralizes all indicator periods, signal thresholds, risk
multipliers, timeframe profiles and enumerations used throughout the
indicator and scoring pipeline.

All "magic numbers" are defined here to ensure:
1. Single source of truth for all constants
2. Easy modification without touching analysis code
3. Transparency in assumptions and thresholds
4. Consistency across all modules
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Tuple

logger = logging.getLogger(__name__)


# =============================================================================
# INDICATOR PERIODS
# =============================================================================

RSI_PERIOD: int = 14
STOCH_K_PERIOD: int = 14
STOCH_D_PERIOD: int = 3

MACD_FAST: int = 12
MACD_SLOW: int = 26
MACD_SIGNAL: int = 9

EMA_FAST: int = 9
EMA_SLOW: int = 21
SMA_MEDIUM: int = 50
SMA_LONG: int = 200

ADX_PERIOD: int = 14
ATR_PERIOD: int = 14

BB_PERIOD: int = 20
BB_STD_DEV: float = 2.0

OBV_TREND_LOOKBACK: int = 5
FIB_LOOKBACK: int = 100
DIVERGENCE_LOOKBACK: int = 30


# =============================================================================
# SIGNAL THRESHOLDS
# =============================================================================

RSI_OVERBOUGHT: float = 70.0
RSI_OVERSOLD: float = 30.0

STOCH_OVERBOUGHT: float = 80.0
STOCH_OVERSOLD: float = 20.0

ADX_STRONG_TREND: float = 25.0

BB_NEAR_UPPER: float = 0.8
BB_NEAR_LOWER: float = 0.2
BB_SQUEEZE_BANDWIDTH: float = 0.02

# Divergence strength = |oscillator delta| * scale, capped at 100
RSI_DIVERGENCE_SCALE: float = 3.0
MACD_DIVERGENCE_SCALE: float = 50.0
DIVERGENCE_MAX_STRENGTH: float = 100.0

# Breakdown direction dead zone
DIRECTION_DEAD_ZONE: float = 0.1


# =============================================================================
# RISK SIZING
# =============================================================================

ATR_FALLBACK_PCT: float = 0.01
STOP_LOSS_ATR_MULT: float = 1.5
TAKE_PROFIT_ATR_MULTS: Tuple[float, float] = (2.0, 3.0)
SUPPORT_ATR_MULT: float = 2.0
MAX_TAKE_PROFITS: int = 2
MAX_REASONS: int = 5


# =============================================================================
# SIGNAL HISTORY
# =============================================================================

HISTORY_MAX_ENTRIES: int = 20
HISTORY_SCORE_DELTA: int = 10


# =============================================================================
# FORCED-BIAS (PREDICTION) MODE
# =============================================================================

BIAS_SCORE_WEIGHT: float = 0.6
BIAS_MOMENTUM_WEIGHT: float = 0.4
BIAS_SIGMA: float = 0.35


# =============================================================================
# ENUMERATIONS
# =============================================================================

class Timeframe(Enum):
    """Candle timeframes supported by the advisor."""
    M5 = "5m"
    M15 = "15m"
    H1 = "1h"
    H4 = "4h"

    @classmethod
    def parse(cls, label: str) -> 'Timeframe':
        """
        Resolve a timeframe label, falling back to the default.

        Unknown labels are logged and mapped to DEFAULT_TIMEFRAME so a
        stale UI preference never breaks a recomputation.
        """
        for member in cls:
            if member.value == label:
                return member
        logger.warning(f"Unknown timeframe '{label}', using {DEFAULT_TIMEFRAME.value}")
        return DEFAULT_TIMEFRAME


class IndicatorKey(Enum):
    """Closed set of sub-signals aggregated by the confluence scorer."""
    RSI = "rsi"
    MACD_CROSS = "macdCross"
    MACD_DIVERGENCE = "macdDivergence"
    BOLLINGER_BANDS = "bollingerBands"
    STOCHASTIC = "stochastic"
    EMA_CROSS = "emaCross"
    ADX_TREND = "adxTrend"
    VOLUME_OBV = "volumeOBV"

    @property
    def display_name(self) -> str:
        """Human-readable indicator name for breakdown tables."""
        return {
            IndicatorKey.RSI: "RSI (14)",
            IndicatorKey.MACD_CROSS: "MACD Cross",
            IndicatorKey.MACD_DIVERGENCE: "Divergence",
            IndicatorKey.BOLLINGER_BANDS: "Bollinger Bands",
            IndicatorKey.STOCHASTIC: "Stochastic",
            IndicatorKey.EMA_CROSS: "EMA Cross (9/21)",
            IndicatorKey.ADX_TREND: "ADX Trend",
            IndicatorKey.VOLUME_OBV: "Volume/OBV",
        }[self]


class SignalAction(Enum):
    """Trading action derived from the confluence score."""
    STRONG_BUY = "STRONG_BUY"
    BUY = "BUY"
    NEUTRAL = "NEUTRAL"
    SELL = "SELL"
    STRONG_SELL = "STRONG_SELL"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")

    @property
    def is_buy(self) -> bool:
        return self in (SignalAction.STRONG_BUY, SignalAction.BUY)

    @property
    def is_sell(self) -> bool:
        return self in (SignalAction.STRONG_SELL, SignalAction.SELL)

    @property
    def level(self) -> str:
        """Signal level: strong, moderate or neutral."""
        if self in (SignalAction.STRONG_BUY, SignalAction.STRONG_SELL):
            return "strong"
        if self is SignalAction.NEUTRAL:
            return "neutral"
        return "moderate"

    @property
    def color_tag(self) -> str:
        """Renderer color associated with the action."""
        return {
            SignalAction.STRONG_BUY: "#00ff88",
            SignalAction.BUY: "#ffdd00",
            SignalAction.NEUTRAL: "#888888",
            SignalAction.SELL: "#ff8800",
            SignalAction.STRONG_SELL: "#ff3344",
        }[self]


# =============================================================================
# SIGNAL WEIGHTS
# =============================================================================

# MACD crossover carries the most weight; volume only confirms
SIGNAL_WEIGHTS: Dict[IndicatorKey, int] = {
    IndicatorKey.RSI: 15,
    IndicatorKey.MACD_CROSS: 20,
    IndicatorKey.MACD_DIVERGENCE: 15,
    IndicatorKey.BOLLINGER_BANDS: 10,
    IndicatorKey.STOCHASTIC: 10,
    IndicatorKey.EMA_CROSS: 15,
    IndicatorKey.ADX_TREND: 10,
    IndicatorKey.VOLUME_OBV: 5,
}

def require_indicator_keys(mapping: Mapping[IndicatorKey, Any], what: str) -> None:
    """Raise ValueError unless `mapping` has an entry for every IndicatorKey."""
    missing = set(IndicatorKey) - set(mapping)
    if missing:
        raise ValueError(f"Missing {what} for: {sorted(k.value for k in missing)}")


def validate_signal_weights(weights: Mapping[IndicatorKey, int]) -> int:
    """
    Check a weight table covers every indicator and sums to 100.

    Returns
    -------
    int
        The total weight
    """
    require_indicator_keys(weights, "weights")
    total = sum(weights.values())
    if total != 100:
        raise ValueError(f"Signal weights must sum to 100, got {total}")
    return total


TOTAL_WEIGHT: int = validate_signal_weights(SIGNAL_WEIGHTS)


# =============================================================================
# TIMEFRAME PROFILES
# =============================================================================

@dataclass(frozen=True)
class TimeframeProfile:
    """Candle duration and swing sizing for one timeframe."""
    label: str
    candles_label: str
    candle_minutes: int
    swing_candles: int
    refresh_seconds: int


TIMEFRAME_PROFILES: Dict[Timeframe, TimeframeProfile] = {
    Timeframe.M5: TimeframeProfile("5 min", "1–3 candles", 5, 3, 30),
    Timeframe.M15: TimeframeProfile("15 min", "2–4 candles", 15, 4, 60),
    Timeframe.H1: TimeframeProfile("1 hour", "2–6 candles", 60, 4, 120),
    Timeframe.H4: TimeframeProfile("4 hour", "2–4 candles", 240, 3, 300),
}

DEFAULT_TIMEFRAME: Timeframe = Timeframe.M15


# =============================================================================
# ENGINE SETTINGS
# =============================================================================

@dataclass(frozen=True)
class EngineSettings:
    """
    Lookback configuration for the indicator engine.

    Defaults mirror the module constants; override individual periods to
    experiment without editing the constants above.
    """
    rsi_period: int = RSI_PERIOD
    stoch_k_period: int = STOCH_K_PERIOD
    stoch_d_period: int = STOCH_D_PERIOD
    macd_fast: int = MACD_FAST
    macd_slow: int = MACD_SLOW
    macd_signal: int = MACD_SIGNAL
    ema_fast: int = EMA_FAST
    ema_slow: int = EMA_SLOW
    sma_medium: int = SMA_MEDIUM
    sma_long: int = SMA_LONG
    adx_period: int = ADX_PERIOD
    atr_period: int = ATR_PERIOD
    bb_period: int = BB_PERIOD
    bb_std_dev: float = BB_STD_DEV
    obv_trend_lookback: int = OBV_TREND_LOOKBACK
    fib_lookback: int = FIB_LOOKBACK
    divergence_lookback: int = DIVERGENCE_LOOKBACK

    @property
    def min_full_history(self) -> int:
        """Bars required for every indicator to be defined."""
        return max(self.sma_long, 2 * self.adx_period + 1, self.fib_lookback)

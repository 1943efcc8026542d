"""
Confluence Scoring for Technical Signals

Maps each indicator family onto a directional sub-signal in [-1, 1] and
aggregates the sub-signals into a weighted confluence score in [-100, 100].

Scoring pipeline:
    IndicatorSnapshot -> SignalVector (one entry per IndicatorKey)
                      -> weighted sum -> half-up rounded score
                      -> SignalAction

Threshold cascades are expressed as ordered band tables so the thresholds
live in data and the evaluation is one loop.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np
from scipy.stats import norm

from confluence_advisor.config import (
    BIAS_MOMENTUM_WEIGHT,
    BIAS_SCORE_WEIGHT,
    BIAS_SIGMA,
    DIRECTION_DEAD_ZONE,
    SIGNAL_WEIGHTS,
    TOTAL_WEIGHT,
    IndicatorKey,
    SignalAction,
    require_indicator_keys,
)
from confluence_advisor.technical_indicators import (
    DivergenceSignal,
    DivergenceType,
    IndicatorSnapshot,
    ObvTrend,
)

logger = logging.getLogger(__name__)


# =============================================================================
# BAND TABLES
# =============================================================================

@dataclass(frozen=True)
class BandTable:
    """
    Ordered threshold bands for one oscillator.

    `below` is scanned first in ascending boundary order (value < boundary
    yields the paired signal), then `above` in descending order
    (value > boundary). Values between both sides map to 0.
    """
    below: Tuple[Tuple[float, float], ...]
    above: Tuple[Tuple[float, float], ...]

    def evaluate(self, value: Optional[float]) -> float:
        if value is None:
            return 0.0
        for boundary, signal in self.below:
            if value < boundary:
                return signal
        for boundary, signal in self.above:
            if value > boundary:
                return signal
        return 0.0


RSI_BANDS = BandTable(
    below=((20.0, 1.0), (30.0, 0.7), (40.0, 0.3)),
    above=((80.0, -1.0), (70.0, -0.7), (60.0, -0.3)),
)

PERCENT_B_BANDS = BandTable(
    below=((0.0, 1.0), (0.05, 0.8), (0.2, 0.4)),
    above=((1.0, -1.0), (0.95, -0.8), (0.8, -0.4)),
)


# =============================================================================
# RESULT TYPES
# =============================================================================

class SignalDirection(Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"

    @classmethod
    def from_signal(cls, signal: float) -> 'SignalDirection':
        if signal > DIRECTION_DEAD_ZONE:
            return cls.BULLISH
        if signal < -DIRECTION_DEAD_ZONE:
            return cls.BEARISH
        return cls.NEUTRAL


class BiasDirection(Enum):
    UP = "UP"
    DOWN = "DOWN"

    @property
    def action(self) -> SignalAction:
        return SignalAction.BUY if self is BiasDirection.UP else SignalAction.SELL


@dataclass(frozen=True)
class BreakdownEntry:
    """Contribution of one indicator to the confluence score."""
    key: IndicatorKey
    signal: float
    weight: int
    contribution: int
    direction: SignalDirection

    @property
    def name(self) -> str:
        return self.key.display_name


@dataclass(frozen=True)
class ConfluenceResult:
    score: int
    action: SignalAction
    breakdown: Tuple[BreakdownEntry, ...]

    def ranked(self) -> List[BreakdownEntry]:
        """Breakdown ordered by absolute contribution, largest first."""
        return sorted(self.breakdown, key=lambda e: abs(e.contribution), reverse=True)


@dataclass(frozen=True)
class BiasPrediction:
    """Forced up/down call blended from score and short-term momentum."""
    direction: BiasDirection
    bias: float
    probability: float


SignalVector = Dict[IndicatorKey, float]


def round_half_up(value: float) -> int:
    """Round .5 toward +infinity, ignoring float noise past 9 decimals."""
    return int(math.floor(round(value, 9) + 0.5))


def _clamp(value: float) -> float:
    return max(-1.0, min(1.0, value))


# =============================================================================
# PER-FAMILY SUB-SIGNALS
# =============================================================================

def rsi_signal(snapshot: IndicatorSnapshot) -> float:
    return RSI_BANDS.evaluate(snapshot.rsi.value)


def macd_cross_signal(snapshot: IndicatorSnapshot) -> float:
    """
    Fresh MACD/signal crossover first, histogram momentum otherwise.

    Histogram above zero and growing scores 0.5, above zero but fading 0.2;
    the bearish side mirrors this.
    """
    macd = snapshot.macd
    if macd.macd_line is None:
        return 0.0
    if macd.is_bullish_cross:
        return 1.0
    if macd.is_bearish_cross:
        return -1.0

    hist, prev = macd.histogram, macd.prev_histogram
    if hist is None:
        return 0.0
    if hist > 0:
        return 0.5 if prev is not None and hist > prev else 0.2
    if hist < 0:
        return -0.5 if prev is not None and hist < prev else -0.2
    return 0.0


def _divergence_value(divergence: DivergenceSignal, base: float, normalizer: float) -> float:
    magnitude = base + divergence.strength / normalizer
    if divergence.type is DivergenceType.BULLISH:
        return magnitude
    if divergence.type is DivergenceType.BEARISH:
        return -magnitude
    return 0.0


def divergence_signal(snapshot: IndicatorSnapshot) -> float:
    """MACD-histogram divergence, falling back to a weaker RSI divergence."""
    if snapshot.macd.divergence.is_active:
        return _divergence_value(snapshot.macd.divergence, 0.5, 200.0)
    return _divergence_value(snapshot.rsi.divergence, 0.4, 250.0)


def bollinger_signal(snapshot: IndicatorSnapshot) -> float:
    return PERCENT_B_BANDS.evaluate(snapshot.bollinger.percent_b)


def stochastic_signal(snapshot: IndicatorSnapshot) -> float:
    stoch = snapshot.stochastic
    if stoch.k is None:
        return 0.0
    if stoch.is_oversold:
        return 1.0 if stoch.is_bullish_cross else 0.5
    if stoch.is_overbought:
        return -1.0 if stoch.is_bearish_cross else -0.5
    if stoch.is_bullish_cross:
        return 0.3
    if stoch.is_bearish_cross:
        return -0.3
    return 0.0


def ema_cross_signal(snapshot: IndicatorSnapshot) -> float:
    """
    EMA fast/slow relationship, boosted by 0.2 when price agrees with SMA200.

    A fresh cross scores +/-1, a continuing relationship +/-0.3.
    """
    ma = snapshot.moving_averages
    if ma.ema_fast is None or ma.ema_slow is None:
        return 0.0

    if ma.fast_above_slow and not ma.prev_fast_above_slow:
        signal = 1.0
    elif not ma.fast_above_slow and ma.prev_fast_above_slow:
        signal = -1.0
    else:
        signal = 0.3 if ma.fast_above_slow else -0.3

    if ma.sma_long is not None:
        if ma.price_above_sma_long and signal > 0:
            signal = _clamp(signal + 0.2)
        elif not ma.price_above_sma_long and signal < 0:
            signal = _clamp(signal - 0.2)
    return signal


def adx_signal(snapshot: IndicatorSnapshot) -> float:
    adx = snapshot.adx
    if adx.value is None or not adx.is_strong:
        return 0.0
    return 0.7 if adx.is_bullish else -0.7


def volume_signal(snapshot: IndicatorSnapshot) -> float:
    """OBV trend direction, boosted by 0.3 when the VWAP side agrees."""
    if snapshot.obv.trend is ObvTrend.RISING:
        signal = 0.5
    elif snapshot.obv.trend is ObvTrend.FALLING:
        signal = -0.5
    else:
        signal = 0.0

    if snapshot.vwap.price_above_vwap and signal > 0:
        signal = _clamp(signal + 0.3)
    elif not snapshot.vwap.price_above_vwap and signal < 0:
        signal = _clamp(signal - 0.3)
    return signal


SIGNAL_FUNCTIONS: Dict[IndicatorKey, Callable[[IndicatorSnapshot], float]] = {
    IndicatorKey.RSI: rsi_signal,
    IndicatorKey.MACD_CROSS: macd_cross_signal,
    IndicatorKey.MACD_DIVERGENCE: divergence_signal,
    IndicatorKey.BOLLINGER_BANDS: bollinger_signal,
    IndicatorKey.STOCHASTIC: stochastic_signal,
    IndicatorKey.EMA_CROSS: ema_cross_signal,
    IndicatorKey.ADX_TREND: adx_signal,
    IndicatorKey.VOLUME_OBV: volume_signal,
}

require_indicator_keys(SIGNAL_FUNCTIONS, "signal functions")


def build_signal_vector(snapshot: IndicatorSnapshot) -> SignalVector:
    """Evaluate every indicator family; the result covers all IndicatorKeys."""
    return {key: SIGNAL_FUNCTIONS[key](snapshot) for key in IndicatorKey}


# =============================================================================
# SCORING
# =============================================================================

def classify_action(score: float) -> SignalAction:
    """
    Partition the score axis into actions.

    >= 60 STRONG_BUY, [30, 60) BUY, (-30, 30) NEUTRAL, (-60, -30] SELL,
    <= -60 STRONG_SELL.
    """
    if score >= 60:
        return SignalAction.STRONG_BUY
    if score >= 30:
        return SignalAction.BUY
    if score > -30:
        return SignalAction.NEUTRAL
    if score > -60:
        return SignalAction.SELL
    return SignalAction.STRONG_SELL


class ConfluenceScorer:
    """
    Weighted aggregation of indicator sub-signals.

    Parameters
    ----------
    weights : Dict[IndicatorKey, int], optional
        Weight per indicator; defaults to SIGNAL_WEIGHTS
    """

    def __init__(self, weights: Optional[Dict[IndicatorKey, int]] = None):
        self.weights = dict(weights or SIGNAL_WEIGHTS)
        require_indicator_keys(self.weights, "weights")
        self.total_weight = sum(self.weights.values()) or TOTAL_WEIGHT

    def score_vector(self, signals: SignalVector) -> ConfluenceResult:
        """
        Score an explicit signal vector.

        Returns
        -------
        ConfluenceResult
            Score in [-100, 100], action and per-indicator breakdown
        """
        weighted_sum = sum(signals[key] * self.weights[key] for key in IndicatorKey)
        score = round_half_up(weighted_sum / self.total_weight * 100)

        breakdown = tuple(
            BreakdownEntry(
                key=key,
                signal=signals[key],
                weight=self.weights[key],
                contribution=round_half_up(signals[key] * self.weights[key]),
                direction=SignalDirection.from_signal(signals[key]),
            )
            for key in IndicatorKey
        )
        return ConfluenceResult(score=score, action=classify_action(score), breakdown=breakdown)

    def score(self, snapshot: IndicatorSnapshot) -> ConfluenceResult:
        signals = build_signal_vector(snapshot)
        logger.debug("Sub-signals: " + ", ".join(f"{k.value}={v:+.2f}" for k, v in signals.items()))
        return self.score_vector(signals)


# =============================================================================
# FORCED-BIAS PREDICTION
# =============================================================================

def momentum_component(snapshot: IndicatorSnapshot) -> float:
    """
    Short-term momentum in [-1, 1].

    Mean of the available inputs: MACD histogram slope sign, centred RSI
    and centred Stochastic %K.
    """
    inputs = []
    hist, prev = snapshot.macd.histogram, snapshot.macd.prev_histogram
    if hist is not None and prev is not None:
        inputs.append(float(np.sign(hist - prev)))
    if snapshot.rsi.value is not None:
        inputs.append((snapshot.rsi.value - 50.0) / 50.0)
    if snapshot.stochastic.k is not None:
        inputs.append((snapshot.stochastic.k - 50.0) / 50.0)
    if not inputs:
        return 0.0
    return float(np.mean(inputs))


def predict_bias(snapshot: IndicatorSnapshot, result: ConfluenceResult) -> BiasPrediction:
    """
    Force an up/down call for short-horizon prediction.

    bias = 0.6 * score / 100 + 0.4 * momentum
    probability = Phi(|bias| / sigma) * 100, always >= 50

    Parameters
    ----------
    snapshot : IndicatorSnapshot
        Indicator state the result was scored from
    result : ConfluenceResult
        Regular confluence result

    Returns
    -------
    BiasPrediction
        Direction UP when bias >= 0, DOWN otherwise
    """
    bias = BIAS_SCORE_WEIGHT * result.score / 100.0 + BIAS_MOMENTUM_WEIGHT * momentum_component(snapshot)
    bias = _clamp(bias)
    direction = BiasDirection.UP if bias >= 0 else BiasDirection.DOWN
    probability = round(float(norm.cdf(abs(bias) / BIAS_SIGMA)) * 100.0, 1)
    return BiasPrediction(direction=direction, bias=round(bias, 4), probability=probability)

"""
Technical Indicator Engine for Single-Instrument Signal Advisory

Indicator Computation, Divergence Detection and Snapshot Construction

INDICATOR ARCHITECTURE
    This module turns an ordered OHLCV candle sequence into one immutable
    snapshot of "current" indicator state. Indicators are organized into
    families, each providing a distinct analytical perspective:

    Family 1 - MOMENTUM OSCILLATORS
        - RSI (Relative Strength Index): Wilder's momentum oscillator [0-100]
        - Stochastic Oscillator: Lane's %K/%D momentum system

    Family 2 - TREND INDICATORS
        - MACD: Moving Average Convergence Divergence with histogram
        - EMA 9/21 and SMA 50/200 crossover state
        - ADX/DMI: Average Directional Index with +DI/-DI

    Family 3 - VOLATILITY SYSTEMS
        - Bollinger Bands: %B, normalized bandwidth, squeeze flag
        - ATR (Average True Range): unit of volatility for risk sizing

    Family 4 - VOLUME ANALYSIS
        - VWAP: cumulative volume-weighted average price
        - OBV (On-Balance Volume) with trend classification

    Family 5 - PRICE LEVELS
        - Fibonacci retracement levels from the trailing swing window

SMOOTHING CONVENTIONS
    - EMA is seeded with the SMA of the first `period` values
    - Wilder smoothing is seeded with a simple mean, then
      (prev * (period - 1) + value) / period

UNDEFINED VALUES
    Insufficient history yields NaN inside series and None in the snapshot.
    Division-by-zero situations resolve to sentinels (Stochastic 50, RSI 100,
    zero-width bands leave %B and bandwidth undefined) so non-finite numbers
    never reach the scoring layer.

DIVERGENCE DETECTION
    - Bullish: price lower low, oscillator higher low
    - Bearish: price higher high, oscillator lower high
    Only the two most recent pivots of each kind are compared.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from confluence_advisor.config import (
    ADX_STRONG_TREND,
    BB_NEAR_LOWER,
    BB_NEAR_UPPER,
    BB_SQUEEZE_BANDWIDTH,
    DIVERGENCE_LOOKBACK,
    DIVERGENCE_MAX_STRENGTH,
    MACD_DIVERGENCE_SCALE,
    RSI_DIVERGENCE_SCALE,
    RSI_OVERBOUGHT,
    RSI_OVERSOLD,
    STOCH_OVERBOUGHT,
    STOCH_OVERSOLD,
    EngineSettings,
)

# Module-level logger
logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

CANDLE_COLUMNS: Tuple[str, ...] = ("time", "open", "high", "low", "close", "volume")

FIBONACCI_RATIOS: Tuple[float, ...] = (0.0, 0.236, 0.382, 0.5, 0.618, 0.786, 1.0)
FIBONACCI_LABELS: Tuple[str, ...] = ("0%", "23.6%", "38.2%", "50%", "61.8%", "78.6%", "100%")


# =============================================================================
# EXCEPTIONS
# =============================================================================

class CandleDataError(ValueError):
    """Raised when the candle sequence cannot be analyzed at all."""


# =============================================================================
# ENUMERATIONS
# =============================================================================

class DivergenceType(Enum):
    """Price-oscillator divergence classification."""
    BULLISH = "bullish"     # Price LL, oscillator HL
    BEARISH = "bearish"     # Price HH, oscillator LH
    NONE = "none"


class ObvTrend(Enum):
    """On-Balance Volume direction versus the lookback bar."""
    RISING = "rising"
    FALLING = "falling"
    NEUTRAL = "neutral"


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class Candle:
    """One OHLCV bar. Timestamps ascend across a sequence."""
    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True)
class Pivot:
    """Local price extreme paired with the oscillator value at that bar."""
    index: int
    price: float
    value: float


@dataclass(frozen=True)
class DivergenceSignal:
    """Detected divergence between price and an oscillator."""
    type: DivergenceType
    strength: float                          # 0 to 100

    @classmethod
    def none(cls) -> 'DivergenceSignal':
        return cls(type=DivergenceType.NONE, strength=0.0)

    @property
    def is_active(self) -> bool:
        return self.type is not DivergenceType.NONE


@dataclass(frozen=True)
class FibonacciLevel:
    ratio: float
    price: float
    label: str


@dataclass(frozen=True)
class FibonacciLevels:
    """
    Retracement levels from the trailing swing window.

    In an uptrend levels are projected down from the swing high; in a
    downtrend they are projected up from the swing low.
    """
    swing_high: float
    swing_low: float
    is_uptrend: bool
    levels: Tuple[FibonacciLevel, ...]


@dataclass(frozen=True)
class PriceState:
    current: float
    open: float
    high: float
    low: float
    volume: float


@dataclass(frozen=True)
class MovingAverageState:
    """EMA fast/slow and SMA medium/long with crossover flags."""
    ema_fast: Optional[float]
    ema_slow: Optional[float]
    sma_medium: Optional[float]
    sma_long: Optional[float]
    fast_above_slow: bool
    prev_fast_above_slow: bool
    price_above_sma_medium: bool
    price_above_sma_long: bool


@dataclass(frozen=True)
class RsiState:
    value: Optional[float]
    prev: Optional[float]
    is_overbought: bool
    is_oversold: bool
    divergence: DivergenceSignal


@dataclass(frozen=True)
class MacdState:
    macd_line: Optional[float]
    signal_line: Optional[float]
    histogram: Optional[float]
    prev_histogram: Optional[float]
    is_bullish_cross: bool
    is_bearish_cross: bool
    is_above_zero: bool
    divergence: DivergenceSignal


@dataclass(frozen=True)
class BollingerState:
    upper: Optional[float]
    middle: Optional[float]
    lower: Optional[float]
    percent_b: Optional[float]
    bandwidth: Optional[float]
    is_near_upper: bool
    is_near_lower: bool
    is_squeeze: bool


@dataclass(frozen=True)
class StochasticState:
    k: Optional[float]
    d: Optional[float]
    is_overbought: bool
    is_oversold: bool
    is_bullish_cross: bool
    is_bearish_cross: bool


@dataclass(frozen=True)
class AdxState:
    value: Optional[float]
    plus_di: Optional[float]
    minus_di: Optional[float]
    is_strong: bool
    is_bullish: bool


@dataclass(frozen=True)
class AtrState:
    value: Optional[float]
    percent: Optional[float]                 # ATR as % of price


@dataclass(frozen=True)
class VwapState:
    value: Optional[float]
    price_above_vwap: bool


@dataclass(frozen=True)
class ObvState:
    value: Optional[float]
    trend: ObvTrend


@dataclass(frozen=True)
class IndicatorSnapshot:
    """
    Latest indicator state for one candle sequence.

    Created fresh on every recomputation. The `frame` attribute holds every
    computed series aligned to the input bars and is excluded from equality
    so two snapshots of the same input compare equal field by field.
    """
    time: int
    bars: int
    price: PriceState
    moving_averages: MovingAverageState
    rsi: RsiState
    macd: MacdState
    bollinger: BollingerState
    stochastic: StochasticState
    adx: AdxState
    atr: AtrState
    vwap: VwapState
    obv: ObvState
    fibonacci: FibonacciLevels
    frame: pd.DataFrame = field(compare=False, repr=False)


# =============================================================================
# INPUT NORMALIZATION
# =============================================================================

CandleInput = Union[pd.DataFrame, Sequence[Candle], Iterable[Mapping[str, Any]]]


def candles_to_frame(candles: CandleInput) -> pd.DataFrame:
    """
    Normalize a candle sequence into an OHLCV frame with a RangeIndex.

    Parameters
    ----------
    candles : DataFrame, sequence of Candle, or iterable of mappings
        Ordered bars, ascending by time

    Returns
    -------
    pd.DataFrame
        Float columns open/high/low/close/volume and integer time

    Raises
    ------
    CandleDataError
        If the sequence is empty or required columns are missing
    """
    if isinstance(candles, pd.DataFrame):
        df = candles.rename(columns=str.lower)
    else:
        rows = [
            {name: getattr(c, name) for name in CANDLE_COLUMNS} if isinstance(c, Candle) else dict(c)
            for c in candles
        ]
        df = pd.DataFrame(rows)

    if df.empty:
        raise CandleDataError("Cannot analyze an empty candle sequence")

    missing = [c for c in CANDLE_COLUMNS if c not in df.columns]
    if missing:
        raise CandleDataError(f"Missing required columns: {missing}")

    df = df.loc[:, list(CANDLE_COLUMNS)].reset_index(drop=True)
    df["time"] = df["time"].astype("int64")
    for column in CANDLE_COLUMNS[1:]:
        df[column] = df[column].astype(float)
    return df


def frame_to_candles(df: pd.DataFrame) -> List[Candle]:
    """Convert an OHLCV frame back into Candle records."""
    df = candles_to_frame(df)
    return [
        Candle(int(row.time), row.open, row.high, row.low, row.close, row.volume)
        for row in df.itertuples(index=False)
    ]


def _value_at(series: pd.Series, position: int) -> Optional[float]:
    """Value at a position, or None when out of range or undefined."""
    if position < 0 or position >= len(series):
        return None
    value = series.iloc[position]
    if pd.isna(value):
        return None
    return float(value)


def _is_cross(fast: pd.Series, slow: pd.Series, last: int, bullish: bool) -> bool:
    """Fresh crossover between the previous and the last bar."""
    values = (
        _value_at(fast, last), _value_at(slow, last),
        _value_at(fast, last - 1), _value_at(slow, last - 1),
    )
    if any(v is None for v in values):
        return False
    cur_fast, cur_slow, prev_fast, prev_slow = values
    if bullish:
        return cur_fast > cur_slow and prev_fast <= prev_slow
    return cur_fast < cur_slow and prev_fast >= prev_slow


def _is_above(fast: pd.Series, slow: pd.Series, position: int) -> bool:
    fast_value, slow_value = _value_at(fast, position), _value_at(slow, position)
    if fast_value is None or slow_value is None:
        return False
    return fast_value > slow_value


# =============================================================================
# SERIES MATH
# =============================================================================

class SeriesMath:
    """
    Smoothing primitives shared by every oscillator.

    All functions return a series aligned to the input index with NaN at
    positions that lack enough history.
    """

    @staticmethod
    def sma(series: pd.Series, period: int) -> pd.Series:
        """Arithmetic mean of the trailing `period` values."""
        return series.rolling(window=period, min_periods=period).mean()

    @staticmethod
    def ema(series: pd.Series, period: int) -> pd.Series:
        """
        Exponential moving average seeded with an SMA.

        EMA[period-1] = mean(x[0:period])
        EMA[i] = alpha * x[i] + (1 - alpha) * EMA[i-1], alpha = 2 / (period + 1)

        Parameters
        ----------
        series : pd.Series
            Input values without gaps
        period : int
            Smoothing period

        Returns
        -------
        pd.Series
            EMA values, NaN before the seed index
        """
        smoothed = SeriesMath.seeded_ewm(series.to_numpy(dtype=float), period, 2.0 / (period + 1))
        return pd.Series(smoothed, index=series.index)

    @staticmethod
    def wilder_smooth(values: np.ndarray, period: int) -> np.ndarray:
        """
        Wilder's smoothing (weight 1/period).

        Seed is the simple average of the first `period` values; each
        subsequent value is (prev * (period - 1) + x) / period.
        """
        return SeriesMath.seeded_ewm(np.asarray(values, dtype=float), period, 1.0 / period)

    @staticmethod
    def seeded_ewm(values: np.ndarray, period: int, alpha: float) -> np.ndarray:
        """
        Recursive exponential average started from an SMA seed.

        Positions before `period - 1` are NaN, the seed sits at
        `period - 1` and pandas `ewm(adjust=False)` carries it forward.
        """
        seeded = np.full(len(values), np.nan)
        if period <= 0 or len(values) < period:
            return seeded

        seeded[period - 1] = values[:period].mean()
        seeded[period:] = values[period:]
        return pd.Series(seeded).ewm(alpha=alpha, adjust=False).mean().to_numpy()

    @staticmethod
    def true_range(high: pd.Series, low: pd.Series, close: pd.Series) -> pd.Series:
        """
        True Range = max(H - L, |H - prevC|, |L - prevC|).

        The first bar has no previous close, so its TR is H - L.
        """
        prev_close = close.shift(1)
        ranges = pd.concat(
            [high - low, (high - prev_close).abs(), (low - prev_close).abs()],
            axis=1,
        )
        return ranges.max(axis=1)


# =============================================================================
# MOMENTUM OSCILLATORS
# =============================================================================

class MomentumIndicators:
    """
    Momentum oscillator calculations.

    Indicators implemented:
    - RSI (Relative Strength Index): Wilder, 1978
    - Stochastic Oscillator: Lane, 1950s
    """

    @staticmethod
    def calculate_rsi(close: pd.Series, period: int) -> pd.Series:
        """
        Calculate Relative Strength Index using Wilder's smoothing.

        RSI = 100 - (100 / (1 + RS))
        where RS = Average Gain / Average Loss

        An average loss of zero yields RSI = 100.

        Parameters
        ----------
        close : pd.Series
            Closing prices
        period : int
            Lookback period

        Returns
        -------
        pd.Series
            RSI values [0, 100], first defined at index `period`
        """
        values = close.to_numpy(dtype=float)
        result = np.full(len(values), np.nan)
        if len(values) < period + 1:
            return pd.Series(result, index=close.index)

        delta = np.diff(values)
        gains = np.where(delta > 0, delta, 0.0)
        losses = np.where(delta < 0, -delta, 0.0)

        avg_gain = SeriesMath.wilder_smooth(gains, period)
        avg_loss = SeriesMath.wilder_smooth(losses, period)

        with np.errstate(divide="ignore", invalid="ignore"):
            rsi = np.where(avg_loss == 0, 100.0, 100.0 - 100.0 / (1.0 + avg_gain / avg_loss))
        rsi[np.isnan(avg_gain)] = np.nan

        result[1:] = rsi
        return pd.Series(result, index=close.index)

    @staticmethod
    def calculate_stochastic(
        high: pd.Series,
        low: pd.Series,
        close: pd.Series,
        k_period: int,
        d_period: int
    ) -> Tuple[pd.Series, pd.Series]:
        """
        Calculate Stochastic Oscillator (%K and %D).

        %K = 100 * (Close - Lowest Low) / (Highest High - Lowest Low)
        %D = SMA(%K, d_period)

        A zero high-low range yields %K = 50.

        Returns
        -------
        Tuple[pd.Series, pd.Series]
            (%K, %D) both in range [0, 100]
        """
        lowest_low = low.rolling(window=k_period, min_periods=k_period).min()
        highest_high = high.rolling(window=k_period, min_periods=k_period).max()

        range_hl = highest_high - lowest_low
        percent_k = 100.0 * (close - lowest_low) / range_hl.where(range_hl > 0)
        percent_k = percent_k.mask(range_hl == 0, 50.0)

        percent_d = SeriesMath.sma(percent_k, d_period)
        return percent_k, percent_d


# =============================================================================
# TREND INDICATORS
# =============================================================================

class TrendIndicators:
    """
    Trend-following indicator calculations.

    Indicators implemented:
    - MACD: Appel, 1979
    - Moving average crossovers (EMA 9/21, SMA 50/200)
    - ADX/DMI: Wilder, 1978
    """

    @staticmethod
    def calculate_macd(
        close: pd.Series,
        fast: int,
        slow: int,
        signal: int
    ) -> Tuple[pd.Series, pd.Series, pd.Series]:
        """
        Calculate MACD, Signal line, and Histogram.

        MACD = EMA(fast) - EMA(slow)
        Signal = EMA(MACD, signal_period), computed over the defined part
                 of the MACD line and re-aligned to the original bars
        Histogram = MACD - Signal

        Returns
        -------
        Tuple[pd.Series, pd.Series, pd.Series]
            (MACD line, Signal line, Histogram)
        """
        ema_fast = SeriesMath.ema(close, fast)
        ema_slow = SeriesMath.ema(close, slow)

        macd_line = ema_fast - ema_slow
        signal_line = SeriesMath.ema(macd_line.dropna(), signal).reindex(close.index)
        histogram = macd_line - signal_line

        return macd_line, signal_line, histogram

    @staticmethod
    def calculate_adx_dmi(
        high: pd.Series,
        low: pd.Series,
        close: pd.Series,
        period: int
    ) -> Tuple[pd.Series, pd.Series, pd.Series]:
        """
        Calculate ADX and Directional Movement indicators.

        Smoothed sums of TR, +DM and -DM are seeded with the sum of the
        first `period` bars and updated Wilder-style (s - s/period + x)
        from bar `period + 1`, computed as `period` times the Wilder
        average. ADX is the Wilder-smoothed average of DX,
        first defined at index 2 * period.

        Parameters
        ----------
        high, low, close : pd.Series
            OHLC data
        period : int
            Smoothing period

        Returns
        -------
        Tuple[pd.Series, pd.Series, pd.Series]
            (ADX, +DI, -DI); all NaN when fewer than 2 * period + 1 bars
        """
        n = len(close)
        adx = np.full(n, np.nan)
        plus_di = np.full(n, np.nan)
        minus_di = np.full(n, np.nan)

        if n < 2 * period + 1:
            return (
                pd.Series(adx, index=close.index),
                pd.Series(plus_di, index=close.index),
                pd.Series(minus_di, index=close.index),
            )

        h = high.to_numpy(dtype=float)
        l = low.to_numpy(dtype=float)
        c = close.to_numpy(dtype=float)

        # Element j describes bar j + 1
        tr = np.maximum.reduce([h[1:] - l[1:], np.abs(h[1:] - c[:-1]), np.abs(l[1:] - c[:-1])])
        up_move = h[1:] - h[:-1]
        down_move = l[:-1] - l[1:]
        plus_dm = np.where((up_move > down_move) & (up_move > 0), up_move, 0.0)
        minus_dm = np.where((down_move > up_move) & (down_move > 0), down_move, 0.0)

        # Wilder sum = period * Wilder average; the first update uses element `period`
        smooth_tr = period * SeriesMath.wilder_smooth(tr, period)[period:]
        smooth_plus = period * SeriesMath.wilder_smooth(plus_dm, period)[period:]
        smooth_minus = period * SeriesMath.wilder_smooth(minus_dm, period)[period:]

        pdi = np.divide(100.0 * smooth_plus, smooth_tr, out=np.zeros_like(smooth_tr), where=smooth_tr > 0)
        mdi = np.divide(100.0 * smooth_minus, smooth_tr, out=np.zeros_like(smooth_tr), where=smooth_tr > 0)
        plus_di[period + 1:] = pdi
        minus_di[period + 1:] = mdi

        di_sum = pdi + mdi
        dx = np.divide(100.0 * np.abs(pdi - mdi), di_sum, out=np.zeros_like(di_sum), where=di_sum > 0)

        # dx[0] describes bar period + 1
        adx[period + 1:] = SeriesMath.wilder_smooth(dx, period)

        return (
            pd.Series(adx, index=close.index),
            pd.Series(plus_di, index=close.index),
            pd.Series(minus_di, index=close.index),
        )


# =============================================================================
# VOLATILITY SYSTEMS
# =============================================================================

class VolatilityIndicators:
    """
    Volatility band and range calculations.

    Indicators implemented:
    - Bollinger Bands: Bollinger, 1983
    - ATR (Average True Range): Wilder, 1978
    """

    @staticmethod
    def calculate_bollinger_bands(
        close: pd.Series,
        period: int,
        std_dev: float
    ) -> Tuple[pd.Series, pd.Series, pd.Series, pd.Series, pd.Series]:
        """
        Calculate Bollinger Bands.

        Middle = SMA(close, period)
        Upper/Lower = Middle +/- std_dev * population StdDev(close, period)
        %B = (Price - Lower) / (Upper - Lower)
        Bandwidth = (Upper - Lower) / Middle

        %B and bandwidth stay NaN when the bands have zero width.

        Returns
        -------
        Tuple[pd.Series, pd.Series, pd.Series, pd.Series, pd.Series]
            (Upper, Middle, Lower, %B, Bandwidth)
        """
        middle = SeriesMath.sma(close, period)
        std = close.rolling(window=period, min_periods=period).std(ddof=0)

        upper = middle + std_dev * std
        lower = middle - std_dev * std

        width = upper - lower
        degenerate = width <= np.finfo(float).eps * middle.abs()
        width = width.mask(degenerate)

        percent_b = (close - lower) / width
        bandwidth = width / middle.where(middle != 0)

        return upper, middle, lower, percent_b, bandwidth

    @staticmethod
    def calculate_atr(
        high: pd.Series,
        low: pd.Series,
        close: pd.Series,
        period: int
    ) -> pd.Series:
        """
        Calculate Average True Range.

        First value is the mean of the first `period` true ranges (index
        period - 1); subsequent values use Wilder smoothing.
        """
        tr = SeriesMath.true_range(high, low, close)
        return pd.Series(SeriesMath.wilder_smooth(tr.to_numpy(), period), index=close.index)


# =============================================================================
# VOLUME ANALYSIS
# =============================================================================

class VolumeIndicators:
    """
    Volume flow calculations.

    Indicators implemented:
    - VWAP (cumulative from series start, no session reset)
    - OBV (On-Balance Volume): Granville, 1963
    """

    @staticmethod
    def calculate_vwap(
        high: pd.Series,
        low: pd.Series,
        close: pd.Series,
        volume: pd.Series
    ) -> pd.Series:
        """
        VWAP = cumsum(Typical Price * Volume) / cumsum(Volume)

        Typical Price = (High + Low + Close) / 3. While cumulative volume is
        zero the typical price itself is reported.
        """
        typical_price = (high + low + close) / 3.0
        cumulative_tpv = (typical_price * volume).cumsum()
        cumulative_volume = volume.cumsum()

        vwap = cumulative_tpv / cumulative_volume.where(cumulative_volume > 0)
        return vwap.fillna(typical_price)

    @staticmethod
    def calculate_obv(close: pd.Series, volume: pd.Series) -> pd.Series:
        """
        Calculate On-Balance Volume.

        OBV starts at the first bar's volume, then adds volume on up closes
        and subtracts it on down closes.
        """
        direction = np.sign(close.diff()).fillna(0.0)
        signed_volume = direction * volume
        signed_volume.iloc[0] = volume.iloc[0]
        return signed_volume.cumsum()

    @staticmethod
    def classify_obv_trend(obv: pd.Series, lookback: int) -> ObvTrend:
        """Compare the latest OBV with the value `lookback` bars earlier."""
        if len(obv) <= lookback:
            return ObvTrend.NEUTRAL
        current, earlier = obv.iloc[-1], obv.iloc[-1 - lookback]
        if current > earlier:
            return ObvTrend.RISING
        if current < earlier:
            return ObvTrend.FALLING
        return ObvTrend.NEUTRAL


# =============================================================================
# PRICE LEVELS
# =============================================================================

def calculate_fibonacci_levels(
    high: pd.Series,
    low: pd.Series,
    lookback: int
) -> FibonacciLevels:
    """
    Fibonacci retracement levels from the trailing swing window.

    Parameters
    ----------
    high, low : pd.Series
        Bar extremes
    lookback : int
        Window size; capped at the series length

    Returns
    -------
    FibonacciLevels
        Swing extremes, trend direction and one level per ratio
    """
    window = max(1, min(lookback, len(high)))
    swing_high = float(high.iloc[-window:].max())
    swing_low = float(low.iloc[-window:].min())
    price_range = swing_high - swing_low

    recent_mid = (float(high.iloc[-1]) + float(low.iloc[-1])) / 2.0
    midpoint = (swing_high + swing_low) / 2.0
    is_uptrend = recent_mid > midpoint

    levels = tuple(
        FibonacciLevel(
            ratio=ratio,
            price=swing_high - price_range * ratio if is_uptrend else swing_low + price_range * ratio,
            label=label,
        )
        for ratio, label in zip(FIBONACCI_RATIOS, FIBONACCI_LABELS)
    )
    return FibonacciLevels(swing_high, swing_low, is_uptrend, levels)


# =============================================================================
# DIVERGENCE DETECTION
# =============================================================================

class DivergenceDetector:
    """
    Pivot-based divergence detection between price and an oscillator.

    A bar i inside the trailing window is a price low when
    close[i] < close[i-1] and close[i] <= close[i+1]; highs are symmetric.
    Bars where the oscillator is undefined are skipped.

    Types:
    - Bullish: the latest low is lower than the previous one while the
      oscillator at that low is higher
    - Bearish: the latest high is higher than the previous one while the
      oscillator at that high is lower
    """

    def __init__(self, lookback: int = DIVERGENCE_LOOKBACK):
        """
        Initialize divergence detector.

        Parameters
        ----------
        lookback : int
            Number of trailing bars scanned for pivots
        """
        self.lookback = lookback

    def find_pivots(
        self,
        close: pd.Series,
        oscillator: pd.Series
    ) -> Tuple[List[Pivot], List[Pivot]]:
        """
        Find local price lows and highs inside the trailing window.

        Returns
        -------
        Tuple[List[Pivot], List[Pivot]]
            (lows, highs) in chronological order
        """
        prices = close.to_numpy(dtype=float)
        values = oscillator.to_numpy(dtype=float)
        start = len(prices) - self.lookback

        lows: List[Pivot] = []
        highs: List[Pivot] = []
        for i in range(max(start + 1, 1), len(prices) - 1):
            if np.isnan(values[i]):
                continue
            if prices[i] < prices[i - 1] and prices[i] <= prices[i + 1]:
                lows.append(Pivot(i, float(prices[i]), float(values[i])))
            if prices[i] > prices[i - 1] and prices[i] >= prices[i + 1]:
                highs.append(Pivot(i, float(prices[i]), float(values[i])))
        return lows, highs

    def detect(
        self,
        close: pd.Series,
        oscillator: pd.Series,
        scale: float
    ) -> DivergenceSignal:
        """
        Detect divergence between price and an oscillator.

        Parameters
        ----------
        close : pd.Series
            Closing prices
        oscillator : pd.Series
            Oscillator aligned to `close`
        scale : float
            Multiplier turning the oscillator delta into a 0-100 strength

        Returns
        -------
        DivergenceSignal
            Bullish is reported in preference to bearish
        """
        if len(close) < self.lookback:
            return DivergenceSignal.none()

        lows, highs = self.find_pivots(close, oscillator)

        if len(lows) >= 2:
            prev, curr = lows[-2], lows[-1]
            if curr.price < prev.price and curr.value > prev.value:
                strength = min(DIVERGENCE_MAX_STRENGTH, abs(curr.value - prev.value) * scale)
                return DivergenceSignal(DivergenceType.BULLISH, strength)

        if len(highs) >= 2:
            prev, curr = highs[-2], highs[-1]
            if curr.price > prev.price and curr.value < prev.value:
                strength = min(DIVERGENCE_MAX_STRENGTH, abs(prev.value - curr.value) * scale)
                return DivergenceSignal(DivergenceType.BEARISH, strength)

        return DivergenceSignal.none()

    def detect_rsi(self, close: pd.Series, rsi: pd.Series) -> DivergenceSignal:
        return self.detect(close, rsi, RSI_DIVERGENCE_SCALE)

    def detect_macd(self, close: pd.Series, histogram: pd.Series) -> DivergenceSignal:
        return self.detect(close, histogram, MACD_DIVERGENCE_SCALE)


# =============================================================================
# MAIN ENGINE
# =============================================================================

class TechnicalIndicatorEngine:
    """
    Main orchestrator for technical indicator computation.

    Runs every indicator family over a candle sequence and packages the
    latest values into an IndicatorSnapshot. Each call is a pure function
    of its input.

    Usage
    -----
    >>> engine = TechnicalIndicatorEngine()
    >>> snapshot = engine.process(candles)
    >>> snapshot.rsi.value
    """

    def __init__(self, settings: Optional[EngineSettings] = None):
        """
        Initialize the indicator engine.

        Parameters
        ----------
        settings : EngineSettings, optional
            Lookback configuration; defaults to the module constants
        """
        self.settings = settings or EngineSettings()
        self.divergence_detector = DivergenceDetector(self.settings.divergence_lookback)

    def compute_frame(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Compute every indicator series for a normalized OHLCV frame.

        Returns
        -------
        pd.DataFrame
            One column per indicator series, aligned to the input bars
        """
        s = self.settings
        close, high, low, volume = df["close"], df["high"], df["low"], df["volume"]

        frame = pd.DataFrame(index=df.index)
        frame["close"] = close
        frame["high"] = high
        frame["low"] = low
        frame["volume"] = volume

        frame["ema_fast"] = SeriesMath.ema(close, s.ema_fast)
        frame["ema_slow"] = SeriesMath.ema(close, s.ema_slow)
        frame["sma_medium"] = SeriesMath.sma(close, s.sma_medium)
        frame["sma_long"] = SeriesMath.sma(close, s.sma_long)

        frame["rsi"] = MomentumIndicators.calculate_rsi(close, s.rsi_period)
        frame["stoch_k"], frame["stoch_d"] = MomentumIndicators.calculate_stochastic(
            high, low, close, s.stoch_k_period, s.stoch_d_period
        )

        frame["macd"], frame["macd_signal"], frame["macd_histogram"] = TrendIndicators.calculate_macd(
            close, s.macd_fast, s.macd_slow, s.macd_signal
        )
        frame["adx"], frame["plus_di"], frame["minus_di"] = TrendIndicators.calculate_adx_dmi(
            high, low, close, s.adx_period
        )

        (
            frame["bb_upper"],
            frame["bb_middle"],
            frame["bb_lower"],
            frame["bb_percent_b"],
            frame["bb_bandwidth"],
        ) = VolatilityIndicators.calculate_bollinger_bands(close, s.bb_period, s.bb_std_dev)
        frame["atr"] = VolatilityIndicators.calculate_atr(high, low, close, s.atr_period)

        frame["vwap"] = VolumeIndicators.calculate_vwap(high, low, close, volume)
        frame["obv"] = VolumeIndicators.calculate_obv(close, volume)

        return frame

    def process(self, candles: CandleInput) -> IndicatorSnapshot:
        """
        Process a candle sequence through the complete indicator pipeline.

        Parameters
        ----------
        candles : DataFrame, sequence of Candle, or iterable of mappings
            OHLCV bars ascending by time

        Returns
        -------
        IndicatorSnapshot
            Latest indicator state plus the full computed frame

        Raises
        ------
        CandleDataError
            On an empty sequence or missing columns
        """
        df = candles_to_frame(candles)
        bars = len(df)
        logger.info(f"Processing {bars} bars of data")
        if bars < self.settings.min_full_history:
            logger.warning(
                f"Only {bars} bars available; {self.settings.min_full_history} "
                f"needed for every indicator to be defined"
            )

        frame = self.compute_frame(df)
        last = bars - 1
        price = float(df["close"].iloc[last])

        rsi_divergence = self.divergence_detector.detect_rsi(frame["close"], frame["rsi"])
        macd_divergence = self.divergence_detector.detect_macd(frame["close"], frame["macd_histogram"])
        if rsi_divergence.is_active or macd_divergence.is_active:
            logger.debug(
                f"Divergence: RSI={rsi_divergence.type.value} ({rsi_divergence.strength:.1f}), "
                f"MACD={macd_divergence.type.value} ({macd_divergence.strength:.1f})"
            )

        price_state = PriceState(
            current=price,
            open=float(df["open"].iloc[last]),
            high=float(df["high"].iloc[last]),
            low=float(df["low"].iloc[last]),
            volume=float(df["volume"].iloc[last]),
        )

        sma_medium = _value_at(frame["sma_medium"], last)
        sma_long = _value_at(frame["sma_long"], last)
        moving_averages = MovingAverageState(
            ema_fast=_value_at(frame["ema_fast"], last),
            ema_slow=_value_at(frame["ema_slow"], last),
            sma_medium=sma_medium,
            sma_long=sma_long,
            fast_above_slow=_is_above(frame["ema_fast"], frame["ema_slow"], last),
            prev_fast_above_slow=_is_above(frame["ema_fast"], frame["ema_slow"], last - 1),
            price_above_sma_medium=sma_medium is not None and price > sma_medium,
            price_above_sma_long=sma_long is not None and price > sma_long,
        )

        rsi_value = _value_at(frame["rsi"], last)
        rsi_state = RsiState(
            value=rsi_value,
            prev=_value_at(frame["rsi"], last - 1),
            is_overbought=rsi_value is not None and rsi_value > RSI_OVERBOUGHT,
            is_oversold=rsi_value is not None and rsi_value < RSI_OVERSOLD,
            divergence=rsi_divergence,
        )

        macd_line = _value_at(frame["macd"], last)
        macd_state = MacdState(
            macd_line=macd_line,
            signal_line=_value_at(frame["macd_signal"], last),
            histogram=_value_at(frame["macd_histogram"], last),
            prev_histogram=_value_at(frame["macd_histogram"], last - 1),
            is_bullish_cross=_is_cross(frame["macd"], frame["macd_signal"], last, bullish=True),
            is_bearish_cross=_is_cross(frame["macd"], frame["macd_signal"], last, bullish=False),
            is_above_zero=macd_line is not None and macd_line > 0,
            divergence=macd_divergence,
        )

        percent_b = _value_at(frame["bb_percent_b"], last)
        bandwidth = _value_at(frame["bb_bandwidth"], last)
        bollinger_state = BollingerState(
            upper=_value_at(frame["bb_upper"], last),
            middle=_value_at(frame["bb_middle"], last),
            lower=_value_at(frame["bb_lower"], last),
            percent_b=percent_b,
            bandwidth=bandwidth,
            is_near_upper=percent_b is not None and percent_b > BB_NEAR_UPPER,
            is_near_lower=percent_b is not None and percent_b < BB_NEAR_LOWER,
            is_squeeze=bandwidth is not None and bandwidth < BB_SQUEEZE_BANDWIDTH,
        )

        stoch_k = _value_at(frame["stoch_k"], last)
        stochastic_state = StochasticState(
            k=stoch_k,
            d=_value_at(frame["stoch_d"], last),
            is_overbought=stoch_k is not None and stoch_k > STOCH_OVERBOUGHT,
            is_oversold=stoch_k is not None and stoch_k < STOCH_OVERSOLD,
            is_bullish_cross=_is_cross(frame["stoch_k"], frame["stoch_d"], last, bullish=True),
            is_bearish_cross=_is_cross(frame["stoch_k"], frame["stoch_d"], last, bullish=False),
        )

        adx_value = _value_at(frame["adx"], last)
        adx_state = AdxState(
            value=adx_value,
            plus_di=_value_at(frame["plus_di"], last),
            minus_di=_value_at(frame["minus_di"], last),
            is_strong=adx_value is not None and adx_value > ADX_STRONG_TREND,
            is_bullish=_is_above(frame["plus_di"], frame["minus_di"], last),
        )

        atr_value = _value_at(frame["atr"], last)
        atr_state = AtrState(
            value=atr_value,
            percent=atr_value / price * 100.0 if atr_value is not None and price != 0 else None,
        )

        vwap_value = _value_at(frame["vwap"], last)
        vwap_state = VwapState(
            value=vwap_value,
            price_above_vwap=vwap_value is not None and price > vwap_value,
        )

        obv_state = ObvState(
            value=_value_at(frame["obv"], last),
            trend=VolumeIndicators.classify_obv_trend(frame["obv"], self.settings.obv_trend_lookback),
        )

        fibonacci = calculate_fibonacci_levels(
            frame["high"], frame["low"], min(self.settings.fib_lookback, bars)
        )

        return IndicatorSnapshot(
            time=int(df["time"].iloc[last]),
            bars=bars,
            price=price_state,
            moving_averages=moving_averages,
            rsi=rsi_state,
            macd=macd_state,
            bollinger=bollinger_state,
            stochastic=stochastic_state,
            adx=adx_state,
            atr=atr_state,
            vwap=vwap_state,
            obv=obv_state,
            fibonacci=fibonacci,
            frame=frame,
        )

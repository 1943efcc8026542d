# tests/test_technical_indicators.py
import dataclasses
import math

import numpy as np
import pandas as pd
import pytest

from conftest import make_candles
from confluence_advisor.technical_indicators import (
    CandleDataError,
    DivergenceDetector,
    DivergenceType,
    MomentumIndicators,
    ObvTrend,
    SeriesMath,
    TechnicalIndicatorEngine,
    TrendIndicators,
    VolatilityIndicators,
    VolumeIndicators,
    calculate_fibonacci_levels,
    candles_to_frame,
    frame_to_candles,
)


def _walk_values(value):
    """Yield every scalar inside a (nested) dataclass."""
    if dataclasses.is_dataclass(value):
        for f in dataclasses.fields(value):
            if f.name != "frame":
                yield from _walk_values(getattr(value, f.name))
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from _walk_values(item)
    else:
        yield value


# =============================================================================
# SERIES MATH
# =============================================================================

def test_sma_undefined_before_period():
    sma = SeriesMath.sma(pd.Series([1.0, 2.0, 3.0, 4.0]), 3)
    assert sma.isna().tolist() == [True, True, False, False]
    assert sma.iloc[2] == pytest.approx(2.0)
    assert sma.iloc[3] == pytest.approx(3.0)


def test_ema_seeded_with_sma():
    ema = SeriesMath.ema(pd.Series(np.arange(1.0, 11.0)), 3)
    assert ema.iloc[:2].isna().all()
    assert ema.iloc[2] == pytest.approx(2.0)
    # alpha = 0.5 on a linear series keeps a constant lag of one
    assert ema.iloc[9] == pytest.approx(9.0)


def test_ema_shorter_than_period_is_all_nan():
    assert SeriesMath.ema(pd.Series([1.0, 2.0]), 3).isna().all()


def test_wilder_smooth():
    result = SeriesMath.wilder_smooth(np.array([1.0, 2.0, 3.0, 4.0]), 2)
    assert math.isnan(result[0])
    assert result[1:].tolist() == pytest.approx([1.5, 2.25, 3.125])


def test_smoothing_matches_recurrence(random_walk_candles):
    close = random_walk_candles["close"]
    values = close.to_numpy()

    expected = np.full(len(values), np.nan)
    expected[11] = values[:12].mean()
    for i in range(12, len(values)):
        expected[i] = expected[i - 1] + 2.0 / 13 * (values[i] - expected[i - 1])
    np.testing.assert_allclose(SeriesMath.ema(close, 12).to_numpy(), expected, rtol=1e-12)

    expected = np.full(len(values), np.nan)
    expected[13] = values[:14].mean()
    for i in range(14, len(values)):
        expected[i] = (expected[i - 1] * 13 + values[i]) / 14
    np.testing.assert_allclose(SeriesMath.wilder_smooth(values, 14), expected, rtol=1e-12)


def test_ema_constant_series_stays_exact():
    ema = SeriesMath.ema(pd.Series([101.25] * 40), 9)
    assert (ema.iloc[8:] == 101.25).all()


def test_true_range_first_bar_is_high_minus_low():
    high = pd.Series([10.0, 12.0])
    low = pd.Series([8.0, 11.0])
    close = pd.Series([9.0, 11.5])
    tr = SeriesMath.true_range(high, low, close)
    assert tr.tolist() == pytest.approx([2.0, 3.0])


# =============================================================================
# MOMENTUM
# =============================================================================

def test_rsi_needs_period_plus_one_bars():
    close = pd.Series(np.arange(14, dtype=float))
    assert MomentumIndicators.calculate_rsi(close, 14).isna().all()

    close = pd.Series(np.arange(15, dtype=float))
    rsi = MomentumIndicators.calculate_rsi(close, 14)
    assert rsi.first_valid_index() == 14
    assert rsi.iloc[14] == 100.0


def test_rsi_stays_within_bounds(random_walk_candles):
    rsi = MomentumIndicators.calculate_rsi(random_walk_candles["close"], 14).dropna()
    assert len(rsi) > 0
    assert ((rsi >= 0) & (rsi <= 100)).all()


def test_rsi_falling_series_is_zero():
    close = pd.Series(np.arange(30, 0, -1, dtype=float))
    assert MomentumIndicators.calculate_rsi(close, 14).iloc[-1] == 0.0


def test_stochastic_zero_range_is_fifty(flat_candles):
    k, d = MomentumIndicators.calculate_stochastic(
        flat_candles["high"], flat_candles["low"], flat_candles["close"], 14, 3
    )
    assert k.first_valid_index() == 13
    assert (k.dropna() == 50.0).all()
    assert d.first_valid_index() == 15


# =============================================================================
# TREND
# =============================================================================

def test_macd_signal_aligned_to_defined_macd(random_walk_candles):
    macd, signal, hist = TrendIndicators.calculate_macd(random_walk_candles["close"], 12, 26, 9)
    assert macd.first_valid_index() == 25
    assert signal.first_valid_index() == 33
    assert hist.first_valid_index() == 33
    assert hist.iloc[-1] == pytest.approx(macd.iloc[-1] - signal.iloc[-1])


def test_adx_requires_two_periods_plus_one(random_walk_candles):
    df = random_walk_candles
    adx, plus_di, minus_di = TrendIndicators.calculate_adx_dmi(
        df["high"].iloc[:28], df["low"].iloc[:28], df["close"].iloc[:28], 14
    )
    assert adx.isna().all()
    assert plus_di.isna().all()

    adx, plus_di, minus_di = TrendIndicators.calculate_adx_dmi(
        df["high"].iloc[:29], df["low"].iloc[:29], df["close"].iloc[:29], 14
    )
    assert adx.first_valid_index() == 28
    assert plus_di.first_valid_index() == 15
    assert 0 <= adx.iloc[28] <= 100


def test_adx_first_value_includes_first_update_bar():
    # TR = [1.5, 1.5, 1.5, 2], +DM = [1, 1, 0, 1], -DM = [0, 0, 1, 0]
    high = pd.Series([10.0, 11.0, 12.0, 11.5, 12.5])
    low = pd.Series([9.0, 10.0, 11.0, 10.0, 11.0])
    close = pd.Series([9.5, 10.5, 11.5, 10.5, 12.0])
    adx, plus_di, minus_di = TrendIndicators.calculate_adx_dmi(high, low, close, 2)

    assert plus_di.iloc[:3].isna().all()
    assert plus_di.iloc[3] == pytest.approx(100.0 / 3)
    assert minus_di.iloc[3] == pytest.approx(100.0 / 3)
    assert plus_di.iloc[4] == pytest.approx(300.0 / 7)
    assert minus_di.iloc[4] == pytest.approx(100.0 / 7)

    # DX = [0, 50], so the first ADX is their mean
    assert adx.iloc[:4].isna().all()
    assert adx.iloc[4] == pytest.approx(25.0)


def test_adx_strong_on_steady_uptrend(rising_candles):
    df = rising_candles
    adx, plus_di, minus_di = TrendIndicators.calculate_adx_dmi(df["high"], df["low"], df["close"], 14)
    assert adx.iloc[-1] == pytest.approx(100.0)
    assert plus_di.iloc[-1] > minus_di.iloc[-1]


# =============================================================================
# VOLATILITY
# =============================================================================

def test_bollinger_zero_width_leaves_percent_b_undefined(flat_candles):
    upper, middle, lower, pct_b, bandwidth = VolatilityIndicators.calculate_bollinger_bands(
        flat_candles["close"], 20, 2.0
    )
    assert middle.iloc[-1] == 100.0
    assert upper.iloc[-1] == pytest.approx(lower.iloc[-1])
    assert pct_b.isna().all()
    assert bandwidth.isna().all()
    assert not np.isinf(pct_b.fillna(0)).any()


def test_bollinger_percent_b(random_walk_candles):
    close = random_walk_candles["close"]
    upper, middle, lower, pct_b, bandwidth = VolatilityIndicators.calculate_bollinger_bands(close, 20, 2.0)
    expected = (close.iloc[-1] - lower.iloc[-1]) / (upper.iloc[-1] - lower.iloc[-1])
    assert pct_b.iloc[-1] == pytest.approx(expected)
    assert bandwidth.iloc[-1] == pytest.approx((upper.iloc[-1] - lower.iloc[-1]) / middle.iloc[-1])


def test_atr_seeded_with_mean_true_range(random_walk_candles):
    df = random_walk_candles
    atr = VolatilityIndicators.calculate_atr(df["high"], df["low"], df["close"], 14)
    tr = SeriesMath.true_range(df["high"], df["low"], df["close"])
    assert atr.first_valid_index() == 13
    assert atr.iloc[13] == pytest.approx(tr.iloc[:14].mean())
    assert atr.iloc[14] == pytest.approx((atr.iloc[13] * 13 + tr.iloc[14]) / 14)


# =============================================================================
# VOLUME
# =============================================================================

def test_vwap_zero_volume_falls_back_to_typical_price():
    high = pd.Series([11.0, 12.0])
    low = pd.Series([9.0, 10.0])
    close = pd.Series([10.0, 11.0])
    vwap = VolumeIndicators.calculate_vwap(high, low, close, pd.Series([0.0, 0.0]))
    assert vwap.tolist() == pytest.approx([10.0, 11.0])


def test_vwap_cumulative():
    high = pd.Series([11.0, 13.0])
    low = pd.Series([9.0, 11.0])
    close = pd.Series([10.0, 12.0])
    vwap = VolumeIndicators.calculate_vwap(high, low, close, pd.Series([1.0, 3.0]))
    assert vwap.iloc[-1] == pytest.approx((10.0 * 1 + 12.0 * 3) / 4)


def test_obv_signed_running_total():
    close = pd.Series([1.0, 2.0, 2.0, 1.0])
    volume = pd.Series([10.0, 20.0, 30.0, 40.0])
    assert VolumeIndicators.calculate_obv(close, volume).tolist() == [10.0, 30.0, 30.0, -10.0]


@pytest.mark.parametrize("values, expected", [
    ([0, 1, 2, 3, 4], ObvTrend.NEUTRAL),
    ([0, 1, 2, 3, 4, 5], ObvTrend.RISING),
    ([5, 4, 3, 2, 1, 0], ObvTrend.FALLING),
    ([3, 9, 1, 7, 2, 3], ObvTrend.NEUTRAL),
])
def test_obv_trend(values, expected):
    assert VolumeIndicators.classify_obv_trend(pd.Series(values, dtype=float), 5) is expected


# =============================================================================
# FIBONACCI
# =============================================================================

def test_fibonacci_uptrend_projects_down_from_high():
    high = pd.Series(np.arange(10.0, 21.0))
    low = high - 1.0
    fib = calculate_fibonacci_levels(high, low, 100)
    assert fib.swing_high == 20.0
    assert fib.swing_low == 9.0
    assert fib.is_uptrend
    assert [lvl.label for lvl in fib.levels] == ["0%", "23.6%", "38.2%", "50%", "61.8%", "78.6%", "100%"]
    assert fib.levels[0].price == pytest.approx(20.0)
    assert fib.levels[3].price == pytest.approx(14.5)
    assert fib.levels[-1].price == pytest.approx(9.0)


def test_fibonacci_downtrend_projects_up_from_low():
    high = pd.Series(np.arange(20.0, 9.0, -1.0))
    low = high - 1.0
    fib = calculate_fibonacci_levels(high, low, 100)
    assert not fib.is_uptrend
    assert fib.levels[0].price == pytest.approx(fib.swing_low)
    assert fib.levels[-1].price == pytest.approx(fib.swing_high)


def test_fibonacci_lookback_window():
    high = pd.Series([100.0] + [10.0] * 5)
    low = pd.Series([1.0] + [9.0] * 5)
    fib = calculate_fibonacci_levels(high, low, 3)
    assert fib.swing_high == 10.0
    assert fib.swing_low == 9.0


# =============================================================================
# DIVERGENCE
# =============================================================================

def _two_lows_series(first_low, second_low, first_osc, second_osc, length=30):
    close = np.full(length, 100.0)
    close[10] = first_low
    close[20] = second_low
    osc = np.full(length, 50.0)
    osc[10] = first_osc
    osc[20] = second_osc
    return pd.Series(close), pd.Series(osc)


def test_bullish_rsi_divergence_from_price_series():
    # Steady decline to 100, rally to 110, then a sharp dip to a lower low at 99
    close = pd.Series(
        [120.0 - i for i in range(21)] + [102.0, 104.0, 106.0, 108.0, 110.0, 105.0, 99.0, 101.0, 102.0]
    )
    rsi = MomentumIndicators.calculate_rsi(close, 14)
    assert rsi.iloc[20] == 0.0
    assert rsi.iloc[27] > rsi.iloc[20]

    lows, _ = DivergenceDetector(lookback=30).find_pivots(close, rsi)
    assert [p.index for p in lows] == [20, 27]

    signal = DivergenceDetector(lookback=30).detect_rsi(close, rsi)
    assert signal.type is DivergenceType.BULLISH
    assert signal.strength == pytest.approx(min(100.0, 3.0 * rsi.iloc[27]))
    assert 0.0 < signal.strength < 100.0


def test_bullish_divergence_lower_low_higher_oscillator():
    close, rsi = _two_lows_series(90.0, 85.0, 30.0, 40.0)
    result = DivergenceDetector(lookback=30).detect_rsi(close, rsi)
    assert result.type is DivergenceType.BULLISH
    assert result.strength == pytest.approx(30.0)


def test_bearish_divergence_higher_high_lower_oscillator():
    close = np.full(30, 100.0)
    close[10], close[20] = 110.0, 115.0
    osc = np.full(30, 50.0)
    osc[10], osc[20] = 0.8, 0.5
    result = DivergenceDetector(lookback=30).detect_macd(pd.Series(close), pd.Series(osc))
    assert result.type is DivergenceType.BEARISH
    assert result.strength == pytest.approx(15.0)


def test_divergence_strength_capped():
    close, rsi = _two_lows_series(90.0, 85.0, 10.0, 60.0)
    assert DivergenceDetector(lookback=30).detect_rsi(close, rsi).strength == 100.0


def test_no_divergence_when_oscillator_confirms():
    close, rsi = _two_lows_series(90.0, 85.0, 40.0, 30.0)
    assert DivergenceDetector(lookback=30).detect_rsi(close, rsi).type is DivergenceType.NONE


def test_divergence_needs_full_window():
    close, rsi = _two_lows_series(90.0, 85.0, 30.0, 40.0, length=25)
    assert not DivergenceDetector(lookback=30).detect_rsi(close, rsi).is_active


def test_pivots_skip_undefined_oscillator():
    close, rsi = _two_lows_series(90.0, 85.0, 30.0, 40.0)
    rsi.iloc[10] = np.nan
    lows, highs = DivergenceDetector(lookback=30).find_pivots(close, rsi)
    assert [p.index for p in lows] == [20]
    assert [p.index for p in highs] == [11, 21]


# =============================================================================
# ENGINE / SNAPSHOT
# =============================================================================

def test_empty_candles_rejected(engine):
    with pytest.raises(CandleDataError):
        engine.process([])
    with pytest.raises(CandleDataError):
        engine.process(pd.DataFrame(columns=["time", "open", "high", "low", "close", "volume"]))


def test_missing_columns_rejected(engine, flat_candles):
    with pytest.raises(CandleDataError, match="volume"):
        engine.process(flat_candles.drop(columns=["volume"]))


def test_capitalized_columns_accepted(flat_candles):
    df = candles_to_frame(flat_candles.rename(columns=str.capitalize))
    assert list(df.columns) == ["time", "open", "high", "low", "close", "volume"]


def test_candle_records_match_frame(engine, random_walk_candles):
    from_frame = engine.process(random_walk_candles)
    from_records = engine.process(frame_to_candles(random_walk_candles))
    assert from_frame == from_records


def test_rising_series_snapshot(engine, rising_candles):
    snapshot = engine.process(rising_candles)
    assert snapshot.bars == 60
    assert snapshot.rsi.value == 100.0
    assert snapshot.rsi.is_overbought
    assert snapshot.moving_averages.ema_fast > snapshot.moving_averages.ema_slow
    assert snapshot.moving_averages.fast_above_slow
    assert snapshot.moving_averages.sma_long is None
    assert snapshot.adx.is_strong and snapshot.adx.is_bullish
    assert snapshot.obv.trend is ObvTrend.RISING
    assert snapshot.vwap.price_above_vwap
    assert not snapshot.rsi.divergence.is_active


def test_flat_series_snapshot_has_no_nan(flat_snapshot):
    assert flat_snapshot.rsi.value == 100.0
    assert flat_snapshot.stochastic.k == 50.0
    assert flat_snapshot.bollinger.percent_b is None
    assert flat_snapshot.bollinger.bandwidth is None
    assert flat_snapshot.atr.value == 0.0
    assert flat_snapshot.macd.histogram == 0.0
    for value in _walk_values(flat_snapshot):
        if isinstance(value, float):
            assert math.isfinite(value)


def test_short_series_yields_undefined_fields(engine, random_walk_candles):
    snapshot = engine.process(random_walk_candles.iloc[:10])
    assert snapshot.rsi.value is None
    assert snapshot.macd.macd_line is None
    assert snapshot.adx.value is None
    assert snapshot.bollinger.percent_b is None
    assert snapshot.atr.value is None
    assert snapshot.atr.percent is None
    assert not snapshot.macd.is_bullish_cross
    assert snapshot.price.current == random_walk_candles["close"].iloc[9]


def test_short_series_logs_warning(engine, random_walk_candles, caplog):
    with caplog.at_level("WARNING"):
        engine.process(random_walk_candles.iloc[:50])
    assert "needed for every indicator" in caplog.text


def test_snapshot_is_idempotent_and_ignores_frame(engine, random_walk_candles):
    first = engine.process(random_walk_candles)
    second = engine.process(random_walk_candles.copy())
    assert first == second
    assert first.frame is not second.frame
    assert {"rsi", "macd_histogram", "bb_percent_b", "adx", "atr", "vwap", "obv"} <= set(first.frame.columns)


def test_full_history_snapshot_fields(walk_snapshot, random_walk_candles):
    assert walk_snapshot.time == int(random_walk_candles["time"].iloc[-1])
    assert walk_snapshot.moving_averages.sma_long is not None
    assert walk_snapshot.atr.percent == pytest.approx(walk_snapshot.atr.value / walk_snapshot.price.current * 100)
    assert len(walk_snapshot.fibonacci.levels) == 7
    assert 0 <= walk_snapshot.rsi.value <= 100


def test_custom_settings(random_walk_candles):
    from confluence_advisor.config import EngineSettings

    engine = TechnicalIndicatorEngine(EngineSettings(rsi_period=7, sma_long=100))
    snapshot = engine.process(random_walk_candles.iloc[:120])
    assert snapshot.frame["rsi"].first_valid_index() == 7
    assert snapshot.moving_averages.sma_long is not None


def test_make_candles_helper_is_consistent():
    df = make_candles([1.0, 2.0, 3.0])
    assert (df["high"] >= df[["open", "close"]].max(axis=1)).all()
    assert (df["low"] <= df[["open", "close"]].min(axis=1)).all()

# tests/conftest.py
import numpy as np
import pandas as pd
import pytest

from confluence_advisor.technical_indicators import TechnicalIndicatorEngine

START_TIME = 1_700_000_000
STEP_SECONDS = 900


def make_candles(closes, spread=0.002, volume=1000.0, start=START_TIME, step=STEP_SECONDS):
    """Build an OHLCV frame where each bar opens at the previous close."""
    closes = np.asarray(closes, dtype=float)
    opens = np.concatenate([[closes[0]], closes[:-1]])
    highs = np.maximum(opens, closes) * (1 + spread)
    lows = np.minimum(opens, closes) * (1 - spread)
    volumes = np.broadcast_to(np.asarray(volume, dtype=float), closes.shape).copy()
    return pd.DataFrame({
        "time": start + step * np.arange(len(closes)),
        "open": opens,
        "high": highs,
        "low": lows,
        "close": closes,
        "volume": volumes,
    })


@pytest.fixture
def rising_candles():
    """60 candles rising 1% per bar with constant volume."""
    return make_candles(100.0 * 1.01 ** np.arange(60))


@pytest.fixture
def flat_candles():
    """60 identical candles."""
    return make_candles(np.full(60, 100.0), spread=0.0)


@pytest.fixture
def random_walk_candles():
    """300 seeded random-walk candles."""
    rng = np.random.default_rng(7)
    closes = 67_000.0 * np.exp(np.cumsum(rng.normal(0.0, 0.004, 300)))
    volumes = rng.lognormal(mean=3.0, sigma=0.5, size=300)
    return make_candles(closes, spread=0.001, volume=volumes)


@pytest.fixture
def engine():
    return TechnicalIndicatorEngine()


@pytest.fixture
def flat_snapshot(engine, flat_candles):
    return engine.process(flat_candles)


@pytest.fixture
def walk_snapshot(engine, random_walk_candles):
    return engine.process(random_walk_candles)

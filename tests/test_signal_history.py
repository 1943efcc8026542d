# tests/test_signal_history.py
import logging
from dataclasses import replace

import pytest

from confluence_advisor.config import SignalAction
from confluence_advisor.signal_engine import SignalEngine
from confluence_advisor.signal_history import SignalHistory


@pytest.fixture
def base_signal(random_walk_candles):
    return SignalEngine().generate(random_walk_candles, "15m")


def _signal(base, score, action=SignalAction.NEUTRAL, timestamp=0):
    return replace(base, score=score, action=action, timestamp=timestamp)


def test_first_signal_is_recorded(base_signal):
    history = SignalHistory()
    assert history.last is None
    assert history.record(base_signal)
    entry = history.last
    assert entry.action is base_signal.action
    assert entry.score == base_signal.score
    assert entry.price == base_signal.targets.entry
    assert entry.timestamp == base_signal.timestamp
    assert entry.color_tag == base_signal.action.color_tag


def test_near_identical_scores_are_not_recorded(base_signal):
    history = SignalHistory()
    scores = [20, 21, 19, 22, 18, 25, 15, 20, 29, 11]
    recorded = [history.record(_signal(base_signal, s)) for s in scores]
    assert recorded == [True] + [False] * (len(scores) - 1)
    assert len(history) == 1


def test_score_delta_threshold_is_inclusive(base_signal):
    history = SignalHistory()
    history.record(_signal(base_signal, 20))
    assert not history.record(_signal(base_signal, 29))
    assert history.record(_signal(base_signal, 30))
    assert not history.record(_signal(base_signal, 21))
    assert history.record(_signal(base_signal, 20))
    assert [e.score for e in history.snapshot()] == [20, 30, 20]


def test_action_change_is_recorded(base_signal):
    history = SignalHistory()
    history.record(_signal(base_signal, 29, SignalAction.NEUTRAL))
    assert history.record(_signal(base_signal, 30, SignalAction.BUY))
    assert history.last.action is SignalAction.BUY
    assert history.last.color_tag == "#ffdd00"


def test_history_is_capped(base_signal):
    history = SignalHistory()
    for i in range(50):
        action = SignalAction.BUY if i % 2 else SignalAction.SELL
        history.record(_signal(base_signal, 40 if i % 2 else -40, action, timestamp=i))
        assert len(history) <= 20
    assert len(history) == history.max_entries == 20
    assert [e.timestamp for e in history.snapshot()] == list(range(30, 50))


def test_snapshot_is_an_immutable_copy(base_signal):
    history = SignalHistory()
    history.record(base_signal)
    snapshot = history.snapshot()
    assert isinstance(snapshot, tuple)
    history.clear()
    assert len(history) == 0
    assert len(snapshot) == 1


def test_repeated_recomputation_records_once(random_walk_candles):
    engine = SignalEngine()
    history = SignalHistory()
    for _ in range(5):
        history.record(engine.generate(random_walk_candles, "15m"))
    assert len(history) == 1


def test_change_is_logged(base_signal, caplog):
    with caplog.at_level(logging.INFO, logger="confluence_advisor.signal_history"):
        SignalHistory().record(base_signal)
    assert "Signal changed" in caplog.text

"""
Signal Engine - End-to-End Confluence Pipeline

    candles -> TechnicalIndicatorEngine -> IndicatorSnapshot
            -> ConfluenceScorer          -> ConfluenceResult
            -> (optional) predict_bias   -> BiasPrediction
            -> TargetCalculator          -> Targets
            -> TradePlanBuilder          -> TradePlan
            = TradingSignal

Every call is a pure function of its inputs. The signal timestamp is the
last candle's time, so identical inputs produce identical signals. History
recording is left to the caller (see SignalHistory).
"""

from __future__ import annotations

import dataclasses
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

import pandas as pd

from confluence_advisor.config import (
    DEFAULT_TIMEFRAME,
    TIMEFRAME_PROFILES,
    EngineSettings,
    SignalAction,
    Timeframe,
)
from confluence_advisor.signal_scorer import (
    BiasPrediction,
    ConfluenceResult,
    ConfluenceScorer,
    predict_bias,
)
from confluence_advisor.technical_indicators import (
    CandleInput,
    IndicatorSnapshot,
    TechnicalIndicatorEngine,
)
from confluence_advisor.trade_plan import (
    TargetCalculator,
    Targets,
    TradePlan,
    TradePlanBuilder,
    format_price,
)

logger = logging.getLogger(__name__)


# =============================================================================
# OUTPUT STRUCTURE
# =============================================================================

@dataclass(frozen=True)
class TradingSignal:
    """
    Complete advisory output for one recomputation.

    `confluence.action` is the scored action; `action` is the one targets
    and plan were built for, which differs only in prediction mode.
    """
    score: int
    action: SignalAction
    confluence: ConfluenceResult
    targets: Targets
    trade_plan: TradePlan
    prediction: Optional[BiasPrediction]
    timestamp: int
    timeframe: Timeframe
    snapshot: IndicatorSnapshot
    key_values: Dict[str, Optional[float]]


# =============================================================================
# ENGINE
# =============================================================================

class SignalEngine:
    """
    Orchestrates indicator computation, scoring, targets and plan.

    Usage
    -----
    >>> engine = SignalEngine()
    >>> signal = engine.generate(candles, "15m")
    >>> signal.trade_plan.summary
    """

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        scorer: Optional[ConfluenceScorer] = None
    ):
        self.indicator_engine = TechnicalIndicatorEngine(settings)
        self.scorer = scorer or ConfluenceScorer()
        self.target_calculator = TargetCalculator()
        self.plan_builder = TradePlanBuilder()

    def generate(
        self,
        candles: CandleInput,
        timeframe: Union[Timeframe, str] = DEFAULT_TIMEFRAME,
        prediction_mode: bool = False
    ) -> TradingSignal:
        """
        Generate a trading signal from a candle sequence.

        Parameters
        ----------
        candles : DataFrame, sequence of Candle, or iterable of mappings
            OHLCV bars ascending by time
        timeframe : Timeframe or str
            Candle timeframe; unknown labels fall back to the default
        prediction_mode : bool
            Force an up/down call; targets and plan follow the bias

        Returns
        -------
        TradingSignal

        Raises
        ------
        CandleDataError
            On an empty sequence or missing columns
        """
        if not isinstance(timeframe, Timeframe):
            timeframe = Timeframe.parse(timeframe)

        snapshot = self.indicator_engine.process(candles)
        confluence = self.scorer.score(snapshot)

        prediction = None
        action = confluence.action
        if prediction_mode:
            prediction = predict_bias(snapshot, confluence)
            action = prediction.direction.action
            logger.info(
                f"Prediction: {prediction.direction.value} "
                f"(bias {prediction.bias:+.3f}, p={prediction.probability:.1f}%)"
            )

        targets = self.target_calculator.calculate(snapshot, action)
        trade_plan = self.plan_builder.build(snapshot, action, targets, timeframe)

        logger.info(f"Signal: {confluence.action.label} (score {confluence.score:+d}) on {timeframe.value}")

        return TradingSignal(
            score=confluence.score,
            action=action,
            confluence=confluence,
            targets=targets,
            trade_plan=trade_plan,
            prediction=prediction,
            timestamp=snapshot.time,
            timeframe=timeframe,
            snapshot=snapshot,
            key_values=extract_key_values(snapshot),
        )


def extract_key_values(snapshot: IndicatorSnapshot) -> Dict[str, Optional[float]]:
    """Headline indicator values shown alongside the score."""
    return {
        "rsi": snapshot.rsi.value,
        "macd_histogram": snapshot.macd.histogram,
        "bollinger_percent_b": snapshot.bollinger.percent_b,
        "stochastic_k": snapshot.stochastic.k,
        "adx": snapshot.adx.value,
        "atr": snapshot.atr.value,
        "atr_percent": snapshot.atr.percent,
    }


# =============================================================================
# SERIALIZATION
# =============================================================================

def _to_jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {
            f.name: _to_jsonable(getattr(value, f.name))
            for f in dataclasses.fields(value)
            if not isinstance(getattr(value, f.name), pd.DataFrame)
        }
    if isinstance(value, dict):
        return {(k.value if isinstance(k, Enum) else k): _to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(v) for v in value]
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


def signal_to_dict(signal: TradingSignal) -> Dict[str, Any]:
    """
    Convert a TradingSignal into a JSON-ready dictionary.

    The computed indicator frame is omitted; enums become their values.
    """
    result = _to_jsonable(signal)
    result["action_label"] = signal.action.label
    result["color_tag"] = signal.action.color_tag
    result["level"] = signal.action.level
    result["refresh_seconds"] = TIMEFRAME_PROFILES[signal.timeframe].refresh_seconds
    result["confluence"]["ranked"] = [entry.key.value for entry in signal.confluence.ranked()]
    return result


# =============================================================================
# CONSOLE REPORT
# =============================================================================

def _fmt(value: Optional[float], fmt: str = ".2f") -> str:
    return "n/a" if value is None else format(value, fmt)


def print_signal_report(signal: TradingSignal) -> None:
    """
    Print a comprehensive signal report to console.

    Parameters
    ----------
    signal : TradingSignal
        Output from SignalEngine.generate()
    """
    snapshot = signal.snapshot
    plan = signal.trade_plan

    print("\n" + "=" * 70)
    print("CONFLUENCE SIGNAL REPORT")
    print("=" * 70)
    print(f"Timeframe: {signal.timeframe.value} ({plan.timeframe_label})")
    print(f"Bars analyzed: {snapshot.bars}")
    print(f"Last candle: {pd.to_datetime(signal.timestamp, unit='s')}")
    print(f"Price: {snapshot.price.current:,.2f}")

    # Overall Signal
    print("\n" + "-" * 70)
    print("OVERALL SIGNAL")
    print("-" * 70)
    action = signal.confluence.action
    print(f"Action: {action.label} [{action.level}] ({action.color_tag})")
    print(f"Score: {signal.score:+d} / 100")
    print(f"Refresh: every {TIMEFRAME_PROFILES[signal.timeframe].refresh_seconds}s")
    if signal.prediction is not None:
        p = signal.prediction
        print(f"Forced bias: {p.direction.value} ({p.probability:.1f}%, bias {p.bias:+.3f})")

    # Breakdown
    print("\n" + "-" * 70)
    print("INDICATOR BREAKDOWN")
    print("-" * 70)
    for entry in signal.confluence.breakdown:
        print(
            f"  {entry.name:<18} signal {entry.signal:+.2f}  weight {entry.weight:>2}  "
            f"contribution {entry.contribution:+3d}  {entry.direction.value}"
        )

    # Key values
    print("\n" + "-" * 70)
    print("KEY INDICATOR VALUES")
    print("-" * 70)
    for name, value in signal.key_values.items():
        print(f"  {name}: {_fmt(value)}")
    for label, divergence in (("RSI", snapshot.rsi.divergence), ("MACD", snapshot.macd.divergence)):
        if divergence.is_active:
            print(f"  {label} divergence: {divergence.type.value} (strength {divergence.strength:.1f})")

    # Targets
    if signal.targets.is_actionable:
        print("\n" + "-" * 70)
        print("TARGETS")
        print("-" * 70)
        print(f"  Entry: {signal.targets.entry:,.2f}")
        print(f"  Stop loss: {signal.targets.stop_loss:,.2f}")
        for tp in signal.targets.take_profits:
            print(f"  {tp.label}: {tp.price:,.2f}")
        print(f"  Risk/Reward: {_fmt(signal.targets.risk_reward)}")

    # Trade plan
    print("\n" + "-" * 70)
    print("TRADE PLAN")
    print("-" * 70)
    print(f"  {plan.summary}")
    if not plan.is_wait:
        print(f"  {plan.hold_label}")
        print(f"  Expected move: {plan.expected_move:,.2f} ({_fmt(plan.expected_move_percent, '.3f')}%)")
        print(f"  Profit: {_fmt(plan.profit_percent, '.3f')}%  Loss: {_fmt(plan.loss_percent, '.3f')}%")
    band = plan.most_possible_range
    print(f"  Support: {format_price(plan.support)}  Resistance: {format_price(plan.resistance)}")
    print(f"  Most possible range: {band.low:,.2f} - {band.high:,.2f}")
    for reason in plan.reasons:
        print(f"    -> {reason}")

    print("\n" + "=" * 70)

"""
Trade Targets and Plan Construction

Turns a scored action into concrete price levels:

    TargetCalculator  -> entry, ATR stop-loss, Fibonacci/ATR take-profits,
                         risk/reward ratio
    TradePlanBuilder  -> "BUY here -> SELL there" summary, timeframe-aware
                         hold time and expected move, support/resistance,
                         ranked reasons

Expected move uses random-walk scaling: ATR * sqrt(swing candles).
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

from confluence_advisor.config import (
    ATR_FALLBACK_PCT,
    MAX_REASONS,
    MAX_TAKE_PROFITS,
    STOP_LOSS_ATR_MULT,
    SUPPORT_ATR_MULT,
    TAKE_PROFIT_ATR_MULTS,
    TIMEFRAME_PROFILES,
    SignalAction,
    Timeframe,
)
from confluence_advisor.signal_scorer import round_half_up
from confluence_advisor.technical_indicators import IndicatorSnapshot

logger = logging.getLogger(__name__)

WAIT_SUMMARY = "No clear setup — wait for a stronger signal"


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class TakeProfit:
    price: float
    label: str


@dataclass(frozen=True)
class Targets:
    """Entry, stop and take-profit levels. All empty for NEUTRAL."""
    entry: Optional[float]
    stop_loss: Optional[float]
    take_profits: Tuple[TakeProfit, ...]
    risk_reward: Optional[float]

    @classmethod
    def empty(cls) -> 'Targets':
        return cls(entry=None, stop_loss=None, take_profits=(), risk_reward=None)

    @property
    def is_actionable(self) -> bool:
        return self.entry is not None


@dataclass(frozen=True)
class PriceRange:
    """Most-possible-outcome band: Bollinger bands or the ATR envelope."""
    low: float
    high: float


@dataclass(frozen=True)
class TradePlan:
    """
    Human-facing trade plan.

    For a WAIT plan only `summary`, `support`, `resistance`,
    `most_possible_range` and the timeframe fields are populated.
    """
    action: str
    summary: str
    timeframe: Timeframe
    timeframe_label: str
    support: float
    resistance: float
    most_possible_range: PriceRange
    entry: Optional[float] = None
    exit: Optional[float] = None
    stop_loss: Optional[float] = None
    hold_time: Optional[str] = None
    hold_label: Optional[str] = None
    expected_move: Optional[float] = None
    expected_move_percent: Optional[float] = None
    vwap_zone: Optional[float] = None
    risk_amount: Optional[float] = None
    reward_amount: Optional[float] = None
    profit_percent: Optional[float] = None
    loss_percent: Optional[float] = None
    reasons: Tuple[str, ...] = ()

    @property
    def is_wait(self) -> bool:
        return self.action == "WAIT"


# =============================================================================
# HELPERS
# =============================================================================

def effective_atr(snapshot: IndicatorSnapshot) -> float:
    """ATR, or 1% of price when ATR is undefined or zero."""
    atr = snapshot.atr.value
    if not atr:
        return snapshot.price.current * ATR_FALLBACK_PCT
    return atr


def format_price(value: float) -> str:
    """Whole-dollar price with thousands separators, e.g. $67,250."""
    return f"${round_half_up(value):,}"


def format_hold_time(minutes: int) -> str:
    if minutes < 60:
        return f"~{minutes} min"
    if minutes < 1440:
        return f"~{minutes / 60:.1f} hrs"
    return f"~{minutes / 1440:.1f} days"


def band_envelope(snapshot: IndicatorSnapshot, atr: float) -> Tuple[float, float]:
    """Bollinger lower/upper, or price +/- 2 ATR when bands are undefined."""
    price = snapshot.price.current
    lower = snapshot.bollinger.lower
    upper = snapshot.bollinger.upper
    support = lower if lower is not None else price - SUPPORT_ATR_MULT * atr
    resistance = upper if upper is not None else price + SUPPORT_ATR_MULT * atr
    return support, resistance


# =============================================================================
# TARGET CALCULATOR
# =============================================================================

class TargetCalculator:
    """
    Entry, stop-loss and take-profit calculation.

    Take-profits prefer Fibonacci levels strictly beyond price in the trade
    direction, nearest first. Without any, they fall back to 2x and 3x ATR.
    """

    def calculate(self, snapshot: IndicatorSnapshot, action: SignalAction) -> Targets:
        """
        Calculate targets for an action.

        Parameters
        ----------
        snapshot : IndicatorSnapshot
            Current indicator state
        action : SignalAction
            Scored (or forced) action

        Returns
        -------
        Targets
            Empty for NEUTRAL
        """
        if action is SignalAction.NEUTRAL:
            return Targets.empty()

        price = snapshot.price.current
        atr = effective_atr(snapshot)
        side = 1.0 if action.is_buy else -1.0

        entry = price
        stop_loss = price - side * STOP_LOSS_ATR_MULT * atr

        beyond = [lvl for lvl in snapshot.fibonacci.levels if (lvl.price - price) * side > 0]
        beyond.sort(key=lambda lvl: abs(lvl.price - price))
        take_profits: List[TakeProfit] = [
            TakeProfit(lvl.price, f"TP{i} ({lvl.label})")
            for i, lvl in enumerate(beyond[:MAX_TAKE_PROFITS], start=1)
        ]
        if not take_profits:
            take_profits = [
                TakeProfit(price + side * mult * atr, f"TP{i} ({mult:g}× ATR)")
                for i, mult in enumerate(TAKE_PROFIT_ATR_MULTS, start=1)
            ]

        risk = abs(entry - stop_loss)
        reward = abs(take_profits[0].price - entry)
        risk_reward = round(reward / risk, 2) if risk > 0 else None

        return Targets(
            entry=entry,
            stop_loss=stop_loss,
            take_profits=tuple(take_profits),
            risk_reward=risk_reward,
        )


# =============================================================================
# TRADE PLAN BUILDER
# =============================================================================

def collect_reasons(snapshot: IndicatorSnapshot, is_buy: bool) -> List[str]:
    """Confirming conditions in fixed priority order, first MAX_REASONS kept."""
    reasons = []
    ma = snapshot.moving_averages

    if snapshot.rsi.is_oversold:
        reasons.append("RSI oversold")
    if snapshot.rsi.is_overbought:
        reasons.append("RSI overbought")
    if snapshot.macd.is_bullish_cross:
        reasons.append("MACD bullish cross")
    if snapshot.macd.is_bearish_cross:
        reasons.append("MACD bearish cross")
    if snapshot.stochastic.is_oversold:
        reasons.append("Stochastic oversold")
    if snapshot.stochastic.is_overbought:
        reasons.append("Stochastic overbought")
    if ma.fast_above_slow:
        reasons.append("EMA 9 > 21 (bullish)")
    elif ma.ema_fast is not None:
        reasons.append("EMA 9 < 21 (bearish)")
    if snapshot.bollinger.is_near_lower:
        reasons.append("Near Bollinger lower band")
    if snapshot.bollinger.is_near_upper:
        reasons.append("Near Bollinger upper band")
    if snapshot.adx.is_strong:
        reasons.append(f"Strong trend (ADX {snapshot.adx.value:.0f})")
    if snapshot.vwap.price_above_vwap and is_buy:
        reasons.append("Price above VWAP")
    if not snapshot.vwap.price_above_vwap and not is_buy:
        reasons.append("Price below VWAP")
    if snapshot.rsi.divergence.is_active:
        reasons.append(f"{snapshot.rsi.divergence.type.value} RSI divergence")
    if snapshot.macd.divergence.is_active:
        reasons.append(f"{snapshot.macd.divergence.type.value} MACD divergence")

    return reasons[:MAX_REASONS]


class TradePlanBuilder:
    """Builds the timeframe-aware trade plan for a scored action."""

    def build(
        self,
        snapshot: IndicatorSnapshot,
        action: SignalAction,
        targets: Targets,
        timeframe: Timeframe
    ) -> TradePlan:
        """
        Build a trade plan.

        Parameters
        ----------
        snapshot : IndicatorSnapshot
            Current indicator state
        action : SignalAction
            Scored (or forced) action
        targets : Targets
            Output of TargetCalculator for the same action
        timeframe : Timeframe
            Candle timeframe; selects swing size and candle duration

        Returns
        -------
        TradePlan
            WAIT plan for NEUTRAL, BUY or SELL plan otherwise
        """
        profile = TIMEFRAME_PROFILES[timeframe]
        price = snapshot.price.current
        atr = effective_atr(snapshot)
        support, resistance = band_envelope(snapshot, atr)

        if action is SignalAction.NEUTRAL or not targets.is_actionable:
            return TradePlan(
                action="WAIT",
                summary=WAIT_SUMMARY,
                timeframe=timeframe,
                timeframe_label=profile.label,
                support=support,
                resistance=resistance,
                most_possible_range=PriceRange(support, resistance),
            )

        is_buy = action.is_buy
        side = 1.0 if is_buy else -1.0

        expected_move = atr * math.sqrt(profile.swing_candles)
        hold_time = format_hold_time(profile.candle_minutes * profile.swing_candles)

        entry = targets.entry
        exit_price = targets.take_profits[0].price if targets.take_profits else None
        stop_loss = targets.stop_loss
        risk_amount = abs(entry - stop_loss) if stop_loss is not None else None
        reward_amount = abs(exit_price - entry) if exit_price is not None else None

        projected = exit_price if exit_price is not None else price + side * expected_move
        if is_buy:
            summary = f"BUY @ {format_price(entry)} → SELL @ {format_price(projected)}"
        else:
            summary = f"SELL @ {format_price(entry)} → BUY BACK @ {format_price(projected)}"

        plan = TradePlan(
            action="BUY" if is_buy else "SELL",
            summary=summary,
            timeframe=timeframe,
            timeframe_label=profile.label,
            support=support,
            resistance=resistance,
            most_possible_range=PriceRange(support, resistance),
            entry=entry,
            exit=exit_price,
            stop_loss=stop_loss,
            hold_time=hold_time,
            hold_label=f"Hold {profile.candles_label} ({hold_time})",
            expected_move=expected_move,
            expected_move_percent=expected_move / price * 100.0 if price else None,
            vwap_zone=snapshot.vwap.value,
            risk_amount=risk_amount,
            reward_amount=reward_amount,
            profit_percent=round(reward_amount / entry * 100.0, 3) if reward_amount and entry else None,
            loss_percent=round(risk_amount / entry * 100.0, 3) if risk_amount and entry else None,
            reasons=tuple(collect_reasons(snapshot, is_buy)),
        )
        logger.debug(f"Trade plan: {plan.summary} | {plan.hold_label}")
        return plan

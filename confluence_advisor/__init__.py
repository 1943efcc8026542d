"""
Confluence Advisor

Single-instrument technical-indicator confluence scoring with trade targets
and timeframe-aware trade plans.
"""

from confluence_advisor.config import SignalAction, Timeframe
from confluence_advisor.signal_engine import SignalEngine, TradingSignal, print_signal_report, signal_to_dict
from confluence_advisor.signal_history import SignalHistory
from confluence_advisor.technical_indicators import Candle, CandleDataError, TechnicalIndicatorEngine

VERSION: str = "1.0.0"

__all__ = [
    "Candle",
    "CandleDataError",
    "SignalAction",
    "SignalEngine",
    "SignalHistory",
    "TechnicalIndicatorEngine",
    "Timeframe",
    "TradingSignal",
    "print_signal_report",
    "signal_to_dict",
]

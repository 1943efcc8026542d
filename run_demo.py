#!/usr/bin/env python3
"""
Confluence Advisor - Demo Runner

This script demonstrates the complete signal pipeline:
    Step 1: Candle acquisition (CSV file or seeded synthetic random walk)
    Step 2: Indicator computation and confluence scoring
    Step 3: Targets and trade plan
    Step 4: Periodic-refresh replay feeding the signal history

EXECUTION
    python run_demo.py
    python run_demo.py --timeframe 1h --bars 400
    python run_demo.py --input candles.csv --timeframe 4h --json outputs/signal.json
    python run_demo.py --prediction

INPUT CSV
    Columns: time, open, high, low, close, volume. `time` may be epoch
    seconds or any timestamp pandas can parse.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import numpy as np
import pandas as pd

from confluence_advisor import VERSION
from confluence_advisor.config import TIMEFRAME_PROFILES, Timeframe
from confluence_advisor.signal_engine import SignalEngine, TradingSignal, print_signal_report, signal_to_dict
from confluence_advisor.signal_history import SignalHistory


# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_BARS: int = 300
DEFAULT_SEED: int = 42
DEFAULT_START_PRICE: float = 67_000.0
DEFAULT_REPLAY: int = 30


# =============================================================================
# DISPLAY COMPONENTS
# =============================================================================

BANNER = r'''
╔═══════════════════════════════════════════════════════════════════════════════╗
║                                                                               ║
║              CONFLUENCE ADVISOR                                               ║
║                                                                               ║
║              Technical Indicator Confluence Scoring                           ║
║              Targets - Trade Plans - Signal History                           ║
║                                                                               ║
╚═══════════════════════════════════════════════════════════════════════════════╝
'''


def print_section_header(title: str, char: str = "═") -> None:
    """Print a formatted section header."""
    width = 79
    print()
    print(char * width)
    print(f"  {title}")
    print(char * width)
    print()


def print_subsection(title: str) -> None:
    """Print a subsection divider."""
    print()
    print(f"  {'─' * 75}")
    print(f"  {title}")
    print(f"  {'─' * 75}")


# =============================================================================
# CANDLE SOURCES
# =============================================================================

def load_candles_csv(path: Path) -> pd.DataFrame:
    """
    Load candles from a CSV file.

    Parameters
    ----------
    path : Path
        CSV with time/open/high/low/close/volume columns

    Returns
    -------
    pd.DataFrame
        Candles sorted by time, `time` in epoch seconds
    """
    df = pd.read_csv(path)
    df.columns = [c.strip().lower() for c in df.columns]
    if "time" in df.columns and not pd.api.types.is_numeric_dtype(df["time"]):
        # Epoch seconds regardless of the parsed datetime resolution
        stamps = pd.to_datetime(df["time"], utc=True)
        df["time"] = (stamps - pd.Timestamp("1970-01-01", tz="UTC")) // pd.Timedelta(seconds=1)
    return df.sort_values("time").reset_index(drop=True)


def generate_random_walk(
    bars: int,
    timeframe: Timeframe,
    seed: int = DEFAULT_SEED,
    start_price: float = DEFAULT_START_PRICE
) -> pd.DataFrame:
    """
    Synthesize a reproducible OHLCV random walk.

    Log returns are normal with a small drift; highs/lows extend the
    open-close body by a fraction of the bar's absolute return.
    """
    rng = np.random.default_rng(seed)
    minutes = TIMEFRAME_PROFILES[timeframe].candle_minutes
    sigma = 0.002 * np.sqrt(minutes / 5)

    returns = rng.normal(0.00005, sigma, bars)
    close = start_price * np.exp(np.cumsum(returns))
    open_ = np.concatenate([[start_price], close[:-1]])
    body_high = np.maximum(open_, close)
    body_low = np.minimum(open_, close)
    wick = np.abs(rng.normal(0.0, sigma / 2, bars)) * close

    end = int(time.time()) // (minutes * 60) * (minutes * 60)
    times = end - (bars - 1 - np.arange(bars)) * minutes * 60

    return pd.DataFrame({
        "time": times.astype("int64"),
        "open": open_,
        "high": body_high + wick,
        "low": body_low - wick,
        "close": close,
        "volume": rng.lognormal(mean=3.0, sigma=0.5, size=bars),
    })


# =============================================================================
# PIPELINE STEPS
# =============================================================================

def replay_history(
    engine: SignalEngine,
    candles: pd.DataFrame,
    timeframe: Timeframe,
    refreshes: int,
    logger: logging.Logger
) -> SignalHistory:
    """
    Recompute the signal as each of the last `refreshes` bars closes.

    Mimics a periodic refresh loop and records material changes.
    """
    history = SignalHistory()
    start = max(1, len(candles) - refreshes)
    for end in range(start, len(candles) + 1):
        signal = engine.generate(candles.iloc[:end], timeframe)
        history.record(signal)
    logger.info(f"Replayed {len(candles) + 1 - start} refreshes, {len(history)} material changes")
    return history


def print_history(history: SignalHistory) -> None:
    print_subsection("SIGNAL HISTORY (material changes)")
    for entry in history.snapshot():
        stamp = pd.to_datetime(entry.timestamp, unit="s").strftime("%Y-%m-%d %H:%M")
        price = f"{entry.price:,.2f}" if entry.price is not None else "-"
        print(f"    {stamp}  {entry.action.label:<12} score {entry.score:+4d}  entry {price:>12}  {entry.color_tag}")


def write_json_report(signal: TradingSignal, history: Optional[SignalHistory], output_path: Path) -> None:
    """Write the signal (and history, if any) as JSON."""
    report = {
        "metadata": {
            "generated_at": datetime.now().isoformat(),
            "version": VERSION,
        },
        "signal": signal_to_dict(signal),
        "history": [
            {
                "action": e.action.value,
                "score": e.score,
                "price": e.price,
                "timestamp": e.timestamp,
                "color": e.color_tag,
            }
            for e in (history.snapshot() if history is not None else ())
        ],
    }
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, 'w') as f:
        json.dump(report, f, indent=2, default=str)


# =============================================================================
# MAIN
# =============================================================================

def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the demo runner.

    Returns
    -------
    int
        Exit code (0 for success, 1 for failure)
    """
    parser = argparse.ArgumentParser(
        description="Confluence Advisor - Demo Runner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_demo.py                                 # Synthetic 15m candles
  python run_demo.py --timeframe 1h --bars 400
  python run_demo.py --input candles.csv --json outputs/signal.json
  python run_demo.py --prediction                    # Forced up/down call
        """
    )
    parser.add_argument("--input", "-i", type=Path, default=None,
                        help="CSV file with OHLCV candles (default: synthetic random walk)")
    parser.add_argument("--timeframe", "-t", default="15m",
                        choices=[tf.value for tf in Timeframe],
                        help="Candle timeframe (default: 15m)")
    parser.add_argument("--bars", "-n", type=int, default=DEFAULT_BARS,
                        help=f"Synthetic bars to generate (default: {DEFAULT_BARS})")
    parser.add_argument("--seed", type=int, default=DEFAULT_SEED,
                        help=f"Random seed for synthetic candles (default: {DEFAULT_SEED})")
    parser.add_argument("--replay", type=int, default=DEFAULT_REPLAY,
                        help=f"Refreshes to replay into the signal history (default: {DEFAULT_REPLAY})")
    parser.add_argument("--prediction", "-p", action="store_true",
                        help="Enable forced-bias prediction mode")
    parser.add_argument("--json", "-j", type=Path, default=None,
                        help="Write the signal report as JSON")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Enable verbose logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")

    args = parser.parse_args(argv)

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="  %(asctime)s │ %(levelname)s │ %(message)s",
        datefmt="%H:%M:%S"
    )
    logger = logging.getLogger(__name__)

    timeframe = Timeframe.parse(args.timeframe)

    print(BANNER)
    print(f"  Execution Started: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"  Source:            {args.input if args.input else f'synthetic ({args.bars} bars, seed {args.seed})'}")
    print(f"  Timeframe:         {timeframe.value}")
    print(f"  Prediction mode:   {'on' if args.prediction else 'off'}")
    print(f"  Version:           {VERSION}")
    print()

    try:
        print_section_header("STEP 1: CANDLES")
        if args.input:
            logger.info(f"Loading candles from {args.input}")
            candles = load_candles_csv(args.input)
        else:
            candles = generate_random_walk(args.bars, timeframe, seed=args.seed)
        logger.info(f"{len(candles)} candles, last close {candles['close'].iloc[-1]:,.2f}")

        print_section_header("STEP 2-3: SIGNAL, TARGETS AND TRADE PLAN")
        engine = SignalEngine()
        signal = engine.generate(candles, timeframe, prediction_mode=args.prediction)
        print_signal_report(signal)

        history = None
        if args.replay > 0:
            print_section_header("STEP 4: REFRESH REPLAY")
            history = replay_history(engine, candles, timeframe, args.replay, logger)
            print_history(history)

        if args.json:
            write_json_report(signal, history, args.json)
            logger.info(f"Saved JSON report to {args.json}")

        return 0

    except Exception as e:
        logger.error(f"Demo failed: {e}")
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())

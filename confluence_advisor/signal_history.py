"""
Bounded signal history.

Caller-owned log of material signal changes. The scoring path never reads
it, so recomputation stays a pure function of the candle input.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Deque, Optional, Tuple

from confluence_advisor.config import HISTORY_MAX_ENTRIES, HISTORY_SCORE_DELTA, SignalAction

if TYPE_CHECKING:
    from confluence_advisor.signal_engine import TradingSignal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HistoryEntry:
    action: SignalAction
    score: int
    price: Optional[float]
    timestamp: int
    color_tag: str


class SignalHistory:
    """
    Ring buffer of the last `max_entries` material signal changes.

    A signal is material when there is no previous entry, the action
    differs from the last entry, or the score moved by `score_delta` or
    more. Writes are expected to be serialized by the caller.
    """

    def __init__(self, max_entries: int = HISTORY_MAX_ENTRIES, score_delta: int = HISTORY_SCORE_DELTA):
        self.score_delta = score_delta
        self._entries: Deque[HistoryEntry] = deque(maxlen=max_entries)

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def max_entries(self) -> int:
        return self._entries.maxlen

    @property
    def last(self) -> Optional[HistoryEntry]:
        return self._entries[-1] if self._entries else None

    def is_material(self, action: SignalAction, score: int) -> bool:
        last = self.last
        return (
            last is None
            or last.action is not action
            or abs(last.score - score) >= self.score_delta
        )

    def record(self, signal: 'TradingSignal') -> bool:
        """
        Append the signal if it changed materially.

        Returns
        -------
        bool
            True when an entry was appended
        """
        if not self.is_material(signal.action, signal.score):
            return False

        self._entries.append(HistoryEntry(
            action=signal.action,
            score=signal.score,
            price=signal.targets.entry,
            timestamp=signal.timestamp,
            color_tag=signal.action.color_tag,
        ))
        logger.info(f"Signal changed: {signal.action.label} (score {signal.score:+d})")
        return True

    def snapshot(self) -> Tuple[HistoryEntry, ...]:
        """Immutable copy of the entries, oldest first."""
        return tuple(self._entries)

    def clear(self) -> None:
        self._entries.clear()

from __future__ import annotations

from enum import Enum
from typing import Hashable, Optional, Sequence, Tuple

from .betting import to_call
from .errors import StuckRound
from .models import ActionType, Hand, Seat


def next_actor(seats: Sequence[Seat], from_position: int) -> Optional[int]:
    """First seat clockwise of ``from_position`` that can still act, wrapping around."""
    count = len(seats)
    for step in range(1, count + 1):
        idx = (from_position + step) % count
        if seats[idx].can_act:
            return idx
    return None


def default_action(hand: Hand, seat: Seat) -> Tuple[ActionType, Optional[int]]:
    # Timeout policy: check when nothing is owed, otherwise give the hand up.
    if seat.current_bet == hand.current_bet:
        return ActionType.CHECK, None
    return ActionType.FOLD, None


def automated_action(hand: Hand, seat: Seat, call_threshold: int) -> Tuple[ActionType, Optional[int]]:
    """House seat: call anything cheap, fold the rest. Not a strategy engine."""
    owed = to_call(hand, seat)
    if owed == 0:
        return ActionType.CHECK, None
    if owed < call_threshold:
        return ActionType.CALL, None
    return ActionType.FOLD, None


class Verdict(str, Enum):
    PROGRESS = "progress"
    STALLED = "stalled"


class StallWatchdog:
    """Counts consecutive watchdog ticks that saw the same hand progress mark."""

    def __init__(self, limit: int = 3) -> None:
        self.limit = limit
        self.stalls = 0
        self._mark: Optional[Hashable] = None

    def check(self, mark: Hashable) -> Verdict:
        if mark != self._mark:
            self._mark = mark
            self.stalls = 0
            return Verdict.PROGRESS
        self.stalls += 1
        if self.stalls >= self.limit:
            stalls = self.stalls
            self.reset()
            raise StuckRound(f"No progress after {stalls} consecutive checks at {mark}")
        return Verdict.STALLED

    def reset(self) -> None:
        self.stalls = 0
        self._mark = None

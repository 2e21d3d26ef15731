from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .cards import Card
from .errors import TableError


class Phase(str, Enum):
    WAITING = "waiting"
    DEALING = "dealing"
    PREFLOP = "preflop"
    FLOP = "flop"
    TURN = "turn"
    RIVER = "river"
    SHOWDOWN = "showdown"
    COMPLETE = "complete"


BETTING_PHASES = (Phase.PREFLOP, Phase.FLOP, Phase.TURN, Phase.RIVER)
TERMINAL_PHASES = (Phase.SHOWDOWN, Phase.COMPLETE)


class ActionType(str, Enum):
    FOLD = "fold"
    CHECK = "check"
    CALL = "call"
    BET = "bet"
    RAISE = "raise"


class ActionSource(str, Enum):
    PLAYER = "player"
    AUTOMATED = "automated"
    TIMEOUT = "timeout"


class Position(str, Enum):
    # Clockwise around the table.
    BOTTOM = "bottom"
    BOTTOM_LEFT = "bottomLeft"
    LEFT = "left"
    TOP_LEFT = "topLeft"
    TOP = "top"
    TOP_RIGHT = "topRight"
    RIGHT = "right"
    BOTTOM_RIGHT = "bottomRight"


POSITIONS = list(Position)


class SeatStatus(str, Enum):
    WAITING = "waiting"
    TO_ACT = "to_act"
    ACTED = "acted"
    FOLDED = "folded"
    ALL_IN = "all_in"


@dataclass
class TableConfig:
    seats: int = 8
    room_id: str = "R-1"
    starting_stack: int = 1_000
    minimum_bet: int = 20
    move_time_ms: int = 30_000
    bot_delay_ms: int = 1_000
    bot_call_threshold: int = 100
    watchdog_ms: int = 90_000
    stall_limit: int = 3
    rake_percent: float = 0.0
    dealer_position: int = 0

    def __post_init__(self) -> None:
        if not 2 <= self.seats <= len(POSITIONS):
            raise ValueError(f"Table supports 2-{len(POSITIONS)} seats, got {self.seats}")
        if self.minimum_bet <= 0:
            raise ValueError("minimum_bet must be positive")
        if not 0.0 <= self.rake_percent < 1.0:
            raise ValueError("rake_percent must be in [0, 1)")


@dataclass(frozen=True)
class SeatSpec:
    player_id: str
    display_name: str
    automated: bool = False


@dataclass
class Seat:
    seat: int
    player_id: str
    display_name: str
    position: Position
    chip_stack: int
    automated: bool = False
    status: SeatStatus = SeatStatus.WAITING
    current_bet: int = 0
    total_in_pot: int = 0
    hole_cards: List[Card] = field(default_factory=list)
    version: int = 0

    @property
    def is_active(self) -> bool:
        return self.status != SeatStatus.WAITING

    @property
    def has_folded(self) -> bool:
        return self.status == SeatStatus.FOLDED

    @property
    def has_acted(self) -> bool:
        return self.status in (SeatStatus.ACTED, SeatStatus.ALL_IN)

    @property
    def is_all_in(self) -> bool:
        return self.status == SeatStatus.ALL_IN

    @property
    def in_hand(self) -> bool:
        return self.is_active and not self.has_folded

    @property
    def can_act(self) -> bool:
        return self.status in (SeatStatus.TO_ACT, SeatStatus.ACTED)

    def reset_for_hand(self, dealt: bool) -> None:
        self.status = SeatStatus.TO_ACT if dealt else SeatStatus.WAITING
        self.current_bet = 0
        self.total_in_pot = 0
        self.hole_cards = []

    def reset_for_round(self) -> None:
        self.current_bet = 0
        if self.status == SeatStatus.ACTED:
            self.status = SeatStatus.TO_ACT


@dataclass
class Hand:
    # Everything about one hand; a new Hand (new id) is issued for every round.
    hand_id: str
    room_id: str
    hand_number: int
    dealer_position: int
    phase: Phase = Phase.WAITING
    current_bet: int = 0
    pot: int = 0
    rake: int = 0
    # Chips raked in earlier hands at this table.
    house: int = 0
    community: List[Card] = field(default_factory=list)
    deck: List[Card] = field(default_factory=list)
    turn: Optional[int] = None
    winners: List[int] = field(default_factory=list)
    winning_rank: Optional[str] = None
    winning_score: List[int] = field(default_factory=list)
    aborted: bool = False
    version: int = 0

    def is_turn(self, seat_idx: int) -> bool:
        return self.turn == seat_idx


@dataclass
class ActionResult:
    ok: bool
    error: Optional[TableError] = None
    applied: bool = False

    @classmethod
    def success(cls, applied: bool = True) -> ActionResult:
        return cls(ok=True, applied=applied)

    @classmethod
    def failure(cls, error: TableError) -> ActionResult:
        return cls(ok=False, error=error)

    def payload(self) -> dict:
        if self.ok:
            return {"ok": True, "applied": self.applied}
        assert self.error is not None
        return {"ok": False, "code": self.error.code, "msg": self.error.msg}

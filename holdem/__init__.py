"""Table rules engine: cards, betting, turn order and the hand state machine."""

from .cards import RANKS, SUITS, Card, build_deck, deal, parse_cards
from .errors import (
    DealError,
    InsufficientChips,
    InvalidAction,
    StaleTransition,
    StuckRound,
    SyncFailure,
    TableError,
)
from .evaluator import evaluate, evaluate_best
from .machine import (
    AbortHand,
    HoleCardsPersisted,
    NextHand,
    PlayerAction,
    RemoteHandUpdate,
    RemoteSeatUpdate,
    StartHand,
    TableState,
    reduce,
    settle,
    snapshot,
)
from .models import (
    ActionResult,
    ActionSource,
    ActionType,
    Hand,
    Phase,
    Position,
    Seat,
    SeatSpec,
    SeatStatus,
    TableConfig,
)

__all__ = [
    "RANKS",
    "SUITS",
    "Card",
    "build_deck",
    "deal",
    "parse_cards",
    "DealError",
    "InsufficientChips",
    "InvalidAction",
    "StaleTransition",
    "StuckRound",
    "SyncFailure",
    "TableError",
    "evaluate",
    "evaluate_best",
    "AbortHand",
    "HoleCardsPersisted",
    "NextHand",
    "PlayerAction",
    "RemoteHandUpdate",
    "RemoteSeatUpdate",
    "StartHand",
    "TableState",
    "reduce",
    "settle",
    "snapshot",
    "ActionResult",
    "ActionSource",
    "ActionType",
    "Hand",
    "Phase",
    "Position",
    "Seat",
    "SeatSpec",
    "SeatStatus",
    "TableConfig",
]

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from holdem.cards import Card, build_deck, parse_cards
from holdem.machine import HoleCardsPersisted, PlayerAction, StartHand, TableState, chips_in_play, reduce
from holdem.models import BETTING_PHASES, ActionSource, ActionType, SeatSpec, TableConfig


def players(count: int, automated: Sequence[int] = ()) -> List[SeatSpec]:
    return [
        SeatSpec(player_id=f"player{idx}", display_name=f"Player{idx}", automated=idx in automated)
        for idx in range(count)
    ]


def create_state(
    *,
    seats: int = 4,
    starting_stack: int = 1_000,
    minimum_bet: int = 20,
    dealer_position: int = 0,
    rake_percent: float = 0.0,
    viewer: Optional[int] = None,
    hand_id: str = "H-test-1",
) -> TableState:
    """Table state with every seat filled and a waiting hand."""
    config = TableConfig(
        seats=seats,
        starting_stack=starting_stack,
        minimum_bet=minimum_bet,
        dealer_position=dealer_position,
        rake_percent=rake_percent,
    )
    return TableState.create(config, players(seats), hand_id=hand_id, viewer=viewer)


def start_hand(state: TableState, seed: int = 42) -> TableState:
    """Deal and open preflop betting."""
    state = reduce(state, StartHand(state.hand.hand_id, seed))
    return reduce(state, HoleCardsPersisted(state.hand.hand_id))


def act(
    state: TableState,
    seat: int,
    action: ActionType,
    amount: Optional[int] = None,
    source: ActionSource = ActionSource.PLAYER,
) -> TableState:
    return reduce(state, PlayerAction(state.hand.hand_id, seat, action, amount, source))


def perform_actions(state: TableState, actions: Iterable[Tuple[int, ActionType, Optional[int]]]) -> TableState:
    """Apply a scripted sequence of actions (seat, action, amount)."""
    for seat_idx, action, amount in actions:
        state = act(state, seat_idx, action, amount)
    return state


def auto_complete_hand(state: TableState) -> TableState:
    """Check or call every turn until the hand is over."""
    while state.hand.phase in BETTING_PHASES:
        seat_idx = state.hand.turn
        assert seat_idx is not None
        seat = state.seats[seat_idx]
        action = ActionType.CHECK if seat.current_bet == state.hand.current_bet else ActionType.CALL
        state = act(state, seat_idx, action)
    return state


def rig(state: TableState, hole: Dict[int, Sequence[str]], board: Sequence[str]) -> TableState:
    """Replace dealt hole cards and stack the deck so ``board`` comes out next."""
    used: List[Card] = []
    for seat_idx, labels in hole.items():
        cards = parse_cards(labels, face_up=seat_idx == state.viewer)
        state.seats[seat_idx].hole_cards = cards
        used.extend(cards)
    board_cards = parse_cards(board)
    used.extend(board_cards)
    taken = {(card.rank, card.suit) for card in used}
    rest = [card for card in build_deck() if (card.rank, card.suit) not in taken]
    state.hand.deck = board_cards + rest
    return state


def total_chips(state: TableState) -> int:
    return chips_in_play(state)

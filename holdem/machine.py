from __future__ import annotations

import copy
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Union

from .betting import (
    apply_action,
    build_side_pots,
    legal_actions,
    recompute_pot,
    reset_round,
    round_complete,
    to_call,
    total_pot,
)
from .cards import cards_to_labels
from .dealer import deal_hole, deal_street, shuffle
from .errors import InvalidAction, StaleTransition, SyncFailure
from .evaluator import award_pots, describe_rank, flatten_score, take_rake
from .models import (
    BETTING_PHASES,
    POSITIONS,
    TERMINAL_PHASES,
    ActionSource,
    ActionType,
    Hand,
    Phase,
    Seat,
    SeatSpec,
    SeatStatus,
    TableConfig,
)
from .scheduler import next_actor

LOGGER = logging.getLogger("holdem.machine")

# The hand state machine is a reducer: reduce(state, event) -> new state.
# Player actions, automated seats, timeouts and store notifications are all
# just events. Nothing here touches the network or the clock.

STREETS = [Phase.PREFLOP, Phase.FLOP, Phase.TURN, Phase.RIVER]


@dataclass(frozen=True)
class StartHand:
    hand_id: str
    seed: Optional[int] = None


@dataclass(frozen=True)
class HoleCardsPersisted:
    hand_id: str


@dataclass(frozen=True)
class PlayerAction:
    hand_id: str
    seat: int
    action: ActionType
    amount: Optional[int] = None
    source: ActionSource = ActionSource.PLAYER
    expected_version: Optional[int] = None


@dataclass(frozen=True)
class AbortHand:
    hand_id: str
    reason: str = ""


@dataclass(frozen=True)
class NextHand:
    previous_hand_id: str
    hand_id: str


@dataclass(frozen=True)
class RemoteHandUpdate:
    hand_id: str
    hand_number: int
    version: int
    fields: Mapping[str, object]


@dataclass(frozen=True)
class RemoteSeatUpdate:
    hand_id: str
    hand_number: int
    seat: int
    version: int
    fields: Mapping[str, object]


Event = Union[StartHand, HoleCardsPersisted, PlayerAction, AbortHand, NextHand, RemoteHandUpdate, RemoteSeatUpdate]
REMOTE_EVENTS = (RemoteHandUpdate, RemoteSeatUpdate)


@dataclass
class TableState:
    config: TableConfig
    seats: List[Seat]
    hand: Hand
    viewer: Optional[int] = None
    events: List[Dict[str, object]] = field(default_factory=list, compare=False)

    @classmethod
    def create(
        cls,
        config: TableConfig,
        players: Sequence[SeatSpec],
        *,
        hand_id: Optional[str] = None,
        viewer: Optional[int] = None,
    ) -> TableState:
        if len(players) != config.seats:
            raise ValueError(f"Expected {config.seats} players, got {len(players)}")
        seats = [
            Seat(
                seat=idx,
                player_id=spec.player_id,
                display_name=spec.display_name,
                position=POSITIONS[idx],
                chip_stack=config.starting_stack,
                automated=spec.automated,
            )
            for idx, spec in enumerate(players)
        ]
        hand = Hand(
            hand_id=hand_id or make_hand_id(),
            room_id=config.room_id,
            hand_number=1,
            dealer_position=config.dealer_position % config.seats,
            version=1,
        )
        for seat in seats:
            seat.version = hand.version
        return cls(config=config, seats=seats, hand=hand, viewer=viewer)

    def seat_of(self, player_id: str) -> Optional[int]:
        for seat in self.seats:
            if seat.player_id == player_id:
                return seat.seat
        return None


def make_hand_id() -> str:
    return f"H-{time.strftime('%Y%m%d')}-{uuid.uuid4().hex[:10]}"


# Reducer ----------------------------------------------------------------------


def reduce(state: TableState, event: Event) -> TableState:
    """Apply ``event`` to a copy of ``state``.

    Raises ``InvalidAction``/``InsufficientChips`` for illegal player input and
    ``StaleTransition`` when the event has already been applied or superseded.
    The input state is never modified.
    """
    handler = _HANDLERS.get(type(event))
    if handler is None:
        raise InvalidAction(f"Unsupported event {type(event).__name__}")
    next_state = copy.deepcopy(state)
    next_state.events = []
    handler(next_state, event)
    if not isinstance(event, REMOTE_EVENTS):
        _stamp(state, next_state)
    return next_state


def settle(state: TableState) -> TableState:
    """Re-evaluate pending transitions; a no-op once they have been applied."""
    next_state = copy.deepcopy(state)
    next_state.events = []
    if _settle(next_state):
        _stamp(state, next_state)
    return next_state


def _stamp(before: TableState, after: TableState) -> None:
    # One version per reduction; seat rows carry the version that last touched them.
    new_identity = before.hand.hand_id != after.hand.hand_id
    after.hand.version = (0 if new_identity else before.hand.version) + 1
    for old, new in zip(before.seats, after.seats):
        if new_identity or old != new:
            new.version = after.hand.version


def _require_hand(state: TableState, hand_id: str) -> Hand:
    if state.hand.hand_id != hand_id:
        raise StaleTransition(f"Event for hand {hand_id}; current hand is {state.hand.hand_id}")
    return state.hand


def _start_hand(state: TableState, event: StartHand) -> None:
    hand = _require_hand(state, event.hand_id)
    if hand.phase != Phase.WAITING:
        raise StaleTransition(f"Hand {hand.hand_id} already {hand.phase.value}")
    funded = [seat for seat in state.seats if seat.chip_stack > 0]
    if len(funded) < 2:
        raise InvalidAction("Not enough players with chips to start a hand")

    for seat in state.seats:
        seat.reset_for_hand(dealt=seat.chip_stack > 0)
    hand.deck = shuffle(event.seed)
    deal_hole(hand.deck, state.seats, hand.dealer_position, viewer=state.viewer)
    hand.phase = Phase.DEALING
    state.events.append(
        {
            "ev": "START_HAND",
            "hand_id": hand.hand_id,
            "hand_number": hand.hand_number,
            "dealer": hand.dealer_position,
            "seats": [seat.seat for seat in funded],
        }
    )


def _hole_cards_persisted(state: TableState, event: HoleCardsPersisted) -> None:
    hand = _require_hand(state, event.hand_id)
    if hand.phase != Phase.DEALING:
        raise StaleTransition(f"Hand {hand.hand_id} is {hand.phase.value}, not dealing")
    hand.phase = Phase.PREFLOP
    hand.current_bet = state.config.minimum_bet
    hand.turn = next_actor(state.seats, hand.dealer_position)
    state.events.append({"ev": "PREFLOP", "current_bet": hand.current_bet, "turn": hand.turn})


def _player_action(state: TableState, event: PlayerAction) -> None:
    hand = _require_hand(state, event.hand_id)
    from_player = event.source == ActionSource.PLAYER
    if event.expected_version is not None and event.expected_version != hand.version:
        raise StaleTransition(f"Action expected version {event.expected_version}, hand is at {hand.version}")
    if hand.phase not in BETTING_PHASES:
        if from_player:
            raise InvalidAction(f"Hand is {hand.phase.value}; no betting in progress")
        raise StaleTransition(f"Hand {hand.hand_id} left betting ({hand.phase.value})")
    if hand.turn != event.seat:
        if from_player:
            raise InvalidAction("Not your turn")
        raise StaleTransition(f"Seat {event.seat} no longer holds the turn")

    update = apply_action(
        hand,
        state.seats,
        event.seat,
        event.action,
        event.amount,
        minimum_bet=state.config.minimum_bet,
    )
    record = dict(update.event)
    record["source"] = event.source.value
    state.events.append(record)

    if not _settle(state):
        hand.turn = next_actor(state.seats, event.seat)


def _abort_hand(state: TableState, event: AbortHand) -> None:
    hand = _require_hand(state, event.hand_id)
    if hand.phase in (Phase.WAITING, Phase.COMPLETE):
        raise StaleTransition(f"Hand {hand.hand_id} is {hand.phase.value}; nothing to abort")
    for seat in state.seats:
        seat.chip_stack += seat.total_in_pot
        if seat.in_hand:
            seat.status = SeatStatus.FOLDED
    hand.aborted = True
    LOGGER.warning("Aborting hand %s in %s: %s", hand.hand_id, hand.phase.value, event.reason or "no reason")
    state.events.append({"ev": "HAND_ABORTED", "hand_id": hand.hand_id, "reason": event.reason})
    _finish(state, winners=[])


def _next_hand(state: TableState, event: NextHand) -> None:
    hand = _require_hand(state, event.previous_hand_id)
    if hand.phase != Phase.COMPLETE:
        raise StaleTransition(f"Hand {hand.hand_id} is {hand.phase.value}, not complete")
    _rotate(state, event.hand_id)


def _rotate(state: TableState, hand_id: str) -> None:
    previous = state.hand
    state.hand = Hand(
        hand_id=hand_id,
        room_id=previous.room_id,
        hand_number=previous.hand_number + 1,
        dealer_position=(previous.dealer_position + 1) % len(state.seats),
        house=previous.house + previous.rake,
    )
    for seat in state.seats:
        seat.reset_for_hand(dealt=False)
    state.events.append(
        {
            "ev": "NEW_HAND",
            "hand_id": hand_id,
            "hand_number": state.hand.hand_number,
            "dealer": state.hand.dealer_position,
        }
    )


# Transitions ------------------------------------------------------------------


def _settle(state: TableState) -> bool:
    hand = state.hand
    if hand.phase not in BETTING_PHASES:
        return False
    live = [seat for seat in state.seats if seat.in_hand]
    if len(live) == 1:
        _fold_out(state, live[0])
        return True
    if not round_complete(hand, state.seats):
        return False
    while True:
        if hand.phase == Phase.RIVER:
            _showdown(state)
            return True
        _advance_street(state)
        if not round_complete(hand, state.seats):
            return True


def _advance_street(state: TableState) -> None:
    hand = state.hand
    cards = deal_street(hand.deck, len(hand.community))
    hand.community.extend(cards)
    hand.phase = STREETS[STREETS.index(hand.phase) + 1]
    reset_round(hand, state.seats)
    hand.turn = next_actor(state.seats, hand.dealer_position)
    state.events.append({"ev": hand.phase.name, "cards": cards_to_labels(cards), "turn": hand.turn})


def _fold_out(state: TableState, winner: Seat) -> None:
    hand = state.hand
    amount = total_pot(state.seats)
    rake = take_rake(amount, state.config.rake_percent)
    winner.chip_stack += amount - rake
    hand.rake += rake
    state.events.append(
        {"ev": "POT_AWARD", "seat": winner.seat, "amount": amount - rake, "reason": "fold_out"}
    )
    _finish(state, winners=[winner.seat])


def _showdown(state: TableState) -> None:
    hand = state.hand
    hand.phase = Phase.SHOWDOWN
    hand.turn = None
    for seat in state.seats:
        if seat.in_hand:
            seat.hole_cards = [card.facing(True) for card in seat.hole_cards]

    award = award_pots(
        state.seats,
        hand.community,
        build_side_pots(state.seats),
        state.config.rake_percent,
    )
    for seat_idx, score in sorted(award.showdown.scores.items()):
        state.events.append(
            {
                "ev": "SHOWDOWN",
                "seat": seat_idx,
                "hand": cards_to_labels(state.seats[seat_idx].hole_cards),
                "board": cards_to_labels(hand.community),
                "rank": describe_rank(score),
            }
        )
    for seat_idx, payout in sorted(award.payouts.items()):
        state.events.append({"ev": "POT_AWARD", "seat": seat_idx, "amount": payout, "reason": "showdown"})

    hand.rake += award.rake
    showdown = award.showdown
    if showdown.score is not None:
        hand.winning_rank = showdown.rank
        hand.winning_score = flatten_score(showdown.score)
    _finish(state, winners=showdown.winners)


def _finish(state: TableState, winners: List[int]) -> None:
    hand = state.hand
    for seat in state.seats:
        seat.current_bet = 0
        seat.total_in_pot = 0
    hand.pot = 0
    hand.current_bet = 0
    hand.turn = None
    hand.winners = list(winners)
    hand.phase = Phase.COMPLETE
    LOGGER.info("Hand %s (#%d) complete; winners %s", hand.hand_id, hand.hand_number, winners)
    state.events.append({"ev": "HAND_COMPLETE", "hand_id": hand.hand_id, "winners": list(winners)})


# Remote merges ----------------------------------------------------------------

HAND_FIELDS = (
    "room_id",
    "phase",
    "dealer_position",
    "current_bet",
    "pot",
    "rake",
    "house",
    "community",
    "deck",
    "turn",
    "winners",
    "winning_rank",
    "winning_score",
    "aborted",
)
SEAT_FIELDS = (
    "player_id",
    "display_name",
    "chip_stack",
    "automated",
    "status",
    "current_bet",
    "total_in_pot",
    "hole_cards",
)


def _remote_hand(state: TableState, event: RemoteHandUpdate) -> None:
    hand = state.hand
    _check_seat_refs(event.fields, len(state.seats))
    if event.hand_number < hand.hand_number:
        raise StaleTransition(f"Row for hand #{event.hand_number}; local hand is #{hand.hand_number}")
    if event.hand_id != hand.hand_id:
        # Two clients may open the same hand number; the larger id wins everywhere.
        if event.hand_number == hand.hand_number and event.hand_id < hand.hand_id:
            raise StaleTransition(f"Hand {event.hand_id} lost to {hand.hand_id}")
        dealer = event.fields.get("dealer_position", (hand.dealer_position + 1) % len(state.seats))
        state.hand = Hand(
            hand_id=event.hand_id,
            room_id=hand.room_id,
            hand_number=event.hand_number,
            dealer_position=int(dealer),  # type: ignore[arg-type]
        )
        for seat in state.seats:
            seat.reset_for_hand(dealt=False)
            seat.version = 0
        hand = state.hand
    elif event.version < hand.version:
        raise StaleTransition(f"Hand row v{event.version} older than local v{hand.version}")

    before = copy.deepcopy(hand)
    for name in HAND_FIELDS:
        if name in event.fields:
            setattr(hand, name, copy.deepcopy(event.fields[name]))
    hand.version = max(hand.version, event.version)
    if hand == before:
        raise StaleTransition(f"Hand row v{event.version} changes nothing")


def _check_seat_refs(fields: Mapping[str, object], seat_count: int) -> None:
    refs = [fields.get("dealer_position"), fields.get("turn"), *fields.get("winners", ())]  # type: ignore[misc]
    for ref in refs:
        if ref is not None and not 0 <= ref < seat_count:  # type: ignore[operator]
            raise SyncFailure(f"Hand row names seat {ref}; table has {seat_count} seats")


def _remote_seat(state: TableState, event: RemoteSeatUpdate) -> None:
    hand = state.hand
    if event.hand_id != hand.hand_id:
        raise StaleTransition(f"Seat row for hand {event.hand_id}; current hand is {hand.hand_id}")
    if not 0 <= event.seat < len(state.seats):
        raise SyncFailure(f"Seat row for unknown seat {event.seat}")
    seat = state.seats[event.seat]
    if event.version < seat.version:
        raise StaleTransition(f"Seat {event.seat} row v{event.version} older than local v{seat.version}")

    before = copy.deepcopy(seat)
    for name in SEAT_FIELDS:
        if name in event.fields:
            setattr(seat, name, copy.deepcopy(event.fields[name]))
    # Stored face-up flags are the writer's view, not ours.
    revealed = hand.phase in TERMINAL_PHASES and hand.winning_rank is not None and seat.in_hand
    seat.hole_cards = [card.facing(seat.seat == state.viewer or revealed) for card in seat.hole_cards]
    seat.version = max(seat.version, event.version)
    if seat == before:
        raise StaleTransition(f"Seat {event.seat} row v{event.version} changes nothing")


_HANDLERS: Dict[type, Callable[[TableState, object], None]] = {
    StartHand: _start_hand,  # type: ignore[dict-item]
    HoleCardsPersisted: _hole_cards_persisted,  # type: ignore[dict-item]
    PlayerAction: _player_action,  # type: ignore[dict-item]
    AbortHand: _abort_hand,  # type: ignore[dict-item]
    NextHand: _next_hand,  # type: ignore[dict-item]
    RemoteHandUpdate: _remote_hand,  # type: ignore[dict-item]
    RemoteSeatUpdate: _remote_seat,  # type: ignore[dict-item]
}


# Read-only projection ---------------------------------------------------------


def snapshot(state: TableState, viewer: Optional[int] = None) -> Dict[str, object]:
    """Rendering view of the table; hides hole cards the viewer may not see."""
    hand = state.hand
    reveal = hand.phase in TERMINAL_PHASES
    seats = []
    for seat in state.seats:
        visible = seat.seat == viewer or (reveal and seat.in_hand)
        seats.append(
            {
                "seat": seat.seat,
                "player_id": seat.player_id,
                "display_name": seat.display_name,
                "position": seat.position.value,
                "chip_stack": seat.chip_stack,
                "current_bet": seat.current_bet,
                "status": seat.status.value,
                "is_active": seat.is_active,
                "has_folded": seat.has_folded,
                "has_acted": seat.has_acted,
                "is_turn": hand.is_turn(seat.seat),
                "automated": seat.automated,
                "hole_cards": cards_to_labels(seat.hole_cards) if visible else ["??"] * len(seat.hole_cards),
            }
        )

    payload: Dict[str, object] = {
        "hand_id": hand.hand_id,
        "room_id": hand.room_id,
        "hand_number": hand.hand_number,
        "phase": hand.phase.value,
        "dealer_position": hand.dealer_position,
        "current_bet": hand.current_bet,
        "pot": hand.pot,
        "total_pot": total_pot(state.seats),
        "rake": hand.rake,
        "house": hand.house,
        "community": cards_to_labels(hand.community),
        "turn": hand.turn,
        "seats": seats,
        "winners": list(hand.winners),
        "winning_rank": hand.winning_rank,
        "aborted": hand.aborted,
        "version": hand.version,
    }

    if viewer is not None and hand.is_turn(viewer) and hand.phase in BETTING_PHASES:
        seat = state.seats[viewer]
        payload["legal"] = [action.value for action in legal_actions(hand, seat)]
        payload["to_call"] = to_call(hand, seat)
        payload["minimum_bet"] = state.config.minimum_bet
    return payload


def chips_in_play(state: TableState) -> int:
    """pot + live bets + stacks + rake taken so far; constant for the lifetime of a table."""
    return (
        recompute_pot(state.seats)
        + sum(seat.current_bet for seat in state.seats)
        + sum(seat.chip_stack for seat in state.seats)
        + state.hand.rake
        + state.hand.house
    )

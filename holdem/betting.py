from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from .errors import InsufficientChips, InvalidAction
from .models import ActionType, Hand, Seat, SeatStatus

# Betting round bookkeeping. Every check runs before any mutation so a rejected
# action leaves seats and hand exactly as they were.


@dataclass
class BettingUpdate:
    seats: List[Seat]
    pot: int
    round_max_bet: int
    event: Dict[str, object]


def to_call(hand: Hand, seat: Seat) -> int:
    return max(hand.current_bet - seat.current_bet, 0)


def legal_actions(hand: Hand, seat: Seat) -> List[ActionType]:
    if not seat.can_act:
        return []
    legal = [ActionType.FOLD]
    owed = to_call(hand, seat)
    if owed == 0:
        legal.append(ActionType.CHECK)
    else:
        legal.append(ActionType.CALL)
    if hand.current_bet == 0:
        if seat.chip_stack > 0:
            legal.append(ActionType.BET)
    elif seat.chip_stack > owed:
        legal.append(ActionType.RAISE)
    return legal


def commit_chips(seat: Seat, amount: int) -> int:
    amount = min(amount, seat.chip_stack)
    seat.chip_stack -= amount
    seat.current_bet += amount
    seat.total_in_pot += amount
    return amount


def recompute_pot(seats: Sequence[Seat]) -> int:
    """Chips swept from finished streets: cumulative contributions minus live bets."""
    return sum(seat.total_in_pot - seat.current_bet for seat in seats)


def total_pot(seats: Sequence[Seat]) -> int:
    return sum(seat.total_in_pot for seat in seats)


def apply_action(
    hand: Hand,
    seats: List[Seat],
    seat_idx: int,
    action: ActionType,
    amount: Optional[int] = None,
    *,
    minimum_bet: int,
) -> BettingUpdate:
    if not 0 <= seat_idx < len(seats):
        raise InvalidAction(f"Unknown seat {seat_idx}")
    seat = seats[seat_idx]
    if not seat.can_act:
        raise InvalidAction(f"Seat {seat_idx} cannot act ({seat.status.value})")

    round_max = hand.current_bet
    event: Dict[str, object]

    if action == ActionType.FOLD:
        seat.status = SeatStatus.FOLDED
        event = {"ev": "FOLD", "seat": seat_idx}
    elif action == ActionType.CHECK:
        if seat.current_bet != round_max:
            raise InvalidAction("Cannot check when facing a bet")
        seat.status = SeatStatus.ACTED
        event = {"ev": "CHECK", "seat": seat_idx}
    elif action == ActionType.CALL:
        owed = round_max - seat.current_bet
        if owed <= 0:
            raise InvalidAction("Nothing to call")
        # Short stacks call all-in for whatever they have left.
        paid = commit_chips(seat, owed)
        seat.status = SeatStatus.ACTED
        event = {"ev": "CALL", "seat": seat_idx, "amount": paid}
    elif action in (ActionType.BET, ActionType.RAISE):
        target = _validate_wager(seat, action, amount, round_max, minimum_bet)
        paid = commit_chips(seat, target - seat.current_bet)
        hand.current_bet = target
        seat.status = SeatStatus.ACTED
        for other in seats:
            if other is not seat and other.status == SeatStatus.ACTED:
                other.status = SeatStatus.TO_ACT
        event = {"ev": action.name, "seat": seat_idx, "amount": paid, "to": target}
    else:
        raise InvalidAction(f"Unsupported action {action}")

    if seat.chip_stack == 0 and not seat.has_folded:
        seat.status = SeatStatus.ALL_IN
        event["all_in"] = True

    hand.pot = recompute_pot(seats)
    return BettingUpdate(seats=seats, pot=hand.pot, round_max_bet=hand.current_bet, event=event)


def _validate_wager(
    seat: Seat,
    action: ActionType,
    amount: Optional[int],
    round_max: int,
    minimum_bet: int,
) -> int:
    if amount is None:
        raise InvalidAction(f"{action.value} requires an amount")
    ceiling = seat.chip_stack + seat.current_bet
    if amount > ceiling:
        raise InsufficientChips(f"{action.value} to {amount} exceeds available {ceiling}")
    all_in = amount == ceiling
    if action == ActionType.BET:
        if round_max > 0:
            raise InvalidAction("Cannot bet when facing a bet; raise instead")
        if amount <= 0:
            raise InvalidAction("Bet must be positive")
        if amount < minimum_bet and not all_in:
            raise InvalidAction(f"Bet below minimum of {minimum_bet}")
        return amount
    if round_max == 0:
        raise InvalidAction("Nothing to raise; bet instead")
    if amount <= round_max:
        raise InvalidAction("Raise must exceed current bet")
    if amount < 2 * round_max and not all_in:
        raise InvalidAction(f"Raise below minimum of {2 * round_max}")
    return amount


def round_complete(hand: Hand, seats: Sequence[Seat]) -> bool:
    live = [seat for seat in seats if seat.in_hand]
    actors = [seat for seat in live if not seat.is_all_in]
    if len(actors) <= 1 and all(seat.current_bet >= hand.current_bet for seat in actors):
        return True
    return all(seat.has_acted and seat.current_bet == hand.current_bet for seat in actors)


def reset_round(hand: Hand, seats: Sequence[Seat]) -> None:
    for seat in seats:
        seat.reset_for_round()
    hand.current_bet = 0
    hand.pot = recompute_pot(seats)


def build_side_pots(seats: Sequence[Seat]) -> List[Tuple[int, List[int]]]:
    remaining: Dict[int, int] = {
        seat.seat: seat.total_in_pot for seat in seats if seat.total_in_pot > 0
    }
    by_index = {seat.seat: seat for seat in seats}

    pots: List[Tuple[int, List[int]]] = []
    while True:
        active = [seat_idx for seat_idx, amount in remaining.items() if amount > 0]
        if not active:
            break
        layer = min(remaining[seat_idx] for seat_idx in active)
        pot_total = 0
        for seat_idx in active:
            pot_total += layer
            remaining[seat_idx] -= layer
        contenders = [seat_idx for seat_idx in active if not by_index[seat_idx].has_folded]
        pots.append((pot_total, contenders))
    return pots

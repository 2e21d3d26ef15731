from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .cards import RANKS, Card
from .models import Seat

RANK_VALUE = {rank: idx for idx, rank in enumerate(RANKS, start=2)}

Score = Tuple[int, List[int]]

_CATEGORY_NAMES = (
    "high_card",
    "pair",
    "two_pair",
    "three_of_a_kind",
    "straight",
    "flush",
    "full_house",
    "four_of_a_kind",
    "straight_flush",
)


def evaluate_best(cards: Sequence[Card]) -> Score:
    """Return a strength tuple for up to 7 cards (Texas Hold'em). Higher is better."""
    best: Optional[Score] = None
    for combo in itertools.combinations(cards, 5):
        rank = _evaluate_five(combo)
        if best is None or rank > best:
            best = rank
    assert best is not None
    return best


def _evaluate_five(cards: Sequence[Card]) -> Score:
    ranks = sorted((RANK_VALUE[card.rank] for card in cards), reverse=True)
    suits = [card.suit for card in cards]

    is_flush = len(set(suits)) == 1
    straight_high = _straight_high(cards)

    counts: Dict[str, int] = {}
    for card in cards:
        counts.setdefault(card.rank, 0)
        counts[card.rank] += 1

    ordered_counts = sorted(counts.items(), key=lambda x: (x[1], RANK_VALUE[x[0]]), reverse=True)
    count_values = sorted(counts.values(), reverse=True)

    if straight_high and is_flush:
        return (8, [straight_high])
    if count_values[0] == 4:
        four_rank = RANK_VALUE[ordered_counts[0][0]]
        kicker = max(RANK_VALUE[r] for r, c in ordered_counts if r != ordered_counts[0][0])
        return (7, [four_rank, kicker])
    if count_values[0] == 3 and count_values[1] == 2:
        trips = RANK_VALUE[ordered_counts[0][0]]
        pair = RANK_VALUE[ordered_counts[1][0]]
        return (6, [trips, pair])
    if is_flush:
        return (5, ranks)
    if straight_high:
        return (4, [straight_high])
    if count_values[0] == 3:
        trips_rank = RANK_VALUE[ordered_counts[0][0]]
        kickers = [RANK_VALUE[r] for r, c in ordered_counts[1:]]
        return (3, [trips_rank] + kickers)
    if count_values[0] == 2 and count_values[1] == 2:
        pair_high = RANK_VALUE[ordered_counts[0][0]]
        pair_low = RANK_VALUE[ordered_counts[1][0]]
        kicker = max(RANK_VALUE[r] for r, c in ordered_counts if c == 1)
        return (2, [pair_high, pair_low, kicker])
    if count_values[0] == 2:
        pair_rank = RANK_VALUE[ordered_counts[0][0]]
        kickers = [RANK_VALUE[r] for r, c in ordered_counts[1:]]
        return (1, [pair_rank] + kickers)
    return (0, ranks)


def _straight_high(cards: Iterable[Card]) -> Optional[int]:
    ranks = {RANK_VALUE[card.rank] for card in cards}
    if 14 in ranks:  # Ace low
        ranks.add(1)
    ordered = sorted(ranks)
    best = None
    # Keep scanning: the last matching window is the highest straight.
    for idx in range(len(ordered) - 4):
        window = ordered[idx : idx + 5]
        if window == list(range(window[0], window[0] + 5)):
            best = window[-1]
    return best


def describe_rank(score: Score) -> str:
    return _CATEGORY_NAMES[score[0]]


def flatten_score(score: Score) -> List[int]:
    category, kickers = score
    return [category] + list(kickers)


@dataclass
class Showdown:
    winners: List[int]
    amount_each: int
    score: Optional[Score] = None
    rank: Optional[str] = None
    scores: Dict[int, Score] = field(default_factory=dict)


def score_seats(seats: Sequence[Seat], community: Sequence[Card]) -> Dict[int, Score]:
    return {
        seat.seat: evaluate_best(list(seat.hole_cards) + list(community))
        for seat in seats
        if seat.in_hand
    }


def evaluate(seats: Sequence[Seat], community: Sequence[Card], pot: int = 0) -> Showdown:
    """Pick the tied-best non-folded seats and the even share of ``pot`` each receives."""
    scores = score_seats(seats, community)
    if not scores:
        return Showdown(winners=[], amount_each=0)
    best = max(scores.values())
    winners = sorted(seat_idx for seat_idx, score in scores.items() if score == best)
    return Showdown(
        winners=winners,
        amount_each=pot // len(winners),
        score=best,
        rank=describe_rank(best),
        scores=scores,
    )


def split_pot(amount: int, winners: Sequence[int]) -> Dict[int, int]:
    """Even split; odd chips go one at a time to winners in seat order."""
    share, remainder = divmod(amount, len(winners))
    return {
        seat_idx: share + (1 if idx < remainder else 0)
        for idx, seat_idx in enumerate(sorted(winners))
    }


def take_rake(amount: int, rake_percent: float) -> int:
    if rake_percent <= 0:
        return 0
    return int(amount * rake_percent)


@dataclass
class Award:
    payouts: Dict[int, int]
    rake: int
    showdown: Showdown


def award_pots(
    seats: Sequence[Seat],
    community: Sequence[Card],
    pots: Sequence[Tuple[int, List[int]]],
    rake_percent: float = 0.0,
) -> Award:
    """Distribute each pot layer among its tied-best contenders and credit their stacks."""
    showdown = evaluate(seats, community)
    by_index = {seat.seat: seat for seat in seats}
    payouts: Dict[int, int] = {}
    rake_total = 0
    for pot_value, contenders in pots:
        if pot_value <= 0:
            continue
        # A layer funded only by folded seats goes to the live seats.
        contenders = list(contenders) or list(showdown.scores)
        rake = take_rake(pot_value, rake_percent)
        rake_total += rake
        best = max(showdown.scores[seat_idx] for seat_idx in contenders)
        winners = [seat_idx for seat_idx in contenders if showdown.scores[seat_idx] == best]
        for seat_idx, payout in split_pot(pot_value - rake, winners).items():
            by_index[seat_idx].chip_stack += payout
            payouts[seat_idx] = payouts.get(seat_idx, 0) + payout
    total = sum(pot_value for pot_value, _ in pots)
    if showdown.winners:
        showdown.amount_each = (total - rake_total) // len(showdown.winners)
    return Award(payouts=payouts, rake=rake_total, showdown=showdown)

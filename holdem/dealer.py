from __future__ import annotations

import random
from typing import List, Optional, Sequence

from .cards import Card, build_deck, deal
from .errors import DealError
from .models import Seat

STREET_SIZES = {0: 3, 3: 1, 4: 1}


def shuffle(seed: Optional[int] = None) -> List[Card]:
    rng = random.Random(seed)
    deck = build_deck()
    rng.shuffle(deck)
    return deck


def ensure_capacity(deck: Sequence[Card], active_count: int) -> None:
    needed = 2 * active_count + 5
    if len(deck) < needed:
        raise DealError(f"Deck has {len(deck)} cards; {needed} needed for {active_count} seats")


def deal_hole(
    deck: List[Card],
    seats: Sequence[Seat],
    dealer_position: int,
    viewer: Optional[int] = None,
) -> None:
    """Two cards per dealt seat, one per pass, starting left of the dealer."""
    count = len(seats)
    ordered = [seats[(dealer_position + step) % count] for step in range(1, count + 1)]
    dealt = [seat for seat in ordered if seat.is_active]
    ensure_capacity(deck, len(dealt))
    for seat in dealt:
        seat.hole_cards = []
    for _ in range(2):
        for seat in dealt:
            card = deal(deck, 1)[0]
            seat.hole_cards.append(card.facing(seat.seat == viewer))


def deal_street(deck: List[Card], community_count: int) -> List[Card]:
    """Next street for a board of ``community_count`` cards; empty once the river is out."""
    if community_count == 5:
        return []
    size = STREET_SIZES.get(community_count)
    if size is None:
        raise ValueError(f"Invalid community card count: {community_count}")
    return [card.facing(True) for card in deal(deck, size)]

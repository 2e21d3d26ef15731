import pytest

from holdem.cards import Card, build_deck, deal, parse_label
from holdem.dealer import deal_hole, deal_street, ensure_capacity, shuffle
from holdem.errors import DealError
from holdem.models import SeatStatus

from .helpers import create_state


def test_build_deck_has_52_unique_cards():
    deck = build_deck()
    assert len(deck) == 52
    assert len({(card.rank, card.suit) for card in deck}) == 52
    assert not any(card.face_up for card in deck)


def test_shuffle_is_reproducible_for_a_seed():
    assert shuffle(seed=5) == shuffle(seed=5)
    assert shuffle(seed=5) != shuffle(seed=6)


def test_deal_removes_cards_from_the_front():
    deck = build_deck()
    top = deck[:3]
    assert deal(deck, 3) == top
    assert len(deck) == 49
    with pytest.raises(ValueError, match="Not enough cards"):
        deal(deck, 50)


def test_parse_label_accepts_ten_spellings():
    assert parse_label("Th") == Card("10", "hearts")
    assert parse_label("10s", face_up=True) == Card("10", "spades", True)
    assert parse_label("10s").label == "10s"
    with pytest.raises(ValueError):
        parse_label("Az")


def test_deal_hole_starts_left_of_dealer_and_skips_waiting_seats():
    state = create_state(seats=4, viewer=2)
    for seat in state.seats:
        seat.status = SeatStatus.TO_ACT
    state.seats[3].status = SeatStatus.WAITING
    deck = shuffle(seed=9)
    expected = list(deck)

    deal_hole(deck, state.seats, dealer_position=1, viewer=2)

    # One card per pass: seats 2, 0, 1 then again.
    order = [2, 0, 1]
    for pass_idx in range(2):
        for offset, seat_idx in enumerate(order):
            card = expected[pass_idx * 3 + offset]
            dealt = state.seats[seat_idx].hole_cards[pass_idx]
            assert (dealt.rank, dealt.suit) == (card.rank, card.suit)
    assert state.seats[3].hole_cards == []
    assert all(card.face_up for card in state.seats[2].hole_cards)
    assert not any(card.face_up for card in state.seats[0].hole_cards)
    assert len(deck) == 46


def test_deal_street_sizes_and_river_limit():
    deck = shuffle(seed=3)
    flop = deal_street(deck, 0)
    assert len(flop) == 3 and all(card.face_up for card in flop)
    assert len(deal_street(deck, 3)) == 1
    assert len(deal_street(deck, 4)) == 1
    assert deal_street(deck, 5) == []
    with pytest.raises(ValueError, match="Invalid community card count"):
        deal_street(deck, 2)


def test_ensure_capacity_raises_deal_error():
    with pytest.raises(DealError) as info:
        ensure_capacity(build_deck()[:10], active_count=4)
    assert info.value.code == "DEAL_ERROR"

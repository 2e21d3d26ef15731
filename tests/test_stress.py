import random

import pytest

from holdem.betting import legal_actions
from holdem.machine import NextHand, reduce, snapshot
from holdem.models import BETTING_PHASES, ActionType, Phase

from .helpers import act, create_state, start_hand, total_chips


def choose(rng: random.Random, state):
    hand = state.hand
    seat = state.seats[hand.turn]
    legal = legal_actions(hand, seat)
    action = rng.choice(legal)
    ceiling = seat.chip_stack + seat.current_bet
    if action == ActionType.BET:
        return action, min(state.config.minimum_bet * rng.randint(1, 4), ceiling)
    if action == ActionType.RAISE:
        return action, min(hand.current_bet * 2 + rng.randint(0, 40), ceiling)
    return action, None


@pytest.mark.parametrize("rake_percent", [0.0, 0.1])
def test_many_hands_conserve_chips_and_keep_one_turn(rake_percent):
    rng = random.Random(1234)
    state = create_state(seats=6, starting_stack=500, rake_percent=rake_percent)
    initial = total_chips(state)
    hands_played = 0

    for seed in range(300):
        if sum(1 for seat in state.seats if seat.chip_stack > 0) < 2:
            break
        state = start_hand(state, seed=seed)
        steps = 0
        while state.hand.phase in BETTING_PHASES:
            assert state.hand.turn is not None
            turns = [seat["seat"] for seat in snapshot(state)["seats"] if seat["is_turn"]]
            assert turns == [state.hand.turn]
            action, amount = choose(rng, state)
            state = act(state, state.hand.turn, action, amount)
            assert total_chips(state) == initial
            steps += 1
            assert steps < 200, "hand failed to terminate"

        assert state.hand.phase == Phase.COMPLETE
        assert state.hand.winners
        assert all(seat.chip_stack >= 0 for seat in state.seats)
        hands_played += 1
        state = reduce(state, NextHand(state.hand.hand_id, f"H-stress-{seed}"))

    assert hands_played >= 5
    assert total_chips(state) == initial
    assert sum(seat.chip_stack for seat in state.seats) + state.hand.house == initial

import asyncio

import pytest

from holdem.machine import RemoteHandUpdate, RemoteSeatUpdate, reduce
from holdem.models import ActionType, Phase
from tablesync.reconciler import Reconciler
from tablesync.schema import hand_to_row
from tablesync.store import MemoryStore, Notification

from .helpers import act, create_state, start_hand


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def test_first_submit_writes_full_rows_then_only_diffs():
    async def scenario():
        store = MemoryStore()
        reconciler = Reconciler(store)
        state = start_hand(create_state(seats=3))
        hand_diff, seat_diff = reconciler.changes(state)
        assert "room_id" in hand_diff and set(seat_diff) == {0, 1, 2}
        assert await reconciler.submit(state)

        state = act(state, 1, ActionType.CALL)
        hand_diff, seat_diff = reconciler.changes(state)
        assert set(seat_diff) == {1}
        assert {"turn", "version"} <= set(hand_diff)
        assert "deck" not in hand_diff
        assert "hole_cards" not in seat_diff[1]
        assert await reconciler.submit(state)

        row = store.hands[state.hand.hand_id]
        assert row["turn"] == 2
        assert row["version"] == state.hand.version
        assert store.seats[state.hand.hand_id][1]["chip_stack"] == 980
        assert reconciler.changes(state) == ({}, {})

    asyncio.run(scenario())


def test_commit_publishes_each_changed_row():
    async def scenario():
        store = MemoryStore()
        state = start_hand(create_state(seats=2))
        queue = store.subscribe(state.config.room_id)
        other_room = store.subscribe("R-elsewhere")
        await Reconciler(store).submit(state)
        notes = [queue.get_nowait() for _ in range(queue.qsize())]
        assert [note.table for note in notes] == ["hands", "seats", "seats"]
        assert all(note.hand_id == state.hand.hand_id for note in notes)
        assert other_room.empty()

    asyncio.run(scenario())


def test_partial_updates_merge_into_existing_rows():
    async def scenario():
        store = MemoryStore()
        state = start_hand(create_state(seats=2))
        hand_id = state.hand.hand_id
        with pytest.raises(KeyError):
            await store.update_hand(hand_id, {"turn": 0})

        await Reconciler(store).submit(state)
        queue = store.subscribe(state.config.room_id)
        row = await store.update_hand(hand_id, {"turn": 0})
        assert row["turn"] == 0 and row["phase"] == "preflop"
        seat_row = await store.update_seat(hand_id, 1, {"chip_stack": 7})
        assert seat_row["chip_stack"] == 7 and seat_row["seat"] == 1
        assert store.seats[hand_id][0]["chip_stack"] == 1_000
        assert [queue.get_nowait().table for _ in range(queue.qsize())] == ["hands", "seats"]

    asyncio.run(scenario())


def test_store_errors_are_retried_with_backoff():
    async def scenario():
        store = MemoryStore()
        sleep = RecordingSleep()
        reconciler = Reconciler(store, retries=4, base_delay=0.05, max_delay=0.08, sleep=sleep)
        store.fail_next(3)
        assert await reconciler.submit(start_hand(create_state(seats=2)))
        assert sleep.delays == [0.05, 0.08, 0.08]
        assert store.commits == 1
        assert not reconciler.has_pending

    asyncio.run(scenario())


def test_exhausted_retries_keep_state_pending_until_flush():
    async def scenario():
        store = MemoryStore()
        reconciler = Reconciler(store, retries=2, sleep=RecordingSleep())
        state = start_hand(create_state(seats=2))
        store.fail_next(2)
        assert not await reconciler.submit(state)
        assert reconciler.has_pending
        assert store.commits == 0

        assert await reconciler.flush()
        assert not reconciler.has_pending
        assert store.hands[state.hand.hand_id]["phase"] == "preflop"

    asyncio.run(scenario())


def test_to_events_maps_rows_and_hydrates_newer_hands():
    async def scenario():
        store = MemoryStore()
        writer = Reconciler(store)
        local = create_state(seats=2)
        remote = start_hand(local)
        queue = store.subscribe(local.config.room_id)
        await writer.submit(remote)

        reader = Reconciler(store)
        hand_note = queue.get_nowait()
        events = await reader.to_events(hand_note, local)
        assert isinstance(events[0], RemoteHandUpdate)
        assert [type(event) for event in events[1:]] == [RemoteSeatUpdate, RemoteSeatUpdate]

        merged = local
        for event in events:
            merged = reduce(merged, event)
        assert merged.hand.phase == Phase.PREFLOP
        assert merged.hand.version == remote.hand.version
        assert merged.seats[0].hole_cards == remote.seats[0].hole_cards

        seat_note = queue.get_nowait()
        assert await reader.to_events(seat_note, merged) == [events[1]]

    asyncio.run(scenario())


def test_to_events_ignores_older_hands_and_other_rooms():
    async def scenario():
        store = MemoryStore()
        reader = Reconciler(store)
        state = create_state(seats=2)
        row = {"hand_id": "H-old", "hand_number": 1}
        note = Notification("hands", "H-old", "R-elsewhere", row)
        assert await reader.to_events(note, state) == []

        state.hand.hand_number = 3
        old = create_state(seats=2, hand_id="H-old").hand
        note = Notification("hands", "H-old", state.config.room_id, hand_to_row(old))
        assert await reader.to_events(note, state) == []

    asyncio.run(scenario())


def test_reconciler_needs_at_least_one_attempt():
    with pytest.raises(ValueError, match="retries"):
        Reconciler(MemoryStore(), retries=0)

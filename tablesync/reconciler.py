from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

from holdem.errors import SyncFailure
from holdem.machine import Event, RemoteHandUpdate, RemoteSeatUpdate, TableState

from .schema import (
    HandRow,
    SeatRow,
    hand_fields,
    hand_to_row,
    parse_hand_row,
    parse_seat_row,
    seat_fields,
    seat_to_row,
)
from .store import Notification, Row, TableStore

LOGGER = logging.getLogger("table_sync")

T = TypeVar("T")

SeatDiff = Dict[int, Row]


class Reconciler:
    """Keeps one client's local table state and the shared store in step.

    Outbound: ``submit`` diffs the state against the rows last seen in the store
    and commits only what changed, as one batch. Inbound: ``to_events`` turns a
    store notification into remote-update events for the reducer.
    """

    def __init__(
        self,
        store: TableStore,
        *,
        retries: int = 4,
        base_delay: float = 0.05,
        max_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if retries < 1:
            raise ValueError(f"retries must be at least 1, got {retries}")
        self.store = store
        self.retries = retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep
        self._hand_row: Optional[Row] = None
        self._seat_rows: Dict[int, Row] = {}
        self._pending: Optional[TableState] = None

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def changes(self, state: TableState) -> Tuple[Row, SeatDiff]:
        """Fields that differ from the last persisted rows; full rows for a new hand."""
        hand_row = hand_to_row(state.hand)
        seat_rows = {seat.seat: seat_to_row(seat, state.hand) for seat in state.seats}
        if self._hand_row is None or self._hand_row.get("hand_id") != state.hand.hand_id:
            return hand_row, seat_rows

        hand_diff = _diff(self._hand_row, hand_row)
        seat_diff: SeatDiff = {}
        for idx, row in seat_rows.items():
            diff = _diff(self._seat_rows.get(idx, {}), row)
            if diff:
                seat_diff[idx] = diff
        return hand_diff, seat_diff

    async def submit(self, state: TableState) -> bool:
        self._pending = state
        return await self.flush()

    async def flush(self) -> bool:
        """Write the pending state, if any. Returns False when it stays pending."""
        state = self._pending
        if state is None:
            return True
        hand_diff, seat_diff = self.changes(state)
        if not hand_diff and not seat_diff:
            self._pending = None
            return True
        hand_id = state.hand.hand_id
        try:
            hand_row, seat_rows = await self._retry(
                lambda: self.store.commit(hand_id, hand_diff, seat_diff),
                f"commit of hand {hand_id} v{state.hand.version}",
            )
        except SyncFailure as exc:
            LOGGER.error("Keeping hand %s v%d pending: %s", hand_id, state.hand.version, exc.msg)
            return False
        if self._pending is state:
            self._pending = None
        self._remember(hand_row, seat_rows)
        return True

    def acknowledge(self, state: TableState) -> None:
        """Record a merged remote state as the persisted baseline.

        The store is authoritative: a merged row of equal or newer version
        supersedes whatever local write is still pending.
        """
        if self._pending is not None:
            LOGGER.warning(
                "Pending write for hand %s v%d superseded by store state v%d",
                self._pending.hand.hand_id,
                self._pending.hand.version,
                state.hand.version,
            )
            self._pending = None
        self._hand_row = hand_to_row(state.hand)
        self._seat_rows = {seat.seat: seat_to_row(seat, state.hand) for seat in state.seats}

    def _remember(self, hand_row: Row, seat_rows: SeatDiff) -> None:
        if self._hand_row is None or self._hand_row.get("hand_id") != hand_row.get("hand_id"):
            self._seat_rows = {}
        self._hand_row = hand_row
        for idx, row in seat_rows.items():
            self._seat_rows[idx] = row

    async def _retry(self, operation: Callable[[], Awaitable[T]], label: str) -> T:
        delay = self.base_delay
        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except (OSError, asyncio.TimeoutError) as exc:
                if attempt == self.retries:
                    raise SyncFailure(f"{label} failed after {attempt} attempts: {exc}") from exc
                LOGGER.warning("%s failed (attempt %d/%d): %s", label, attempt, self.retries, exc)
                await self._sleep(delay)
                delay = min(delay * 2, self.max_delay)

    async def to_events(self, note: Notification, state: TableState) -> List[Event]:
        """Validate an inbound row and map it to reducer events.

        A hand row that is newer than local state, or that names a different
        hand, is followed by that hand's seat rows so the reducer never sees a
        hand without its seats.
        """
        hand = state.hand
        if note.room_id != hand.room_id:
            return []
        if note.table == "hands":
            row = parse_hand_row(note.row)
            if row.hand_number < hand.hand_number:
                return []
            events: List[Event] = [_hand_event(row)]
            if row.hand_id != hand.hand_id or row.version > hand.version:
                events.extend(await self._seat_events(row.hand_id))
            return events
        if note.table == "seats":
            seat_row = parse_seat_row(note.row)
            if seat_row.hand_id == hand.hand_id:
                return [_seat_event(seat_row)]
            if seat_row.hand_number < hand.hand_number:
                return []
            # Seat row for a hand we have not adopted yet.
            return await self.hydrate(seat_row.hand_id)
        raise SyncFailure(f"Notification for unknown table {note.table!r}")

    async def hydrate(self, hand_id: str) -> List[Event]:
        """Events that load a whole hand (row plus seats) from the store."""
        data = await self._retry(lambda: self.store.fetch_hand(hand_id), "fetch_hand")
        if data is None:
            return []
        return [_hand_event(parse_hand_row(data))] + await self._seat_events(hand_id)

    async def _seat_events(self, hand_id: str) -> List[Event]:
        rows = await self._retry(lambda: self.store.fetch_seats(hand_id), "fetch_seats")
        return [_seat_event(parse_seat_row(data)) for data in rows]


def _diff(old: Row, new: Row) -> Row:
    return {name: value for name, value in new.items() if old.get(name) != value}


def _hand_event(row: HandRow) -> RemoteHandUpdate:
    return RemoteHandUpdate(
        hand_id=row.hand_id,
        hand_number=row.hand_number,
        version=row.version,
        fields=hand_fields(row),
    )


def _seat_event(row: SeatRow) -> RemoteSeatUpdate:
    return RemoteSeatUpdate(
        hand_id=row.hand_id,
        hand_number=row.hand_number,
        seat=row.seat,
        version=row.version,
        fields=seat_fields(row),
    )

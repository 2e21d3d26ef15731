from __future__ import annotations

import abc
import asyncio
import copy
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Type

LOGGER = logging.getLogger("table_store")

Row = Dict[str, Any]


@dataclass(frozen=True)
class Notification:
    table: str  # "hands" | "seats"
    hand_id: str
    room_id: str
    row: Row


class StoreUnavailable(ConnectionError):
    pass


class TableStore(abc.ABC):
    """Shared persistence for every client seated at a table.

    Rows are keyed by hand id (and seat index for seat rows). All mutations are
    partial updates; the store publishes the post-update row to subscribers of
    the hand's room.
    """

    @abc.abstractmethod
    async def fetch_hand(self, hand_id: str) -> Optional[Row]:
        ...

    @abc.abstractmethod
    async def fetch_seats(self, hand_id: str) -> List[Row]:
        ...

    @abc.abstractmethod
    async def update_hand(self, hand_id: str, fields: Row) -> Row:
        ...

    @abc.abstractmethod
    async def update_seat(self, hand_id: str, seat: int, fields: Row) -> Row:
        ...

    @abc.abstractmethod
    async def commit(
        self,
        hand_id: str,
        hand_fields: Row,
        seat_fields: Dict[int, Row],
    ) -> Tuple[Row, Dict[int, Row]]:
        """Apply a hand update and several seat updates as one batch."""

    @abc.abstractmethod
    def subscribe(self, room_id: str) -> "asyncio.Queue[Notification]":
        ...

    @abc.abstractmethod
    def unsubscribe(self, room_id: str, queue: "asyncio.Queue[Notification]") -> None:
        ...


class MemoryStore(TableStore):
    """In-process store. Rows are copied in and out so callers never share state."""

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.hands: Dict[str, Row] = {}
        self.seats: Dict[str, Dict[int, Row]] = {}
        self.commits = 0
        self._subscribers: Dict[str, List["asyncio.Queue[Notification]"]] = {}
        self._failures: List[Type[Exception]] = []

    def fail_next(self, count: int = 1, error: Type[Exception] = StoreUnavailable) -> None:
        self._failures.extend([error] * count)

    def _maybe_fail(self, operation: str) -> None:
        if self._failures:
            error = self._failures.pop(0)
            raise error(f"{operation} failed (injected)")

    async def fetch_hand(self, hand_id: str) -> Optional[Row]:
        async with self.lock:
            self._maybe_fail("fetch_hand")
            row = self.hands.get(hand_id)
            return copy.deepcopy(row) if row is not None else None

    async def fetch_seats(self, hand_id: str) -> List[Row]:
        async with self.lock:
            self._maybe_fail("fetch_seats")
            rows = self.seats.get(hand_id, {})
            return [copy.deepcopy(rows[idx]) for idx in sorted(rows)]

    async def update_hand(self, hand_id: str, fields: Row) -> Row:
        row, _ = await self.commit(hand_id, fields, {})
        return row

    async def update_seat(self, hand_id: str, seat: int, fields: Row) -> Row:
        _, rows = await self.commit(hand_id, {}, {seat: fields})
        return rows[seat]

    async def commit(
        self,
        hand_id: str,
        hand_fields: Row,
        seat_fields: Dict[int, Row],
    ) -> Tuple[Row, Dict[int, Row]]:
        async with self.lock:
            self._maybe_fail("commit")
            current = self.hands.get(hand_id)
            if current is None and "room_id" not in hand_fields:
                raise KeyError(f"Unknown hand {hand_id}")

            hand_row = dict(current or {})
            hand_row.update(copy.deepcopy(hand_fields))
            hand_row["hand_id"] = hand_id
            seat_rows = dict(self.seats.get(hand_id, {}))
            changed: Dict[int, Row] = {}
            for idx, fields in seat_fields.items():
                row = dict(seat_rows.get(idx, {}))
                row.update(copy.deepcopy(fields))
                row["hand_id"] = hand_id
                row["seat"] = idx
                seat_rows[idx] = row
                changed[idx] = row

            # Nothing becomes visible until the whole batch is in place.
            self.hands[hand_id] = hand_row
            self.seats[hand_id] = seat_rows
            self.commits += 1

            room_id = hand_row["room_id"]
            if hand_fields:
                self._publish(Notification("hands", hand_id, room_id, copy.deepcopy(hand_row)))
            for idx in sorted(changed):
                self._publish(Notification("seats", hand_id, room_id, copy.deepcopy(changed[idx])))
            LOGGER.debug(
                "Committed hand %s: %d hand field(s), %d seat row(s)",
                hand_id,
                len(hand_fields),
                len(changed),
            )
            return copy.deepcopy(hand_row), {idx: copy.deepcopy(row) for idx, row in changed.items()}

    def subscribe(self, room_id: str) -> "asyncio.Queue[Notification]":
        queue: "asyncio.Queue[Notification]" = asyncio.Queue()
        self._subscribers.setdefault(room_id, []).append(queue)
        return queue

    def unsubscribe(self, room_id: str, queue: "asyncio.Queue[Notification]") -> None:
        queues = self._subscribers.get(room_id, [])
        if queue in queues:
            queues.remove(queue)

    def _publish(self, note: Notification) -> None:
        for queue in self._subscribers.get(note.room_id, []):
            queue.put_nowait(copy.deepcopy(note))

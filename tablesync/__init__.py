"""Keeps each client's table state in step with the shared store."""

from .reconciler import Reconciler
from .schema import HandRow, SeatRow, parse_hand_row, parse_seat_row
from .store import MemoryStore, Notification, StoreUnavailable, TableStore

__all__ = [
    "Reconciler",
    "HandRow",
    "SeatRow",
    "parse_hand_row",
    "parse_seat_row",
    "MemoryStore",
    "Notification",
    "StoreUnavailable",
    "TableStore",
]

from __future__ import annotations

from typing import Optional


class TableError(Exception):
    """Base class for every failure the table engine reports."""

    code = "TABLE_ERROR"

    def __init__(self, msg: str, code: Optional[str] = None) -> None:
        super().__init__(msg)
        self.msg = msg
        if code is not None:
            self.code = code


class InvalidAction(TableError, ValueError):
    code = "INVALID_ACTION"


class InsufficientChips(TableError, ValueError):
    code = "INSUFFICIENT_CHIPS"


class StaleTransition(TableError):
    """Event targets a hand, phase or version that has already moved on."""

    code = "STALE_TRANSITION"


class StuckRound(TableError):
    code = "STUCK_ROUND"


class SyncFailure(TableError):
    code = "SYNC_FAILURE"


class DealError(TableError, RuntimeError):
    code = "DEAL_ERROR"

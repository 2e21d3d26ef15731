"""Table host package: drives a shared table and serves it over websockets."""

from .server import HostServer
from .table import Table, TurnClock

__all__ = ["HostServer", "Table", "TurnClock"]

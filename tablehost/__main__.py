import argparse
import asyncio
import logging

from holdem.models import SeatSpec, TableConfig
from tablesync.store import MemoryStore

from .server import HostServer
from .table import Table


def build_roster(players: str, bots: int) -> list[SeatSpec]:
    roster = [
        SeatSpec(player_id=name.strip(), display_name=name.strip())
        for name in players.split(",")
        if name.strip()
    ]
    roster.extend(
        SeatSpec(player_id=f"bot-{idx}", display_name=f"Bot {idx}", automated=True)
        for idx in range(1, bots + 1)
    )
    return roster


def main() -> None:
    # CLI doubles as documentation for the table settings.
    parser = argparse.ArgumentParser(description="Shared poker table host")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8765)
    parser.add_argument("--room", default="R-1", help="Room id; clients in the same room share a table")
    parser.add_argument("--players", default="alice,bob", help="Comma separated player ids, seated in order")
    parser.add_argument("--bots", type=int, default=0, help="Automated seats appended after the players")
    parser.add_argument("--starting-stack", type=int, default=1_000)
    parser.add_argument("--minimum-bet", type=int, default=20)
    parser.add_argument(
        "--move-time",
        type=int,
        default=30_000,
        help="Move time in milliseconds (0 disables timeouts; the watchdog still applies)",
    )
    parser.add_argument("--bot-delay", type=int, default=1_000, help="Automated seat think time in milliseconds")
    parser.add_argument("--bot-threshold", type=int, default=100, help="Automated seats call below this amount")
    parser.add_argument("--watchdog", type=int, default=90_000, help="Stall check interval in milliseconds")
    parser.add_argument("--rake", type=float, default=0.0, help="Fraction of each pot kept by the house")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()

    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO))

    roster = build_roster(args.players, args.bots)
    try:
        config = TableConfig(
            seats=len(roster),
            room_id=args.room,
            starting_stack=args.starting_stack,
            minimum_bet=args.minimum_bet,
            move_time_ms=args.move_time,
            bot_delay_ms=args.bot_delay,
            bot_call_threshold=args.bot_threshold,
            watchdog_ms=args.watchdog,
            rake_percent=args.rake,
        )
    except ValueError as exc:
        parser.error(str(exc))

    table = Table(config, MemoryStore(), roster)
    server = HostServer(table)
    asyncio.run(server.start(host=args.host, port=args.port))


if __name__ == "__main__":
    main()

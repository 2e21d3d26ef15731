from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Dict, List, Optional, Set

import websockets
from websockets.asyncio.server import ServerConnection, serve
from websockets.http11 import Request, Response

from holdem.machine import TableState, snapshot
from holdem.models import ActionType

from .table import Table

LOGGER = logging.getLogger("table_host")

# HostServer exposes a Table's command surface to websocket clients.
# Every network concern lives here; Table and the reducer stay transport-free.


@dataclass
class ClientSession:
    seat: int
    player_id: str
    websocket: ServerConnection


class HostServer:
    def __init__(self, table: Table) -> None:
        self.table = table
        self.sessions: Dict[int, ClientSession] = {}
        self.spectators: Set[ServerConnection] = set()
        self.lock = asyncio.Lock()
        table.listeners.append(self._on_table_change)

    async def start(self, host: str = "0.0.0.0", port: int = 8765) -> None:
        await self.table.open()
        try:
            async with serve(self._handle_connection, host, port, process_request=_process_request):
                LOGGER.info("Table host listening on %s:%s (room %s)", host, port, self.table.config.room_id)
                await asyncio.Future()
        finally:
            await self.table.close()

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        # First message must be "hello" so we know who we are talking to.
        hello = await self._read_message(websocket)
        if hello is None or hello.get("type") != "hello":
            await self._send_error(websocket, code="BAD_HELLO", msg="Expected hello")
            await websocket.close()
            return
        role = hello.get("role") or "player"
        if isinstance(role, str) and role.strip().casefold() == "spectator":
            await self._handle_spectator_session(websocket)
            return

        player_raw = hello.get("player_id")
        player_id = player_raw.strip() if isinstance(player_raw, str) else ""
        if not player_id:
            await self._send_error(websocket, code="BAD_SCHEMA", msg="player_id required")
            await websocket.close()
            return
        seat = self.table.seat_of(player_id)
        if seat is None:
            await self._send_error(websocket, code="UNKNOWN_PLAYER", msg=f"{player_id} has no seat at this table")
            await websocket.close()
            return

        # Replace existing connection if any.
        previous = self.sessions.get(seat)
        if previous:
            await previous.websocket.close(code=4000, reason="Replaced by new connection")
        session = ClientSession(seat=seat, player_id=player_id, websocket=websocket)
        async with self.lock:
            self.sessions[seat] = session
        LOGGER.info("Seat %s claimed by %s", seat, player_id)

        config = self.table.config
        await self._send_json(websocket, "welcome", {
            "room_id": config.room_id,
            "seat": seat,
            "config": {
                "seats": config.seats,
                "starting_stack": config.starting_stack,
                "minimum_bet": config.minimum_bet,
                "move_time_ms": config.move_time_ms,
                "rake_percent": config.rake_percent,
            },
        })
        await self._send_json(websocket, "state", self.table.current_state(seat))

        try:
            async for raw in websocket:
                message = self._decode(raw)
                msg_type = message.get("type")
                if msg_type == "action":
                    await self._handle_action(session, message)
                elif msg_type == "start_hand":
                    await self._handle_start_hand(session, message)
                else:
                    await self._send_error(websocket, code="UNKNOWN_TYPE", msg="Unsupported message type")
        except websockets.ConnectionClosed:
            pass
        finally:
            async with self.lock:
                if self.sessions.get(seat) is session:
                    self.sessions.pop(seat, None)
        LOGGER.info("Seat %s (%s) disconnected", seat, player_id)

    async def _handle_spectator_session(self, websocket: ServerConnection) -> None:
        LOGGER.info("Spectator connected")
        async with self.lock:
            self.spectators.add(websocket)
        await self._send_json(websocket, "welcome", {"room_id": self.table.config.room_id, "seat": None})
        await self._send_json(websocket, "state", snapshot(self.table.state))
        try:
            async for raw in websocket:
                if not self._decode(raw):
                    continue
                LOGGER.warning("Spectator sent a message; closing connection")
                await websocket.close(code=4403, reason="Spectators are read-only")
                break
        except websockets.ConnectionClosed:
            pass
        finally:
            async with self.lock:
                self.spectators.discard(websocket)
            LOGGER.info("Spectator disconnected")

    async def _handle_start_hand(self, session: ClientSession, message: Dict[str, object]) -> None:
        seed = message.get("seed")
        if seed is not None and not isinstance(seed, int):
            await self._send_error(session.websocket, code="BAD_SCHEMA", msg="seed must be an integer")
            return
        result = await self.table.start_hand(seed)
        await self._reply(session, "start_hand", result.payload())

    async def _handle_action(self, session: ClientSession, message: Dict[str, object]) -> None:
        hand_id = message.get("hand_id")
        action_name = message.get("action")
        amount = message.get("amount")

        if hand_id is not None and hand_id != self.table.state.hand.hand_id:
            await self._send_error(session.websocket, code="ACTION_TOO_LATE", msg="Hand no longer active")
            return
        try:
            action = ActionType(action_name)
        except ValueError:
            await self._send_error(session.websocket, code="INVALID_ACTION", msg="Unknown action")
            return
        if action in (ActionType.BET, ActionType.RAISE) and (not isinstance(amount, int) or isinstance(amount, bool)):
            await self._send_error(session.websocket, code="BAD_SCHEMA", msg=f"amount required for {action.value}")
            return

        result = await self.table.act(session.seat, action, amount if isinstance(amount, int) else None)
        if not result.ok:
            assert result.error is not None
            LOGGER.warning(
                "Rejected action seat=%s action=%s amount=%s reason=%s",
                session.seat,
                action.value,
                amount,
                result.error.msg,
            )
            await self._send_error(session.websocket, code=result.error.code, msg=result.error.msg)
            return
        await self._reply(session, "action", result.payload())

    async def _reply(self, session: ClientSession, request: str, payload: Dict[str, object]) -> None:
        if not payload.get("ok"):
            await self._send_error(session.websocket, code=str(payload["code"]), msg=str(payload["msg"]))
            return
        body = dict(payload)
        body["request"] = request
        await self._send_json(session.websocket, "result", body)

    async def _on_table_change(self, state: TableState, events: List[Dict[str, object]]) -> None:
        async with self.lock:
            sessions = list(self.sessions.values())
            spectators = list(self.spectators)
        sends = []
        for session in sessions:
            sends.append(self._send_json(session.websocket, "state", snapshot(state, session.seat)))
        public = self._envelope("state", snapshot(state))
        sends.extend(socket.send(public) for socket in spectators)
        for event in events:
            message = self._envelope("event", event)
            sends.extend(session.websocket.send(message) for session in sessions)
            sends.extend(socket.send(message) for socket in spectators)
        if sends:
            await asyncio.gather(*sends, return_exceptions=True)

    async def _send_json(self, websocket: ServerConnection, msg_type: str, payload: Dict[str, object]) -> None:
        try:
            await websocket.send(self._envelope(msg_type, payload))
        except websockets.ConnectionClosed:
            pass

    async def _send_error(self, websocket: ServerConnection, code: str, msg: str) -> None:
        await self._send_json(websocket, "error", {"code": code, "msg": msg})

    def _envelope(self, msg_type: str, payload: Dict[str, object]) -> str:
        body: Dict[str, object] = {"type": msg_type, "v": 1, "ts": datetime.now(timezone.utc).isoformat()}
        body.update(payload)
        return json.dumps(body)

    async def _read_message(self, websocket: ServerConnection) -> Optional[Dict[str, object]]:
        try:
            raw = await asyncio.wait_for(websocket.recv(), timeout=5)
        except (asyncio.TimeoutError, websockets.ConnectionClosed):
            return None
        return self._decode(raw)

    def _decode(self, raw: object) -> Dict[str, object]:
        try:
            message = json.loads(raw)  # type: ignore[arg-type]
        except (TypeError, json.JSONDecodeError):
            return {}
        return message if isinstance(message, dict) else {}


def _process_request(connection: ServerConnection, request: Request) -> Optional[Response]:
    """Answer plain HTTP health checks; let websocket upgrades through."""
    if request.headers.get("Upgrade", "").lower() == "websocket":
        return None
    if request.path in {"/", "/health", "/healthz"}:
        return connection.respond(HTTPStatus.OK, "table host running\n")
    return connection.respond(HTTPStatus.NOT_FOUND, "not found\n")

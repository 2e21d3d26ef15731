import asyncio
import json
from http import HTTPStatus
from types import SimpleNamespace

from holdem.models import TableConfig
from tablehost.server import ClientSession, HostServer, _process_request
from tablehost.table import Table
from tablesync.store import MemoryStore

from .helpers import players


# Fake sockets so we can exercise async paths without opening real connections.
class DummyWebSocket:
    def __init__(self, inbox: list[dict] | None = None) -> None:
        self.sent: list[str] = []
        self.closed = False
        self.close_code: int | None = None
        self._inbox = [json.dumps(message) for message in inbox or []]

    async def send(self, message: str) -> None:
        self.sent.append(message)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed = True
        self.close_code = code

    async def recv(self) -> str:
        return self._inbox.pop(0)

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        if not self._inbox:
            raise StopAsyncIteration
        return self._inbox.pop(0)

    def messages(self) -> list[dict]:
        return [json.loads(raw) for raw in self.sent]


def setup_server(num_players: int = 2) -> tuple[HostServer, list[ClientSession], list[DummyWebSocket]]:
    config = TableConfig(seats=num_players, move_time_ms=0, watchdog_ms=0)
    table = Table(config, MemoryStore(), players(num_players), hand_id="H-1")
    server = HostServer(table)
    sessions: list[ClientSession] = []
    sockets: list[DummyWebSocket] = []
    for idx in range(num_players):
        websocket = DummyWebSocket()
        session = ClientSession(seat=idx, player_id=f"player{idx}", websocket=websocket)
        server.sessions[idx] = session
        sessions.append(session)
        sockets.append(websocket)
    return server, sessions, sockets


def test_handle_action_rejects_out_of_turn():
    async def scenario():
        server, sessions, sockets = setup_server()
        await server.table.start_hand(seed=50)
        hand_id = server.table.state.hand.hand_id
        await server._handle_action(sessions[0], {"type": "action", "hand_id": hand_id, "action": "call"})
        payload = sockets[0].messages()[-1]
        assert payload["type"] == "error"
        assert payload["code"] == "INVALID_ACTION"
        assert payload["msg"] == "Not your turn"

    asyncio.run(scenario())


def test_handle_action_broadcasts_per_seat_state():
    async def scenario():
        server, sessions, sockets = setup_server()
        await server.table.start_hand(seed=50)
        hand_id = server.table.state.hand.hand_id
        for socket in sockets:
            socket.sent.clear()

        await server._handle_action(sessions[1], {"type": "action", "hand_id": hand_id, "action": "call"})

        mine = sockets[1].messages()
        assert [message["type"] for message in mine] == ["state", "event", "result"]
        assert mine[0]["seats"][1]["hole_cards"] != ["??", "??"]
        assert mine[0]["seats"][0]["hole_cards"] == ["??", "??"]
        assert mine[1]["ev"] == "CALL" and mine[1]["source"] == "player"
        assert mine[2]["ok"] is True and mine[2]["request"] == "action"
        assert all(message["v"] == 1 and "ts" in message for message in mine)

        theirs = sockets[0].messages()
        assert theirs[0]["type"] == "state"
        assert theirs[0]["turn"] == 0
        assert theirs[0]["legal"] == ["fold", "call", "raise"]
        assert theirs[0]["seats"][1]["hole_cards"] == ["??", "??"]

    asyncio.run(scenario())


def test_handle_action_validates_message():
    async def scenario():
        server, sessions, sockets = setup_server()
        await server.table.start_hand(seed=1)
        hand_id = server.table.state.hand.hand_id

        await server._handle_action(sessions[1], {"hand_id": "H-old", "action": "call"})
        await server._handle_action(sessions[1], {"hand_id": hand_id, "action": "shove"})
        await server._handle_action(sessions[1], {"hand_id": hand_id, "action": "raise"})
        await server._handle_action(sessions[1], {"hand_id": hand_id, "action": "raise", "amount": 5_000})

        codes = [message["code"] for message in sockets[1].messages() if message["type"] == "error"]
        assert codes == ["ACTION_TOO_LATE", "INVALID_ACTION", "BAD_SCHEMA", "INSUFFICIENT_CHIPS"]
        assert server.table.state.hand.turn == 1

    asyncio.run(scenario())


def test_start_hand_message_replies_with_result():
    async def scenario():
        server, sessions, sockets = setup_server()
        await server._handle_start_hand(sessions[0], {"type": "start_hand", "seed": 3})
        assert server.table.state.hand.turn == 1
        assert sockets[0].messages()[-1]["type"] == "result"

        await server._handle_start_hand(sessions[0], {"type": "start_hand"})
        assert sockets[0].messages()[-1]["code"] == "INVALID_ACTION"
        await server._handle_start_hand(sessions[0], {"type": "start_hand", "seed": "x"})
        assert sockets[0].messages()[-1]["code"] == "BAD_SCHEMA"

    asyncio.run(scenario())


def test_hello_claims_seat_and_replaces_previous_connection():
    async def scenario():
        server, _, sockets = setup_server()
        old_socket = sockets[0]
        websocket = DummyWebSocket([{"type": "hello", "player_id": "player0"}, {"type": "ping"}])
        await server._handle_connection(websocket)

        assert old_socket.closed and old_socket.close_code == 4000
        messages = websocket.messages()
        assert messages[0]["type"] == "welcome"
        assert messages[0]["seat"] == 0
        assert messages[0]["config"]["minimum_bet"] == 20
        assert messages[1]["type"] == "state"
        assert messages[2]["code"] == "UNKNOWN_TYPE"
        assert 0 not in server.sessions

    asyncio.run(scenario())


def test_hello_rejections():
    async def scenario():
        server, _, _ = setup_server()
        cases = [
            ({"type": "action"}, "BAD_HELLO"),
            ({"type": "hello"}, "BAD_SCHEMA"),
            ({"type": "hello", "player_id": "mallory"}, "UNKNOWN_PLAYER"),
        ]
        for hello, code in cases:
            websocket = DummyWebSocket([hello])
            await server._handle_connection(websocket)
            assert websocket.closed
            assert websocket.messages()[-1]["code"] == code

    asyncio.run(scenario())


def test_spectators_are_read_only():
    async def scenario():
        server, _, _ = setup_server()
        websocket = DummyWebSocket([{"type": "hello", "role": "spectator"}, {"type": "action", "action": "fold"}])
        await server._handle_connection(websocket)
        assert [message["type"] for message in websocket.messages()] == ["welcome", "state"]
        assert websocket.close_code == 4403
        assert not server.spectators

    asyncio.run(scenario())


def test_health_check_answers_http():
    class FakeConnection:
        def respond(self, status, text):
            return (status, text)

    connection = FakeConnection()
    assert _process_request(connection, SimpleNamespace(path="/health", headers={}))[0] == HTTPStatus.OK
    assert _process_request(connection, SimpleNamespace(path="/nope", headers={}))[0] == HTTPStatus.NOT_FOUND
    upgrade = SimpleNamespace(path="/", headers={"Upgrade": "websocket"})
    assert _process_request(connection, upgrade) is None

"""
Test suite for the Starfront network layer.

Tests game sessions, message handling, the WebSocket front end, and a
live server with real WebSocket clients.

Run from project root: python -m pytest tests/test_network -v
Or run directly: python tests/test_network/test_network.py
"""

import asyncio
import json
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))


class Colors:
    """ANSI color codes for pretty output."""
    GREEN = "\033[92m"
    RED = "\033[91m"
    YELLOW = "\033[93m"
    BLUE = "\033[94m"
    CYAN = "\033[96m"
    RESET = "\033[0m"
    BOLD = "\033[1m"


def print_header(text: str) -> None:
    print(f"\n{Colors.BOLD}{Colors.BLUE}{'=' * 60}")
    print(f" {text}")
    print(f"{'=' * 60}{Colors.RESET}\n")


def print_subheader(text: str) -> None:
    print(f"\n{Colors.CYAN}--- {text} ---{Colors.RESET}")


def print_success(text: str) -> None:
    print(f"  {Colors.GREEN}✓ {text}{Colors.RESET}")


def print_failure(text: str) -> None:
    print(f"  {Colors.RED}✗ {text}{Colors.RESET}")


def print_info(text: str) -> None:
    print(f"  {Colors.YELLOW}→ {text}{Colors.RESET}")


class TestResults:
    def __init__(self):
        self.passed = 0
        self.failed = 0

    def add(self, passed: bool) -> None:
        if passed:
            self.passed += 1
        else:
            self.failed += 1

    def summary(self) -> None:
        print_header("TEST SUMMARY")
        total = self.passed + self.failed
        print(f"  Total:  {total}")
        print(f"  {Colors.GREEN}Passed: {self.passed}{Colors.RESET}")
        print(f"  {Colors.RED}Failed: {self.failed}{Colors.RESET}")

        if self.failed == 0:
            print(f"\n{Colors.GREEN}{Colors.BOLD}All tests passed! ✓{Colors.RESET}")
        else:
            print(f"\n{Colors.RED}{Colors.BOLD}Some tests failed ✗{Colors.RESET}")


def assert_test(condition: bool, success_msg: str, failure_msg: str) -> bool:
    if condition:
        print_success(success_msg)
        return True
    else:
        print_failure(failure_msg)
        return False


# =============================================================================
# Mocks
# =============================================================================

class MockHandle:
    """Outbound side of a WebSocket connection, captured in memory."""

    def __init__(self, name: str):
        self.name = name
        self.sent = []

    def enqueue(self, text: str) -> bool:
        self.sent.append(text)
        return True

    def get_messages(self) -> list[dict]:
        return [json.loads(m) for m in self.sent]

    def types(self) -> list[str]:
        return [m["type"] for m in self.get_messages()]

    def last(self, message_type: str) -> dict | None:
        for message in reversed(self.get_messages()):
            if message["type"] == message_type:
                return message
        return None

    def clear_messages(self) -> None:
        self.sent.clear()


class MockWebSocket:
    """Mock WebSocket that plays a fixed list of inbound frames."""

    def __init__(self, id: str, frames: list[str] | None = None, delay: float = 0.05):
        self.id = id
        self.frames = list(frames or [])
        self.delay = delay
        self.sent_messages = []
        self.closed = False
        self.close_code = None
        self.remote_address = ("127.0.0.1", 40000)

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        # Give the writer task time to flush between frames
        await asyncio.sleep(self.delay)
        if not self.frames:
            raise StopAsyncIteration
        return self.frames.pop(0)

    async def send(self, data: str) -> None:
        if self.closed:
            raise Exception("Connection closed")
        self.sent_messages.append(data)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed = True
        self.close_code = code

    def get_messages(self) -> list[dict]:
        return [json.loads(m) for m in self.sent_messages]


def frame(message_type: str, data: dict | None = None, request_id: str | None = None) -> str:
    payload = {"type": message_type, "data": data or {}}
    if request_id is not None:
        payload["request_id"] = request_id
    return json.dumps(payload)


def make_handler(seed: int = 11):
    from server.network.game_manager import GameManager
    from server.network.message_handler import MessageHandler
    from server.network.registry import ConnectionRegistry

    registry = ConnectionRegistry()
    games = GameManager(required_players=2, seed=seed)
    return registry, games, MessageHandler(games, registry)


def connect(registry, name: str):
    from shared.enums import TransportKind

    handle = MockHandle(name)
    conn_id = registry.register(TransportKind.WEBSOCKET, handle)
    return registry.get(conn_id), handle


# =============================================================================
# Test Functions
# =============================================================================

def test_game_manager():
    """Session seats, auto start, reconnection, and reset."""
    print_header("GAME MANAGER TESTS")
    results = TestResults()

    from server.network.game_manager import GameManager, GameSession
    from shared.enums import ErrorKind, SessionState

    manager = GameManager(required_players=2, seed=1)
    session = manager.get_session()
    results.add(assert_test(
        session is not None and session.id == 0 and manager.get_game(0) is None,
        "Default session exists with no game yet",
        "Default session missing"
    ))

    print_subheader("Seating")

    first = session.join(100, "Alice")
    session.leave(first.player_id)
    results.add(assert_test(
        first.success and first.player_id == 0 and session.player_count == 0,
        "Leaving while waiting frees the seat",
        f"player_count = {session.player_count}"
    ))

    a = session.join(101, "Alice")
    b = session.join(102, "Bob")
    results.add(assert_test(
        a.player_id == 0 and b.player_id == 1 and b.started and session.state == SessionState.PLAYING,
        "Second seat starts the game",
        f"State {session.state}, started={b.started}"
    ))
    results.add(assert_test(
        [p.name for p in session.game.players] == ["Alice", "Bob"],
        "Engine players follow seat order",
        "Seat order lost"
    ))

    late = session.join(103, "Carol")
    results.add(assert_test(
        not late.success and late.error == ErrorKind.GAME_ALREADY_STARTED,
        "New names cannot join a running game",
        f"Late join: {late}"
    ))

    print_subheader("Reconnection")

    session.leave(1)
    results.add(assert_test(
        session.seats[1].connected is False and not session.game.players[1].connected,
        "Leaving a running game marks the seat disconnected",
        "Seat not marked disconnected"
    ))
    back = session.join(104, "Bob")
    results.add(assert_test(
        back.success and back.reconnected and back.player_id == 1 and session.seats[1].conn_id == 104,
        "Same name reclaims the seat",
        f"Rejoin: {back}"
    ))

    print_subheader("Finish and reset")

    session.game.players[1].authority = 0
    session.game.attack_player(0, 1, 0)
    results.add(assert_test(
        session.check_finished() and session.is_finished,
        "Session finishes with the game",
        f"State {session.state}"
    ))
    session.leave(0)
    session.leave(1)
    results.add(assert_test(
        session.state == SessionState.WAITING and session.game is None and session.player_count == 0,
        "Finished session resets once everyone is gone",
        f"State {session.state}"
    ))

    clamped = GameSession(required_players=9)
    results.add(assert_test(
        clamped.required_players == 4 and len(clamped.seats) == 4,
        "Required players clamp to four",
        f"required_players = {clamped.required_players}"
    ))

    stats = manager.get_stats()
    results.add(assert_test(
        stats["total_sessions"] == 1 and stats["waiting_sessions"] == 1,
        "Stats reflect the reset session",
        f"Stats: {stats}"
    ))

    assert results.failed == 0, f"{results.failed} game manager checks failed"


def test_message_handler():
    """Join flow, error scoping, actions, disconnects, and game over."""
    print_header("MESSAGE HANDLER TESTS")
    results = TestResults()

    from shared.enums import SessionState

    registry, games, handler = make_handler()
    alice, alice_ws = connect(registry, "alice")
    bob, bob_ws = connect(registry, "bob")

    print_subheader("Before joining")

    handler.handle_raw(alice, frame("end_turn"))
    results.add(assert_test(
        alice_ws.last("error")["data"]["code"] == "not_in_game",
        "Actions before joining: not_in_game",
        f"Got {alice_ws.types()}"
    ))

    handler.handle_raw(alice, "{broken")
    results.add(assert_test(
        alice_ws.last("error")["data"]["code"] == "malformed_json" and not bob_ws.sent,
        "Decode errors go only to the sender",
        f"Bob received {bob_ws.types()}"
    ))

    alice_ws.clear_messages()
    result = handler.handle_raw(alice, b"[" * 50000)
    results.add(assert_test(
        result.response.type.value == "error" and alice_ws.types() == ["error"]
        and alice_ws.last("error")["data"]["code"] == "malformed_json",
        "Deeply nested frame reported as malformed_json",
        f"Got {alice_ws.types()}"
    ))

    print_subheader("Joining")

    alice_ws.clear_messages()
    handler.handle_raw(alice, frame("join", {"name": "Alice"}))
    joined = alice_ws.last("joined")
    results.add(assert_test(
        joined and joined["data"]["player_id"] == 0 and "player_joined" in alice_ws.types(),
        "Alice joined as player 0",
        f"Got {alice_ws.types()}"
    ))
    results.add(assert_test(
        "gamestate" not in alice_ws.types(),
        "No game state before the table is full",
        "State sent while waiting"
    ))

    handler.handle_raw(alice, frame("join", {"name": "Alice"}))
    results.add(assert_test(
        alice_ws.last("error")["data"]["code"] == "already_joined",
        "Joining twice: already_joined",
        "Second join accepted"
    ))

    alice_ws.clear_messages()
    handler.handle_raw(bob, frame("join", {"name": "Bob"}))
    results.add(assert_test(
        bob_ws.last("joined")["data"]["player_id"] == 1
        and alice_ws.last("player_joined")["data"]["name"] == "Bob",
        "Bob joined and Alice was told",
        f"Alice got {alice_ws.types()}"
    ))
    alice_state = alice_ws.last("gamestate")
    bob_state = bob_ws.last("gamestate")
    results.add(assert_test(
        alice_state and bob_state and alice_state["data"]["you"] == 0 and bob_state["data"]["you"] == 1,
        "Game started: each player got their own state",
        "Per-player states missing"
    ))
    results.add(assert_test(
        alice_ws.last("draw_order_request")["data"]["count"] == 3 and "draw_order_request" not in bob_ws.types(),
        "Only the active player is asked for a draw order",
        "Draw order prompt misrouted"
    ))

    print_subheader("Validation errors")

    alice_ws.clear_messages()
    bob_ws.clear_messages()
    handler.handle_raw(bob, frame("end_turn", request_id="r-9"))
    error = bob_ws.last("error")
    results.add(assert_test(
        error["data"]["code"] == "not_your_turn" and error["request_id"] == "r-9" and not alice_ws.sent,
        "Out of turn: error to Bob only, request_id kept",
        f"Error: {error}, Alice got {alice_ws.types()}"
    ))

    handler.handle_raw(alice, frame("draw_order", {"order": [1, 1, 2]}))
    results.add(assert_test(
        alice_ws.last("error")["data"]["code"] == "invalid_draw_order" and not bob_ws.sent,
        "Duplicate draw order rejected privately",
        f"Alice got {alice_ws.types()}"
    ))

    print_subheader("Playing")

    handler.handle_raw(alice, frame("draw_order", {"order": [0, 1, 2]}))
    state = alice_ws.last("gamestate")["data"]
    results.add(assert_test(
        state["phase"] == "main" and len(state["players"][0]["hand"]) == 3
        and bob_ws.last("gamestate")["data"]["players"][0]["hand_count"] == 3,
        "Draw order applied and broadcast",
        f"Phase {state['phase']}"
    ))

    handler.handle_raw(alice, frame("chat", {"message": "gl hf"}))
    chat = bob_ws.last("chat")
    results.add(assert_test(
        chat and chat["data"]["name"] == "Alice" and chat["data"]["message"] == "gl hf",
        "Chat reaches the table",
        "Chat missing"
    ))

    bob_ws.clear_messages()
    handler.handle_raw(alice, frame("end_turn"))
    results.add(assert_test(
        bob_ws.last("draw_order_request")["data"]["count"] == 5,
        "Ending the turn prompts Bob to draw 5",
        f"Bob got {bob_ws.types()}"
    ))

    print_subheader("Disconnect and reconnect")

    alice_ws.clear_messages()
    handler.handle_disconnect(bob)
    results.add(assert_test(
        alice_ws.last("player_left")["data"]["player_id"] == 1 and registry.get(bob.id) is None,
        "Alice told Bob left, Bob's connection released",
        f"Alice got {alice_ws.types()}"
    ))

    bob2, bob2_ws = connect(registry, "bob-again")
    handler.handle_raw(bob2, frame("join", {"name": "Bob"}))
    rejoined = bob2_ws.last("joined")
    results.add(assert_test(
        rejoined and rejoined["data"]["reconnected"] and rejoined["data"]["player_id"] == 1,
        "Bob reclaimed seat 1",
        f"Bob got {bob2_ws.types()}"
    ))
    results.add(assert_test(
        bob2_ws.last("draw_order_request") is not None and bob2_ws.last("gamestate") is not None,
        "Reconnected player gets state and the pending prompt",
        f"Bob got {bob2_ws.types()}"
    ))

    print_subheader("Game over")

    handler.handle_raw(bob2, frame("draw_order", {"order": [0, 1, 2, 3, 4]}))
    games.get_game(0).players[1].combat = 50
    handler.handle_raw(bob2, frame("action", {"action": "attack_player", "target": 0, "amount": 50}))
    over = alice_ws.last("game_over")
    results.add(assert_test(
        over and over["data"]["winner_id"] == 1 and bob2_ws.last("game_over") is not None,
        "Game over broadcast to both players",
        f"Alice got {alice_ws.types()}"
    ))
    results.add(assert_test(
        games.get_session().state == SessionState.FINISHED,
        "Session marked finished",
        f"State {games.get_session().state}"
    ))

    assert results.failed == 0, f"{results.failed} message handler checks failed"


def test_session_lobby():
    """Host seat, ready-up, spectators, and game listing."""
    print_header("SESSION LOBBY TESTS")
    results = TestResults()

    from server.network.game_manager import GameManager, GameSession
    from shared.enums import ErrorKind, SessionState

    manager = GameManager(required_players=4, seed=3)
    table = manager.get_session()

    print_subheader("Host")

    results.add(assert_test(
        table.host_player_id is None and table.name == "Game 0",
        "Empty table has no host",
        f"host={table.host_player_id}, name={table.name}"
    ))

    table.join(10, "Ana")
    table.join(11, "Ben")
    table.join(12, "Cy")
    results.add(assert_test(
        table.is_host(0) and not table.is_host(1) and table.name == "Ana's game",
        "First seat hosts the table",
        f"host={table.host_player_id}, name={table.name}"
    ))

    table.leave(0)
    results.add(assert_test(
        table.host_player_id == 1 and table.name == "Ben's game",
        "Host passes to the lowest remaining seat",
        f"host={table.host_player_id}, name={table.name}"
    ))

    print_subheader("Ready-up")

    empty = table.set_ready(0)
    results.add(assert_test(
        not empty.success and empty.error == ErrorKind.NOT_IN_GAME,
        "An empty seat cannot ready up",
        f"Result: {empty}"
    ))

    table.set_ready(1)
    table.set_ready(1, False)
    second = table.set_ready(2)
    results.add(assert_test(
        second.success and not second.started and not table.can_start()
        and table.state == SessionState.WAITING,
        "Unready player holds the table",
        f"State {table.state}, started={second.started}"
    ))

    last = table.set_ready(1)
    results.add(assert_test(
        last.started and table.state == SessionState.PLAYING and table.game.player_count == 2,
        "All seated players ready starts a partial table",
        f"State {table.state}, started={last.started}"
    ))
    results.add(assert_test(
        [seat.name for seat in table.seats] == ["Ben", "Cy"]
        and [p.name for p in table.game.players] == ["Ben", "Cy"]
        and table.host_player_id == 0,
        "Empty seats dropped so seats match engine players",
        f"Seats: {table.seats}, host={table.host_player_id}"
    ))

    late = table.set_ready(0, False)
    results.add(assert_test(
        not late.success and late.error == ErrorKind.GAME_ALREADY_STARTED,
        "Ready flags are frozen once the game runs",
        f"Result: {late}"
    ))

    print_subheader("Spectators")

    results.add(assert_test(
        table.add_spectator(50) is None and table.add_spectator(50) == ErrorKind.ALREADY_JOINED,
        "A connection watches a table once",
        f"Spectators: {table.spectators}"
    ))
    results.add(assert_test(
        table.remove_spectator(50) and not table.remove_spectator(50) and not table.spectators,
        "Removing a spectator twice is a no-op",
        f"Spectators: {table.spectators}"
    ))

    small = GameSession(id=7, max_spectators=1)
    small.add_spectator(1)
    closed = GameSession(id=8, allow_spectators=False)
    results.add(assert_test(
        small.add_spectator(2) == ErrorKind.GAME_FULL
        and closed.add_spectator(1) == ErrorKind.SPECTATORS_NOT_ALLOWED,
        "Spectator limit and opt-out enforced",
        f"small={small.spectators}, closed={closed.spectators}"
    ))

    print_subheader("Listing")

    manager.create_session(1).join(20, "Dee")
    manager.create_session(2).allow_spectators = False
    joinable = [entry["game_id"] for entry in manager.list_joinable()]
    watchable = [entry["game_id"] for entry in manager.list_spectatable()]
    results.add(assert_test(
        joinable == [1, 2] and watchable == [0, 1],
        "Waiting tables are joinable, open unfinished tables watchable",
        f"joinable={joinable}, spectatable={watchable}"
    ))
    results.add(assert_test(
        manager.count_by_state(SessionState.PLAYING) == 1
        and manager.count_by_state(SessionState.WAITING) == 2,
        "Sessions counted by state",
        f"Stats: {manager.get_stats()}"
    ))

    table.game.players[1].authority = 0
    table.game.attack_player(0, 1, 0)
    table.check_finished()
    watchable = [entry["game_id"] for entry in manager.list_spectatable()]
    results.add(assert_test(
        watchable == [1],
        "Finished tables drop out of the spectator list",
        f"spectatable={watchable}"
    ))

    assert results.failed == 0, f"{results.failed} session lobby checks failed"


def test_lobby_messages():
    """Listing, spectating, and ready-up through the message handler."""
    print_header("LOBBY MESSAGE TESTS")
    results = TestResults()

    from server.network.game_manager import GameManager
    from server.network.message_handler import MessageHandler
    from server.network.registry import ConnectionRegistry
    from shared.enums import SessionState

    registry = ConnectionRegistry()
    games = GameManager(required_players=4, seed=4)
    handler = MessageHandler(games, registry)
    ana, ana_ws = connect(registry, "ana")
    ben, ben_ws = connect(registry, "ben")
    cy, cy_ws = connect(registry, "cy")
    eve, eve_ws = connect(registry, "eve")

    print_subheader("Listing")

    handler.handle_raw(ana, frame("join", {"name": "Ana"}))
    handler.handle_raw(eve, frame("list_games", request_id="l-1"))
    listing = eve_ws.last("game_list")
    results.add(assert_test(
        listing and listing["request_id"] == "l-1"
        and [g["game_id"] for g in listing["data"]["joinable"]] == [0]
        and listing["data"]["joinable"][0]["name"] == "Ana's game"
        and listing["data"]["joinable"][0]["players"] == 1,
        "Lobby connection lists the waiting table",
        f"Got {listing}"
    ))

    print_subheader("Spectating")

    handler.handle_raw(eve, frame("spectate", {"game_id": 9}))
    results.add(assert_test(
        eve_ws.last("error")["data"]["code"] == "not_in_game" and not eve.spectating,
        "Watching an unknown game is refused",
        f"Eve got {eve_ws.types()}"
    ))

    eve_ws.clear_messages()
    handler.handle_raw(eve, frame("spectate"))
    watching = eve_ws.last("spectating")
    results.add(assert_test(
        watching and watching["data"]["game_id"] == 0 and eve.spectating
        and eve.id in games.get_session().spectators and "gamestate" not in eve_ws.types(),
        "Eve watches the waiting table",
        f"Eve got {eve_ws.types()}"
    ))

    handler.handle_raw(eve, frame("end_turn"))
    results.add(assert_test(
        eve_ws.last("error")["data"]["code"] == "not_in_game",
        "Spectators cannot act",
        f"Eve got {eve_ws.types()}"
    ))
    handler.handle_raw(eve, frame("spectate"))
    results.add(assert_test(
        eve_ws.last("error")["data"]["code"] == "already_joined",
        "Watching twice: already_joined",
        f"Eve got {eve_ws.types()}"
    ))

    handler.handle_raw(cy, frame("spectate"))
    handler.handle_raw(ben, frame("join", {"name": "Ben"}))
    handler.handle_raw(cy, frame("join", {"name": "Cy"}))
    results.add(assert_test(
        cy.player_id == 2 and not cy.spectating and cy.id not in games.get_session().spectators,
        "A spectator takes a free seat by joining",
        f"Cy: player {cy.player_id}, spectating={cy.spectating}"
    ))

    print_subheader("Ready-up")

    eve_ws.clear_messages()
    handler.handle_raw(ana, frame("ready"))
    ready = eve_ws.last("player_ready")
    results.add(assert_test(
        ready and ready["data"]["player_id"] == 0 and ready["data"]["ready"]
        and games.get_session().state == SessionState.WAITING,
        "Ready flag announced to the table and its spectators",
        f"Eve got {eve_ws.types()}"
    ))

    handler.handle_raw(ana, frame("leave"))
    results.add(assert_test(
        games.get_session().name == "Ben's game" and ana.game_id is None,
        "Host leaving hands the table to Ben",
        f"Name {games.get_session().name}"
    ))

    handler.handle_raw(ben, frame("ready", {"ready": "yes"}))
    results.add(assert_test(
        ben_ws.last("error")["data"]["code"] == "invalid_field_type",
        "Non-boolean ready flag rejected",
        f"Ben got {ben_ws.types()}"
    ))

    handler.handle_raw(ben, frame("ready"))
    handler.handle_raw(cy, frame("ready"))
    session = games.get_session()
    results.add(assert_test(
        session.state == SessionState.PLAYING and session.game.player_count == 2,
        "Two ready players start a four-seat table",
        f"State {session.state}"
    ))
    results.add(assert_test(
        ben.player_id == 0 and cy.player_id == 1
        and cy_ws.last("gamestate")["data"]["you"] == 1
        and ben_ws.last("draw_order_request") is not None,
        "Seated connections follow the renumbered seats",
        f"Ben {ben.player_id}, Cy {cy.player_id}"
    ))

    view = eve_ws.last("gamestate")
    results.add(assert_test(
        view and view["data"]["you"] is None
        and all("hand" not in player for player in view["data"]["players"])
        and "hand" in ben_ws.last("gamestate")["data"]["players"][0],
        "Spectator state hides every hand",
        f"Eve got {eve_ws.types()}"
    ))

    handler.handle_raw(ana, frame("list_games"))
    listing = ana_ws.last("game_list")["data"]
    results.add(assert_test(
        listing["joinable"] == [] and [g["state"] for g in listing["spectatable"]] == ["PLAYING"],
        "Running table is listed for spectators only",
        f"Listing: {listing}"
    ))

    print_subheader("Leaving")

    handler.handle_raw(ben, frame("chat", {"message": "hi"}))
    results.add(assert_test(
        eve_ws.last("chat") is not None,
        "Spectators hear table chat",
        f"Eve got {eve_ws.types()}"
    ))

    handler.handle_raw(eve, frame("leave"))
    eve_ws.clear_messages()
    handler.handle_raw(ben, frame("chat", {"message": "bye"}))
    results.add(assert_test(
        not eve.spectating and not games.get_session().spectators and not eve_ws.sent,
        "A spectator who leaves hears nothing more",
        f"Eve got {eve_ws.types()}"
    ))

    handler.handle_raw(ana, frame("spectate"))
    handler.handle_disconnect(ana)
    results.add(assert_test(
        not games.get_session().spectators and registry.get(ana.id) is None,
        "Disconnecting spectator is released",
        f"Spectators: {games.get_session().spectators}"
    ))

    assert results.failed == 0, f"{results.failed} lobby message checks failed"


def test_websocket_manager():
    """Outbound queue limits and connection handling with mock sockets."""
    print_header("WEBSOCKET MANAGER TESTS")
    results = TestResults()

    from server.network.websocket_manager import (
        CLOSE_TRY_AGAIN_LATER, WebSocketSessionManager, WSConnectionState,
    )

    async def run_tests():
        print_subheader("Send queue")

        loop = asyncio.get_running_loop()
        state = WSConnectionState(MockWebSocket("q"), loop, queue_size=2)
        results.add(assert_test(
            state.enqueue("a") and state.enqueue("b") and not state.enqueue("c"),
            "Third message rejected when the queue holds two",
            "Queue overflowed"
        ))
        results.add(assert_test(
            state.drain() == ["a", "b"] and state.pending == 0 and state.enqueue("d"),
            "Drain keeps order and frees room",
            "Drain lost ordering"
        ))
        state.close()
        results.add(assert_test(
            not state.enqueue("e"),
            "Closed connections reject sends",
            "Closed connection accepted a send"
        ))

        print_subheader("Connection handling")

        registry, games, handler = make_handler()
        manager = WebSocketSessionManager(registry, handler, max_connections=4)

        broken = MockWebSocket("broken")
        broken.closed = True  # every send raises
        state = WSConnectionState(broken, loop, queue_size=4)
        writer = asyncio.create_task(manager._writer(state))
        state.enqueue("first")
        await asyncio.wait_for(writer, 1.0)
        results.add(assert_test(
            state.closed and not state.enqueue("second"),
            "A failed writer closes the queue so later sends are refused",
            f"closed={state.closed}"
        ))

        socket = MockWebSocket("alice", [
            frame("join", {"name": "Alice"}, request_id="j1"),
            "not json",
        ])
        await manager.handle_connection(socket)
        received = socket.get_messages()
        types = [m["type"] for m in received]
        results.add(assert_test(
            types[:2] == ["joined", "player_joined"] and received[0]["request_id"] == "j1",
            "Join acknowledged in order with its request_id",
            f"Received {types}"
        ))
        results.add(assert_test(
            types[-1] == "error" and received[-1]["data"]["code"] == "malformed_json",
            "Bad frame answered with an error",
            f"Received {types}"
        ))
        results.add(assert_test(
            registry.count() == 0 and games.get_session().player_count == 0,
            "Closing releases the connection and the waiting seat",
            f"count={registry.count()}"
        ))

        print_subheader("Hostile frames")

        nested = MockWebSocket("nested", [
            "[" * 50000,
            frame("join", {"name": "Nia"}),
        ])
        await manager.handle_connection(nested)
        received = nested.get_messages()
        types = [m["type"] for m in received]
        results.add(assert_test(
            types[:1] == ["error"] and received[0]["data"]["code"] == "malformed_json",
            "Deeply nested JSON answered with malformed_json",
            f"Received {types}"
        ))
        results.add(assert_test(
            "joined" in types and not nested.closed,
            "Connection keeps serving frames after the hostile one",
            f"Received {types}, closed={nested.closed}"
        ))

        print_subheader("Connection limit")

        full = WebSocketSessionManager(registry, handler, max_connections=0)
        refused = MockWebSocket("refused", [frame("join", {"name": "Zed"})])
        await full.handle_connection(refused)
        results.add(assert_test(
            refused.closed and refused.close_code == CLOSE_TRY_AGAIN_LATER and not refused.sent_messages,
            "Over the limit: closed with 1013",
            f"closed={refused.closed} code={refused.close_code}"
        ))

    asyncio.run(run_tests())
    assert results.failed == 0, f"{results.failed} websocket manager checks failed"


def test_integration():
    """Two real WebSocket clients against a live server."""
    print_header("INTEGRATION TESTS")
    results = TestResults()

    from websockets.asyncio.client import connect as ws_connect
    from server.network.server import StarfrontServer

    async def drain(ws, timeout=0.3):
        msgs = []
        while True:
            try:
                msgs.append(json.loads(await asyncio.wait_for(ws.recv(), timeout)))
            except asyncio.TimeoutError:
                break
        return msgs

    async def run_tests():
        server = StarfrontServer(host="127.0.0.1", ws_port=0, enable_ssh=False, seed=4)
        server_task = asyncio.create_task(server.start())
        while server.websocket.bound_port is None:
            await asyncio.sleep(0.05)
        url = f"ws://127.0.0.1:{server.websocket.bound_port}"

        try:
            print_subheader("Joining")

            ws1 = await ws_connect(url)
            ws2 = await ws_connect(url)
            await ws1.send(frame("join", {"name": "Alice"}))
            await asyncio.sleep(0.2)
            await ws2.send(frame("join", {"name": "Bob"}))
            await asyncio.sleep(0.3)

            alice_msgs = await drain(ws1)
            bob_msgs = await drain(ws2)
            results.add(assert_test(
                any(m["type"] == "joined" for m in alice_msgs) and any(m["type"] == "joined" for m in bob_msgs),
                "Both clients joined",
                f"Alice {[m['type'] for m in alice_msgs]}, Bob {[m['type'] for m in bob_msgs]}"
            ))
            results.add(assert_test(
                any(m["type"] == "gamestate" for m in alice_msgs) and any(m["type"] == "gamestate" for m in bob_msgs),
                "Game started for both",
                "No game state received"
            ))

            active = 0
            for m in alice_msgs:
                if m["type"] == "gamestate":
                    active = m["data"]["active_player"]
            results.add(assert_test(active == 0, "Player 0 moves first", f"Active {active}"))

            print_subheader("Playing")

            await ws1.send(frame("draw_order", {"order": [2, 1, 0]}))
            await asyncio.sleep(0.2)
            bob_msgs = await drain(ws2)
            state = next((m for m in reversed(bob_msgs) if m["type"] == "gamestate"), None)
            results.add(assert_test(
                state is not None and state["data"]["phase"] == "main" and "hand" not in state["data"]["players"][0],
                "Bob sees Alice's draw without her hand",
                f"Bob got {[m['type'] for m in bob_msgs]}"
            ))

            print_subheader("Disconnect")

            await ws2.close()
            await asyncio.sleep(0.3)
            alice_msgs = await drain(ws1)
            results.add(assert_test(
                any(m["type"] == "player_left" for m in alice_msgs),
                "Alice notified of Bob's disconnect",
                "Disconnect notification missing"
            ))

            stats = server.get_stats()
            results.add(assert_test(
                stats["connections"]["total_connections"] == 1,
                "Server tracking 1 connection",
                f"Wrong connection count: {stats['connections']}"
            ))

            await ws1.close()
        finally:
            await server.stop()
            await server_task

    asyncio.run(run_tests())
    assert results.failed == 0, f"{results.failed} integration checks failed"


def test_shutdown():
    """A stop requested by a signal finishes before the server's own stop returns."""
    print_header("SHUTDOWN TESTS")
    results = TestResults()

    from server.network.server import StarfrontServer

    async def run_tests():
        server = StarfrontServer(host="127.0.0.1", ws_port=0, enable_ssh=False, seed=2)
        server_task = asyncio.create_task(server.start())
        while server.websocket.bound_port is None:
            await asyncio.sleep(0.05)

        # Outlast the service interval so start() returns mid-shutdown
        finished = []
        websocket_stop = server.websocket.stop

        async def slow_websocket_stop():
            await asyncio.sleep(1.5)
            await websocket_stop()
            finished.append(True)

        server.websocket.stop = slow_websocket_stop

        server.request_shutdown()
        await server_task
        results.add(assert_test(
            not finished,
            "Serving loop ends while the shutdown is still running",
            "Shutdown finished before the loop ended"
        ))

        await server.stop()
        results.add(assert_test(
            finished == [True] and not server.websocket.running,
            "Second stop waits for the WebSocket side to close",
            f"finished={finished}"
        ))

    asyncio.run(run_tests())
    assert results.failed == 0, f"{results.failed} shutdown checks failed"


def run_all_tests() -> bool:
    """Run all test suites."""
    print(f"\n{Colors.BOLD}{Colors.CYAN}")
    print("╔══════════════════════════════════════════════════════════╗")
    print("║                STARFRONT NETWORK TESTS                   ║")
    print("╚══════════════════════════════════════════════════════════╝")
    print(Colors.RESET)

    all_results = TestResults()

    tests = [
        ("Game Manager", test_game_manager),
        ("Session Lobby", test_session_lobby),
        ("Message Handler", test_message_handler),
        ("Lobby Messages", test_lobby_messages),
        ("WebSocket Manager", test_websocket_manager),
        ("Integration", test_integration),
        ("Shutdown", test_shutdown),
    ]

    for name, test_func in tests:
        try:
            test_func()
            all_results.add(True)
        except Exception as e:
            print_failure(f"{name} tests raised exception: {e}")
            import traceback
            traceback.print_exc()
            all_results.add(False)

    all_results.summary()

    return all_results.failed == 0


if __name__ == "__main__":
    success = run_all_tests()
    sys.exit(0 if success else 1)

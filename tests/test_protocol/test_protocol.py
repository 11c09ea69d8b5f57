"""
Test suite for the client-server message protocol.

Covers frame decoding, action parsing, and the server message builders.

Run from project root: python -m pytest tests/test_protocol -v
Or run directly: python tests/test_protocol/test_protocol.py
"""

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


def decode_error_kind(raw):
    """Decode raw and return the DecodeError kind, or None if it decoded."""
    from shared.protocol import DecodeError, decode

    try:
        decode(raw)
    except DecodeError as e:
        return e.kind
    return None


# =============================================================================
# Test Functions
# =============================================================================

def test_decode():
    """Frame decoding and its error kinds."""
    print_header("DECODE TESTS")
    results = TestResults()

    from shared.enums import ErrorKind, MessageType
    from shared.protocol import decode

    message = decode('{"type": "join", "data": {"name": "Alice"}, "request_id": 7}')
    results.add(assert_test(
        message.type == MessageType.JOIN and message.data["name"] == "Alice" and message.request_id == "7",
        "Join decoded, request_id kept as a string",
        f"Decoded {message}"
    ))

    message = decode(b'{"type": "end_turn"}')
    results.add(assert_test(
        message.type == MessageType.END_TURN and message.data == {},
        "Bytes accepted and missing data becomes {}",
        f"Decoded {message}"
    ))

    cases = [
        ("not json", ErrorKind.MALFORMED_JSON, "Invalid JSON"),
        (b"\xff\xfe", ErrorKind.MALFORMED_JSON, "Invalid UTF-8"),
        ("[1, 2]", ErrorKind.MALFORMED_JSON, "Top-level array"),
        ('{"data": {}}', ErrorKind.MISSING_TYPE, "Missing type"),
        ('{"type": 5}', ErrorKind.MISSING_TYPE, "Non-string type"),
        ('{"type": "teleport"}', ErrorKind.UNKNOWN_TYPE, "Unknown type"),
        ('{"type": "gamestate"}', ErrorKind.UNKNOWN_TYPE, "Server-only type"),
        ('{"type": "chat", "data": "hi"}', ErrorKind.INVALID_FIELD_TYPE, "Non-object data"),
        ("[" * 50000, ErrorKind.MALFORMED_JSON, "Deeply nested arrays"),
        (b'{"a": ' * 50000, ErrorKind.MALFORMED_JSON, "Deeply nested objects"),
    ]
    for raw, kind, label in cases:
        got = decode_error_kind(raw)
        results.add(assert_test(got == kind, f"{label}: {kind.value}", f"{label}: got {got}"))

    assert results.failed == 0, f"{results.failed} decode checks failed"


def test_parse_action():
    """Typed actions from action, end_turn, and draw_order messages."""
    print_header("ACTION PARSING TESTS")
    results = TestResults()

    from shared.enums import ActionType, ErrorKind, MessageType
    from shared.protocol import Action, DecodeError, Message, parse_action

    def parse(data, message_type=MessageType.ACTION):
        return parse_action(Message(type=message_type, data=data))

    def parse_error(data, message_type=MessageType.ACTION):
        try:
            parse(data, message_type)
        except DecodeError as e:
            return e.kind
        return None

    action = parse({"action": "attack_player", "target": 1, "amount": 3.0})
    results.add(assert_test(
        action == Action(ActionType.ATTACK_PLAYER, target=1, amount=3),
        "attack_player parsed, integral floats accepted",
        f"Parsed {action}"
    ))

    action = parse({"action": "attack_base", "target": 2, "base_id": "c9", "amount": 4})
    results.add(assert_test(
        action.card_id == "c9" and action.to_dict()["base_id"] == "c9",
        "attack_base carries base_id both ways",
        f"Parsed {action}"
    ))

    action = parse({"order": [2, 0, 1]}, MessageType.DRAW_ORDER)
    results.add(assert_test(
        action.type == ActionType.DRAW_ORDER and action.order == (2, 0, 1),
        "draw_order message becomes a DRAW_ORDER action",
        f"Parsed {action}"
    ))

    results.add(assert_test(
        parse({}, MessageType.END_TURN) == Action(ActionType.END_TURN),
        "end_turn message becomes END_TURN",
        "end_turn parse failed"
    ))

    cases = [
        ({}, ErrorKind.MISSING_FIELD, "Missing action name"),
        ({"action": "fly"}, ErrorKind.UNKNOWN_ACTION, "Unknown action"),
        ({"action": "play_card"}, ErrorKind.MISSING_FIELD, "play_card without card_id"),
        ({"action": "play_card", "card_id": 4}, ErrorKind.INVALID_FIELD_TYPE, "Numeric card_id"),
        ({"action": "buy_card", "slot": "two"}, ErrorKind.INVALID_FIELD_TYPE, "String slot"),
        ({"action": "buy_card", "slot": True}, ErrorKind.INVALID_FIELD_TYPE, "Boolean slot"),
        ({"action": "buy_card", "slot": 1.5}, ErrorKind.INVALID_FIELD_TYPE, "Fractional slot"),
        ({"action": "attack_player", "target": 1}, ErrorKind.MISSING_FIELD, "Attack without amount"),
    ]
    for data, kind, label in cases:
        got = parse_error(data)
        results.add(assert_test(got == kind, f"{label}: {kind.value}", f"{label}: got {got}"))

    got = parse_error({"order": [0, "1"]}, MessageType.DRAW_ORDER)
    results.add(assert_test(
        got == ErrorKind.INVALID_DRAW_ORDER,
        "Non-integer draw order entries: invalid_draw_order",
        f"Got {got}"
    ))
    got = parse_error({"order": "0,1"}, MessageType.DRAW_ORDER)
    results.add(assert_test(
        got == ErrorKind.INVALID_FIELD_TYPE,
        "Draw order that is not an array: invalid_field_type",
        f"Got {got}"
    ))

    assert results.failed == 0, f"{results.failed} action parsing checks failed"


def test_other_parsers():
    """Join, chat, ready, game id, and pending response payloads."""
    print_header("PAYLOAD PARSING TESTS")
    results = TestResults()

    from shared.constants import CHAT_MESSAGE_MAX, PLAYER_NAME_MAX
    from shared.enums import ErrorKind, MessageType, PendingActionType
    from shared.protocol import (
        DecodeError, Message, parse_chat, parse_game_id, parse_join, parse_pending_response,
        parse_ready,
    )

    results.add(assert_test(
        parse_join(Message(MessageType.JOIN, {"name": "  Zed  "})) == "Zed",
        "Join name is trimmed",
        "Name not trimmed"
    ))
    results.add(assert_test(
        len(parse_join(Message(MessageType.JOIN, {"name": "x" * 200}))) == PLAYER_NAME_MAX,
        "Long names are truncated",
        "Name not truncated"
    ))
    try:
        parse_join(Message(MessageType.JOIN, {"name": "   "}))
        results.add(assert_test(False, "", "Blank name accepted"))
    except DecodeError as e:
        results.add(assert_test(e.kind == ErrorKind.MISSING_FIELD, "Blank name: missing_field", f"Got {e.kind}"))

    results.add(assert_test(
        len(parse_chat(Message(MessageType.CHAT, {"message": "y" * 999}))) == CHAT_MESSAGE_MAX,
        "Chat is truncated",
        "Chat not truncated"
    ))

    response, card_id = parse_pending_response(
        Message(MessageType.PENDING_RESPONSE, {"response": "discard", "card_id": "c3"})
    )
    results.add(assert_test(
        response == PendingActionType.DISCARD and card_id == "c3",
        "Pending response parsed",
        f"Got {response}, {card_id}"
    ))
    try:
        parse_pending_response(Message(MessageType.PENDING_RESPONSE, {"response": "juggle"}))
        results.add(assert_test(False, "", "Unknown response accepted"))
    except DecodeError as e:
        results.add(assert_test(e.kind == ErrorKind.UNKNOWN_ACTION, "Unknown response: unknown_action", f"Got {e.kind}"))

    results.add(assert_test(
        parse_ready(Message(MessageType.READY)) is True
        and parse_ready(Message(MessageType.READY, {"ready": False})) is False,
        "Ready defaults to true and honours false",
        "Ready flag misread"
    ))
    results.add(assert_test(
        parse_game_id(Message(MessageType.SPECTATE), 0) == 0
        and parse_game_id(Message(MessageType.SPECTATE, {"game_id": 3}), 0) == 3,
        "Game id is optional",
        "Game id misread"
    ))
    for bad, what in (
        (lambda: parse_ready(Message(MessageType.READY, {"ready": 1})), "Numeric ready flag"),
        (lambda: parse_game_id(Message(MessageType.SPECTATE, {"game_id": -1}), 0), "Negative game id"),
        (lambda: parse_game_id(Message(MessageType.SPECTATE, {"game_id": "two"}), 0), "Text game id"),
    ):
        try:
            bad()
            results.add(assert_test(False, "", f"{what} accepted"))
        except DecodeError as e:
            results.add(assert_test(
                e.kind == ErrorKind.INVALID_FIELD_TYPE, f"{what}: invalid_field_type", f"Got {e.kind}"
            ))

    assert results.failed == 0, f"{results.failed} payload checks failed"


def test_server_messages():
    """Server message builders and encoding."""
    print_header("SERVER MESSAGE TESTS")
    results = TestResults()

    from shared.enums import ErrorKind, PendingActionType
    from shared.protocol import (
        ChoiceRequestMessage, ErrorMessage, GameOverMessage, JoinedMessage, encode,
    )

    error = ErrorMessage.create(ErrorKind.NOT_YOUR_TURN, "wait", request_id="r1")
    payload = json.loads(encode(error))
    results.add(assert_test(
        payload == {
            "type": "error",
            "data": {"code": "not_your_turn", "message": "It's not your turn", "details": "wait"},
            "request_id": "r1",
        },
        "Error message encodes code, description, details, request_id",
        f"Encoded {payload}"
    ))

    joined = json.loads(encode(JoinedMessage.create(2, "Cy", 0, reconnected=True)))
    results.add(assert_test(
        joined["type"] == "joined" and joined["data"]["player_id"] == 2 and joined["data"]["reconnected"],
        "Joined message carries seat and reconnect flag",
        f"Encoded {joined}"
    ))

    choice = ChoiceRequestMessage.create(PendingActionType.DESTROY_BASE, ["c1", "c2"], True)
    results.add(assert_test(
        choice.data == {"choice_type": "destroy_base", "options": ["c1", "c2"], "optional": True},
        "Choice request lists options",
        f"Data {choice.data}"
    ))

    over = GameOverMessage.create(1, "authority depleted")
    results.add(assert_test(
        over.data == {"winner_id": 1, "reason": "authority depleted"},
        "Game over names the winner",
        f"Data {over.data}"
    ))

    assert results.failed == 0, f"{results.failed} server message checks failed"


def run_all_tests() -> bool:
    """Run all test suites."""
    print(f"\n{Colors.BOLD}{Colors.CYAN}")
    print("╔══════════════════════════════════════════════════════════╗")
    print("║                STARFRONT PROTOCOL TESTS                  ║")
    print("╚══════════════════════════════════════════════════════════╝")
    print(Colors.RESET)

    all_results = TestResults()

    tests = [
        ("Decode", test_decode),
        ("Action Parsing", test_parse_action),
        ("Payload Parsing", test_other_parsers),
        ("Server Messages", test_server_messages),
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

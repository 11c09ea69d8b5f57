"""
Message protocol for client-server communication.

All messages are JSON objects with a "type" field and optional "data" field.
Game actions travel as "action" messages and are turned into typed Action
values by parse_action(); the server never inspects raw JSON past this module.
"""

from dataclasses import dataclass, field
from typing import Any
import json

from shared.constants import CHAT_MESSAGE_MAX, PLAYER_NAME_MAX
from shared.enums import (
    ActionType,
    CLIENT_MESSAGE_TYPES,
    ErrorKind,
    MessageType,
    PendingActionType,
)


ERROR_DESCRIPTIONS = {
    ErrorKind.NOT_YOUR_TURN: "It's not your turn",
    ErrorKind.WRONG_PHASE: "Invalid action for current phase",
    ErrorKind.INVALID_TARGET: "Invalid target",
    ErrorKind.INSUFFICIENT_TRADE: "Not enough trade",
    ErrorKind.INSUFFICIENT_COMBAT: "Not enough combat",
    ErrorKind.CARD_NOT_FOUND: "Card not found",
    ErrorKind.INVALID_SLOT: "Invalid slot index",
    ErrorKind.INVALID_DRAW_ORDER: "Invalid draw order",
    ErrorKind.MISSING_FIELD: "Missing required field",
    ErrorKind.GAME_NOT_STARTED: "Game has not started",
    ErrorKind.GAME_OVER: "Game is over",
    ErrorKind.UNKNOWN_ACTION: "Unknown action",
    ErrorKind.MALFORMED_JSON: "Malformed JSON",
    ErrorKind.MISSING_TYPE: "Missing 'type' field",
    ErrorKind.UNKNOWN_TYPE: "Unknown message type",
    ErrorKind.INVALID_FIELD_TYPE: "Invalid field type",
    ErrorKind.NOT_IN_GAME: "You are not in the game",
    ErrorKind.ALREADY_JOINED: "Already joined",
    ErrorKind.GAME_FULL: "Game is full",
    ErrorKind.GAME_ALREADY_STARTED: "Game has already started",
    ErrorKind.SPECTATORS_NOT_ALLOWED: "This game does not allow spectators",
    ErrorKind.INTERNAL_ERROR: "Internal server error",
}


class DecodeError(Exception):
    """Raised when an inbound payload cannot be turned into a Message or Action."""

    def __init__(self, kind: ErrorKind, detail: str = ""):
        self.kind = kind
        self.detail = detail or ERROR_DESCRIPTIONS.get(kind, kind.value)
        super().__init__(f"{kind.value}: {self.detail}")


@dataclass
class Message:
    """Base message structure for all client-server communication."""
    type: MessageType
    data: dict[str, Any] = field(default_factory=dict)
    request_id: str | None = None  # Optional, for matching requests to responses

    def to_json(self) -> str:
        """Serialize message to JSON string."""
        return json.dumps(self.to_dict())

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "type": self.type.value,
            "data": self.data,
            "request_id": self.request_id,
        }


@dataclass(frozen=True)
class Action:
    """
    A proposed game action.

    Only the fields the action type needs are populated; the rest stay None.
    """
    type: ActionType
    card_id: str | None = None
    slot: int | None = None
    target: int | None = None
    amount: int | None = None
    order: tuple[int, ...] | None = None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"action": self.type.value}
        if self.card_id is not None:
            key = "base_id" if self.type == ActionType.ATTACK_BASE else "card_id"
            data[key] = self.card_id
        if self.slot is not None:
            data["slot"] = self.slot
        if self.target is not None:
            data["target"] = self.target
        if self.amount is not None:
            data["amount"] = self.amount
        if self.order is not None:
            data["order"] = list(self.order)
        return data


# =============================================================================
# Codec
# =============================================================================

def decode(raw: bytes | str) -> Message:
    """
    Decode one inbound frame into a client Message.

    Raises:
        DecodeError: on invalid UTF-8, invalid JSON, or a missing/unknown type
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(ErrorKind.MALFORMED_JSON, f"Invalid UTF-8: {e}") from e

    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        raise DecodeError(ErrorKind.MALFORMED_JSON, f"Invalid JSON: {e.msg}") from e
    except RecursionError as e:
        raise DecodeError(ErrorKind.MALFORMED_JSON, "JSON nested too deeply") from e
    except ValueError as e:
        # e.g. integers past the interpreter's digit limit
        raise DecodeError(ErrorKind.MALFORMED_JSON, f"Invalid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise DecodeError(ErrorKind.MALFORMED_JSON, "Message must be a JSON object")

    type_value = payload.get("type")
    if not isinstance(type_value, str):
        raise DecodeError(ErrorKind.MISSING_TYPE)

    try:
        message_type = MessageType(type_value)
    except ValueError as e:
        raise DecodeError(ErrorKind.UNKNOWN_TYPE, f"Unknown message type: {type_value}") from e

    if message_type not in CLIENT_MESSAGE_TYPES:
        raise DecodeError(ErrorKind.UNKNOWN_TYPE, f"'{type_value}' is a server message")

    data = payload.get("data", {})
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise DecodeError(ErrorKind.INVALID_FIELD_TYPE, "'data' must be an object")

    request_id = payload.get("request_id")
    if request_id is not None and not isinstance(request_id, str):
        request_id = str(request_id)

    return Message(type=message_type, data=data, request_id=request_id)


def encode(message: Message) -> str:
    """Serialize a server message for the WebSocket wire."""
    return message.to_json()


def _require_str(data: dict, key: str) -> str:
    value = data.get(key)
    if value is None:
        raise DecodeError(ErrorKind.MISSING_FIELD, f"Missing '{key}' field")
    if not isinstance(value, str):
        raise DecodeError(ErrorKind.INVALID_FIELD_TYPE, f"'{key}' must be a string")
    return value


def _require_int(data: dict, key: str) -> int:
    value = data.get(key)
    if value is None:
        raise DecodeError(ErrorKind.MISSING_FIELD, f"Missing '{key}' field")
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DecodeError(ErrorKind.INVALID_FIELD_TYPE, f"'{key}' must be a number")
    if isinstance(value, float) and not value.is_integer():
        raise DecodeError(ErrorKind.INVALID_FIELD_TYPE, f"'{key}' must be an integer")
    return int(value)


def _require_int_list(data: dict, key: str) -> tuple[int, ...]:
    value = data.get(key)
    if value is None:
        raise DecodeError(ErrorKind.MISSING_FIELD, f"Missing '{key}' field")
    if not isinstance(value, list):
        raise DecodeError(ErrorKind.INVALID_FIELD_TYPE, f"'{key}' must be an array")
    result = []
    for item in value:
        if isinstance(item, bool) or not isinstance(item, int):
            raise DecodeError(ErrorKind.INVALID_DRAW_ORDER, f"'{key}' must contain integers")
        result.append(item)
    return tuple(result)


def parse_action(message: Message) -> Action:
    """
    Turn an action-bearing message into a typed Action.

    Accepts "action", "end_turn" and "draw_order" messages.

    Raises:
        DecodeError: when a field the action kind needs is missing or mistyped
    """
    data = message.data

    if message.type == MessageType.END_TURN:
        return Action(ActionType.END_TURN)

    if message.type == MessageType.DRAW_ORDER:
        return Action(ActionType.DRAW_ORDER, order=_require_int_list(data, "order"))

    if message.type != MessageType.ACTION:
        raise DecodeError(ErrorKind.UNKNOWN_ACTION, f"'{message.type.value}' is not an action")

    name = _require_str(data, "action")
    try:
        action_type = ActionType(name)
    except ValueError as e:
        raise DecodeError(ErrorKind.UNKNOWN_ACTION, f"Unknown action: {name}") from e

    if action_type in (ActionType.PLAY_CARD, ActionType.SCRAP_HAND, ActionType.SCRAP_DISCARD):
        return Action(action_type, card_id=_require_str(data, "card_id"))

    if action_type in (ActionType.BUY_CARD, ActionType.SCRAP_TRADE_ROW):
        return Action(action_type, slot=_require_int(data, "slot"))

    if action_type == ActionType.ATTACK_PLAYER:
        return Action(
            action_type,
            target=_require_int(data, "target"),
            amount=_require_int(data, "amount"),
        )

    if action_type == ActionType.ATTACK_BASE:
        return Action(
            action_type,
            target=_require_int(data, "target"),
            card_id=_require_str(data, "base_id"),
            amount=_require_int(data, "amount"),
        )

    if action_type == ActionType.DRAW_ORDER:
        return Action(action_type, order=_require_int_list(data, "order"))

    # buy_explorer, end_turn
    return Action(action_type)


def parse_pending_response(message: Message) -> tuple[PendingActionType, str | None]:
    """Extract (response kind, optional card id) from a pending_response message."""
    kind = _require_str(message.data, "response")
    try:
        response_type = PendingActionType(kind)
    except ValueError as e:
        raise DecodeError(ErrorKind.UNKNOWN_ACTION, f"Unknown response type: {kind}") from e

    card_id = message.data.get("card_id")
    if card_id is not None and not isinstance(card_id, str):
        raise DecodeError(ErrorKind.INVALID_FIELD_TYPE, "'card_id' must be a string")
    return response_type, card_id


def parse_join(message: Message) -> str:
    """Extract the display name from a join message."""
    name = _require_str(message.data, "name").strip()
    if not name:
        raise DecodeError(ErrorKind.MISSING_FIELD, "Join message requires a non-empty 'name'")
    return name[:PLAYER_NAME_MAX]


def parse_chat(message: Message) -> str:
    """Extract the chat text from a chat message."""
    return _require_str(message.data, "message")[:CHAT_MESSAGE_MAX]


def parse_ready(message: Message) -> bool:
    """Extract the ready flag; a bare ready message means ready."""
    value = message.data.get("ready", True)
    if not isinstance(value, bool):
        raise DecodeError(ErrorKind.INVALID_FIELD_TYPE, "'ready' must be a boolean")
    return value


def parse_game_id(message: Message, default: int) -> int:
    """Extract an optional target game id."""
    if message.data.get("game_id") is None:
        return default
    game_id = _require_int(message.data, "game_id")
    if game_id < 0:
        raise DecodeError(ErrorKind.INVALID_FIELD_TYPE, "'game_id' must not be negative")
    return game_id


# =============================================================================
# Client -> Server Messages
# =============================================================================

@dataclass
class JoinRequest(Message):
    """Request to join the game with a display name."""
    type: MessageType = MessageType.JOIN

    @classmethod
    def create(cls, name: str, request_id: str | None = None) -> "JoinRequest":
        return cls(data={"name": name}, request_id=request_id)


@dataclass
class ActionRequest(Message):
    """Request to perform a game action."""
    type: MessageType = MessageType.ACTION

    @classmethod
    def create(cls, action: Action, request_id: str | None = None) -> "ActionRequest":
        return cls(data=action.to_dict(), request_id=request_id)


@dataclass
class EndTurnRequest(Message):
    """Request to end current turn."""
    type: MessageType = MessageType.END_TURN

    @classmethod
    def create(cls, request_id: str | None = None) -> "EndTurnRequest":
        return cls(request_id=request_id)


@dataclass
class DrawOrderRequest(Message):
    """Submit the order in which to draw cards."""
    type: MessageType = MessageType.DRAW_ORDER

    @classmethod
    def create(cls, order: list[int], request_id: str | None = None) -> "DrawOrderRequest":
        return cls(data={"order": list(order)}, request_id=request_id)


@dataclass
class PendingResponseRequest(Message):
    """Answer an engine-initiated choice."""
    type: MessageType = MessageType.PENDING_RESPONSE

    @classmethod
    def create(
        cls,
        response: PendingActionType,
        card_id: str | None = None,
        request_id: str | None = None
    ) -> "PendingResponseRequest":
        data: dict[str, Any] = {"response": response.value}
        if card_id is not None:
            data["card_id"] = card_id
        return cls(data=data, request_id=request_id)


@dataclass
class PendingSkipRequest(Message):
    """Skip an optional engine-initiated choice."""
    type: MessageType = MessageType.PENDING_SKIP

    @classmethod
    def create(cls, request_id: str | None = None) -> "PendingSkipRequest":
        return cls(request_id=request_id)


@dataclass
class ChatRequest(Message):
    """Send a chat line to the table."""
    type: MessageType = MessageType.CHAT

    @classmethod
    def create(cls, text: str, request_id: str | None = None) -> "ChatRequest":
        return cls(data={"message": text}, request_id=request_id)


@dataclass
class LeaveRequest(Message):
    """Leave the current game."""
    type: MessageType = MessageType.LEAVE

    @classmethod
    def create(cls, request_id: str | None = None) -> "LeaveRequest":
        return cls(request_id=request_id)


@dataclass
class ReadyRequest(Message):
    """Mark the sender ready (or not) to start a waiting game."""
    type: MessageType = MessageType.READY

    @classmethod
    def create(cls, ready: bool = True, request_id: str | None = None) -> "ReadyRequest":
        return cls(data={"ready": ready}, request_id=request_id)


@dataclass
class SpectateRequest(Message):
    """Watch a game without taking a seat."""
    type: MessageType = MessageType.SPECTATE

    @classmethod
    def create(cls, game_id: int | None = None, request_id: str | None = None) -> "SpectateRequest":
        data = {"game_id": game_id} if game_id is not None else {}
        return cls(data=data, request_id=request_id)


@dataclass
class ListGamesRequest(Message):
    """Ask for the games that can be joined or watched."""
    type: MessageType = MessageType.LIST_GAMES

    @classmethod
    def create(cls, request_id: str | None = None) -> "ListGamesRequest":
        return cls(request_id=request_id)


# =============================================================================
# Server -> Client Messages
# =============================================================================

@dataclass
class ErrorMessage(Message):
    """Error response message."""
    type: MessageType = MessageType.ERROR

    @classmethod
    def create(
        cls,
        kind: ErrorKind,
        details: str | None = None,
        request_id: str | None = None
    ) -> "ErrorMessage":
        """Create an error message."""
        data = {
            "code": kind.value,
            "message": ERROR_DESCRIPTIONS.get(kind, kind.value),
        }
        if details:
            data["details"] = details
        return cls(data=data, request_id=request_id)


@dataclass
class JoinedMessage(Message):
    """Acknowledgement sent to a connection after a successful join."""
    type: MessageType = MessageType.JOINED

    @classmethod
    def create(
        cls,
        player_id: int,
        name: str,
        game_id: int,
        reconnected: bool = False
    ) -> "JoinedMessage":
        return cls(data={
            "player_id": player_id,
            "name": name,
            "game_id": game_id,
            "reconnected": reconnected,
        })


@dataclass
class SpectatingMessage(Message):
    """Acknowledgement sent to a connection that started watching a game."""
    type: MessageType = MessageType.SPECTATING

    @classmethod
    def create(cls, game_id: int, name: str) -> "SpectatingMessage":
        return cls(data={"game_id": game_id, "name": name})


@dataclass
class GameListMessage(Message):
    """Games open to new players and games open to spectators."""
    type: MessageType = MessageType.GAME_LIST

    @classmethod
    def create(cls, joinable: list[dict], spectatable: list[dict]) -> "GameListMessage":
        return cls(data={"joinable": list(joinable), "spectatable": list(spectatable)})


@dataclass
class PlayerReadyMessage(Message):
    """Notification that a seated player changed their ready flag."""
    type: MessageType = MessageType.PLAYER_READY

    @classmethod
    def create(cls, player_id: int, name: str, ready: bool) -> "PlayerReadyMessage":
        return cls(data={"player_id": player_id, "name": name, "ready": ready})


@dataclass
class GameStateMessage(Message):
    """Full game state update, filtered for one player."""
    type: MessageType = MessageType.GAME_STATE

    @classmethod
    def create(cls, game_state: dict) -> "GameStateMessage":
        return cls(data=game_state)


@dataclass
class PlayerJoinedMessage(Message):
    """Notification that a player joined."""
    type: MessageType = MessageType.PLAYER_JOINED

    @classmethod
    def create(cls, player_id: int, name: str) -> "PlayerJoinedMessage":
        return cls(data={"player_id": player_id, "name": name})


@dataclass
class PlayerLeftMessage(Message):
    """Notification that a player left."""
    type: MessageType = MessageType.PLAYER_LEFT

    @classmethod
    def create(cls, player_id: int, name: str | None = None) -> "PlayerLeftMessage":
        data: dict[str, Any] = {"player_id": player_id}
        if name:
            data["name"] = name
        return cls(data=data)


@dataclass
class DrawOrderPromptMessage(Message):
    """Ask the active player to choose a draw order."""
    type: MessageType = MessageType.DRAW_ORDER_REQUEST

    @classmethod
    def create(cls, count: int) -> "DrawOrderPromptMessage":
        return cls(data={"count": count})


@dataclass
class ChoiceRequestMessage(Message):
    """Ask a player to resolve a pending choice."""
    type: MessageType = MessageType.CHOICE_REQUEST

    @classmethod
    def create(
        cls,
        choice_type: PendingActionType,
        options: list[str],
        optional: bool
    ) -> "ChoiceRequestMessage":
        return cls(data={
            "choice_type": choice_type.value,
            "options": list(options),
            "optional": optional,
        })


@dataclass
class ChatMessage(Message):
    """Chat line relayed to the table."""
    type: MessageType = MessageType.CHAT

    @classmethod
    def create(cls, player_id: int, name: str, text: str) -> "ChatMessage":
        return cls(data={"player_id": player_id, "name": name, "message": text})


@dataclass
class GameOverMessage(Message):
    """Broadcast when the game ends."""
    type: MessageType = MessageType.GAME_OVER

    @classmethod
    def create(cls, winner_id: int | None, reason: str | None = None) -> "GameOverMessage":
        data: dict[str, Any] = {"winner_id": winner_id}
        if reason:
            data["reason"] = reason
        return cls(data=data)

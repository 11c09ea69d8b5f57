"""
Enumerations used throughout the game.
"""
from enum import Enum


class CardKind(str, Enum):
    """Types of cards in the game."""
    SHIP = "SHIP"
    BASE = "BASE"


class Faction(str, Enum):
    """Card factions."""
    MERCHANT = "MERCHANT"
    WILDS = "WILDS"
    KINGDOM = "KINGDOM"
    ARTIFICER = "ARTIFICER"


class GamePhase(str, Enum):
    """Current phase of the active player's turn."""
    NOT_STARTED = "not_started"
    DRAW_ORDER = "draw_order"
    MAIN = "main"
    END = "end"
    GAME_OVER = "game_over"


class ActionType(str, Enum):
    """Player actions checked by the validation gate."""
    PLAY_CARD = "play_card"
    BUY_CARD = "buy_card"
    BUY_EXPLORER = "buy_explorer"
    ATTACK_PLAYER = "attack_player"
    ATTACK_BASE = "attack_base"
    SCRAP_HAND = "scrap_hand"
    SCRAP_DISCARD = "scrap_discard"
    SCRAP_TRADE_ROW = "scrap_trade_row"
    END_TURN = "end_turn"
    DRAW_ORDER = "draw_order"


class PendingActionType(str, Enum):
    """Engine-initiated choices that block turn progression."""
    DISCARD = "discard"
    SCRAP_HAND = "scrap_hand"
    SCRAP_DISCARD = "scrap_discard"
    SCRAP_HAND_DISCARD = "scrap_hand_discard"
    SCRAP_TRADE_ROW = "scrap_trade_row"
    TOP_DECK = "top_deck"
    DESTROY_BASE = "destroy_base"


class SessionState(str, Enum):
    """Lifecycle states for a game session."""
    WAITING = "WAITING"
    PLAYING = "PLAYING"
    FINISHED = "FINISHED"


class TransportKind(str, Enum):
    """Wire transport a connection arrived on."""
    WEBSOCKET = "websocket"
    SSH = "ssh"


class SSHProtocolState(str, Enum):
    """Per-connection SSH protocol progress."""
    KEY_EXCHANGE = "KEY_EXCHANGE"
    AUTHENTICATING = "AUTHENTICATING"
    AWAITING_CHANNEL = "AWAITING_CHANNEL"
    READY = "READY"
    CLOSED = "CLOSED"


class SSHAuthMethod(str, Enum):
    """Authentication methods accepted by the SSH server."""
    NONE = "none"
    PASSWORD = "password"
    PUBKEY = "publickey"


class ErrorKind(str, Enum):
    """
    Error codes sent to clients.

    The first block is the closed set the validation gate produces; the
    second covers decoding and session errors.
    """
    # Validation
    NOT_YOUR_TURN = "not_your_turn"
    WRONG_PHASE = "wrong_phase"
    INVALID_TARGET = "invalid_target"
    INSUFFICIENT_TRADE = "insufficient_trade"
    INSUFFICIENT_COMBAT = "insufficient_combat"
    CARD_NOT_FOUND = "card_not_found"
    INVALID_SLOT = "invalid_slot"
    INVALID_DRAW_ORDER = "invalid_draw_order"
    MISSING_FIELD = "missing_field"
    GAME_NOT_STARTED = "game_not_started"
    GAME_OVER = "game_over"
    UNKNOWN_ACTION = "unknown_action"

    # Decoding / session
    MALFORMED_JSON = "malformed_json"
    MISSING_TYPE = "missing_type"
    UNKNOWN_TYPE = "unknown_type"
    INVALID_FIELD_TYPE = "invalid_field_type"
    NOT_IN_GAME = "not_in_game"
    ALREADY_JOINED = "already_joined"
    GAME_FULL = "game_full"
    GAME_ALREADY_STARTED = "game_already_started"
    SPECTATORS_NOT_ALLOWED = "spectators_not_allowed"
    INTERNAL_ERROR = "internal_error"


VALIDATION_ERRORS = frozenset({
    ErrorKind.NOT_YOUR_TURN,
    ErrorKind.WRONG_PHASE,
    ErrorKind.INVALID_TARGET,
    ErrorKind.INSUFFICIENT_TRADE,
    ErrorKind.INSUFFICIENT_COMBAT,
    ErrorKind.CARD_NOT_FOUND,
    ErrorKind.INVALID_SLOT,
    ErrorKind.INVALID_DRAW_ORDER,
    ErrorKind.MISSING_FIELD,
    ErrorKind.GAME_NOT_STARTED,
    ErrorKind.GAME_OVER,
    ErrorKind.UNKNOWN_ACTION,
})


class MessageType(str, Enum):
    """Types of messages between client and server."""
    # Client -> Server
    JOIN = "join"
    LEAVE = "leave"
    ACTION = "action"
    DRAW_ORDER = "draw_order"
    END_TURN = "end_turn"
    PENDING_RESPONSE = "pending_response"
    PENDING_SKIP = "pending_skip"
    CHAT = "chat"
    READY = "ready"
    SPECTATE = "spectate"
    LIST_GAMES = "list_games"

    # Server -> Client
    JOINED = "joined"
    SPECTATING = "spectating"
    GAME_LIST = "game_list"
    PLAYER_READY = "player_ready"
    GAME_STATE = "gamestate"
    PLAYER_JOINED = "player_joined"
    PLAYER_LEFT = "player_left"
    DRAW_ORDER_REQUEST = "draw_order_request"
    CHOICE_REQUEST = "choice_request"
    GAME_OVER = "game_over"
    ERROR = "error"


CLIENT_MESSAGE_TYPES = frozenset({
    MessageType.JOIN,
    MessageType.LEAVE,
    MessageType.ACTION,
    MessageType.DRAW_ORDER,
    MessageType.END_TURN,
    MessageType.PENDING_RESPONSE,
    MessageType.PENDING_SKIP,
    MessageType.CHAT,
    MessageType.READY,
    MessageType.SPECTATE,
    MessageType.LIST_GAMES,
})

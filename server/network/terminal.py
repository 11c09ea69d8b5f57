"""
Terminal front end for SSH players.

Turns typed lines into protocol messages for the message handler, and
renders server messages as ANSI text sized to the client's terminal.
"""

import logging
from typing import Callable

from server.network.game_manager import GameManager
from server.network.message_handler import MessageHandler
from server.network.registry import ConnectionRegistry
from server.network.ssh_manager import PTYState, SSHConnectionState, SSHSessionHandler, clear_screen
from shared.constants import SSH_QUIT_TOKEN
from shared.enums import ActionType, MessageType, PendingActionType, TransportKind
from shared.protocol import (
    Action,
    ActionRequest,
    ChatRequest,
    DrawOrderRequest,
    EndTurnRequest,
    JoinRequest,
    LeaveRequest,
    ListGamesRequest,
    Message,
    PendingResponseRequest,
    PendingSkipRequest,
    ReadyRequest,
    SpectateRequest,
)


logger = logging.getLogger(__name__)


# ANSI
RESET = "\x1b[0m"
BOLD = "\x1b[1m"
RED = "\x1b[31m"
GREEN = "\x1b[32m"
YELLOW = "\x1b[33m"
BLUE = "\x1b[34m"
CYAN = "\x1b[36m"
CLEAR = "\x1b[2J\x1b[H"

PROMPT = "> "

# Commands that work before taking a seat
LOBBY_COMMANDS = ("games", "watch", "leave")

HELP_TEXT = [
    "Commands:",
    "  play <card>                 play a card from your hand",
    "  buy <slot>                  buy from the trade row (0-4)",
    "  explorer                    buy an Explorer",
    "  attack <player> <amount>    attack a player's authority",
    "  base <player> <base> <amt>  attack a base",
    "  scrap hand|discard <card>   scrap a card",
    "  scrap row <slot>            scrap a trade row card",
    "  order <i> <i> ...           choose the order to draw your hand",
    "  choose <card>               answer a pending choice",
    "  skip                        skip an optional choice",
    "  end                         end your turn",
    "  say <text>                  chat with the table",
    "  ready / unready             mark yourself ready to start early",
    "  games                       list open games",
    "  watch [game]                watch a game without playing",
    "  leave                       leave the game you play or watch",
    "  help                        show this help",
    "  quit                        disconnect",
]


class CommandError(ValueError):
    """A recognised command with bad arguments."""


def _int_arg(value: str, what: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise CommandError(f"{what} must be a number") from None


def parse_command(
    line: str,
    resolve_choice: Callable[[str], PendingActionType] | None = None
) -> Message | None:
    """
    Parse one typed line into a client message.

    Returns:
        The message, or None when the line is not a game command

    Raises:
        CommandError: for a known command with missing or bad arguments
    """
    parts = line.split()
    if not parts:
        return None
    command, args = parts[0].lower(), parts[1:]

    if command == "play":
        if len(args) != 1:
            raise CommandError("usage: play <card>")
        return ActionRequest.create(Action(ActionType.PLAY_CARD, card_id=args[0]))

    if command == "buy":
        if len(args) != 1:
            raise CommandError("usage: buy <slot>")
        return ActionRequest.create(Action(ActionType.BUY_CARD, slot=_int_arg(args[0], "slot")))

    if command == "explorer":
        return ActionRequest.create(Action(ActionType.BUY_EXPLORER))

    if command == "attack":
        if len(args) != 2:
            raise CommandError("usage: attack <player> <amount>")
        return ActionRequest.create(Action(
            ActionType.ATTACK_PLAYER,
            target=_int_arg(args[0], "player"),
            amount=_int_arg(args[1], "amount"),
        ))

    if command == "base":
        if len(args) != 3:
            raise CommandError("usage: base <player> <base> <amount>")
        return ActionRequest.create(Action(
            ActionType.ATTACK_BASE,
            target=_int_arg(args[0], "player"),
            card_id=args[1],
            amount=_int_arg(args[2], "amount"),
        ))

    if command == "scrap":
        if len(args) != 2 or args[0] not in ("hand", "discard", "row"):
            raise CommandError("usage: scrap hand|discard <card> or scrap row <slot>")
        if args[0] == "row":
            return ActionRequest.create(Action(ActionType.SCRAP_TRADE_ROW, slot=_int_arg(args[1], "slot")))
        kind = ActionType.SCRAP_HAND if args[0] == "hand" else ActionType.SCRAP_DISCARD
        return ActionRequest.create(Action(kind, card_id=args[1]))

    if command == "order":
        return DrawOrderRequest.create([_int_arg(arg, "position") for arg in args])

    if command == "end":
        return EndTurnRequest.create()

    if command == "choose":
        if len(args) != 1:
            raise CommandError("usage: choose <card>")
        response = resolve_choice(args[0]) if resolve_choice else PendingActionType.DISCARD
        return PendingResponseRequest.create(response, args[0])

    if command == "skip":
        return PendingSkipRequest.create()

    if command == "say":
        text = line.strip()[len(parts[0]):].strip()
        if not text:
            raise CommandError("usage: say <text>")
        return ChatRequest.create(text)

    if command == "leave":
        return LeaveRequest.create()

    if command in ("ready", "unready"):
        return ReadyRequest.create(command == "ready")

    if command == "games":
        return ListGamesRequest.create()

    if command == "watch":
        if len(args) > 1:
            raise CommandError("usage: watch [game]")
        return SpectateRequest.create(_int_arg(args[0], "game") if args else None)

    return None


# =============================================================================
# Rendering
# =============================================================================

def _card_line(card: dict) -> str:
    stats = []
    if card.get("trade"):
        stats.append(f"{card['trade']}T")
    if card.get("combat"):
        stats.append(f"{card['combat']}C")
    if card.get("authority"):
        stats.append(f"{card['authority']}A")
    if card.get("kind") == "BASE":
        stats.append(f"def {card.get('defense', 0) - card.get('damage', 0)}" + (" outpost" if card.get("outpost") else ""))
    return f"{card.get('name', '?')} [{card.get('instance_id', card.get('id', '?'))}] {' '.join(stats)}".rstrip()


def _render_state(state: dict, width: int) -> list[str]:
    rule = "-" * max(20, min(width, 100))
    you = state.get("you")
    lines = [
        f"{BOLD}Turn {state.get('turn_number', 0)} | phase: {state.get('phase')} | "
        f"active player: {state.get('active_player')}{RESET}",
        rule,
    ]

    for player in state.get("players", []):
        marker = "*" if player.get("id") == state.get("active_player") else " "
        label = " (you)" if player.get("id") == you else ""
        offline = "" if player.get("connected", True) else " [offline]"
        lines.append(
            f"{marker} {player.get('id')}: {player.get('name')}{label}{offline}  "
            f"{GREEN}authority {player.get('authority')}{RESET}  "
            f"trade {player.get('trade')}  combat {player.get('combat')}  "
            f"hand {player.get('hand_count')}  deck {player.get('draw_pile_count')}"
        )
        for base in player.get("bases", []):
            lines.append(f"      base: {_card_line(base)}")

    lines.append(rule)
    lines.append(f"{CYAN}Trade row{RESET} (explorer costs {state.get('trade_row', {}).get('explorer_cost')}):")
    for slot, card in enumerate(state.get("trade_row", {}).get("slots", [])):
        if card:
            lines.append(f"  {slot}: {_card_line(card)}  cost {card.get('cost')}")
        else:
            lines.append(f"  {slot}: (empty)")

    me = next((p for p in state.get("players", []) if p.get("id") == you), None)
    if me and "hand" in me:
        lines.append(rule)
        lines.append(f"{CYAN}Your hand{RESET}:")
        for card in me["hand"]:
            lines.append(f"  {_card_line(card)}")

    pending = state.get("pending")
    if pending and pending.get("player_id") == you:
        lines.append(f"{YELLOW}Pending choice: {pending.get('type')}{RESET}")

    if state.get("winner_id") is not None:
        lines.append(f"{BOLD}Winner: player {state['winner_id']}{RESET}")
    elif state.get("is_your_turn"):
        lines.append(f"{GREEN}Your turn.{RESET}")
    return lines


def render_message(message: Message, pty: PTYState | None = None) -> str:
    """
    Render a server message as terminal text.

    Lines end in CRLF. Unknown message types render as an empty string.
    """
    width = pty.width if pty else 80
    data = message.data
    lines: list[str]
    prefix = ""

    if message.type == MessageType.GAME_STATE:
        prefix = CLEAR
        lines = _render_state(data, width)
    elif message.type == MessageType.ERROR:
        details = f" ({data['details']})" if data.get("details") else ""
        lines = [f"{RED}Error: {data.get('message', data.get('code'))}{details}{RESET}"]
    elif message.type == MessageType.JOINED:
        note = " Welcome back!" if data.get("reconnected") else ""
        lines = [f"{GREEN}Joined game {data.get('game_id')} as player {data.get('player_id')}.{note}{RESET}"]
    elif message.type == MessageType.SPECTATING:
        lines = [f"{GREEN}Watching {data.get('name')} (game {data.get('game_id')}). "
                 f"Type a name to take a free seat or 'leave' to stop watching.{RESET}"]
    elif message.type == MessageType.GAME_LIST:
        lines = [f"{BOLD}Open games:{RESET}"]
        for entry in data.get("joinable", []):
            lines.append(f"  {entry['game_id']}: {entry['name']}  {entry['players']}/{entry['seats']} seated")
        lines.append(f"{BOLD}Games to watch:{RESET}")
        for entry in data.get("spectatable", []):
            lines.append(f"  {entry['game_id']}: {entry['name']}  {entry['state'].lower()}")
    elif message.type == MessageType.PLAYER_READY:
        status = "ready" if data.get("ready") else "not ready"
        lines = [f"{YELLOW}{data.get('name')} is {status}{RESET}"]
    elif message.type == MessageType.PLAYER_JOINED:
        lines = [f"{YELLOW}{data.get('name')} joined as player {data.get('player_id')}{RESET}"]
    elif message.type == MessageType.PLAYER_LEFT:
        lines = [f"{YELLOW}{data.get('name', 'Player ' + str(data.get('player_id')))} left{RESET}"]
    elif message.type == MessageType.CHAT:
        lines = [f"{BLUE}<{data.get('name')}>{RESET} {data.get('message')}"]
    elif message.type == MessageType.DRAW_ORDER_REQUEST:
        count = data.get("count", 0)
        lines = [f"{CYAN}Draw {count} cards: type 'order' and {count} draw pile positions, e.g. "
                 f"order {' '.join(str(i) for i in range(count))}{RESET}"]
    elif message.type == MessageType.CHOICE_REQUEST:
        skip = " or 'skip'" if data.get("optional") else ""
        lines = [
            f"{CYAN}Choice ({data.get('choice_type')}): 'choose <card>'{skip}{RESET}",
            f"  options: {', '.join(data.get('options', [])) or '(none)'}",
        ]
    elif message.type == MessageType.GAME_OVER:
        lines = [f"{BOLD}Game over! Winner: player {data.get('winner_id')}{RESET}"]
    else:
        return ""

    return prefix + "\r\n" + "\r\n".join(lines) + "\r\n" + PROMPT


# =============================================================================
# Session handler
# =============================================================================

class TerminalSessionHandler(SSHSessionHandler):
    """
    Line-oriented game client for one SSH session.

    The first plain line joins the game, using the SSH username when the
    line is empty; lobby commands (games, watch, leave) work before that.
    After joining every line is a command.
    """

    def __init__(self, registry: ConnectionRegistry, handler: MessageHandler, games: GameManager):
        self._registry = registry
        self._handler = handler
        self._games = games
        self.conn_id: int | None = None
        self._buffer = ""
        self._after_cr = False

    # =========================================================================
    # SSHSessionHandler
    # =========================================================================

    def on_connect(self, state: SSHConnectionState) -> None:
        self.conn_id = self._registry.register(TransportKind.SSH, state)
        if self.conn_id is None:
            state.send_string(f"{RED}Server is full, try again later.{RESET}\r\n")
            return
        clear_screen(state)
        state.send_string(
            f"{BOLD}Welcome to Starfront!{RESET}\r\n"
            f"Type a name to join (Enter for '{state.username}'), 'games', 'watch', 'help' or 'quit'.\r\n{PROMPT}"
        )

    def on_input(self, state: SSHConnectionState, data: bytes) -> bool:
        if self.conn_id is None:
            return False

        for char in data.decode("utf-8", "replace"):
            after_cr, self._after_cr = self._after_cr, char == "\r"
            if char in "\r\n":
                if char == "\n" and after_cr:
                    # Second half of a CRLF
                    continue
                line = self._buffer
                self._buffer = ""
                state.send_string("\r\n")
                if not self._handle_line(state, line.strip()):
                    return False
            elif char in "\x7f\x08":
                if self._buffer:
                    self._buffer = self._buffer[:-1]
                    state.send_string("\b \b")
            elif char == "\x03":
                # Ctrl-C
                return False
            elif char.isprintable():
                self._buffer += char
                state.send_string(char)
        return True

    def on_resize(self, state: SSHConnectionState, width: int, height: int) -> None:
        logger.debug(f"SSH terminal for {state.username} resized to {width}x{height}")

    def on_disconnect(self, state: SSHConnectionState) -> None:
        if self.conn_id is None:
            return
        connection = self._registry.get(self.conn_id)
        if connection is not None:
            self._handler.handle_disconnect(connection)
        self.conn_id = None

    # =========================================================================
    # Lines
    # =========================================================================

    def _say(self, state: SSHConnectionState, lines: list[str]) -> None:
        state.send_string("\r\n".join(lines) + "\r\n" + PROMPT)

    def _handle_line(self, state: SSHConnectionState, line: str) -> bool:
        """Returns False to disconnect."""
        connection = self._registry.get(self.conn_id)
        if connection is None:
            return False

        lowered = line.lower()
        if lowered == SSH_QUIT_TOKEN:
            state.send_string("Goodbye!\r\n")
            return False
        if lowered == "help":
            self._say(state, HELP_TEXT)
            return True

        command = lowered.split()[0] if lowered else ""
        if not connection.authenticated and command not in LOBBY_COMMANDS:
            name = line or state.username or "Player"
            self._handler.handle_message(connection, JoinRequest.create(name))
            return True

        if not line:
            state.send_string(PROMPT)
            return True

        try:
            message = parse_command(line, lambda card_id: self._resolve_choice(connection, card_id))
        except CommandError as e:
            self._say(state, [f"{RED}{e}{RESET}"])
            return True

        if message is None:
            self._say(state, [f"Unknown command '{line.split()[0]}'."] + HELP_TEXT)
            return True

        self._handler.handle_message(connection, message)
        return True

    def _resolve_choice(self, connection, card_id: str) -> PendingActionType:
        """Work out which response a bare 'choose <card>' means."""
        session = self._games.get_session(connection.game_id)
        if session is None:
            return PendingActionType.DISCARD
        with session.lock:
            game = session.game
            pending = game.pending_action if game else None
            if pending is None:
                return PendingActionType.DISCARD
            if pending.type != PendingActionType.SCRAP_HAND_DISCARD:
                return pending.type
            player = game.get_player(connection.player_id)
            if player and player.find_in_hand(card_id):
                return PendingActionType.SCRAP_HAND
            return PendingActionType.SCRAP_DISCARD

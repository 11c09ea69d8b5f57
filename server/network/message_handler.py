"""
Message handler for routing client messages to game actions.

Decodes incoming frames, checks them against the validation gate, applies
the engine mutation, and fans responses and state updates out through the
connection registry. It is transport-agnostic and synchronous: the
WebSocket manager calls it off the event loop and SSH connection threads
call it directly, so everything touching a game happens under that game
session's lock.
"""

import logging
from dataclasses import dataclass, field

from server.game_engine import Game
from server.network.game_manager import DEFAULT_SESSION_ID, GameManager, GameSession
from server.network.registry import Connection, ConnectionRegistry
from server.network.validation import (
    ValidationResult,
    validate_action,
    validate_pending_response,
    validate_pending_skip,
)
from shared.enums import ActionType, ErrorKind, GamePhase, MessageType
from shared.protocol import (
    Action,
    ChatMessage,
    ChoiceRequestMessage,
    DecodeError,
    DrawOrderPromptMessage,
    ErrorMessage,
    GameListMessage,
    GameOverMessage,
    GameStateMessage,
    JoinedMessage,
    Message,
    PlayerJoinedMessage,
    PlayerLeftMessage,
    PlayerReadyMessage,
    SpectatingMessage,
    decode,
    parse_action,
    parse_chat,
    parse_game_id,
    parse_join,
    parse_pending_response,
    parse_ready,
)


logger = logging.getLogger(__name__)


@dataclass
class HandleResult:
    """Result of handling a message."""
    # Response to send back to the requesting connection (None if no response needed)
    response: Message | None = None
    # Messages to broadcast to all players in the game
    broadcasts: list[Message] = field(default_factory=list)
    # Whether to broadcast the per-player game state after this message
    broadcast_state: bool = False
    # Further messages for the requesting connection, sent after the response
    direct: list[Message] = field(default_factory=list)

    @classmethod
    def error(cls, kind: ErrorKind, details: str | None = None) -> "HandleResult":
        return cls(response=ErrorMessage.create(kind, details))


class MessageHandler:
    """
    Routes incoming messages to appropriate game actions.

    Each handler method returns a HandleResult containing:
    - A response to send to the requesting connection
    - Broadcasts to send to every joined connection in the game, spectators included
    - Whether to follow up with a filtered game state for everyone
    """

    def __init__(self, game_manager: GameManager, registry: ConnectionRegistry):
        self._games = game_manager
        self._registry = registry

    # =========================================================================
    # Entry points
    # =========================================================================

    def handle_raw(self, connection: Connection, raw: bytes | str) -> HandleResult:
        """Decode one inbound frame and handle it."""
        connection.update_activity()
        try:
            message = decode(raw)
        except DecodeError as e:
            logger.info(f"Connection {connection.id} sent an undecodable frame: {e}")
            result = HandleResult.error(e.kind, e.detail)
            self._registry.send(connection.id, result.response)
            return result

        return self.handle_message(connection, message)

    def handle_message(self, connection: Connection, message: Message) -> HandleResult:
        """
        Handle a decoded message and deliver everything it produces.

        Errors only ever go back to the sender.
        """
        if message.type == MessageType.LIST_GAMES:
            # Listing reads every session, so it runs outside any one session's lock
            return self._reply(connection, message, self._handle_list_games(connection, message))

        try:
            session = self._session_for(connection, message)
        except DecodeError as e:
            return self._reply(connection, message, HandleResult.error(e.kind, e.detail))

        with session.lock:
            try:
                result = self._route(connection, message, session)
            except DecodeError as e:
                result = HandleResult.error(e.kind, e.detail)
            except Exception as e:
                logger.exception(f"Error handling {message.type.value} from connection {connection.id}: {e}")
                result = HandleResult.error(ErrorKind.INTERNAL_ERROR)

            # Preserve request_id in response
            if result.response and message.request_id:
                result.response.request_id = message.request_id

            self._deliver(connection, session, result)
        return result

    def _reply(self, connection: Connection, message: Message, result: HandleResult) -> HandleResult:
        """Deliver a response that touches no game."""
        if message.request_id:
            result.response.request_id = message.request_id
        self._registry.send(connection.id, result.response)
        return result

    def handle_disconnect(self, connection: Connection) -> None:
        """
        Release a closed connection.

        Joined players are announced as gone to the rest of their game.
        """
        if connection.spectating:
            session = self._games.get_session(connection.game_id)
            if session is not None:
                session.remove_spectator(connection.id)
        elif connection.authenticated:
            session = self._games.get_session(connection.game_id)
            player_id = connection.player_id
            name = connection.player_name
            if session is not None:
                with session.lock:
                    session.leave(player_id)
                    self._registry.clear_player(connection.id)
                    self._registry.broadcast_game(session.id, PlayerLeftMessage.create(player_id, name))
                    if session.game is not None:
                        self.broadcast_state(session)
            logger.info(f"Player {name} ({player_id}) disconnected")

        self._registry.unregister(connection.id)

    # =========================================================================
    # Helper Methods
    # =========================================================================

    def _session_for(self, connection: Connection, message: Message) -> GameSession:
        """
        Pick the session a message acts on: the connection's own game, or
        for a join or spectate from the lobby, the game it names.
        """
        if connection.game_id is not None:
            session_id = connection.game_id
        elif message.type in (MessageType.JOIN, MessageType.SPECTATE):
            session_id = parse_game_id(message, DEFAULT_SESSION_ID)
        else:
            session_id = DEFAULT_SESSION_ID

        if session_id == DEFAULT_SESSION_ID:
            return self._games.get_session(session_id) or self._games.create_session(session_id)
        session = self._games.get_session(session_id)
        if session is None:
            raise DecodeError(ErrorKind.NOT_IN_GAME, f"No game with id {session_id}")
        return session

    def _route(self, connection: Connection, message: Message, session: GameSession) -> HandleResult:
        lobby_handler = self._get_lobby_handler(message.type)
        if lobby_handler:
            return lobby_handler(connection, message, session)

        if not connection.authenticated:
            return HandleResult.error(ErrorKind.NOT_IN_GAME, "Send a join message first")

        handler = self._get_handler(message.type)
        if not handler:
            return HandleResult.error(ErrorKind.UNKNOWN_TYPE, f"Unknown message type: {message.type.value}")
        return handler(connection, message, session)

    def _get_lobby_handler(self, message_type: MessageType):
        """Handlers that also serve connections without a seat."""
        handlers = {
            MessageType.JOIN: self._handle_join,
            MessageType.SPECTATE: self._handle_spectate,
            MessageType.LEAVE: self._handle_leave,
        }
        return handlers.get(message_type)

    def _get_handler(self, message_type: MessageType):
        """Get the handler method for a message type."""
        handlers = {
            MessageType.READY: self._handle_ready,
            MessageType.ACTION: self._handle_action,
            MessageType.END_TURN: self._handle_action,
            MessageType.DRAW_ORDER: self._handle_action,
            MessageType.PENDING_RESPONSE: self._handle_pending_response,
            MessageType.PENDING_SKIP: self._handle_pending_skip,
            MessageType.CHAT: self._handle_chat,
        }
        return handlers.get(message_type)

    def _deliver(self, connection: Connection, session: GameSession, result: HandleResult) -> None:
        if result.response:
            self._registry.send(connection.id, result.response)
        for message in result.direct:
            self._registry.send(connection.id, message)

        for broadcast in result.broadcasts:
            self._registry.broadcast_game(session.id, broadcast)

        if result.broadcast_state and session.game is not None:
            self.broadcast_state(session)

    def broadcast_state(self, session: GameSession) -> int:
        """
        Send every joined connection its own filtered view of the game,
        then prompt whoever owes the next decision. Spectators get the
        view with every hand hidden.
        """
        game = session.game
        sent_count = 0
        for conn in self._registry.connections():
            if conn.game_id != session.id or not (conn.authenticated or conn.spectating):
                continue
            state = GameStateMessage.create(game.get_state_for_player(conn.player_id))
            if self._registry.send(conn.id, state):
                sent_count += 1

        self._send_prompts(session.id, game)
        return sent_count

    def _send_prompts(self, session_id: int, game: Game) -> None:
        if game.game_over:
            return

        if game.phase == GamePhase.DRAW_ORDER:
            self._registry.send_to_player(
                game.active_player,
                DrawOrderPromptMessage.create(game.cards_to_draw(game.active_player)),
                session_id,
            )

        pending = game.pending_action
        if pending is not None:
            self._registry.send_to_player(
                pending.player_id,
                ChoiceRequestMessage.create(pending.type, game.pending_options(pending), pending.optional),
                session_id,
            )

    def _finish_if_over(self, session: GameSession, result: HandleResult) -> None:
        if session.check_finished():
            result.broadcasts.append(GameOverMessage.create(session.game.winner, "authority depleted"))

    # =========================================================================
    # Lobby Handlers
    # =========================================================================

    def _handle_join(self, connection: Connection, message: Message, session: GameSession) -> HandleResult:
        """Seat the connection and announce it to the table."""
        if connection.authenticated:
            return HandleResult.error(ErrorKind.ALREADY_JOINED)

        name = parse_join(message)
        seat = session.join(connection.id, name)
        if not seat.success:
            return HandleResult.error(seat.error)

        if connection.spectating:
            session.remove_spectator(connection.id)
        self._registry.assign_player(connection.id, seat.player_id, session.id, name)
        logger.info(
            f"Player {name} joined game {session.id} as player {seat.player_id}"
            f"{' (reconnected)' if seat.reconnected else ''}"
        )

        if seat.started:
            self._sync_seats(session)
        player_id = connection.player_id
        return HandleResult(
            response=JoinedMessage.create(player_id, name, session.id, seat.reconnected),
            broadcasts=[PlayerJoinedMessage.create(player_id, name)],
            broadcast_state=session.game is not None,
        )

    def _sync_seats(self, session: GameSession) -> None:
        """Re-point seated connections after a start renumbered the seats."""
        for player_id, seat in enumerate(session.seats):
            if seat is not None and seat.conn_id is not None:
                self._registry.assign_player(seat.conn_id, player_id, session.id, seat.name)

    def _handle_ready(self, connection: Connection, message: Message, session: GameSession) -> HandleResult:
        """Toggle the sender's ready flag; the last ready player may start the game."""
        ready = parse_ready(message)
        seat = session.set_ready(connection.player_id, ready)
        if not seat.success:
            return HandleResult.error(seat.error)

        # Announce under the pre-start seat number the table knows
        result = HandleResult(
            broadcasts=[PlayerReadyMessage.create(connection.player_id, connection.player_name, ready)],
            broadcast_state=seat.started,
        )
        if seat.started:
            self._sync_seats(session)
            logger.info(f"Game {session.id} started by ready-up")
        return result

    def _handle_spectate(self, connection: Connection, message: Message, session: GameSession) -> HandleResult:
        """Watch a game without a seat."""
        if connection.authenticated or connection.spectating:
            return HandleResult.error(ErrorKind.ALREADY_JOINED)

        error = session.add_spectator(connection.id)
        if error is not None:
            return HandleResult.error(error)

        self._registry.assign_spectator(connection.id, session.id)
        result = HandleResult(response=SpectatingMessage.create(session.id, session.name))
        if session.game is not None:
            result.direct.append(GameStateMessage.create(session.game.get_state_for_player(None)))
        return result

    def _handle_list_games(self, connection: Connection, message: Message) -> HandleResult:
        return HandleResult(
            response=GameListMessage.create(self._games.list_joinable(), self._games.list_spectatable())
        )

    def _handle_leave(self, connection: Connection, message: Message, session: GameSession) -> HandleResult:
        if connection.spectating:
            session.remove_spectator(connection.id)
            self._registry.clear_player(connection.id)
            logger.info(f"Connection {connection.id} stopped watching game {session.id}")
            return HandleResult()

        if not connection.authenticated:
            return HandleResult.error(ErrorKind.NOT_IN_GAME, "Send a join message first")

        player_id = connection.player_id
        name = connection.player_name

        session.leave(player_id)
        # Announce before clearing so the leaver sees the confirmation too
        self._registry.broadcast_game(session.id, PlayerLeftMessage.create(player_id, name))
        self._registry.clear_player(connection.id)

        logger.info(f"Player {name} ({player_id}) left game {session.id}")
        return HandleResult(broadcast_state=session.game is not None)

    def _handle_chat(self, connection: Connection, message: Message, session: GameSession) -> HandleResult:
        text = parse_chat(message)
        return HandleResult(
            broadcasts=[ChatMessage.create(connection.player_id, connection.player_name, text)]
        )

    # =========================================================================
    # Game Action Handlers
    # =========================================================================

    def _handle_action(self, connection: Connection, message: Message, session: GameSession) -> HandleResult:
        """Validate an action, apply it, and broadcast the new state."""
        action = parse_action(message)
        game = session.game
        player_id = connection.player_id

        validation = validate_action(game, player_id, action)
        if not validation.valid:
            return self._rejected(connection, validation)

        success, msg = self._apply(game, player_id, action)
        if not success:
            logger.error(f"Engine refused validated {action.type.value} from player {player_id}: {msg}")
            return HandleResult.error(ErrorKind.INTERNAL_ERROR)

        logger.info(f"Player {player_id} in game {session.id}: {msg}")
        result = HandleResult(broadcast_state=True)
        self._finish_if_over(session, result)
        return result

    def _apply(self, game: Game, player_id: int, action: Action) -> tuple[bool, str]:
        if action.type == ActionType.PLAY_CARD:
            return game.play_card(player_id, action.card_id)
        if action.type == ActionType.BUY_CARD:
            return game.buy_card(player_id, action.slot)
        if action.type == ActionType.BUY_EXPLORER:
            return game.buy_explorer(player_id)
        if action.type == ActionType.ATTACK_PLAYER:
            return game.attack_player(player_id, action.target, action.amount)
        if action.type == ActionType.ATTACK_BASE:
            return game.attack_base(player_id, action.target, action.card_id, action.amount)
        if action.type == ActionType.SCRAP_HAND:
            return game.scrap_from_hand(player_id, action.card_id)
        if action.type == ActionType.SCRAP_DISCARD:
            return game.scrap_from_discard(player_id, action.card_id)
        if action.type == ActionType.SCRAP_TRADE_ROW:
            return game.scrap_from_trade_row(player_id, action.slot)
        if action.type == ActionType.END_TURN:
            return game.end_turn(player_id)
        if action.type == ActionType.DRAW_ORDER:
            return game.submit_draw_order(player_id, list(action.order))
        return False, f"Unhandled action {action.type.value}"

    def _handle_pending_response(
        self,
        connection: Connection,
        message: Message,
        session: GameSession
    ) -> HandleResult:
        response_type, card_id = parse_pending_response(message)
        game = session.game
        player_id = connection.player_id

        validation = validate_pending_response(game, player_id, response_type, card_id)
        if not validation.valid:
            return self._rejected(connection, validation)

        success, msg = game.resolve_pending(player_id, response_type, card_id)
        if not success:
            logger.error(f"Engine refused validated choice from player {player_id}: {msg}")
            return HandleResult.error(ErrorKind.INTERNAL_ERROR)

        result = HandleResult(broadcast_state=True)
        self._finish_if_over(session, result)
        return result

    def _handle_pending_skip(
        self,
        connection: Connection,
        message: Message,
        session: GameSession
    ) -> HandleResult:
        game = session.game
        player_id = connection.player_id

        validation = validate_pending_skip(game, player_id)
        if not validation.valid:
            return self._rejected(connection, validation)

        game.skip_pending(player_id)
        return HandleResult(broadcast_state=True)

    def _rejected(self, connection: Connection, validation: ValidationResult) -> HandleResult:
        logger.debug(
            f"Rejected message from connection {connection.id}: "
            f"{validation.error.value} ({validation.message})"
        )
        return HandleResult.error(validation.error, validation.message)

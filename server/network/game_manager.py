"""
Game sessions: lobby seats, lifecycle, and the per-game lock.

A session fills its seats from joining connections and starts the engine
once every seat is taken, or earlier once at least two seated players are
all ready. The first player seated hosts the table. Spectators watch
without a seat. A dropped player reclaims their seat by joining again under
the same name while the game is running.
"""

import logging
import random
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from shared.constants import MAX_PLAYERS, MIN_PLAYERS, SESSION_MAX_SPECTATORS
from shared.enums import ErrorKind, SessionState

from server.game_engine import Game


logger = logging.getLogger(__name__)

DEFAULT_SESSION_ID = 0


@dataclass
class SessionSeat:
    """A claimed seat; the seat index is the player id."""
    conn_id: int | None
    name: str
    connected: bool = True
    ready: bool = False


@dataclass
class SeatResult:
    """Outcome of a join attempt."""
    success: bool
    player_id: int | None = None
    error: ErrorKind | None = None
    reconnected: bool = False
    started: bool = False


@dataclass
class GameSession:
    """One table: seats, state, and the game once it has started."""
    id: int = DEFAULT_SESSION_ID
    required_players: int = MIN_PLAYERS
    seats: list[SessionSeat | None] = field(default_factory=list)
    state: SessionState = SessionState.WAITING
    game: Game | None = None
    seed: int | None = None
    host_player_id: int | None = None
    allow_spectators: bool = True
    max_spectators: int = SESSION_MAX_SPECTATORS
    spectators: set[int] = field(default_factory=set)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    def __post_init__(self):
        self.required_players = max(MIN_PLAYERS, min(MAX_PLAYERS, self.required_players))
        if not self.seats:
            self.seats = [None] * self.required_players

    @property
    def is_finished(self) -> bool:
        return self.state == SessionState.FINISHED

    @property
    def player_count(self) -> int:
        return sum(1 for seat in self.seats if seat is not None)

    @property
    def connected_count(self) -> int:
        return sum(1 for seat in self.seats if seat is not None and seat.connected)

    @property
    def name(self) -> str:
        host = self.seats[self.host_player_id] if self.host_player_id is not None else None
        return f"{host.name}'s game" if host else f"Game {self.id}"

    @property
    def is_full(self) -> bool:
        return self.player_count >= len(self.seats)

    def is_host(self, player_id: int | None) -> bool:
        return player_id is not None and player_id == self.host_player_id

    def to_listing(self) -> dict[str, Any]:
        """Summary of the table for game lists."""
        with self.lock:
            return {
                "game_id": self.id,
                "name": self.name,
                "state": self.state.value,
                "players": self.player_count,
                "seats": len(self.seats),
                "ready": sum(1 for seat in self.seats if seat is not None and seat.ready),
                "spectators": len(self.spectators),
                "allow_spectators": self.allow_spectators,
            }

    # =========================================================================
    # Joining and Leaving
    # =========================================================================

    def join(self, conn_id: int, name: str) -> SeatResult:
        """
        Seat a connection.

        While the game is running, a name matching a disconnected seat
        reclaims that seat.
        """
        with self.lock:
            if self.state == SessionState.PLAYING:
                for player_id, seat in enumerate(self.seats):
                    if seat and not seat.connected and seat.name == name:
                        seat.conn_id = conn_id
                        seat.connected = True
                        self.game.players[player_id].connected = True
                        logger.info(f"{name} reclaimed seat {player_id} in session {self.id}")
                        return SeatResult(True, player_id=player_id, reconnected=True)
                return SeatResult(False, error=ErrorKind.GAME_ALREADY_STARTED)

            if self.state == SessionState.FINISHED:
                return SeatResult(False, error=ErrorKind.GAME_ALREADY_STARTED)

            for player_id, seat in enumerate(self.seats):
                if seat is None:
                    self.seats[player_id] = SessionSeat(conn_id=conn_id, name=name)
                    if self.host_player_id is None:
                        self.host_player_id = player_id
                    logger.info(f"{name} took seat {player_id} in session {self.id}")
                    started = False
                    if self.is_full:
                        started = self.start()
                    return SeatResult(True, player_id=player_id, started=started)

            return SeatResult(False, error=ErrorKind.GAME_FULL)

    def leave(self, player_id: int) -> bool:
        """
        Release a seat.

        Frees it while waiting; marks it disconnected once the game runs.
        """
        with self.lock:
            if not 0 <= player_id < len(self.seats) or self.seats[player_id] is None:
                return False

            seat = self.seats[player_id]
            if self.state == SessionState.WAITING:
                self.seats[player_id] = None
                logger.info(f"{seat.name} left seat {player_id} in session {self.id}")
                if self.is_host(player_id):
                    # The lowest remaining seat takes over the table
                    self.host_player_id = next(
                        (i for i, other in enumerate(self.seats) if other is not None), None
                    )
                return True

            seat.connected = False
            seat.conn_id = None
            if self.game:
                self.game.players[player_id].connected = False
            logger.info(f"{seat.name} disconnected from session {self.id}")

            if self.state == SessionState.FINISHED and self.connected_count == 0:
                self.reset()
            return True

    # =========================================================================
    # Ready-up
    # =========================================================================

    def set_ready(self, player_id: int, ready: bool = True) -> SeatResult:
        """
        Set a seated player's ready flag while the table is waiting.

        Readying the last unready player starts the game when at least
        MIN_PLAYERS are seated, so a table need not fill every seat.
        """
        with self.lock:
            if self.state != SessionState.WAITING:
                return SeatResult(False, error=ErrorKind.GAME_ALREADY_STARTED)
            if not 0 <= player_id < len(self.seats) or self.seats[player_id] is None:
                return SeatResult(False, error=ErrorKind.NOT_IN_GAME)

            self.seats[player_id].ready = ready
            logger.info(
                f"{self.seats[player_id].name} in session {self.id} is {'' if ready else 'not '}ready"
            )
            started = self.start() if ready and self.can_start() else False
            return SeatResult(True, player_id=player_id, started=started)

    def can_start(self) -> bool:
        with self.lock:
            seated = [seat for seat in self.seats if seat is not None]
            return (
                self.state == SessionState.WAITING
                and len(seated) >= MIN_PLAYERS
                and all(seat.ready for seat in seated)
            )

    # =========================================================================
    # Spectators
    # =========================================================================

    def add_spectator(self, conn_id: int) -> ErrorKind | None:
        """
        Let a connection watch the table.

        Returns:
            None on success, otherwise why the connection was turned away
        """
        with self.lock:
            if not self.allow_spectators:
                return ErrorKind.SPECTATORS_NOT_ALLOWED
            if conn_id in self.spectators:
                return ErrorKind.ALREADY_JOINED
            if len(self.spectators) >= self.max_spectators:
                return ErrorKind.GAME_FULL
            self.spectators.add(conn_id)
            logger.info(f"Connection {conn_id} is watching session {self.id} ({len(self.spectators)} watching)")
            return None

    def remove_spectator(self, conn_id: int) -> bool:
        with self.lock:
            if conn_id not in self.spectators:
                return False
            self.spectators.discard(conn_id)
            logger.info(f"Connection {conn_id} stopped watching session {self.id}")
            return True

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> bool:
        """
        Create and start the game with every seated player.

        Empty seats are dropped first, so seat indices match engine player
        ids; callers re-read seats after a start.
        """
        with self.lock:
            if self.state != SessionState.WAITING:
                return False

            seated = [seat for seat in self.seats if seat is not None]
            host = self.seats[self.host_player_id] if self.host_player_id is not None else None
            game = Game(id=self.id, rng=random.Random(self.seed))
            for seat in seated:
                game.add_player(seat.name)

            success, msg = game.start()
            if not success:
                logger.warning(f"Session {self.id} could not start: {msg}")
                return False

            self.seats = seated
            self.host_player_id = next((i for i, seat in enumerate(seated) if seat is host), 0)
            self.game = game
            self.state = SessionState.PLAYING
            logger.info(f"Session {self.id} started with {game.player_count} players")
            return True

    def check_finished(self) -> bool:
        """Move to FINISHED once the engine reports game over."""
        with self.lock:
            if self.state == SessionState.PLAYING and self.game and self.game.game_over:
                self.state = SessionState.FINISHED
                logger.info(f"Session {self.id} finished, winner {self.game.winner}")
                return True
            return False

    def reset(self) -> None:
        """Clear a finished table so a new game can gather."""
        with self.lock:
            self.seats = [None] * self.required_players
            self.host_player_id = None
            self.game = None
            self.state = SessionState.WAITING
            logger.info(f"Session {self.id} reset")


class GameManager:
    """
    Owns the game sessions by id.

    A single default session (id 0) is created up front; every join lands
    there unless a caller creates more.
    """

    def __init__(
        self,
        required_players: int = MIN_PLAYERS,
        seed: int | None = None,
        allow_spectators: bool = True
    ):
        self.required_players = required_players
        self.seed = seed
        self.allow_spectators = allow_spectators
        self._sessions: dict[int, GameSession] = {}
        self._lock = threading.RLock()
        self.create_session(DEFAULT_SESSION_ID)

    def create_session(self, session_id: int) -> GameSession:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                session = GameSession(
                    id=session_id,
                    required_players=self.required_players,
                    seed=self.seed,
                    allow_spectators=self.allow_spectators,
                )
                self._sessions[session_id] = session
                logger.info(f"Session {session_id} created (needs {session.required_players} players)")
            return session

    def get_session(self, session_id: int = DEFAULT_SESSION_ID) -> GameSession | None:
        with self._lock:
            return self._sessions.get(session_id)

    def get_game(self, session_id: int) -> Game | None:
        session = self.get_session(session_id)
        return session.game if session else None

    def sessions(self) -> list[GameSession]:
        """Snapshot of every session, ordered by id."""
        with self._lock:
            return [self._sessions[session_id] for session_id in sorted(self._sessions)]

    def list_joinable(self) -> list[dict[str, Any]]:
        """Waiting tables with a free seat."""
        return [
            s.to_listing() for s in self.sessions()
            if s.state == SessionState.WAITING and not s.is_full
        ]

    def list_spectatable(self) -> list[dict[str, Any]]:
        """Tables that take spectators and have not finished."""
        return [
            s.to_listing() for s in self.sessions()
            if s.allow_spectators and not s.is_finished
        ]

    def count_by_state(self, state: SessionState) -> int:
        return sum(1 for s in self.sessions() if s.state == state)

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_stats(self) -> dict[str, Any]:
        """Get game manager statistics."""
        with self._lock:
            sessions = list(self._sessions.values())
        return {
            "total_sessions": len(sessions),
            "active_games": sum(1 for s in sessions if s.state == SessionState.PLAYING),
            "waiting_sessions": sum(1 for s in sessions if s.state == SessionState.WAITING),
            "finished_games": sum(1 for s in sessions if s.is_finished),
            "seated_players": sum(s.player_count for s in sessions),
            "spectators": sum(len(s.spectators) for s in sessions),
        }

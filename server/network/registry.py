"""
Connection registry shared by the WebSocket and SSH front ends.

Tracks every live connection in one bounded pool, maps connections to
players and games, and fans messages out through each connection's
transport. Bookkeeping and target selection take one re-entrant lock, so
the registry can be used from the asyncio loop thread and from SSH
connection threads; transport writes happen outside it.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterator

from shared.constants import CONN_MAX_CONNECTIONS
from shared.enums import TransportKind
from shared.protocol import Message

from server.network.transport import Transport, make_transport


logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Connection:
    """One registered connection and its player association."""
    id: int
    transport: Transport
    player_id: int | None = None
    game_id: int | None = None
    player_name: str | None = None
    spectating: bool = False
    active: bool = True
    connected_at: datetime = field(default_factory=_now)
    last_activity: datetime = field(default_factory=_now)

    @property
    def kind(self) -> TransportKind:
        return self.transport.kind

    @property
    def handle(self) -> Any:
        return self.transport.handle

    @property
    def authenticated(self) -> bool:
        return self.player_id is not None

    def update_activity(self) -> None:
        """Update last activity timestamp."""
        self.last_activity = _now()


class ConnectionRegistry:
    """
    Bounded pool of connections across both transports.

    Ids increase monotonically and are never reused for the life of the
    registry, not even after clear().
    """

    def __init__(self, capacity: int = CONN_MAX_CONNECTIONS):
        self.capacity = capacity
        self._slots: list[Connection | None] = [None] * capacity
        self._count = 0
        self._next_id = 0
        self._lock = threading.RLock()

    # =========================================================================
    # Connection Lifecycle
    # =========================================================================

    def register(self, kind_or_transport: TransportKind | Transport, handle: Any = None) -> int | None:
        """
        Register a connection.

        Accepts either a ready Transport or a (kind, handle) pair.

        Returns:
            The new connection id, or None if the pool is full or the handle is None
        """
        if isinstance(kind_or_transport, Transport):
            transport = kind_or_transport
        else:
            if handle is None:
                logger.warning("Refusing to register a connection without a handle")
                return None
            transport = make_transport(kind_or_transport, handle)

        with self._lock:
            for index, slot in enumerate(self._slots):
                if slot is None:
                    conn_id = self._next_id
                    self._next_id += 1
                    self._slots[index] = Connection(id=conn_id, transport=transport)
                    self._count += 1
                    logger.info(f"Registered {transport.kind.value} connection {conn_id}")
                    return conn_id

        logger.warning(f"Connection pool full ({self.capacity}), rejecting {transport.kind.value} connection")
        return None

    def unregister(self, conn_id: int) -> None:
        """Remove a connection. Unknown ids are ignored."""
        with self._lock:
            index = self._index_of(conn_id)
            if index is None:
                return
            connection = self._slots[index]
            connection.active = False
            self._slots[index] = None
            self._count -= 1
            logger.info(f"Unregistered {connection.kind.value} connection {conn_id}")

    def clear(self) -> None:
        """Drop every connection. The id counter keeps counting."""
        with self._lock:
            for connection in self._iter_active():
                connection.active = False
            self._slots = [None] * self.capacity
            self._count = 0

    # =========================================================================
    # Player Association
    # =========================================================================

    def assign_player(
        self,
        conn_id: int,
        player_id: int,
        game_id: int,
        player_name: str | None = None
    ) -> bool:
        """
        Associate a connection with a player seat in a game.

        Returns:
            True if successful, False if the connection id is unknown
        """
        with self._lock:
            connection = self.get(conn_id)
            if connection is None:
                return False
            connection.player_id = player_id
            connection.game_id = game_id
            connection.spectating = False
            if player_name is not None:
                connection.player_name = player_name
            connection.update_activity()
            logger.info(f"Connection {conn_id} is player {player_id} in game {game_id}")
            return True

    def assign_spectator(self, conn_id: int, game_id: int) -> bool:
        """Attach a connection to a game as a seatless watcher."""
        with self._lock:
            connection = self.get(conn_id)
            if connection is None:
                return False
            connection.player_id = None
            connection.game_id = game_id
            connection.spectating = True
            connection.update_activity()
            logger.info(f"Connection {conn_id} is watching game {game_id}")
            return True

    def clear_player(self, conn_id: int) -> bool:
        with self._lock:
            connection = self.get(conn_id)
            if connection is None:
                return False
            connection.player_id = None
            connection.game_id = None
            connection.player_name = None
            connection.spectating = False
            return True

    # =========================================================================
    # Queries
    # =========================================================================

    def _iter_active(self) -> Iterator[Connection]:
        return (slot for slot in self._slots if slot is not None)

    def _index_of(self, conn_id: int) -> int | None:
        for index, slot in enumerate(self._slots):
            if slot is not None and slot.id == conn_id:
                return index
        return None

    def get(self, conn_id: int) -> Connection | None:
        with self._lock:
            index = self._index_of(conn_id)
            return self._slots[index] if index is not None else None

    def find_by_player(self, player_id: int, game_id: int | None = None) -> Connection | None:
        """Find the connection bound to a player, optionally within one game."""
        with self._lock:
            for connection in self._iter_active():
                if connection.player_id != player_id:
                    continue
                if game_id is not None and connection.game_id != game_id:
                    continue
                return connection
            return None

    def find_by_handle(self, handle: Any) -> Connection | None:
        with self._lock:
            for connection in self._iter_active():
                if connection.handle is handle:
                    return connection
            return None

    def connections(self) -> list[Connection]:
        """Snapshot of the active connections."""
        with self._lock:
            return list(self._iter_active())

    def count(self) -> int:
        with self._lock:
            return self._count

    def count_in_game(self, game_id: int) -> int:
        with self._lock:
            return sum(1 for c in self._iter_active() if c.game_id == game_id and c.authenticated)

    def count_by_type(self, kind: TransportKind) -> int:
        with self._lock:
            return sum(1 for c in self._iter_active() if c.kind == kind)

    # =========================================================================
    # Messaging
    # =========================================================================
    #
    # Targets are picked under the lock and written to after it is released:
    # an SSH channel write can block, and registry lookups must not wait on it.

    def _deliver(self, connection: Connection, message: Message) -> bool:
        if connection.transport.send(message):
            connection.update_activity()
            return True
        return False

    def send(self, conn_id: int, message: Message) -> bool:
        """
        Send a message to one connection.

        Returns:
            True if the transport accepted it, False if unknown or rejected
        """
        connection = self.get(conn_id)
        if connection is None:
            return False
        return self._deliver(connection, message)

    def send_to_player(self, player_id: int, message: Message, game_id: int | None = None) -> bool:
        connection = self.find_by_player(player_id, game_id)
        if connection is None:
            return False
        return self._deliver(connection, message)

    def broadcast_game(self, game_id: int, message: Message, exclude_player: int | None = -1) -> int:
        """
        Send a message to every joined connection in a game, spectators
        included.

        Args:
            game_id: The game to broadcast to
            message: The message to send
            exclude_player: Player id to skip; -1 or None skips nobody

        Returns:
            Number of connections the message was sent to
        """
        with self._lock:
            targets = [
                connection for connection in self._iter_active()
                if connection.game_id == game_id
                and (connection.authenticated or connection.spectating)
                and not (exclude_player is not None and exclude_player >= 0
                         and connection.player_id == exclude_player)
            ]
        return sum(1 for connection in targets if self._deliver(connection, message))

    def broadcast_all(self, message: Message) -> int:
        """
        Broadcast a message to every connection.

        Returns:
            Number of connections the message was sent to
        """
        with self._lock:
            targets = list(self._iter_active())
        return sum(1 for connection in targets if self._deliver(connection, message))

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_stats(self) -> dict[str, Any]:
        """Get connection statistics."""
        with self._lock:
            games: dict[int, int] = {}
            for connection in self._iter_active():
                if connection.authenticated:
                    games[connection.game_id] = games.get(connection.game_id, 0) + 1
            return {
                "total_connections": self._count,
                "capacity": self.capacity,
                "websocket_connections": self.count_by_type(TransportKind.WEBSOCKET),
                "ssh_connections": self.count_by_type(TransportKind.SSH),
                "next_id": self._next_id,
                "players_per_game": games,
            }

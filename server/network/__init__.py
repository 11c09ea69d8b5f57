"""
Network layer for the Starfront game server.

Provides the connection registry, the validation gate, message handling,
and the WebSocket and SSH front ends.
"""

from server.network.registry import Connection, ConnectionRegistry
from server.network.game_manager import GameManager, GameSession
from server.network.message_handler import MessageHandler, HandleResult
from server.network.server import StarfrontServer, run_server


__all__ = [
    "Connection",
    "ConnectionRegistry",
    "GameManager",
    "GameSession",
    "MessageHandler",
    "HandleResult",
    "StarfrontServer",
    "run_server",
]

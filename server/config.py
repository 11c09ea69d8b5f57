"""
Server configuration loaded from environment variables.
"""
import os
from pathlib import Path
from dotenv import load_dotenv

from shared.constants import (
    MAX_PLAYERS, MIN_PLAYERS, SSH_AUTH_MAX_MESSAGES, SSH_MAX_AUTH_ATTEMPTS,
    SSH_MAX_CONNECTIONS, WS_MAX_CONNECTIONS, WS_SEND_QUEUE_SIZE
)

load_dotenv()


class Config:
    """Server configuration."""

    # Listeners
    HOST: str = os.getenv("HOST", "0.0.0.0")
    GAME_PORT: int = int(os.getenv("GAME_PORT", "8080"))  # WebSocket
    SSH_PORT: int = int(os.getenv("SSH_PORT", "2222"))

    # Connection pools
    WS_MAX_CONNECTIONS: int = int(os.getenv("WS_MAX_CONNECTIONS", str(WS_MAX_CONNECTIONS)))
    SSH_MAX_CONNECTIONS: int = int(os.getenv("SSH_MAX_CONNECTIONS", str(SSH_MAX_CONNECTIONS)))
    WS_SEND_QUEUE_SIZE: int = int(os.getenv("WS_SEND_QUEUE_SIZE", str(WS_SEND_QUEUE_SIZE)))

    # SSH
    SSH_HOST_KEY_PATH: Path = Path(os.getenv("SSH_HOST_KEY_PATH", "config/ssh_host_key"))
    SSH_MAX_AUTH_ATTEMPTS: int = int(os.getenv("SSH_MAX_AUTH_ATTEMPTS", str(SSH_MAX_AUTH_ATTEMPTS)))
    SSH_AUTH_MAX_MESSAGES: int = int(os.getenv("SSH_AUTH_MAX_MESSAGES", str(SSH_AUTH_MAX_MESSAGES)))
    SSH_AUTH_TIMEOUT: float = float(os.getenv("SSH_AUTH_TIMEOUT", "30"))
    SSH_CHANNEL_TIMEOUT: float = float(os.getenv("SSH_CHANNEL_TIMEOUT", "30"))
    SSH_ACCEPT_BACKOFF: float = float(os.getenv("SSH_ACCEPT_BACKOFF", "0.1"))
    SSH_AUTH_POLICY: str = os.getenv("SSH_AUTH_POLICY", "permissive").lower()

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # Game settings
    REQUIRED_PLAYERS: int = max(MIN_PLAYERS, min(MAX_PLAYERS, int(os.getenv("REQUIRED_PLAYERS", "2"))))
    ALLOW_SPECTATORS: bool = os.getenv("ALLOW_SPECTATORS", "true").lower() in ("1", "true", "yes")


config = Config()
settings = config  # Alias for backward compatibility

"""
Starfront game server.

Main entry point that ties together the connection registry, game
sessions, message handling, and the WebSocket and SSH front ends.
"""

import asyncio
import logging
import signal
from pathlib import Path
from typing import Any

from server.config import settings
from server.network.game_manager import GameManager
from server.network.message_handler import MessageHandler
from server.network.registry import ConnectionRegistry
from server.network.ssh_auth import SSHAuthenticator, make_credential_checker
from server.network.ssh_manager import SSHSessionManager, ensure_host_key
from server.network.terminal import TerminalSessionHandler
from server.network.websocket_manager import WebSocketSessionManager


logger = logging.getLogger(__name__)

SERVICE_INTERVAL = 1.0


class StarfrontServer:
    """
    Runs both front ends over one registry and one set of game sessions.

    The WebSocket side lives on the asyncio loop; the SSH side runs its own
    accept thread and one thread per connection.
    """

    def __init__(
        self,
        host: str = None,
        ws_port: int = None,
        ssh_port: int = None,
        host_key_path: str | Path = None,
        enable_ssh: bool = True,
        seed: int | None = None
    ):
        self.host = host or settings.HOST
        self.ws_port = settings.GAME_PORT if ws_port is None else ws_port
        self.ssh_port = settings.SSH_PORT if ssh_port is None else ssh_port
        self.host_key_path = Path(host_key_path or settings.SSH_HOST_KEY_PATH)
        self.enable_ssh = enable_ssh

        # Initialize managers
        self.registry = ConnectionRegistry(settings.WS_MAX_CONNECTIONS + settings.SSH_MAX_CONNECTIONS)
        self.games = GameManager(
            settings.REQUIRED_PLAYERS, seed=seed, allow_spectators=settings.ALLOW_SPECTATORS
        )
        self.handler = MessageHandler(self.games, self.registry)

        self.websocket = WebSocketSessionManager(
            self.registry,
            self.handler,
            host=self.host,
            port=self.ws_port,
            max_connections=settings.WS_MAX_CONNECTIONS,
            queue_size=settings.WS_SEND_QUEUE_SIZE,
        )
        self.ssh = SSHSessionManager(
            host=self.host,
            port=self.ssh_port,
            authenticator=SSHAuthenticator(
                make_credential_checker(settings.SSH_AUTH_POLICY),
                max_attempts=settings.SSH_MAX_AUTH_ATTEMPTS,
                max_messages=settings.SSH_AUTH_MAX_MESSAGES,
            ),
            handler_factory=self._new_terminal,
            max_connections=settings.SSH_MAX_CONNECTIONS,
            auth_timeout=settings.SSH_AUTH_TIMEOUT,
            channel_timeout=settings.SSH_CHANNEL_TIMEOUT,
            accept_backoff=settings.SSH_ACCEPT_BACKOFF,
        )

        # Server state
        self._running = False
        self._stopping = False
        self._shutdown_event = asyncio.Event()
        self._stop_task: asyncio.Task | None = None

    def _new_terminal(self) -> TerminalSessionHandler:
        return TerminalSessionHandler(self.registry, self.handler, self.games)

    async def start(self) -> None:
        """
        Start both listeners and service connections until stopped.

        Host key and bind failures propagate and abort startup.
        """
        if self.enable_ssh:
            self.ssh.host_key = ensure_host_key(self.host_key_path)

        await self.websocket.start()
        if self.enable_ssh:
            try:
                self.ssh.start()
            except OSError:
                await self.websocket.stop()
                raise

        self._running = True
        logger.info(
            f"Starfront server started (ws port {self.websocket.bound_port}, "
            f"ssh port {self.ssh.bound_port if self.enable_ssh else 'disabled'})"
        )

        while self._running and await self.websocket.service(SERVICE_INTERVAL):
            pass

    async def stop(self) -> None:
        """
        Stop the server gracefully.

        A call made while another stop is in progress waits for that one to
        finish.
        """
        if self._stopping:
            await self._shutdown_event.wait()
            return
        if not self._running:
            return
        logger.info("Shutting down server...")
        self._stopping = True
        self._running = False

        try:
            if self.enable_ssh:
                await asyncio.to_thread(self.ssh.stop)
            await self.websocket.stop()
            self.registry.clear()
        finally:
            self._shutdown_event.set()
        logger.info("Server stopped")

    def request_shutdown(self) -> None:
        """Request server shutdown (can be called from signal handler)."""
        self._stop_task = asyncio.create_task(self.stop())

    def get_stats(self) -> dict[str, Any]:
        """Get server statistics."""
        return {
            "running": self._running,
            "connections": self.registry.get_stats(),
            "games": self.games.get_stats(),
            "websocket": self.websocket.get_stats(),
            "ssh": self.ssh.get_stats(),
        }


async def run_server(host: str = None, ws_port: int = None, ssh_port: int = None) -> None:
    """
    Run the Starfront server.

    Sets up signal handlers for graceful shutdown.
    """
    server = StarfrontServer(host, ws_port, ssh_port)

    # Set up signal handlers
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, server.request_shutdown)

    try:
        await server.start()
    finally:
        await server.stop()
        # Clean up signal handlers
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)


def main():
    """Entry point for running the server."""
    # Configure logging
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    logging.getLogger("paramiko").setLevel(logging.WARNING)

    print(f"Starting Starfront server: ws://{settings.HOST}:{settings.GAME_PORT}, ssh port {settings.SSH_PORT}")
    print("Press Ctrl+C to stop")

    try:
        asyncio.run(run_server())
    except KeyboardInterrupt:
        print("\nServer stopped")


if __name__ == "__main__":
    main()

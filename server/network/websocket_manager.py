"""
WebSocket front end.

One asyncio event loop services every WebSocket connection. Outbound
messages go through a bounded per-connection queue drained by a writer
task, so senders on other threads (SSH connections broadcasting to the
table) never touch the socket directly.
"""

import asyncio
import logging
import threading
from collections import deque
from typing import Any

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from server.network.message_handler import MessageHandler
from server.network.registry import Connection, ConnectionRegistry
from shared.constants import WS_MAX_CONNECTIONS, WS_MAX_MESSAGE_SIZE, WS_SEND_QUEUE_SIZE
from shared.enums import TransportKind


logger = logging.getLogger(__name__)

# Close code for "try again later"
CLOSE_TRY_AGAIN_LATER = 1013


class WSConnectionState:
    """
    Per-connection WebSocket state and outbound queue.

    enqueue() may be called from any thread. Up to queue_size messages wait
    for the writer; beyond that a send is rejected, never silently dropped.
    """

    def __init__(
        self,
        websocket: Any,
        loop: asyncio.AbstractEventLoop,
        queue_size: int = WS_SEND_QUEUE_SIZE,
        remote_addr: Any = None
    ):
        self.websocket = websocket
        self.loop = loop
        self.queue_size = queue_size
        self.remote_addr = remote_addr
        self.connection: Connection | None = None
        self.writable = asyncio.Event()
        self.closed = False
        self._queue: deque[str] = deque()
        self._queue_lock = threading.Lock()

    @property
    def authenticated(self) -> bool:
        return self.connection is not None and self.connection.authenticated

    @property
    def pending(self) -> int:
        with self._queue_lock:
            return len(self._queue)

    def enqueue(self, text: str) -> bool:
        """
        Queue a text frame and request a flush.

        Returns:
            True if queued, False if the connection is closed or the queue is full
        """
        with self._queue_lock:
            if self.closed:
                return False
            if len(self._queue) >= self.queue_size:
                logger.warning(
                    f"Send queue full ({self.queue_size}) for {self.remote_addr}, rejecting message"
                )
                return False
            self._queue.append(text)

        self._request_writable()
        return True

    def drain(self) -> list[str]:
        """Take everything queued so far, in order."""
        with self._queue_lock:
            items = list(self._queue)
            self._queue.clear()
        return items

    def close(self) -> None:
        with self._queue_lock:
            self.closed = True
            self._queue.clear()

    def _request_writable(self) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is self.loop:
            self.writable.set()
            return

        try:
            self.loop.call_soon_threadsafe(self.writable.set)
        except RuntimeError:
            # Loop already closed; the connection is going away
            logger.debug(f"Event loop closed, flush for {self.remote_addr} skipped")

    def __repr__(self) -> str:
        return f"<WSConnectionState {self.remote_addr}>"


class WebSocketSessionManager:
    """
    Accepts WebSocket clients and feeds their frames to the message handler.

    The handler is synchronous and may block on SSH channel writes while
    broadcasting, so each frame is handled in a worker thread; frames from
    one connection are still handled strictly in order.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        handler: MessageHandler,
        host: str = "0.0.0.0",
        port: int = 8080,
        max_connections: int = WS_MAX_CONNECTIONS,
        queue_size: int = WS_SEND_QUEUE_SIZE
    ):
        self.host = host
        self.port = port
        self.max_connections = max_connections
        self.queue_size = queue_size
        self._registry = registry
        self._handler = handler
        self._server: Server | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._running = False
        self._stopped = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def bound_port(self) -> int | None:
        """Actual listening port (useful when started on port 0)."""
        if not self._server:
            return None
        for sock in self._server.sockets:
            return sock.getsockname()[1]
        return None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Bind the listener. Bind failures propagate."""
        self._loop = asyncio.get_running_loop()
        self._stopped = asyncio.Event()
        self._server = await serve(
            self.handle_connection,
            self.host,
            self.port,
            ping_interval=30,
            ping_timeout=10,
            max_size=WS_MAX_MESSAGE_SIZE,
        )
        self._running = True
        logger.info(f"WebSocket server listening on ws://{self.host}:{self.bound_port}")

    async def service(self, timeout: float) -> bool:
        """
        Let the event loop run connection callbacks for up to timeout seconds.

        Returns:
            True while the manager is running
        """
        if not self._running:
            return False
        try:
            await asyncio.wait_for(self._stopped.wait(), timeout)
        except asyncio.TimeoutError:
            pass
        return self._running

    async def stop(self) -> None:
        """Stop accepting and close every WebSocket connection."""
        if not self._running:
            return
        logger.info("Stopping WebSocket server...")
        self._running = False
        self._stopped.set()

        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        logger.info("WebSocket server stopped")

    # =========================================================================
    # Connection Handling
    # =========================================================================

    async def handle_connection(self, websocket: ServerConnection) -> None:
        """Serve one WebSocket client from open to close."""
        loop = self._loop or asyncio.get_running_loop()
        remote_addr = getattr(websocket, "remote_address", None)

        if self._registry.count_by_type(TransportKind.WEBSOCKET) >= self.max_connections:
            logger.warning(f"WebSocket limit reached, refusing {remote_addr}")
            await websocket.close(CLOSE_TRY_AGAIN_LATER, "Server full")
            return

        state = WSConnectionState(websocket, loop, self.queue_size, remote_addr)
        conn_id = self._registry.register(TransportKind.WEBSOCKET, state)
        if conn_id is None:
            await websocket.close(CLOSE_TRY_AGAIN_LATER, "Server full")
            return

        connection = self._registry.get(conn_id)
        state.connection = connection
        logger.info(f"WebSocket connection {conn_id} established from {remote_addr}")

        writer = asyncio.create_task(self._writer(state))
        try:
            async for raw in websocket:
                await asyncio.to_thread(self._handler.handle_raw, connection, raw)
        except ConnectionClosed:
            logger.debug(f"WebSocket connection {conn_id} closed by peer")
        except Exception as e:
            logger.exception(f"Error serving WebSocket connection {conn_id}: {e}")
        finally:
            state.close()
            writer.cancel()
            try:
                await writer
            except asyncio.CancelledError:
                pass
            await asyncio.to_thread(self._handler.handle_disconnect, connection)
            logger.info(f"WebSocket connection {conn_id} closed")

    async def _writer(self, state: WSConnectionState) -> None:
        """Flush queued frames whenever a send requests it."""
        try:
            while True:
                await state.writable.wait()
                state.writable.clear()
                for text in state.drain():
                    await state.websocket.send(text)
        except ConnectionClosed:
            logger.debug(f"Writer for {state.remote_addr} stopped: connection closed")
        except Exception as e:
            logger.error(f"Failed to send to {state.remote_addr}: {e}")
        finally:
            # Nothing flushes the queue any more, so refuse further sends
            state.close()

    def get_stats(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "port": self.bound_port,
            "connections": self._registry.count_by_type(TransportKind.WEBSOCKET),
            "max_connections": self.max_connections,
        }

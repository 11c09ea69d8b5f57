"""
Transport wrappers around raw connection handles.

A transport knows how to put a logical Message onto its own wire: JSON text
frames for WebSocket, ANSI text for an SSH terminal. The registry only ever
calls send() and never formats anything itself.
"""

import logging
from typing import Any

from shared.enums import TransportKind
from shared.protocol import Message, encode


logger = logging.getLogger(__name__)


class Transport:
    """Base class: one live connection handle of a fixed kind."""

    kind: TransportKind

    def __init__(self, handle: Any):
        if handle is None:
            raise ValueError("Transport handle must not be None")
        self.handle = handle

    def send(self, message: Message) -> bool:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.handle!r}>"


class WebSocketTransport(Transport):
    """
    Sends JSON text through a WebSocket connection's outbound queue.

    The handle must provide enqueue(text) -> bool.
    """

    kind = TransportKind.WEBSOCKET

    def send(self, message: Message) -> bool:
        try:
            return self.handle.enqueue(encode(message))
        except Exception as e:
            logger.error(f"Failed to queue WebSocket message: {e}")
            return False


class SSHTransport(Transport):
    """
    Renders messages as ANSI text on an SSH channel.

    The handle must provide send_string(text) and a pty attribute.
    """

    kind = TransportKind.SSH

    def send(self, message: Message) -> bool:
        # Imported here to keep the terminal front end free of transport imports
        from server.network.terminal import render_message

        text = render_message(message, getattr(self.handle, "pty", None))
        if not text:
            return True
        try:
            self.handle.send_string(text)
            return True
        except Exception as e:
            logger.error(f"Failed to write to SSH channel: {e}")
            return False


_TRANSPORTS = {
    TransportKind.WEBSOCKET: WebSocketTransport,
    TransportKind.SSH: SSHTransport,
}


def make_transport(kind: TransportKind, handle: Any) -> Transport:
    """Wrap a raw handle in the transport class for its kind."""
    return _TRANSPORTS[TransportKind(kind)](handle)

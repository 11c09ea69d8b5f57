"""
SSH front end.

A blocking accept loop runs on its own thread and hands every accepted
socket to a dedicated daemon thread that owns the connection from key
exchange to close. Protocol work is done by paramiko; this module tracks
per-connection state, bounds the handshake, and feeds shell input to an
SSHSessionHandler.
"""

import logging
import os
import socket
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import paramiko

from shared.constants import SSH_HOST_KEY_BITS, SSH_MAX_CONNECTIONS, SSH_QUIT_TOKEN
from shared.enums import SSHProtocolState

from server.network.ssh_auth import (
    PermissiveCredentialChecker,
    SSHAuthState,
    SSHAuthenticator,
)


logger = logging.getLogger(__name__)

AUTH_POLL_INTERVAL = 0.1

WELCOME_BANNER = (
    "\r\n"
    "  Welcome to Starfront over SSH.\r\n"
    "  Type 'quit' to disconnect.\r\n"
    "\r\n"
)


# =============================================================================
# Host key
# =============================================================================

def ensure_host_key(path: str | Path) -> paramiko.RSAKey:
    """
    Load the server's RSA host key, generating one on first run.

    The generated key is written with owner-only permissions. Filesystem
    errors propagate so startup aborts.
    """
    path = Path(path)
    if path.exists():
        logger.info(f"Loading SSH host key from {path}")
        return paramiko.RSAKey(filename=str(path))

    logger.info(f"Generating {SSH_HOST_KEY_BITS}-bit RSA host key at {path}")
    path.parent.mkdir(parents=True, exist_ok=True)
    key = paramiko.RSAKey.generate(SSH_HOST_KEY_BITS)
    key.write_private_key_file(str(path))
    os.chmod(path, 0o600)
    return key


# =============================================================================
# Connection state
# =============================================================================

@dataclass
class PTYState:
    """Terminal geometry reported by the client."""
    width: int = 80
    height: int = 24
    term_type: str = "xterm"
    allocated: bool = False


@dataclass
class SSHConnectionState:
    """Everything one SSH connection thread owns."""
    slot: int
    sock: Any
    address: Any = None
    auth: SSHAuthState = field(default_factory=SSHAuthState)
    pty: PTYState = field(default_factory=PTYState)
    protocol_state: SSHProtocolState = SSHProtocolState.KEY_EXCHANGE
    transport: Any = None
    channel: Any = None
    handler: "SSHSessionHandler | None" = None
    handler_connected: bool = False
    active: bool = True
    auth_done: threading.Event = field(default_factory=threading.Event)
    shell_requested: threading.Event = field(default_factory=threading.Event)
    line_buffer: str = ""
    _write_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def username(self) -> str | None:
        return self.auth.username

    def send(self, data: bytes) -> None:
        """Blocking write of raw bytes to the session channel."""
        if self.channel is None or not self.active:
            raise ConnectionError("SSH channel is not open")
        with self._write_lock:
            self.channel.sendall(data)

    def send_string(self, text: str) -> None:
        self.send(text.encode("utf-8"))

    def close(self) -> None:
        """Close channel and transport. Safe to call more than once."""
        self.active = False
        self.protocol_state = SSHProtocolState.CLOSED
        for resource in (self.channel, self.transport, self.sock):
            if resource is None:
                continue
            try:
                resource.close()
            except Exception as e:
                logger.debug(f"Error closing SSH resource {resource!r}: {e}")


# ANSI helpers for session handlers

def clear_screen(state: SSHConnectionState) -> None:
    state.send_string("\x1b[2J\x1b[H")


def move_cursor(state: SSHConnectionState, row: int, col: int) -> None:
    state.send_string(f"\x1b[{row};{col}H")


def set_color(state: SSHConnectionState, fg: int, bg: int | None = None) -> None:
    if bg is None:
        state.send_string(f"\x1b[{fg}m")
    else:
        state.send_string(f"\x1b[{fg};{bg}m")


def reset_attributes(state: SSHConnectionState) -> None:
    state.send_string("\x1b[0m")


class SSHSessionHandler:
    """
    Receives the life of one interactive SSH session.

    on_input returns False to ask for the connection to be closed.
    """

    def on_connect(self, state: SSHConnectionState) -> None:
        pass

    def on_input(self, state: SSHConnectionState, data: bytes) -> bool:
        return True

    def on_resize(self, state: SSHConnectionState, width: int, height: int) -> None:
        pass

    def on_disconnect(self, state: SSHConnectionState) -> None:
        pass


# =============================================================================
# paramiko server interface
# =============================================================================

class _GameServerInterface(paramiko.ServerInterface):
    """Answers paramiko's auth and channel questions for one connection."""

    def __init__(self, state: SSHConnectionState, authenticator: SSHAuthenticator):
        self.state = state
        self.authenticator = authenticator

    def _result(self, accepted: bool) -> int:
        auth = self.state.auth
        if auth.authenticated or self.authenticator.exhausted(auth):
            # Wake the connection thread: it either proceeds or hangs up
            self.state.auth_done.set()
        return paramiko.AUTH_SUCCESSFUL if accepted else paramiko.AUTH_FAILED

    def get_allowed_auths(self, username: str) -> str:
        return "password,publickey"

    def check_auth_none(self, username: str) -> int:
        return self._result(self.authenticator.attempt_none(self.state.auth, username))

    def check_auth_password(self, username: str, password: str) -> int:
        return self._result(self.authenticator.attempt_password(self.state.auth, username, password))

    def check_auth_publickey(self, username: str, key: paramiko.PKey) -> int:
        return self._result(self.authenticator.attempt_public_key(self.state.auth, username, key))

    def check_channel_request(self, kind: str, chanid: int) -> int:
        if kind == "session":
            return paramiko.OPEN_SUCCEEDED
        return paramiko.OPEN_FAILED_ADMINISTRATIVELY_PROHIBITED

    def check_channel_pty_request(self, channel, term, width, height, pixelwidth, pixelheight, modes) -> bool:
        pty = self.state.pty
        pty.term_type = term.decode("ascii", "replace") if isinstance(term, bytes) else str(term)
        pty.width = width or pty.width
        pty.height = height or pty.height
        pty.allocated = True
        return True

    def check_channel_shell_request(self, channel) -> bool:
        self.state.shell_requested.set()
        return True

    def check_channel_window_change_request(self, channel, width, height, pixelwidth, pixelheight) -> bool:
        self.state.pty.width = width
        self.state.pty.height = height
        handler = self.state.handler
        if handler is not None and self.state.handler_connected:
            handler.on_resize(self.state, width, height)
        return True


# =============================================================================
# Manager
# =============================================================================

class SSHSessionManager:
    """
    Accepts SSH clients into a fixed-size pool, one thread per connection.

    Args:
        handler_factory: Builds a fresh SSHSessionHandler for each connection;
            without one, input is echoed back (development fallback)
    """

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 2222,
        host_key: paramiko.PKey | None = None,
        authenticator: SSHAuthenticator | None = None,
        handler_factory: Callable[[], SSHSessionHandler] | None = None,
        max_connections: int = SSH_MAX_CONNECTIONS,
        auth_timeout: float = 30.0,
        channel_timeout: float = 30.0,
        accept_backoff: float = 0.1
    ):
        self.host = host
        self.port = port
        self.host_key = host_key
        self.authenticator = authenticator or SSHAuthenticator(PermissiveCredentialChecker())
        self.handler_factory = handler_factory
        self.max_connections = max_connections
        self.auth_timeout = auth_timeout
        self.channel_timeout = channel_timeout
        self.accept_backoff = accept_backoff

        self._slots: list[SSHConnectionState | None] = [None] * max_connections
        self._pool_lock = threading.Lock()
        self._listener: socket.socket | None = None
        self._accept_thread: threading.Thread | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def bound_port(self) -> int | None:
        if self._listener is None:
            return None
        return self._listener.getsockname()[1]

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Bind the listener and start the accept thread. Bind failures propagate."""
        if self.host_key is None:
            raise ValueError("An SSH host key is required")

        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            listener.bind((self.host, self.port))
            listener.listen(self.max_connections)
        except OSError:
            listener.close()
            raise
        listener.settimeout(1.0)

        self._listener = listener
        self._running = True
        self._accept_thread = threading.Thread(target=self._accept_loop, name="ssh-accept", daemon=True)
        self._accept_thread.start()
        logger.info(f"SSH server listening on {self.host}:{self.bound_port}")

    def stop(self) -> None:
        """Close every connection and the listener. Connection threads exit on their own."""
        if not self._running:
            return
        logger.info("Stopping SSH server...")
        self._running = False

        with self._pool_lock:
            active = [state for state in self._slots if state is not None]
        for state in active:
            state.close()

        if self._listener is not None:
            self._listener.close()
        if self._accept_thread is not None:
            self._accept_thread.join(timeout=2.0)
        logger.info("SSH server stopped")

    # =========================================================================
    # Pool
    # =========================================================================

    def _claim_slot(self, sock: Any, address: Any) -> SSHConnectionState | None:
        with self._pool_lock:
            for index, slot in enumerate(self._slots):
                if slot is None:
                    state = SSHConnectionState(slot=index, sock=sock, address=address)
                    self._slots[index] = state
                    return state
        return None

    def _release_slot(self, state: SSHConnectionState) -> None:
        with self._pool_lock:
            if self._slots[state.slot] is state:
                self._slots[state.slot] = None

    def active_connections(self) -> list[SSHConnectionState]:
        with self._pool_lock:
            return [state for state in self._slots if state is not None]

    # =========================================================================
    # Accept loop
    # =========================================================================

    def _accept_loop(self) -> None:
        while self._running:
            try:
                sock, address = self._listener.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self._running:
                    logger.error(f"SSH accept error: {e}")
                    time.sleep(self.accept_backoff)
                    continue
                break

            state = self._claim_slot(sock, address)
            if state is None:
                logger.warning(f"SSH pool full ({self.max_connections}), refusing {address}")
                sock.close()
                time.sleep(self.accept_backoff)
                continue

            logger.info(f"SSH connection from {address} in slot {state.slot}")
            thread = threading.Thread(
                target=self._serve_connection,
                args=(state,),
                name=f"ssh-conn-{state.slot}",
                daemon=True,
            )
            thread.start()

    # =========================================================================
    # Per-connection thread
    # =========================================================================

    def _serve_connection(self, state: SSHConnectionState) -> None:
        try:
            if self._negotiate(state):
                self._run_session(state)
        except (paramiko.SSHException, EOFError, OSError) as e:
            logger.info(f"SSH connection {state.address} ended: {e}")
        except Exception as e:
            logger.exception(f"Unexpected error on SSH connection {state.address}: {e}")
        finally:
            self._finish_connection(state)

    def _negotiate(self, state: SSHConnectionState) -> bool:
        """
        Run key exchange, authentication and channel setup.

        Returns:
            True once an interactive shell channel is ready
        """
        transport = paramiko.Transport(state.sock)
        state.transport = transport
        transport.add_server_key(self.host_key)

        state.protocol_state = SSHProtocolState.KEY_EXCHANGE
        transport.start_server(server=_GameServerInterface(state, self.authenticator))

        state.protocol_state = SSHProtocolState.AUTHENTICATING
        deadline = time.monotonic() + self.auth_timeout
        while not state.auth_done.wait(AUTH_POLL_INTERVAL):
            if transport.is_authenticated():
                # A key login only counts once paramiko has checked the signature
                self.authenticator.confirm(state.auth)
                break
            if not transport.is_active():
                logger.info(f"SSH client {state.address} hung up during authentication")
                return False
            if time.monotonic() >= deadline:
                logger.info(f"SSH authentication timed out for {state.address}")
                return False
        if not state.auth.authenticated:
            logger.info(f"SSH authentication failed for {state.address}")
            return False

        state.protocol_state = SSHProtocolState.AWAITING_CHANNEL
        channel = transport.accept(self.channel_timeout)
        if channel is None:
            logger.info(f"No session channel opened by {state.address}")
            return False
        state.channel = channel

        if not state.shell_requested.wait(self.channel_timeout):
            logger.info(f"No shell requested by {state.address}")
            return False

        state.protocol_state = SSHProtocolState.READY
        return True

    def _run_session(self, state: SSHConnectionState) -> None:
        if self.handler_factory is not None:
            state.handler = self.handler_factory()
            state.handler.on_connect(state)
            state.handler_connected = True
        else:
            state.send_string(WELCOME_BANNER)

        state.channel.settimeout(1.0)
        while self._running and state.active:
            try:
                data = state.channel.recv(1024)
            except socket.timeout:
                continue
            if not data:
                break

            if state.handler is not None:
                if not state.handler.on_input(state, data):
                    break
            elif not echo_input(state, data):
                break

    def _finish_connection(self, state: SSHConnectionState) -> None:
        if state.handler is not None and state.handler_connected:
            state.handler_connected = False
            try:
                state.handler.on_disconnect(state)
            except Exception as e:
                logger.exception(f"Error in SSH disconnect handler: {e}")
        state.close()
        self._release_slot(state)
        logger.info(f"SSH connection {state.address} closed (slot {state.slot})")

    def get_stats(self) -> dict[str, Any]:
        active = self.active_connections()
        return {
            "running": self._running,
            "port": self.bound_port,
            "connections": len(active),
            "authenticated": sum(1 for s in active if s.auth.authenticated),
            "max_connections": self.max_connections,
        }


def echo_input(state: SSHConnectionState, data: bytes) -> bool:
    """
    Development fallback: echo keystrokes and hang up on 'quit'.

    Returns:
        False once the user typed the quit token
    """
    for char in data.decode("utf-8", "replace"):
        if char in "\r\n":
            line = state.line_buffer.strip()
            state.line_buffer = ""
            state.send_string("\r\n")
            if line.lower() == SSH_QUIT_TOKEN:
                state.send_string("Goodbye!\r\n")
                return False
        elif char in "\x7f\x08":
            if state.line_buffer:
                state.line_buffer = state.line_buffer[:-1]
                state.send_string("\b \b")
        else:
            state.line_buffer += char
            state.send_string(char)
    return True

"""The server end: accepts tunnel connections and relays them to SSH."""

from __future__ import annotations

import hmac
import logging
import socket
import threading
import time
from typing import Optional

from portbridge.config import CallbackType, Config, _split_address
from portbridge.pool import Pool, _close_socket
from portbridge.protocol import (
    AuthPacket,
    MessageType,
    Packet,
    ProtocolError,
    auth_digest,
    build_auth_ack_frame,
    decode_packet,
)

logger = logging.getLogger(__name__)

AUTH_WINDOW = 10
READ_SIZE = 8192


class AuthError(Exception):
    """Raised when a tunnel connection fails to authenticate."""


def verify_auth(packet: Packet, now: Optional[int] = None) -> AuthPacket:
    """Check an AUTH packet's type, freshness and digest; return its payload."""
    if packet.type != MessageType.AUTH or not isinstance(packet.payload, AuthPacket):
        raise AuthError(f"expected an auth message, got type {packet.type}")
    auth = packet.payload
    now = int(time.time()) if now is None else now
    if abs(now - auth.timestamp) > AUTH_WINDOW:
        raise AuthError(f"auth timestamp expired: now={now}, packet={auth.timestamp}")
    if not hmac.compare_digest(auth.auth, auth_digest(auth.timestamp)):
        raise AuthError("auth digest mismatch")
    return auth


class Server:
    """Accepts authenticated tunnel connections and forwards to ``ssh_address``."""

    def __init__(self, config: Config) -> None:
        self.config = config
        self.pool = Pool(config, "server")
        self._ssh_conn: Optional[socket.socket] = None
        self._listener: Optional[socket.socket] = None
        self._stopped = threading.Event()
        self._failure: Optional[BaseException] = None

    def authenticate(self, conn: socket.socket) -> None:
        """Read an AUTH frame from ``conn``, verify it and acknowledge it."""
        try:
            packet = decode_packet(conn)
        except ProtocolError as exc:
            raise AuthError(f"cannot decode auth message: {exc}") from exc
        verify_auth(packet)
        conn.sendall(build_auth_ack_frame())

    def start(self) -> None:
        """Listen on the configured port and serve until a fatal error."""
        listener = self._listener = socket.create_server(("", self.config.port))
        self.pool.set_callback(self._on_pool_event)
        threading.Thread(target=self._read_ssh, daemon=True).start()
        threading.Thread(target=self._write_ssh, daemon=True).start()
        logger.info("server listening on port %d", self.config.port)
        with listener:
            while True:
                try:
                    conn, _ = listener.accept()
                except OSError as exc:
                    if self._failure is not None:
                        raise ConnectionError(
                            f"ssh connection failed: {self._failure}"
                        ) from self._failure
                    if self._stopped.is_set():
                        return
                    logger.warning("accept failed: %s", exc)
                    continue
                try:
                    self.authenticate(conn)
                except (AuthError, OSError) as exc:
                    logger.warning("rejecting tunnel connection: %s", exc)
                    conn.close()
                    continue
                self.pool.add_conn(conn)

    def _on_pool_event(self, event: CallbackType) -> None:
        conn = self._ssh_conn
        if event == CallbackType.SSH_FIN and conn is not None:
            self._drop_ssh(conn)

    def _drop_ssh(self, conn: socket.socket) -> None:
        if self._ssh_conn is conn:
            self._ssh_conn = None
        _close_socket(conn)

    def _connect_ssh(self) -> socket.socket:
        self._ssh_conn = socket.create_connection(_split_address(self.config.ssh_address))
        return self._ssh_conn

    def _read_ssh(self) -> None:
        while not self._stopped.is_set():
            conn = self._ssh_conn
            if conn is None:
                time.sleep(0.01)
                continue
            try:
                data = conn.recv(READ_SIZE)
            except OSError as exc:
                logger.info("reading ssh connection failed: %s", exc)
                data = b""
            if data:
                self.pool.write(data)
            else:
                self._drop_ssh(conn)

    def _write_ssh(self) -> None:
        while not self._stopped.is_set():
            data = self.pool.read(timeout=0.1)
            if data is None:
                continue
            try:
                self._forward(data)
            except (OSError, ValueError) as exc:
                logger.error("ssh connection failed: %s", exc)
                self._failure = exc
                self._stopped.set()
                if self._listener is not None:
                    _close_socket(self._listener)
                return

    def _forward(self, data: bytes) -> None:
        conn = self._ssh_conn or self._connect_ssh()
        try:
            conn.sendall(data)
            return
        except OSError as exc:
            logger.info("writing ssh connection failed, reconnecting: %s", exc)
            self._drop_ssh(conn)
        self._connect_ssh().sendall(data)
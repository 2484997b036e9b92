"""The client end: keeps a pool of tunnel connections and a local listener."""

from __future__ import annotations

import logging
import socket
import threading
import time
from typing import Optional

from portbridge.config import CallbackType, Config, _split_address
from portbridge.pool import Pool, _close_socket
from portbridge.protocol import (
    AuthAckPacket,
    MessageType,
    ProtocolError,
    build_auth_frame,
    decode_packet,
)

logger = logging.getLogger(__name__)

MAX_CONN_COUNT = 10
READ_SIZE = 8192
STARTUP_DELAY = 1.0


class Client:
    """Accepts a local SSH client and tunnels it to the server over a pool."""

    def __init__(self, config: Config) -> None:
        self.config = config
        self.pool = Pool(config, "client")
        self._ssh_conn: Optional[socket.socket] = None
        self._listener: Optional[socket.socket] = None
        self._stopped = threading.Event()
        self._failure: Optional[BaseException] = None

    def connect_once(self) -> socket.socket:
        """Open and authenticate one tunnel connection and add it to the pool.

        An unreachable server raises ``OSError`` (``ValueError`` for a bad
        address); a failed handshake raises ``ProtocolError``.
        """
        sock = socket.create_connection(_split_address(self.config.server_address))
        try:
            try:
                sock.sendall(build_auth_frame())
                packet = decode_packet(sock)
            except OSError as exc:
                raise ProtocolError(f"auth handshake failed: {exc}") from exc
            if packet.type != MessageType.AUTH_ACK or not isinstance(
                packet.payload, AuthAckPacket
            ):
                raise ProtocolError(f"expected an auth ack, got type {packet.type}")
            if not packet.payload.success:
                raise ProtocolError("server rejected authentication")
        except ProtocolError:
            sock.close()
            raise
        self.pool.add_conn(sock)
        return sock

    def start(self) -> None:
        """Run the client until the server becomes unreachable."""
        threading.Thread(target=self._keep_conns, daemon=True).start()
        self.pool.set_callback(self._on_pool_event)
        # Ask the server to restart its sequence numbers for a fresh session.
        self.pool.send_ssh_reset()
        time.sleep(STARTUP_DELAY)
        threading.Thread(target=self._write_ssh, daemon=True).start()
        threading.Thread(target=self._read_ssh, daemon=True).start()

        port = self.config.port + 1 if self.config.debug else self.config.port
        listener = self._listener = socket.create_server(("", port))
        logger.info("client listening on port %d", port)
        with listener:
            while True:
                if self._failure is not None:
                    raise ConnectionError(
                        f"cannot connect to server: {self._failure}"
                    ) from self._failure
                try:
                    conn, _ = listener.accept()
                except OSError as exc:
                    if self._stopped.is_set() and self._failure is None:
                        return
                    if self._failure is None:
                        logger.warning("accept failed: %s", exc)
                    continue
                previous, self._ssh_conn = self._ssh_conn, conn
                if previous is not None:
                    _close_socket(previous)

    def _on_pool_event(self, event: CallbackType) -> None:
        conn = self._ssh_conn
        if event == CallbackType.SSH_FIN and conn is not None:
            self._drop_ssh(conn)

    def _drop_ssh(self, conn: socket.socket) -> None:
        if self._ssh_conn is conn:
            self._ssh_conn = None
        _close_socket(conn)

    def _keep_conns(self) -> None:
        while not self._stopped.is_set():
            time.sleep(0.1)
            if self.pool.conn_count() >= MAX_CONN_COUNT:
                time.sleep(1.0)
                continue
            try:
                self.connect_once()
            except ProtocolError as exc:
                logger.warning("tunnel connection not established: %s", exc)
            except (OSError, ValueError) as exc:
                logger.error("cannot connect to server: %s", exc)
                self._failure = exc
                self._stopped.set()
                if self._listener is not None:
                    _close_socket(self._listener)
                return

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
                self.pool.send_ssh_fin()

    def _write_ssh(self) -> None:
        while not self._stopped.is_set():
            data = self.pool.read(timeout=0.1)
            conn = self._ssh_conn
            if data is None or conn is None:
                continue
            try:
                conn.sendall(data)
            except OSError as exc:
                logger.info("writing ssh connection failed: %s", exc)
                self._drop_ssh(conn)
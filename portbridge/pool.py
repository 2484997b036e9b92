"""A pool of tunnel connections that carries one ordered byte stream."""

from __future__ import annotations

import logging
import queue
import socket
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from portbridge.config import CallbackType, Config
from portbridge.protocol import (
    DataPacket,
    MessageType,
    ProtocolError,
    decode_packet,
    encode_frame,
)

logger = logging.getLogger(__name__)

QUEUE_SIZE = 1000
SEQ_MASK = 0xFFFF


@dataclass(eq=False)
class _Link:
    sock: socket.socket
    busy: bool = False


def _close_socket(sock: socket.socket) -> None:
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass
    sock.close()


class Pool:
    """Sends numbered chunks over idle connections; ``read`` returns them in order."""

    def __init__(self, config: Config, role: str) -> None:
        self.config = config
        self.role = role
        self._conns: List[_Link] = []
        self._pending: Dict[int, DataPacket] = {}
        self._seq = 0
        self._send_seq = 0
        self._queue: "queue.Queue[DataPacket]" = queue.Queue(maxsize=QUEUE_SIZE)
        self._callback: Optional[Callable[[CallbackType], None]] = None
        self._lock = threading.RLock()

    def set_callback(self, callback: Callable[[CallbackType], None]) -> None:
        self._callback = callback

    def conn_count(self) -> int:
        with self._lock:
            return len(self._conns)

    def add_conn(self, conn: socket.socket) -> None:
        link = _Link(conn)
        with self._lock:
            self._conns.append(link)
        threading.Thread(target=self._serve, args=(link,), daemon=True).start()

    def add_packet(self, packet: Optional[DataPacket]) -> None:
        """Store a received chunk and release every chunk now in order."""
        if packet is None:
            return
        with self._lock:
            self._pending[packet.seq_id] = packet
            while self._seq in self._pending:
                self._queue.put(self._pending.pop(self._seq))
                self._seq = (self._seq + 1) & SEQ_MASK

    def reset(self) -> None:
        with self._lock:
            self._seq = 0
            self._send_seq = 0

    def read(self, timeout: Optional[float] = None) -> Optional[bytes]:
        """Return the next in-order chunk, or None if ``timeout`` expires."""
        try:
            return self._queue.get(timeout=timeout).data
        except queue.Empty:
            return None

    def write(self, data: bytes) -> None:
        """Send ``data`` as the next numbered chunk; dropped if no connection."""
        with self._lock:
            if not self._conns:
                return
            packet = DataPacket(seq_id=self._send_seq, data=bytes(data))
            self._send_seq = (self._send_seq + 1) & SEQ_MASK
        self._dispatch(packet.marshal())

    def send_ssh_reset(self) -> None:
        with self._lock:
            self._send_seq = 0
        self._dispatch(encode_frame(MessageType.SSH_RESET, b""))

    def send_ssh_fin(self) -> None:
        self._dispatch(encode_frame(MessageType.SSH_FIN, b""))

    def close(self) -> None:
        with self._lock:
            links, self._conns = self._conns, []
        for link in links:
            _close_socket(link.sock)

    def _dispatch(self, frame: bytes) -> None:
        while True:
            with self._lock:
                if not self._conns:
                    return
                link = next((c for c in self._conns if not c.busy), None)
                if link is not None:
                    link.busy = True
            if link is not None:
                threading.Thread(target=self._send, args=(link, frame), daemon=True).start()
                return
            time.sleep(0.01)

    def _send(self, link: _Link, frame: bytes) -> None:
        try:
            link.sock.sendall(frame)
        except OSError as exc:
            logger.warning("sending on tunnel connection failed: %s", exc)
            self._discard(link)
        finally:
            link.busy = False

    def _serve(self, link: _Link) -> None:
        try:
            while True:
                packet = decode_packet(link.sock)
                if packet.type == MessageType.DATA:
                    self.add_packet(packet.payload)
                elif packet.type == MessageType.SSH_FIN and self._callback is not None:
                    self._callback(CallbackType.SSH_FIN)
                elif packet.type == MessageType.SSH_RESET:
                    self.reset()
        except (ProtocolError, OSError) as exc:
            logger.info("tunnel connection ended: %s", exc)
        finally:
            self._discard(link)

    def _discard(self, link: _Link) -> None:
        with self._lock:
            if link in self._conns:
                self._conns.remove(link)
        _close_socket(link.sock)
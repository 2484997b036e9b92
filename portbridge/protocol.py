"""Framing and packet types of the tunnel protocol.

Every frame is a 4-byte big-endian body length, a 1-byte message type and
the body.
"""

from __future__ import annotations

import enum
import hashlib
import struct
import time
from dataclasses import dataclass
from typing import Optional, Union

from portbridge.config import AUTH_SALT
from portbridge.crypto import decrypt, encrypt

HEADER_SIZE = 5
MSG_TYPE_MAX = 6

_HEADER = struct.Struct(">IB")


class MessageType(enum.IntEnum):
    DATA = 1
    SSH_FIN = 2
    SSH_RESET = 3
    AUTH = 4
    AUTH_ACK = 5


class ProtocolError(Exception):
    """Raised for malformed, truncated or unknown frames."""


@dataclass
class DataPacket:
    """A numbered chunk of tunnelled data."""

    seq_id: int
    data: bytes

    def marshal(self) -> bytes:
        """Encode as a complete frame; empty data yields no frame at all."""
        if not self.data:
            return b""
        body = struct.pack(">H", self.seq_id & 0xFFFF) + encrypt(self.data)
        return encode_frame(MessageType.DATA, body)

    @classmethod
    def unmarshal(cls, data: bytes) -> "DataPacket":
        if len(data) < 2:
            raise ProtocolError("data packet shorter than its sequence number")
        (seq_id,) = struct.unpack(">H", data[:2])
        return cls(seq_id=seq_id, data=bytes(data[2:]))


@dataclass
class AuthPacket:
    """A timestamped authentication digest."""

    timestamp: int
    auth: bytes

    @classmethod
    def unmarshal(cls, data: bytes) -> "AuthPacket":
        if len(data) < 8:
            raise ProtocolError("auth packet shorter than its timestamp")
        (timestamp,) = struct.unpack(">q", data[:8])
        return cls(timestamp=timestamp, auth=bytes(data[8:]))


@dataclass
class AuthAckPacket:
    """The server's answer to an authentication request."""

    success: bool

    @classmethod
    def unmarshal(cls, data: bytes) -> "AuthAckPacket":
        if not data:
            raise ProtocolError("empty auth ack packet")
        return cls(success=data[0] == 1)


Payload = Union[DataPacket, AuthPacket, AuthAckPacket]


@dataclass
class Packet:
    """A decoded frame; ``payload`` is None for bodiless messages."""

    length: int
    type: int
    payload: Optional[Payload] = None


def auth_digest(timestamp: int) -> bytes:
    """MD5 of the decimal timestamp followed by the shared salt."""
    return hashlib.md5(f"{timestamp}{AUTH_SALT}".encode("utf-8")).digest()


def encode_frame(msg_type: int, body: bytes) -> bytes:
    """Prefix ``body`` with its length and message type."""
    return _HEADER.pack(len(body), int(msg_type)) + bytes(body)


def build_auth_frame(timestamp: Optional[int] = None) -> bytes:
    """Build an AUTH frame for ``timestamp`` (default: now, in seconds)."""
    if timestamp is None:
        timestamp = int(time.time())
    body = struct.pack(">q", timestamp) + auth_digest(timestamp)
    return encode_frame(MessageType.AUTH, encrypt(body))


def build_auth_ack_frame() -> bytes:
    """Build a successful AUTH_ACK frame."""
    return encode_frame(MessageType.AUTH_ACK, encrypt(b"\x01"))


def _read_exact(stream, size: int) -> bytes:
    reader = getattr(stream, "recv", None) or stream.read
    chunks = bytearray()
    while len(chunks) < size:
        chunk = reader(size - len(chunks))
        if not chunk:
            raise ProtocolError(
                f"connection closed after {len(chunks)} of {size} bytes"
            )
        chunks.extend(chunk)
    return bytes(chunks)


def decode_packet(stream) -> Packet:
    """Read and decode one frame from a socket or binary file object."""
    if stream is None:
        raise ProtocolError("connection is None")
    length, msg_type = _HEADER.unpack(_read_exact(stream, HEADER_SIZE))
    if msg_type > MSG_TYPE_MAX:
        raise ProtocolError(f"unknown message type {msg_type}")
    packet = Packet(length=length, type=msg_type)
    if length == 0:
        return packet

    plaintext = decrypt(_read_exact(stream, length))
    if msg_type == MessageType.DATA:
        packet.payload = DataPacket.unmarshal(plaintext)
    elif msg_type in (MessageType.SSH_FIN, MessageType.SSH_RESET):
        pass
    elif msg_type == MessageType.AUTH:
        packet.payload = AuthPacket.unmarshal(plaintext)
    elif msg_type == MessageType.AUTH_ACK:
        packet.payload = AuthAckPacket.unmarshal(plaintext)
    else:
        raise ProtocolError(f"unknown message type {msg_type}")
    return packet
import io
import socket

import pytest

from portbridge.protocol import (
    HEADER_SIZE,
    AuthAckPacket,
    AuthPacket,
    DataPacket,
    MessageType,
    ProtocolError,
    auth_digest,
    build_auth_ack_frame,
    build_auth_frame,
    decode_packet,
    encode_frame,
)


def test_data_packet_wire_bytes():
    assert DataPacket(7, b"hi").marshal() == b"\x00\x00\x00\x04\x01\x00\x07hi"


def test_empty_data_packet_marshals_to_nothing():
    assert DataPacket(3, b"").marshal() == b""


def test_data_packet_round_trip_through_stream():
    frame = DataPacket(65535, b"payload bytes").marshal()
    packet = decode_packet(io.BytesIO(frame))
    assert packet.type == MessageType.DATA
    assert packet.length == len(frame) - HEADER_SIZE
    assert packet.payload == DataPacket(65535, b"payload bytes")


def test_decode_from_socket():
    left, right = socket.socketpair()
    with left, right:
        left.sendall(DataPacket(42, b"over a socket").marshal())
        packet = decode_packet(right)
    assert packet.payload == DataPacket(42, b"over a socket")


def test_consecutive_frames_decode_in_order():
    stream = io.BytesIO(
        DataPacket(1, b"a").marshal() + DataPacket(2, b"b").marshal()
    )
    assert decode_packet(stream).payload.seq_id == 1
    assert decode_packet(stream).payload.seq_id == 2


def test_auth_frame_round_trip():
    packet = decode_packet(io.BytesIO(build_auth_frame(1700000000)))
    assert packet.type == MessageType.AUTH
    assert packet.payload.timestamp == 1700000000
    assert packet.payload.auth == auth_digest(1700000000)


def test_auth_frame_defaults_to_current_time():
    packet = decode_packet(io.BytesIO(build_auth_frame()))
    assert packet.payload.auth == auth_digest(packet.payload.timestamp)


def test_auth_digest_is_md5_sized_and_time_dependent():
    assert len(auth_digest(100)) == 16
    assert auth_digest(100) == auth_digest(100)
    assert auth_digest(100) != auth_digest(101)


def test_auth_packet_keeps_negative_timestamp():
    body = encode_frame(MessageType.AUTH, b"\xff" * 8 + b"tail")[HEADER_SIZE:]
    packet = AuthPacket.unmarshal(body)
    assert packet.timestamp == -1
    assert packet.auth == b"tail"


def test_auth_ack_frame_wire_bytes():
    assert build_auth_ack_frame() == b"\x00\x00\x00\x01\x05\x01"


def test_auth_ack_decodes_as_success():
    packet = decode_packet(io.BytesIO(build_auth_ack_frame()))
    assert packet.type == MessageType.AUTH_ACK
    assert packet.payload == AuthAckPacket(success=True)


def test_auth_ack_zero_means_failure():
    assert AuthAckPacket.unmarshal(b"\x00").success is False


def test_bodyless_reset_frame():
    packet = decode_packet(io.BytesIO(encode_frame(MessageType.SSH_RESET, b"")))
    assert packet.type == MessageType.SSH_RESET
    assert packet.length == 0
    assert packet.payload is None


def test_fin_frame_body_is_ignored():
    packet = decode_packet(io.BytesIO(encode_frame(MessageType.SSH_FIN, b"xyz")))
    assert packet.type == MessageType.SSH_FIN
    assert packet.payload is None


def test_type_above_maximum_is_rejected():
    with pytest.raises(ProtocolError):
        decode_packet(io.BytesIO(encode_frame(7, b"")))


def test_reserved_type_with_body_is_rejected():
    with pytest.raises(ProtocolError):
        decode_packet(io.BytesIO(encode_frame(6, b"x")))


def test_reserved_type_without_body_is_accepted():
    assert decode_packet(io.BytesIO(encode_frame(6, b""))).type == 6


def test_truncated_header_is_rejected():
    with pytest.raises(ProtocolError):
        decode_packet(io.BytesIO(b"\x00\x00"))


def test_truncated_body_is_rejected():
    frame = DataPacket(1, b"abcdef").marshal()
    with pytest.raises(ProtocolError):
        decode_packet(io.BytesIO(frame[:-2]))


def test_missing_stream_is_rejected():
    with pytest.raises(ProtocolError):
        decode_packet(None)


@pytest.mark.parametrize(
    "unmarshal, data",
    [
        (DataPacket.unmarshal, b"\x01"),
        (AuthPacket.unmarshal, b"\x00" * 7),
        (AuthAckPacket.unmarshal, b""),
    ],
)
def test_short_bodies_are_rejected(unmarshal, data):
    with pytest.raises(ProtocolError):
        unmarshal(data)
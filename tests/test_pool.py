import socket
import threading
import time

import pytest

from portbridge.config import CallbackType, Config
from portbridge.pool import Pool
from portbridge.protocol import (
    DataPacket,
    MessageType,
    decode_packet,
    encode_frame,
)


def _wait_until(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return
        time.sleep(0.01)


@pytest.fixture
def pool():
    p = Pool(Config(), "server")
    yield p
    p.close()


@pytest.fixture
def linked(pool):
    ours, peer = socket.socketpair()
    peer.settimeout(2)
    pool.add_conn(ours)
    yield pool, peer
    peer.close()


def test_packets_released_in_sequence_order(pool):
    pool.add_packet(DataPacket(1, b"second"))
    pool.add_packet(DataPacket(0, b"first"))
    assert pool.read(timeout=1) == b"first"
    assert pool.read(timeout=1) == b"second"


def test_gap_holds_back_later_packets(pool):
    pool.add_packet(DataPacket(2, b"later"))
    assert pool.read(timeout=0.05) is None


def test_none_packet_is_ignored(pool):
    pool.add_packet(None)
    pool.add_packet(DataPacket(0, b"x"))
    assert pool.read(timeout=1) == b"x"


def test_reset_restarts_receive_sequence(pool):
    pool.add_packet(DataPacket(0, b"a"))
    assert pool.read(timeout=1) == b"a"
    pool.reset()
    pool.add_packet(DataPacket(0, b"b"))
    assert pool.read(timeout=1) == b"b"


def test_conn_count_tracks_added_connections(linked):
    pool, _ = linked
    assert pool.conn_count() == 1


def test_write_without_connections_does_not_consume_sequence(pool):
    pool.write(b"dropped")
    assert pool.conn_count() == 0
    ours, peer = socket.socketpair()
    peer.settimeout(2)
    pool.add_conn(ours)
    pool.write(b"kept")
    packet = decode_packet(peer)
    assert packet.payload.seq_id == 0
    assert packet.payload.data == b"kept"
    peer.close()


def test_write_numbers_chunks(linked):
    pool, peer = linked
    pool.write(b"abc")
    pool.write(b"def")
    first = decode_packet(peer)
    second = decode_packet(peer)
    assert first.type == MessageType.DATA
    assert (first.payload.seq_id, first.payload.data) == (0, b"abc")
    assert (second.payload.seq_id, second.payload.data) == (1, b"def")


def test_incoming_data_is_readable(linked):
    pool, peer = linked
    peer.sendall(DataPacket(0, b"payload").marshal())
    assert pool.read(timeout=2) == b"payload"


def test_incoming_reset_restarts_sequence(linked):
    pool, peer = linked
    peer.sendall(DataPacket(0, b"one").marshal())
    peer.sendall(encode_frame(MessageType.SSH_RESET, b""))
    peer.sendall(DataPacket(0, b"two").marshal())
    assert pool.read(timeout=2) == b"one"
    assert pool.read(timeout=2) == b"two"


def test_incoming_fin_invokes_callback(linked):
    pool, peer = linked
    events = []
    seen = threading.Event()

    def callback(event):
        events.append(event)
        seen.set()

    pool.set_callback(callback)
    peer.sendall(encode_frame(MessageType.SSH_FIN, b""))
    seen.wait(2)
    assert events == [CallbackType.SSH_FIN]
    assert pool.conn_count() == 1


def test_send_ssh_reset_frame_and_local_sequence(linked):
    pool, peer = linked
    pool.write(b"a")
    pool.send_ssh_reset()
    pool.write(b"b")
    first = decode_packet(peer)
    reset = decode_packet(peer)
    again = decode_packet(peer)
    assert first.payload.seq_id == 0
    assert reset.type == MessageType.SSH_RESET
    assert reset.length == 0
    assert (again.payload.seq_id, again.payload.data) == (0, b"b")


def test_send_ssh_fin_frame(linked):
    pool, peer = linked
    pool.send_ssh_fin()
    packet = decode_packet(peer)
    assert packet.type == MessageType.SSH_FIN
    assert packet.payload is None


def test_peer_close_removes_connection(linked):
    pool, peer = linked
    assert pool.conn_count() == 1
    peer.close()
    _wait_until(lambda: pool.conn_count() == 0)
    assert pool.conn_count() == 0


def test_close_drops_all_connections(pool):
    pairs = [socket.socketpair() for _ in range(3)]
    for ours, _ in pairs:
        pool.add_conn(ours)
    assert pool.conn_count() == 3
    pool.close()
    assert pool.conn_count() == 0
    for _, peer in pairs:
        peer.settimeout(2)
        assert peer.recv(16) == b""
        peer.close()
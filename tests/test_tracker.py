import socket
import threading
import time

import pytest

from localsync.filetable import FileStatus, FileTable
from localsync.seg import (
    P2TSegment,
    P2TType,
    receive_t2p_segment,
    send_p2t_segment,
)
from localsync.tracker import PEER_ALIVE_INTERVAL, PIECE_LEN, Tracker


class FakeClock:
    def __init__(self, now=1000):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tracker(clock):
    return Tracker(handshake_port=0, monitor_port=0, clock=clock)


@pytest.fixture
def pair():
    a, b = socket.socketpair()
    yield a, b
    a.close()
    b.close()


def _table(*entries):
    table = FileTable()
    for name, size, ts, ips in entries:
        table.add_file(name, size, ts, ips)
    return table


def test_register_sends_accept(tracker, pair):
    server, client = pair
    tracker.handle_register(server, P2TSegment(type=P2TType.REGISTER, peer_ip="10.0.0.1"))
    reply = receive_t2p_segment(client)
    assert reply.interval == PEER_ALIVE_INTERVAL == 60
    assert reply.piece_len == PIECE_LEN == 200
    assert len(reply.file_table) == 0
    peer = tracker.peer_table.find_by_ip("10.0.0.1")
    assert peer.sockfd is server
    assert peer.last_time_stamp == 1000


def test_update_adds_new_files(tracker, pair):
    server, client = pair
    tracker.handle_register(server, P2TSegment(peer_ip="10.0.0.1"))
    update = P2TSegment(
        type=P2TType.FILE_TABLE_UPDATE,
        peer_ip="10.0.0.1",
        file_table=_table(("notes.txt", 5, 100, ["10.0.0.1"])),
    )
    tracker.handle_filetable_update(server, update)
    entry = tracker.file_table.find_file("notes.txt")
    assert entry.file_size == 5
    assert entry.latest_timestamp == 100
    assert entry.peer_ips == ["10.0.0.1"]


def test_update_newer_replaces(tracker, pair):
    server, _ = pair
    tracker.handle_register(server, P2TSegment(peer_ip="10.0.0.1"))
    tracker.handle_register(server, P2TSegment(peer_ip="10.0.0.2"))
    tracker.handle_filetable_update(
        server, P2TSegment(peer_ip="10.0.0.1", file_table=_table(("a.txt", 5, 100, ["10.0.0.1"])))
    )
    newer = _table(("a.txt", 9, 200, ["10.0.0.2"]))
    newer.find_file("a.txt").prev_timestamp = 100
    newer.find_file("a.txt").status = FileStatus.READ_ONLY
    tracker.handle_filetable_update(server, P2TSegment(peer_ip="10.0.0.2", file_table=newer))
    entry = tracker.file_table.find_file("a.txt")
    assert entry.file_size == 9
    assert entry.latest_timestamp == 200
    assert entry.prev_timestamp == 100
    assert entry.status == FileStatus.READ_ONLY
    assert entry.peer_ips == ["10.0.0.2"]


def test_update_same_timestamp_adds_peer(tracker, pair):
    server, _ = pair
    tracker.handle_register(server, P2TSegment(peer_ip="10.0.0.1"))
    tracker.handle_register(server, P2TSegment(peer_ip="10.0.0.2"))
    tracker.handle_filetable_update(
        server, P2TSegment(peer_ip="10.0.0.1", file_table=_table(("a.txt", 5, 100, ["10.0.0.1"])))
    )
    tracker.handle_filetable_update(
        server, P2TSegment(peer_ip="10.0.0.2", file_table=_table(("a.txt", 5, 100, ["10.0.0.2"])))
    )
    assert tracker.file_table.find_file("a.txt").peer_ips == ["10.0.0.1", "10.0.0.2"]


def test_update_older_is_ignored(tracker, pair):
    server, _ = pair
    tracker.handle_register(server, P2TSegment(peer_ip="10.0.0.1"))
    tracker.handle_filetable_update(
        server, P2TSegment(peer_ip="10.0.0.1", file_table=_table(("a.txt", 5, 100, ["10.0.0.1"])))
    )
    tracker.handle_filetable_update(
        server, P2TSegment(peer_ip="10.0.0.1", file_table=_table(("a.txt", 7, 50, ["10.0.0.1"])))
    )
    entry = tracker.file_table.find_file("a.txt")
    assert (entry.file_size, entry.latest_timestamp) == (5, 100)


def test_update_from_unknown_peer_raises(tracker, pair):
    server, _ = pair
    with pytest.raises(KeyError):
        tracker.handle_filetable_update(server, P2TSegment(peer_ip="10.9.9.9"))


def test_remove_dead_peers(tracker, clock, pair):
    server, _ = pair
    tracker.handle_register(server, P2TSegment(peer_ip="10.0.0.1"))
    tracker.handle_filetable_update(
        server, P2TSegment(peer_ip="10.0.0.1", file_table=_table(("a.txt", 5, 100, ["10.0.0.1"])))
    )
    clock.now = 1000 + PEER_ALIVE_INTERVAL + 1
    assert tracker.remove_dead_peers() == []
    assert len(tracker.peer_table) == 1

    clock.now = 1000 + PEER_ALIVE_INTERVAL + 2
    removed = tracker.remove_dead_peers()
    assert [p.ip for p in removed] == ["10.0.0.1"]
    assert len(tracker.peer_table) == 0
    assert tracker.file_table.find_file("a.txt").peer_ips == []


def test_broadcast_skips_disconnected(tracker):
    a1, b1 = socket.socketpair()
    a2, b2 = socket.socketpair()
    try:
        tracker.handle_register(a1, P2TSegment(peer_ip="10.0.0.1"))
        tracker.handle_register(a2, P2TSegment(peer_ip="10.0.0.2"))
        receive_t2p_segment(b1)
        receive_t2p_segment(b2)
        tracker.handle_filetable_update(
            a1, P2TSegment(peer_ip="10.0.0.1", file_table=_table(("a.txt", 5, 100, ["10.0.0.1"])))
        )
        tracker.peer_table.find_by_ip("10.0.0.2").sockfd = None
        assert tracker.broadcast_filetable() == 1
        got = receive_t2p_segment(b1)
        assert [e.filename for e in got.file_table] == ["a.txt"]
        assert got.file_table.find_file("a.txt").peer_ips == ["10.0.0.1"]
    finally:
        for s in (a1, b1, a2, b2):
            s.close()


def test_handshake_serves_until_close(tracker, pair):
    server, client = pair
    worker = threading.Thread(target=tracker.handshake, args=(server,))
    worker.start()
    send_p2t_segment(client, P2TSegment(type=P2TType.REGISTER, peer_ip="10.0.0.1"))
    reply = receive_t2p_segment(client)
    send_p2t_segment(
        client,
        P2TSegment(
            type=P2TType.FILE_TABLE_UPDATE,
            peer_ip="10.0.0.1",
            file_table=_table(("notes.txt", 5, 100, ["10.0.0.1"])),
        ),
    )
    client.shutdown(socket.SHUT_WR)
    worker.join(timeout=5)
    assert not worker.is_alive()
    assert reply.piece_len == 200
    assert tracker.file_table.find_file("notes.txt").file_size == 5
    assert tracker.peer_table.find_by_ip("10.0.0.1").sockfd is None


def _wait(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return False


def test_serve_forever_and_monitor(tracker, clock):
    tracker.monitor_timeout = 0.1
    server_thread = threading.Thread(target=tracker.serve_forever, daemon=True)
    server_thread.start()
    assert tracker.listening.wait(5)
    port = tracker.handshake_address[1]
    mport = tracker.monitor_address[1]
    try:
        with socket.create_connection(("127.0.0.1", port)) as peer_sock:
            send_p2t_segment(peer_sock, P2TSegment(type=P2TType.REGISTER, peer_ip="127.0.0.1"))
            reply = receive_t2p_segment(peer_sock)
            assert reply.interval == 60

            clock.now = 1030
            with socket.create_connection(("127.0.0.1", mport)) as beat:
                send_p2t_segment(beat, P2TSegment(type=P2TType.ALIVE, peer_ip="127.0.0.1"))
                assert _wait(
                    lambda: tracker.peer_table.find_by_ip("127.0.0.1").last_time_stamp == 1030
                )
    finally:
        tracker.stop()
        server_thread.join(timeout=5)
    assert not server_thread.is_alive()
import socket
import threading

import pytest

from localsync.seg import (
    DataReqType,
    P2PSegment,
    P2PType,
    receive_p2p_segment,
    send_p2p_segment,
)
from localsync.tasks import DownloadTask
from localsync.transfer import read_piece, request_delta, request_pieces, serve_requests

CONTENT = b"hello world, sync me please!"
PIECE_LEN = 4


@pytest.fixture
def shared(tmp_path):
    (tmp_path / "doc.txt").write_bytes(CONTENT)
    (tmp_path / ".delta").mkdir()
    (tmp_path / ".delta" / "doc.txt").write_bytes(b"delta bytes")
    return tmp_path


def _start_server(root):
    server, client = socket.socketpair()
    server.settimeout(5)
    client.settimeout(5)
    result = {}

    def run():
        result["served"] = serve_requests(server, f"{root}/", f"{root}/.delta/", PIECE_LEN)
        server.close()

    thread = threading.Thread(target=run)
    thread.start()
    return client, thread, result


def test_read_piece(tmp_path):
    data = bytes(range(10))
    path = tmp_path / "f"
    path.write_bytes(data)
    assert read_piece(path, 1, 4) == data[:4]
    assert read_piece(path, 3, 4) == data[8:]


def test_read_piece_errors(tmp_path):
    path = tmp_path / "f"
    path.write_bytes(bytes(10))
    with pytest.raises(ValueError):
        read_piece(path, 0, 4)
    with pytest.raises(ValueError):
        read_piece(path, 4, 4)
    with pytest.raises(OSError):
        read_piece(tmp_path / "missing", 1, 4)


def test_full_file_round_trip(shared):
    client, thread, result = _start_server(shared)
    task = DownloadTask.full("doc.txt", 7, len(CONTENT), PIECE_LEN, ["10.0.0.1"])
    [(ip, seqs)] = task.assign_pieces()
    fetched = request_pieces(client, task, seqs)
    client.close()
    thread.join(5)
    assert ip == "10.0.0.1"
    assert fetched == len(seqs) == task.total_piece_num
    assert task.complete()
    assert task.assemble(PIECE_LEN) == CONTENT
    assert result["served"] == len(seqs)


def test_delta_round_trip(shared):
    client, thread, result = _start_server(shared)
    task = DownloadTask.delta("doc.txt", 7, 0, ["10.0.0.1"])
    task.assign_pieces()
    assert request_delta(client, task) == b"delta bytes"
    client.close()
    thread.join(5)
    assert task.delta_file == b"delta bytes"
    assert task.delta_file_length == len(b"delta bytes")
    assert task.complete()
    assert result["served"] == 1


def test_missing_file_request_is_skipped(shared):
    client, thread, result = _start_server(shared)
    for name in ("missing.txt", "doc.txt"):
        send_p2p_segment(
            client,
            P2PSegment(type=P2PType.DATA_REQ, data_req_type=DataReqType.FILE_REQ,
                       filename=name, seq_num=1),
        )
    reply = receive_p2p_segment(client)
    client.close()
    thread.join(5)
    assert reply.type == P2PType.DATA
    assert reply.filename == "doc.txt"
    assert reply.seq_num == 1
    assert reply.data == CONTENT[:PIECE_LEN]
    assert result["served"] == 1


def test_request_delta_broken_connection_releases(shared):
    server, client = socket.socketpair()
    client.settimeout(5)
    server.close()
    task = DownloadTask.delta("doc.txt", 7, 0, ["10.0.0.1"])
    task.assign_pieces()
    with pytest.raises(OSError):
        request_delta(client, task)
    client.close()
    assert task.delta_downloading is False
    assert task.delta_file is None


def test_request_pieces_broken_connection_releases():
    server, client = socket.socketpair()
    client.settimeout(5)
    server.close()
    task = DownloadTask.full("doc.txt", 7, 12, PIECE_LEN, ["10.0.0.1"])
    [(_, seqs)] = task.assign_pieces()
    with pytest.raises(OSError):
        request_pieces(client, task, seqs)
    client.close()
    assert all(seq < 0 for seq in task.piece_seq_list)
    assert task.remaining_piece == task.total_piece_num


def test_request_pieces_stopped_task_fetches_nothing():
    server, client = socket.socketpair()
    task = DownloadTask.full("doc.txt", 7, 12, PIECE_LEN, ["10.0.0.1"])
    [(_, seqs)] = task.assign_pieces()
    task.should_stop = True
    assert request_pieces(client, task, seqs) == 0
    server.close()
    client.close()
    assert all(seq < 0 for seq in task.piece_seq_list)


def test_wrong_task_type_rejected():
    server, client = socket.socketpair()
    full = DownloadTask.full("doc.txt", 7, 12, PIECE_LEN, ["10.0.0.1"])
    delta = DownloadTask.delta("doc.txt", 7, 0, ["10.0.0.1"])
    with pytest.raises(ValueError):
        request_delta(client, full)
    with pytest.raises(ValueError):
        request_pieces(client, delta, [1])
    server.close()
    client.close()
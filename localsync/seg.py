"""Framed segments exchanged between peers and the tracker.

Every segment starts with ``!&``; the fixed header is closed by ``!^``.
Peer-to-peer segments then carry their data and end with ``!#``.
Segments carrying a file table follow each file record with ``!$`` and
end with ``!#``.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Optional

from .filetable import IP_LEN, MAX_FILENAME_LEN, MAX_PEER_NUM, FileEntry, FileStatus, FileTable

PROTOCOL_LEN = 10
RESERVED_LEN = 10

_START = b"!&"
_HEAD_END = b"!^"
_FILE_END = b"!$"
_END = b"!#"

_P2P_HEADER = struct.Struct(f"!iiiiiI{MAX_FILENAME_LEN}s")
_P2T_HEADER = struct.Struct(f"!i{PROTOCOL_LEN + 1}si{RESERVED_LEN}s{IP_LEN}siI")
_T2P_HEADER = struct.Struct("!iiI")
_FILE_RECORD = struct.Struct(f"!iii{MAX_FILENAME_LEN}si{IP_LEN * MAX_PEER_NUM}sQQi")


class SegmentError(ConnectionError):
    """A segment could not be received or was malformed."""


class P2PType(IntEnum):
    DATA_REQ = 0
    DATA = 1


class DataReqType(IntEnum):
    DELTA_REQ = 0
    FILE_REQ = 1


class P2TType(IntEnum):
    REGISTER = 0
    ALIVE = 1
    FILE_TABLE_UPDATE = 2


def _to_enum(enum_cls, value: int):
    try:
        return enum_cls(value)
    except ValueError:
        return value


def _pack_str(text: str, size: int, what: str) -> bytes:
    raw = text.encode("utf-8")
    if len(raw) >= size:
        raise ValueError(f"{what} {text!r} does not fit in {size} bytes")
    return raw.ljust(size, b"\0")


def _unpack_str(raw: bytes) -> str:
    return raw.split(b"\0", 1)[0].decode("utf-8", errors="replace")


def _encode_file(entry: FileEntry) -> bytes:
    if len(entry.peer_ips) > MAX_PEER_NUM:
        raise ValueError(f"more than {MAX_PEER_NUM} peers for {entry.filename}")
    peers = b"".join(_pack_str(ip, IP_LEN, "peer IP") for ip in entry.peer_ips)
    return _FILE_RECORD.pack(
        entry.file_size,
        entry.delta_size,
        int(entry.status),
        _pack_str(entry.filename, MAX_FILENAME_LEN, "file name"),
        len(entry.peer_ips),
        peers.ljust(IP_LEN * MAX_PEER_NUM, b"\0"),
        entry.latest_timestamp,
        entry.prev_timestamp,
        int(entry.is_dir),
    )


def _decode_file(raw: bytes) -> FileEntry:
    (file_size, delta_size, status, name, peer_num, peers,
     latest, prev, is_dir) = _FILE_RECORD.unpack(raw)
    if not 0 <= peer_num <= MAX_PEER_NUM:
        raise SegmentError(f"invalid peer count {peer_num}")
    chunks = [peers[start:start + IP_LEN] for start in range(0, peer_num * IP_LEN, IP_LEN)]
    return FileEntry(
        filename=_unpack_str(name),
        file_size=file_size,
        status=_to_enum(FileStatus, status),
        peer_ips=[_unpack_str(chunk) for chunk in chunks],
        latest_timestamp=latest,
        prev_timestamp=prev,
        delta_size=delta_size,
        is_dir=bool(is_dir),
    )


def _encode_table(table: FileTable) -> bytes:
    return b"".join(_encode_file(entry) + _FILE_END for entry in table)


@dataclass
class P2PSegment:
    """Request or data segment exchanged between two peers."""

    type: int = P2PType.DATA_REQ
    data_req_type: int = DataReqType.DELTA_REQ
    filename: str = ""
    seq_num: int = 0
    data: bytes = b""
    src_peer_ip: int = 0
    dest_peer_ip: int = 0

    @property
    def length(self) -> int:
        return len(self.data)

    def encode(self) -> bytes:
        header = _P2P_HEADER.pack(
            self.src_peer_ip,
            self.dest_peer_ip,
            int(self.type),
            int(self.data_req_type),
            self.seq_num,
            len(self.data),
            _pack_str(self.filename, MAX_FILENAME_LEN, "file name"),
        )
        return _START + header + _HEAD_END + bytes(self.data) + _END


@dataclass
class P2TSegment:
    """Segment sent from a peer to the tracker."""

    type: int = P2TType.REGISTER
    peer_ip: str = ""
    port: int = 0
    file_table: FileTable = field(default_factory=FileTable)
    protocol_len: int = 0
    protocol_name: str = ""
    reserved: bytes = b""

    def encode(self) -> bytes:
        if len(self.reserved) > RESERVED_LEN:
            raise ValueError(f"reserved field longer than {RESERVED_LEN} bytes")
        header = _P2T_HEADER.pack(
            self.protocol_len,
            _pack_str(self.protocol_name, PROTOCOL_LEN + 1, "protocol name"),
            int(self.type),
            bytes(self.reserved).ljust(RESERVED_LEN, b"\0"),
            _pack_str(self.peer_ip, IP_LEN, "peer IP"),
            self.port,
            len(self.file_table),
        )
        return _START + header + _HEAD_END + _encode_table(self.file_table) + _END


@dataclass
class T2PSegment:
    """Segment sent from the tracker to a peer."""

    interval: int = 0
    piece_len: int = 0
    file_table: FileTable = field(default_factory=FileTable)

    def encode(self) -> bytes:
        header = _T2P_HEADER.pack(self.interval, self.piece_len, len(self.file_table))
        return _START + header + _HEAD_END + _encode_table(self.file_table) + _END


def _recv_exact(sock, size: int) -> bytes:
    chunks = []
    remaining = size
    while remaining > 0:
        chunk = sock.recv(remaining)
        if not chunk:
            raise SegmentError("connection closed")
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def _await_start(sock) -> None:
    """Skip bytes until the start marker has been read."""
    seen_bang = False
    while True:
        byte = _recv_exact(sock, 1)
        if seen_bang and byte == b"&":
            return
        seen_bang = byte == b"!"


def _expect(sock, marker: bytes) -> None:
    got = _recv_exact(sock, len(marker))
    if got != marker:
        raise SegmentError(f"expected {marker!r}, got {got!r}")


def _receive_header(sock, layout: struct.Struct) -> tuple:
    _await_start(sock)
    fields = layout.unpack(_recv_exact(sock, layout.size))
    _expect(sock, _HEAD_END)
    return fields


def _receive_table(sock, count: int) -> FileTable:
    table = FileTable()
    for _ in range(count):
        raw = _recv_exact(sock, _FILE_RECORD.size)
        _expect(sock, _FILE_END)
        try:
            table.append(_decode_file(raw))
        except ValueError as exc:
            raise SegmentError(str(exc)) from exc
    _expect(sock, _END)
    return table


def send_p2p_segment(sock, segment: P2PSegment) -> None:
    sock.sendall(segment.encode())


def receive_p2p_segment(sock) -> P2PSegment:
    src, dest, seg_type, req_type, seq_num, length, name = _receive_header(sock, _P2P_HEADER)
    data = _recv_exact(sock, length)
    _expect(sock, _END)
    return P2PSegment(
        type=_to_enum(P2PType, seg_type),
        data_req_type=_to_enum(DataReqType, req_type),
        filename=_unpack_str(name),
        seq_num=seq_num,
        data=data,
        src_peer_ip=src,
        dest_peer_ip=dest,
    )


def send_p2t_segment(sock, segment: P2TSegment) -> None:
    sock.sendall(segment.encode())


def receive_p2t_segment(sock) -> P2TSegment:
    (protocol_len, protocol_name, seg_type, reserved, peer_ip,
     port, count) = _receive_header(sock, _P2T_HEADER)
    table = _receive_table(sock, count)
    return P2TSegment(
        type=_to_enum(P2TType, seg_type),
        peer_ip=_unpack_str(peer_ip),
        port=port,
        file_table=table,
        protocol_len=protocol_len,
        protocol_name=_unpack_str(protocol_name),
        reserved=reserved.rstrip(b"\0"),
    )


def send_t2p_segment(sock, segment: T2PSegment) -> None:
    sock.sendall(segment.encode())


def receive_t2p_segment(sock) -> T2PSegment:
    interval, piece_len, count = _receive_header(sock, _T2P_HEADER)
    return T2PSegment(
        interval=interval,
        piece_len=piece_len,
        file_table=_receive_table(sock, count),
    )


__all__: Optional[list] = [
    "SegmentError",
    "P2PType",
    "DataReqType",
    "P2TType",
    "P2PSegment",
    "P2TSegment",
    "T2PSegment",
    "send_p2p_segment",
    "receive_p2p_segment",
    "send_p2t_segment",
    "receive_p2t_segment",
    "send_t2p_segment",
    "receive_t2p_segment",
]
"""Download tasks a peer works on, and the list that holds them."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterable, Iterator, Optional

from .filetable import MAX_PEER_NUM

BIGFILE_THRES = 30


class FileType(IntEnum):
    """What a task downloads."""

    DELTA = 0
    FULL = 1


@dataclass
class Piece:
    """One downloaded piece of a file; sequence numbers start at 1."""

    seq_num: int
    data: bytes


def piece_count(file_size: int, piece_len: int) -> int:
    """Number of pieces a file of file_size bytes is cut into."""
    if piece_len <= 0:
        raise ValueError("piece length must be positive")
    if file_size < 0:
        raise ValueError("file size must not be negative")
    return -(-file_size // piece_len)


@dataclass(eq=False)
class DownloadTask:
    """A file, or a delta of it, to fetch from other peers.

    In piece_seq_list a negative number is a piece waiting to be fetched and a
    positive one a piece handed to a download thread.
    """

    filename: str
    timestamp: int
    file_type: FileType
    peer_ips: list[str] = field(default_factory=list)
    full_file_length: int = 0
    total_piece_num: int = 0
    piece_seq_list: list[int] = field(default_factory=list)
    remaining_piece: int = 0
    pieces: list[Piece] = field(default_factory=list)
    delta_file: Optional[bytes] = None
    delta_file_length: int = 0
    delta_downloading: bool = False
    should_stop: bool = False
    threads: list[threading.Thread] = field(default_factory=list, repr=False)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self) -> None:
        self.peer_ips = list(self.peer_ips)
        if len(self.peer_ips) > MAX_PEER_NUM:
            raise ValueError(f"more than {MAX_PEER_NUM} peers for {self.filename}")

    @classmethod
    def full(cls, filename: str, timestamp: int, file_size: int, piece_len: int,
             peer_ips: Iterable[str]) -> "DownloadTask":
        """A task fetching a whole file in pieces of piece_len bytes."""
        total = piece_count(file_size, piece_len)
        return cls(
            filename=filename,
            timestamp=timestamp,
            file_type=FileType.FULL,
            peer_ips=list(peer_ips),
            full_file_length=file_size,
            total_piece_num=total,
            piece_seq_list=[-(i + 1) for i in range(total)],
            remaining_piece=total,
        )

    @classmethod
    def delta(cls, filename: str, timestamp: int, delta_size: int,
              peer_ips: Iterable[str]) -> "DownloadTask":
        """A task fetching the delta of a file from one peer."""
        return cls(
            filename=filename,
            timestamp=timestamp,
            file_type=FileType.DELTA,
            peer_ips=list(peer_ips),
            delta_file_length=delta_size,
        )

    @property
    def peer_num(self) -> int:
        return len(self.peer_ips)

    def complete(self) -> bool:
        """Whether everything the task needs has arrived."""
        with self.lock:
            if self.file_type is FileType.DELTA:
                return self.delta_downloading and self.delta_file is not None
            return self.remaining_piece <= 0

    def assign_pieces(self) -> list[tuple[str, list[int]]]:
        """Hand waiting work out to peers: a list of (peer IP, sequence numbers).

        A delta task goes whole to its first peer. The waiting pieces of a full
        file are shared out evenly, in order, among its peers.
        """
        with self.lock:
            if not self.peer_ips:
                return []
            if self.file_type is FileType.DELTA:
                if self.delta_downloading:
                    return []
                self.delta_downloading = True
                return [(self.peer_ips[0], [])]
            if self.remaining_piece <= 0:
                return []
            waiting = [i for i, seq in enumerate(self.piece_seq_list) if seq < 0]
            if not waiting:
                return []
            per_peer = -(-len(waiting) // len(self.peer_ips))
            assignments = []
            for ip, start in zip(self.peer_ips, range(0, len(waiting), per_peer)):
                indexes = waiting[start:start + per_peer]
                for index in indexes:
                    self.piece_seq_list[index] = -self.piece_seq_list[index]
                assignments.append((ip, [self.piece_seq_list[i] for i in indexes]))
            return assignments

    def add_piece(self, piece: Piece) -> None:
        """Store a downloaded piece."""
        with self.lock:
            self.pieces.append(piece)
            self.remaining_piece -= 1

    def release(self, seq_nums: Iterable[int] = ()) -> None:
        """Put unfinished work back so that it can be handed out again."""
        with self.lock:
            if self.file_type is FileType.DELTA:
                self.delta_file = None
                self.delta_downloading = False
                return
            for seq in seq_nums:
                for index, value in enumerate(self.piece_seq_list):
                    if value == seq:
                        self.piece_seq_list[index] = -abs(value)
                        break

    def assemble(self, piece_len: int) -> bytes:
        """Join the downloaded pieces into the full file; missing pieces are zeros."""
        with self.lock:
            buffer = bytearray(self.total_piece_num * piece_len)
            by_seq: dict[int, Piece] = {}
            for piece in self.pieces:
                by_seq.setdefault(piece.seq_num, piece)
            for seq in range(1, self.total_piece_num + 1):
                piece = by_seq.get(seq)
                if piece is None:
                    continue
                data = piece.data[:piece_len]
                offset = (seq - 1) * piece_len
                buffer[offset:offset + len(data)] = data
            return bytes(buffer[: self.full_file_length])


class DownloadList:
    """Download tasks in the order they were added, at most one per file."""

    def __init__(self) -> None:
        self._tasks: list[DownloadTask] = []
        self._lock = threading.Lock()

    def add(self, task: DownloadTask) -> bool:
        """Add a task; return False when an existing task for the file is kept.

        A task with a newer timestamp replaces the existing one. Otherwise the
        existing task takes over a changed peer list, and a large full-file
        download is told to stop so it can be rescheduled.
        """
        with self._lock:
            existing = next((t for t in self._tasks if t.filename == task.filename), None)
            if existing is not None:
                if existing.timestamp < task.timestamp:
                    self._discard(existing)
                else:
                    if existing.peer_num != task.peer_num:
                        with existing.lock:
                            existing.peer_ips = list(task.peer_ips)
                            if (existing.file_type is FileType.FULL
                                    and existing.remaining_piece > BIGFILE_THRES):
                                existing.should_stop = True
                    return False
            self._tasks.append(task)
            return True

    def _discard(self, task: DownloadTask) -> None:
        for index, current in enumerate(self._tasks):
            if current is task:
                del self._tasks[index]
                task.should_stop = True
                return
        raise ValueError(f"task for {task.filename} is not in the list")

    def remove(self, task: DownloadTask) -> None:
        """Remove a task and tell its download threads to stop."""
        with self._lock:
            self._discard(task)

    def find(self, filename: str) -> Optional[DownloadTask]:
        with self._lock:
            return next((t for t in self._tasks if t.filename == filename), None)

    def __iter__(self) -> Iterator[DownloadTask]:
        with self._lock:
            return iter(list(self._tasks))

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)
"""File table shared by peers and the tracker."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterable, Iterator, Optional

MAX_PEER_NUM = 10
IP_LEN = 16
MAX_FILENAME_LEN = 200


class FileStatus(IntEnum):
    """State of a file in a file table."""

    READ_N_WRITE = 0
    READ_ONLY = 1
    DELETED = 2
    SYNCED = 3
    WRITING_IN_PROGRESS = 4


@dataclass
class FileEntry:
    """One file known to a peer or to the tracker."""

    filename: str
    file_size: int = 0
    status: int = FileStatus.READ_N_WRITE
    peer_ips: list[str] = field(default_factory=list)
    latest_timestamp: int = 0
    prev_timestamp: int = 0
    delta_size: int = 0
    is_dir: bool = False

    @property
    def peer_num(self) -> int:
        """Number of peers holding the latest version of the file."""
        return len(self.peer_ips)


def _validate(entry: FileEntry) -> None:
    if len(entry.filename.encode("utf-8")) >= MAX_FILENAME_LEN:
        raise ValueError(f"file name longer than {MAX_FILENAME_LEN - 1} bytes")
    if len(entry.peer_ips) > MAX_PEER_NUM:
        raise ValueError(f"more than {MAX_PEER_NUM} peers for {entry.filename}")
    for ip in entry.peer_ips:
        if len(ip.encode("ascii")) >= IP_LEN:
            raise ValueError(f"peer IP {ip!r} is too long")


class FileTable:
    """An ordered collection of file entries."""

    def __init__(self) -> None:
        self._entries: list[FileEntry] = []

    def add_file(
        self,
        filename: str,
        file_size: int,
        last_mod_time: int,
        peer_ips: Iterable[str] = (),
        status: int = FileStatus.READ_N_WRITE,
        is_dir: bool = False,
    ) -> FileEntry:
        """Create an entry and place it right after the first entry."""
        entry = FileEntry(
            filename=filename,
            file_size=file_size,
            status=FileStatus(status),
            peer_ips=list(peer_ips),
            latest_timestamp=last_mod_time,
            prev_timestamp=0,
            delta_size=0,
            is_dir=bool(is_dir),
        )
        _validate(entry)
        self._entries.insert(1 if self._entries else 0, entry)
        return entry

    def append(self, entry: FileEntry) -> FileEntry:
        """Append an existing entry at the end of the table."""
        _validate(entry)
        self._entries.append(entry)
        return entry

    def find_file(self, filename: str) -> Optional[FileEntry]:
        """Return the entry with this file name, or None."""
        return next((e for e in self._entries if e.filename == filename), None)

    def remove_peer_ip(self, peer_ip: str) -> None:
        """Drop a dead peer's IP from every entry, moving the last IP into its slot."""
        for entry in self._entries:
            if peer_ip in entry.peer_ips:
                index = entry.peer_ips.index(peer_ip)
                last = entry.peer_ips.pop()
                if index < len(entry.peer_ips):
                    entry.peer_ips[index] = last

    def format(self) -> str:
        """Render the table as human-readable text."""
        lines = ["/************************ FILETABLE ***********************/"]
        for entry in self._entries:
            lines.append(f"filename: {entry.filename}")
            lines.append(
                f"file_size: {entry.file_size}, delta_size: {entry.delta_size}, "
                f"status: {int(entry.status)}, peerNum: {entry.peer_num}, "
                f"la_ts: {entry.latest_timestamp}, prev_ts: {entry.prev_timestamp}, "
                f"isDir: {int(entry.is_dir)}"
            )
            lines.append("peerIP: ")
            lines.extend(entry.peer_ips)
            lines.append("- - - - - - - - - - - - - - - - - - - - - - - - -")
        lines.append("/********************* END OF FILETABLE ********************/")
        return "\n".join(lines) + "\n"

    def __iter__(self) -> Iterator[FileEntry]:
        return iter(list(self._entries))

    def __len__(self) -> int:
        return len(self._entries)
"""Configuration, path helpers and watch bookkeeping for the directory monitor."""

from __future__ import annotations

import os
import shutil
import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional, Union

MAX_DIR_NUM = 100
BACKUP_DIR = ".backup/"
DELTA_DIR = ".delta/"

PathLike = Union[str, Path]


def concat_path(prefix: str, path: str) -> str:
    """Join a prefix (ending with '/' or empty) and a relative path."""
    return f"{prefix}{path}"


@dataclass
class MonitorConfig:
    """What to monitor: the root directory, recursion and ignored directories.

    All ignored paths are relative to the root and end with '/'. The backup
    and delta directories are always ignored.
    """

    root: str
    recursive: bool = True
    ignore: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.recursive = bool(self.recursive)
        self.ignore = list(self.ignore)
        for special in (BACKUP_DIR, DELTA_DIR):
            if special not in self.ignore:
                self.ignore.append(special)
        if len(self.ignore) > MAX_DIR_NUM:
            raise ValueError(f"more than {MAX_DIR_NUM} ignored directories")

    @classmethod
    def from_file(cls, path: PathLike) -> "MonitorConfig":
        """Read a config: root directory, recursive flag, then ignored directories."""
        tokens = Path(path).read_text().split()
        if len(tokens) < 2:
            raise ValueError(f"config file {path} needs a root and a recursive flag")
        root, flag, *ignore = tokens
        try:
            recursive = int(flag)
        except ValueError as exc:
            raise ValueError(f"recursive flag {flag!r} is not an integer") from exc
        return cls(root=root, recursive=bool(recursive), ignore=ignore)

    @property
    def backup(self) -> str:
        """Absolute path of the directory holding file copies."""
        return concat_path(self.root, BACKUP_DIR)

    @property
    def delta(self) -> str:
        """Absolute path of the directory holding delta files."""
        return concat_path(self.root, DELTA_DIR)

    def abs_path(self, path: str) -> str:
        """Absolute path of a path relative to the root."""
        return concat_path(self.root, path)

    def in_ignore(self, path: str) -> bool:
        """Whether this relative directory path is listed as ignored."""
        return path in self.ignore

    def passes_filter(self, path: str) -> bool:
        """Whether no directory on the way to this relative path is ignored."""
        for index in range(len(path) - 1, -1, -1):
            if path[index] == "/" and self.in_ignore(path[: index + 1]):
                return False
        return True


@dataclass
class FileInfo:
    """Size and modification time of a file."""

    filepath: str
    size: int
    last_modify_time: int


def get_file_info(path: PathLike) -> FileInfo:
    """Stat a file; raise OSError if it cannot be read."""
    st = os.stat(path)
    return FileInfo(filepath=str(path), size=st.st_size, last_modify_time=int(st.st_mtime))


def copy_file(src: PathLike, dest: PathLike) -> None:
    """Copy the contents of src to dest; raise OSError on failure."""
    shutil.copyfile(src, dest)


def file_extension(filename: str) -> str:
    """Text after the last dot, or '' when there is none or the name starts with it."""
    dot = filename.rfind(".")
    if dot <= 0:
        return ""
    return filename[dot + 1:]


def is_editor_temp(name: str) -> bool:
    """Whether a file name is one of vim's swap or probe files."""
    return file_extension(name) in ("swp", "swx") or name == "4913"


def get_my_ip() -> str:
    """IPv4 address this host's name resolves to."""
    return socket.gethostbyname(socket.gethostname())


class WatchTable:
    """Watched directories, each with the handle of its watch.

    Removing an entry moves the last entry into its slot.
    """

    def __init__(self, max_dirs: int = MAX_DIR_NUM) -> None:
        self.max_dirs = max_dirs
        self._entries: list[tuple[str, object]] = []

    def add(self, path: str, handle: object) -> None:
        """Record a watched directory; raise OverflowError past the limit."""
        if len(self._entries) + 1 >= self.max_dirs:
            raise OverflowError("exceed directory limits")
        self._entries.append((path, handle))

    def remove(self, path: str) -> Optional[object]:
        """Forget a directory and return its handle, or None if it is not watched."""
        for index, (entry_path, handle) in enumerate(self._entries):
            if entry_path == path:
                last = self._entries.pop()
                if index < len(self._entries):
                    self._entries[index] = last
                return handle
        return None

    def path_by_handle(self, handle: object) -> Optional[str]:
        """Directory watched under this handle, or None."""
        return next((p for p, h in self._entries if h == handle), None)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[tuple[str, object]]:
        return iter(list(self._entries))
"""Table of peers known to the tracker."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Iterator, Optional

IP_LEN = 16


def current_time() -> int:
    """Wall-clock time in whole seconds."""
    return int(time.time())


@dataclass
class PeerEntry:
    """A peer registered with the tracker."""

    ip: str
    sockfd: int
    last_time_stamp: int


class PeerTable:
    """Peers keyed by IP, with the time each was last heard from."""

    def __init__(self, clock: Callable[[], int] = current_time) -> None:
        self._clock = clock
        self._peers: list[PeerEntry] = []

    def add_peer(self, ip: str, sockfd: int) -> PeerEntry:
        """Register a peer, or refresh its socket and timestamp if known."""
        peer = self.find_by_ip(ip)
        if peer is not None:
            peer.sockfd = sockfd
            peer.last_time_stamp = self._clock()
            return peer
        if len(ip.encode("ascii")) >= IP_LEN:
            raise ValueError(f"peer IP {ip!r} is too long")
        peer = PeerEntry(ip=ip, sockfd=sockfd, last_time_stamp=self._clock())
        self._peers.insert(1 if self._peers else 0, peer)
        return peer

    def find_by_ip(self, ip: str) -> Optional[PeerEntry]:
        return next((p for p in self._peers if p.ip == ip), None)

    def find_by_sockfd(self, sockfd: int) -> Optional[PeerEntry]:
        return next((p for p in self._peers if p.sockfd == sockfd), None)

    def update_alive_timestamp(self, ip: str) -> PeerEntry:
        """Mark a peer as alive now; raise KeyError for an unknown peer."""
        peer = self.find_by_ip(ip)
        if peer is None:
            raise KeyError(ip)
        peer.last_time_stamp = self._clock()
        return peer

    def remove(self, entry: PeerEntry) -> None:
        """Remove this very entry from the table."""
        for index, peer in enumerate(self._peers):
            if peer is entry:
                del self._peers[index]
                return
        raise ValueError(f"peer {entry.ip} is not in the table")

    def format(self) -> str:
        lines = ["/******************tracker peer table**********************/"]
        lines.extend(
            f"peerIP: {p.ip}, sockfd: {p.sockfd}, timestamp: {p.last_time_stamp}"
            for p in self._peers
        )
        return "\n".join(lines) + "\n"

    def __iter__(self) -> Iterator[PeerEntry]:
        return iter(list(self._peers))

    def __len__(self) -> int:
        return len(self._peers)
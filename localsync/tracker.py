"""Tracker: registers peers, merges their file tables and broadcasts the result."""

from __future__ import annotations

import logging
import select
import socket
import threading
from typing import Callable, Optional

from .filetable import MAX_PEER_NUM, FileEntry, FileTable
from .peertable import PeerEntry, PeerTable, current_time
from .seg import (
    P2TSegment,
    P2TType,
    SegmentError,
    T2PSegment,
    receive_p2t_segment,
    send_t2p_segment,
)

TRACKER_HANDSHAKE_PORT = 9613
TRACKER_MONITOR_PORT = 9619
MAX_PENDING = 5
PIECE_LEN = 200
MONITOR_TIME_OUT = 5
PEER_ALIVE_INTERVAL = 60

_ACCEPT_POLL = 0.5

logger = logging.getLogger(__name__)


class Tracker:
    """Central tracker of peers and of the latest version of every file."""

    def __init__(
        self,
        handshake_port: int = TRACKER_HANDSHAKE_PORT,
        monitor_port: int = TRACKER_MONITOR_PORT,
        alive_interval: int = PEER_ALIVE_INTERVAL,
        piece_len: int = PIECE_LEN,
        clock: Callable[[], int] = current_time,
    ) -> None:
        self.handshake_port = handshake_port
        self.monitor_port = monitor_port
        self.alive_interval = alive_interval
        self.piece_len = piece_len
        self.monitor_timeout: float = MONITOR_TIME_OUT
        self.peer_table = PeerTable(clock)
        self.file_table = FileTable()
        self.handshake_address: Optional[tuple] = None
        self.monitor_address: Optional[tuple] = None
        self.listening = threading.Event()
        self._clock = clock
        self._peer_lock = threading.Lock()
        self._file_lock = threading.Lock()
        self._send_lock = threading.Lock()
        self._stopping = threading.Event()
        self._handshake_sock: Optional[socket.socket] = None
        self._monitor_sock: Optional[socket.socket] = None

    def _accept_segment(self) -> T2PSegment:
        return T2PSegment(interval=self.alive_interval, piece_len=self.piece_len)

    def _send(self, sock, segment: T2PSegment) -> None:
        with self._send_lock:
            send_t2p_segment(sock, segment)

    def handle_register(self, sock, segment: P2TSegment) -> PeerEntry:
        """Add the peer to the peer table and answer with interval and piece length."""
        logger.info("received REGISTER from %s", segment.peer_ip)
        with self._peer_lock:
            peer = self.peer_table.add_peer(segment.peer_ip, sock)
        self._send(sock, self._accept_segment())
        return peer

    def handle_filetable_update(self, sock, segment: P2TSegment) -> None:
        """Merge a peer's file table into the tracker's file table."""
        logger.info("received FILE_TABLE_UPDATE from %s", segment.peer_ip)
        with self._peer_lock:
            self.peer_table.update_alive_timestamp(segment.peer_ip)

        with self._file_lock:
            for client_file in segment.file_table:
                self._merge_file(client_file, segment.peer_ip)
            logger.debug("updated file table\n%s", self.file_table.format())

    def _merge_file(self, client_file: FileEntry, sender_ip: str) -> None:
        tracker_file = self.file_table.find_file(client_file.filename)
        if tracker_file is None:
            self.file_table.add_file(
                client_file.filename,
                client_file.file_size,
                client_file.latest_timestamp,
                client_file.peer_ips,
                client_file.status,
                client_file.is_dir,
            )
        elif client_file.latest_timestamp > tracker_file.latest_timestamp:
            logger.info("new timestamp for %s", client_file.filename)
            tracker_file.delta_size = client_file.delta_size
            tracker_file.file_size = client_file.file_size
            tracker_file.is_dir = client_file.is_dir
            tracker_file.latest_timestamp = client_file.latest_timestamp
            tracker_file.status = client_file.status
            tracker_file.prev_timestamp = client_file.prev_timestamp
            tracker_file.peer_ips = list(client_file.peer_ips)
        elif client_file.latest_timestamp == tracker_file.latest_timestamp:
            if sender_ip not in tracker_file.peer_ips and len(tracker_file.peer_ips) < MAX_PEER_NUM:
                tracker_file.peer_ips.append(sender_ip)

    def remove_dead_peers(self) -> list[PeerEntry]:
        """Drop peers not heard from within the alive interval; return them."""
        removed: list[PeerEntry] = []
        with self._peer_lock:
            for peer in self.peer_table:
                if self._clock() - peer.last_time_stamp > self.alive_interval + 1:
                    logger.info("peer %s timed out", peer.ip)
                    with self._file_lock:
                        self.file_table.remove_peer_ip(peer.ip)
                    self.peer_table.remove(peer)
                    removed.append(peer)
        return removed

    def broadcast_filetable(self) -> int:
        """Send the file table to every connected peer; return how many got it."""
        sent = 0
        with self._peer_lock, self._file_lock:
            segment = self._accept_segment()
            segment.file_table = self.file_table
            for peer in self.peer_table:
                if peer.sockfd is None:
                    continue
                try:
                    self._send(peer.sockfd, segment)
                except OSError as exc:
                    logger.warning("cannot send file table to %s: %s", peer.ip, exc)
                    continue
                sent += 1
        return sent

    def handshake(self, sock) -> None:
        """Serve register and file-table requests on one peer connection until it closes."""
        try:
            while True:
                try:
                    segment = receive_p2t_segment(sock)
                except (SegmentError, OSError):
                    break
                try:
                    if segment.type == P2TType.REGISTER:
                        self.handle_register(sock, segment)
                    elif segment.type == P2TType.FILE_TABLE_UPDATE:
                        self.handle_filetable_update(sock, segment)
                    else:
                        logger.warning("unexpected segment type %s", segment.type)
                except (KeyError, ValueError, OSError) as exc:
                    logger.warning("cannot handle segment from %s: %s", segment.peer_ip, exc)
        finally:
            with self._peer_lock:
                peer = self.peer_table.find_by_sockfd(sock)
                if peer is not None:
                    peer.sockfd = None
            sock.close()

    def _open_monitor_socket(self) -> socket.socket:
        if self._monitor_sock is None:
            listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            listener.bind(("", self.monitor_port))
            listener.listen(MAX_PENDING)
            self._monitor_sock = listener
            self.monitor_address = listener.getsockname()
        return self._monitor_sock

    def monitor(self) -> None:
        """Receive heartbeats, drop dead peers and broadcast the file table periodically."""
        listener = self._open_monitor_socket()
        clients: list[socket.socket] = []
        try:
            while not self._stopping.is_set():
                try:
                    readable, _, _ = select.select([listener, *clients], [], [], self.monitor_timeout)
                except (OSError, ValueError):
                    if self._stopping.is_set():
                        break
                    raise
                for sock in readable:
                    if sock is listener:
                        try:
                            conn, addr = listener.accept()
                        except OSError:
                            continue
                        conn.settimeout(None)
                        clients.append(conn)
                        logger.info("monitor connected with %s", addr[0])
                        continue
                    try:
                        segment = receive_p2t_segment(sock)
                    except (SegmentError, OSError):
                        with self._peer_lock:
                            peer = self.peer_table.find_by_sockfd(sock)
                            if peer is not None:
                                peer.sockfd = None
                        clients.remove(sock)
                        sock.close()
                        continue
                    if segment.type == P2TType.ALIVE:
                        with self._peer_lock:
                            try:
                                self.peer_table.update_alive_timestamp(segment.peer_ip)
                            except KeyError:
                                logger.warning("heartbeat from unknown peer %s", segment.peer_ip)
                self.remove_dead_peers()
                self.broadcast_filetable()
        finally:
            for sock in clients:
                sock.close()
            listener.close()

    def serve_forever(self) -> None:
        """Accept peer connections and serve each in its own thread until stopped."""
        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        listener.bind(("", self.handshake_port))
        listener.listen(MAX_PENDING)
        listener.settimeout(_ACCEPT_POLL)
        self._handshake_sock = listener
        self.handshake_address = listener.getsockname()

        self._open_monitor_socket()
        threading.Thread(target=self.monitor, daemon=True).start()
        self.listening.set()

        try:
            while not self._stopping.is_set():
                try:
                    conn, addr = listener.accept()
                except socket.timeout:
                    continue
                except OSError:
                    if self._stopping.is_set():
                        break
                    continue
                conn.settimeout(None)
                logger.info("accepted connection from %s", addr[0])
                threading.Thread(target=self.handshake, args=(conn,), daemon=True).start()
        finally:
            listener.close()

    def stop(self) -> None:
        """Stop serving and close the listening sockets."""
        self._stopping.set()
        for sock in (self._handshake_sock, self._monitor_sock):
            if sock is not None:
                sock.close()
        self.listening.clear()
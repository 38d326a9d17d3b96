"""Exchange of file pieces and deltas between peers."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Union

from .monitor import concat_path
from .seg import (
    DataReqType,
    P2PSegment,
    P2PType,
    receive_p2p_segment,
    send_p2p_segment,
)
from .tasks import DownloadTask, FileType, Piece

PathLike = Union[str, Path]

logger = logging.getLogger(__name__)


def read_piece(path: PathLike, seq_num: int, piece_len: int) -> bytes:
    """Read piece seq_num (counted from 1) of a file cut into piece_len-byte pieces."""
    if seq_num < 1:
        raise ValueError("piece sequence numbers start at 1")
    if piece_len <= 0:
        raise ValueError("piece length must be positive")
    with open(path, "rb") as handle:
        handle.seek((seq_num - 1) * piece_len)
        data = handle.read(piece_len)
    if not data:
        raise ValueError(f"piece {seq_num} lies past the end of {path}")
    return data


def request_delta(sock, task: DownloadTask) -> bytes:
    """Fetch the delta of a task's file over sock and store it in the task.

    On a broken connection the task is released for rescheduling and the
    error is raised again.
    """
    if task.file_type is not FileType.DELTA:
        raise ValueError(f"task for {task.filename} does not download a delta")
    request = P2PSegment(
        type=P2PType.DATA_REQ,
        data_req_type=DataReqType.DELTA_REQ,
        filename=task.filename,
    )
    try:
        send_p2p_segment(sock, request)
        reply = receive_p2p_segment(sock)
    except OSError:
        task.release()
        raise
    with task.lock:
        task.delta_file = reply.data
        task.delta_file_length = len(reply.data)
    return reply.data


def request_pieces(sock, task: DownloadTask, seq_nums: Iterable[int]) -> int:
    """Fetch the given pieces of a task's file over sock; return how many arrived.

    Pieces not fetched because the task was told to stop, or because the
    connection broke, are released for rescheduling; a broken connection
    raises its error again.
    """
    if task.file_type is not FileType.FULL:
        raise ValueError(f"task for {task.filename} does not download a full file")
    seq_nums = list(seq_nums)
    fetched = 0
    for index, seq in enumerate(seq_nums):
        if task.should_stop:
            task.release(seq_nums[index:])
            break
        request = P2PSegment(
            type=P2PType.DATA_REQ,
            data_req_type=DataReqType.FILE_REQ,
            filename=task.filename,
            seq_num=seq,
        )
        try:
            send_p2p_segment(sock, request)
            reply = receive_p2p_segment(sock)
        except OSError:
            task.release(seq_nums[index:])
            raise
        task.add_piece(Piece(seq_num=seq, data=reply.data))
        fetched += 1
    return fetched


def serve_requests(sock, root: str, delta_dir: str, piece_len: int) -> int:
    """Answer piece and delta requests on sock until it closes; return replies sent.

    Requests that cannot be answered, such as for missing files, are skipped.
    """
    served = 0
    while True:
        try:
            request = receive_p2p_segment(sock)
        except OSError:
            return served
        if request.type != P2PType.DATA_REQ:
            continue
        try:
            if request.data_req_type == DataReqType.DELTA_REQ:
                data = Path(concat_path(delta_dir, request.filename)).read_bytes()
                if not data:
                    logger.warning("delta file for %s is empty", request.filename)
                    continue
            elif request.data_req_type == DataReqType.FILE_REQ:
                data = read_piece(
                    concat_path(root, request.filename), request.seq_num, piece_len
                )
            else:
                continue
        except (OSError, ValueError) as exc:
            logger.warning("cannot serve %s: %s", request.filename, exc)
            continue
        reply = P2PSegment(
            type=P2PType.DATA,
            data_req_type=request.data_req_type,
            filename=request.filename,
            seq_num=request.seq_num,
            data=data,
        )
        try:
            send_p2p_segment(sock, reply)
        except OSError as exc:
            logger.warning("cannot send reply for %s: %s", request.filename, exc)
            return served
        served += 1
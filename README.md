# localsync

Building blocks for keeping a directory in step across several machines. A
central **tracker** keeps a combined table of files and the peers that hold
their latest versions. Peers register with it, send heartbeats and report
their own file tables. They fetch files from one another piece by piece, or
fetch a ready-made delta file.

## Installation

```
pip install .
```

The package uses only the standard library.

## Modules

- `localsync.filetable`: `FileTable`, an ordered table of `FileEntry`
  records. Each record holds a name, size, status (`FileStatus`), timestamps,
  delta size, a directory flag and up to 10 peer IPs. `add_file` places a new
  entry right after the first one. `find_file` looks an entry up by name.
  `remove_peer_ip` drops a dead peer from every entry. `format` renders the
  table as text.
- `localsync.peertable`: `PeerTable`, the tracker's record of peers. Each
  peer has an IP, a socket and the time it was last heard from.
  `update_alive_timestamp` raises `KeyError` for an unknown peer.
- `localsync.seg`: the framed wire format. `P2PSegment` carries requests and
  data between peers. `P2TSegment` goes from a peer to the tracker.
  `T2PSegment` goes from the tracker to a peer. Each type has a
  `send_*_segment` and a `receive_*_segment` function that work on a socket.
  Receiving raises `SegmentError` when a connection closes or a frame is
  malformed.
- `localsync.tracker`: `Tracker`. It accepts peer connections on the
  handshake port (default 9613) and heartbeats on the monitor port (default
  9619). It merges file-table updates, where a newer timestamp replaces an
  entry and an equal timestamp adds the sender as a holder. It drops peers not
  heard from within the alive interval plus one second (default interval 60
  seconds). Every few seconds it broadcasts the file table, with the interval
  and the piece length (default 200 bytes).
- `localsync.monitor`: `MonitorConfig` (root, recursive flag and ignored
  directories, read from a config file by `from_file`), path helpers
  (`concat_path`, `file_extension`, `is_editor_temp`), `get_file_info`,
  `copy_file`, `get_my_ip`, and `WatchTable`, a bounded table of watched
  directories.
- `localsync.tasks`: `DownloadTask` and `DownloadList`. A full-file task is
  cut into pieces numbered from 1. `assign_pieces` shares the waiting pieces
  evenly among the peers holding the file. `release` puts unfinished pieces
  back, and `assemble` joins the pieces into the file. Adding a task with a
  newer timestamp replaces the old task for that file.
- `localsync.transfer`: `read_piece`, `request_delta`, `request_pieces` and
  `serve_requests`. These exchange pieces and delta files over a connected
  socket.

## Config file format

`MonitorConfig.from_file` reads whitespace-separated fields:

1. The absolute path of the root directory, ending in `/`.
2. `1` to include subdirectories, `0` otherwise.
3. Optional further entries: directories to skip, relative to the root and
   ending in `/`.

`.backup/` and `.delta/` are always added to the skipped directories.

```
/home/user/shared/
1
build/
```

## Examples

A file table sent from the tracker to a peer:

```python
import socket

from localsync.filetable import FileTable
from localsync.seg import T2PSegment, receive_t2p_segment, send_t2p_segment

table = FileTable()
table.add_file("notes.txt", 120, 1700000000, ["10.0.0.5"])

left, right = socket.socketpair()
send_t2p_segment(left, T2PSegment(interval=60, piece_len=200, file_table=table))
received = receive_t2p_segment(right)
assert received.file_table.find_file("notes.txt").peer_ips == ["10.0.0.5"]
```

Running a tracker:

```python
import threading

from localsync.tracker import Tracker

tracker = Tracker()
threading.Thread(target=tracker.serve_forever, daemon=True).start()
tracker.listening.wait()
# ... later
tracker.stop()
```

## What is not included

- There is no command-line program. The tracker is started from Python as
  shown above.
- There is no complete peer. Nothing watches a directory and reacts to
  changes, and nothing ties registration, heartbeats and downloads together
  into a running peer. The pieces for it are in `monitor`, `tasks` and
  `transfer`.
- Deltas are not computed or applied. `transfer` serves and fetches delta
  files that already exist in the delta directory, but the package cannot
  create them or rebuild a file from one.

## Tests

```
pip install .[test]
pytest
```
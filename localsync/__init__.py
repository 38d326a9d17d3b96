"""File tables, wire segments, a tracker and peer transfer helpers for directory synchronisation."""

__version__ = "0.1.0"

__all__ = [
    "filetable",
    "monitor",
    "peertable",
    "seg",
    "tasks",
    "tracker",
    "transfer",
]
"""
SQLite connection helper shared by the relational store and the job queue.

Both are opened once per process and shared by the worker threads, so the
underlying connection is created with ``check_same_thread=False``; callers
serialise access with their own lock.  WAL mode plus a busy timeout lets
several worker processes share the same files.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

import sqlite_utils

_BUSY_TIMEOUT_SECONDS = 10.0


def open_database(path: Path) -> sqlite_utils.Database:
    in_memory = str(path) == ":memory:"
    if not in_memory:
        path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(
        str(path), check_same_thread=False, timeout=_BUSY_TIMEOUT_SECONDS
    )
    db = sqlite_utils.Database(conn)
    if not in_memory:
        db.enable_wal()
    return db

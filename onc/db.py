from __future__ import annotations

import os
import sqlite3
from datetime import datetime
from typing import Any

from .settings import settings


LEVELS = {"DEBUG", "INFO", "WARN", "ERROR"}

_db_path_override: str | None = None


def utc_now() -> str:
    return datetime.utcnow().strftime("%Y-%m-%dT%H:%M:%SZ")


def set_db_path(path: str | None) -> None:
    """Point the journal at another file (None restores the configured path)."""
    global _db_path_override
    _db_path_override = path


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    The agent usually runs in a container with the journal bind-mounted. If the
    mount target did not exist Docker creates a *directory* there, so in that
    case the DB file is placed inside it.
    """

    p = os.path.abspath(_db_path_override or settings.db_path)

    if os.path.isdir(p):
        p = os.path.join(p, "onc.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect() -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path(), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    """Create tables if they do not exist."""
    with connect() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              container_id TEXT,
              message TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            """
        )


def log_event(level: str, message: str, container_id: str | None = None) -> None:
    level = level.upper()
    if level not in LEVELS:
        raise ValueError(f"Unknown event level: {level}")
    if level == "DEBUG" and not settings.debug:
        return
    with connect() as conn:
        conn.execute(
            "INSERT INTO events (ts, level, container_id, message) VALUES (?, ?, ?, ?)",
            (utc_now(), level, container_id, message),
        )


def latest_events(limit: int = 100, level: str | None = None) -> list[dict[str, Any]]:
    with connect() as conn:
        if level:
            rows = conn.execute(
                "SELECT * FROM events WHERE level=? ORDER BY id DESC LIMIT ?", (level.upper(), limit)
            ).fetchall()
        else:
            rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]

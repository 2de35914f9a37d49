"""SQLite database connection manager."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

logger = logging.getLogger(__name__)

MEMORY = ":memory:"

# SQLite builds before 3.32 cap bound parameters at 999
IN_CHUNK_SIZE = 900


class Database:
    """SQLite handle shared by the gateway, the CLI and the sweeper.

    File databases run in WAL mode with a 5s busy timeout.
    ``":memory:"`` is passed through untouched.
    """

    def __init__(self, path: str | Path):
        if str(path) == MEMORY:
            self.path = Path(MEMORY)
        else:
            self.path = Path(path).expanduser().resolve()
        self._conn: sqlite3.Connection | None = None

    @property
    def is_memory(self) -> bool:
        return str(self.path) == MEMORY

    def _ensure_dir(self) -> None:
        if not self.is_memory:
            self.path.parent.mkdir(parents=True, exist_ok=True)

    def connect(self) -> sqlite3.Connection:
        """Open the database connection with optimal settings."""
        if self._conn is not None:
            return self._conn

        self._ensure_dir()
        self._conn = sqlite3.connect(str(self.path))
        self._conn.row_factory = sqlite3.Row
        if not self.is_memory:
            self._conn.execute("PRAGMA journal_mode = WAL")
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._conn.execute("PRAGMA busy_timeout = 5000")
        logger.debug("Connected to database: %s", self.path)
        return self._conn

    @property
    def conn(self) -> sqlite3.Connection:
        return self.connect()

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.debug("Closed database connection")

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Cursor, None, None]:
        """Context manager for a database transaction."""
        conn = self.connect()
        cursor = conn.cursor()
        try:
            yield cursor
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        """Execute a single SQL statement."""
        return self.conn.execute(sql, params)

    def executescript(self, sql: str) -> None:
        """Execute a multi-statement SQL script."""
        self.conn.executescript(sql)

    def execute_in(
        self,
        sql: str,
        ids: list[str],
        params: tuple = (),
        chunk_size: int = IN_CHUNK_SIZE,
    ) -> int:
        """Run ``sql`` once per chunk of ``ids`` and return the total rowcount.

        ``sql`` carries one ``{ids}`` placeholder that expands to ``?, ?, ...``;
        ``params`` are bound after the ids.  Not committed here.
        """
        total = 0
        for start in range(0, len(ids), chunk_size):
            chunk = ids[start:start + chunk_size]
            placeholders = ", ".join("?" * len(chunk))
            cursor = self.conn.execute(
                sql.format(ids=placeholders), tuple(chunk) + tuple(params)
            )
            total += max(cursor.rowcount, 0)
        return total

    def fetchone(self, sql: str, params: tuple = ()) -> sqlite3.Row | None:
        """Execute and fetch one result."""
        return self.conn.execute(sql, params).fetchone()

    def fetchall(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        """Execute and fetch all results."""
        return self.conn.execute(sql, params).fetchall()

    def schema_version(self) -> int:
        """Get the current schema version. Returns 0 if no schema exists."""
        try:
            row = self.fetchone(
                "SELECT MAX(version) as v FROM _schema_version"
            )
            return row["v"] if row and row["v"] is not None else 0
        except sqlite3.OperationalError:
            return 0

    def __enter__(self) -> "Database":
        self.connect()
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"Database({self.path})"

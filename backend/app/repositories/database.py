from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

LINKS_TABLE = "links"

_CREATE_STATEMENTS: tuple[str, ...] = (
    f"""
    CREATE TABLE IF NOT EXISTS {LINKS_TABLE} (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        list_id INTEGER NOT NULL,
        url TEXT NOT NULL,
        title TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        image TEXT NULL,
        position INTEGER NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    f"CREATE INDEX IF NOT EXISTS idx_links_list_position ON {LINKS_TABLE}(list_id, position)",
    f"CREATE INDEX IF NOT EXISTS idx_links_list_created ON {LINKS_TABLE}(list_id, created_at)",
)

# Columns added after the first release: (column, ALTER clause, backfill statement or None).
_ADDED_COLUMNS: tuple[tuple[str, str, str | None], ...] = (
    ("image", "image TEXT NULL", None),
    (
        "updated_at",
        "updated_at TEXT NOT NULL DEFAULT ''",
        f"UPDATE {LINKS_TABLE} SET updated_at = created_at WHERE updated_at = ''",
    ),
)


class Database:
    """Thin wrapper around one SQLite file; every `connection()` block is one transaction."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = self._open()
        try:
            yield conn
        except BaseException:
            conn.rollback()
            raise
        else:
            conn.commit()
        finally:
            conn.close()

    def initialize(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self.connection() as conn:
            for statement in _CREATE_STATEMENTS:
                conn.execute(statement)
            _add_missing_columns(conn)

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, timeout=10.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn


def _add_missing_columns(conn: sqlite3.Connection) -> None:
    present = {str(row["name"]) for row in conn.execute(f"PRAGMA table_info({LINKS_TABLE})")}
    for column, definition, backfill in _ADDED_COLUMNS:
        if column in present:
            continue
        conn.execute(f"ALTER TABLE {LINKS_TABLE} ADD COLUMN {definition}")
        if backfill is not None:
            conn.execute(backfill)

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from sqlite3 import Connection, Row
from typing import Protocol

from backend.app.repositories.common import parse_iso_datetime, utc_now_iso
from backend.app.repositories.database import Database

_ORDER_BY_MANUAL_POSITION = "ORDER BY position IS NULL, position ASC, created_at ASC, id ASC"


@dataclass(frozen=True)
class LinkRecord:
    link_id: int
    list_id: int
    url: str
    title: str
    description: str
    image: str | None
    position: int | None
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class PositionAssignment:
    link_id: int
    position: int


class StaleLinkBatchError(RuntimeError):
    """A batch write referenced a link that is no longer part of the list."""

    def __init__(self, *, list_id: int, link_id: int) -> None:
        super().__init__(f"link {link_id} is not part of list {list_id}")
        self.list_id = list_id
        self.link_id = link_id


class LinkStore(Protocol):
    def get(self, link_id: int) -> LinkRecord | None:
        ...

    def insert(
        self,
        *,
        list_id: int,
        url: str,
        title: str,
        description: str,
        image: str | None,
    ) -> LinkRecord:
        ...

    def update_metadata(
        self,
        *,
        link_id: int,
        url: str,
        title: str,
        description: str,
        image: str | None,
    ) -> LinkRecord | None:
        ...

    def update_position(self, *, link_id: int, position: int) -> bool:
        ...

    def apply_positions(
        self,
        *,
        list_id: int,
        assignments: Sequence[PositionAssignment],
    ) -> None:
        ...

    def delete(self, link_id: int) -> LinkRecord | None:
        ...

    def list_links(self, list_id: int) -> list[LinkRecord]:
        ...


class LinkRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def get(self, link_id: int) -> LinkRecord | None:
        with self._db.connection() as conn:
            return _get_link_with_conn(conn, link_id)

    def insert(
        self,
        *,
        list_id: int,
        url: str,
        title: str,
        description: str,
        image: str | None,
    ) -> LinkRecord:
        now_iso = utc_now_iso()
        with self._db.connection() as conn:
            next_position = _next_position_with_conn(conn, list_id)
            cursor = conn.execute(
                """
                INSERT INTO links (
                    list_id, url, title, description, image, position, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (list_id, url, title, description, image, next_position, now_iso, now_iso),
            )
            link_id = cursor.lastrowid
            created = _get_link_with_conn(conn, int(link_id)) if link_id is not None else None
        if created is None:
            raise RuntimeError("Link was not found after insert")
        return created

    def update_metadata(
        self,
        *,
        link_id: int,
        url: str,
        title: str,
        description: str,
        image: str | None,
    ) -> LinkRecord | None:
        with self._db.connection() as conn:
            cursor = conn.execute(
                """
                UPDATE links
                SET url = ?, title = ?, description = ?, image = ?, updated_at = ?
                WHERE id = ?
                """,
                (url, title, description, image, utc_now_iso(), link_id),
            )
            if cursor.rowcount == 0:
                return None
            return _get_link_with_conn(conn, link_id)

    def update_position(self, *, link_id: int, position: int) -> bool:
        with self._db.connection() as conn:
            cursor = conn.execute(
                "UPDATE links SET position = ?, updated_at = ? WHERE id = ?",
                (position, utc_now_iso(), link_id),
            )
            return cursor.rowcount > 0

    def apply_positions(
        self,
        *,
        list_id: int,
        assignments: Sequence[PositionAssignment],
    ) -> None:
        """Write every assignment in one transaction; any miss rolls the batch back."""
        now_iso = utc_now_iso()
        with self._db.connection() as conn:
            for assignment in assignments:
                cursor = conn.execute(
                    """
                    UPDATE links
                    SET position = ?, updated_at = ?
                    WHERE id = ? AND list_id = ?
                    """,
                    (assignment.position, now_iso, assignment.link_id, list_id),
                )
                if cursor.rowcount != 1:
                    raise StaleLinkBatchError(list_id=list_id, link_id=assignment.link_id)

    def delete(self, link_id: int) -> LinkRecord | None:
        with self._db.connection() as conn:
            existing = _get_link_with_conn(conn, link_id)
            if existing is None:
                return None
            conn.execute("DELETE FROM links WHERE id = ?", (link_id,))
            _compact_positions_with_conn(conn, existing.list_id)
        return existing

    def compact_positions(self, list_id: int) -> int:
        with self._db.connection() as conn:
            return _compact_positions_with_conn(conn, list_id)

    def list_links(self, list_id: int) -> list[LinkRecord]:
        with self._db.connection() as conn:
            rows = conn.execute(
                f"""
                SELECT *
                FROM links
                WHERE list_id = ?
                {_ORDER_BY_MANUAL_POSITION}
                """,
                (list_id,),
            ).fetchall()
        return [_row_to_link(row) for row in rows]


def _get_link_with_conn(conn: Connection, link_id: int) -> LinkRecord | None:
    row = conn.execute(
        """
        SELECT *
        FROM links
        WHERE id = ?
        LIMIT 1
        """,
        (link_id,),
    ).fetchone()
    if row is None:
        return None
    return _row_to_link(row)


def _next_position_with_conn(conn: Connection, list_id: int) -> int:
    row = conn.execute(
        "SELECT COALESCE(MAX(position), 0) AS max_position FROM links WHERE list_id = ?",
        (list_id,),
    ).fetchone()
    return int(row["max_position"]) + 1


def _compact_positions_with_conn(conn: Connection, list_id: int) -> int:
    rows = conn.execute(
        f"""
        SELECT id, position
        FROM links
        WHERE list_id = ?
        {_ORDER_BY_MANUAL_POSITION}
        """,
        (list_id,),
    ).fetchall()
    now_iso = utc_now_iso()
    changed = 0
    for index, row in enumerate(rows):
        target = index + 1
        if row["position"] == target:
            continue
        conn.execute(
            "UPDATE links SET position = ?, updated_at = ? WHERE id = ?",
            (target, now_iso, int(row["id"])),
        )
        changed += 1
    return changed


def _row_to_link(row: Row) -> LinkRecord:
    position = row["position"]
    image = row["image"]
    return LinkRecord(
        link_id=int(row["id"]),
        list_id=int(row["list_id"]),
        url=str(row["url"]),
        title=str(row["title"]),
        description=str(row["description"] or ""),
        image=str(image) if image else None,
        position=int(position) if position is not None else None,
        created_at=parse_iso_datetime(row["created_at"]),
        updated_at=parse_iso_datetime(row["updated_at"] or row["created_at"]),
    )

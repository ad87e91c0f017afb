"""
Revision entries and their per-section ladder items.

Functions taking a cursor run inside the caller's transaction so that one
scheduler pass for a user is written atomically.
"""
import datetime
from typing import Any

from database.connection import Database
from utils.time_utils import format_ts, utc_now


def _now() -> str:
    return format_ts(utc_now())


def expire_overdue(cursor, user_id: int, today: datetime.date) -> int:
    cursor.execute(
        """
        UPDATE revision_items SET status = 'expired'
        WHERE user_id = ? AND status = 'pending' AND scheduled_date < ?
        """,
        (user_id, today.isoformat()),
    )
    expired = int(getattr(cursor, "rowcount", 0) or 0)
    cursor.execute(
        """
        UPDATE revision_entries SET status = 'expired', updated_at = ?
        WHERE user_id = ? AND status = 'pending' AND scheduled_date < ?
        """,
        (_now(), user_id, today.isoformat()),
    )
    return expired


def get_pending_items(cursor, user_id: int) -> dict[str, dict[str, Any]]:
    cursor.execute(
        "SELECT * FROM revision_items WHERE user_id = ? AND status = 'pending'",
        (user_id,),
    )
    return {str(row["section_id"]): dict(row) for row in cursor.fetchall()}


def get_latest_item(cursor, user_id: int, section_id: str) -> dict[str, Any] | None:
    cursor.execute(
        """
        SELECT * FROM revision_items
        WHERE user_id = ? AND section_id = ?
        ORDER BY ladder_cycle DESC, interval_index DESC, id DESC
        LIMIT 1
        """,
        (user_id, section_id),
    )
    row = cursor.fetchone()
    return dict(row) if row else None


def get_cycle_items(cursor, user_id: int, section_id: str, ladder_cycle: int) -> list[dict[str, Any]]:
    cursor.execute(
        """
        SELECT interval_index, scheduled_date FROM revision_items
        WHERE user_id = ? AND section_id = ? AND ladder_cycle = ?
        ORDER BY interval_index ASC
        """,
        (user_id, section_id, ladder_cycle),
    )
    return [dict(row) for row in cursor.fetchall()]


def count_open_slots(cursor, user_id: int, scheduled_date: datetime.date) -> tuple[int | None, int]:
    """Returns (entry_id, pending_item_count) of the pending entry on that date, if any."""
    cursor.execute(
        """
        SELECT e.id, COUNT(i.id) AS cnt
        FROM revision_entries e
        LEFT JOIN revision_items i ON i.entry_id = e.id AND i.status = 'pending'
        WHERE e.user_id = ? AND e.status = 'pending' AND e.scheduled_date = ?
        GROUP BY e.id
        ORDER BY cnt ASC, e.id ASC
        LIMIT 1
        """,
        (user_id, scheduled_date.isoformat()),
    )
    row = cursor.fetchone()
    if not row:
        return None, 0
    return int(row[0]), int(row[1] or 0)


def create_entry(db: Database, cursor, user_id: int, scheduled_date: datetime.date) -> int:
    now = _now()
    return db.insert_returning_id(
        cursor,
        """
        INSERT INTO revision_entries (user_id, scheduled_date, status, created_at, updated_at)
        VALUES (?, ?, 'pending', ?, ?)
        """,
        (user_id, scheduled_date.isoformat(), now, now),
    )


def add_item(
    db: Database,
    cursor,
    entry_id: int,
    user_id: int,
    section_id: str,
    interval_index: int,
    ladder_cycle: int,
    scheduled_date: datetime.date,
) -> int:
    return db.insert_returning_id(
        cursor,
        """
        INSERT INTO revision_items (entry_id, user_id, section_id, interval_index, ladder_cycle, scheduled_date, status)
        VALUES (?, ?, ?, ?, ?, ?, 'pending')
        """,
        (entry_id, user_id, section_id, interval_index, ladder_cycle, scheduled_date.isoformat()),
    )


def get_entry(cursor, user_id: int, entry_id: int) -> dict[str, Any] | None:
    cursor.execute(
        "SELECT * FROM revision_entries WHERE id = ? AND user_id = ?",
        (entry_id, user_id),
    )
    row = cursor.fetchone()
    if not row:
        return None
    entry = dict(row)
    cursor.execute(
        "SELECT * FROM revision_items WHERE entry_id = ? ORDER BY section_id ASC",
        (entry_id,),
    )
    entry["items"] = [dict(r) for r in cursor.fetchall()]
    return entry


def close_entry(cursor, entry_id: int, status: str):
    """Moves the entry and its still-pending items to a terminal status."""
    cursor.execute(
        "UPDATE revision_items SET status = ? WHERE entry_id = ? AND status = 'pending'",
        (status, entry_id),
    )
    cursor.execute(
        "UPDATE revision_entries SET status = ?, updated_at = ? WHERE id = ?",
        (status, _now(), entry_id),
    )


def expire_section_items(cursor, user_id: int, section_id: str) -> int:
    cursor.execute(
        """
        UPDATE revision_items SET status = 'expired'
        WHERE user_id = ? AND section_id = ? AND status = 'pending'
        """,
        (user_id, section_id),
    )
    expired = int(getattr(cursor, "rowcount", 0) or 0)
    # Entries left without any pending section are expired as a whole.
    cursor.execute(
        """
        UPDATE revision_entries SET status = 'expired', updated_at = ?
        WHERE user_id = ? AND status = 'pending'
          AND NOT EXISTS (
              SELECT 1 FROM revision_items i
              WHERE i.entry_id = revision_entries.id AND i.status = 'pending'
          )
        """,
        (_now(), user_id),
    )
    return expired


def list_entries(db: Database, user_id: int, statuses: tuple[str, ...] | None = None) -> list[dict[str, Any]]:
    query = "SELECT * FROM revision_entries WHERE user_id = ?"
    params: list[Any] = [user_id]
    if statuses:
        query += " AND status IN (" + ", ".join("?" for _ in statuses) + ")"
        params.extend(statuses)
    query += " ORDER BY scheduled_date ASC, id ASC"
    with db.connection() as conn:
        cursor = conn.cursor()
        cursor.execute(query, params)
        entries = [dict(row) for row in cursor.fetchall()]
        if not entries:
            return []
        ids = [e["id"] for e in entries]
        cursor.execute(
            "SELECT * FROM revision_items WHERE entry_id IN (" + ", ".join("?" for _ in ids) + ") ORDER BY section_id ASC",
            ids,
        )
        items_by_entry: dict[int, list[dict[str, Any]]] = {}
        for row in cursor.fetchall():
            items_by_entry.setdefault(int(row["entry_id"]), []).append(dict(row))
    for entry in entries:
        entry["items"] = items_by_entry.get(int(entry["id"]), [])
    return entries

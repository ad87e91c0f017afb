from typing import Any, Iterable

from database.connection import Database
from utils.time_utils import format_ts, utc_now


def get_section_states(db: Database, user_id: int) -> dict[str, dict[str, Any]]:
    with db.connection() as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM weak_sections WHERE user_id = ?", (user_id,))
        rows = cursor.fetchall()
    return {str(row["section_id"]): dict(row) for row in rows}


def get_weak_sections(db: Database, user_id: int, include_recovered: bool = False) -> list[dict[str, Any]]:
    query = "SELECT * FROM weak_sections WHERE user_id = ?"
    params: list[Any] = [user_id]
    if not include_recovered:
        query += " AND status = 'weak'"
    query += " ORDER BY accuracy ASC, section_id ASC"
    with db.connection() as conn:
        cursor = conn.cursor()
        cursor.execute(query, params)
        return [dict(row) for row in cursor.fetchall()]


def upsert_sections(db: Database, user_id: int, rows: Iterable[dict[str, Any]]) -> int:
    """
    Idempotent upsert keyed by (user_id, section_id).
    identified_at is set when a section (re)enters the weak state.
    """
    now = format_ts(utc_now())
    written = 0
    with db.transaction() as cursor:
        for item in rows:
            identified_at = now if item.get("became_weak") else None
            cursor.execute("""
                INSERT INTO weak_sections (
                    user_id, section_id, accuracy, sample_count, status, weakness_level,
                    identified_at, last_updated
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id, section_id) DO UPDATE SET
                    accuracy = excluded.accuracy,
                    sample_count = excluded.sample_count,
                    status = excluded.status,
                    weakness_level = excluded.weakness_level,
                    identified_at = COALESCE(excluded.identified_at, weak_sections.identified_at),
                    last_updated = excluded.last_updated
            """, (
                user_id,
                str(item["section_id"]),
                float(item["accuracy"]),
                int(item["sample_count"]),
                item["status"],
                item.get("weakness_level"),
                identified_at,
                now,
            ))
            written += 1
    return written

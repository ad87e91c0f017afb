import datetime
from typing import Any

from database.connection import Database
from utils.time_utils import format_ts, to_utc_date, utc_now


def save_streak_snapshot(
    db: Database,
    user_id: int,
    current_streak: int,
    longest_streak: int,
    last_practice_date: datetime.date | None,
    total_active_days: int,
):
    last = last_practice_date.isoformat() if last_practice_date else None
    with db.transaction() as cursor:
        cursor.execute("""
            INSERT INTO user_streak (user_id, current_streak, highest_streak, last_activity, total_active_days, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                current_streak = excluded.current_streak,
                highest_streak = excluded.highest_streak,
                last_activity = excluded.last_activity,
                total_active_days = excluded.total_active_days,
                updated_at = excluded.updated_at
        """, (user_id, current_streak, longest_streak, last, total_active_days, format_ts(utc_now())))


def get_streak_snapshot(db: Database, user_id: int) -> dict[str, Any] | None:
    with db.connection() as conn:
        cursor = conn.cursor()
        cursor.execute(
            "SELECT current_streak, highest_streak, last_activity, total_active_days FROM user_streak WHERE user_id = ?",
            (user_id,),
        )
        row = cursor.fetchone()
    if not row:
        return None
    return {
        "current_streak": int(row[0] or 0),
        "highest_streak": int(row[1] or 0),
        "last_activity": to_utc_date(row[2]),
        "total_active_days": int(row[3] or 0),
    }

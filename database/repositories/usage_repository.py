from core.errors import InvariantViolation
from database.connection import Database
from utils.time_utils import format_ts, utc_now


def get_consumed(db: Database, user_id: int, resource_kind: str, period_key: str) -> int:
    with db.connection() as conn:
        cursor = conn.cursor()
        cursor.execute(
            """
            SELECT consumed_count FROM usage_counters
            WHERE user_id = ? AND resource_kind = ? AND period_key = ?
            """,
            (user_id, resource_kind, period_key),
        )
        row = cursor.fetchone()
    consumed = int(row[0]) if row else 0
    if consumed < 0:
        raise InvariantViolation(
            f"negative usage count {consumed} for user={user_id} kind={resource_kind} period={period_key}"
        )
    return consumed


def try_increment(db: Database, user_id: int, resource_kind: str, period_key: str, cap: int, amount: int = 1) -> bool:
    """
    Increment-if-under-cap as one conditional upsert.
    Returns False when the increment would push the counter past the cap.
    """
    if amount < 1:
        raise InvariantViolation(f"usage increment must be positive, got {amount}")
    if amount > cap:
        return False
    with db.transaction() as cursor:
        cursor.execute(
            """
            INSERT INTO usage_counters (user_id, resource_kind, period_key, consumed_count, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(user_id, resource_kind, period_key) DO UPDATE SET
                consumed_count = usage_counters.consumed_count + excluded.consumed_count,
                updated_at = excluded.updated_at
            WHERE usage_counters.consumed_count + excluded.consumed_count <= ?
            """,
            (user_id, resource_kind, period_key, amount, format_ts(utc_now()), cap),
        )
        return int(getattr(cursor, "rowcount", 0) or 0) > 0

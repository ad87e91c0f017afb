import datetime

from database.connection import Database
from utils.time_utils import format_ts, to_utc_datetime, utc_now


def is_unlimited(db: Database, user_id: int, now: datetime.datetime | None = None) -> bool:
    """Reads the entitlement written by billing. No row or a lapsed row means metered."""
    with db.connection() as conn:
        cursor = conn.cursor()
        cursor.execute(
            "SELECT is_unlimited, valid_until FROM user_entitlements WHERE user_id = ?",
            (user_id,),
        )
        row = cursor.fetchone()
    if not row or not int(row[0] or 0):
        return False
    valid_until = to_utc_datetime(row[1])
    if valid_until is None:
        return True
    return valid_until > to_utc_datetime(now or utc_now())


def set_entitlement(db: Database, user_id: int, unlimited: bool, valid_until: datetime.datetime | None = None):
    valid = format_ts(valid_until) if valid_until else None
    with db.transaction() as cursor:
        cursor.execute("""
            INSERT INTO user_entitlements (user_id, is_unlimited, valid_until)
            VALUES (?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                is_unlimited = excluded.is_unlimited,
                valid_until = excluded.valid_until
        """, (user_id, 1 if unlimited else 0, valid))

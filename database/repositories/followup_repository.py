import datetime
import logging
from typing import Any

from database.connection import Database
from utils.time_utils import format_ts, utc_now


def _ts(now: datetime.datetime | None = None) -> str:
    return format_ts(now or utc_now())


def _task_from_row(row) -> dict[str, Any]:
    return {
        "id": int(row["id"]),
        "user_id": int(row["user_id"]),
        "attempt_id": int(row["attempt_id"]) if row["attempt_id"] is not None else None,
        "kind": str(row["kind"]),
        "attempts": int(row["attempts"] or 0),
    }


def _dedupe_key(user_id: int, attempt_id: int | None, kind: str) -> str:
    return f"{kind}:{attempt_id if attempt_id is not None else 'user-' + str(user_id)}"


def add_followup(cursor, user_id: int, attempt_id: int | None, kind: str = "analyze") -> bool:
    """Inserts the task on the caller's transaction so it commits with the caller's writes."""
    now = _ts()
    cursor.execute(
        """
        INSERT INTO followup_tasks (
            user_id, attempt_id, kind, status, attempts, dedupe_key, available_at, created_at, updated_at
        )
        VALUES (?, ?, ?, 'pending', 0, ?, ?, ?, ?)
        ON CONFLICT(dedupe_key) DO NOTHING
        """,
        (user_id, attempt_id, kind, _dedupe_key(user_id, attempt_id, kind), now, now, now),
    )
    return int(getattr(cursor, "rowcount", 0) or 0) > 0


def enqueue_followup(db: Database, user_id: int, attempt_id: int | None, kind: str = "analyze") -> bool:
    """Queues one follow-up per (kind, attempt). Re-delivery of the same attempt is a no-op."""
    with db.transaction() as cursor:
        return add_followup(cursor, user_id, attempt_id, kind)


def claim_pending(
    db: Database,
    user_id: int | None = None,
    limit: int = 50,
    now: datetime.datetime | None = None,
) -> list[dict[str, Any]]:
    now_ts = _ts(now)
    batch_limit = max(1, limit)
    user_filter = " AND user_id = ?" if user_id is not None else ""
    params: list[Any] = [now_ts]
    if user_id is not None:
        params.append(user_id)
    params.append(batch_limit)

    claimed: list[dict[str, Any]] = []
    with db.transaction() as cursor:
        if db.is_postgres:
            cursor.execute(
                f"""
                WITH to_claim AS (
                    SELECT id
                    FROM followup_tasks
                    WHERE status = 'pending' AND available_at <= ?{user_filter}
                    ORDER BY id ASC
                    LIMIT ?
                    FOR UPDATE SKIP LOCKED
                )
                UPDATE followup_tasks ft
                SET status = 'processing', locked_at = ?, updated_at = ?
                FROM to_claim tc
                WHERE ft.id = tc.id
                RETURNING ft.id, ft.user_id, ft.attempt_id, ft.kind, ft.attempts
                """,
                (*params, now_ts, now_ts),
            )
            claimed = [_task_from_row(row) for row in cursor.fetchall()]
        else:
            cursor.execute(
                f"""
                SELECT id, user_id, attempt_id, kind, attempts
                FROM followup_tasks
                WHERE status = 'pending' AND available_at <= ?{user_filter}
                ORDER BY id ASC
                LIMIT ?
                """,
                params,
            )
            for row in cursor.fetchall():
                cursor.execute(
                    """
                    UPDATE followup_tasks
                    SET status = 'processing', locked_at = ?, updated_at = ?
                    WHERE id = ? AND status = 'pending'
                    """,
                    (now_ts, now_ts, int(row["id"])),
                )
                if int(getattr(cursor, "rowcount", 0) or 0) > 0:
                    claimed.append(_task_from_row(row))
    return claimed


def recover_stale_processing(db: Database, stale_seconds: int = 900, now: datetime.datetime | None = None) -> int:
    """Puts tasks whose worker died mid-flight back to pending."""
    current = now or utc_now()
    cutoff = _ts(current - datetime.timedelta(seconds=max(30, stale_seconds)))
    with db.transaction() as cursor:
        cursor.execute(
            """
            UPDATE followup_tasks
            SET status = 'pending', locked_at = NULL, available_at = ?, updated_at = ?
            WHERE status = 'processing' AND locked_at IS NOT NULL AND locked_at < ?
            """,
            (_ts(current), _ts(current), cutoff),
        )
        recovered = int(getattr(cursor, "rowcount", 0) or 0)
    if recovered:
        logging.warning("Recovered %s stale follow-up tasks", recovered)
    return recovered


def mark_done(db: Database, task_id: int):
    with db.transaction() as cursor:
        cursor.execute(
            "UPDATE followup_tasks SET status = 'done', locked_at = NULL, updated_at = ? WHERE id = ?",
            (_ts(), task_id),
        )


def reschedule(
    db: Database,
    task_id: int,
    attempts_done: int,
    error_msg: str,
    delay_seconds: int,
    max_attempts: int,
    now: datetime.datetime | None = None,
) -> str:
    current = now or utc_now()
    next_at = _ts(current + datetime.timedelta(seconds=max(1, delay_seconds)))
    next_attempts = attempts_done + 1
    status = "failed" if next_attempts >= max_attempts else "pending"
    with db.transaction() as cursor:
        cursor.execute(
            """
            UPDATE followup_tasks
            SET status = ?, attempts = ?, last_error = ?, available_at = ?, locked_at = NULL, updated_at = ?
            WHERE id = ?
            """,
            (status, next_attempts, error_msg[:500], next_at, _ts(current), task_id),
        )
    return status


def get_queue_counts(db: Database, user_id: int | None = None) -> dict[str, int]:
    result = {"pending": 0, "processing": 0, "done": 0, "failed": 0}
    query = "SELECT status, COUNT(*) AS cnt FROM followup_tasks"
    params: tuple[Any, ...] = ()
    if user_id is not None:
        query += " WHERE user_id = ?"
        params = (user_id,)
    query += " GROUP BY status"
    with db.connection() as conn:
        cursor = conn.cursor()
        cursor.execute(query, params)
        for row in cursor.fetchall():
            result[str(row["status"])] = int(row["cnt"])
    return result

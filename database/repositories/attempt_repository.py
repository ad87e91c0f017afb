"""
Attempt ledger access.

The ledger is owned by the test-taking flow: attempts are created at session
start and mutated exactly once at submission. The adaptive engine itself
only reads from it.
"""
import datetime
import logging
from typing import Any, Iterable

from core.errors import InvariantViolation, NotFound
from database.connection import Database
from database.repositories import followup_repository
from utils.time_utils import format_ts, utc_now


def start_attempt(
    db: Database,
    user_id: int,
    session_id: str | None = None,
    test_type: str = "practice",
    total_questions: int = 0,
    started_at: datetime.datetime | None = None,
) -> int:
    with db.transaction() as cursor:
        return db.insert_returning_id(
            cursor,
            """
            INSERT INTO attempts (user_id, session_id, test_type, status, started_at, total_questions)
            VALUES (?, ?, ?, 'in_progress', ?, ?)
            """,
            (user_id, session_id, test_type, format_ts(started_at or utc_now()), total_questions),
        )


def get_attempt(db: Database, attempt_id: int) -> dict[str, Any] | None:
    with db.connection() as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM attempts WHERE id = ?", (attempt_id,))
        row = cursor.fetchone()
    return dict(row) if row else None


def submit_attempt(
    db: Database,
    attempt_id: int,
    answers: Iterable[dict[str, Any]],
    submitted_at: datetime.datetime | None = None,
    time_spent_seconds: int | None = None,
    followup_kind: str | None = None,
) -> dict[str, Any]:
    """
    Writes the answers in bulk and closes the attempt.
    Each answer dict carries section_id, is_correct and optionally
    question_id, difficulty, time_spent_seconds. With `followup_kind` the
    follow-up task is queued in the same transaction as the answers.
    """
    answers = list(answers)
    submitted_ts = format_ts(submitted_at or utc_now())
    correct = sum(1 for a in answers if a.get("is_correct"))
    spent = time_spent_seconds
    if spent is None:
        spent = sum(int(a.get("time_spent_seconds") or 0) for a in answers)

    with db.transaction() as cursor:
        cursor.execute("SELECT user_id, status, total_questions FROM attempts WHERE id = ?", (attempt_id,))
        row = cursor.fetchone()
        if not row:
            raise NotFound(f"attempt {attempt_id}")
        if row["status"] != "in_progress":
            raise InvariantViolation(f"attempt {attempt_id} is already {row['status']}")

        total = max(int(row["total_questions"] or 0), len(answers))
        score = round(correct / total * 100, 2) if total else 0.0
        cursor.executemany(
            """
            INSERT INTO answers (attempt_id, question_id, section_id, difficulty, is_correct, time_spent_seconds, answered_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    attempt_id,
                    a.get("question_id"),
                    str(a["section_id"]),
                    a.get("difficulty"),
                    1 if a.get("is_correct") else 0,
                    int(a.get("time_spent_seconds") or 0),
                    submitted_ts,
                )
                for a in answers
            ],
        )
        cursor.execute(
            """
            UPDATE attempts
            SET status = 'submitted', submitted_at = ?, correct_answers = ?,
                total_questions = ?, score = ?, time_spent_seconds = ?
            WHERE id = ? AND status = 'in_progress'
            """,
            (submitted_ts, correct, total, score, spent, attempt_id),
        )
        if followup_kind:
            followup_repository.add_followup(cursor, int(row["user_id"]), attempt_id, followup_kind)
    return get_attempt(db, attempt_id)


def abandon_attempt(db: Database, attempt_id: int):
    with db.transaction() as cursor:
        cursor.execute(
            "UPDATE attempts SET status = 'abandoned' WHERE id = ? AND status = 'in_progress'",
            (attempt_id,),
        )
        if int(getattr(cursor, "rowcount", 0) or 0) == 0:
            logging.warning("abandon_attempt: attempt %s is not in progress", attempt_id)


def get_submission_timestamps(db: Database, user_id: int) -> list[str]:
    with db.connection() as conn:
        cursor = conn.cursor()
        cursor.execute(
            """
            SELECT submitted_at FROM attempts
            WHERE user_id = ? AND status = 'submitted' AND submitted_at IS NOT NULL
            ORDER BY submitted_at ASC
            """,
            (user_id,),
        )
        rows = cursor.fetchall()
    return [row[0] for row in rows]


def get_recent_section_answers(
    db: Database,
    user_id: int,
    window_size: int,
    section_ids: Iterable[str] | None = None,
) -> dict[str, list[bool]]:
    """Most recent `window_size` answers per section, newest first."""
    section_filter = ""
    params: list[Any] = [user_id]
    if section_ids is not None:
        wanted = sorted({str(s) for s in section_ids})
        if not wanted:
            return {}
        section_filter = f" AND a.section_id IN ({', '.join('?' for _ in wanted)})"
        params.extend(wanted)
    params.append(max(0, window_size))

    with db.connection() as conn:
        cursor = conn.cursor()
        cursor.execute(
            f"""
            SELECT section_id, is_correct
            FROM (
                SELECT a.section_id, a.is_correct,
                       ROW_NUMBER() OVER (
                           PARTITION BY a.section_id
                           ORDER BY t.submitted_at DESC, a.id DESC
                       ) AS rn
                FROM answers a
                JOIN attempts t ON t.id = a.attempt_id
                WHERE t.user_id = ? AND t.status = 'submitted'{section_filter}
            ) ranked
            WHERE rn <= ?
            ORDER BY section_id, rn
            """,
            params,
        )
        rows = cursor.fetchall()

    window: dict[str, list[bool]] = {}
    for row in rows:
        window.setdefault(str(row[0]), []).append(bool(row[1]))
    return window



def get_submitted_attempts(db: Database, user_id: int, since: datetime.datetime | None = None) -> list[dict[str, Any]]:
    query = """
        SELECT id, test_type, started_at, submitted_at, correct_answers, total_questions,
               score, time_spent_seconds
        FROM attempts
        WHERE user_id = ? AND status = 'submitted' AND submitted_at IS NOT NULL
    """
    params: list[Any] = [user_id]
    if since is not None:
        query += " AND submitted_at >= ?"
        params.append(format_ts(since))
    query += " ORDER BY submitted_at ASC"
    with db.connection() as conn:
        cursor = conn.cursor()
        cursor.execute(query, params)
        return [dict(row) for row in cursor.fetchall()]


def get_submitted_answers(db: Database, user_id: int, since: datetime.datetime | None = None) -> list[dict[str, Any]]:
    query = """
        SELECT a.section_id, a.difficulty, a.is_correct, a.time_spent_seconds, t.submitted_at
        FROM answers a
        JOIN attempts t ON t.id = a.attempt_id
        WHERE t.user_id = ? AND t.status = 'submitted'
    """
    params: list[Any] = [user_id]
    if since is not None:
        query += " AND t.submitted_at >= ?"
        params.append(format_ts(since))
    with db.connection() as conn:
        cursor = conn.cursor()
        cursor.execute(query, params)
        return [dict(row) for row in cursor.fetchall()]

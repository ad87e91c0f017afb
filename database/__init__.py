import logging

from database.connection import Database

__all__ = [
    "Database",
    "create_schema",
    "REQUIRED_TABLES",
]

REQUIRED_TABLES = (
    "attempts",
    "answers",
    "user_streak",
    "weak_sections",
    "revision_entries",
    "revision_items",
    "usage_counters",
    "user_entitlements",
    "followup_tasks",
)


def _id_column(db: Database) -> str:
    if db.is_postgres:
        return "id BIGSERIAL PRIMARY KEY"
    return "id INTEGER PRIMARY KEY AUTOINCREMENT"


def create_schema(db: Database):
    """Initializes the database schema. Safe to call on every start."""
    id_col = _id_column(db)
    with db.transaction() as cursor:
        # attempts (ledger)
        cursor.execute(f"""
            CREATE TABLE IF NOT EXISTS attempts (
                {id_col},
                user_id BIGINT NOT NULL,
                session_id TEXT,
                test_type TEXT DEFAULT 'practice',
                status TEXT NOT NULL DEFAULT 'in_progress',
                started_at TEXT NOT NULL,
                submitted_at TEXT,
                correct_answers INTEGER DEFAULT 0,
                total_questions INTEGER DEFAULT 0,
                score REAL DEFAULT 0,
                time_spent_seconds INTEGER DEFAULT 0
            )
        """)
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS attempts_user_status_idx ON attempts (user_id, status, submitted_at)"
        )

        # answers (ledger)
        cursor.execute(f"""
            CREATE TABLE IF NOT EXISTS answers (
                {id_col},
                attempt_id BIGINT NOT NULL,
                question_id TEXT,
                section_id TEXT NOT NULL,
                difficulty TEXT,
                is_correct INTEGER NOT NULL DEFAULT 0,
                time_spent_seconds INTEGER DEFAULT 0,
                answered_at TEXT
            )
        """)
        cursor.execute("CREATE INDEX IF NOT EXISTS answers_attempt_idx ON answers (attempt_id)")

        # user_streak
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS user_streak (
                user_id BIGINT PRIMARY KEY,
                current_streak INTEGER DEFAULT 0,
                highest_streak INTEGER DEFAULT 0,
                last_activity TEXT,
                total_active_days INTEGER DEFAULT 0,
                updated_at TEXT
            )
        """)

        # weak_sections
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS weak_sections (
                user_id BIGINT NOT NULL,
                section_id TEXT NOT NULL,
                accuracy REAL NOT NULL DEFAULT 0,
                sample_count INTEGER NOT NULL DEFAULT 0,
                status TEXT NOT NULL,
                weakness_level TEXT,
                identified_at TEXT,
                last_updated TEXT,
                PRIMARY KEY (user_id, section_id)
            )
        """)

        # revision_entries / revision_items
        cursor.execute(f"""
            CREATE TABLE IF NOT EXISTS revision_entries (
                {id_col},
                user_id BIGINT NOT NULL,
                scheduled_date TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                created_at TEXT,
                updated_at TEXT
            )
        """)
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS revision_entries_user_idx ON revision_entries (user_id, status, scheduled_date)"
        )
        cursor.execute(f"""
            CREATE TABLE IF NOT EXISTS revision_items (
                {id_col},
                entry_id BIGINT NOT NULL,
                user_id BIGINT NOT NULL,
                section_id TEXT NOT NULL,
                interval_index INTEGER NOT NULL DEFAULT 0,
                ladder_cycle INTEGER NOT NULL DEFAULT 1,
                scheduled_date TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending'
            )
        """)
        cursor.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS revision_items_one_pending_idx
            ON revision_items (user_id, section_id) WHERE status = 'pending'
        """)
        cursor.execute("CREATE INDEX IF NOT EXISTS revision_items_entry_idx ON revision_items (entry_id)")

        # usage_counters
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS usage_counters (
                user_id BIGINT NOT NULL,
                resource_kind TEXT NOT NULL,
                period_key TEXT NOT NULL,
                consumed_count INTEGER NOT NULL DEFAULT 0,
                updated_at TEXT,
                PRIMARY KEY (user_id, resource_kind, period_key)
            )
        """)

        # user_entitlements (written by billing)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS user_entitlements (
                user_id BIGINT PRIMARY KEY,
                is_unlimited INTEGER NOT NULL DEFAULT 0,
                valid_until TEXT
            )
        """)

        # followup_tasks
        cursor.execute(f"""
            CREATE TABLE IF NOT EXISTS followup_tasks (
                {id_col},
                user_id BIGINT NOT NULL,
                attempt_id BIGINT,
                kind TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                attempts INTEGER NOT NULL DEFAULT 0,
                last_error TEXT,
                dedupe_key TEXT NOT NULL UNIQUE,
                available_at TEXT NOT NULL,
                locked_at TEXT,
                created_at TEXT,
                updated_at TEXT
            )
        """)
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS followup_tasks_user_status_idx ON followup_tasks (user_id, status)"
        )
    logging.info("Schema ready (%s backend).", db.backend)

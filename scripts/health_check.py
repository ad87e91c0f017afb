import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import settings
from database import REQUIRED_TABLES, Database, create_schema
from database.repositories.followup_repository import get_queue_counts


def check(condition, ok_msg, fail_msg):
    if condition:
        print(f"OK: {ok_msg}")
        return True
    print(f"FAIL: {fail_msg}")
    return False


def table_exists(db: Database, table_name: str) -> bool:
    with db.connection() as conn:
        cursor = conn.cursor()
        if db.is_postgres:
            cursor.execute(
                "SELECT 1 FROM information_schema.tables WHERE table_schema = 'public' AND table_name = ?",
                (table_name,),
            )
        else:
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table_name,))
        return cursor.fetchone() is not None


def main():
    all_ok = True

    all_ok &= check(bool(settings.bot_token), "BOT_TOKEN is set", "BOT_TOKEN missing (check .env)")
    try:
        settings.validate()
        all_ok &= check(True, "configuration is valid", "")
    except ValueError as exc:
        all_ok &= check(False, "", f"invalid configuration: {exc}")

    db = Database.from_settings(settings)
    try:
        create_schema(db)
        if not db.is_postgres:
            all_ok &= check(os.path.exists(settings.db_path), f"{settings.db_path} exists", "DB file not found")

        for table in REQUIRED_TABLES:
            all_ok &= check(table_exists(db, table), f"table {table} exists", f"table {table} missing")

        counts = get_queue_counts(db)
        print(f"INFO: follow-up queue {counts}")
        all_ok &= check(
            counts.get("failed", 0) == 0,
            "no failed follow-up tasks",
            f"{counts.get('failed', 0)} follow-up tasks failed permanently",
        )
    finally:
        db.close()

    if all_ok:
        print("OK: health_check passed.")
        return 0
    print("FAIL: health_check finished with errors.")
    return 1

if __name__ == "__main__":
    raise SystemExit(main())

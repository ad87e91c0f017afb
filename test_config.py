import sqlite3

import pytest

from conftest import make_config
from core.config import _join_webhook_url, _parse_ladder
from core.errors import TransientStoreError
from database import REQUIRED_TABLES, Database, create_schema


def test_default_config_is_valid():
    config = make_config()
    assert config.validate() is config


@pytest.mark.parametrize(
    "overrides",
    [
        {"weak_threshold": 0.8, "recovery_threshold": 0.75},
        {"weak_threshold": 0.6, "recovery_threshold": 0.6},
        {"weak_min_samples": 0},
        {"weak_window_size": 3, "weak_min_samples": 5},
        {"revision_ladder": ()},
        {"revision_ladder": (1, 3, 3, 7)},
        {"revision_batch_size": 0},
        {"mock_test_cap": 0},
        {"db_backend": "mysql"},
    ],
)
def test_invalid_config_is_rejected(overrides):
    with pytest.raises(ValueError):
        make_config(**overrides).validate()


def test_parse_ladder():
    assert _parse_ladder("1, 3,7 ,14") == (1, 3, 7, 14)
    assert _parse_ladder("") == ()


def test_join_webhook_url():
    assert _join_webhook_url("https://example.org/", "hook") == "https://example.org/hook"
    assert _join_webhook_url("", "/hook") == ""


def test_create_schema_is_idempotent(db):
    create_schema(db)
    with db.connection() as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        tables = {row[0] for row in cursor.fetchall()}
    assert set(REQUIRED_TABLES) <= tables


def test_busy_store_surfaces_as_transient_error(db, monkeypatch):
    def locked():
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(db, "get_connection", locked)
    with pytest.raises(TransientStoreError):
        with db.connection():
            pass


def test_other_operational_errors_propagate_unchanged(db):
    with pytest.raises(sqlite3.OperationalError):
        with db.connection() as conn:
            conn.execute("SELECT * FROM no_such_table")


def test_transaction_rolls_back_on_error(db):
    with pytest.raises(RuntimeError):
        with db.transaction() as cursor:
            cursor.execute(
                "INSERT INTO user_entitlements (user_id, is_unlimited) VALUES (?, ?)",
                (1, 1),
            )
            raise RuntimeError("abort")
    with db.connection() as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT COUNT(*) FROM user_entitlements")
        assert cursor.fetchone()[0] == 0


def test_postgres_requires_database_url():
    handle = Database(backend="postgres", database_url="")
    with pytest.raises(RuntimeError):
        handle.get_connection()

import logging
import re
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from core.config import Config
from core.errors import TransientStoreError

_QMARK_RE = re.compile(r"\?")
_SQLITE_TRANSIENT_MARKERS = ("locked", "busy", "unable to open", "disk i/o")


def _to_postgres_placeholders(query: str) -> str:
    return _QMARK_RE.sub("%s", query)


class CompatRow:
    """
    SQLite-like row behavior for Postgres results.
    Supports:
    - row[0], row["column"]
    - unpacking: a, b = row
    - dict(row)
    """

    def __init__(self, columns: list[str], values: tuple[Any, ...]):
        self._columns = columns
        self._values = values
        self._idx = {name: i for i, name in enumerate(columns)}

    def __getitem__(self, key: int | str) -> Any:
        if isinstance(key, int):
            return self._values[key]
        return self._values[self._idx[key]]

    def __iter__(self):
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def keys(self):
        return self._columns


class CompatCursor:
    def __init__(self, raw_cursor):
        self._cursor = raw_cursor

    def execute(self, query: str, params: Any = None):
        sql = _to_postgres_placeholders(query)
        if params is None:
            self._cursor.execute(sql)
        else:
            self._cursor.execute(sql, params)
        return self

    def executemany(self, query: str, params_seq: Any):
        sql = _to_postgres_placeholders(query)
        self._cursor.executemany(sql, params_seq)
        return self

    def fetchone(self) -> Any:
        row = self._cursor.fetchone()
        if row is None:
            return None
        cols = [d.name for d in (self._cursor.description or [])]
        return CompatRow(cols, row)

    def fetchall(self) -> list[Any]:
        rows = self._cursor.fetchall()
        cols = [d.name for d in (self._cursor.description or [])]
        return [CompatRow(cols, r) for r in rows]

    def __getattr__(self, name: str) -> Any:
        return getattr(self._cursor, name)


class CompatConnection:
    def __init__(self, raw_conn, release):
        self._conn = raw_conn
        self._release = release

    def cursor(self) -> Any:
        return CompatCursor(self._conn.cursor())

    def execute(self, query: str, params: Any = None) -> Any:
        return self.cursor().execute(query, params)

    def commit(self) -> Any:
        return self._conn.commit()

    def rollback(self) -> Any:
        return self._conn.rollback()

    def close(self) -> Any:
        if self._release is not None:
            release, self._release = self._release, None
            release(self._conn)

    def __getattr__(self, name: str) -> Any:
        return getattr(self._conn, name)


class Database:
    """
    Store handle shared by repositories and services.

    Constructed once per process (see main.py) and passed explicitly to
    every component. SQLite is the default backend; Postgres goes through a
    psycopg_pool connection pool opened lazily on first use.
    """

    def __init__(
        self,
        backend: str = "sqlite",
        db_path: str | None = None,
        database_url: str = "",
        pool_min_size: int = 1,
        pool_max_size: int = 20,
        busy_timeout: float = 10.0,
    ):
        self.backend = (backend or "sqlite").strip().lower()
        self.db_path = db_path
        self.database_url = database_url
        self.pool_min_size = max(1, pool_min_size)
        self.pool_max_size = max(self.pool_min_size, pool_max_size)
        self.busy_timeout = busy_timeout
        self._pool: Any = None
        self._transient_errors: tuple[type[BaseException], ...] = (sqlite3.OperationalError,)

    @classmethod
    def from_settings(cls, config: Config) -> "Database":
        return cls(
            backend=config.db_backend,
            db_path=config.db_path,
            database_url=config.database_url,
            pool_min_size=config.db_pool_min_size,
            pool_max_size=config.db_pool_max_size,
        )

    @property
    def is_postgres(self) -> bool:
        return self.backend == "postgres"

    def _get_or_create_postgres_pool(self):
        if self._pool is not None:
            return self._pool

        if not self.database_url:
            raise RuntimeError("DB_BACKEND=postgres but DATABASE_URL is empty.")
        try:
            import psycopg
            from psycopg_pool import ConnectionPool
        except Exception as exc:  # pragma: no cover - optional dependency
            raise RuntimeError(
                "Postgres backend requested but psycopg_pool is not installed."
            ) from exc

        self._transient_errors = (psycopg.OperationalError,)
        self._pool = ConnectionPool(
            conninfo=self.database_url,
            min_size=self.pool_min_size,
            max_size=self.pool_max_size,
            open=True,
        )
        return self._pool

    def _get_sqlite_connection(self) -> Any:
        if not self.db_path:
            raise RuntimeError("SQLite backend requires a db_path.")
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout)
        conn.row_factory = sqlite3.Row
        return conn

    def _get_postgres_connection(self) -> Any:
        pool = self._get_or_create_postgres_pool()
        return CompatConnection(pool.getconn(), pool.putconn)

    def get_connection(self) -> Any:
        """
        Returns a raw DB connection based on the selected backend.
        Callers own it and must close it.
        """
        if self.is_postgres:
            return self._get_postgres_connection()
        return self._get_sqlite_connection()

    def _is_transient(self, exc: BaseException) -> bool:
        if not isinstance(exc, self._transient_errors):
            return False
        if isinstance(exc, sqlite3.OperationalError):
            text = str(exc).lower()
            return any(marker in text for marker in _SQLITE_TRANSIENT_MARKERS)
        return True

    @contextmanager
    def connection(self) -> Iterator[Any]:
        """Yields a connection that is always closed; store timeouts become TransientStoreError."""
        try:
            conn = self.get_connection()
        except Exception as exc:
            if self._is_transient(exc):
                raise TransientStoreError(str(exc)) from exc
            raise
        try:
            yield conn
        except Exception as exc:
            if self._is_transient(exc):
                raise TransientStoreError(str(exc)) from exc
            raise
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[Any]:
        """
        Yields a cursor inside one write transaction.
        Commits on success, rolls back on any exception.
        """
        with self.connection() as conn:
            cursor = conn.cursor()
            if not self.is_postgres:
                # Take the write lock up front so read-then-write sequences cannot deadlock.
                cursor.execute("BEGIN IMMEDIATE")
            try:
                yield cursor
                conn.commit()
            except Exception:
                try:
                    conn.rollback()
                except Exception as rollback_exc:
                    logging.warning("Rollback failed: %s", rollback_exc)
                raise

    def insert_returning_id(self, cursor: Any, query: str, params: Any) -> int:
        if self.is_postgres:
            cursor.execute(query.rstrip() + " RETURNING id", params)
            return int(cursor.fetchone()[0])
        cursor.execute(query, params)
        return int(cursor.lastrowid)

    def close(self):
        if self._pool is not None:
            self._pool.close()
            self._pool = None

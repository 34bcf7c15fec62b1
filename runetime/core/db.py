"""
Store backends - SQLite (default) and PostgreSQL behind one connection/session interface.

SQL is written once with ``?`` placeholders; backends translate placeholders,
timestamp encoding and the UTC-day expression.
"""

import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Generator, List, Sequence

from .config import DatabaseConfig
from .errors import ConflictError, FatalError, InvalidArgumentError, RunetimeError, UnavailableError
from .outcome import Outcome, default_classify, guard
from ..util.logging import logger

READINGS_TABLE = "time_series"
BUCKETS_TABLE = "compressed_time_series"
LEASES_TABLE = "runetime_leases"
REQUIRED_TABLES = [READINGS_TABLE, BUCKETS_TABLE, LEASES_TABLE]


def _wrap(error_cls, exc: BaseException, hint: str = "") -> RunetimeError:
    err = error_cls(f"{exc}{hint}")
    err.__cause__ = exc
    return err


def format_utc(ts: datetime) -> str:
    """Fixed-width UTC text form; lexical order equals chronological order."""
    return ts.astimezone(timezone.utc).replace(tzinfo=None).isoformat(timespec="microseconds") + "Z"


def parse_utc(text: str) -> datetime:
    return datetime.fromisoformat(text.replace("Z", "+00:00"))


class Backend(ABC):
    """Dialect and driver for one kind of store."""

    name = "abstract"
    placeholder = "?"

    @abstractmethod
    def connect(self):
        """Open a DB-API connection."""
        pass

    @abstractmethod
    def schema(self) -> List[str]:
        """DDL statements creating every table and index (idempotent)."""
        pass

    @abstractmethod
    def day_expr(self, column: str) -> str:
        """SQL expression truncating an instant column to its UTC calendar day."""
        pass

    @abstractmethod
    def list_tables_sql(self) -> str:
        pass

    @abstractmethod
    def classify(self, exc: BaseException) -> Outcome:
        """Map a driver exception to an Outcome carrying a RunetimeError."""
        pass

    def encode_timestamp(self, ts: datetime) -> Any:
        return ts

    def decode_timestamp(self, value: Any) -> datetime:
        return value

    def encode_day(self, day: date) -> Any:
        return day

    def decode_day(self, value: Any) -> date:
        return value

    def translate(self, sql: str) -> str:
        if self.placeholder == "?":
            return sql
        return sql.replace("?", self.placeholder)


class SQLiteBackend(Backend):
    name = "sqlite"

    def __init__(self, path: str):
        self.path = path

    def connect(self):
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        return sqlite3.connect(self.path, timeout=30)

    def schema(self) -> List[str]:
        return [
            f'''
            CREATE TABLE IF NOT EXISTS {READINGS_TABLE} (
                timestamp TEXT NOT NULL,
                sensor_id INTEGER NOT NULL,
                value REAL NOT NULL,
                PRIMARY KEY (sensor_id, timestamp)
            )
            ''',
            f'CREATE INDEX IF NOT EXISTS idx_time_series_timestamp ON {READINGS_TABLE} (timestamp)',
            f'''
            CREATE TABLE IF NOT EXISTS {BUCKETS_TABLE} (
                day TEXT PRIMARY KEY,
                avg_value REAL NOT NULL,
                max_value REAL NOT NULL,
                min_value REAL NOT NULL,
                sample_count INTEGER NOT NULL,
                compressed_at TEXT NOT NULL
            )
            ''',
            f'''
            CREATE TABLE IF NOT EXISTS {LEASES_TABLE} (
                name TEXT PRIMARY KEY,
                holder TEXT NOT NULL,
                acquired_at TEXT NOT NULL,
                expires_at TEXT NOT NULL
            )
            ''',
        ]

    def day_expr(self, column: str) -> str:
        return f"substr({column}, 1, 10)"

    def list_tables_sql(self) -> str:
        return "SELECT name FROM sqlite_master WHERE type='table'"

    def encode_timestamp(self, ts: datetime) -> str:
        return format_utc(ts)

    def decode_timestamp(self, value: str) -> datetime:
        return parse_utc(value)

    def encode_day(self, day: date) -> str:
        return day.isoformat()

    def decode_day(self, value: str) -> date:
        return date.fromisoformat(value)

    def classify(self, exc: BaseException) -> Outcome:
        if isinstance(exc, OverflowError):
            return Outcome.failure(_wrap(InvalidArgumentError, exc))
        if isinstance(exc, sqlite3.IntegrityError):
            return Outcome.retryable(_wrap(ConflictError, exc))
        if isinstance(exc, sqlite3.OperationalError):
            hint = " (run 'runetime-db init' first)" if "no such table" in str(exc) else ""
            return Outcome.retryable(_wrap(UnavailableError, exc, hint))
        if isinstance(exc, sqlite3.Error):
            return Outcome.failure(_wrap(UnavailableError, exc))
        return default_classify(exc)


class PostgresBackend(Backend):
    name = "postgres"
    placeholder = "%s"

    def __init__(self, config: DatabaseConfig):
        self.config = config

    def _require_psycopg(self):
        try:
            import psycopg
        except ImportError as e:
            raise FatalError(
                "The postgres backend requires psycopg. Install: pip install 'runetime-db[postgres]'"
            ) from e
        return psycopg

    def connect(self):
        psycopg = self._require_psycopg()
        return psycopg.connect(self.config.dsn())

    def schema(self) -> List[str]:
        return [
            f'''
            CREATE TABLE IF NOT EXISTS {READINGS_TABLE} (
                timestamp TIMESTAMPTZ NOT NULL,
                sensor_id INT NOT NULL,
                value DOUBLE PRECISION NOT NULL,
                PRIMARY KEY (sensor_id, timestamp)
            )
            ''',
            f'CREATE INDEX IF NOT EXISTS idx_time_series_timestamp ON {READINGS_TABLE} (timestamp)',
            f'''
            CREATE TABLE IF NOT EXISTS {BUCKETS_TABLE} (
                day DATE PRIMARY KEY,
                avg_value DOUBLE PRECISION NOT NULL,
                max_value DOUBLE PRECISION NOT NULL,
                min_value DOUBLE PRECISION NOT NULL,
                sample_count BIGINT NOT NULL,
                compressed_at TIMESTAMPTZ NOT NULL
            )
            ''',
            f'''
            CREATE TABLE IF NOT EXISTS {LEASES_TABLE} (
                name TEXT PRIMARY KEY,
                holder TEXT NOT NULL,
                acquired_at TIMESTAMPTZ NOT NULL,
                expires_at TIMESTAMPTZ NOT NULL
            )
            ''',
        ]

    def day_expr(self, column: str) -> str:
        return f"({column} AT TIME ZONE 'UTC')::date"

    def list_tables_sql(self) -> str:
        return "SELECT table_name FROM information_schema.tables WHERE table_schema = current_schema()"

    def classify(self, exc: BaseException) -> Outcome:
        if isinstance(exc, RunetimeError):
            return default_classify(exc)
        psycopg = self._require_psycopg()
        if isinstance(exc, psycopg.IntegrityError):
            return Outcome.retryable(_wrap(ConflictError, exc))
        if isinstance(exc, (psycopg.DataError, OverflowError)):
            return Outcome.failure(_wrap(InvalidArgumentError, exc))
        if isinstance(exc, psycopg.OperationalError):
            return Outcome.retryable(_wrap(UnavailableError, exc))
        if isinstance(exc, psycopg.Error):
            return Outcome.failure(_wrap(UnavailableError, exc))
        return default_classify(exc)


def create_backend(config: DatabaseConfig) -> Backend:
    if config.backend == "postgres":
        return PostgresBackend(config)
    return SQLiteBackend(config.dbname)


class Database:
    """One open connection plus the dialect that goes with it."""

    def __init__(self, backend: Backend, conn):
        self.backend = backend
        self.conn = conn

    def _run(self, sql: str, params: Sequence[Any], fetch: bool):
        cursor = self.conn.cursor()
        try:
            cursor.execute(self.backend.translate(sql), tuple(params))
            if fetch:
                return cursor.fetchall()
            return cursor.rowcount
        finally:
            cursor.close()

    def run(self, sql: str, params: Sequence[Any] = (), fetch: bool = False) -> Outcome:
        """
        Execute one statement and report the result as an Outcome.

        On failure the open transaction is rolled back; if the rollback itself
        fails the outcome is escalated to fatal.
        """
        outcome = guard(self._run, sql, params, fetch, classify=self.backend.classify)
        if not outcome.ok:
            rollback = guard(self.conn.rollback, classify=self.backend.classify)
            if not rollback.ok:
                return Outcome.failure(outcome.error)
        return outcome

    def query(self, sql: str, params: Sequence[Any] = ()) -> List[tuple]:
        return self.run(sql, params, fetch=True).unwrap()

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        return self.run(sql, params).unwrap()

    def commit(self) -> None:
        guard(self.conn.commit, classify=self.backend.classify).unwrap()

    def rollback(self) -> None:
        guard(self.conn.rollback, classify=self.backend.classify).unwrap()

    def close(self) -> None:
        self.conn.close()

    # Dialect helpers
    def ts(self, value: datetime) -> Any:
        return self.backend.encode_timestamp(value)

    def to_datetime(self, value: Any) -> datetime:
        return self.backend.decode_timestamp(value)

    def day(self, value: date) -> Any:
        return self.backend.encode_day(value)

    def to_date(self, value: Any) -> date:
        return self.backend.decode_day(value)

    def day_expr(self, column: str = "timestamp") -> str:
        return self.backend.day_expr(column)


@contextmanager
def get_db(config: DatabaseConfig) -> Generator[Database, None, None]:
    """Open a store session; raises UnavailableError when the store cannot be reached."""
    backend = create_backend(config)
    outcome = guard(backend.connect, classify=backend.classify)
    if not outcome.ok:
        if isinstance(outcome.error, FatalError):
            raise outcome.error
        raise UnavailableError(f"Cannot connect to {config.describe()}: {outcome.error}") from outcome.error

    db = Database(backend, outcome.value)
    try:
        yield db
    finally:
        db.close()


def init_db(db: Database) -> None:
    """Create every table and index if absent."""
    for statement in db.backend.schema():
        db.execute(statement)
    db.commit()
    logger.log_operation("db.init", "success", {"backend": db.backend.name})


def list_tables(db: Database) -> List[str]:
    return [row[0] for row in db.query(db.backend.list_tables_sql())]


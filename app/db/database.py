"""Connection handling for SQLite (aiosqlite) and PostgreSQL (asyncpg).

DATABASE_URL picks the backend: a postgres:// or postgresql:// URL uses an
asyncpg pool, anything else opens the SQLite file at DATABASE_PATH.

Query helpers in app.db are written against the aiosqlite interface
(execute -> cursor -> fetchone/fetchall, commit, rollback) with ? placeholders.
PgConnection presents that same interface over an asyncpg connection, with
sqlite3's transaction behaviour: the first write opens a transaction that
lasts until commit() or rollback().
"""

import itertools
import logging
import re
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import date, datetime
from pathlib import Path

from alembic import command
from alembic.config import Config

from app.config import settings

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[2]
SCHEMA_PATH = Path(__file__).resolve().parent / "schema.sql"

_POSTGRES_SCHEMES = ("postgresql://", "postgres://")


def _is_postgres() -> bool:
    return settings.database_url.startswith(_POSTGRES_SCHEMES)


async def _connect_sqlite():
    import aiosqlite
    db = await aiosqlite.connect(settings.database_path)
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA foreign_keys = ON")
    return db


# ── PostgreSQL ────────────────────────────────────────────────────────

_pg_pool = None


async def _get_pg_pool():
    global _pg_pool
    if _pg_pool is None:
        import asyncpg
        _pg_pool = await asyncpg.create_pool(settings.database_url, min_size=2, max_size=10)
    return _pg_pool


# ? outside of single-quoted literals
_PLACEHOLDER_RE = re.compile(r"'[^']*'|(\?)")

# Timestamps are generated in Python as ISO strings
_ISO_TIMESTAMP_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}")


def to_numbered_placeholders(sql: str) -> str:
    """Rewrite ? placeholders as $1, $2, ... for asyncpg."""
    numbers = itertools.count(1)
    return _PLACEHOLDER_RE.sub(
        lambda m: f"${next(numbers)}" if m.group(1) else m.group(0),
        sql,
    )


def _as_timestamp(value):
    if isinstance(value, str) and _ISO_TIMESTAMP_RE.match(value):
        try:
            return datetime.fromisoformat(value).replace(tzinfo=None)
        except ValueError:
            return value
    return value


def _as_text(value):
    # SQLite hands dates and timestamps back as the strings they were stored as
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _returns_rows(sql: str) -> bool:
    statement = sql.lstrip().upper()
    return statement.startswith(("SELECT", "WITH")) or "RETURNING" in statement


class PgRow:
    """Name-addressable row, enough for dict(row) and row["col"]."""

    __slots__ = ("_record",)

    def __init__(self, record):
        self._record = record

    def keys(self):
        return self._record.keys()

    def __getitem__(self, key):
        return _as_text(self._record[key])

    def __contains__(self, key):
        return key in self._record.keys()

    def __len__(self):
        return len(self._record)

    def get(self, key, default=None):
        return self[key] if key in self else default


class PgCursor:
    __slots__ = ("_rows",)

    def __init__(self, rows=()):
        self._rows = [PgRow(r) for r in rows]

    async def fetchone(self):
        return self._rows.pop(0) if self._rows else None

    async def fetchall(self):
        rows, self._rows = self._rows, []
        return rows


class PgConnection:
    """aiosqlite-shaped wrapper around one pooled asyncpg connection."""

    def __init__(self, conn):
        self._conn = conn
        self._transaction = None

    async def _begin_if_writing(self, sql: str) -> None:
        if self._transaction is None and not sql.lstrip().upper().startswith("SELECT"):
            self._transaction = self._conn.transaction()
            await self._transaction.start()

    async def _run(self, sql: str, args: tuple) -> PgCursor:
        if _returns_rows(sql):
            return PgCursor(await self._conn.fetch(sql, *args))
        await self._conn.execute(sql, *args)
        return PgCursor()

    async def execute(self, sql: str, params=None) -> PgCursor:
        import asyncpg

        await self._begin_if_writing(sql)
        pg_sql = to_numbered_placeholders(sql)
        args = tuple(params or ())
        try:
            # Savepoint, so a rejected statement does not abort the open transaction
            async with self._conn.transaction():
                return await self._run(pg_sql, args)
        except asyncpg.DataError:
            # asyncpg will not cast an ISO string to a TIMESTAMP column
            coerced = tuple(_as_timestamp(a) for a in args)
            if coerced == args:
                raise
            async with self._conn.transaction():
                return await self._run(pg_sql, coerced)

    async def commit(self):
        if self._transaction is not None:
            transaction, self._transaction = self._transaction, None
            await transaction.commit()

    async def rollback(self):
        if self._transaction is not None:
            transaction, self._transaction = self._transaction, None
            await transaction.rollback()

    async def close(self):
        await self.rollback()


# ── Public API ────────────────────────────────────────────────────────

async def get_db() -> AsyncGenerator:
    """FastAPI dependency yielding a connection for the duration of a request.

    Uncommitted work is rolled back when the request ends.
    """
    if _is_postgres():
        pool = await _get_pg_pool()
        raw = await pool.acquire()
        db = PgConnection(raw)
        try:
            yield db
        finally:
            await db.close()
            await pool.release(raw)
    else:
        db = await _connect_sqlite()
        try:
            yield db
        finally:
            await db.close()


# For writes that outlive the request, e.g. the assistant reply of a streamed chat
open_db = asynccontextmanager(get_db)


def _sqlalchemy_url() -> str:
    if _is_postgres():
        # SQLAlchemy only accepts the postgresql:// spelling
        return "postgresql://" + settings.database_url.split("://", 1)[1]
    return f"sqlite:///{settings.database_path}"


def _run_alembic_upgrade() -> None:
    """Upgrade the schema to head. Synchronous; runs once at startup."""
    cfg = Config(str(PROJECT_ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(PROJECT_ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", _sqlalchemy_url())
    command.upgrade(cfg, "head")


async def init_db():
    if _is_postgres():
        # Never log credentials
        logger.info("Using PostgreSQL backend: %s", settings.database_url.rsplit("@", 1)[-1])
    else:
        Path(settings.database_path).parent.mkdir(parents=True, exist_ok=True)
        logger.info("Using SQLite backend: %s", settings.database_path)
    _run_alembic_upgrade()


async def close_db():
    global _pg_pool
    if _pg_pool is not None:
        await _pg_pool.close()
        _pg_pool = None

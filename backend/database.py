"""
Study Tracker - Database Connection
Async PostgreSQL with asyncpg
"""

import json
from typing import Optional, List

import asyncpg

from errors import StoreError
from logger import get_logger

log = get_logger("database")

# Errors from the driver or the socket that mean "the store failed"
STORE_FAILURES = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


async def _init_connection(conn) -> None:
    """Decode json/jsonb columns to Python objects."""
    for typename in ("json", "jsonb"):
        await conn.set_type_codec(
            typename, encoder=json.dumps, decoder=json.loads, schema="pg_catalog"
        )


class Database:
    """Async database connection manager.

    One instance per process, created at startup and handed to the
    repositories that need it.
    """

    def __init__(self, url: str, min_size: int = 2, max_size: int = 10):
        self.url = url
        self.min_size = min_size
        self.max_size = max_size
        self._pool = None

    @property
    def connected(self) -> bool:
        return self._pool is not None

    async def connect(self):
        """Create connection pool."""
        try:
            self._pool = await asyncpg.create_pool(
                self.url, min_size=self.min_size, max_size=self.max_size,
                init=_init_connection
            )
        except STORE_FAILURES as e:
            raise StoreError(f"Could not connect to database: {e}", cause=e) from e
        log.info("Database connected")

    async def disconnect(self):
        """Close connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None
            log.info("Database disconnected")

    def _require_pool(self):
        if self._pool is None:
            raise StoreError("Database is not connected")
        return self._pool

    async def fetch(self, query: str, *args) -> List[dict]:
        """Fetch multiple rows."""
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                rows = await conn.fetch(query, *args)
                return [dict(row) for row in rows]
        except STORE_FAILURES as e:
            raise StoreError(str(e), cause=e) from e

    async def fetch_one(self, query: str, *args) -> Optional[dict]:
        """Fetch single row."""
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow(query, *args)
                return dict(row) if row else None
        except STORE_FAILURES as e:
            raise StoreError(str(e), cause=e) from e

    async def execute(self, query: str, *args) -> str:
        """Execute query (INSERT, UPDATE, DELETE)."""
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                return await conn.execute(query, *args)
        except STORE_FAILURES as e:
            raise StoreError(str(e), cause=e) from e

    async def execute_returning(self, query: str, *args) -> Optional[dict]:
        """Execute and return the affected row."""
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow(query, *args)
                return dict(row) if row else None
        except STORE_FAILURES as e:
            raise StoreError(str(e), cause=e) from e


# ============================================
# SCHEMA BOOTSTRAP
# ============================================

# Schema evolution belongs to the migration tool; these only create what is
# missing so a fresh database can serve requests.
BOOTSTRAP_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS study_milestones (
        id SERIAL PRIMARY KEY,
        milestone_key VARCHAR(100) NOT NULL UNIQUE,
        title VARCHAR(200) NOT NULL,
        description TEXT,
        celebration_message TEXT,
        icon VARCHAR(50),
        trigger_condition JSONB NOT NULL DEFAULT '{}'::jsonb,
        xp_bonus INTEGER NOT NULL DEFAULT 0,
        last_triggered TIMESTAMP WITH TIME ZONE,
        times_triggered INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_settings (
        id SERIAL PRIMARY KEY,
        setting_key VARCHAR(100) NOT NULL UNIQUE,
        setting_value TEXT,
        updated_at TIMESTAMP WITH TIME ZONE DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS topics (
        id SERIAL PRIMARY KEY,
        name VARCHAR(200) NOT NULL,
        icon VARCHAR(50),
        created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS files (
        id SERIAL PRIMARY KEY,
        original_name VARCHAR(500) NOT NULL,
        topic_id INTEGER REFERENCES topics(id) ON DELETE SET NULL,
        created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS reading_progress (
        id SERIAL PRIMARY KEY,
        file_id INTEGER NOT NULL UNIQUE REFERENCES files(id) ON DELETE CASCADE,
        current_page INTEGER DEFAULT 1,
        total_pages INTEGER,
        last_read TIMESTAMP WITH TIME ZONE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS daily_recommendations (
        id SERIAL PRIMARY KEY,
        date DATE NOT NULL,
        file_id INTEGER REFERENCES files(id) ON DELETE SET NULL,
        topic_id INTEGER REFERENCES topics(id) ON DELETE SET NULL,
        title VARCHAR(200),
        description TEXT,
        recommendation_type VARCHAR(50),
        estimated_minutes INTEGER,
        priority INTEGER NOT NULL DEFAULT 0,
        is_completed BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW()
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_daily_recommendations_date
    ON daily_recommendations(date, priority DESC, created_at)
    """,
]


async def ensure_tables(db: Database) -> None:
    """Create milestone and recommendation tables if they don't exist."""
    for statement in BOOTSTRAP_STATEMENTS:
        await db.execute(statement)
    log.info("Schema bootstrap complete")

"""
Database connection and query module.

Provides the account store used by the billing service, with support
for both PostgreSQL and SQLite backends.
"""

import logging
import os
import re
from datetime import datetime
from typing import Any, Dict, Optional

import asyncpg
import aiosqlite

from config import config
from models.account import parse_timestamp

logger = logging.getLogger(__name__)


def _ts(value: datetime) -> str:
    """Fixed-width ISO timestamp so SQLite string comparison orders correctly."""
    return value.isoformat(timespec='microseconds')


class Database:
    """
    Async database connection manager.

    Supports PostgreSQL (production) and SQLite (development and tests).
    Provides connection pooling and query execution methods.
    """

    def __init__(self, database_url: Optional[str] = None):
        """
        Initialize database manager.

        Args:
            database_url: Database connection URL. Uses config if not provided.
        """
        self.database_url = database_url or config.database.url
        self._pool = None
        self._sqlite_conn = None
        self._is_postgres = self.database_url.startswith(('postgresql', 'postgres://'))

    async def connect(self) -> None:
        """Establish database connection(s)."""
        if self._is_postgres:
            logger.info("Connecting to PostgreSQL database...")
            self._pool = await asyncpg.create_pool(
                self.database_url,
                min_size=2,
                max_size=10,
                command_timeout=60
            )
        else:
            # SQLite for development
            db_path = self.database_url.replace('sqlite:///', '')
            logger.info(f"Connecting to SQLite database: {db_path}")
            self._sqlite_conn = await aiosqlite.connect(db_path)

        logger.info("Database connection established")

    async def disconnect(self) -> None:
        """Close database connection(s)."""
        if self._is_postgres and self._pool:
            await self._pool.close()
            self._pool = None
        elif self._sqlite_conn:
            await self._sqlite_conn.close()
            self._sqlite_conn = None

        logger.info("Database connection closed")

    async def execute(self, query: str, *args) -> str:
        """
        Execute a query without returning results.

        Args:
            query: SQL query to execute
            *args: Query parameters

        Returns:
            Status message from database
        """
        if self._is_postgres:
            async with self._pool.acquire() as conn:
                return await conn.execute(query, *args)
        else:
            await self._sqlite_conn.execute(self._convert_params(query), args)
            await self._sqlite_conn.commit()
            return "OK"

    async def fetch_one(self, query: str, *args) -> Optional[Dict[str, Any]]:
        """
        Execute a query and fetch one row.

        Args:
            query: SQL query to execute
            *args: Query parameters

        Returns:
            Row as dictionary or None if no results
        """
        if self._is_postgres:
            async with self._pool.acquire() as conn:
                row = await conn.fetchrow(query, *args)
                return dict(row) if row else None
        else:
            cursor = await self._sqlite_conn.execute(self._convert_params(query), args)
            row = await cursor.fetchone()
            if row:
                columns = [d[0] for d in cursor.description]
                return dict(zip(columns, row))
            return None

    def _convert_params(self, query: str) -> str:
        """Convert PostgreSQL $1, $2 style params to SQLite ? style."""
        return re.sub(r'\$\d+', '?', query)

    async def init_schema(self) -> None:
        """Initialize database schema from schema.sql file."""
        schema_path = os.path.join(os.path.dirname(__file__), 'schema.sql')

        with open(schema_path, 'r') as f:
            schema = f.read()

        # Drop comment lines, then split by semicolons
        schema = '\n'.join(
            line for line in schema.splitlines()
            if not line.strip().startswith('--')
        )
        statements = [s.strip() for s in schema.split(';') if s.strip()]

        for statement in statements:
            if self._is_postgres:
                async with self._pool.acquire() as conn:
                    await conn.execute(statement)
            else:
                await self._sqlite_conn.execute(statement)

        if not self._is_postgres:
            await self._sqlite_conn.commit()

        logger.info("Database schema initialized")

    def _param_ts(self, value: Optional[datetime]) -> Any:
        if value is None or self._is_postgres:
            return value
        return _ts(value)

    # -------------------------------------------------------------------------
    # User Operations
    # -------------------------------------------------------------------------

    async def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Get user by ID."""
        return await self.fetch_one(
            "SELECT id, email, plan, pro_until FROM users WHERE id = $1",
            user_id
        )

    async def ensure_user(self, user_id: str, email: Optional[str], now: datetime) -> None:
        """Create the user row if it does not exist yet."""
        await self.execute(
            """
            INSERT INTO users (id, email, plan, created_at, updated_at)
            VALUES ($1, $2, 'free', $3, $4)
            ON CONFLICT (id) DO NOTHING
            """,
            user_id, email, self._param_ts(now), self._param_ts(now)
        )

    async def grant_pro(self, user_id: str, pro_until: datetime, now: datetime) -> None:
        """
        Put a user on the pro plan until ``pro_until``.

        The stored window only moves forward: a later grant wins and an
        earlier one leaves the row alone apart from the plan.
        """
        await self.execute(
            """
            UPDATE users
            SET plan = 'pro',
                pro_until = CASE
                    WHEN pro_until IS NULL OR pro_until < $1 THEN $2
                    ELSE pro_until
                END,
                updated_at = $3
            WHERE id = $4
            """,
            self._param_ts(pro_until), self._param_ts(pro_until),
            self._param_ts(now), user_id
        )

    # -------------------------------------------------------------------------
    # Payment Reference Operations
    # -------------------------------------------------------------------------

    async def get_payment_reference(self, reference: str) -> Optional[Dict[str, Any]]:
        """Get payment reference by ID."""
        return await self.fetch_one(
            "SELECT * FROM payment_references WHERE id = $1",
            reference
        )

    async def record_payment_reference(
        self,
        reference: str,
        user_id: str,
        amount: str,
        created_at: datetime
    ) -> None:
        """Record a freshly issued reference as pending."""
        await self.execute(
            """
            INSERT INTO payment_references (id, user_id, amount, status, created_at)
            VALUES ($1, $2, $3, 'pending', $4)
            ON CONFLICT (id) DO NOTHING
            """,
            reference, user_id, amount, self._param_ts(created_at)
        )

    async def claim_payment_reference(
        self,
        reference: str,
        user_id: str,
        amount: str,
        pf_payment_id: Optional[str],
        now: datetime
    ) -> datetime:
        """
        Mark a reference complete and return when it first completed.

        ``completed_at`` is written once; every later claim of the same
        reference gets the original value back.

        Returns:
            Completion time of the first successful claim
        """
        if self._is_postgres:
            row = await self.fetch_one(
                """
                INSERT INTO payment_references
                    (id, user_id, amount, status, pf_payment_id, created_at, completed_at)
                VALUES ($1, $2, $3, 'complete', $4, $5, $5)
                ON CONFLICT (id) DO UPDATE SET
                    status = 'complete',
                    pf_payment_id = COALESCE(payment_references.pf_payment_id, EXCLUDED.pf_payment_id),
                    completed_at = COALESCE(payment_references.completed_at, EXCLUDED.completed_at)
                RETURNING completed_at
                """,
                reference, user_id, amount, pf_payment_id, now
            )
        else:
            await self.execute(
                """
                INSERT INTO payment_references
                    (id, user_id, amount, status, pf_payment_id, created_at, completed_at)
                VALUES ($1, $2, $3, 'complete', $4, $5, $6)
                ON CONFLICT (id) DO UPDATE SET
                    status = 'complete',
                    pf_payment_id = COALESCE(pf_payment_id, excluded.pf_payment_id),
                    completed_at = COALESCE(completed_at, excluded.completed_at)
                """,
                reference, user_id, amount, pf_payment_id, _ts(now), _ts(now)
            )
            row = await self.fetch_one(
                "SELECT completed_at FROM payment_references WHERE id = $1",
                reference
            )

        return parse_timestamp(row['completed_at'])

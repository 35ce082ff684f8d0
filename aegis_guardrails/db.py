"""PostgreSQL connection management and schema bootstrap."""

from __future__ import annotations

import logging

import asyncpg

from aegis_guardrails.config import settings

logger = logging.getLogger(__name__)

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS policies (
        id UUID PRIMARY KEY,
        customer_id UUID NOT NULL,
        name VARCHAR(255) NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        agent_id TEXT,
        policy_type VARCHAR(50) NOT NULL,
        rule_json JSONB,
        enabled BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS policies_customer_enabled_idx
        ON policies (customer_id, enabled)
    """,
    """
    CREATE TABLE IF NOT EXISTS audit_logs (
        id UUID PRIMARY KEY,
        customer_id UUID,
        agent_id TEXT NOT NULL,
        policy_id UUID,
        timestamp TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        input_hash VARCHAR(64) NOT NULL,
        decision VARCHAR(16) NOT NULL,
        latency_ms DOUBLE PRECISION NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS audit_logs_customer_time_idx
        ON audit_logs (customer_id, timestamp DESC)
    """,
)

_pg_pool: asyncpg.Pool | None = None


async def init_db() -> asyncpg.Pool | None:
    """Create the pool and ensure the schema exists. None if unreachable."""
    global _pg_pool  # noqa: PLW0603

    try:
        _pg_pool = await asyncpg.create_pool(
            dsn=settings.postgres_dsn,
            min_size=2,
            max_size=10,
        )
        async with _pg_pool.acquire() as conn:
            for statement in SCHEMA:
                await conn.execute(statement)
        logger.info("PostgreSQL pool created, guardrails schema ready")
    except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError):
        logger.warning("PostgreSQL not available — running with in-memory stores")
        if _pg_pool is not None:
            await _pg_pool.close()
        _pg_pool = None
    return _pg_pool


async def close_db() -> None:
    """Close the pool. Called on app shutdown."""
    global _pg_pool  # noqa: PLW0603

    if _pg_pool is not None:
        await _pg_pool.close()
        _pg_pool = None
        logger.info("PostgreSQL pool closed")


def get_pg_pool() -> asyncpg.Pool | None:
    """Get the PostgreSQL connection pool."""
    return _pg_pool

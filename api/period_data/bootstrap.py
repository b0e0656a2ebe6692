"""
Create-if-absent schema bootstrap for the period_data table.

Runs once at startup. Several instances may start at the same time, so the
DDL runs inside one transaction holding a transaction-scoped advisory lock:
the second instance waits, then finds every object already present.
"""

from __future__ import annotations

import asyncpg
import structlog

log = structlog.get_logger()

# pg_advisory_xact_lock key reserved for this bootstrap.
BOOTSTRAP_LOCK_KEY = 7_305_112_001


def schema_statements(schema: str) -> list[str]:
    table = f"{schema}.period_data"
    return [
        f"CREATE SCHEMA IF NOT EXISTS {schema}",
        f"""
        CREATE TABLE IF NOT EXISTS {table} (
          apartment_id INTEGER NOT NULL,
          period TEXT NOT NULL,
          item TEXT NOT NULL,
          prev_value NUMERIC,
          curr_value NUMERIC,
          tariff NUMERIC,
          amount NUMERIC,
          meta JSONB,
          created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
          updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
          PRIMARY KEY (apartment_id, period, item)
        )
        """,
        f"CREATE INDEX IF NOT EXISTS ix_period_data_period_apartment ON {table} (period, apartment_id)",
    ]


async def ensure_schema(pool: asyncpg.Pool, schema: str) -> None:
    async with pool.acquire() as conn:  # type: asyncpg.Connection
        async with conn.transaction():
            await conn.execute("SELECT pg_advisory_xact_lock($1)", BOOTSTRAP_LOCK_KEY)
            for statement in schema_statements(schema):
                await conn.execute(statement)
    log.info("schema_ready", schema=schema, table="period_data")

"""
Period-data persistence (raw SQL).

Queries use the unqualified table name; pool connections carry a
`search_path` that starts with the configured schema (see `core.db`).
"""

from __future__ import annotations

import json
from typing import Any

import asyncpg

from core import db

from .schemas import PeriodRecordIn

_COLUMNS = """
  apartment_id, period, item, prev_value, curr_value, tariff, amount, meta,
  created_at, updated_at
"""

# GREATEST(...) keeps updated_at strictly increasing for a key even when two
# writes land on the same clock reading.
UPSERT_SQL = """
INSERT INTO period_data
  (apartment_id, period, item, prev_value, curr_value, tariff, amount, meta, updated_at)
VALUES
  ($1, $2, $3, $4, $5, $6, $7, $8::jsonb, now())
ON CONFLICT (apartment_id, period, item) DO UPDATE
SET prev_value = EXCLUDED.prev_value,
    curr_value = EXCLUDED.curr_value,
    tariff = EXCLUDED.tariff,
    amount = EXCLUDED.amount,
    meta = EXCLUDED.meta,
    updated_at = GREATEST(now(), period_data.updated_at + interval '1 microsecond')
"""


def _json_arg(value: Any) -> str | None:
    """
    asyncpg does not encode Python values for json/jsonb parameters.
    We pass JSON as a string and cast to jsonb in SQL.
    """
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=True)


def _json_value(raw: Any) -> Any:
    if isinstance(raw, str):
        return json.loads(raw)
    return raw


def _row_out(row: dict[str, Any]) -> dict[str, Any]:
    row["meta"] = _json_value(row.get("meta"))
    return row


def _upsert_args(record: PeriodRecordIn) -> tuple:
    return (
        record.apartment_id,
        record.period,
        record.item,
        record.prev_value,
        record.curr_value,
        record.tariff,
        record.amount,
        _json_arg(record.meta),
    )


async def upsert_records(pool: asyncpg.Pool, records: list[PeriodRecordIn]) -> int:
    """
    Insert-or-update every record in a single transaction.

    Any failing row rolls back the whole batch. Returns the number of records applied.
    """
    if not records:
        return 0

    args = [_upsert_args(r) for r in records]
    async with pool.acquire() as conn:  # type: asyncpg.Connection
        async with conn.transaction():
            await conn.executemany(UPSERT_SQL, args)
    return len(args)


async def list_all(pool: asyncpg.Pool) -> list[dict[str, Any]]:
    rows = await db.fetch_all(
        pool,
        f"""
        SELECT {_COLUMNS}
        FROM period_data
        ORDER BY period ASC, apartment_id ASC, item ASC
        """,
    )
    return [_row_out(r) for r in rows]


async def list_for_key(pool: asyncpg.Pool, *, apartment_id: int, period: str) -> list[dict[str, Any]]:
    rows = await db.fetch_all(
        pool,
        f"""
        SELECT {_COLUMNS}
        FROM period_data
        WHERE period = $1
          AND apartment_id = $2
        ORDER BY item ASC
        """,
        period,
        apartment_id,
    )
    return [_row_out(r) for r in rows]


async def last_period(pool: asyncpg.Pool, *, apartment_id: int) -> str | None:
    row = await db.fetch_one(
        pool,
        """
        SELECT period
        FROM period_data
        WHERE apartment_id = $1
        ORDER BY period DESC
        LIMIT 1
        """,
        apartment_id,
    )
    if row is None:
        return None
    return str(row["period"])


async def db_now(pool: asyncpg.Pool) -> Any:
    return await db.fetch_value(pool, "SELECT now() AS now")

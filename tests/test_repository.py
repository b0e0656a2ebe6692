from __future__ import annotations

import asyncio
import json
from decimal import Decimal

import asyncpg
import pytest

from period_data import repository
from period_data.schemas import PeriodRecordIn
from tests.fakes import FakePool


def _records(*rows: dict) -> list[PeriodRecordIn]:
    return [PeriodRecordIn.model_validate(r) for r in rows]


def test_upsert_runs_all_rows_in_one_transaction() -> None:
    pool = FakePool()
    records = _records(
        {"apartment_id": 5, "period": "2025-08", "item": "water", "curr_value": "12.5", "meta": {"a": [1, 2]}},
        {"apartment_id": 5, "period": "2025-08", "item": "gas"},
    )

    updated = asyncio.run(repository.upsert_records(pool, records))

    assert updated == 2
    assert pool.conn.events == ["begin", "commit"]
    assert pool.acquired == pool.released == 1

    sql, args = pool.conn.executemany_calls[0]
    assert "ON CONFLICT (apartment_id, period, item) DO UPDATE" in sql
    assert args[0] == (5, "2025-08", "water", None, Decimal("12.5"), None, None, json.dumps({"a": [1, 2]}))
    assert args[1][-1] is None


def test_upsert_never_rewrites_identity_or_created_at() -> None:
    set_clause = repository.UPSERT_SQL.split("DO UPDATE", 1)[1]

    for column in ("apartment_id =", "period =", "item =", "created_at"):
        assert column not in set_clause
    assert "updated_at = GREATEST(now(), period_data.updated_at + interval '1 microsecond')" in set_clause


def test_upsert_failure_rolls_back_and_releases_connection() -> None:
    pool = FakePool()
    pool.conn.fail_with = asyncpg.InterfaceError("connection lost")
    records = _records({"apartment_id": 1, "period": "2025-01", "item": "water"})

    with pytest.raises(asyncpg.InterfaceError):
        asyncio.run(repository.upsert_records(pool, records))

    assert pool.conn.events == ["begin", "rollback"]
    assert pool.released == 1


def test_upsert_empty_batch_does_not_touch_pool() -> None:
    pool = FakePool()

    assert asyncio.run(repository.upsert_records(pool, [])) == 0
    assert pool.acquired == 0


def test_meta_serialization_keeps_falsy_values() -> None:
    assert repository._json_arg(None) is None
    assert repository._json_arg({}) == "{}"
    assert repository._json_arg(0) == "0"
    assert repository._json_arg(False) == "false"


def test_list_rows_decode_meta_text() -> None:
    pool = FakePool(
        rows=[
            {"apartment_id": 1, "period": "2025-01", "item": "gas", "meta": '{"zones": [1, 2]}'},
            {"apartment_id": 1, "period": "2025-01", "item": "water", "meta": None},
        ]
    )

    rows = asyncio.run(repository.list_all(pool))

    assert rows[0]["meta"] == {"zones": [1, 2]}
    assert rows[1]["meta"] is None
    sql, _ = pool.queries[0]
    assert "ORDER BY period ASC, apartment_id ASC, item ASC" in sql


def test_list_for_key_binds_period_and_apartment() -> None:
    pool = FakePool()

    asyncio.run(repository.list_for_key(pool, apartment_id=5, period="2025-08"))

    sql, args = pool.queries[0]
    assert args == ("2025-08", 5)
    assert "ORDER BY item ASC" in sql


def test_last_period_none_without_rows() -> None:
    assert asyncio.run(repository.last_period(FakePool(), apartment_id=1)) is None


def test_last_period_returns_label() -> None:
    pool = FakePool(rows=[{"period": "2025-08"}])

    assert asyncio.run(repository.last_period(pool, apartment_id=1)) == "2025-08"
    sql, args = pool.queries[0]
    assert "ORDER BY period DESC" in sql
    assert args == (1,)

"""
Period-data business logic.

Batch policy is atomic: a batch is validated in full before any SQL runs, and
one invalid record rejects the whole request with 400. Valid batches are
written in a single transaction (all rows or none).
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any

import asyncpg
import structlog
from fastapi import HTTPException, status
from pydantic import ValidationError

from . import repository
from .schemas import PeriodRecordIn

log = structlog.get_logger()

# Store rejected the data itself (bad value, constraint violation): caller's fault.
CLIENT_STORE_ERRORS = (asyncpg.DataError, asyncpg.IntegrityConstraintViolationError)
STORE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)


def _bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


def _store_failure(exc: Exception, *, operation: str) -> HTTPException:
    if isinstance(exc, CLIENT_STORE_ERRORS):
        log.warning("store_rejected", operation=operation, error=str(exc))
        return _bad_request(str(exc))
    log.error("store_failed", operation=operation, error=repr(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Database error.")


def _describe_validation_error(index: int, exc: ValidationError) -> str:
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or "record"
    return f"Record {index}: {field}: {first.get('msg', 'invalid value')}"


def parse_batch(payload: Any) -> list[PeriodRecordIn]:
    """
    Validate an upsert body. Raises 400 on the first offending record.
    """
    if not isinstance(payload, list):
        raise _bad_request("Body must be a JSON array of period records.")

    records: list[PeriodRecordIn] = []
    for index, item in enumerate(payload):
        if not isinstance(item, dict):
            raise _bad_request(f"Record {index}: must be a JSON object.")
        try:
            records.append(PeriodRecordIn.model_validate(item))
        except ValidationError as exc:
            raise _bad_request(_describe_validation_error(index, exc)) from exc
    return records


def _decimal_text(value: Decimal) -> str:
    # Fixed-point, never exponent form or float: NUMERIC values go out exactly as stored.
    return format(value, "f")


def present_record(row: dict[str, Any]) -> dict[str, Any]:
    """
    Render NUMERIC columns as exact decimal strings for the JSON response.
    """
    return {k: _decimal_text(v) if isinstance(v, Decimal) else v for k, v in row.items()}


def parse_apartment_id(raw: str | None) -> int:
    value = (raw or "").strip()
    if not value:
        raise _bad_request("apartment_id is required.")
    try:
        return int(value)
    except ValueError as exc:
        raise _bad_request("apartment_id must be an integer.") from exc


async def upsert(pool: asyncpg.Pool, payload: Any) -> dict[str, int]:
    records = parse_batch(payload)
    if not records:
        return {"updated": 0}

    try:
        updated = await repository.upsert_records(pool, records)
    except STORE_ERRORS as exc:
        raise _store_failure(exc, operation="upsert") from exc

    log.info("period_data_upserted", updated=updated)
    return {"updated": updated}


async def list_all(pool: asyncpg.Pool) -> list[dict[str, Any]]:
    try:
        rows = await repository.list_all(pool)
    except STORE_ERRORS as exc:
        raise _store_failure(exc, operation="list") from exc
    return [present_record(r) for r in rows]


async def records_for_key(
    pool: asyncpg.Pool,
    *,
    period: str | None,
    apartment_id: str | None,
) -> list[dict[str, Any]]:
    period = (period or "").strip()
    if not period or not (apartment_id or "").strip():
        raise _bad_request("period and apartment_id are required.")
    apt_id = parse_apartment_id(apartment_id)

    try:
        rows = await repository.list_for_key(pool, apartment_id=apt_id, period=period)
    except STORE_ERRORS as exc:
        raise _store_failure(exc, operation="query") from exc
    return [present_record(r) for r in rows]


async def last_period(pool: asyncpg.Pool, *, apartment_id: str | None) -> dict[str, str | None]:
    apt_id = parse_apartment_id(apartment_id)
    try:
        period = await repository.last_period(pool, apartment_id=apt_id)
    except STORE_ERRORS as exc:
        raise _store_failure(exc, operation="last_period") from exc
    return {"period": period}

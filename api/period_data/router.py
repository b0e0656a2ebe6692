"""
Period-data API endpoints.
"""

from __future__ import annotations

from typing import Any

import asyncpg
from fastapi import APIRouter, Body, Depends, Query

from core import db

from . import schemas, service

router = APIRouter(prefix="/period_data")


@router.post("/upsert", response_model=schemas.UpsertResponse)
async def upsert_period_data(
    payload: Any = Body(default=None),
    pool: asyncpg.Pool = Depends(db.get_pool),
) -> dict:
    """
    Insert or overwrite records keyed by (apartment_id, period, item).

    The batch is all-or-nothing: one invalid record, or one row the database
    rejects, leaves the stored data untouched.
    """
    return await service.upsert(pool, payload)


@router.get("", response_model=None)
async def get_period_data(
    period: str | None = Query(default=None),
    apartment_id: str | None = Query(default=None),
    pool: asyncpg.Pool = Depends(db.get_pool),
) -> list[dict]:
    return await service.records_for_key(pool, period=period, apartment_id=apartment_id)


@router.get("/last", response_model=schemas.LastPeriodResponse)
async def get_last_period(
    apartment_id: str | None = Query(default=None),
    pool: asyncpg.Pool = Depends(db.get_pool),
) -> dict:
    """
    Most recent period recorded for the apartment, or null when it has none.
    """
    return await service.last_period(pool, apartment_id=apartment_id)


@router.get("/list", response_model=None)
async def list_period_data(pool: asyncpg.Pool = Depends(db.get_pool)) -> list[dict]:
    return await service.list_all(pool)

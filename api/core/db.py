"""
Async database access helpers (raw SQL) using asyncpg.

The connection pool is an explicit resource: `main.lifespan` creates it once
per process, stores it on `app.state.pool`, and closes it on shutdown. Route
handlers receive it through the `get_pool` dependency.

SQL parameter style:
- asyncpg uses positional placeholders: $1, $2, $3, ...
"""

from __future__ import annotations

import ssl
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import asyncpg
from fastapi import HTTPException, Request

from .config import Settings


def _sanitize_database_url(url: str) -> str:
    parts = urlsplit(url)
    if not parts.query:
        return url

    params = [(k, v) for (k, v) in parse_qsl(parts.query, keep_blank_values=True) if k != "sslmode"]
    query = urlencode(params)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def database_url(settings: Settings) -> str:
    url = (settings.database_url or "").strip()
    if not url:
        raise RuntimeError("DATABASE_URL is not set.")
    return _sanitize_database_url(url)


def ssl_context(settings: Settings) -> ssl.SSLContext | bool:
    """
    TLS settings for asyncpg.

    - disable:     plain TCP
    - require:     encrypted, server certificate not verified (private networks)
    - verify-full: encrypted, certificate and hostname verified
    """
    mode = settings.db_ssl_mode
    if mode == "disable":
        return False

    ctx = ssl.create_default_context(cafile=settings.db_ssl_root_cert or None)
    if mode == "require":
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
    return ctx


async def create_pool(settings: Settings) -> asyncpg.Pool:
    return await asyncpg.create_pool(
        dsn=database_url(settings),
        ssl=ssl_context(settings),
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
        command_timeout=settings.db_command_timeout,
        server_settings={"search_path": f"{settings.db_schema}, public"},
    )


async def close_pool(pool: asyncpg.Pool | None) -> None:
    if pool is None:
        return None
    await pool.close()


def get_pool(request: Request) -> asyncpg.Pool:
    pool = getattr(request.app.state, "pool", None)
    if pool is None:
        raise HTTPException(status_code=500, detail="Database pool is not initialized.")
    return pool


def _record_to_dict(record: asyncpg.Record) -> dict[str, Any]:
    return dict(record)


async def fetch_one(pool: asyncpg.Pool, sql: str, *args: Any) -> dict[str, Any] | None:
    """
    Run a query and return a single row as a dict (or None).
    """
    row = await pool.fetchrow(sql, *args)
    return _record_to_dict(row) if row is not None else None


async def fetch_all(pool: asyncpg.Pool, sql: str, *args: Any) -> list[dict[str, Any]]:
    """
    Run a query and return all rows as a list of dicts.
    """
    rows = await pool.fetch(sql, *args)
    return [_record_to_dict(r) for r in rows]


async def fetch_value(pool: asyncpg.Pool, sql: str, *args: Any) -> Any:
    return await pool.fetchval(sql, *args)

from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core import db
from core.config import Settings, get_settings
from core.logging import setup_logging
from core.middleware import (
    BodySizeLimitMiddleware,
    RateLimitMiddleware,
    RequestLogMiddleware,
    SecurityHeadersMiddleware,
)
from period_data import bootstrap
from period_data import repository as period_data_repository
from period_data import router as period_data_router
from period_data.service import STORE_ERRORS

log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    # One pool per process; the schema must exist before serving traffic.
    pool = await db.create_pool(settings)
    try:
        await bootstrap.ensure_schema(pool, settings.db_schema)
    except Exception:
        log.exception("schema_bootstrap_failed", schema=settings.db_schema)
        await db.close_pool(pool)
        raise

    app.state.pool = pool
    log.info("db_pool_ready", min_size=settings.db_pool_min_size, max_size=settings.db_pool_max_size)
    try:
        yield
    finally:
        app.state.pool = None
        await db.close_pool(pool)
        log.info("db_pool_closed")


async def _validation_error_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.log_level)

    app = FastAPI(title="komunalka-api", lifespan=lifespan)
    app.state.settings = settings
    app.state.pool = None

    # Last added runs first: request log, security headers, CORS, size check, rate limit.
    if settings.rate_limit_requests > 0:
        app.add_middleware(
            RateLimitMiddleware,
            max_requests=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )
    app.add_middleware(BodySizeLimitMiddleware, max_body_bytes=settings.max_body_bytes)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list(),
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestLogMiddleware)

    app.add_exception_handler(RequestValidationError, _validation_error_handler)

    app.include_router(period_data_router.router, prefix=settings.api_prefix, tags=["period_data"])

    @app.get(f"{settings.api_prefix}/health")
    async def health(request: Request):
        pool = request.app.state.pool
        try:
            if pool is None:
                raise RuntimeError("DB pool is not initialized.")
            now = await period_data_repository.db_now(pool)
        except (RuntimeError, *STORE_ERRORS) as exc:
            log.error("health_check_failed", error=repr(exc))
            return JSONResponse(
                status_code=500,
                content={"ok": False, "status": "error", "error": str(exc) or exc.__class__.__name__},
            )
        return {"ok": True, "status": "ok", "now": now}

    @app.get("/")
    def root() -> dict:
        return {"message": "komunalka-api is running"}

    return app


app = create_app()


def run() -> None:
    settings = get_settings()
    # uvicorn turns SIGTERM/SIGINT into lifespan shutdown, which closes the pool.
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    run()

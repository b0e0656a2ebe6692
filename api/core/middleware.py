"""
HTTP middleware: per-client rate limit, request size limit, security headers,
request log.

CORS is handled by FastAPI's CORSMiddleware (see `main.py`).
"""

from __future__ import annotations

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

log = structlog.get_logger()


def _client_key(request: Request) -> str:
    client = request.client
    return client.host if client is not None else "unknown"


class FixedWindowLimiter:
    """
    In-memory fixed-window counter keyed by client.

    Counts are per process; several replicas each enforce the limit separately.
    Expired windows are swept once the table grows past `prune_threshold`,
    at most once per window length.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock=time.monotonic,
        prune_threshold: int = 10_000,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.prune_threshold = prune_threshold
        self._clock = clock
        self._windows: dict[str, tuple[float, int]] = {}
        self._last_prune = clock()
        self.prune_runs = 0

    def hit(self, key: str) -> bool:
        """Count one request for `key`; return False once the window is exhausted."""
        now = self._clock()
        if len(self._windows) > self.prune_threshold and now - self._last_prune >= self.window_seconds:
            self._prune(now)

        started, count = self._windows.get(key, (now, 0))
        if now - started >= self.window_seconds:
            started, count = now, 0
        if count >= self.max_requests:
            self._windows[key] = (started, count)
            return False
        self._windows[key] = (started, count + 1)
        return True

    def tracked_clients(self) -> int:
        return len(self._windows)

    def _prune(self, now: float) -> None:
        self._last_prune = now
        self.prune_runs += 1
        expired = [k for k, (started, _) in self._windows.items() if now - started >= self.window_seconds]
        for key in expired:
            del self._windows[key]


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, *, max_requests: int, window_seconds: float) -> None:
        super().__init__(app)
        self.limiter = FixedWindowLimiter(max_requests, window_seconds)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        key = _client_key(request)
        if not self.limiter.hit(key):
            log.warning("rate_limited", client=key, path=request.url.path)
            return JSONResponse({"detail": "Too Many Requests"}, status_code=429)
        return await call_next(request)


class BodySizeLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, *, max_body_bytes: int) -> None:
        super().__init__(app)
        self.max_body_bytes = max_body_bytes

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        raw = request.headers.get("content-length")
        if raw is not None:
            try:
                declared = int(raw)
            except ValueError:
                return JSONResponse({"detail": "Invalid Content-Length header."}, status_code=400)
            if declared > self.max_body_bytes:
                return JSONResponse({"detail": "Request body too large."}, status_code=413)
        return await call_next(request)


class RequestLogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            log.info(
                "request",
                method=request.method,
                path=request.url.path,
                status=status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
                client=_client_key(request),
            )


# Same defaults helmet() applies to an Express app.
SECURITY_HEADERS = {
    "Content-Security-Policy": "default-src 'self'; frame-ancestors 'self'; object-src 'none'",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Origin-Agent-Cluster": "?1",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "X-Content-Type-Options": "nosniff",
    "X-DNS-Prefetch-Control": "off",
    "X-Download-Options": "noopen",
    "X-Frame-Options": "SAMEORIGIN",
    "X-Permitted-Cross-Domain-Policies": "none",
    "X-XSS-Protection": "0",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response

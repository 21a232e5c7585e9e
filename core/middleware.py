"""
core/middleware.py: HTTP Middleware
======================================
    RateLimitMiddleware   fixed window per client IP, 429 over the limit
                          (X-Forwarded-For only when proxy headers are trusted)
    RequestLogMiddleware  one access-log line per request
"""

import ipaddress
import logging
import time

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from core.errors import ErrorCode, message_for

logger = logging.getLogger("deedchain.http")


def _is_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
        return True
    except ValueError:
        return False


def _peer_is_trusted(peer: str, trusted_proxies: tuple[str, ...]) -> bool:
    """An empty allowlist trusts any peer once proxy headers are switched on."""
    if not trusted_proxies:
        return True
    if not _is_ip(peer):
        return False
    peer_ip = ipaddress.ip_address(peer)
    for entry in trusted_proxies:
        try:
            if peer_ip in ipaddress.ip_network(entry, strict=False):
                return True
        except ValueError:
            logger.warning(f"Ignoring malformed trusted proxy entry: {entry}")
    return False


def client_ip(
    request: Request,
    trust_proxy_headers: bool = False,
    trusted_proxies: tuple[str, ...] = (),
) -> str:
    """
    The socket peer, unless proxy headers are trusted and the peer is an
    allowed proxy, in which case the left-most X-Forwarded-For entry.
    """
    peer = request.client.host if request.client else "unknown"
    if trust_proxy_headers and _peer_is_trusted(peer, trusted_proxies):
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            candidate = forwarded.split(",")[0].strip()
            if _is_ip(candidate):
                return candidate
    return peer


class RateLimitMiddleware(BaseHTTPMiddleware):
    """In-memory fixed window limiter. Single process only."""

    def __init__(
        self,
        app,
        *,
        max_requests: int = 100,
        window_seconds: int = 900,
        exempt_prefixes: tuple[str, ...] = ("/health",),
        prune_every: int = 256,
        trust_proxy_headers: bool = False,
        trusted_proxies: tuple[str, ...] = (),
    ):
        super().__init__(app)
        self.trust_proxy_headers = trust_proxy_headers
        self.trusted_proxies = tuple(trusted_proxies)
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.exempt_prefixes = exempt_prefixes
        self.prune_every = max(1, prune_every)
        # ip -> (window_start, count)
        self._windows: dict[str, tuple[float, int]] = {}
        self._req_count = 0

    def _prune(self, now: float):
        cutoff = now - self.window_seconds
        for ip in [ip for ip, (start, _) in self._windows.items() if start <= cutoff]:
            self._windows.pop(ip, None)

    def hit(self, ip: str, now: float) -> bool:
        """Count one request from `ip`; False once the window is used up."""
        self._req_count += 1
        if self._req_count % self.prune_every == 0:
            self._prune(now)

        start, count = self._windows.get(ip, (now, 0))
        if now - start >= self.window_seconds:
            start, count = now, 0
        count += 1
        self._windows[ip] = (start, count)
        return count <= self.max_requests

    async def dispatch(self, request: Request, call_next):
        path = request.url.path or ""
        if path.startswith(self.exempt_prefixes):
            return await call_next(request)

        ip = client_ip(request, self.trust_proxy_headers, self.trusted_proxies)
        if not self.hit(ip, time.monotonic()):
            logger.warning(f"Rate limit exceeded for {ip} on {request.method} {path}")
            return JSONResponse(
                status_code=429,
                content={
                    "success": False,
                    "message": message_for(ErrorCode.RATE_LIMITED),
                    "code": ErrorCode.RATE_LIMITED.value,
                },
            )
        return await call_next(request)


class RequestLogMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            f"{client_ip(request)} {request.method} {request.url.path} "
            f"{response.status_code} {elapsed_ms:.1f}ms"
        )
        return response

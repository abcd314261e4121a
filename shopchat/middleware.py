import json
import logging
import threading
import time
from typing import Any, Dict, List, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One JSON line per request on the access logger."""

    def __init__(self, app, logger: Optional[logging.Logger] = None):
        super().__init__(app)
        self.logger = logger or logging.getLogger("shopchat.access")

    async def dispatch(self, request: Request, call_next):
        start = time.time()
        ip = (request.client.host if request.client else None) or ""
        status = 500
        try:
            response: Response = await call_next(request)
            status = response.status_code
            return response
        finally:
            log: Dict[str, Any] = {
                "ts": int(time.time() * 1000),
                "ip": ip,
                "method": request.method,
                "path": request.url.path,
                "status": status,
                "duration_ms": int((time.time() - start) * 1000),
            }
            self.logger.info(json.dumps(log))


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Sliding-window request cap per client IP."""

    def __init__(self, app, max_requests: int = 60, window_seconds: int = 60):
        super().__init__(app)
        self.max_requests = int(max_requests)
        self.window = int(window_seconds)
        self.buckets: Dict[str, List[float]] = {}
        self.lock = threading.Lock()
        self.last_sweep = 0.0

    def _sweep(self, cutoff: float) -> None:
        # Drop clients with no request inside the window
        for ip in [ip for ip, bucket in self.buckets.items() if not bucket or bucket[-1] < cutoff]:
            del self.buckets[ip]

    def allow(self, ip: str, now: float) -> bool:
        with self.lock:
            cutoff = now - self.window
            if now - self.last_sweep >= self.window:
                self._sweep(cutoff)
                self.last_sweep = now
            bucket = self.buckets.setdefault(ip, [])
            expired = 0
            while expired < len(bucket) and bucket[expired] < cutoff:
                expired += 1
            if expired:
                del bucket[:expired]
            if len(bucket) >= self.max_requests:
                return False
            bucket.append(now)
            return True

    async def dispatch(self, request: Request, call_next):
        ip = (request.client.host if request.client else "") or ""
        if not self.allow(ip, time.time()):
            return JSONResponse(
                {"success": False, "error": "Rate limited", "code": "RATE_LIMITED"},
                status_code=429,
            )
        return await call_next(request)

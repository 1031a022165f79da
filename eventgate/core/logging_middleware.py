from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from typing import Optional
import time
import logging

logger = logging.getLogger(__name__)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for request logging from scanner stations and admin dashboards"""

    def __init__(self, app, exclude_paths: Optional[list] = None):
        super().__init__(app)
        self.exclude_paths = exclude_paths or [
            "/docs",
            "/redoc",
            "/openapi.json",
            "/favicon.ico",
            "/health",
        ]

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        if any(request.url.path.startswith(path) for path in self.exclude_paths):
            return await call_next(request)

        method = request.method
        path = request.url.path
        client_ip = self._get_client_ip(request)

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(f"Request failed: {method} {path} - IP: {client_ip} - {e}")
            raise

        response_time = time.time() - start_time
        status_code = response.status_code

        if self._should_log_request(method, path, status_code):
            logger.info(
                f"Request: {method} {path} - Status: {status_code} - "
                f"Time: {response_time:.3f}s - IP: {client_ip} - "
                f"Success: {200 <= status_code < 400}"
            )

        return response

    def _get_client_ip(self, request: Request) -> str:
        """Extract client IP address from request"""
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip

        return request.client.host if request.client else "unknown"

    def _should_log_request(self, method: str, path: str, status_code: int) -> bool:
        # Every scan verification and admission is worth a line
        if method != "GET":
            return True

        if path.startswith("/checkin"):
            return True

        return status_code >= 400

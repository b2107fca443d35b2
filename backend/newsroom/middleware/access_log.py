from __future__ import annotations

import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from ..observability.logging import get_logger


class AccessLogMiddleware(BaseHTTPMiddleware):
    """
    Structured access logs (JSON) for every request.
    """

    def __init__(self, app):
        super().__init__(app)
        self._log = get_logger("access")

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        start = time.perf_counter()
        method = request.method.upper()
        client = getattr(request, "client", None)
        client_host = getattr(client, "host", None) if client else None
        user_agent = request.headers.get("user-agent")

        try:
            response = await call_next(request)
        except Exception:
            self._log.exception(
                "request_error",
                http_method=method,
                path=path,
                duration_ms=round((time.perf_counter() - start) * 1000.0, 2),
                client_ip=client_host,
                user_agent=user_agent,
            )
            raise

        self._log.info(
            "request",
            http_method=method,
            path=path,
            status_code=int(getattr(response, "status_code", 0) or 0),
            duration_ms=round((time.perf_counter() - start) * 1000.0, 2),
            client_ip=client_host,
            user_agent=user_agent,
        )
        return response

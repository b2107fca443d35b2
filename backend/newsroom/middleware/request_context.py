from __future__ import annotations

import re
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from ..observability.context import request_id_var

# Inbound ids are echoed back in headers and logs; keep them short and inert.
_SAFE_REQUEST_ID = re.compile(r"^[A-Za-z0-9._:\-]{1,128}$")


def resolve_request_id(inbound: str | None) -> str:
    candidate = str(inbound or "").strip()
    if candidate and _SAFE_REQUEST_ID.match(candidate):
        return candidate
    return str(uuid.uuid4())


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    - Accepts a well-formed inbound X-Request-Id or generates a UUIDv4.
    - Stores it in request.state.request_id.
    - Exposes it via a contextvar so downstream logging can include it.
    - Always echoes X-Request-Id on the response.
    """

    header_name = "X-Request-Id"

    async def dispatch(self, request: Request, call_next):
        request_id = resolve_request_id(request.headers.get("x-request-id"))

        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        try:
            response = await call_next(request)
            response.headers[self.header_name] = request_id
            return response
        finally:
            request_id_var.reset(token)

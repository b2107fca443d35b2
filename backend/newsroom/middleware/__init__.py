from __future__ import annotations

from .access_log import AccessLogMiddleware
from .body_parser import BodyParserMiddleware, ParsedBody, get_parsed_body
from .normalize_path import NormalizePathMiddleware
from .request_context import RequestContextMiddleware

__all__ = [
    "AccessLogMiddleware",
    "BodyParserMiddleware",
    "NormalizePathMiddleware",
    "ParsedBody",
    "RequestContextMiddleware",
    "get_parsed_body",
]

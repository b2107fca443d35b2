from __future__ import annotations

from .context import get_request_id, request_id_var
from .logging import configure_logging, get_logger

__all__ = ["configure_logging", "get_logger", "get_request_id", "request_id_var"]

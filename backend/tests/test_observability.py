from __future__ import annotations

import logging

from fastapi.testclient import TestClient
from structlog.testing import capture_logs

from newsroom.main import create_app
from newsroom.observability.context import get_request_id, request_id_var
from newsroom.observability.logging import _add_request_id, configure_logging


def test_request_id_processor_uses_context():
    token = request_id_var.set("rid-42")
    try:
        assert get_request_id() == "rid-42"
        assert _add_request_id(None, "info", {"event": "x"}) == {"event": "x", "request_id": "rid-42"}
    finally:
        request_id_var.reset(token)
    assert _add_request_id(None, "info", {"event": "x"}) == {"event": "x"}


def test_configure_logging_is_idempotent_and_adjusts_level():
    configure_logging(level="INFO")
    root = logging.getLogger()
    handlers = list(root.handlers)

    configure_logging(level="warning")
    assert root.level == logging.WARNING
    assert root.handlers == handlers

    configure_logging(level="INFO")
    assert logging.getLogger("uvicorn.error").propagate is True


def test_access_log_records_each_request(settings):
    client = TestClient(create_app(settings))

    with capture_logs() as logs:
        client.get("/users/1", headers={"User-Agent": "pytest"})
        client.get("/missing")

    access = [e for e in logs if e["event"] == "request"]
    assert [(e["path"], e["status_code"]) for e in access] == [("/users/1", 501), ("/missing", 404)]
    assert access[0]["http_method"] == "GET"
    assert access[0]["user_agent"] == "pytest"
    assert access[0]["duration_ms"] >= 0


def test_body_parse_failures_are_logged(settings):
    client = TestClient(create_app(settings))

    with capture_logs() as logs:
        client.post("/news", content=b"[1,", headers={"Content-Type": "application/json"})

    failed = [e for e in logs if e["event"] == "body_parse_failed"]
    assert failed and failed[0]["status_code"] == 400
    assert failed[0]["path"] == "/news"

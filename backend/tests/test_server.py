from __future__ import annotations

import socket

import pytest
from structlog.testing import capture_logs

from newsroom import cli
from newsroom.errors import StartupError
from newsroom.main import create_app
from newsroom.server import bind_socket, serve
from newsroom.settings import Settings


def test_bind_socket_listens_on_ephemeral_port():
    sock = bind_socket("127.0.0.1", 0)
    try:
        assert sock.getsockname()[1] > 0
    finally:
        sock.close()


def test_bind_socket_reports_port_in_use():
    holder = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    holder.bind(("127.0.0.1", 0))
    holder.listen(1)
    port = holder.getsockname()[1]
    try:
        with pytest.raises(StartupError) as ei:
            bind_socket("127.0.0.1", port)
        assert ei.value.port == port
        assert isinstance(ei.value.error, OSError)
    finally:
        holder.close()


def test_serve_logs_and_raises_on_bind_failure(monkeypatch):
    def _fail(host, port, **_):
        raise StartupError(host, port, OSError(98, "Address already in use"))

    monkeypatch.setattr("newsroom.server.bind_socket", _fail)
    settings = Settings(host="127.0.0.1", port=3000)
    app = create_app(settings)

    with capture_logs() as logs:
        with pytest.raises(StartupError):
            serve(app, settings)

    failed = [e for e in logs if e["event"] == "server_bind_failed"]
    assert failed and failed[0]["port"] == 3000
    assert failed[0]["errno"] == 98
    assert not [e for e in logs if e["event"] == "server_listening"]


def test_serve_logs_readiness_with_bound_port(monkeypatch):
    ran = {}

    class FakeServer:
        def __init__(self, config):
            ran["config"] = config

        def run(self, sockets=None):
            ran["sockets"] = sockets

    monkeypatch.setattr("newsroom.server.uvicorn.Server", FakeServer)
    settings = Settings(host="127.0.0.1", port=0)
    app = create_app(settings)

    with capture_logs() as logs:
        serve(app, settings)

    ready = [e for e in logs if e["event"] == "server_listening"]
    assert ready and ready[0]["port"] > 0
    assert ready[0]["message"] == f"Server is listening on {ready[0]['port']}"
    assert len(ran["sockets"]) == 1
    assert ran["sockets"][0].fileno() == -1  # closed after the server stops


def test_cli_exits_nonzero_on_bind_failure(monkeypatch):
    def _fail(app, settings):
        raise StartupError(settings.host, settings.port, OSError(98, "Address already in use"))

    monkeypatch.setattr(cli, "serve", _fail)
    assert cli.main(["--port", "3000"]) == cli.EXIT_BIND_FAILED


def test_cli_exits_with_config_error_on_bad_environment(monkeypatch):
    monkeypatch.setenv("PORT", "not-a-port")
    monkeypatch.setattr(cli, "serve", lambda app, settings: pytest.fail("must not serve"))
    assert cli.main([]) == cli.EXIT_CONFIG_ERROR


def test_cli_exits_with_config_error_on_bad_route_collection(monkeypatch):
    monkeypatch.setenv("USERS_ROUTES", "no_such_module_anywhere:router")
    monkeypatch.setattr(cli, "serve", lambda app, settings: pytest.fail("must not serve"))
    assert cli.main([]) == cli.EXIT_CONFIG_ERROR


def test_cli_flags_override_environment(monkeypatch, tmp_path):
    seen = {}

    def _serve(app, settings):
        seen["settings"] = settings
        seen["app"] = app

    env_file = tmp_path / "server.env"
    env_file.write_text("PORT=4000\nHOST=127.0.0.1\n", encoding="utf-8")
    monkeypatch.setattr(cli, "serve", _serve)

    assert cli.main(["--env-file", str(env_file), "--port", "5001"]) == cli.EXIT_OK
    assert seen["settings"].port == 5001
    assert seen["settings"].host == "127.0.0.1"
    assert seen["app"].state.settings is seen["settings"]
    monkeypatch.delenv("HOST", raising=False)
    monkeypatch.delenv("PORT", raising=False)


def test_serve_closes_socket_when_server_fails_after_bind(monkeypatch):
    ran = {}

    class FailingServer:
        def __init__(self, config):
            pass

        def run(self, sockets=None):
            ran["sockets"] = sockets
            raise RuntimeError("event loop died")

    monkeypatch.setattr("newsroom.server.uvicorn.Server", FailingServer)
    settings = Settings(host="127.0.0.1", port=0)
    app = create_app(settings)

    with capture_logs() as logs:
        with pytest.raises(RuntimeError):
            serve(app, settings)

    assert ran["sockets"][0].fileno() == -1
    assert [e for e in logs if e["event"] == "server_stopped"]


def test_serve_builds_server_config_before_binding(monkeypatch):
    def _fail_config(*args, **kwargs):
        raise ValueError("bad server config")

    bound = []
    monkeypatch.setattr("newsroom.server.uvicorn.Config", _fail_config)
    monkeypatch.setattr("newsroom.server.bind_socket", lambda *a, **k: bound.append(a))
    settings = Settings(host="127.0.0.1", port=0)
    app = create_app(settings)

    with capture_logs() as logs:
        with pytest.raises(ValueError):
            serve(app, settings)

    assert bound == []
    assert not [e for e in logs if e["event"] == "server_listening"]


@pytest.mark.parametrize("value", ["WARN", "bogus"])
def test_cli_exits_with_config_error_on_bad_log_level(monkeypatch, value):
    monkeypatch.setenv("LOG_LEVEL", value)
    monkeypatch.setattr(cli, "serve", lambda app, settings: pytest.fail("must not serve"))
    assert cli.main([]) == cli.EXIT_CONFIG_ERROR


def test_cli_rejects_bad_log_level_flag(monkeypatch):
    monkeypatch.setattr(cli, "serve", lambda app, settings: pytest.fail("must not serve"))
    assert cli.main(["--log-level", "WARN"]) == cli.EXIT_CONFIG_ERROR

from __future__ import annotations

import socket

import uvicorn
from fastapi import FastAPI

from .errors import StartupError
from .observability.logging import get_logger
from .settings import Settings

DEFAULT_BACKLOG = 2048


def bind_socket(host: str, port: int, *, backlog: int = DEFAULT_BACKLOG) -> socket.socket:
    """
    Create, bind and listen on a TCP socket. OSError (port in use, bad
    address, no permission) is raised as StartupError.
    """
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
        sock.listen(backlog)
    except OSError as e:
        sock.close()
        raise StartupError(host, port, e) from e
    sock.set_inheritable(True)
    return sock


def serve(app: FastAPI, settings: Settings) -> None:
    """
    Bind the listening socket, log readiness, and run uvicorn on it until
    shutdown. A bind failure is logged and re-raised as StartupError; the
    caller decides the exit code.
    """
    log = get_logger("server")

    # Build the server first so a bad config never leaves a bound socket.
    config = uvicorn.Config(
        app,
        # Logging is already configured; keep uvicorn from replacing it.
        log_config=None,
        log_level=str(settings.log_level).lower(),
        # AccessLogMiddleware covers request logs.
        access_log=False,
    )
    server = uvicorn.Server(config)

    try:
        sock = bind_socket(settings.host, settings.port)
    except StartupError as e:
        log.error(
            "server_bind_failed",
            host=e.host,
            port=e.port,
            error=str(e.error),
            errno=e.error.errno,
        )
        raise

    port = int(sock.getsockname()[1])
    log.info("server_listening", host=settings.host, port=port, message=f"Server is listening on {port}")

    try:
        server.run(sockets=[sock])
    finally:
        sock.close()
        log.info("server_stopped", port=port)

from __future__ import annotations

import argparse
import sys

from .errors import ConfigurationError, RouteCollectionError, StartupError
from .main import create_app
from .observability.logging import configure_logging, get_logger
from .server import serve
from .settings import DEFAULT_ENV_FILE, build_settings, load_environment

EXIT_OK = 0
EXIT_BIND_FAILED = 1
EXIT_CONFIG_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="newsroom-server",
        description="Serve the /users and /news route collections over HTTP",
    )
    parser.add_argument("--host", type=str, help="Address to bind (overrides HOST)")
    parser.add_argument("--port", type=int, help="Port to bind (overrides PORT)")
    parser.add_argument(
        "--env-file",
        type=str,
        default=DEFAULT_ENV_FILE,
        help="Environment file to load before reading settings (default: .env)",
    )
    parser.add_argument("--log-level", type=str, help="Log level (overrides LOG_LEVEL)")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    load_environment(args.env_file)
    overrides = {
        k: v
        for k, v in {"host": args.host, "port": args.port, "log_level": args.log_level}.items()
        if v is not None
    }

    try:
        settings = build_settings(**overrides)
        app = create_app(settings)
    except (ConfigurationError, RouteCollectionError) as e:
        configure_logging(level="INFO")
        get_logger("startup").error("startup_failed", error=str(e))
        return EXIT_CONFIG_ERROR

    try:
        serve(app, settings)
    except StartupError:
        # Already logged by serve(); a server that cannot listen is useless.
        return EXIT_BIND_FAILED
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())

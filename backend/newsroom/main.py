from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import Response

from .errors import BodyParseError
from .middleware.access_log import AccessLogMiddleware
from .middleware.body_parser import BodyParserMiddleware
from .middleware.normalize_path import NormalizePathMiddleware
from .middleware.request_context import RequestContextMiddleware
from .observability.logging import configure_logging, get_logger
from .problem_details import problem_response
from .routes import (
    NEWS_PREFIX,
    USERS_PREFIX,
    RouteCollection,
    mount_route_collection,
    resolve_route_collection,
)
from .settings import Settings, get_settings

APP_TITLE = "Newsroom API"
APP_VERSION = "1.0.0"


def create_app(
    settings: Settings | None = None,
    *,
    users_routes: RouteCollection | None = None,
    news_routes: RouteCollection | None = None,
) -> FastAPI:
    """
    Build the HTTP application: body parsing, request context, access logs,
    problem+json error handlers, and the /users and /news route collections.

    Nothing here touches the network, so the returned app can be driven
    in-process (e.g. with TestClient) whether or not a socket is ever bound.
    Collections passed in win over USERS_ROUTES / NEWS_ROUTES import strings,
    which win over the 501 placeholders.

    `app.state.settings` holds the settings used, and
    `app.state.route_collections` maps each prefix to how its collection was
    attached ("router" or "asgi").
    """
    settings = settings or get_settings()

    # Logging must be configured before the app starts handling requests.
    configure_logging(level=settings.log_level)
    log = get_logger("startup")

    app = FastAPI(
        title=APP_TITLE,
        version=APP_VERSION,
        default_response_class=ORJSONResponse,
        # Only the mounted collections serve paths; everything else is a 404.
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        # Avoid 307/308 redirects between /path and /path/ behind proxies.
        redirect_slashes=False,
    )
    app.state.settings = settings

    log.info("app_starting", settings=settings.to_log_safe_dict())

    # Routes
    users = resolve_route_collection("users", users_routes, settings.users_routes)
    news = resolve_route_collection("news", news_routes, settings.news_routes)
    mounted = {
        USERS_PREFIX: mount_route_collection(app, USERS_PREFIX, users),
        NEWS_PREFIX: mount_route_collection(app, NEWS_PREFIX, news),
    }
    app.state.route_collections = mounted

    # Middlewares (order matters; last added is outermost)
    # Innermost: bodies are parsed right before routing.
    app.add_middleware(
        BodyParserMiddleware,
        json_limit=settings.json_body_limit,
        urlencoded_limit=settings.urlencoded_body_limit,
        parameter_limit=settings.urlencoded_parameter_limit,
    )
    asgi_prefixes = [prefix for prefix, kind in mounted.items() if kind == "asgi"]
    if asgi_prefixes:
        app.add_middleware(NormalizePathMiddleware, prefixes=asgi_prefixes)
    # Access logs (structured JSON)
    app.add_middleware(AccessLogMiddleware)
    # Outermost: request context (request-id) wraps everything.
    app.add_middleware(RequestContextMiddleware)

    # Error handlers
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(BodyParseError, _body_parse_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _unhandled_exception_handler)

    return app


def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> Response:
    status_code = int(getattr(exc, "status_code", 500) or 500)
    detail = getattr(exc, "detail", None)

    title: str | None = None
    extensions: dict | None = None
    safe_detail: str | None = None

    if isinstance(detail, dict):
        extensions = detail
        if isinstance(detail.get("error"), str):
            title = detail.get("error")
        msg = detail.get("message")
        if isinstance(msg, str) and msg.strip():
            safe_detail = msg.strip()
    elif detail is not None:
        safe_detail = str(detail)

    if status_code == 404 and safe_detail in (None, "Not Found"):
        safe_detail = "Route not found"

    return problem_response(
        request=request,
        status_code=status_code,
        title=title,
        detail=safe_detail,
        extensions=extensions,
        headers=getattr(exc, "headers", None),
    )


def _validation_error_handler(request: Request, exc: RequestValidationError) -> Response:
    errors: list[dict[str, object]] = []
    for e in exc.errors():
        loc = e.get("loc") or ()
        loc_path = ".".join([str(x) for x in loc if x != "body"])
        errors.append(
            {
                "location": list(loc) if isinstance(loc, (list, tuple)) else [],
                "path": loc_path,
                "message": e.get("msg", "Invalid value"),
                "type": e.get("type"),
            }
        )
    return problem_response(
        request=request,
        status_code=422,
        title="Validation Failed",
        detail="Request validation failed",
        errors=errors,
    )


def _body_parse_error_handler(request: Request, exc: BodyParseError) -> Response:
    return problem_response(
        request=request,
        status_code=exc.status_code,
        title=exc.title,
        detail=exc.detail,
    )


def _unhandled_exception_handler(request: Request, exc: Exception) -> Response:
    # Keep the HTTP response generic in production (see problem_response),
    # but operators need stack traces.
    rid = getattr(getattr(request, "state", None), "request_id", None)
    get_logger("unhandled").error(
        "unhandled_exception",
        request_id=str(rid) if rid else None,
        http_method=str(request.method or "").upper() or None,
        path=str(request.url.path or ""),
        exc_info=exc,
    )

    return problem_response(
        request=request,
        status_code=500,
        title="Internal Server Error",
        detail=str(exc) if exc else None,
    )

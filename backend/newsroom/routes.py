from __future__ import annotations

import importlib
import inspect
from typing import Any, Union

from fastapi import APIRouter, FastAPI, HTTPException
from starlette.applications import Starlette

from .errors import RouteCollectionError
from .observability.logging import get_logger

USERS_PREFIX = "/users"
NEWS_PREFIX = "/news"

ALL_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS", "HEAD"]

# An APIRouter, or any ASGI application handling requests under its prefix.
RouteCollection = Union[APIRouter, Any]


def not_implemented_collection(name: str) -> APIRouter:
    """
    Placeholder collection: every method on the prefix and any sub-path
    answers 501 until a real collection is supplied.
    """
    router = APIRouter(tags=[name])

    def _not_implemented(path: str = ""):
        raise HTTPException(status_code=501, detail=f"Not implemented: {name}")

    router.add_api_route("", _not_implemented, methods=ALL_METHODS, include_in_schema=False)
    router.add_api_route(
        "/{path:path}", _not_implemented, methods=ALL_METHODS, include_in_schema=False
    )
    return router


def _is_collection(obj: Any) -> bool:
    return isinstance(obj, APIRouter) or (callable(obj) and not isinstance(obj, type))


def load_route_collection(target: str) -> RouteCollection:
    """
    Resolve a "package.module:attribute" import string to a route collection.

    The attribute may be the collection itself or a zero-argument factory
    returning one.
    """
    module_path, sep, attr_path = str(target or "").strip().partition(":")
    if not sep or not module_path or not attr_path:
        raise RouteCollectionError(target, 'expected "package.module:attribute"')

    try:
        module: Any = importlib.import_module(module_path)
    except ImportError as e:
        raise RouteCollectionError(target, f"module not importable ({e})") from e

    obj: Any = module
    for part in attr_path.split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError as e:
            raise RouteCollectionError(target, f"attribute {part!r} not found") from e

    if isinstance(obj, APIRouter):
        return obj

    # Factories are plain functions; ASGI apps are instances or async callables.
    if callable(obj) and not _looks_like_asgi_app(obj):
        try:
            obj = obj()
        except TypeError as e:
            raise RouteCollectionError(target, f"factory call failed ({e})") from e

    if not _is_collection(obj):
        raise RouteCollectionError(
            target, f"resolved to {type(obj).__name__}, not an APIRouter or ASGI app"
        )
    return obj


def _looks_like_asgi_app(obj: Any) -> bool:
    if isinstance(obj, Starlette):
        return True
    call = obj if inspect.isfunction(obj) else getattr(obj, "__call__", None)
    if call is None:
        return False
    if inspect.iscoroutinefunction(call):
        try:
            params = inspect.signature(call).parameters
        except (TypeError, ValueError):
            return False
        return len(params) == 3
    return False


def resolve_route_collection(
    name: str, explicit: RouteCollection | None, target: str | None
) -> RouteCollection:
    if explicit is not None:
        return explicit
    if target and str(target).strip():
        return load_route_collection(target)
    return not_implemented_collection(name)


def mount_route_collection(app: FastAPI, prefix: str, collection: RouteCollection) -> str:
    """
    Attach a route collection under `prefix`. Routers are included so their
    routes share the app's middleware and error handlers; other ASGI apps are
    mounted and receive the path with the prefix stripped.
    """
    log = get_logger("routes")
    if isinstance(collection, APIRouter):
        app.include_router(collection, prefix=prefix)
        log.info("route_collection_mounted", prefix=prefix, kind="router")
        return "router"
    elif callable(collection):
        app.mount(prefix, collection)
        log.info("route_collection_mounted", prefix=prefix, kind="asgi")
        return "asgi"
    else:
        raise RouteCollectionError(prefix, f"unsupported collection type {type(collection).__name__}")

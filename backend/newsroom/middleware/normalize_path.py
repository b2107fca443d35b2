from __future__ import annotations

from typing import Any, Awaitable, Callable, Iterable


class NormalizePathMiddleware:
    """
    Serve a mounted sub-application's bare prefix (`/news`) as its root
    (`/news/`).

    The app runs with `redirect_slashes=False`, and a Starlette mount only
    matches `prefix/...`. Instead of redirecting, rewrite the ASGI scope path
    in place (no extra round trip).
    """

    def __init__(self, app: Callable[..., Awaitable[Any]], *, prefixes: Iterable[str]):
        self.app = app
        self.prefixes = {p.rstrip("/") for p in prefixes if p and p != "/"}

    async def __call__(self, scope: dict, receive: Callable, send: Callable):
        if scope.get("type") == "http":
            path = str(scope.get("path") or "")
            if path in self.prefixes:
                new_path = path + "/"
                scope["path"] = new_path
                # Route matching uses scope["path"]; keep raw_path consistent.
                if isinstance(scope.get("raw_path"), (bytes, bytearray)):
                    scope["raw_path"] = new_path.encode("utf-8")
        return await self.app(scope, receive, send)

from __future__ import annotations

from http import HTTPStatus
from typing import Any

from fastapi.responses import ORJSONResponse
from starlette.requests import HTTPConnection

PROBLEM_JSON = "application/problem+json"


def _default_title(status_code: int) -> str:
    if status_code >= 500 and status_code not in (501, 503):
        return "Internal Server Error"
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Error"


def _request_id(request: HTTPConnection) -> str | None:
    rid = getattr(getattr(request, "state", None), "request_id", None)
    if rid:
        return str(rid)
    hdr = request.headers.get("x-request-id")
    return str(hdr) if hdr else None


def _is_production(request: HTTPConnection) -> bool:
    app = request.scope.get("app")
    settings = getattr(getattr(app, "state", None), "settings", None)
    return bool(getattr(settings, "is_production", False))


def problem_payload(
    *,
    request: HTTPConnection,
    status_code: int,
    title: str | None = None,
    detail: str | None = None,
    type: str = "about:blank",
    instance: str | None = None,
    errors: list[dict[str, Any]] | None = None,
    extensions: dict[str, Any] | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "type": type or "about:blank",
        "title": title or _default_title(int(status_code)),
        "status": int(status_code),
    }

    if detail:
        payload["detail"] = str(detail)

    inst = instance or str(getattr(request.url, "path", "") or "")
    if inst:
        payload["instance"] = inst

    rid = _request_id(request)
    if rid:
        payload["requestId"] = rid

    if errors:
        payload["errors"] = errors

    if extensions:
        # Keep extension members in one namespace to avoid clashing with
        # the reserved RFC 7807 keys.
        payload["extensions"] = extensions

    return payload


def problem_response(
    *,
    request: HTTPConnection,
    status_code: int,
    title: str | None = None,
    detail: str | None = None,
    type: str = "about:blank",
    instance: str | None = None,
    errors: list[dict[str, Any]] | None = None,
    extensions: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> ORJSONResponse:
    # Never leak internal details in production for server errors.
    safe_detail = detail
    if int(status_code) >= 500 and _is_production(request):
        safe_detail = None

    return ORJSONResponse(
        status_code=int(status_code),
        content=problem_payload(
            request=request,
            status_code=int(status_code),
            title=title,
            detail=safe_detail,
            type=type,
            instance=instance,
            errors=errors,
            extensions=extensions,
        ),
        media_type=PROBLEM_JSON,
        headers=headers,
    )

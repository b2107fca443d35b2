from __future__ import annotations

import re
from typing import Annotated, Any, Awaitable, Callable
from urllib.parse import parse_qsl

import orjson
from fastapi import Depends, Request

from ..errors import (
    BodyParseError,
    MalformedBodyError,
    PayloadTooLargeError,
    TooManyParametersError,
    UnsupportedCharsetError,
)
from ..observability.logging import get_logger
from ..problem_details import problem_response

JSON_TYPE = "application/json"
URLENCODED_TYPE = "application/x-www-form-urlencoded"

# Nested form keys: a[b][c]=1. Only the first few levels are split, the rest
# stays a literal key on the deepest level.
_MAX_DEPTH = 5
# Bracket indexes above this become object keys instead of list positions.
_ARRAY_LIMIT = 20

_KEY_RE = re.compile(r"^([^\[\]]+)((?:\[[^\[\]]*\])+)$")
_SEGMENT_RE = re.compile(r"\[([^\[\]]*)\]")

_URLENCODED_CHARSETS = {"utf-8", "utf8", "iso-8859-1", "latin-1", "latin1"}


def parse_content_type(value: str | None) -> tuple[str, dict[str, str]]:
    """Split `type/subtype; k=v` into a lowercased media type and its params."""
    parts = [p.strip() for p in str(value or "").split(";")]
    media_type = parts[0].lower() if parts else ""
    params: dict[str, str] = {}
    for p in parts[1:]:
        if "=" not in p:
            continue
        k, v = p.split("=", 1)
        params[k.strip().lower()] = v.strip().strip('"')
    return media_type, params


def parse_json_body(raw: bytes, *, charset: str = "utf-8") -> Any:
    """
    Parse a JSON request body in strict mode: only objects and arrays are
    accepted at the top level. An empty body parses to {}.
    """
    cs = (charset or "utf-8").lower()
    if not cs.startswith("utf"):
        raise UnsupportedCharsetError(cs)
    if not raw.strip():
        return {}

    data: bytes | str = raw
    if cs not in ("utf-8", "utf8"):
        try:
            data = raw.decode(cs)
        except LookupError:
            raise UnsupportedCharsetError(cs)
        except UnicodeDecodeError:
            raise MalformedBodyError("Request body is not valid JSON")

    try:
        value = orjson.loads(data)
    except orjson.JSONDecodeError:
        raise MalformedBodyError("Request body is not valid JSON")

    if not isinstance(value, (dict, list)):
        raise MalformedBodyError("JSON body must be an object or an array")
    return value


def _split_key(key: str) -> list[str]:
    m = _KEY_RE.match(key)
    if not m:
        return [key]
    segments = _SEGMENT_RE.findall(m.group(2))
    if len(segments) > _MAX_DEPTH:
        rest = "".join(f"[{s}]" for s in segments[_MAX_DEPTH:])
        segments = segments[:_MAX_DEPTH] + [rest]
    return [m.group(1), *segments]


class _Node(dict):
    """Intermediate container for bracketed keys; int keys are list slots."""


def _next_index(node: _Node) -> int:
    ints = [k for k in node if isinstance(k, int)]
    return (max(ints) + 1) if ints else 0


def _node_key(node: _Node, segment: str) -> int | str:
    if segment == "":
        return _next_index(node)
    # ASCII digits only; anything else, or too long to be a slot, is a plain key.
    if segment.isascii() and segment.isdigit() and len(segment) <= 2:
        index = int(segment)
        if index <= _ARRAY_LIMIT:
            return index
    return segment


def _merge_leaf(target: dict, key: Any, value: str) -> None:
    if key not in target:
        target[key] = value
        return
    existing = target[key]
    if isinstance(existing, list):
        existing.append(value)
    elif isinstance(existing, _Node):
        existing[_next_index(existing)] = value
    else:
        target[key] = [existing, value]


def _insert(target: dict, key: Any, segments: list[str], value: str) -> None:
    if not segments:
        _merge_leaf(target, key, value)
        return

    child = target.get(key)
    if not isinstance(child, _Node):
        node = _Node()
        if isinstance(child, list):
            for i, v in enumerate(child):
                node[i] = v
        elif child is not None:
            node[0] = child
        target[key] = child = node

    _insert(child, _node_key(child, segments[0]), segments[1:], value)


def _compact(value: Any) -> Any:
    if isinstance(value, _Node):
        items = {k: _compact(v) for k, v in value.items()}
        if items and all(isinstance(k, int) for k in items):
            return [items[k] for k in sorted(items)]
        return {str(k): v for k, v in items.items()}
    if isinstance(value, list):
        return [_compact(v) for v in value]
    return value


def parse_urlencoded_body(
    raw: bytes, *, charset: str = "utf-8", parameter_limit: int = 1000
) -> dict[str, Any]:
    """
    Parse an `application/x-www-form-urlencoded` body with nested keys:

        a[b]=1        -> {"a": {"b": "1"}}
        a[]=1&a[]=2   -> {"a": ["1", "2"]}
        a=1&a=2       -> {"a": ["1", "2"]}
    """
    cs = (charset or "utf-8").lower()
    if cs not in _URLENCODED_CHARSETS:
        raise UnsupportedCharsetError(cs)

    try:
        text = raw.decode(cs)
    except UnicodeDecodeError:
        raise MalformedBodyError("Form body is not valid for its charset")

    if not text.strip():
        return {}
    if text.count("&") + 1 > parameter_limit:
        raise TooManyParametersError(parameter_limit)

    out: dict[str, Any] = {}
    for key, value in parse_qsl(text, keep_blank_values=True, encoding=cs):
        if not key:
            continue
        segments = _split_key(key)
        _insert(out, segments[0], segments[1:], value)
    return {k: _compact(v) for k, v in out.items()}


class BodyParserMiddleware:
    """
    Eagerly parse JSON and url-encoded request bodies before routing.

    The parsed value lands on `request.state.body` (`{}` when there is nothing
    to parse) and the raw bytes are replayed to the downstream app. Bodies that
    cannot be parsed are answered here with a problem+json response.
    """

    def __init__(
        self,
        app: Callable[..., Awaitable[Any]],
        *,
        json_limit: int = 102400,
        urlencoded_limit: int = 102400,
        parameter_limit: int = 1000,
    ):
        self.app = app
        self.json_limit = int(json_limit)
        self.urlencoded_limit = int(urlencoded_limit)
        self.parameter_limit = int(parameter_limit)
        self._log = get_logger("body_parser")

    async def __call__(self, scope: dict, receive: Callable, send: Callable):
        if scope.get("type") != "http":
            return await self.app(scope, receive, send)

        state = scope.setdefault("state", {})
        state["body"] = {}

        headers = {k.decode("latin-1").lower(): v.decode("latin-1") for k, v in scope.get("headers") or []}
        media_type, params = parse_content_type(headers.get("content-type"))
        if media_type == JSON_TYPE:
            limit = self.json_limit
        elif media_type == URLENCODED_TYPE:
            limit = self.urlencoded_limit
        else:
            return await self.app(scope, receive, send)

        try:
            raw = await self._read_body(receive, limit, headers.get("content-length"))
            charset = params.get("charset", "utf-8")
            if media_type == JSON_TYPE:
                state["body"] = parse_json_body(raw, charset=charset)
            else:
                state["body"] = parse_urlencoded_body(
                    raw, charset=charset, parameter_limit=self.parameter_limit
                )
        except BodyParseError as exc:
            request = Request(scope)
            self._log.warning(
                "body_parse_failed",
                http_method=str(scope.get("method") or "").upper(),
                path=str(scope.get("path") or ""),
                content_type=media_type,
                status_code=exc.status_code,
                reason=exc.detail,
            )
            response = problem_response(
                request=request,
                status_code=exc.status_code,
                title=exc.title,
                detail=exc.detail,
            )
            await response(scope, receive, send)
            return

        await self.app(scope, _replay_receive(raw, receive), send)

    async def _read_body(self, receive: Callable, limit: int, content_length: str | None) -> bytes:
        if content_length is not None:
            try:
                declared = int(content_length)
            except ValueError:
                raise MalformedBodyError("Invalid Content-Length header")
            if declared > limit:
                raise PayloadTooLargeError(limit, declared)

        chunks: list[bytes] = []
        size = 0
        while True:
            message = await receive()
            if message["type"] == "http.disconnect":
                break
            chunk = message.get("body", b"")
            if chunk:
                size += len(chunk)
                if size > limit:
                    raise PayloadTooLargeError(limit, size)
                chunks.append(chunk)
            if not message.get("more_body", False):
                break
        return b"".join(chunks)


def _replay_receive(body: bytes, receive: Callable) -> Callable:
    delivered = False

    async def replay() -> dict:
        nonlocal delivered
        if not delivered:
            delivered = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return replay


def get_parsed_body(request: Request) -> Any:
    """FastAPI dependency returning the body parsed by BodyParserMiddleware."""
    return getattr(request.state, "body", {})


ParsedBody = Annotated[Any, Depends(get_parsed_body)]

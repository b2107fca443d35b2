from __future__ import annotations


class NewsroomError(Exception):
    """Base class for errors raised by the server bootstrap."""


class ConfigurationError(NewsroomError):
    def __init__(self, message: str, *, variables: list[str] | None = None):
        super().__init__(message)
        self.message = message
        self.variables = list(variables or [])


class RouteCollectionError(NewsroomError):
    def __init__(self, target: str, reason: str):
        super().__init__(f"Cannot load route collection {target!r}: {reason}")
        self.target = target
        self.reason = reason


class StartupError(NewsroomError):
    """The listening socket could not be bound."""

    def __init__(self, host: str, port: int, error: OSError):
        super().__init__(f"Failed to bind {host}:{port}: {error}")
        self.host = host
        self.port = port
        self.error = error


# ---- request body errors (answered by the body parser) ----


class BodyParseError(NewsroomError):
    status_code = 400
    title = "Bad Request"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class MalformedBodyError(BodyParseError):
    status_code = 400
    title = "Bad Request"


class PayloadTooLargeError(BodyParseError):
    status_code = 413
    title = "Payload Too Large"

    def __init__(self, limit: int, length: int | None = None):
        super().__init__(f"Request body exceeds the {limit} byte limit")
        self.limit = limit
        self.length = length


class TooManyParametersError(BodyParseError):
    status_code = 413
    title = "Payload Too Large"

    def __init__(self, limit: int):
        super().__init__(f"Form body has more than {limit} parameters")
        self.limit = limit


class UnsupportedCharsetError(BodyParseError):
    status_code = 415
    title = "Unsupported Media Type"

    def __init__(self, charset: str):
        super().__init__(f"Unsupported charset {charset.upper()!r}")
        self.charset = charset

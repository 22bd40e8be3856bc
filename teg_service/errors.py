"""Exception hierarchy for the gateway collector."""

from __future__ import annotations

from typing import Optional


class GatewayError(RuntimeError):
    """Base class for every error raised by the collector."""


class AuthError(GatewayError):
    """Raised when no usable session can be obtained from the gateway."""


class MalformedResponseError(AuthError):
    """Raised when the login response cannot be interpreted."""


class SessionExpiredError(AuthError):
    """Raised when an expired session is handed to the collector."""


class FetchError(GatewayError):
    """Raised when a single endpoint cannot be fetched."""

    def __init__(self, endpoint: str, message: str) -> None:
        super().__init__(f"{endpoint}: {message}")
        self.endpoint = endpoint


class UnexpectedStatusError(FetchError):
    """Raised when the gateway answers with a status other than the expected one."""

    def __init__(self, endpoint: str, expected: int, got: int, body: bytes) -> None:
        super().__init__(
            endpoint,
            f"expected {expected} HTTP status code but got {got}; raw body {_preview(body)}",
        )
        self.expected = expected
        self.got = got
        self.body = body


class DecodeError(FetchError):
    """Raised when a response body does not match its expected shape."""

    def __init__(self, endpoint: str, cause: BaseException, raw_body: Optional[bytes] = None) -> None:
        message = f"decode failed: {cause}"
        if raw_body is not None:
            message += f"; raw body {_preview(raw_body)}"
        super().__init__(endpoint, message)
        self.cause = cause
        self.raw_body = raw_body


class FetchCancelledError(FetchError):
    """Raised inside a fetch task once a sibling task has failed."""

    def __init__(self, endpoint: str) -> None:
        super().__init__(endpoint, "cancelled")


class FaultDecodeError(GatewayError):
    """Raised when the nested alert JSON of one grid fault cannot be decoded."""

    def __init__(self, message: str, raw: str) -> None:
        super().__init__(message)
        self.raw = raw


class CollectError(GatewayError):
    """Raised when a collection cycle fails; names the endpoint responsible."""

    def __init__(self, endpoint: str, cause: BaseException) -> None:
        super().__init__(f"error when querying {endpoint}: {cause}")
        self.endpoint = endpoint
        self.cause = cause
        self.__cause__ = cause


class SinkError(GatewayError):
    """Raised when a snapshot cannot be delivered to the metrics sink."""


def _preview(body: bytes, limit: int = 512) -> str:
    text = body.decode("utf-8", errors="replace")
    if len(text) > limit:
        return text[:limit] + "..."
    return text


__all__ = [
    "AuthError",
    "CollectError",
    "DecodeError",
    "FaultDecodeError",
    "FetchCancelledError",
    "FetchError",
    "GatewayError",
    "MalformedResponseError",
    "SessionExpiredError",
    "SinkError",
    "UnexpectedStatusError",
]

"""Login handshake and session lifetime for the gateway's local API."""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Optional

import requests
from requests import exceptions as requests_exceptions
from requests.adapters import DEFAULT_POOLSIZE, HTTPAdapter
from urllib3 import exceptions as urllib3_exceptions

from .decoders import Instant, parse_nano_instant
from .errors import AuthError, MalformedResponseError, UnexpectedStatusError

LOGGER = logging.getLogger("teg_service.session")

LOGIN_PATH = "/api/login/Basic"
LOGIN_USERNAME = "customer"
# Gateway tokens live for 24h; refresh five minutes early so a cycle never
# straddles the real expiry.
SESSION_LIFETIME = timedelta(hours=23, minutes=55)

# Errors raised by requests/urllib3 while talking to the gateway.
TRANSPORT_ERRORS = (requests_exceptions.RequestException, urllib3_exceptions.HTTPError, OSError)


def _check_exception_chain(exc: BaseException, condition: Callable[[BaseException], bool]) -> bool:
    """Return ``True`` if ``exc`` or anything in its ``__cause__``/``__context__`` chain matches."""
    seen = set()
    pending = [exc]
    while pending:
        current = pending.pop()
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        if condition(current):
            return True
        pending.append(current.__cause__)
        pending.append(current.__context__)
    return False


def is_transport_error(exc: BaseException) -> bool:
    """Return ``True`` if ``exc`` (or its causes) represent a network failure."""
    return _check_exception_chain(exc, lambda e: isinstance(e, TRANSPORT_ERRORS))


@dataclass(frozen=True)
class TransportConfig:
    """How to reach the gateway. Applied to each HTTP session individually.

    ``pool_maxsize`` must be at least the number of requests sent at once,
    otherwise urllib3 discards the surplus connections after every cycle.
    """

    base_url: str
    verify_tls: bool = False
    timeout: float = 10.0
    pool_maxsize: int = DEFAULT_POOLSIZE

    def url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}{path}"

    def new_http_session(self) -> requests.Session:
        http = requests.Session()
        http.verify = self.verify_tls
        adapter = HTTPAdapter(pool_connections=1, pool_maxsize=self.pool_maxsize)
        http.mount("http://", adapter)
        http.mount("https://", adapter)
        return http


@dataclass(frozen=True)
class Credentials:
    email: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class Session:
    """An authenticated gateway session. Replaced, never mutated, on refresh."""

    token: str = field(repr=False)
    user_record: str = field(repr=False)
    login_time: Instant
    expires_at: Instant
    http: requests.Session = field(repr=False, compare=False)

    def is_expired(self, now: Optional[Instant] = None) -> bool:
        return (now or Instant.now()) >= self.expires_at

    def close(self) -> None:
        self.http.close()


class SessionManager:
    """Performs the ``/api/login/Basic`` handshake."""

    def __init__(self, transport: TransportConfig, credentials: Credentials) -> None:
        self._transport = transport
        self._credentials = credentials

    @property
    def transport(self) -> TransportConfig:
        return self._transport

    def authenticate(self) -> Session:
        """Log in and return a session whose HTTP client carries the credentials.

        Raises:
            AuthError: on transport failure, a non-200 answer, or a login
                response without a token or a readable ``loginTime``.
        """
        payload = {
            "username": LOGIN_USERNAME,
            "password": self._credentials.password,
            "email": self._credentials.email,
            "force_sm_off": False,
        }
        url = self._transport.url(LOGIN_PATH)
        http = self._transport.new_http_session()
        try:
            response = http.post(url, json=payload, timeout=self._transport.timeout)
        except TRANSPORT_ERRORS as exc:
            http.close()
            raise AuthError(f"login request to {url} failed: {exc}") from exc

        try:
            session = self._build_session(http, response.status_code, response.content)
        except AuthError:
            http.close()
            raise

        LOGGER.info(
            "Authenticated with gateway at %s; session valid until %s",
            self._transport.base_url,
            session.expires_at,
        )
        return session

    def _build_session(self, http: requests.Session, status_code: int, body: bytes) -> Session:
        if status_code != 200:
            cause = UnexpectedStatusError(LOGIN_PATH, 200, status_code, body)
            raise AuthError(f"login rejected: {cause}") from cause

        try:
            document = json.loads(body)
        except ValueError as exc:
            raise MalformedResponseError(f"login response is not JSON: {exc}") from exc
        if not isinstance(document, dict):
            raise MalformedResponseError("login response is not a JSON object")

        token = document.get("token")
        if not isinstance(token, str) or not token:
            raise MalformedResponseError("login response has no token")
        login_time_raw = document.get("loginTime")
        if not isinstance(login_time_raw, str):
            raise MalformedResponseError("login response has no loginTime")
        try:
            login_time = parse_nano_instant(login_time_raw)
        except ValueError as exc:
            raise MalformedResponseError(f"unreadable loginTime {login_time_raw!r}: {exc}") from exc

        user_record = base64.b64encode(body).decode("ascii")
        http.headers["Authorization"] = f"Bearer {token}"
        http.headers["Cookie"] = f"AuthCookie={token}; UserRecord={user_record}"

        return Session(
            token=token,
            user_record=user_record,
            login_time=login_time,
            expires_at=login_time + SESSION_LIFETIME,
            http=http,
        )


__all__ = [
    "Credentials",
    "LOGIN_PATH",
    "SESSION_LIFETIME",
    "Session",
    "SessionManager",
    "TRANSPORT_ERRORS",
    "TransportConfig",
    "is_transport_error",
]

"""Tests for the login handshake and session lifetime."""

import base64
import json
import unittest
from datetime import timedelta
from unittest.mock import Mock, patch

from requests.exceptions import ConnectionError as RequestsConnectionError

from teg_service.decoders import parse_nano_instant
from teg_service.errors import AuthError, MalformedResponseError, UnexpectedStatusError
from teg_service.session import (
    LOGIN_PATH,
    SESSION_LIFETIME,
    Credentials,
    Session,
    SessionManager,
    TransportConfig,
    is_transport_error,
)

LOGIN_TIME = "2021-10-26T16:01:02.123456789-07:00"


def login_body(**overrides):
    document = {
        "email": "owner@example.com",
        "firstname": "Tesla",
        "lastname": "Energy",
        "roles": ["Home_Owner"],
        "token": "OgiGHjoNvwx17SRIaYFIOWPJSaKBYwmMGc5K4tTz57EziltPYsdtjU_DJ08tJqaWbWjTuI3fa_8QW32ED5zg1A==",
        "provider": "Basic",
        "loginTime": LOGIN_TIME,
    }
    document.update(overrides)
    return json.dumps(document).encode("utf-8")


def mock_http(status_code=200, content=b""):
    """A stand-in for requests.Session whose POST answers with ``content``."""
    http = Mock()
    http.headers = {}
    http.post.return_value = Mock(status_code=status_code, content=content)
    return http


class TestSessionManager(unittest.TestCase):
    """Login against /api/login/Basic."""

    def setUp(self):
        self.transport = TransportConfig("https://192.168.91.1/", verify_tls=False, timeout=7.5)
        self.manager = SessionManager(self.transport, Credentials("owner@example.com", "secret"))

    def authenticate(self, http):
        with patch('teg_service.session.requests.Session', return_value=http):
            return self.manager.authenticate()

    def test_successful_login(self):
        """The session carries the token, login time and the derived expiry."""
        body = login_body()
        http = mock_http(content=body)

        session = self.authenticate(http)

        login_time = parse_nano_instant(LOGIN_TIME)
        self.assertEqual(session.token, json.loads(body)["token"])
        self.assertEqual(session.login_time, login_time)
        self.assertEqual(session.expires_at, login_time + timedelta(hours=23, minutes=55))
        self.assertEqual(session.expires_at - session.login_time, SESSION_LIFETIME)
        self.assertIs(session.http, http)

    def test_login_request(self):
        http = mock_http(content=login_body())

        self.authenticate(http)

        http.post.assert_called_once_with(
            "https://192.168.91.1/api/login/Basic",
            json={
                "username": "customer",
                "password": "secret",
                "email": "owner@example.com",
                "force_sm_off": False,
            },
            timeout=7.5,
        )
        self.assertIs(http.verify, False)

    def test_credentials_are_attached_as_headers(self):
        """Every later request carries the bearer token and the auth cookies."""
        body = login_body()
        http = mock_http(content=body)

        session = self.authenticate(http)

        user_record = base64.b64encode(body).decode("ascii")
        self.assertEqual(session.user_record, user_record)
        self.assertEqual(http.headers["Authorization"], f"Bearer {session.token}")
        self.assertEqual(
            http.headers["Cookie"],
            f"AuthCookie={session.token}; UserRecord={user_record}",
        )

    def test_rejected_login(self):
        """A non-200 answer fails with the status and body preserved on the cause."""
        http = mock_http(status_code=401, content=b'{"error":"bad credentials"}')

        with self.assertRaises(AuthError) as ctx:
            self.authenticate(http)

        cause = ctx.exception.__cause__
        self.assertIsInstance(cause, UnexpectedStatusError)
        self.assertEqual(cause.endpoint, LOGIN_PATH)
        self.assertEqual(cause.expected, 200)
        self.assertEqual(cause.got, 401)
        self.assertIn("bad credentials", str(ctx.exception))
        http.close.assert_called_once()

    def test_missing_token(self):
        http = mock_http(content=login_body(token=None))

        with self.assertRaises(MalformedResponseError):
            self.authenticate(http)
        http.close.assert_called_once()

    def test_unreadable_login_time(self):
        http = mock_http(content=login_body(loginTime="Tue Oct 26 16:01:02 2021"))

        with self.assertRaises(MalformedResponseError):
            self.authenticate(http)

    def test_missing_login_time(self):
        document = json.loads(login_body())
        del document["loginTime"]
        http = mock_http(content=json.dumps(document).encode("utf-8"))

        with self.assertRaises(MalformedResponseError):
            self.authenticate(http)

    def test_non_json_body(self):
        http = mock_http(content=b"<html>maintenance</html>")

        with self.assertRaises(MalformedResponseError):
            self.authenticate(http)

    def test_transport_failure(self):
        http = mock_http()
        http.post.side_effect = RequestsConnectionError("connection refused")

        with self.assertRaises(AuthError) as ctx:
            self.authenticate(http)

        self.assertIsInstance(ctx.exception.__cause__, RequestsConnectionError)
        http.close.assert_called_once()


class TestSession(unittest.TestCase):
    """Expiry checks against an explicit clock."""

    def setUp(self):
        self.login_time = parse_nano_instant(LOGIN_TIME)
        self.http = Mock()
        self.session = Session(
            token="s3cr3t-token",
            user_record="s3cr3t-record",
            login_time=self.login_time,
            expires_at=self.login_time + SESSION_LIFETIME,
            http=self.http,
        )

    def test_not_expired_before_lifetime(self):
        now = self.login_time + timedelta(hours=23, minutes=54, seconds=59)

        self.assertFalse(self.session.is_expired(now))

    def test_expired_at_expiry(self):
        self.assertTrue(self.session.is_expired(self.session.expires_at))

    def test_expired_after_lifetime(self):
        self.assertTrue(self.session.is_expired(self.login_time + timedelta(hours=23, minutes=56)))

    def test_close_releases_http_session(self):
        self.session.close()

        self.http.close.assert_called_once()

    def test_repr_hides_credentials(self):
        self.assertNotIn("s3cr3t", repr(self.session))


class TestTransportConfig(unittest.TestCase):
    """TLS verification is a property of each HTTP session, not of the process."""

    def test_each_session_gets_its_own_verify_flag(self):
        strict = TransportConfig("https://gateway.example", verify_tls=True).new_http_session()
        lenient = TransportConfig("https://192.168.91.1", verify_tls=False).new_http_session()
        try:
            self.assertIs(strict.verify, True)
            self.assertIs(lenient.verify, False)
        finally:
            strict.close()
            lenient.close()

    def test_connection_pool_size(self):
        http = TransportConfig("https://192.168.91.1", pool_maxsize=16).new_http_session()
        try:
            for prefix in ("https://", "http://"):
                adapter = http.get_adapter(prefix + "192.168.91.1/api/status")
                self.assertEqual(adapter._pool_maxsize, 16)
                self.assertEqual(adapter.poolmanager.connection_pool_kw["maxsize"], 16)
        finally:
            http.close()

    def test_url_joins_without_double_slash(self):
        transport = TransportConfig("https://192.168.91.1/")

        self.assertEqual(transport.url("/api/status"), "https://192.168.91.1/api/status")


class TestIsTransportError(unittest.TestCase):
    """Network failures are recognised anywhere in the exception chain."""

    def test_direct_and_chained(self):
        network = RequestsConnectionError("connection refused")
        try:
            try:
                raise network
            except RequestsConnectionError as exc:
                raise AuthError("login failed") from exc
        except AuthError as exc:
            wrapped = exc

        self.assertTrue(is_transport_error(network))
        self.assertTrue(is_transport_error(wrapped))
        self.assertTrue(is_transport_error(TimeoutError("timed out")))

    def test_other_errors(self):
        self.assertFalse(is_transport_error(ValueError("bad value")))
        self.assertFalse(is_transport_error(AuthError("login rejected")))


if __name__ == '__main__':
    unittest.main()

"""
REST transport adapter.

A minimal JSON over HTTPS client with no third party deps, used for the NSX
manager, the operations analytics casa API, the lifecycle manager and the
vCenter appliance API.

Auth schemes
basic
  Authorization: Basic header on every call.

bearer
  Authorization: Bearer header built from credentials.token.

session
  POST login_path with basic auth, then carry the returned token in
  token_header. The token is released with DELETE on close.

Status translation
401 and 403 become AuthenticationFailure.
404 becomes TargetNotFound.
5xx becomes TransportFailure because backends answer 5xx while booting.
Truncated reads become TransportFailure; bodies that are not UTF-8 are decoded
with replacement characters and reach the caller as text.
Other 4xx become RemoteError.
"""

from __future__ import annotations

import base64
import http.client
import json
import logging
import ssl
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from power_orchestrator.core.errors import (
    AuthenticationFailure,
    ConnectivityError,
    RemoteError,
    TargetNotFound,
    TransportFailure,
)
from power_orchestrator.core.types import Credentials
from power_orchestrator.transport.probe import split_endpoint, tcp_probe

logger = logging.getLogger(__name__)


class AuthScheme(StrEnum):
    basic = "basic"
    bearer = "bearer"
    session = "session"


class HttpClient(Protocol):
    """Simple http client interface for testability."""

    def send(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        body: bytes | None,
        timeout: float,
    ) -> tuple[int, bytes]:
        """Return status code and raw body. Raise OSError or HTTPException on network failure."""


@dataclass
class UrllibHttpClient(HttpClient):
    """Default http client using urllib."""

    verify_ssl: bool = False

    def _context(self) -> ssl.SSLContext:
        if self.verify_ssl:
            return ssl.create_default_context()
        ctx = ssl.create_default_context()
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
        return ctx

    def send(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        body: bytes | None,
        timeout: float,
    ) -> tuple[int, bytes]:
        req = Request(url, data=body, headers=headers, method=method)
        try:
            with urlopen(req, timeout=timeout, context=self._context()) as resp:
                return int(resp.status), resp.read()
        except HTTPError as exc:
            return int(exc.code), exc.read() or b""


@dataclass(frozen=True)
class RestRequest:
    """
    One REST call.

    path
    Path below the base URL, starting with a slash.

    body
    JSON serializable payload, sent with Content-Type application/json.
    """

    path: str
    method: str = "GET"
    body: Any = None
    params: dict[str, str] | None = None


@dataclass
class RestSession:
    endpoint: str
    base_url: str
    headers: dict[str, str] = field(repr=False)
    closed: bool = False


def _basic_header(credentials: Credentials) -> str:
    raw = f"{credentials.username}:{credentials.password}".encode("utf-8")
    return "Basic " + base64.b64encode(raw).decode("ascii")


def _decode(body: bytes) -> Any:
    if not body:
        return None
    text = body.decode("utf-8", errors="replace")
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


@dataclass
class RestAdapter:
    """
    Adapter for JSON REST control planes.

    login_path and logout_path are used by the session scheme only.
    token_header carries the session token, vmware-api-session-id for the
    vCenter appliance API.
    """

    port: int = 443
    scheme: AuthScheme = AuthScheme.basic
    login_path: str | None = None
    logout_path: str | None = None
    token_header: str = "vmware-api-session-id"
    timeout: float = 30.0
    http: HttpClient = field(default_factory=UrllibHttpClient)

    def probe(self, endpoint: str) -> bool:
        host, port = split_endpoint(endpoint, self.port)
        return tcp_probe(host, port, timeout=min(self.timeout, 5.0))

    def _base_url(self, endpoint: str) -> str:
        host, port = split_endpoint(endpoint, self.port)
        if ":" in host:
            host = f"[{host}]"
        if port == 443:
            return f"https://{host}"
        return f"https://{host}:{port}"

    def open_session(self, endpoint: str, credentials: Credentials) -> RestSession:
        base_url = self._base_url(endpoint)
        headers = {"Accept": "application/json"}

        if self.scheme == AuthScheme.basic:
            headers["Authorization"] = _basic_header(credentials)
            return RestSession(endpoint=endpoint, base_url=base_url, headers=headers)

        if self.scheme == AuthScheme.bearer:
            if not credentials.token:
                raise AuthenticationFailure(f"no bearer token supplied for {endpoint}")
            headers["Authorization"] = f"Bearer {credentials.token}"
            return RestSession(endpoint=endpoint, base_url=base_url, headers=headers)

        if not self.login_path:
            raise ValueError("session auth requires login_path")

        login_headers = dict(headers)
        login_headers["Authorization"] = _basic_header(credentials)
        try:
            status, body = self.http.send("POST", base_url + self.login_path, login_headers, None, self.timeout)
        except (OSError, http.client.HTTPException) as exc:
            raise ConnectivityError(f"cannot reach {endpoint} to log in: {exc}") from exc

        if status in (401, 403):
            raise AuthenticationFailure(f"{endpoint} rejected login for {credentials.username}")
        if status >= 400:
            raise ConnectivityError(f"login to {endpoint} failed with http {status}")

        token = _decode(body)
        if isinstance(token, dict):
            token = token.get("value")
        if not isinstance(token, str) or not token:
            raise ConnectivityError(f"login to {endpoint} returned no session token")

        headers[self.token_header] = token
        return RestSession(endpoint=endpoint, base_url=base_url, headers=headers)

    def execute(self, session: RestSession, request: RestRequest) -> Any:
        if session.closed:
            raise RemoteError(f"rest session to {session.endpoint} is closed")

        url = session.base_url + request.path
        if request.params:
            url = f"{url}?{urlencode(request.params)}"

        headers = dict(session.headers)
        data: bytes | None = None
        if request.body is not None:
            data = json.dumps(request.body).encode("utf-8")
            headers["Content-Type"] = "application/json"

        try:
            status, body = self.http.send(request.method, url, headers, data, self.timeout)
        except (URLError, OSError, http.client.HTTPException) as exc:
            raise TransportFailure(f"{request.method} {request.path} on {session.endpoint} failed: {exc}") from exc

        logger.debug("%s %s on %s -> %s", request.method, request.path, session.endpoint, status)

        if status in (401, 403):
            raise AuthenticationFailure(f"{session.endpoint} rejected {request.method} {request.path}")
        if status == 404:
            raise TargetNotFound(f"{request.path} not found on {session.endpoint}")
        if status >= 500:
            raise TransportFailure(f"{session.endpoint} answered http {status} for {request.path}")
        if status >= 400:
            raise RemoteError(f"{session.endpoint} answered http {status} for {request.path}: {_decode(body)}")

        return _decode(body)

    def close_session(self, session: RestSession | None) -> None:
        if session is None or session.closed:
            return
        session.closed = True
        if self.scheme != AuthScheme.session or not self.logout_path:
            return
        try:
            self.http.send("DELETE", session.base_url + self.logout_path, dict(session.headers), None, self.timeout)
        except (OSError, http.client.HTTPException) as exc:
            logger.debug("logout from %s failed: %s", session.endpoint, exc)

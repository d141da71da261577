"""
vSphere transport adapter.

Wraps pyVmomi SmartConnect and Disconnect behind the TransportAdapter contract.

Requests
A request is a callable that receives the ServiceInstanceContent and returns a
value. Observation functions pass read only callables; commands pass callables
that start a task and return without waiting for it.

Exception translation
vim.fault.InvalidLogin on connect becomes AuthenticationFailure.
Socket and HTTP errors on connect become ConnectivityError.
Socket and HTTP errors during a call become TransportFailure.
Any other vmodl.MethodFault during a call becomes RemoteError.
"""

from __future__ import annotations

import http.client
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from pyVim.connect import Disconnect, SmartConnect
from pyVmomi import vim, vmodl

from power_orchestrator.core.errors import (
    AuthenticationFailure,
    ConnectivityError,
    RemoteError,
    TransportFailure,
)
from power_orchestrator.core.types import Credentials
from power_orchestrator.transport.probe import split_endpoint, tcp_probe

logger = logging.getLogger(__name__)

_NETWORK_ERRORS = (OSError, http.client.HTTPException)


@dataclass
class VsphereSession:
    """
    An open vSphere API session.

    service_instance
    The pyVmomi ServiceInstance returned by SmartConnect.

    host
    Host the session is bound to, used to derive secondary service stubs.
    """

    endpoint: str
    host: str
    service_instance: Any
    closed: bool = False

    @property
    def content(self) -> Any:
        return self.service_instance.RetrieveContent()


@dataclass
class VsphereAdapter:
    """
    Adapter for vCenter and standalone ESXi management APIs.

    port
    HTTPS port of the SDK endpoint.

    verify_ssl
    Lab and freshly booted appliances use self signed certificates.

    connect_timeout
    Seconds for the pre flight probe and the HTTP connection.
    """

    port: int = 443
    verify_ssl: bool = False
    connect_timeout: float = 30.0
    connect: Callable[..., Any] = field(default=SmartConnect, repr=False)
    disconnect: Callable[[Any], None] = field(default=Disconnect, repr=False)

    def probe(self, endpoint: str) -> bool:
        host, port = split_endpoint(endpoint, self.port)
        return tcp_probe(host, port, timeout=min(self.connect_timeout, 5.0))

    def open_session(self, endpoint: str, credentials: Credentials) -> VsphereSession:
        host, port = split_endpoint(endpoint, self.port)
        try:
            si = self.connect(
                host=host,
                user=credentials.username,
                pwd=credentials.password,
                port=port,
                disableSslCertValidation=not self.verify_ssl,
                httpConnectionTimeout=self.connect_timeout,
            )
        except vim.fault.InvalidLogin as exc:
            raise AuthenticationFailure(f"{endpoint} rejected login for {credentials.username}") from exc
        except vim.fault.NoPermission as exc:
            raise AuthenticationFailure(f"{endpoint} denied access to {credentials.username}") from exc
        except _NETWORK_ERRORS as exc:
            raise ConnectivityError(f"cannot open vSphere session to {endpoint}: {exc}") from exc
        except vmodl.MethodFault as exc:
            raise ConnectivityError(f"vSphere session to {endpoint} failed: {exc.msg}") from exc

        if si is None:
            raise ConnectivityError(f"vSphere session to {endpoint} returned no service instance")

        return VsphereSession(endpoint=endpoint, host=host, service_instance=si)

    def execute(self, session: VsphereSession, request: Callable[[Any], Any]) -> Any:
        if session.closed:
            raise RemoteError(f"session to {session.endpoint} is closed")
        try:
            return request(session.content)
        except vim.fault.NotAuthenticated as exc:
            raise TransportFailure(f"session to {session.endpoint} is no longer authenticated") from exc
        except _NETWORK_ERRORS as exc:
            raise TransportFailure(f"call to {session.endpoint} failed: {exc}") from exc
        except vmodl.MethodFault as exc:
            raise RemoteError(f"{session.endpoint} refused the call: {exc.msg}") from exc

    def close_session(self, session: VsphereSession | None) -> None:
        if session is None or session.closed:
            return
        session.closed = True
        try:
            self.disconnect(session.service_instance)
        except (*_NETWORK_ERRORS, vmodl.MethodFault) as exc:
            logger.debug("disconnect from %s failed: %s", session.endpoint, exc)

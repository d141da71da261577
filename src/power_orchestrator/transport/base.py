"""
Transport interfaces.

Goal
Define a stable session lifecycle for every control plane without binding the
convergence engine to a specific library.

Contract
open_session opens a session or raises ConnectivityError or AuthenticationFailure.
execute performs exactly one call. There are no retries at this layer; retrying
is the concern of convergence operations.
close_session is idempotent and accepts None.

Sessions are explicit. There is no ambient current session: every observation
and command receives a Channel that pairs an adapter with the session it owns.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Generic, Iterator, Protocol, TypeVar

from power_orchestrator.audit.sink import AuditSink
from power_orchestrator.core.errors import (
    AuthenticationFailure,
    ConnectivityError,
    OrchestratorError,
    TargetNotFound,
)
from power_orchestrator.core.result import ConvergenceOutcome, ConvergenceResult
from power_orchestrator.core.types import Credentials, Target

logger = logging.getLogger(__name__)

S = TypeVar("S")


class TransportAdapter(Protocol[S]):
    """
    Session lifecycle for one control plane.

    probe
    Pre flight reachability check against the management port.

    open_session
    Establish a session or raise a SessionError subclass.

    execute
    Perform one request and return the response.

    close_session
    Release the session. Safe on None and on already closed sessions.
    """

    def probe(self, endpoint: str) -> bool:
        """Return True when the endpoint management port accepts connections."""

    def open_session(self, endpoint: str, credentials: Credentials) -> S:
        """Open a session."""

    def execute(self, session: S, request: Any) -> Any:
        """Execute one request."""

    def close_session(self, session: S | None) -> None:
        """Close the session."""


@dataclass(frozen=True)
class Channel(Generic[S]):
    """
    An adapter bound to one open session.

    Observation and command functions take a Channel so they never reach for
    a global connection.
    """

    adapter: TransportAdapter[S]
    session: S
    endpoint: str

    def call(self, request: Any) -> Any:
        return self.adapter.execute(self.session, request)


@contextmanager
def session_scope(
    adapter: TransportAdapter[S],
    endpoint: str,
    credentials: Credentials,
) -> Iterator[Channel[S]]:
    """
    Probe, open, yield and always close a session.

    An unreachable endpoint raises ConnectivityError without attempting to open.
    The session is closed on every exit path, including exceptions raised by
    the body.
    """
    if not adapter.probe(endpoint):
        raise ConnectivityError(f"{endpoint} is not reachable")

    session = adapter.open_session(endpoint, credentials)
    logger.debug("opened session to %s", endpoint)
    try:
        yield Channel(adapter=adapter, session=session, endpoint=endpoint)
    finally:
        adapter.close_session(session)
        logger.debug("closed session to %s", endpoint)


def failure_result(target: Target, desired: Any, exc: OrchestratorError) -> ConvergenceResult:
    outcome = ConvergenceOutcome.transport_failure
    if isinstance(exc, TargetNotFound):
        outcome = ConvergenceOutcome.target_not_found
    return ConvergenceResult(
        target=target,
        outcome=outcome,
        desired=desired,
        observed=None,
        error_kind=exc.kind,
        detail=str(exc),
    )


def run_in_session(
    adapter: TransportAdapter[S],
    endpoint: str,
    credentials: Credentials,
    target: Target,
    desired: Any,
    sink: AuditSink,
    body: Callable[[Channel[S]], ConvergenceResult],
) -> ConvergenceResult:
    """
    Run an operation body inside a session scope.

    Session establishment failures become a transport_failure result and an
    ERROR audit event. No polling is attempted in that case.

    Lookups the body performs before it starts converging, such as resolving
    a cluster moid, end the operation the same way: TargetNotFound becomes
    target_not_found and any other orchestrator error transport_failure.
    """
    try:
        with session_scope(adapter, endpoint, credentials) as channel:
            return body(channel)
    except AuthenticationFailure as exc:
        sink.error(f"{target.describe()}: authentication failed at {endpoint}: {exc}")
        return failure_result(target, desired, exc)
    except ConnectivityError as exc:
        sink.error(f"{target.describe()}: cannot connect to {endpoint}: {exc}")
        return failure_result(target, desired, exc)
    except TargetNotFound as exc:
        sink.error(f"{target.describe()}: not found: {exc}")
        return failure_result(target, desired, exc)
    except OrchestratorError as exc:
        sink.error(f"{target.describe()}: {exc.kind}: {exc}")
        return failure_result(target, desired, exc)

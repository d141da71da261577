"""
In memory transport.

This adapter and the scripted observer are used for tests and local
simulations. They follow the TransportAdapter contract exactly, so the session
lifecycle rules can be checked without a network.

Features
- Reachability flag to simulate a failed pre flight probe
- Failure injection on open_session
- Request handler that sees every call
- Bookkeeping of opened and closed sessions
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from power_orchestrator.core.errors import RemoteError
from power_orchestrator.core.types import Credentials


@dataclass
class InMemorySession:
    endpoint: str
    credentials: Credentials
    closed: bool = False


@dataclass
class InMemoryAdapter:
    """
    In memory adapter.

    handler
    Called as handler(request) for every execute. Exceptions propagate so tests
    can inject transport failures.

    open_error
    When set, open_session raises it.
    """

    handler: Callable[[Any], Any] = lambda request: None
    reachable: bool = True
    open_error: Exception | None = None
    opened: list[InMemorySession] = field(default_factory=list)
    requests: list[Any] = field(default_factory=list)
    close_calls: int = 0

    def probe(self, endpoint: str) -> bool:
        return self.reachable

    def open_session(self, endpoint: str, credentials: Credentials) -> InMemorySession:
        if self.open_error is not None:
            raise self.open_error
        session = InMemorySession(endpoint=endpoint, credentials=credentials)
        self.opened.append(session)
        return session

    def execute(self, session: InMemorySession, request: Any) -> Any:
        if session.closed:
            raise RemoteError(f"session to {session.endpoint} is closed")
        self.requests.append(request)
        return self.handler(request)

    def close_session(self, session: InMemorySession | None) -> None:
        self.close_calls += 1
        if session is None:
            return
        session.closed = True

    @property
    def open_sessions(self) -> list[InMemorySession]:
        return [s for s in self.opened if not s.closed]


class ScriptedObserver:
    """
    Observer that replays a scripted sequence.

    Items that are exceptions are raised instead of returned.
    Once the script is exhausted the last item repeats.
    """

    def __init__(self, script: Iterable[Any]) -> None:
        self._script = list(script)
        if not self._script:
            raise ValueError("script must not be empty")
        self.calls = 0

    def __call__(self) -> Any:
        index = min(self.calls, len(self._script) - 1)
        self.calls += 1
        item = self._script[index]
        if isinstance(item, BaseException):
            raise item
        return item

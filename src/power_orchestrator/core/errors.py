"""
Error taxonomy.

We separate error types so callers can react correctly.
Example:
ConnectivityError aborts an operation before any polling starts.
TransportFailure inside a poll loop is swallowed and retried within budget.
TargetNotFound stops an operation before any transition command is issued.
BackendNotReady has its own retry budget and is a hard failure when exhausted.

Timing out is not an exception. It is a ConvergenceResult outcome, so the
playbook layer decides whether it is fatal.
"""


class OrchestratorError(Exception):
    """Base class for all orchestrator exceptions."""

    kind = "OrchestratorError"


class SessionError(OrchestratorError):
    """Raised when a session to a control plane cannot be established."""

    kind = "SessionError"


class ConnectivityError(SessionError):
    """Raised when an endpoint is unreachable or the session open failed."""

    kind = "ConnectivityError"


class AuthenticationFailure(SessionError):
    """Raised when the endpoint answered but rejected the identity."""

    kind = "AuthenticationFailure"


class RemoteError(OrchestratorError):
    """Raised when a remote call was delivered but the backend refused it."""

    kind = "RemoteError"


class TransportFailure(RemoteError):
    """Raised when a single call fails because of a transient network problem."""

    kind = "TransportFailure"


class ObservationError(OrchestratorError):
    """Raised when a read only observation cannot produce a state."""

    kind = "ObservationError"


class TargetNotFound(ObservationError):
    """Raised when the named resource does not exist in the inventory."""

    kind = "TargetNotFound"


class ScopeNotFound(TargetNotFound):
    """
    Raised when the parent of a lookup does not exist.

    Example: the cluster named for a pattern search is missing.
    A pattern that matches zero children is not an error.
    """

    kind = "ScopeNotFound"


class BackendNotReady(OrchestratorError):
    """Raised when a backend service such as vSAN health is not initialized yet."""

    kind = "BackendNotReady"

"""
Cluster membership gate.

Every expected member is checked and reported on its own, so a partially
formed cluster shows exactly which members are missing. Members that are
present but not expected are listed as a warning; they do not fail the gate.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from power_orchestrator.audit.sink import AuditSink
from power_orchestrator.core.errors import ObservationError, RemoteError, SessionError
from power_orchestrator.core.types import Credentials
from power_orchestrator.observe.nsx import cluster_members
from power_orchestrator.transport.base import TransportAdapter, session_scope


@dataclass(frozen=True)
class MemberCheck:
    member: str
    present: bool


@dataclass(frozen=True)
class MembershipResult:
    """
    Result of a membership gate.

    checks
      One entry per expected member, in the order given.

    unexpected
      Observed members that were not expected.
    """

    scope: str
    checks: list[MemberCheck] = field(default_factory=list)
    unexpected: list[str] = field(default_factory=list)
    error_kind: str | None = None
    detail: str = ""

    @property
    def passed(self) -> bool:
        return self.error_kind is None and all(c.present for c in self.checks)

    @property
    def missing(self) -> list[str]:
        return [c.member for c in self.checks if not c.present]


def _normalize(member: str) -> str:
    return member.strip().lower()


def check_membership(
    expected: Iterable[str],
    observed: Iterable[str],
    sink: AuditSink,
    *,
    scope: str,
) -> MembershipResult:
    seen = {_normalize(m): m for m in observed}
    wanted = list(expected)

    checks = []
    for member in wanted:
        present = _normalize(member) in seen
        checks.append(MemberCheck(member=member, present=present))
        if present:
            sink.info(f"{scope}: member {member} present")
        else:
            sink.warning(f"{scope}: member {member} missing")

    wanted_keys = {_normalize(m) for m in wanted}
    unexpected = [original for key, original in seen.items() if key not in wanted_keys]
    if unexpected:
        sink.warning(f"{scope}: unexpected member(s): {', '.join(unexpected)}")

    return MembershipResult(scope=scope, checks=checks, unexpected=unexpected)


def nsx_cluster_membership(
    adapter: TransportAdapter[Any],
    endpoint: str,
    credentials: Credentials,
    expected: Iterable[str],
    sink: AuditSink,
) -> MembershipResult:
    """Compare the NSX manager cluster members with the expected manager nodes."""
    scope = f"nsx cluster on {endpoint}"
    try:
        with session_scope(adapter, endpoint, credentials) as channel:
            observed = cluster_members(channel)
    except (SessionError, RemoteError, ObservationError) as exc:
        sink.error(f"{scope}: cannot read members: {exc}")
        return MembershipResult(scope=scope, error_kind=exc.kind, detail=str(exc))
    return check_membership(expected, observed, sink, scope=scope)

"""
vSAN resync gate.

check_resync is a single read: the gate passes when no object is resyncing.
wait_for_resync composes the same read into a converge loop with no command,
which is how callers wait for resync to drain before shutting hosts down.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable

from power_orchestrator.audit.sink import AuditSink
from power_orchestrator.converge.engine import converge
from power_orchestrator.core.errors import BackendNotReady, ObservationError, OrchestratorError
from power_orchestrator.core.policy import RESYNC_WAIT, ConvergencePolicy
from power_orchestrator.core.result import ConvergenceResult
from power_orchestrator.core.types import Credentials, ResourceKind, Target
from power_orchestrator.observe.vsan import vsan_resyncing_object_count
from power_orchestrator.transport.base import TransportAdapter, run_in_session


@dataclass(frozen=True)
class GateResult:
    """
    Pass or fail of a single read gate.

    observed
      The value read, None when the read failed.
    """

    name: str
    passed: bool
    observed: Any = None
    error_kind: str | None = None
    detail: str = ""


def check_resync(count: Callable[[], int], sink: AuditSink, *, cluster: str) -> GateResult:
    name = f"{cluster}/vsan-resync"
    try:
        pending = count()
    except OrchestratorError as exc:
        sink.error(f"{cluster}: cannot read resync state: {exc}")
        return GateResult(name=name, passed=False, error_kind=exc.kind, detail=str(exc))

    if pending == 0:
        sink.info(f"{cluster}: no vSAN objects resyncing")
        return GateResult(name=name, passed=True, observed=0)

    sink.warning(f"{cluster}: {pending} vSAN object(s) still resyncing")
    return GateResult(name=name, passed=False, observed=pending, detail=f"{pending} objects resyncing")


def wait_for_resync(
    count: Callable[[], int],
    sink: AuditSink,
    *,
    cluster: str,
    endpoint: str,
    policy: ConvergencePolicy = RESYNC_WAIT,
    sleep: Callable[[float], None] = time.sleep,
) -> ConvergenceResult:
    """Poll until the resyncing object count reaches zero."""

    def observe() -> int:
        try:
            return count()
        except BackendNotReady as exc:
            # An unanswered read is a failed poll, not a hard stop.
            raise ObservationError(str(exc)) from exc

    return converge(
        Target(endpoint, ResourceKind.cluster_setting, f"{cluster}/vsan-resync"),
        observe=observe,
        command=None,
        desired=0,
        policy=policy,
        sink=sink,
        sleep=sleep,
    )


def vsan_wait_for_resync(
    adapter: TransportAdapter[Any],
    endpoint: str,
    credentials: Credentials,
    cluster: str,
    sink: AuditSink,
    *,
    policy: ConvergencePolicy = RESYNC_WAIT,
    sleep: Callable[[float], None] = time.sleep,
) -> ConvergenceResult:
    target = Target(endpoint, ResourceKind.cluster_setting, f"{cluster}/vsan-resync")
    return run_in_session(
        adapter,
        endpoint,
        credentials,
        target,
        0,
        sink,
        lambda channel: wait_for_resync(
            lambda: vsan_resyncing_object_count(channel, cluster),
            sink,
            cluster=cluster,
            endpoint=endpoint,
            policy=policy,
            sleep=sleep,
        ),
    )

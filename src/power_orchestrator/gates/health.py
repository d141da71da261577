"""
Cluster health gate.

Purpose
Reduce a structured health summary to one pass or fail verdict.

Design
The verdict is RED if any group is RED, otherwise GREEN. Yellow, info and
unknown groups do not fail the gate; they are reported for diagnostics.

The health service may not be initialized right after a cold boot. Reaching
it is retried under a BackendRetryPolicy with a fixed backoff. Transport and
observation failures on the way to it, such as the cluster lookup on vCenter,
are retried the same way. That budget is separate from the result: a RED
cluster is reported immediately, while an unreachable health service is
retried and then reported as BackendNotReady. A missing cluster is not
retried.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Callable, Iterable

from power_orchestrator.audit.sink import AuditSink
from power_orchestrator.core.errors import (
    BackendNotReady,
    ObservationError,
    OrchestratorError,
    RemoteError,
    TargetNotFound,
)
from power_orchestrator.core.policy import HEALTH_BACKEND, BackendRetryPolicy
from power_orchestrator.core.types import Credentials, HealthGroup, HealthSeverity
from power_orchestrator.observe.vsan import vsan_health_groups
from power_orchestrator.transport.base import TransportAdapter, session_scope


class HealthVerdict(StrEnum):
    green = "GREEN"
    red = "RED"


def aggregate_health(groups: Iterable[HealthGroup]) -> HealthVerdict:
    if any(g.severity == HealthSeverity.red for g in groups):
        return HealthVerdict.red
    return HealthVerdict.green


@dataclass(frozen=True)
class HealthGateResult:
    """
    Result of a cluster health gate.

    verdict
      GREEN or RED, None when the health service was never reached.

    groups
      Every group of the last summary read.

    attempts
      Calls made to the health service.

    error_kind
      BackendNotReady when the retry budget ran out, or the kind of the
      session error that prevented the check.
    """

    cluster: str
    verdict: HealthVerdict | None
    groups: list[HealthGroup] = field(default_factory=list)
    attempts: int = 0
    error_kind: str | None = None
    detail: str = ""

    @property
    def passed(self) -> bool:
        return self.verdict == HealthVerdict.green

    @property
    def red_groups(self) -> list[str]:
        return [g.name for g in self.groups if g.severity == HealthSeverity.red]


def check_cluster_health(
    fetch: Callable[[], list[HealthGroup]],
    sink: AuditSink,
    *,
    cluster: str,
    policy: BackendRetryPolicy = HEALTH_BACKEND,
    sleep: Callable[[float], None] = time.sleep,
) -> HealthGateResult:
    attempts = 0
    last_error: OrchestratorError | None = None

    while attempts < policy.max_attempts:
        attempts += 1
        try:
            groups = fetch()
        except TargetNotFound:
            raise
        except (BackendNotReady, RemoteError, ObservationError) as exc:
            last_error = exc
            sink.warning(f"health service for {cluster} not ready, attempt {attempts}/{policy.max_attempts}: {exc}")
            if attempts < policy.max_attempts:
                sleep(policy.retry_interval)
            continue

        verdict = aggregate_health(groups)
        for group in groups:
            if group.severity != HealthSeverity.green:
                sink.info(f"{cluster}: health group {group.name} is {group.severity.value}")

        if verdict == HealthVerdict.red:
            names = ", ".join(g.name for g in groups if g.severity == HealthSeverity.red)
            sink.warning(f"{cluster}: health is RED ({names})")
        else:
            sink.info(f"{cluster}: health is GREEN")
        return HealthGateResult(cluster=cluster, verdict=verdict, groups=list(groups), attempts=attempts)

    detail = f"health service for {cluster} not ready after {attempts} attempt(s)"
    if last_error is not None:
        detail = f"{detail}: {last_error}"
    sink.error(detail)
    return HealthGateResult(
        cluster=cluster,
        verdict=None,
        attempts=attempts,
        error_kind=BackendNotReady.kind,
        detail=detail,
    )


def vsan_cluster_health(
    adapter: TransportAdapter[Any],
    endpoint: str,
    credentials: Credentials,
    cluster: str,
    sink: AuditSink,
    *,
    policy: BackendRetryPolicy = HEALTH_BACKEND,
    sleep: Callable[[float], None] = time.sleep,
) -> HealthGateResult:
    """Run the health gate against the vSAN health service of a vCenter cluster."""
    try:
        with session_scope(adapter, endpoint, credentials) as channel:
            return check_cluster_health(
                lambda: vsan_health_groups(channel, cluster),
                sink,
                cluster=cluster,
                policy=policy,
                sleep=sleep,
            )
    except OrchestratorError as exc:
        sink.error(f"{cluster}: health check against {endpoint} failed: {exc}")
        return HealthGateResult(cluster=cluster, verdict=None, error_kind=exc.kind, detail=str(exc))

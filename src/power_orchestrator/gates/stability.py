"""
Network manager stability gate.

Purpose
Wait for a cold booted NSX manager cluster to report STABLE.

State machine
unreachable
  Initial state, and the state after any poll that failed to connect.
  The next poll waits unreachable_interval, since the managers may still be
  booting.

reachable_not_stable
  A poll got an answer that is not the stable marker. The next poll waits
  reachable_interval for the first settle_after successful answers and
  settled_interval afterwards.

stable
  Terminal success.

An AuthenticationFailure ends the gate at once. Repeating a rejected login
against a freshly booted manager only runs into its lockout policy.
Running out of attempts in any other state is a timeout.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from power_orchestrator.audit.sink import AuditLevel, AuditSink
from power_orchestrator.core.errors import (
    AuthenticationFailure,
    ConnectivityError,
    ObservationError,
    RemoteError,
    TransportFailure,
)
from power_orchestrator.core.policy import NSX_STABILITY, StabilityPolicy
from power_orchestrator.core.types import Credentials, NsxClusterStatus, StabilityState
from power_orchestrator.observe.nsx import cluster_status
from power_orchestrator.transport.base import TransportAdapter, session_scope

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StabilityResult:
    """
    Result of the stability gate.

    state
      Gate state when it ended.

    intervals
      Every sleep taken, in order.

    status
      Last cluster status read, None when no poll got an answer.
    """

    cluster: str
    state: StabilityState
    attempts: int
    intervals: list[float] = field(default_factory=list)
    status: NsxClusterStatus | None = None
    error_kind: str | None = None
    detail: str = ""

    @property
    def stable(self) -> bool:
        return self.state == StabilityState.stable

    @property
    def timed_out(self) -> bool:
        return not self.stable and self.error_kind is None


def wait_for_stable(
    poll: Callable[[], NsxClusterStatus],
    sink: AuditSink,
    *,
    cluster: str,
    policy: StabilityPolicy = NSX_STABILITY,
    stable_marker: NsxClusterStatus = NsxClusterStatus.stable,
    timeout_level: AuditLevel = AuditLevel.error,
    sleep: Callable[[float], None] = time.sleep,
) -> StabilityResult:
    state = StabilityState.unreachable
    status: NsxClusterStatus | None = None
    intervals: list[float] = []
    attempts = 0
    successes = 0

    def result(**extra: Any) -> StabilityResult:
        return StabilityResult(
            cluster=cluster,
            state=state,
            attempts=attempts,
            intervals=list(intervals),
            status=status,
            **extra,
        )

    while attempts < policy.max_attempts:
        attempts += 1
        try:
            status = poll()
        except AuthenticationFailure as exc:
            sink.error(f"{cluster}: authentication rejected, stopping to avoid lockout: {exc}")
            return result(error_kind=exc.kind, detail=str(exc))
        except (ConnectivityError, TransportFailure) as exc:
            state = StabilityState.unreachable
            interval = float(policy.unreachable_interval)
            sink.warning(f"{cluster}: poll {attempts}/{policy.max_attempts} unreachable: {exc}")
        except (RemoteError, ObservationError) as exc:
            successes += 1
            state = StabilityState.reachable_not_stable
            interval = policy.interval_after_success(successes)
            sink.warning(f"{cluster}: poll {attempts}/{policy.max_attempts} answered without a status: {exc}")
        else:
            successes += 1
            if status == stable_marker:
                state = StabilityState.stable
                sink.info(f"{cluster}: {status.value} after {attempts} poll(s)")
                return result()
            state = StabilityState.reachable_not_stable
            interval = policy.interval_after_success(successes)
            sink.info(f"{cluster}: poll {attempts}/{policy.max_attempts} is {status.value}")

        if attempts < policy.max_attempts:
            logger.debug("%s: %s, sleeping %ss", cluster, state.value, interval)
            intervals.append(interval)
            sleep(interval)

    detail = f"{cluster}: not {stable_marker.value} after {attempts} poll(s), last state {state.value}"
    sink.emit(timeout_level, detail)
    return result(detail=detail)


def wait_for_nsx_stable(
    adapter: TransportAdapter[Any],
    endpoint: str,
    credentials: Credentials,
    sink: AuditSink,
    *,
    policy: StabilityPolicy = NSX_STABILITY,
    sleep: Callable[[float], None] = time.sleep,
) -> StabilityResult:
    """
    Run the stability gate against an NSX manager.

    Each poll opens and closes its own session, because a manager that is
    still booting drops sessions between polls.
    """

    def poll() -> NsxClusterStatus:
        with session_scope(adapter, endpoint, credentials) as channel:
            return cluster_status(channel)

    return wait_for_stable(poll, sink, cluster=f"nsx cluster on {endpoint}", policy=policy, sleep=sleep)

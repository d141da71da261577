"""
Convergence engine.

Purpose
Drive one target from its observed state to a desired state.

Every power state, mode setting and service state operation is this loop with
different observe and command functions and a different policy:

1) observe once. If already desired, report already_converged and stop.
2) issue the transition command once. It is not retried here.
3) sleep, observe, compare, at most policy.max_attempts times.
4) converged on the first fresh observation equal to desired, else timed_out.

Correctness comes only from observation. A command that fails with a transient
error is logged and polling continues, because the remote side may have begun
the transition anyway.

Reconfiguration guard
Some transitions report the desired state before background work settles,
for example HA agents still configuring after the cluster flag flipped.
busy is consulted whenever the observed state matches; while it returns True
the operation keeps polling instead of trusting the single read.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, TypeVar

from power_orchestrator.audit.sink import AuditLevel, AuditSink
from power_orchestrator.core.errors import (
    ObservationError,
    RemoteError,
    SessionError,
    TargetNotFound,
)
from power_orchestrator.core.policy import ConvergencePolicy
from power_orchestrator.core.result import ConvergenceOutcome, ConvergenceResult
from power_orchestrator.core.types import Target

logger = logging.getLogger(__name__)

S = TypeVar("S")

_TRANSIENT = (RemoteError, ObservationError)


def _label(state: Any) -> str:
    return str(getattr(state, "value", state))


def _is_busy(busy: Callable[[], bool] | None, target: Target, sink: AuditSink) -> bool:
    if busy is None:
        return False
    try:
        return bool(busy())
    except TargetNotFound:
        raise
    except _TRANSIENT as exc:
        sink.warning(f"{target.describe()}: reconfiguration check failed, treating as busy: {exc}")
        return True


def converge(
    target: Target,
    observe: Callable[[], S],
    command: Callable[[S], Any] | None,
    desired: S,
    policy: ConvergencePolicy,
    sink: AuditSink,
    *,
    busy: Callable[[], bool] | None = None,
    timeout_level: AuditLevel = AuditLevel.warning,
    sleep: Callable[[float], None] = time.sleep,
) -> ConvergenceResult:
    """
    Converge target to desired.

    command None turns the operation into a pure wait, which is how readiness
    gates are composed into a poll loop.
    """

    what = target.describe()
    attempts = 0
    commands = 0
    observed: Any = None

    def result(outcome: ConvergenceOutcome, error: Exception | None = None, detail: str = "") -> ConvergenceResult:
        return ConvergenceResult(
            target=target,
            outcome=outcome,
            desired=desired,
            observed=observed,
            attempts=attempts,
            commands_issued=commands,
            error_kind=getattr(error, "kind", None) if error is not None else None,
            detail=detail or (str(error) if error is not None else ""),
        )

    try:
        observed = observe()
    except TargetNotFound as exc:
        sink.error(f"{what}: not found: {exc}")
        return result(ConvergenceOutcome.target_not_found, exc)
    except (SessionError, *_TRANSIENT) as exc:
        sink.error(f"{what}: initial observation failed: {exc}")
        return result(ConvergenceOutcome.transport_failure, exc)

    try:
        if observed == desired and not _is_busy(busy, target, sink):
            sink.info(f"{what}: already {_label(desired)}")
            return result(ConvergenceOutcome.already_converged, detail=f"already {_label(desired)}")

        if observed == desired:
            sink.info(f"{what}: {_label(desired)} but reconfiguration in progress, waiting")
        elif command is None:
            sink.info(f"{what}: is {_label(observed)}, waiting for {_label(desired)}")
        else:
            sink.info(f"{what}: is {_label(observed)}, requesting {_label(desired)}")
            commands = 1
            try:
                command(desired)
            except (TargetNotFound, SessionError):
                raise
            except _TRANSIENT as exc:
                sink.warning(f"{what}: transition command failed, polling anyway: {exc}")

        while attempts < policy.max_attempts:
            sleep(policy.poll_interval)
            attempts += 1

            try:
                observed = observe()
            except (TargetNotFound, SessionError):
                raise
            except _TRANSIENT as exc:
                sink.warning(f"{what}: poll {attempts}/{policy.max_attempts} failed: {exc}")
                continue

            if observed != desired:
                sink.info(
                    f"{what}: poll {attempts}/{policy.max_attempts} is {_label(observed)}, "
                    f"waiting for {_label(desired)}"
                )
                continue

            if _is_busy(busy, target, sink):
                sink.info(f"{what}: poll {attempts}/{policy.max_attempts} is {_label(desired)}, reconfiguration in progress")
                continue

            sink.info(f"{what}: reached {_label(desired)} after {attempts} poll(s)")
            return result(ConvergenceOutcome.converged)

    except TargetNotFound as exc:
        sink.error(f"{what}: not found: {exc}")
        return result(ConvergenceOutcome.target_not_found, exc)
    except SessionError as exc:
        sink.error(f"{what}: session failed: {exc}")
        return result(ConvergenceOutcome.transport_failure, exc)

    message = (
        f"{what}: timed out after {attempts} poll(s) every {policy.poll_interval}s, "
        f"last state {_label(observed)}, wanted {_label(desired)}"
    )
    sink.emit(timeout_level, message)
    logger.debug("convergence budget exhausted for %s", what)
    return result(ConvergenceOutcome.timed_out, detail=message)

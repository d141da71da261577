from __future__ import annotations

import io

from power_orchestrator.audit.sink import AuditLevel, AuditSink
from power_orchestrator.converge.engine import converge
from power_orchestrator.core.errors import ConnectivityError, RemoteError, TargetNotFound, TransportFailure
from power_orchestrator.core.policy import ConvergencePolicy
from power_orchestrator.core.result import ConvergenceOutcome
from power_orchestrator.core.types import PowerState, ResourceKind, Target
from power_orchestrator.transport.mock import ScriptedObserver

NODE_A = Target("vc01.lab.local", ResourceKind.virtual_machine, "node-A")


def make_sink() -> AuditSink:
    return AuditSink(stream=io.StringIO())


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class CommandRecorder:
    def __init__(self, error: Exception | None = None) -> None:
        self.calls: list[object] = []
        self.error = error

    def __call__(self, desired: object) -> None:
        self.calls.append(desired)
        if self.error is not None:
            raise self.error


def test_already_converged_issues_no_command_and_never_sleeps():
    sink = make_sink()
    sleep = SleepRecorder()
    command = CommandRecorder()

    res = converge(
        NODE_A,
        observe=ScriptedObserver([PowerState.running]),
        command=command,
        desired=PowerState.running,
        policy=ConvergencePolicy(poll_interval=5, max_attempts=10),
        sink=sink,
        sleep=sleep,
    )

    assert res.outcome == ConvergenceOutcome.already_converged
    assert res.ok
    assert res.commands_issued == 0
    assert res.attempts == 0
    assert command.calls == []
    assert sleep.calls == []
    assert sink.events[-1].level == AuditLevel.info


def test_node_a_converges_on_second_poll():
    sink = make_sink()
    sleep = SleepRecorder()
    command = CommandRecorder()
    observe = ScriptedObserver([PowerState.not_running, PowerState.not_running, PowerState.running])

    res = converge(
        NODE_A,
        observe=observe,
        command=command,
        desired=PowerState.running,
        policy=ConvergencePolicy(poll_interval=10, max_attempts=3),
        sink=sink,
        sleep=sleep,
    )

    assert res.outcome == ConvergenceOutcome.converged
    assert res.attempts == 2
    assert res.commands_issued == 1
    assert command.calls == [PowerState.running]
    assert sleep.calls == [10, 10]
    assert res.observed == PowerState.running


def test_timeout_is_bounded_by_max_attempts():
    sink = make_sink()
    sleep = SleepRecorder()
    observe = ScriptedObserver([PowerState.not_running])

    res = converge(
        NODE_A,
        observe=observe,
        command=CommandRecorder(),
        desired=PowerState.running,
        policy=ConvergencePolicy(poll_interval=7, max_attempts=4),
        sink=sink,
        sleep=sleep,
    )

    assert res.outcome == ConvergenceOutcome.timed_out
    assert not res.ok
    assert res.attempts == 4
    assert sum(sleep.calls) == 28
    # initial observation plus one per attempt
    assert observe.calls == 5
    assert sink.events[-1].level == AuditLevel.warning


def test_timeout_level_can_be_raised_to_error():
    sink = make_sink()

    res = converge(
        NODE_A,
        observe=ScriptedObserver([PowerState.not_running]),
        command=CommandRecorder(),
        desired=PowerState.running,
        policy=ConvergencePolicy(poll_interval=1, max_attempts=2),
        sink=sink,
        timeout_level=AuditLevel.error,
        sleep=SleepRecorder(),
    )

    assert res.outcome == ConvergenceOutcome.timed_out
    assert sink.failed


def test_transient_poll_failure_consumes_one_attempt():
    sink = make_sink()
    observe = ScriptedObserver(
        [PowerState.not_running, TransportFailure("connection reset"), PowerState.running]
    )

    res = converge(
        NODE_A,
        observe=observe,
        command=CommandRecorder(),
        desired=PowerState.running,
        policy=ConvergencePolicy(poll_interval=1, max_attempts=5),
        sink=sink,
        sleep=SleepRecorder(),
    )

    assert res.outcome == ConvergenceOutcome.converged
    assert res.attempts == 2
    warnings = [e for e in sink.events if e.level == AuditLevel.warning]
    assert len(warnings) == 1
    assert "connection reset" in warnings[0].message


def test_failed_command_is_tolerated_when_state_still_arrives():
    sink = make_sink()
    command = CommandRecorder(error=RemoteError("task already running"))

    res = converge(
        NODE_A,
        observe=ScriptedObserver([PowerState.not_running, PowerState.running]),
        command=command,
        desired=PowerState.running,
        policy=ConvergencePolicy(poll_interval=1, max_attempts=3),
        sink=sink,
        sleep=SleepRecorder(),
    )

    assert res.outcome == ConvergenceOutcome.converged
    assert res.commands_issued == 1
    assert any(e.level == AuditLevel.warning for e in sink.events)


def test_target_not_found_stops_before_any_command():
    sink = make_sink()
    command = CommandRecorder()

    res = converge(
        NODE_A,
        observe=ScriptedObserver([TargetNotFound("vm node-A not found")]),
        command=command,
        desired=PowerState.running,
        policy=ConvergencePolicy(poll_interval=1, max_attempts=3),
        sink=sink,
        sleep=SleepRecorder(),
    )

    assert res.outcome == ConvergenceOutcome.target_not_found
    assert res.error_kind == "TargetNotFound"
    assert command.calls == []
    assert sink.failed


def test_session_loss_during_polling_is_a_transport_failure():
    sink = make_sink()

    res = converge(
        NODE_A,
        observe=ScriptedObserver([PowerState.not_running, ConnectivityError("gone")]),
        command=CommandRecorder(),
        desired=PowerState.running,
        policy=ConvergencePolicy(poll_interval=1, max_attempts=3),
        sink=sink,
        sleep=SleepRecorder(),
    )

    assert res.outcome == ConvergenceOutcome.transport_failure
    assert res.error_kind == "ConnectivityError"
    assert res.attempts == 1


def test_busy_guard_keeps_polling_until_reconfiguration_drains():
    sink = make_sink()
    busy = ScriptedObserver([True, True, False])
    command = CommandRecorder()

    res = converge(
        NODE_A,
        observe=ScriptedObserver([PowerState.running]),
        command=command,
        desired=PowerState.running,
        policy=ConvergencePolicy(poll_interval=1, max_attempts=5),
        sink=sink,
        busy=busy,
        sleep=SleepRecorder(),
    )

    assert res.outcome == ConvergenceOutcome.converged
    assert res.attempts == 2
    assert command.calls == []


def test_failed_busy_read_counts_as_busy():
    sink = make_sink()

    res = converge(
        NODE_A,
        observe=ScriptedObserver([PowerState.not_running, PowerState.running]),
        command=CommandRecorder(),
        desired=PowerState.running,
        policy=ConvergencePolicy(poll_interval=1, max_attempts=3),
        sink=sink,
        busy=ScriptedObserver([RemoteError("task list unavailable"), False]),
        sleep=SleepRecorder(),
    )

    assert res.outcome == ConvergenceOutcome.converged
    assert res.attempts == 2


def test_command_none_is_a_pure_wait():
    sink = make_sink()
    observe = ScriptedObserver([5, 3, 0])

    res = converge(
        Target("vc01", ResourceKind.cluster_setting, "c1/vsan-resync"),
        observe=observe,
        command=None,
        desired=0,
        policy=ConvergencePolicy(poll_interval=60, max_attempts=10),
        sink=sink,
        sleep=SleepRecorder(),
    )

    assert res.outcome == ConvergenceOutcome.converged
    assert res.commands_issued == 0
    assert res.attempts == 2


def test_zero_attempt_budget_times_out_after_the_command():
    command = CommandRecorder()

    res = converge(
        NODE_A,
        observe=ScriptedObserver([PowerState.not_running, PowerState.running]),
        command=command,
        desired=PowerState.running,
        policy=ConvergencePolicy(poll_interval=1, max_attempts=0),
        sink=make_sink(),
        sleep=SleepRecorder(),
    )

    assert res.outcome == ConvergenceOutcome.timed_out
    assert res.commands_issued == 1
    assert res.attempts == 0

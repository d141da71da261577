from __future__ import annotations

import io
from typing import Any

from power_orchestrator.audit.sink import AuditLevel, AuditSink
from power_orchestrator.core.errors import (
    AuthenticationFailure,
    BackendNotReady,
    ConnectivityError,
    TargetNotFound,
    TransportFailure,
)
from power_orchestrator.core.policy import BackendRetryPolicy, ConvergencePolicy, StabilityPolicy
from power_orchestrator.core.result import ConvergenceOutcome
from power_orchestrator.core.types import Credentials, HealthGroup, HealthSeverity, NsxClusterStatus, StabilityState
from power_orchestrator.gates.health import HealthVerdict, aggregate_health, check_cluster_health, vsan_cluster_health
from power_orchestrator.gates.membership import check_membership, nsx_cluster_membership
from power_orchestrator.gates.resync import check_resync, wait_for_resync
from power_orchestrator.gates.stability import wait_for_nsx_stable, wait_for_stable
from power_orchestrator.observe.nsx import CLUSTER_PATH, CLUSTER_STATUS_PATH
from power_orchestrator.transport.mock import InMemoryAdapter, ScriptedObserver
from power_orchestrator.transport.rest import RestRequest

CREDS = Credentials(username="admin", password="secret")


def make_sink() -> AuditSink:
    return AuditSink(stream=io.StringIO())


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def group(name: str, severity: HealthSeverity) -> HealthGroup:
    return HealthGroup(name=name, severity=severity)


def test_health_is_red_when_any_group_is_red():
    assert aggregate_health([group("network", HealthSeverity.green), group("data", HealthSeverity.red)]) == HealthVerdict.red
    assert aggregate_health([group("network", HealthSeverity.yellow), group("data", HealthSeverity.green)]) == HealthVerdict.green
    assert aggregate_health([]) == HealthVerdict.green


def test_red_health_is_reported_without_retry():
    sink = make_sink()
    sleep = SleepRecorder()
    groups = [group("network", HealthSeverity.green), group("data", HealthSeverity.red)]

    res = check_cluster_health(lambda: groups, sink, cluster="mgmt", sleep=sleep)

    assert res.verdict == HealthVerdict.red
    assert not res.passed
    assert res.red_groups == ["data"]
    assert res.attempts == 1
    assert res.error_kind is None
    assert sleep.calls == []
    assert not sink.failed


def test_health_service_not_ready_is_retried_with_fixed_backoff():
    sleep = SleepRecorder()
    fetch = ScriptedObserver(
        [
            BackendNotReady("vsan health not initialized"),
            BackendNotReady("vsan health not initialized"),
            [group("network", HealthSeverity.green)],
        ]
    )

    res = check_cluster_health(
        fetch, make_sink(), cluster="mgmt", policy=BackendRetryPolicy(retry_interval=15, max_attempts=5), sleep=sleep
    )

    assert res.passed
    assert res.attempts == 3
    assert sleep.calls == [15, 15]


def test_health_service_never_ready_is_a_hard_failure():
    sink = make_sink()
    sleep = SleepRecorder()

    res = check_cluster_health(
        ScriptedObserver([BackendNotReady("connection refused")]),
        sink,
        cluster="mgmt",
        policy=BackendRetryPolicy(retry_interval=60, max_attempts=3),
        sleep=sleep,
    )

    assert res.verdict is None
    assert res.error_kind == "BackendNotReady"
    assert res.attempts == 3
    assert sleep.calls == [60, 60]
    assert sink.failed


def test_vcenter_failure_before_the_health_call_is_retried_then_reported():
    sink = make_sink()
    sleep = SleepRecorder()

    def lookup(request: Any) -> Any:
        raise TransportFailure("vcenter blip")

    adapter = InMemoryAdapter(handler=lookup)

    res = vsan_cluster_health(
        adapter, "vc01", CREDS, "mgmt", sink, policy=BackendRetryPolicy(retry_interval=30, max_attempts=3), sleep=sleep
    )

    assert res.verdict is None
    assert res.error_kind == "BackendNotReady"
    assert res.attempts == 3
    assert sleep.calls == [30, 30]
    assert "vcenter blip" in res.detail
    assert adapter.open_sessions == []
    assert sink.failed


def test_missing_cluster_fails_the_health_gate_without_retry():
    sleep = SleepRecorder()

    def lookup(request: Any) -> Any:
        raise TargetNotFound("cluster mgmt not found")

    res = vsan_cluster_health(InMemoryAdapter(handler=lookup), "vc01", CREDS, "mgmt", make_sink(), sleep=sleep)

    assert res.verdict is None
    assert res.error_kind == "TargetNotFound"
    assert sleep.calls == []


def test_resync_single_read():
    sink = make_sink()

    assert check_resync(lambda: 0, sink, cluster="mgmt").passed
    pending = check_resync(lambda: 12, sink, cluster="mgmt")
    assert not pending.passed
    assert pending.observed == 12
    broken = check_resync(ScriptedObserver([BackendNotReady("down")]), sink, cluster="mgmt")
    assert broken.error_kind == "BackendNotReady"
    dropped = check_resync(ScriptedObserver([TransportFailure("vcenter dropped the call")]), sink, cluster="mgmt")
    assert not dropped.passed
    assert dropped.error_kind == "TransportFailure"


def test_wait_for_resync_polls_to_zero():
    res = wait_for_resync(
        ScriptedObserver([40, BackendNotReady("busy"), 7, 0]),
        make_sink(),
        cluster="mgmt",
        endpoint="vc01",
        policy=ConvergencePolicy(poll_interval=60, max_attempts=5),
        sleep=SleepRecorder(),
    )

    assert res.outcome == ConvergenceOutcome.converged
    assert res.commands_issued == 0
    assert res.attempts == 3


def test_membership_reports_every_member():
    sink = make_sink()

    res = check_membership(["nsx-a.lab", "nsx-b.lab", "nsx-c.lab"], ["NSX-A.lab", "nsx-c.lab", "nsx-x.lab"], sink, scope="nsx")

    assert not res.passed
    assert [c.present for c in res.checks] == [True, False, True]
    assert res.missing == ["nsx-b.lab"]
    assert res.unexpected == ["nsx-x.lab"]
    assert len([e for e in sink.events if e.level == AuditLevel.warning]) == 2


def test_nsx_membership_reads_cluster_nodes():
    adapter = InMemoryAdapter(handler=lambda request: {"nodes": [{"fqdn": "nsx-a.lab"}, {"fqdn": "nsx-b.lab"}]})

    res = nsx_cluster_membership(adapter, "nsx01", CREDS, ["nsx-a.lab", "nsx-b.lab"], make_sink())

    assert res.passed
    assert adapter.requests == [RestRequest(CLUSTER_PATH)]


def test_stability_backoff_scenario():
    sleep = SleepRecorder()
    poll = ScriptedObserver([ConnectivityError("connection refused"), NsxClusterStatus.unstable, NsxClusterStatus.stable])

    res = wait_for_stable(poll, make_sink(), cluster="nsx", sleep=sleep)

    assert res.stable
    assert res.state == StabilityState.stable
    assert res.attempts == 3
    assert res.intervals == [90.0, 60.0]
    assert sleep.calls == [90.0, 60.0]


def test_stability_backoff_shortens_then_times_out():
    policy = StabilityPolicy(
        unreachable_interval=90, reachable_interval=60, settled_interval=30, settle_after=2, max_attempts=5
    )

    res = wait_for_stable(
        ScriptedObserver([NsxClusterStatus.unstable]), make_sink(), cluster="nsx", policy=policy, sleep=SleepRecorder()
    )

    assert res.timed_out
    assert res.state == StabilityState.reachable_not_stable
    assert res.intervals == [60.0, 60.0, 30.0, 30.0]


def test_connection_loss_returns_to_unreachable():
    res = wait_for_stable(
        ScriptedObserver([NsxClusterStatus.degraded, ConnectivityError("reboot"), NsxClusterStatus.stable]),
        make_sink(),
        cluster="nsx",
        sleep=SleepRecorder(),
    )

    assert res.stable
    assert res.intervals == [60.0, 90.0]


def test_authentication_failure_stops_immediately():
    sleep = SleepRecorder()
    sink = make_sink()

    res = wait_for_stable(ScriptedObserver([AuthenticationFailure("locked")]), sink, cluster="nsx", sleep=sleep)

    assert not res.stable
    assert not res.timed_out
    assert res.error_kind == "AuthenticationFailure"
    assert res.attempts == 1
    assert sleep.calls == []
    assert sink.failed


def test_nsx_stable_opens_a_fresh_session_per_poll():
    answers = iter(
        [
            {"mgmt_cluster_status": {"status": "UNSTABLE"}},
            {"detailed_cluster_status": {"overall_status": "STABLE"}},
        ]
    )

    def handler(request: Any) -> Any:
        assert request == RestRequest(CLUSTER_STATUS_PATH)
        return next(answers)

    adapter = InMemoryAdapter(handler=handler)

    res = wait_for_nsx_stable(adapter, "nsx01", CREDS, make_sink(), sleep=SleepRecorder())

    assert res.stable
    assert len(adapter.opened) == 2
    assert adapter.open_sessions == []

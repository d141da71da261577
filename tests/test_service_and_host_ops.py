from __future__ import annotations

import io
import json
from types import SimpleNamespace
from typing import Any

from power_orchestrator.audit.sink import AuditSink
from power_orchestrator.converge.host_ops import power_on_host, set_vsan_elevator
from power_orchestrator.converge.service_ops import set_appliance_service_state, set_ops_cluster_state
from power_orchestrator.core.policy import ConvergencePolicy
from power_orchestrator.core.result import ConvergenceOutcome
from power_orchestrator.core.types import ClusterOnlineState, Credentials, ServiceState, ToggleState
from power_orchestrator.transport.oob import OutOfBandPowerController
from power_orchestrator.transport.rest import RestAdapter
from power_orchestrator.transport.shell import SshShellAdapter

CREDS = Credentials(username="admin", password="secret")
FAST = ConvergencePolicy(poll_interval=1, max_attempts=4)


def no_sleep(seconds: float) -> None:
    return None


def make_sink() -> AuditSink:
    return AuditSink(stream=io.StringIO())


class OfflineRestAdapter(RestAdapter):
    def probe(self, endpoint: str) -> bool:
        return True


class OfflineShellAdapter(SshShellAdapter):
    def probe(self, endpoint: str) -> bool:
        return True


class VmonHttp:
    """Appliance that starts a service one poll after the start request."""

    def __init__(self, state: str) -> None:
        self.state = state
        self.pending: str | None = None
        self.posts: list[str] = []

    def send(self, method: str, url: str, headers: dict[str, str], body: bytes | None, timeout: float) -> tuple[int, bytes]:
        if method == "POST":
            self.posts.append(url)
            self.pending = "STARTED" if url.endswith("action=start") else "STOPPED"
            self.state = "STARTING" if self.pending == "STARTED" else "STOPPING"
            return 200, b""
        current = self.state
        if self.pending is not None:
            self.state, self.pending = self.pending, None
        return 200, json.dumps({"state": current}).encode("utf-8")


def test_start_appliance_service_passes_through_transitional_state():
    http = VmonHttp("STOPPED")

    res = set_appliance_service_state(
        OfflineRestAdapter(http=http), "vc01", CREDS, "vsan-health", ServiceState.started, make_sink(), policy=FAST, sleep=no_sleep
    )

    assert res.outcome == ConvergenceOutcome.converged
    assert res.attempts == 2
    assert http.posts == ["https://vc01/api/appliance/vmon/services/vsan-health?action=start"]


class RebootingVmonHttp(VmonHttp):
    """Answers the first poll after the start request with a raw error page."""

    def __init__(self, state: str) -> None:
        super().__init__(state)
        self.gets = 0

    def send(self, method: str, url: str, headers: dict[str, str], body: bytes | None, timeout: float) -> tuple[int, bytes]:
        if method == "GET":
            self.gets += 1
            if self.gets == 2:
                return 200, b"\xff\xfe<html>appliance is booting</html>"
        return super().send(method, url, headers, body, timeout)


def test_garbled_answer_mid_poll_is_retried():
    sink = make_sink()

    res = set_appliance_service_state(
        OfflineRestAdapter(http=RebootingVmonHttp("STOPPED")),
        "vc01",
        CREDS,
        "vsan-health",
        ServiceState.started,
        sink,
        policy=FAST,
        sleep=no_sleep,
    )

    assert res.outcome == ConvergenceOutcome.converged
    assert res.attempts == 3
    assert any("poll 1/4 failed" in e.message for e in sink.events)


def test_running_service_is_left_alone():
    http = VmonHttp("STARTED")

    res = set_appliance_service_state(
        OfflineRestAdapter(http=http), "vc01", CREDS, "vpxd", ServiceState.started, make_sink(), sleep=no_sleep
    )

    assert res.outcome == ConvergenceOutcome.already_converged
    assert http.posts == []


class CasaHttp:
    def __init__(self) -> None:
        self.state = "ONLINE"
        self.bodies: list[Any] = []

    def send(self, method: str, url: str, headers: dict[str, str], body: bytes | None, timeout: float) -> tuple[int, bytes]:
        if method == "POST":
            self.bodies.append(json.loads(body or b"{}"))
            self.state = "OFFLINE"
            return 202, b""
        return 200, json.dumps({"cluster_online_state": self.state}).encode("utf-8")


def test_take_ops_cluster_offline():
    http = CasaHttp()

    res = set_ops_cluster_state(
        OfflineRestAdapter(http=http),
        "ops01",
        CREDS,
        ClusterOnlineState.offline,
        make_sink(),
        reason="maintenance",
        policy=FAST,
        sleep=no_sleep,
    )

    assert res.outcome == ConvergenceOutcome.converged
    assert http.bodies == [{"state": "OFFLINE", "reason": "maintenance"}]


def test_power_on_host_waits_for_management_port():
    answers = iter([False, False, False, True])
    runs: list[list[str]] = []

    def runner(argv: list[str], **kwargs: Any) -> Any:
        runs.append(argv)
        return SimpleNamespace(returncode=0, stdout="Chassis Power Control: Up/On", stderr="")

    res = power_on_host(
        OutOfBandPowerController(runner=runner),
        "10.0.0.50",
        Credentials(username="root", password="calvin"),
        "esx01.lab.local",
        make_sink(),
        probe=lambda address: next(answers),
        policy=FAST,
        sleep=no_sleep,
    )

    assert res.outcome == ConvergenceOutcome.converged
    assert res.attempts == 3
    assert len(runs) == 1


def test_power_on_host_times_out_when_host_never_answers():
    def runner(argv: list[str], **kwargs: Any) -> Any:
        return SimpleNamespace(returncode=1, stdout="", stderr="Unable to establish IPMI v2 / RMCP+ session")

    sink = make_sink()
    res = power_on_host(
        OutOfBandPowerController(runner=runner),
        "10.0.0.50",
        Credentials(username="root", password="calvin"),
        "esx01.lab.local",
        sink,
        probe=lambda address: False,
        policy=FAST,
        sleep=no_sleep,
    )

    assert res.outcome == ConvergenceOutcome.timed_out
    assert res.attempts == FAST.max_attempts
    assert any("IPMI" in e.message for e in sink.events)


def test_disable_vsan_elevator_over_ssh():
    commands: list[str] = []
    state = {"value": 1}

    def runner(argv: list[str], **kwargs: Any) -> Any:
        command = argv[-1]
        commands.append(command)
        if command.startswith("yes | vsish -e set"):
            state["value"] = int(command.rsplit(" ", 1)[1])
            return SimpleNamespace(returncode=0, stdout="", stderr="")
        if command.startswith("vsish -e get"):
            return SimpleNamespace(returncode=0, stdout=f"Current value: {state['value']}\n", stderr="")
        return SimpleNamespace(returncode=0, stdout="", stderr="")

    res = set_vsan_elevator(
        OfflineShellAdapter(runner=runner), "esx01", CREDS, ToggleState.disabled, make_sink(), policy=FAST, sleep=no_sleep
    )

    assert res.outcome == ConvergenceOutcome.converged
    assert "yes | vsish -e set /config/LSOM/intOpts/plogRunElevator 0" in commands
    assert state["value"] == 0

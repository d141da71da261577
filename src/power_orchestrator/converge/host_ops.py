"""
Host power and host shell operations.

power_on_host
A powered off host has no API to talk to. The command goes to the baseboard
management controller and the host is considered up once its management port
accepts connections again.

set_vsan_elevator
Toggles the LSOM plog elevator through the host shell, used to drain the vSAN
log before a cluster wide shutdown.
"""

from __future__ import annotations

import time
from typing import Any, Callable

from power_orchestrator.audit.sink import AuditSink
from power_orchestrator.converge.engine import converge
from power_orchestrator.core.errors import RemoteError
from power_orchestrator.core.policy import HOST_POWER, HOST_SHELL_SETTING, ConvergencePolicy
from power_orchestrator.core.result import ConvergenceResult
from power_orchestrator.core.types import Credentials, Reachability, ResourceKind, Target, ToggleState
from power_orchestrator.observe.host import VSAN_ELEVATOR_OPTION, host_reachability, vsan_elevator_state
from power_orchestrator.transport.base import Channel, TransportAdapter, run_in_session
from power_orchestrator.transport.oob import OutOfBandPowerController
from power_orchestrator.transport.probe import split_endpoint, tcp_probe
from power_orchestrator.transport.shell import ShellCommand


def management_port_probe(port: int = 443, timeout: float = 5.0) -> Callable[[str], bool]:
    def probe(address: str) -> bool:
        host, resolved = split_endpoint(address, port)
        return tcp_probe(host, resolved, timeout=timeout)

    return probe


def power_on_host(
    controller: OutOfBandPowerController,
    bmc_address: str,
    bmc_credentials: Credentials,
    host_address: str,
    sink: AuditSink,
    *,
    probe: Callable[[str], bool] | None = None,
    policy: ConvergencePolicy = HOST_POWER,
    sleep: Callable[[float], None] = time.sleep,
) -> ConvergenceResult:
    """
    Power on a host out of band and wait for its management port.

    A failed power on command is logged and polling continues; some
    controllers report an error while the chassis is already starting.
    """
    check = probe if probe is not None else management_port_probe()
    target = Target(host_address, ResourceKind.host, host_address)

    return converge(
        target,
        observe=lambda: host_reachability(check, host_address),
        command=lambda want: controller.power_on(bmc_address, bmc_credentials),
        desired=Reachability.reachable,
        policy=policy,
        sink=sink,
        sleep=sleep,
    )


def set_vsan_elevator(
    adapter: TransportAdapter[Any],
    endpoint: str,
    credentials: Credentials,
    desired: ToggleState,
    sink: AuditSink,
    *,
    policy: ConvergencePolicy = HOST_SHELL_SETTING,
    sleep: Callable[[float], None] = time.sleep,
) -> ConvergenceResult:
    """Enable or disable the vSAN plog elevator on one host."""
    target = Target(endpoint, ResourceKind.host, f"{endpoint}{VSAN_ELEVATOR_OPTION}")

    def command(channel: Channel[Any], want: ToggleState) -> None:
        flag = 1 if want == ToggleState.enabled else 0
        result = channel.call(ShellCommand(f"yes | vsish -e set {VSAN_ELEVATOR_OPTION} {flag}"))
        if not result.ok:
            raise RemoteError(f"setting {VSAN_ELEVATOR_OPTION} on {endpoint} exited {result.exit_status}")

    def body(channel: Channel[Any]) -> ConvergenceResult:
        return converge(
            target,
            observe=lambda: vsan_elevator_state(channel),
            command=lambda want: command(channel, want),
            desired=desired,
            policy=policy,
            sink=sink,
            sleep=sleep,
        )

    return run_in_session(adapter, endpoint, credentials, target, desired, sink, body)

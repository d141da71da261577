"""
REST backed convergence operations.

Appliance services and the operations analytics cluster state are both
changed with a single POST and then observed until the backend reports the
requested state. Intermediate states such as STARTING or GOING_OFFLINE simply
keep the loop polling.
"""

from __future__ import annotations

import time
from typing import Any, Callable

from power_orchestrator.audit.sink import AuditSink
from power_orchestrator.converge.engine import converge
from power_orchestrator.core.policy import APPLIANCE_SERVICE, OPS_CLUSTER_STATE, ConvergencePolicy
from power_orchestrator.core.result import ConvergenceResult
from power_orchestrator.core.types import ClusterOnlineState, Credentials, ResourceKind, ServiceState, Target
from power_orchestrator.observe.appliance import service_path, service_state
from power_orchestrator.observe.ops import ONLINE_STATE_PATH, cluster_online_state
from power_orchestrator.transport.base import Channel, TransportAdapter, run_in_session
from power_orchestrator.transport.rest import RestRequest

_SERVICE_ACTIONS = {
    ServiceState.started: "start",
    ServiceState.stopped: "stop",
}

_OPS_TARGET_STATES = (ClusterOnlineState.online, ClusterOnlineState.offline)


def set_appliance_service_state(
    adapter: TransportAdapter[Any],
    endpoint: str,
    credentials: Credentials,
    service: str,
    desired: ServiceState,
    sink: AuditSink,
    *,
    policy: ConvergencePolicy = APPLIANCE_SERVICE,
    sleep: Callable[[float], None] = time.sleep,
) -> ConvergenceResult:
    """Start or stop one appliance service through the vmon services API."""
    if desired not in _SERVICE_ACTIONS:
        raise ValueError(f"appliance services converge to STARTED or STOPPED, got {desired}")

    target = Target(endpoint, ResourceKind.appliance_service, service)

    def body(channel: Channel[Any]) -> ConvergenceResult:
        return converge(
            target,
            observe=lambda: service_state(channel, service),
            command=lambda want: channel.call(
                RestRequest(service_path(service), method="POST", params={"action": _SERVICE_ACTIONS[want]})
            ),
            desired=desired,
            policy=policy,
            sink=sink,
            sleep=sleep,
        )

    return run_in_session(adapter, endpoint, credentials, target, desired, sink, body)


def set_ops_cluster_state(
    adapter: TransportAdapter[Any],
    endpoint: str,
    credentials: Credentials,
    desired: ClusterOnlineState,
    sink: AuditSink,
    *,
    reason: str = "power orchestration",
    policy: ConvergencePolicy = OPS_CLUSTER_STATE,
    sleep: Callable[[float], None] = time.sleep,
) -> ConvergenceResult:
    """
    Take the operations analytics cluster online or offline.

    Taking a large cluster offline can take tens of minutes, hence the long
    default cadence.
    """
    if desired not in _OPS_TARGET_STATES:
        raise ValueError(f"analytics cluster converges to ONLINE or OFFLINE, got {desired}")

    target = Target(endpoint, ResourceKind.management_cluster_state, "cluster")

    def body(channel: Channel[Any]) -> ConvergenceResult:
        return converge(
            target,
            observe=lambda: cluster_online_state(channel),
            command=lambda want: channel.call(
                RestRequest(ONLINE_STATE_PATH, method="POST", body={"state": want.value, "reason": reason})
            ),
            desired=desired,
            policy=policy,
            sink=sink,
            sleep=sleep,
        )

    return run_in_session(adapter, endpoint, credentials, target, desired, sink, body)

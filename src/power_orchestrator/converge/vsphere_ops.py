"""
vSphere convergence operations.

Purpose
Power VMs and hosts and flip cluster level settings, each through the generic
converge loop with a vSphere observation and a vSphere command.

Design
Every operation opens exactly one session with run_in_session, builds the
observe and command closures over the Channel and hands them to converge.
Commands start a vSphere task and return; the task object is not awaited.
Completion is established only by observing the inventory again.

Batch operations over a name pattern reuse the one session for every match and
collect a result per VM through converge_each.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Iterable

from pyVmomi import vim

from power_orchestrator.audit.sink import AuditSink
from power_orchestrator.converge.batch import BatchResult, converge_each, resolve_selection
from power_orchestrator.converge.engine import converge
from power_orchestrator.core.errors import OrchestratorError, SessionError, TargetNotFound
from power_orchestrator.core.policy import (
    ADVANCED_SETTING,
    DRS_RECONFIGURE,
    HA_RECONFIGURE,
    HOST_POWER,
    MAINTENANCE_MODE,
    VM_POWER,
    ConvergencePolicy,
)
from power_orchestrator.core.result import ConvergenceOutcome, ConvergenceResult
from power_orchestrator.core.types import (
    Credentials,
    DrsAutomationLevel,
    PowerState,
    Reachability,
    ResourceKind,
    Target,
    ToggleState,
)
from power_orchestrator.observe import vsphere as obs
from power_orchestrator.observe.host import host_reachability
from power_orchestrator.transport.base import (
    Channel,
    TransportAdapter,
    failure_result,
    run_in_session,
    session_scope,
)

VCLS_RETREAT_KEY = "config.vcls.clusters.{moid}.enabled"

# vSAN data migration modes accepted when entering maintenance mode.
VSAN_MODES = ("ensureObjectAccessibility", "evacuateAllData", "noAction")


def _require_vm_state(desired: PowerState) -> None:
    if desired not in (PowerState.running, PowerState.not_running):
        raise ValueError(f"vm power operations converge to running or not_running, got {desired}")


def _vm_power_command(name: str) -> Callable[[PowerState], Callable[[Any], None]]:
    """
    Build the request that moves every registration of a VM toward desired.

    Stopping prefers a guest shutdown and falls back to a hard power off when
    VMware Tools is not running in the guest. A suspended registration has no
    running guest and is powered off directly.
    """

    def build(desired: PowerState) -> Callable[[Any], None]:
        def request(content: Any) -> None:
            vms = obs.find_vms(content, name)
            if not vms:
                raise TargetNotFound(f"vm {name} not found")
            for vm in vms:
                state = str(vm.runtime.powerState)
                if desired == PowerState.running:
                    if state != "poweredOn":
                        vm.PowerOnVM_Task()
                elif state == "poweredOn":
                    if obs.guest_tools_running(vm):
                        vm.ShutdownGuest()
                    else:
                        vm.PowerOffVM_Task()
                elif state == "suspended":
                    vm.PowerOffVM_Task()

        return request

    return build


def _converge_vm(
    channel: Channel[Any],
    target: Target,
    desired: PowerState,
    sink: AuditSink,
    policy: ConvergencePolicy,
    sleep: Callable[[float], None],
) -> ConvergenceResult:
    build = _vm_power_command(target.identifier)
    return converge(
        target,
        observe=lambda: obs.vm_power_state(channel, target.identifier),
        command=lambda want: channel.call(build(want)),
        desired=desired,
        policy=policy,
        sink=sink,
        sleep=sleep,
    )


def set_vm_power_state(
    adapter: TransportAdapter[Any],
    endpoint: str,
    credentials: Credentials,
    vm: str,
    desired: PowerState,
    sink: AuditSink,
    *,
    policy: ConvergencePolicy = VM_POWER,
    sleep: Callable[[float], None] = time.sleep,
) -> ConvergenceResult:
    """Converge one named VM to running or not_running."""
    _require_vm_state(desired)
    target = Target(endpoint, ResourceKind.virtual_machine, vm)
    return run_in_session(
        adapter,
        endpoint,
        credentials,
        target,
        desired,
        sink,
        lambda channel: _converge_vm(channel, target, desired, sink, policy, sleep),
    )


def set_vm_power_states(
    adapter: TransportAdapter[Any],
    endpoint: str,
    credentials: Credentials,
    desired: PowerState,
    sink: AuditSink,
    *,
    pattern: str | None = None,
    default_pattern: str = ".*",
    cluster: str | None = None,
    first_match_only: bool = False,
    policy: ConvergencePolicy = VM_POWER,
    sleep: Callable[[float], None] = time.sleep,
) -> BatchResult:
    """
    Converge every VM whose name matches pattern.

    pattern None falls back to default_pattern and an empty match is silent.
    An explicit pattern with no match is reported at WARNING and skipped.

    first_match_only stops after the first matching VM, in name order.
    """
    _require_vm_state(desired)
    scope = Target(endpoint, ResourceKind.virtual_machine, pattern if pattern is not None else default_pattern)

    try:
        with session_scope(adapter, endpoint, credentials) as channel:
            try:
                selection = obs.vm_power_states(channel, pattern, default_pattern, cluster)
            except OrchestratorError as exc:
                sink.error(f"{scope.describe()}: {exc}")
                return BatchResult([failure_result(scope, desired, exc)])

            matches = resolve_selection(selection, sink, "vm")
            if first_match_only:
                matches = matches[:1]

            return converge_each(
                [m.target for m in matches],
                lambda t: _converge_vm(channel, t, desired, sink, policy, sleep),
                sink,
                desired,
            )
    except SessionError as exc:
        sink.error(f"{scope.describe()}: session to {endpoint} failed: {exc}")
        return BatchResult([failure_result(scope, desired, exc)])


def set_maintenance_mode(
    adapter: TransportAdapter[Any],
    endpoint: str,
    credentials: Credentials,
    host: str | None,
    desired: ToggleState,
    sink: AuditSink,
    *,
    cluster: str | None = None,
    vsan_mode: str = "ensureObjectAccessibility",
    policy: ConvergencePolicy = MAINTENANCE_MODE,
    sleep: Callable[[float], None] = time.sleep,
) -> ConvergenceResult:
    """
    Enter or exit host maintenance mode.

    host None addresses the single host of a direct ESXi session.

    While the owning cluster is still reconfiguring storage or availability,
    a maintenance flag that already reads as desired is not trusted and the
    operation keeps polling. cluster defaults to the host's own cluster.
    """
    if vsan_mode not in VSAN_MODES:
        raise ValueError(f"unknown vsan mode {vsan_mode!r}, expected one of {', '.join(VSAN_MODES)}")

    target = Target(endpoint, ResourceKind.host, host or endpoint)

    def request_for(want: ToggleState) -> Callable[[Any], None]:
        def request(content: Any) -> None:
            found = obs.find_host(content, host)
            if want == ToggleState.enabled:
                spec = vim.host.MaintenanceSpec(vsanMode=vim.vsan.host.DecommissionMode(objectAction=vsan_mode))
                found.EnterMaintenanceMode_Task(timeout=0, evacuatePoweredOffVms=False, maintenanceSpec=spec)
            else:
                found.ExitMaintenanceMode_Task(timeout=0)

        return request

    def body(channel: Channel[Any]) -> ConvergenceResult:
        owner = cluster if cluster is not None else obs.host_cluster_name(channel, host)
        busy = None
        if owner is not None:
            busy = lambda: obs.cluster_reconfiguration_in_progress(channel, owner)  # noqa: E731

        return converge(
            target,
            observe=lambda: obs.host_maintenance_state(channel, host),
            command=lambda want: channel.call(request_for(want)),
            desired=desired,
            policy=policy,
            sink=sink,
            busy=busy,
            sleep=sleep,
        )

    return run_in_session(adapter, endpoint, credentials, target, desired, sink, body)


def set_cluster_ha(
    adapter: TransportAdapter[Any],
    endpoint: str,
    credentials: Credentials,
    cluster: str,
    desired: ToggleState,
    sink: AuditSink,
    *,
    policy: ConvergencePolicy = HA_RECONFIGURE,
    sleep: Callable[[float], None] = time.sleep,
) -> ConvergenceResult:
    """
    Enable or disable vSphere HA on a cluster.

    The dasConfig flag flips before HA agents finish configuring on the hosts,
    so the operation waits for that reconfiguration to drain.
    """
    target = Target(endpoint, ResourceKind.cluster_setting, f"{cluster}/ha")

    def request_for(want: ToggleState) -> Callable[[Any], None]:
        def request(content: Any) -> None:
            spec = vim.cluster.ConfigSpecEx()
            spec.dasConfig = vim.cluster.DasConfigInfo()
            spec.dasConfig.enabled = want == ToggleState.enabled
            obs.find_cluster(content, cluster).ReconfigureComputeResource_Task(spec, modify=True)

        return request

    def body(channel: Channel[Any]) -> ConvergenceResult:
        return converge(
            target,
            observe=lambda: obs.cluster_ha_state(channel, cluster),
            command=lambda want: channel.call(request_for(want)),
            desired=desired,
            policy=policy,
            sink=sink,
            busy=lambda: obs.cluster_reconfiguration_in_progress(channel, cluster),
            sleep=sleep,
        )

    return run_in_session(adapter, endpoint, credentials, target, desired, sink, body)


def set_drs_automation_level(
    adapter: TransportAdapter[Any],
    endpoint: str,
    credentials: Credentials,
    cluster: str,
    desired: DrsAutomationLevel,
    sink: AuditSink,
    *,
    policy: ConvergencePolicy = DRS_RECONFIGURE,
    sleep: Callable[[float], None] = time.sleep,
) -> ConvergenceResult:
    """Set the DRS automation level. disabled turns DRS off entirely."""
    target = Target(endpoint, ResourceKind.cluster_setting, f"{cluster}/drs")

    def request_for(want: DrsAutomationLevel) -> Callable[[Any], None]:
        def request(content: Any) -> None:
            spec = vim.cluster.ConfigSpecEx()
            spec.drsConfig = vim.cluster.DrsConfigInfo()
            if want == DrsAutomationLevel.disabled:
                spec.drsConfig.enabled = False
            else:
                spec.drsConfig.enabled = True
                spec.drsConfig.defaultVmBehavior = want.value
            obs.find_cluster(content, cluster).ReconfigureComputeResource_Task(spec, modify=True)

        return request

    def body(channel: Channel[Any]) -> ConvergenceResult:
        return converge(
            target,
            observe=lambda: obs.cluster_drs_level(channel, cluster),
            command=lambda want: channel.call(request_for(want)),
            desired=desired,
            policy=policy,
            sink=sink,
            sleep=sleep,
        )

    return run_in_session(adapter, endpoint, credentials, target, desired, sink, body)


def _update_option(key: str, value: str) -> Callable[[Any], None]:
    def request(content: Any) -> None:
        content.setting.UpdateOptions(changedValue=[vim.option.OptionValue(key=key, value=value)])

    return request


def set_advanced_setting(
    adapter: TransportAdapter[Any],
    endpoint: str,
    credentials: Credentials,
    key: str,
    value: str,
    sink: AuditSink,
    *,
    policy: ConvergencePolicy = ADVANCED_SETTING,
    sleep: Callable[[float], None] = time.sleep,
) -> ConvergenceResult:
    """
    Set a vCenter advanced setting to a string value.

    A key that does not exist yet is created by the first update, so a missing
    key on the initial read is treated as "not yet desired" rather than an
    unknown target.
    """
    target = Target(endpoint, ResourceKind.cluster_setting, key)

    def body(channel: Channel[Any]) -> ConvergenceResult:
        def observe() -> str | None:
            try:
                return obs.advanced_setting(channel, key)
            except TargetNotFound:
                return None

        return converge(
            target,
            observe=observe,
            command=lambda want: channel.call(_update_option(key, want)),
            desired=value,
            policy=policy,
            sink=sink,
            sleep=sleep,
        )

    return run_in_session(adapter, endpoint, credentials, target, value, sink, body)


def set_vcls_retreat_mode(
    adapter: TransportAdapter[Any],
    endpoint: str,
    credentials: Credentials,
    cluster: str,
    desired: ToggleState,
    sink: AuditSink,
    *,
    policy: ConvergencePolicy = ADVANCED_SETTING,
    sleep: Callable[[float], None] = time.sleep,
) -> ConvergenceResult:
    """
    Put a cluster in or out of vCLS retreat mode.

    Retreat mode is the per cluster advanced setting keyed on the cluster moid;
    enabling retreat mode sets it to "false", which removes the vCLS VMs. A
    cluster without the key runs vCLS, so a missing key reads as disabled.
    """
    value = "false" if desired == ToggleState.enabled else "true"
    target = Target(endpoint, ResourceKind.cluster_setting, f"{cluster}/vcls-retreat")

    def body(channel: Channel[Any]) -> ConvergenceResult:
        key = VCLS_RETREAT_KEY.format(moid=obs.cluster_moid(channel, cluster))

        def observe() -> ToggleState:
            try:
                current = obs.advanced_setting(channel, key)
            except TargetNotFound:
                return ToggleState.disabled
            return ToggleState.from_bool(current.strip().lower() == "false")

        return converge(
            target,
            observe=observe,
            command=lambda want: channel.call(_update_option(key, value)),
            desired=desired,
            policy=policy,
            sink=sink,
            sleep=sleep,
        )

    return run_in_session(adapter, endpoint, credentials, target, desired, sink, body)


def shutdown_host(
    adapter: TransportAdapter[Any],
    endpoint: str,
    credentials: Credentials,
    sink: AuditSink,
    *,
    host: str | None = None,
    policy: ConvergencePolicy = HOST_POWER,
    sleep: Callable[[float], None] = time.sleep,
) -> ConvergenceResult:
    """
    Shut down an ESXi host and wait until its management port stops answering.

    The usual call connects straight to the host, so host None picks the only
    host in the inventory. Reachability is observed with the adapter probe,
    because the session dies with the host.
    """
    target = Target(endpoint, ResourceKind.host, host or endpoint)
    desired = Reachability.unreachable

    # A host that is already down has no session to open.
    if host_reachability(adapter.probe, endpoint) == desired:
        sink.info(f"{target.describe()}: already {desired.value}")
        return ConvergenceResult(
            target=target,
            outcome=ConvergenceOutcome.already_converged,
            desired=desired,
            observed=desired,
            detail=f"already {desired.value}",
        )

    def request(content: Any) -> None:
        obs.find_host(content, host).ShutdownHost_Task(force=True)

    def body(channel: Channel[Any]) -> ConvergenceResult:
        return converge(
            target,
            observe=lambda: host_reachability(adapter.probe, endpoint),
            command=lambda want: channel.call(request),
            desired=desired,
            policy=policy,
            sink=sink,
            sleep=sleep,
        )

    return run_in_session(adapter, endpoint, credentials, target, desired, sink, body)


def shutdown_hosts(
    adapter: TransportAdapter[Any],
    endpoints: Iterable[str],
    credentials: Credentials,
    sink: AuditSink,
    *,
    policy: ConvergencePolicy = HOST_POWER,
    sleep: Callable[[float], None] = time.sleep,
) -> BatchResult:
    """Shut down several hosts one after the other, collecting every result."""
    targets = [Target(ep, ResourceKind.host, ep) for ep in endpoints]
    return converge_each(
        targets,
        lambda t: shutdown_host(adapter, t.endpoint, credentials, sink, policy=policy, sleep=sleep),
        sink,
        Reachability.unreachable,
    )

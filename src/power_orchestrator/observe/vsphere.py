"""
vSphere observations.

Read only queries against vCenter or a standalone ESXi host, executed through
a Channel bound to a VsphereAdapter session. Every function performs a fresh
inventory lookup; managed object references are never cached across polls.

Mapping
vSphere reports power and connection states as strings. They are mapped to
PowerState, ToggleState, DrsAutomationLevel and HostConnectionState here, so
callers never compare raw strings.
"""

from __future__ import annotations

from typing import Any

from pyVmomi import vim

from power_orchestrator.core.errors import ObservationError, ScopeNotFound, TargetNotFound
from power_orchestrator.core.types import (
    DrsAutomationLevel,
    HostConnectionState,
    PowerState,
    ResourceKind,
    Target,
    ToggleState,
)
from power_orchestrator.observe.base import Observation, Selection, select_matching
from power_orchestrator.transport.base import Channel

_POWER_STATES = {
    "poweredOn": PowerState.running,
    "poweredOff": PowerState.not_running,
    "suspended": PowerState.suspended,
}

# Task descriptionId fragments of background work that invalidates a single
# state read: cluster and vSAN reconfiguration, and HA agent configuration.
RECONFIGURATION_TASK_MARKERS = (
    "ClusterComputeResource.reconfigureEx",
    "HostSystem.reconfigureDAS",
    "HostSystem.reconfigureHostForDAS",
    "com.vmware.vsan",
)

# HA agent states that mean "configuring availability" is still in flight.
HA_TRANSITIONAL_STATES = (
    "initializationInProgress",
    "uninitializationInProgress",
    "election",
)

ACTIVE_TASK_STATES = ("queued", "running")


def map_power_state(raw: Any) -> PowerState:
    try:
        return _POWER_STATES[str(raw)]
    except KeyError:
        raise ObservationError(f"unknown vm power state {raw!r}") from None


def map_connection_state(raw: Any) -> HostConnectionState:
    try:
        return HostConnectionState(str(raw))
    except ValueError:
        raise ObservationError(f"unknown host connection state {raw!r}") from None


def map_drs_level(enabled: bool, behavior: Any) -> DrsAutomationLevel:
    if not enabled:
        return DrsAutomationLevel.disabled
    try:
        return DrsAutomationLevel(str(behavior))
    except ValueError:
        raise ObservationError(f"unknown drs behavior {behavior!r}") from None


def combine_registrations(states: list[PowerState]) -> PowerState:
    """
    Collapse the power states of several registrations of one VM.

    After an unclean shutdown a VM can be registered on more than one host.
    If any registration runs, the VM runs.
    """
    if PowerState.running in states:
        return PowerState.running
    if PowerState.not_running in states:
        return PowerState.not_running
    return PowerState.suspended


def find_objects(content: Any, vim_type: Any, name: str | None = None) -> list[Any]:
    """List managed objects of one type, optionally filtered by exact name."""
    view = content.viewManager.CreateContainerView(content.rootFolder, [vim_type], True)
    try:
        objects = list(view.view)
    finally:
        view.Destroy()
    if name is None:
        return objects
    return [obj for obj in objects if obj.name == name]


def find_vms(content: Any, name: str) -> list[Any]:
    return find_objects(content, vim.VirtualMachine, name)


def find_host(content: Any, name: str | None) -> Any:
    """
    Find a host by name.

    name None selects the only host, which is the case for a direct ESXi session.
    """
    if name is None:
        hosts = find_objects(content, vim.HostSystem)
        if len(hosts) != 1:
            raise TargetNotFound(f"expected exactly one host, found {len(hosts)}")
        return hosts[0]

    hosts = find_objects(content, vim.HostSystem, name)
    if not hosts:
        raise TargetNotFound(f"host {name} not found")
    return hosts[0]


def find_cluster(content: Any, name: str, missing: type[TargetNotFound] = TargetNotFound) -> Any:
    clusters = find_objects(content, vim.ClusterComputeResource, name)
    if not clusters:
        raise missing(f"cluster {name} not found")
    return clusters[0]


def vm_power_state(channel: Channel[Any], name: str) -> PowerState:
    def request(content: Any) -> PowerState:
        vms = find_vms(content, name)
        if not vms:
            raise TargetNotFound(f"vm {name} not found")
        return combine_registrations([map_power_state(vm.runtime.powerState) for vm in vms])

    return channel.call(request)


def vm_power_states(
    channel: Channel[Any],
    pattern: str | None,
    default_pattern: str = ".*",
    cluster: str | None = None,
) -> Selection[PowerState]:
    """
    Observe every VM whose name matches pattern.

    cluster limits the search to VMs on hosts of that cluster. A missing
    cluster raises ScopeNotFound; zero matches is an empty Selection.
    """

    def request(content: Any) -> list[Observation[PowerState]]:
        if cluster is not None:
            parent = find_cluster(content, cluster, missing=ScopeNotFound)
            vms = [vm for host in parent.host for vm in host.vm]
        else:
            vms = find_objects(content, vim.VirtualMachine)

        grouped: dict[str, list[PowerState]] = {}
        for vm in vms:
            grouped.setdefault(vm.name, []).append(map_power_state(vm.runtime.powerState))

        return [
            Observation(
                target=Target(channel.endpoint, ResourceKind.virtual_machine, vm_name),
                state=combine_registrations(states),
            )
            for vm_name, states in sorted(grouped.items())
        ]

    return select_matching(channel.call(request), pattern, default_pattern)


def guest_tools_running(vm: Any) -> bool:
    return str(vm.guest.toolsRunningStatus) == "guestToolsRunning"


def host_maintenance_state(channel: Channel[Any], host: str | None) -> ToggleState:
    return channel.call(lambda content: ToggleState.from_bool(bool(find_host(content, host).runtime.inMaintenanceMode)))


def host_connection_state(channel: Channel[Any], host: str | None) -> HostConnectionState:
    return channel.call(lambda content: map_connection_state(find_host(content, host).runtime.connectionState))


def powered_on_vm_count(channel: Channel[Any], host: str | None) -> int:
    def request(content: Any) -> int:
        found = find_host(content, host)
        return sum(1 for vm in found.vm if str(vm.runtime.powerState) == "poweredOn")

    return channel.call(request)


def cluster_ha_state(channel: Channel[Any], cluster: str) -> ToggleState:
    def request(content: Any) -> ToggleState:
        das = find_cluster(content, cluster).configurationEx.dasConfig
        return ToggleState.from_bool(bool(das.enabled))

    return channel.call(request)


def cluster_drs_level(channel: Channel[Any], cluster: str) -> DrsAutomationLevel:
    def request(content: Any) -> DrsAutomationLevel:
        drs = find_cluster(content, cluster).configurationEx.drsConfig
        return map_drs_level(bool(drs.enabled), drs.defaultVmBehavior)

    return channel.call(request)


def cluster_host_names(channel: Channel[Any], cluster: str) -> list[str]:
    return channel.call(lambda content: [h.name for h in find_cluster(content, cluster, missing=ScopeNotFound).host])


def cluster_moid(channel: Channel[Any], cluster: str) -> str:
    return channel.call(lambda content: str(find_cluster(content, cluster)._moId))


def _task_is_reconfiguration(task: Any) -> bool:
    info = task.info
    if str(info.state) not in ACTIVE_TASK_STATES:
        return False
    description = str(info.descriptionId or "")
    return any(marker in description for marker in RECONFIGURATION_TASK_MARKERS)


def reconfiguration_in_progress(cluster_obj: Any) -> bool:
    """
    True while the cluster or one of its hosts is still reconfiguring.

    Covers queued or running reconfiguration tasks and hosts whose HA agent is
    in a transitional state.
    """
    entities = [cluster_obj, *cluster_obj.host]
    for entity in entities:
        for task in entity.recentTask or []:
            if _task_is_reconfiguration(task):
                return True

    for host in cluster_obj.host:
        das_state = host.runtime.dasHostState
        if das_state is not None and str(das_state.state) in HA_TRANSITIONAL_STATES:
            return True

    return False


def cluster_reconfiguration_in_progress(channel: Channel[Any], cluster: str) -> bool:
    return channel.call(lambda content: reconfiguration_in_progress(find_cluster(content, cluster)))


def host_cluster_name(channel: Channel[Any], host: str | None) -> str | None:
    """Name of the cluster owning host, None for standalone hosts."""

    def request(content: Any) -> str | None:
        parent = find_host(content, host).parent
        if isinstance(parent, vim.ClusterComputeResource):
            return parent.name
        return None

    return channel.call(request)


def advanced_setting(channel: Channel[Any], key: str) -> str:
    """Read a vCenter advanced setting as a string."""

    def request(content: Any) -> str:
        try:
            options = content.setting.QueryOptions(key)
        except vim.fault.InvalidName:
            raise TargetNotFound(f"advanced setting {key} not found") from None
        for option in options or []:
            if option.key == key:
                return str(option.value)
        raise TargetNotFound(f"advanced setting {key} not found")

    return channel.call(request)

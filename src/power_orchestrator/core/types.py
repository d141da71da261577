"""
Core types.

This file defines the shared data structures used across the orchestrator.

Important design choice
Backend status strings are mapped to these enums at the observation boundary.
The rest of the system compares enum members, never raw strings.

Every enum value is the literal the backend reports, so mapping is a plain
constructor call where the backend is consistent.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ResourceKind(str, Enum):
    """
    Kinds of remote resources under convergence.

    virtual_machine
      A VM managed by vCenter or a standalone ESXi host.

    host
      An ESXi host, addressed through vCenter, its own API, or out of band.

    cluster_setting
      A cluster level setting such as HA, DRS or a vCenter advanced option.

    appliance_service
      A service on a management appliance, for example vCenter vmon services.

    management_cluster_state
      The online state of an operations analytics cluster.

    network_manager_cluster
      The NSX manager cluster.
    """

    virtual_machine = "virtual_machine"
    host = "host"
    cluster_setting = "cluster_setting"
    appliance_service = "appliance_service"
    management_cluster_state = "management_cluster_state"
    network_manager_cluster = "network_manager_cluster"


class PowerState(str, Enum):
    """VM power state as seen by the hypervisor."""

    running = "running"
    not_running = "not_running"
    suspended = "suspended"


class ToggleState(str, Enum):
    """
    Two valued settings.

    Used for maintenance mode, HA, the vSAN elevator and vCLS retreat mode.
    """

    enabled = "enabled"
    disabled = "disabled"

    @classmethod
    def from_bool(cls, value: bool) -> ToggleState:
        return cls.enabled if value else cls.disabled


class DrsAutomationLevel(str, Enum):
    """
    DRS automation level.

    disabled is not a vSphere behavior value. It represents drsConfig.enabled
    being False so the whole setting is observable as one state.
    """

    fully_automated = "fullyAutomated"
    partially_automated = "partiallyAutomated"
    manual = "manual"
    disabled = "disabled"


class ServiceState(str, Enum):
    """Appliance service state as reported by the vmon services API."""

    started = "STARTED"
    stopped = "STOPPED"
    starting = "STARTING"
    stopping = "STOPPING"
    unknown = "UNKNOWN"


class ClusterOnlineState(str, Enum):
    """Online state of an operations analytics cluster."""

    online = "ONLINE"
    offline = "OFFLINE"
    going_online = "GOING_ONLINE"
    going_offline = "GOING_OFFLINE"
    unknown = "UNKNOWN"


class HostConnectionState(str, Enum):
    """Host connection state as seen by vCenter."""

    connected = "connected"
    disconnected = "disconnected"
    not_responding = "notResponding"


class Reachability(str, Enum):
    """Result of a TCP probe against a management port."""

    reachable = "reachable"
    unreachable = "unreachable"


class NsxClusterStatus(str, Enum):
    """NSX management cluster status."""

    stable = "STABLE"
    degraded = "DEGRADED"
    unstable = "UNSTABLE"
    unavailable = "UNAVAILABLE"
    unknown = "UNKNOWN"


class HealthSeverity(str, Enum):
    """Severity of a health group."""

    green = "green"
    yellow = "yellow"
    red = "red"
    info = "info"
    unknown = "unknown"


class StabilityState(str, Enum):
    """
    States of the network manager stability gate.

    unreachable
      No poll has succeeded yet, or the last poll failed to connect.

    reachable_not_stable
      The backend answers but does not report the stable marker.

    stable
      Terminal success.
    """

    unreachable = "unreachable"
    reachable_not_stable = "reachable_not_stable"
    stable = "stable"


@dataclass(frozen=True)
class Credentials:
    """
    Identity used to open a session.

    token is used by bearer authenticated REST endpoints.
    Secrets are excluded from repr so they never reach the audit trail.
    """

    username: str
    password: str = field(default="", repr=False)
    token: str | None = field(default=None, repr=False)


@dataclass(frozen=True)
class Target:
    """
    An addressable remote resource under convergence.

    endpoint
      Address of the control plane that owns the resource.

    kind
      ResourceKind of the resource.

    identifier
      Name or key of the resource within that control plane.

    Targets are built per call from caller parameters and never persisted.
    """

    endpoint: str
    kind: ResourceKind
    identifier: str

    def describe(self) -> str:
        return f"{self.kind.value} {self.identifier} on {self.endpoint}"


@dataclass(frozen=True)
class HealthGroup:
    """
    One named group of a structured health summary.

    name
      Group name as reported by the health service.

    severity
      Mapped severity of the group.
    """

    name: str
    severity: HealthSeverity

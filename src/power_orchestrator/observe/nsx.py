"""
NSX manager observations.

Read only calls against the NSX manager REST API through a RestAdapter channel.
Responses are backend defined JSON; we read only the fields we need and map
status strings to NsxClusterStatus immediately.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from power_orchestrator.core.errors import ObservationError
from power_orchestrator.core.types import NsxClusterStatus
from power_orchestrator.observe.base import first_present
from power_orchestrator.transport.base import Channel
from power_orchestrator.transport.rest import RestRequest

CLUSTER_STATUS_PATH = "/api/v1/cluster/status"
CLUSTER_PATH = "/api/v1/cluster"
TRANSPORT_NODES_PATH = "/api/v1/transport-nodes"
COMPUTE_MANAGERS_PATH = "/api/v1/fabric/compute-managers"


@dataclass(frozen=True)
class TransportNode:
    """
    NSX transport node.

    kind
    node_deployment_info.resource_type, EdgeNode or HostNode.
    """

    node_id: str
    display_name: str
    kind: str


@dataclass(frozen=True)
class ComputeManager:
    manager_id: str
    server: str


def _require_dict(raw: Any, path: str) -> dict[str, Any]:
    if not isinstance(raw, dict):
        raise ObservationError(f"unexpected response from {path}: {type(raw).__name__}")
    return raw


def _results(raw: Any, path: str) -> list[dict[str, Any]]:
    results = _require_dict(raw, path).get("results", []) or []
    return [r for r in results if isinstance(r, dict)]


def map_cluster_status(raw: Any) -> NsxClusterStatus:
    try:
        return NsxClusterStatus(str(raw).upper())
    except ValueError:
        return NsxClusterStatus.unknown


def parse_cluster_status(raw: Any) -> NsxClusterStatus:
    """
    Extract the overall status from a cluster status payload.

    detailed_cluster_status.overall_status is preferred when present,
    mgmt_cluster_status.status otherwise.
    """
    payload = _require_dict(raw, CLUSTER_STATUS_PATH)
    detailed = payload.get("detailed_cluster_status") or {}
    mgmt = payload.get("mgmt_cluster_status") or {}
    status = first_present(detailed, "overall_status") or first_present(mgmt, "status")
    if status is None:
        raise ObservationError("cluster status payload carries no status field")
    return map_cluster_status(status)


def cluster_status(channel: Channel[Any]) -> NsxClusterStatus:
    return parse_cluster_status(channel.call(RestRequest(CLUSTER_STATUS_PATH)))


def cluster_members(channel: Channel[Any]) -> list[str]:
    """Return manager node identifiers, fqdn when reported, otherwise node uuid."""
    payload = _require_dict(channel.call(RestRequest(CLUSTER_PATH)), CLUSTER_PATH)
    members: list[str] = []
    for node in payload.get("nodes", []) or []:
        if not isinstance(node, dict):
            continue
        ident = first_present(node, "fqdn", "node_uuid")
        if ident is not None:
            members.append(str(ident))
    return members


def transport_nodes(channel: Channel[Any]) -> list[TransportNode]:
    nodes: list[TransportNode] = []
    for raw in _results(channel.call(RestRequest(TRANSPORT_NODES_PATH)), TRANSPORT_NODES_PATH):
        info = raw.get("node_deployment_info") or {}
        nodes.append(
            TransportNode(
                node_id=str(raw.get("id", "")),
                display_name=str(raw.get("display_name", "")),
                kind=str(info.get("resource_type", "")),
            )
        )
    return nodes


def edge_nodes(channel: Channel[Any]) -> list[TransportNode]:
    return [node for node in transport_nodes(channel) if node.kind == "EdgeNode"]


def compute_managers(channel: Channel[Any]) -> list[ComputeManager]:
    return [
        ComputeManager(manager_id=str(raw.get("id", "")), server=str(raw.get("server", "")))
        for raw in _results(channel.call(RestRequest(COMPUTE_MANAGERS_PATH)), COMPUTE_MANAGERS_PATH)
    ]

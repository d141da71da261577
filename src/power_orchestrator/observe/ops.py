"""
Operations analytics cluster observations.

The casa administration API reports whether the analytics cluster is online.
"""

from __future__ import annotations

from typing import Any

from power_orchestrator.core.errors import ObservationError
from power_orchestrator.core.types import ClusterOnlineState
from power_orchestrator.observe.base import first_present
from power_orchestrator.transport.base import Channel
from power_orchestrator.transport.rest import RestRequest

ONLINE_STATE_PATH = "/casa/sysadmin/cluster/online_state"


def map_online_state(raw: Any) -> ClusterOnlineState:
    normalized = str(raw).strip().upper().replace(" ", "_")
    try:
        return ClusterOnlineState(normalized)
    except ValueError:
        return ClusterOnlineState.unknown


def cluster_online_state(channel: Channel[Any]) -> ClusterOnlineState:
    payload = channel.call(RestRequest(ONLINE_STATE_PATH))
    if not isinstance(payload, dict):
        raise ObservationError("online state payload is not an object")
    raw = first_present(payload, "cluster_online_state", "online_state", "state")
    if raw is None:
        raise ObservationError("online state payload carries no state")
    return map_online_state(raw)

"""
Appliance service observations.

vCenter appliance services are managed through the vmon services API.
The service state string is mapped to ServiceState here.
"""

from __future__ import annotations

from typing import Any

from power_orchestrator.core.errors import ObservationError
from power_orchestrator.core.types import ServiceState
from power_orchestrator.transport.base import Channel
from power_orchestrator.transport.rest import RestRequest

SERVICES_PATH = "/api/appliance/vmon/services"


def service_path(service: str) -> str:
    return f"{SERVICES_PATH}/{service}"


def map_service_state(raw: Any) -> ServiceState:
    try:
        return ServiceState(str(raw).upper())
    except ValueError:
        return ServiceState.unknown


def service_state(channel: Channel[Any], service: str) -> ServiceState:
    payload = channel.call(RestRequest(service_path(service)))
    if isinstance(payload, dict) and "value" in payload and isinstance(payload["value"], dict):
        payload = payload["value"]
    if not isinstance(payload, dict) or "state" not in payload:
        raise ObservationError(f"service {service} payload carries no state")
    return map_service_state(payload["state"])

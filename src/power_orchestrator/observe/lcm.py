"""
Lifecycle manager observations.

Environment and product identifiers are needed to address power events for
products managed by the lifecycle manager.
"""

from __future__ import annotations

from typing import Any

from power_orchestrator.core.errors import ObservationError, TargetNotFound
from power_orchestrator.transport.base import Channel
from power_orchestrator.transport.rest import RestRequest

ENVIRONMENTS_PATH = "/lcm/lcops/api/v2/environments"


def _environments(channel: Channel[Any]) -> list[dict[str, Any]]:
    payload = channel.call(RestRequest(ENVIRONMENTS_PATH))
    if isinstance(payload, dict):
        payload = payload.get("environments", payload.get("results", []))
    if not isinstance(payload, list):
        raise ObservationError("environment listing is not a list")
    return [env for env in payload if isinstance(env, dict)]


def environment_id(channel: Channel[Any], name: str) -> str:
    for env in _environments(channel):
        if str(env.get("environmentName", "")) == name:
            return str(env.get("environmentId", ""))
    raise TargetNotFound(f"lifecycle environment {name} not found")


def product_ids(channel: Channel[Any], env_id: str) -> list[str]:
    payload = channel.call(RestRequest(f"{ENVIRONMENTS_PATH}/{env_id}"))
    if not isinstance(payload, dict):
        raise ObservationError(f"environment {env_id} payload is not an object")
    products = payload.get("products", []) or []
    return [str(p.get("id", "")) for p in products if isinstance(p, dict) and p.get("id")]

"""
Orchestrator settings.

Reads a local json file with policy overrides, named endpoints and audit
destinations. Every section is optional.

Schema example
{
  "policies": {
    "vm_power": {"poll_interval": 10, "max_attempts": 30},
    "nsx_stability": {"unreachable_interval": 120},
    "health_backend": {"retry_interval": 30}
  },
  "endpoints": {
    "vcenter": {"address": "vc01.lab.local", "username": "administrator@vsphere.local",
                "password_env": "VC_PASSWORD"}
  },
  "audit": {"log_path": "/var/log/power.log", "trail_path": "/var/log/power.jsonl"}
}

Secrets never live in the file. password_env names the environment variable
that holds the password; it is read only when credentials are requested.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping, TextIO

from power_orchestrator.audit.sink import AuditSink
from power_orchestrator.audit.trail import JsonlAuditTrail
from power_orchestrator.core.policy import (
    HEALTH_BACKEND,
    NSX_STABILITY,
    BackendRetryPolicy,
    ConvergencePolicy,
    StabilityPolicy,
    preset,
)
from power_orchestrator.core.types import Credentials

_CONVERGENCE_FIELDS = {"poll_interval": float, "max_attempts": int, "per_attempt_timeout": float}
_STABILITY_FIELDS = {
    "unreachable_interval": float,
    "reachable_interval": float,
    "settled_interval": float,
    "settle_after": int,
    "max_attempts": int,
}
_BACKEND_FIELDS = {"retry_interval": float, "max_attempts": int}


@dataclass(frozen=True)
class EndpointSettings:
    """
    One named control plane endpoint.

    password_env
      Name of the environment variable holding the password.

    token_env
      Name of the environment variable holding a bearer token, if any.
    """

    name: str
    address: str
    username: str = ""
    password_env: str | None = None
    token_env: str | None = None


@dataclass(frozen=True)
class AuditSettings:
    log_path: Path | None = None
    trail_path: Path | None = None


@dataclass(frozen=True)
class OrchestratorSettings:
    """Parsed settings. Build with load_settings or directly in code."""

    policy_overrides: dict[str, dict[str, Any]] = field(default_factory=dict)
    endpoints: dict[str, EndpointSettings] = field(default_factory=dict)
    audit: AuditSettings = field(default_factory=AuditSettings)

    def policy(self, name: str) -> ConvergencePolicy:
        """Return the named preset with any overrides from the file applied."""
        base = preset(name)
        overrides = self.policy_overrides.get(name, {})
        return base.with_overrides(**overrides) if overrides else base

    def stability_policy(self) -> StabilityPolicy:
        return replace(NSX_STABILITY, **self.policy_overrides.get("nsx_stability", {}))

    def backend_policy(self) -> BackendRetryPolicy:
        return replace(HEALTH_BACKEND, **self.policy_overrides.get("health_backend", {}))

    def endpoint(self, name: str) -> EndpointSettings:
        try:
            return self.endpoints[name]
        except KeyError:
            known = ", ".join(sorted(self.endpoints)) or "none"
            raise KeyError(f"unknown endpoint {name!r}, known endpoints: {known}") from None

    def credentials(self, name: str, environ: Mapping[str, str] | None = None) -> Credentials:
        env = os.environ if environ is None else environ
        ep = self.endpoint(name)

        password = ""
        if ep.password_env:
            if ep.password_env not in env:
                raise ValueError(f"environment variable {ep.password_env} for endpoint {name} is not set")
            password = env[ep.password_env]

        token = None
        if ep.token_env:
            if ep.token_env not in env:
                raise ValueError(f"environment variable {ep.token_env} for endpoint {name} is not set")
            token = env[ep.token_env]

        return Credentials(username=ep.username, password=password, token=token)

    def build_sink(self, stream: TextIO | None = None) -> AuditSink:
        trail = JsonlAuditTrail(self.audit.trail_path) if self.audit.trail_path is not None else None
        return AuditSink(log_path=self.audit.log_path, stream=stream, trail=trail)


def _coerce_fields(name: str, raw: dict[str, Any], fields: dict[str, type]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in raw.items():
        if key not in fields:
            raise ValueError(f"policy {name} has unknown field {key!r}")
        out[key] = fields[key](value)
    return out


def _parse_policies(raw: dict[str, Any]) -> dict[str, dict[str, Any]]:
    policies: dict[str, dict[str, Any]] = {}
    for name, obj in raw.items():
        if not isinstance(obj, dict):
            continue
        if name == "nsx_stability":
            policies[name] = _coerce_fields(name, obj, _STABILITY_FIELDS)
        elif name == "health_backend":
            policies[name] = _coerce_fields(name, obj, _BACKEND_FIELDS)
        else:
            preset(name)
            policies[name] = _coerce_fields(name, obj, _CONVERGENCE_FIELDS)
    return policies


def _endpoint_from_dict(name: str, obj: dict[str, Any]) -> EndpointSettings:
    password_env = obj.get("password_env")
    token_env = obj.get("token_env")
    return EndpointSettings(
        name=name,
        address=str(obj.get("address", "")),
        username=str(obj.get("username", "")),
        password_env=str(password_env) if password_env else None,
        token_env=str(token_env) if token_env else None,
    )


def settings_from_dict(data: dict[str, Any]) -> OrchestratorSettings:
    policies_obj = data.get("policies", {}) or {}
    endpoints_obj = data.get("endpoints", {}) or {}
    audit_obj = data.get("audit", {}) or {}

    endpoints = {
        str(name): _endpoint_from_dict(str(name), obj)
        for name, obj in endpoints_obj.items()
        if isinstance(obj, dict)
    }

    log_path = audit_obj.get("log_path")
    trail_path = audit_obj.get("trail_path")
    audit = AuditSettings(
        log_path=Path(str(log_path)) if log_path else None,
        trail_path=Path(str(trail_path)) if trail_path else None,
    )

    return OrchestratorSettings(
        policy_overrides=_parse_policies(policies_obj) if isinstance(policies_obj, dict) else {},
        endpoints=endpoints,
        audit=audit,
    )


def load_settings(path: Path) -> OrchestratorSettings:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"settings file {path} must hold a json object")
    return settings_from_dict(data)

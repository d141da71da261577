"""
Convergence policies.

Purpose
Polling cadence and attempt budgets are data, supplied per operation family.

The presets below keep the cadences each operation family has always used.
They are intentionally not unified into one schedule: a VM shutdown, an HA
reconfiguration and a cold booting NSX cluster settle on very different
timescales.

Bounded runtime
Every loop is bounded by max_attempts. The worst case wall clock of a
convergence operation is max_attempts times poll_interval plus transport time.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any


def _require_budget(name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an int, got {value!r}")
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {value}")


def _require_interval(name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{name} must be a number of seconds, got {value!r}")
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {value}")


@dataclass(frozen=True)
class ConvergencePolicy:
    """
    Polling policy for one convergence operation.

    poll_interval
    Seconds slept before each observation poll.

    max_attempts
    Number of observation polls before the operation times out.

    per_attempt_timeout
    Transport level timeout for a single call, in seconds.
    """

    poll_interval: float
    max_attempts: int
    per_attempt_timeout: float = 30.0

    def __post_init__(self) -> None:
        _require_interval("poll_interval", self.poll_interval)
        _require_budget("max_attempts", self.max_attempts)
        _require_interval("per_attempt_timeout", self.per_attempt_timeout)

    def worst_case_seconds(self) -> float:
        return float(self.poll_interval) * self.max_attempts

    def with_overrides(self, **overrides: Any) -> ConvergencePolicy:
        return replace(self, **overrides)


@dataclass(frozen=True)
class StabilityPolicy:
    """
    Backoff policy for the network manager stability gate.

    unreachable_interval
    Sleep after a connection failure. Long, since the backend may still be booting.

    reachable_interval
    Sleep after a successful but not yet stable response.

    settled_interval
    Shorter sleep used once settle_after successful responses have accumulated.

    max_attempts
    Total polls before the gate times out.
    """

    unreachable_interval: float = 90.0
    reachable_interval: float = 60.0
    settled_interval: float = 30.0
    settle_after: int = 3
    max_attempts: int = 20

    def __post_init__(self) -> None:
        _require_interval("unreachable_interval", self.unreachable_interval)
        _require_interval("reachable_interval", self.reachable_interval)
        _require_interval("settled_interval", self.settled_interval)
        _require_budget("settle_after", self.settle_after)
        _require_budget("max_attempts", self.max_attempts)

    def interval_after_success(self, successes: int) -> float:
        if successes <= self.settle_after:
            return float(self.reachable_interval)
        return float(self.settled_interval)


@dataclass(frozen=True)
class BackendRetryPolicy:
    """
    Retry budget for reaching a backend service that may not be initialized.

    This budget is separate from the convergence attempt budget.
    Exhausting it is a hard failure, not a timeout.
    """

    retry_interval: float = 60.0
    max_attempts: int = 10

    def __post_init__(self) -> None:
        _require_interval("retry_interval", self.retry_interval)
        _require_budget("max_attempts", self.max_attempts)


VM_POWER = ConvergencePolicy(poll_interval=5, max_attempts=60)
VM_POWER_SLOW = ConvergencePolicy(poll_interval=10, max_attempts=60)
MAINTENANCE_MODE = ConvergencePolicy(poll_interval=10, max_attempts=60)
HA_RECONFIGURE = ConvergencePolicy(poll_interval=5, max_attempts=60)
DRS_RECONFIGURE = ConvergencePolicy(poll_interval=5, max_attempts=12)
ADVANCED_SETTING = ConvergencePolicy(poll_interval=5, max_attempts=12)
APPLIANCE_SERVICE = ConvergencePolicy(poll_interval=10, max_attempts=30)
OPS_CLUSTER_STATE = ConvergencePolicy(poll_interval=30, max_attempts=40)
HOST_POWER = ConvergencePolicy(poll_interval=30, max_attempts=40)
HOST_SHELL_SETTING = ConvergencePolicy(poll_interval=5, max_attempts=6)
RESYNC_WAIT = ConvergencePolicy(poll_interval=60, max_attempts=45)

NSX_STABILITY = StabilityPolicy()
HEALTH_BACKEND = BackendRetryPolicy()

PRESETS: dict[str, ConvergencePolicy] = {
    "vm_power": VM_POWER,
    "vm_power_slow": VM_POWER_SLOW,
    "maintenance_mode": MAINTENANCE_MODE,
    "ha_reconfigure": HA_RECONFIGURE,
    "drs_reconfigure": DRS_RECONFIGURE,
    "advanced_setting": ADVANCED_SETTING,
    "appliance_service": APPLIANCE_SERVICE,
    "ops_cluster_state": OPS_CLUSTER_STATE,
    "host_power": HOST_POWER,
    "host_shell_setting": HOST_SHELL_SETTING,
    "resync_wait": RESYNC_WAIT,
}


def preset(name: str) -> ConvergencePolicy:
    """Return a named preset. Unknown names raise KeyError listing the known ones."""
    try:
        return PRESETS[name]
    except KeyError:
        known = ", ".join(sorted(PRESETS))
        raise KeyError(f"unknown policy preset {name!r}, known presets: {known}") from None

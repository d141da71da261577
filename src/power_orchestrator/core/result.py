"""
Convergence result.

Every convergence operation returns a ConvergenceResult.
The playbook layer reads the outcome and decides whether to continue.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from power_orchestrator.core.types import Target


class ConvergenceOutcome(StrEnum):
    """Tagged outcome of a convergence operation."""

    converged = "converged"
    timed_out = "timed_out"
    already_converged = "already_converged"
    target_not_found = "target_not_found"
    transport_failure = "transport_failure"


@dataclass(frozen=True)
class ConvergenceResult:
    """
    Result of a convergence operation.

    outcome
      One of ConvergenceOutcome.

    desired
      The state the operation was driving toward.

    observed
      The last observed state, None when no observation succeeded.

    attempts
      Observation polls performed after the initial observation.

    commands_issued
      Transition commands sent. Zero for already converged targets.

    error_kind
      Exception kind that ended the operation, for example ConnectivityError.

    detail
      Human readable explanation for audit and alerts.
    """

    target: Target
    outcome: ConvergenceOutcome
    desired: Any
    observed: Any
    attempts: int = 0
    commands_issued: int = 0
    error_kind: str | None = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome in (ConvergenceOutcome.converged, ConvergenceOutcome.already_converged)

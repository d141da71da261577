"""
Batch convergence.

Node lists are converged one target at a time. A failure on one target never
stops its siblings: every target gets its own ConvergenceResult and failures
are collected, not short circuited.

Pattern based targeting
An explicit pattern that matches nothing is worth a WARNING and the step is
skipped. A defaulted pattern that matches nothing is a silent no op.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, TypeVar

from power_orchestrator.audit.sink import AuditSink
from power_orchestrator.core.errors import OrchestratorError, TargetNotFound
from power_orchestrator.core.result import ConvergenceOutcome, ConvergenceResult
from power_orchestrator.core.types import Target
from power_orchestrator.observe.base import Observation, Selection

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class BatchResult:
    """
    Results of converging several targets.

    results
    One result per target, in processing order.
    """

    results: list[ConvergenceResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)

    @property
    def failures(self) -> list[ConvergenceResult]:
        return [r for r in self.results if not r.ok]

    def by_identifier(self) -> dict[str, ConvergenceResult]:
        return {r.target.identifier: r for r in self.results}


def _outcome_for(exc: OrchestratorError) -> ConvergenceOutcome:
    if isinstance(exc, TargetNotFound):
        return ConvergenceOutcome.target_not_found
    return ConvergenceOutcome.transport_failure


def converge_each(
    targets: Iterable[Target],
    run: Callable[[Target], ConvergenceResult],
    sink: AuditSink,
    desired: Any = None,
) -> BatchResult:
    """
    Run a convergence operation for every target in order.

    Orchestrator errors escaping run are translated into a result for that
    target and logged at ERROR; the next target still runs.
    """
    batch = BatchResult()
    for target in targets:
        try:
            res = run(target)
        except OrchestratorError as exc:
            sink.error(f"{target.describe()}: {exc.kind}: {exc}")
            res = ConvergenceResult(
                target=target,
                outcome=_outcome_for(exc),
                desired=desired,
                observed=None,
                error_kind=exc.kind,
                detail=str(exc),
            )
        batch.results.append(res)

    if batch.failures:
        names = ", ".join(r.target.identifier for r in batch.failures)
        sink.warning(f"{len(batch.failures)} of {len(batch.results)} target(s) did not converge: {names}")
    return batch


def resolve_selection(selection: Selection[T], sink: AuditSink, noun: str) -> list[Observation[T]]:
    """Return the matches of a selection, reporting an empty one per its origin."""
    if selection.matches:
        sink.info(f"{len(selection.matches)} {noun}(s) match {selection.pattern!r}")
        return list(selection.matches)

    if selection.explicit:
        sink.warning(f"no {noun} matches pattern {selection.pattern!r}, skipping")
    else:
        logger.debug("default pattern %r matched no %s", selection.pattern, noun)
    return []

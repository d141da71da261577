from __future__ import annotations

import io

from power_orchestrator.audit.sink import AuditLevel, AuditSink
from power_orchestrator.converge.batch import converge_each, resolve_selection
from power_orchestrator.core.errors import ConnectivityError, TargetNotFound
from power_orchestrator.core.result import ConvergenceOutcome, ConvergenceResult
from power_orchestrator.core.types import PowerState, ResourceKind, Target
from power_orchestrator.observe.base import Observation, select_matching


def vm(name: str) -> Target:
    return Target("vc01", ResourceKind.virtual_machine, name)


def test_one_failure_does_not_stop_siblings():
    sink = AuditSink(stream=io.StringIO())
    seen: list[str] = []

    def run(target: Target) -> ConvergenceResult:
        seen.append(target.identifier)
        if target.identifier == "b":
            raise ConnectivityError("vc01 is not reachable")
        return ConvergenceResult(
            target=target,
            outcome=ConvergenceOutcome.converged,
            desired=PowerState.running,
            observed=PowerState.running,
            attempts=1,
            commands_issued=1,
        )

    batch = converge_each([vm("a"), vm("b"), vm("c")], run, sink, PowerState.running)

    assert seen == ["a", "b", "c"]
    assert not batch.ok
    assert [r.target.identifier for r in batch.failures] == ["b"]
    failed = batch.by_identifier()["b"]
    assert failed.outcome == ConvergenceOutcome.transport_failure
    assert failed.error_kind == "ConnectivityError"
    assert sink.failed


def test_missing_vm_does_not_stop_siblings():
    sink = AuditSink(stream=io.StringIO())
    seen: list[str] = []

    def run(target: Target) -> ConvergenceResult:
        seen.append(target.identifier)
        if target.identifier == "b":
            raise TargetNotFound("vm b not found")
        return ConvergenceResult(
            target=target,
            outcome=ConvergenceOutcome.already_converged,
            desired=PowerState.not_running,
            observed=PowerState.not_running,
        )

    batch = converge_each([vm("a"), vm("b"), vm("c")], run, sink, PowerState.not_running)

    assert seen == ["a", "b", "c"]
    assert batch.by_identifier()["a"].outcome == ConvergenceOutcome.already_converged
    assert batch.by_identifier()["b"].outcome == ConvergenceOutcome.target_not_found
    assert batch.by_identifier()["c"].outcome == ConvergenceOutcome.already_converged
    assert [r.target.identifier for r in batch.failures] == ["b"]
    assert len(sink.failures) == 1


def test_empty_batch_is_ok():
    batch = converge_each([], lambda t: None, AuditSink(stream=io.StringIO()))

    assert batch.ok
    assert batch.results == []


def make_observations(*names: str) -> list[Observation[PowerState]]:
    return [Observation(target=vm(n), state=PowerState.running) for n in names]


def test_explicit_pattern_without_match_warns():
    sink = AuditSink(stream=io.StringIO())
    selection = select_matching(make_observations("web01", "db01"), "^app")

    assert resolve_selection(selection, sink, "vm") == []
    assert sink.events[-1].level == AuditLevel.warning
    assert "^app" in sink.events[-1].message


def test_default_pattern_without_match_is_silent():
    sink = AuditSink(stream=io.StringIO())
    selection = select_matching(make_observations("web01"), None, default_pattern="^vCLS")

    assert resolve_selection(selection, sink, "vm") == []
    assert sink.events == []


def test_selection_keeps_input_order():
    selection = select_matching(make_observations("web02", "db01", "web01"), "web")

    assert selection.explicit
    assert [o.target.identifier for o in selection.matches] == ["web02", "web01"]

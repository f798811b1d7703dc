"""
Tests for the cycle controller, with the sandbox, classifier and adapter
replaced by scripted fakes unless noted
"""

import json
from unittest.mock import AsyncMock

import pytest

from exploit_refiner.classifier import FailureClassifier
from exploit_refiner.controller import CycleController
from exploit_refiner.models import (
    Classification,
    Err,
    ExecutionResult,
    FailureKind,
    Ok,
    Outcome,
    RefinementSession,
)
from exploit_refiner.status import StatusPhase, StatusSink
from exploit_refiner.strategy_tracker import StrategyTracker
from exploit_refiner.tools.code_analysis_tool import ContractSurfaceTool
from exploit_refiner.tools.execution_tool import ExecutionSandboxTool

from tests.helpers import make_attempt


FAILED = ExecutionResult(success=False, output="TypeError: v.drain is not a function", exit_code=1, elapsed_time=1.0)
EXPLOITED = ExecutionResult(
    success=True,
    output="EXPLOIT SUCCESSFUL\n  1 passing",
    exit_code=0,
    elapsed_time=1.0,
    security_implication="funds drained"
)
BROKEN = Classification(is_secure=False, failure_kind=FailureKind.TECHNICAL_ERROR, explanation="test is broken")
SECURE = Classification(is_secure=True, failure_kind=FailureKind.CONTRACT_PROTECTION, explanation="guard held")


class ScriptedSandbox:
    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    async def run(self, storage_id, timeout=None):
        self.calls.append(storage_id)
        return self.results.pop(0) if len(self.results) > 1 else self.results[0]


class ScriptedClassifier:
    def __init__(self, *classifications):
        self.classifications = list(classifications)
        self.calls = 0

    async def classify(self, result, contract_source, vulnerability):
        self.calls += 1
        return self.classifications.pop(0) if len(self.classifications) > 1 else self.classifications[0]


class ScriptedAdapter:
    """Stores a structurally distinct attempt per request"""

    def __init__(self, store, failure=None):
        self.store = store
        self.failure = failure
        self.calls = 0

    async def adapt(self, session, previous_result, previous_classification):
        self.calls += 1
        if self.failure:
            return self.failure
        number = len(session.attempts) + 1
        content = f"await v.step{number}();"
        storage_id, path = self.store.write_attempt(session.target, number, content)
        attempt = make_attempt(content, number=number, storage_id=storage_id)
        attempt.path = path
        return Ok(attempt=attempt)


class RecordingSink(StatusSink):
    def __init__(self):
        self.events = []

    def publish(self, event):
        self.events.append(event)

    @property
    def phases(self):
        return [event.phase for event in self.events]


def build(store, sandbox, classifier, adapter, sink=None):
    return CycleController(sandbox, classifier, adapter, StrategyTracker(), store, sink)


def initial(store, target):
    storage_id, path = store.write_attempt(target, 1, "await v.deposit({ value: 1 });")
    attempt = make_attempt("await v.deposit({ value: 1 });", storage_id=storage_id)
    attempt.path = path
    return attempt


@pytest.mark.asyncio
async def test_always_broken_ends_inconclusive_after_budget(store, target):
    session = RefinementSession(target=target, max_cycles=3)
    sandbox = ScriptedSandbox(FAILED)
    adapter = ScriptedAdapter(store)
    controller = build(store, sandbox, ScriptedClassifier(BROKEN), adapter)

    result = await controller.run(session, initial(store, target))

    assert result.outcome is Outcome.INCONCLUSIVE
    assert result.cycles == 3
    assert result.attempts == 3
    assert len(sandbox.calls) == 3
    assert adapter.calls == 2
    assert result.confidence == "low"


@pytest.mark.asyncio
async def test_secure_on_second_cycle_stops(store, target):
    session = RefinementSession(target=target, max_cycles=5)
    sandbox = ScriptedSandbox(FAILED)
    classifier = ScriptedClassifier(BROKEN, SECURE)
    sink = RecordingSink()
    controller = build(store, sandbox, classifier, ScriptedAdapter(store), sink)

    result = await controller.run(session, initial(store, target))

    assert result.outcome is Outcome.CONTRACT_SECURE
    assert result.cycles == 2
    assert result.attempts == 2
    assert len(sandbox.calls) == 2
    assert result.explanation == "guard held"
    assert StatusPhase.SECURE in sink.phases
    assert sink.phases[-1] is StatusPhase.COMPLETE


@pytest.mark.asyncio
async def test_secure_on_first_cycle_stops_immediately(store, target):
    session = RefinementSession(target=target, max_cycles=5)
    adapter = ScriptedAdapter(store)
    controller = build(store, ScriptedSandbox(FAILED), ScriptedClassifier(SECURE), adapter)

    result = await controller.run(session, initial(store, target))

    assert result.outcome is Outcome.CONTRACT_SECURE
    assert result.cycles == 1
    assert adapter.calls == 0


@pytest.mark.asyncio
async def test_confirmed_exploit_runs_no_further_cycle(store, target):
    session = RefinementSession(target=target, max_cycles=5)
    sandbox = ScriptedSandbox(FAILED, EXPLOITED)
    classifier = ScriptedClassifier(BROKEN)
    sink = RecordingSink()
    controller = build(store, sandbox, classifier, ScriptedAdapter(store), sink)

    result = await controller.run(session, initial(store, target))

    assert result.outcome is Outcome.EXPLOIT_CONFIRMED
    assert result.cycles == 2
    assert len(sandbox.calls) == 2
    assert classifier.calls == 1
    assert result.security_implication == "funds drained"
    assert result.final_artifact.endswith(".ts")
    assert StatusPhase.EXPLOIT_SUCCESS in sink.phases


@pytest.mark.asyncio
async def test_generation_failure_is_error_not_secure(store, target):
    session = RefinementSession(target=target, max_cycles=5)
    cause = ConnectionError("service down")
    adapter = ScriptedAdapter(store, failure=Err(reason="Generation service failed: service down", cause=cause))
    controller = build(store, ScriptedSandbox(FAILED), ScriptedClassifier(BROKEN), adapter)

    result = await controller.run(session, initial(store, target))

    assert result.outcome is Outcome.ERROR
    assert result.cause is cause
    assert result.cycles == 1
    assert "service down" in result.error_message


@pytest.mark.asyncio
async def test_fingerprints_never_shrink(store, target):
    session = RefinementSession(target=target, max_cycles=4)
    sizes = []

    class WatchingClassifier(ScriptedClassifier):
        async def classify(self, result, contract_source, vulnerability):
            sizes.append(len(session.fingerprints))
            return await super().classify(result, contract_source, vulnerability)

    controller = build(store, ScriptedSandbox(FAILED), WatchingClassifier(BROKEN), ScriptedAdapter(store))

    await controller.run(session, initial(store, target))

    assert sizes == sorted(sizes)
    assert sizes[-1] == 4


@pytest.mark.asyncio
async def test_cycle_records_are_written(store, target):
    session = RefinementSession(target=target, max_cycles=2)
    session.run_dir = store.setup_run_directory(target)
    controller = build(store, ScriptedSandbox(FAILED), ScriptedClassifier(BROKEN), ScriptedAdapter(store))

    await controller.run(session, initial(store, target))

    record = json.loads((session.run_dir / "cycles" / "cycle_2.json").read_text())
    assert record["cycle"] == 2
    assert record["tier"] == "standard"
    assert record["operation_diff"] == {"added": ["step2"], "removed": ["deposit"]}
    assert record["classification"]["failure_kind"] == "technical_error"

    final = json.loads((session.run_dir / "final_results.json").read_text())
    assert final["outcome"] == "inconclusive"
    assert len(final["artifacts"]) == 2


@pytest.mark.asyncio
async def test_failing_status_sink_does_not_break_the_loop(store, target):
    class BrokenSink(StatusSink):
        def publish(self, event):
            raise RuntimeError("sink offline")

    session = RefinementSession(target=target, max_cycles=1)
    controller = build(store, ScriptedSandbox(EXPLOITED), ScriptedClassifier(BROKEN), ScriptedAdapter(store), BrokenSink())

    result = await controller.run(session, initial(store, target))

    assert result.outcome is Outcome.EXPLOIT_CONFIRMED


@pytest.mark.asyncio
async def test_timeout_is_classified_as_technical_error(store, target, config):
    config.execution_timeout = 0.5
    storage_id, path = store.write_attempt(target, 1, "import time\ntime.sleep(30)\n")
    attempt = make_attempt("await v.deposit();", storage_id=storage_id)
    attempt.path = path

    llm = AsyncMock()
    classifier = FailureClassifier(llm, ContractSurfaceTool(config))
    session = RefinementSession(target=target, max_cycles=1)
    controller = build(store, ExecutionSandboxTool(config, store), classifier, ScriptedAdapter(store))

    result = await controller.run(session, attempt)

    assert result.outcome is Outcome.INCONCLUSIVE
    assert session.executions[0].success is False
    assert "timed out after" in session.executions[0].output
    assert session.classifications[0].failure_kind is FailureKind.TECHNICAL_ERROR
    llm.generate.assert_not_called()

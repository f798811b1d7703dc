"""
Tests for the adaptation requester
"""

from unittest.mock import AsyncMock

import pytest

from exploit_refiner.adaptation import AdaptationRequester
from exploit_refiner.llm_client import GenerationServiceError
from exploit_refiner.models import (
    Classification,
    Err,
    ExecutionResult,
    FailureKind,
    Ok,
    RefinementSession,
    StrategyTier,
    Target,
)
from exploit_refiner.strategy_tracker import StrategyTracker
from exploit_refiner.tools.artifact_validator import WARNING_HEADER, ArtifactValidatorTool
from exploit_refiner.tools.code_analysis_tool import ContractSurfaceTool

from tests.helpers import REENTRANCY_TEST, make_attempt


def fenced(code: str) -> str:
    return f"Here is the updated test:\n\n```typescript\n{code.strip()}\n```\n"


@pytest.fixture
def llm():
    return AsyncMock()


@pytest.fixture
def surface_tool(config):
    return ContractSurfaceTool(config)


@pytest.fixture
def requester(llm, store, config, surface_tool):
    return AdaptationRequester(llm, store, ArtifactValidatorTool(config), surface_tool, StrategyTracker())


def failure(surface_tool, source) -> Classification:
    return Classification(
        is_secure=False,
        failure_kind=FailureKind.TECHNICAL_ERROR,
        explanation="Technical failure (unrecognized_selector): call to 'drain'",
        suggested_fix="Use only the contract's callable operations",
        valid_operations=surface_tool.scan(source).operations
    )


def failed_run() -> ExecutionResult:
    return ExecutionResult(success=False, output="TypeError: vault.drain is not a function", exit_code=1, elapsed_time=2.0)


def seed_attempts(session, store, count):
    tracker = StrategyTracker()
    for number in range(1, count + 1):
        content = REENTRANCY_TEST if number == 1 else f"describe('x', () => {{ it('y', async () => {{ await v.withdraw({number}); }}); }});"
        storage_id, path = store.write_attempt(session.target, number, content)
        attempt = make_attempt(content, number=number, storage_id=storage_id)
        attempt.path = path
        session.attempts.append(attempt)
        tracker.record(session, attempt)


@pytest.mark.asyncio
async def test_initial_generation_stores_attempt(requester, llm, session, store):
    llm.generate.return_value = fenced(REENTRANCY_TEST)

    result = await requester.generate_initial(session)

    assert isinstance(result, Ok)
    assert result.attempt.number == 1
    assert result.attempt.tier is StrategyTier.STANDARD
    assert store.read_attempt(result.attempt.storage_id) == REENTRANCY_TEST.strip()
    assert result.attempt.storage_id.startswith("penetrationTest-Vault-Reentrancy-in-withdraw-attempt1-")


@pytest.mark.asyncio
async def test_third_attempt_requests_alternative_strategy(requester, llm, session, store, surface_tool):
    seed_attempts(session, store, 2)
    llm.generate.return_value = fenced(REENTRANCY_TEST.replace("withdraw(", "balances("))

    result = await requester.adapt(session, failed_run(), failure(surface_tool, session.target.contract_source))

    assert isinstance(result, Ok)
    assert result.attempt.number == 3
    assert result.attempt.tier is StrategyTier.ALTERNATIVE

    prompt = llm.generate.call_args.args[1]
    assert "STRATEGY TIER: ALTERNATIVE" in prompt
    assert "deposit → withdraw → balances" in prompt
    assert "drain" in prompt
    # previous attempt is re-read from storage
    assert "await v.withdraw(2);" in prompt


@pytest.mark.asyncio
async def test_fifth_attempt_requests_minimal_strategy(requester, llm, session, store, surface_tool):
    seed_attempts(session, store, 4)
    llm.generate.return_value = fenced(REENTRANCY_TEST)

    result = await requester.adapt(session, failed_run(), failure(surface_tool, session.target.contract_source))

    assert result.attempt.tier is StrategyTier.MINIMAL
    assert "exactly ONE call" in llm.generate.call_args.args[1]


@pytest.mark.asyncio
async def test_unknown_call_is_repaired(requester, llm, session, store, surface_tool):
    seed_attempts(session, store, 1)
    llm.generate.return_value = fenced(REENTRANCY_TEST.replace(".withdraw(", ".withdrawl("))

    result = await requester.adapt(session, failed_run(), failure(surface_tool, session.target.contract_source))

    assert result.attempt.repairs == {"withdrawl": "withdraw"}
    assert ".withdrawl(" not in store.read_attempt(result.attempt.storage_id)
    assert not result.attempt.content.startswith(WARNING_HEADER)


@pytest.mark.asyncio
async def test_unrepairable_call_gets_warning_block(requester, llm, session, store, surface_tool):
    seed_attempts(session, store, 1)
    llm.generate.return_value = fenced(REENTRANCY_TEST.replace(".withdraw(", ".flashLoanAttack("))

    result = await requester.adapt(session, failed_run(), failure(surface_tool, session.target.contract_source))

    assert isinstance(result, Ok)
    assert result.attempt.content.startswith(WARNING_HEADER)
    assert "flashLoanAttack" in result.attempt.validation_warnings[0]


@pytest.mark.asyncio
async def test_zero_operations_still_produces_attempt_with_warning(requester, llm):
    target = Target.from_request("contract Empty {\n}\n", "Anything")
    session = RefinementSession(target=target, max_cycles=5)
    llm.generate.return_value = fenced(REENTRANCY_TEST)

    result = await requester.generate_initial(session)

    assert isinstance(result, Ok)
    assert result.attempt.content.startswith(WARNING_HEADER)
    assert "No callable operations" in result.attempt.validation_warnings[0]


@pytest.mark.asyncio
async def test_service_failure_is_err(requester, llm, session, store, surface_tool):
    seed_attempts(session, store, 1)
    error = GenerationServiceError("connection refused")
    llm.generate.side_effect = error

    result = await requester.adapt(session, failed_run(), failure(surface_tool, session.target.contract_source))

    assert isinstance(result, Err)
    assert result.cause is error


@pytest.mark.asyncio
async def test_reply_without_code_is_err(requester, llm, session):
    llm.generate.return_value = "Sorry, I cannot help with that."

    result = await requester.generate_initial(session)

    assert isinstance(result, Err)
    assert "no extractable test code" in result.reason


def test_extract_prefers_typescript_fence(requester):
    response = (
        "```json\n{\"a\": 1}\n```\n"
        "```ts\ndescribe('a', () => { it('b', () => {}); });\n```"
    )
    assert requester.extract_test_code(response) == "describe('a', () => { it('b', () => {}); });"


def test_extract_rejects_unbalanced_code(requester):
    assert requester.extract_test_code("```typescript\ndescribe('a', () => {\n```") is None


def test_extract_accepts_bare_code(requester):
    code = "describe('a', () => {});"
    assert requester.extract_test_code(code) == code


@pytest.mark.asyncio
async def test_repeated_strategy_is_called_out(requester, llm, session, store, surface_tool):
    seed_attempts(session, store, 2)
    session.attempts[-1].repeated_strategy = True
    llm.generate.return_value = fenced(REENTRANCY_TEST)

    await requester.adapt(session, failed_run(), failure(surface_tool, session.target.contract_source))

    assert "repeated a sequence that had already failed" in llm.generate.call_args.args[1]

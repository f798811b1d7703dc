"""
End-to-end tests of the refinement agent with a scripted generation service
and the current Python interpreter standing in for the test harness
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from exploit_refiner.agent import RefinementAgent
from exploit_refiner.harness_client import HarnessClient
from exploit_refiner.llm_client import GenerationServiceError
from exploit_refiner.models import ConcurrencyPolicy, Outcome, Target

from tests.helpers import VAULT_SOURCE


EXPLOIT_SCRIPT = '''def describe(name):
    return name

describe("drain the vault")
print("EXPLOIT SUCCESSFUL")
print("VULNERABILITY SUMMARY: withdraw can be re-entered")
'''


@pytest.fixture
def llm():
    return AsyncMock()


@pytest.fixture
def agent(config, llm):
    harness = MagicMock(spec=HarnessClient)
    harness.describe.return_value = "Local node is not reachable; deploy contracts inside the test."
    return RefinementAgent(config, llm_client=llm, harness=harness)


@pytest.mark.asyncio
async def test_seeded_test_confirms_exploit(agent, target, tmp_path, llm):
    seed = tmp_path / "penetrationTest-Vault-Reentrancy.ts"
    seed.write_text(EXPLOIT_SCRIPT)

    result = await agent.start_refinement(target, seed_path=seed)

    assert result.outcome is Outcome.EXPLOIT_CONFIRMED
    assert result.cycles == 1
    assert result.security_implication == "withdraw can be re-entered"
    llm.generate.assert_not_called()

    run_dirs = list(agent.store.runs_dir.iterdir())
    assert len(run_dirs) == 1
    assert (run_dirs[0] / "run_log.txt").exists()
    assert (run_dirs[0] / "final_results.json").exists()


@pytest.mark.asyncio
async def test_generated_first_attempt(agent, target, llm):
    llm.generate.return_value = f"```typescript\n{EXPLOIT_SCRIPT}```"

    result = await agent.start_refinement(target)

    assert result.outcome is Outcome.EXPLOIT_CONFIRMED
    assert result.attempts == 1


@pytest.mark.asyncio
async def test_unreachable_generation_service_is_error(agent, target, llm):
    llm.generate.side_effect = GenerationServiceError("Cannot connect to host")

    result = await agent.start_refinement(target)

    assert result.outcome is Outcome.ERROR
    assert "Cannot connect to host" in result.error_message


@pytest.mark.asyncio
async def test_missing_seed_is_error(agent, target, tmp_path):
    result = await agent.start_refinement(target, seed_path=tmp_path / "missing.ts")

    assert result.outcome is Outcome.ERROR


@pytest.mark.asyncio
async def test_parallel_run_isolates_failures(agent, llm):
    targets = [Target.from_request(VAULT_SOURCE, f"Issue {index}", target_id=f"t{index}") for index in range(5)]

    async def generate(system_prompt, user_prompt, **kwargs):
        if "VULNERABILITY: Issue 3" in user_prompt:
            raise RuntimeError("generator crashed")
        return f"```ts\n{EXPLOIT_SCRIPT}```"

    llm.generate.side_effect = generate

    run = await agent.start_parallel_refinement(targets, ConcurrencyPolicy(stagger_interval=0.01))

    assert [result.target_id for result in run.results] == ["t0", "t1", "t2", "t3", "t4"]
    assert run.count(Outcome.EXPLOIT_CONFIRMED) == 4
    assert run.results[3].outcome is Outcome.ERROR
    assert agent.harness.describe.call_count == 1


@pytest.mark.asyncio
async def test_zero_cycle_budget_is_rejected(agent, target, llm):
    with pytest.raises(ValueError, match="max_cycles must be at least 1"):
        await agent.start_refinement(target, max_cycles=0)

    with pytest.raises(ValueError, match="max_cycles must be at least 1"):
        await agent.start_parallel_refinement([target], max_cycles=0)

    llm.generate.assert_not_called()
    assert not agent.store.runs_dir.exists() or not any(agent.store.runs_dir.iterdir())

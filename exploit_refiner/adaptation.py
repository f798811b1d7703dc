"""
Adaptation Requester - asks the generation service for the next attempt
"""

import re
import logging
from typing import List, Optional

from .llm_client import LLMClient, GenerationServiceError
from .models import (
    Attempt,
    Classification,
    Err,
    ExecutionResult,
    GenerationResult,
    Ok,
    RefinementSession,
    StrategyTier,
)
from .storage import ArtifactStore
from .strategy_tracker import StrategyTracker
from .tools.artifact_validator import ArtifactValidatorTool
from .tools.code_analysis_tool import ContractSurfaceTool


TIER_INSTRUCTIONS = {
    StrategyTier.STANDARD: (
        "Fix the errors reported above while keeping the overall attack approach. "
        "Call only the operations listed as callable."
    ),
    StrategyTier.ALTERNATIVE: (
        "The previous approach keeps failing. Use a DIFFERENT sequence of contract "
        "operations than any listed under 'Sequences already tried'."
    ),
    StrategyTier.MINIMAL: (
        "Write the simplest possible test: exactly ONE call to ONE callable operation, "
        "followed by assertions on the resulting state. No helper contracts, no loops."
    ),
}

GENERATION_SYSTEM_PROMPT = """You write Hardhat penetration tests (TypeScript, mocha + chai + ethers)
that demonstrate whether a smart contract vulnerability is exploitable on a local node.

Rules:
- Deploy the target with ethers.getContractFactory using the exact contract name.
- Call only operations the contract actually exposes.
- If the exploit works, print "EXPLOIT SUCCESSFUL" and a line
  "VULNERABILITY SUMMARY: <one sentence>".
- Return a single complete test file inside one ```typescript code block."""

CODE_FENCE_PATTERN = re.compile(r'```(?:typescript|ts|javascript|js)\s*\n(.*?)\n?\s*```', re.DOTALL | re.IGNORECASE)
ANY_FENCE_PATTERN = re.compile(r'```[^\n]*\n(.*?)\n?\s*```', re.DOTALL)


class AdaptationRequester:
    """
    Builds escalating-strictness context for each request and turns the
    generation service's reply into a validated, stored Attempt.
    Failures come back as Err, never as exceptions.
    """

    def __init__(
        self,
        llm_client: LLMClient,
        store: ArtifactStore,
        validator: ArtifactValidatorTool,
        surface_tool: ContractSurfaceTool,
        tracker: StrategyTracker
    ):
        self.llm_client = llm_client
        self.store = store
        self.validator = validator
        self.surface_tool = surface_tool
        self.tracker = tracker
        self.logger = logging.getLogger(__name__)

    async def generate_initial(self, session: RefinementSession) -> GenerationResult:
        """First attempt for a target that arrived without a seed test"""
        target = session.target
        surface = self.surface_tool.scan(target.contract_source)

        user_prompt = f"""
CONTRACT: {target.contract_name}
VULNERABILITY: {target.vulnerability}
SEVERITY: {target.severity.value}
DESCRIPTION: {target.description}

Callable operations: {surface.describe()}
{self._harness_section(session)}
=== CONTRACT SOURCE ===
{target.contract_source}

Write a penetration test that tries to exploit this vulnerability.
"""
        return await self._request(session, 1, StrategyTier.STANDARD, user_prompt, surface.names)

    async def adapt(
        self,
        session: RefinementSession,
        previous_result: ExecutionResult,
        previous_classification: Classification
    ) -> GenerationResult:
        attempt_number = len(session.attempts) + 1
        tier = StrategyTier.for_attempt(attempt_number)
        target = session.target

        valid_names = previous_classification.valid_operation_names
        if not valid_names:
            valid_names = self.surface_tool.scan(target.contract_source).names

        previous_code = self._previous_code(session)
        self.logger.info(f"🔄 Requesting attempt {attempt_number} for {target.id} (tier: {tier.value})")

        user_prompt = f"""
CONTRACT: {target.contract_name}
VULNERABILITY: {target.vulnerability}
ATTEMPT: {attempt_number}
STRATEGY TIER: {tier.value.upper()}

=== WHY THE PREVIOUS TEST FAILED ===
{self._error_summary(previous_result, previous_classification)}

=== CALLABLE OPERATIONS ===
{', '.join(valid_names) if valid_names else '(none found)'}

=== SEQUENCES ALREADY TRIED (DO NOT REPEAT) ===
{self._format_sequences(session)}
{self._harness_section(session)}
=== INSTRUCTIONS ===
{TIER_INSTRUCTIONS[tier]}{self._repeat_note(session)}

=== PREVIOUS TEST ===
{previous_code}

=== CONTRACT SOURCE ===
{target.contract_source}
"""
        return await self._request(session, attempt_number, tier, user_prompt, valid_names)

    async def _request(
        self,
        session: RefinementSession,
        attempt_number: int,
        tier: StrategyTier,
        user_prompt: str,
        valid_names: List[str]
    ) -> GenerationResult:
        self.logger.debug(f"📤 Generation prompt: {len(user_prompt)} chars")

        try:
            response = await self.llm_client.generate(GENERATION_SYSTEM_PROMPT, user_prompt)
        except GenerationServiceError as e:
            self.logger.error(f"❌ Generation service failed: {str(e)}")
            return Err(reason=f"Generation service failed: {e}", cause=e)
        except Exception as e:
            self.logger.error(f"❌ Unexpected generation error: {str(e)}")
            return Err(reason=f"Unexpected generation error: {e}", cause=e)

        code = self.extract_test_code(response)
        if not code:
            self.logger.warning("⚠️ No complete test found in generation response")
            return Err(reason="Generation service returned no extractable test code")

        report = self.validator.validate(code, valid_names)

        try:
            storage_id, path = self.store.write_attempt(session.target, attempt_number, report.content)
        except OSError as e:
            return Err(reason=f"Could not store attempt {attempt_number}: {e}", cause=e)

        attempt = Attempt(
            number=attempt_number,
            content=report.content,
            storage_id=storage_id,
            tier=tier,
            path=path,
            validation_warnings=list(report.warnings),
            repairs=dict(report.repairs)
        )
        attempt.fingerprint = self.tracker.fingerprint(attempt)
        if not self.tracker.is_novel(session, attempt.fingerprint.signature):
            self.logger.warning(f"🔁 Attempt {attempt_number} repeats an earlier strategy; next request will push harder")

        self.logger.info(f"✅ Attempt {attempt_number} ready: {storage_id}")
        return Ok(attempt=attempt)

    def extract_test_code(self, response: str) -> Optional[str]:
        """Pull a complete test file out of a generation response"""
        if not response:
            return None

        for match in CODE_FENCE_PATTERN.findall(response):
            code = match.strip()
            if self._is_complete_test(code):
                return code

        for match in ANY_FENCE_PATTERN.findall(response):
            code = match.strip()
            if "describe(" in code and self._is_complete_test(code):
                return code

        code = response.strip()
        if self._is_complete_test(code):
            return code

        return None

    def _is_complete_test(self, code: str) -> bool:
        if not code or "describe(" not in code:
            return False
        return code.count("{") == code.count("}")

    def _previous_code(self, session: RefinementSession) -> str:
        previous = session.previous_attempt
        if previous is None:
            return "(none)"
        try:
            return self.store.read_attempt(previous.storage_id)
        except OSError:
            return previous.content

    def _error_summary(self, result: ExecutionResult, classification: Classification) -> str:
        lines = [
            f"Classification: {classification.failure_kind.value}",
            f"Explanation: {classification.explanation}",
        ]
        if classification.suggested_fix:
            lines.append(f"Suggested fix: {classification.suggested_fix}")
        if result.timed_out:
            lines.append("The test timed out.")

        output_tail = (result.output or "")[-1500:].strip()
        if output_tail:
            lines.append(f"Output tail:\n{output_tail}")
        return "\n".join(lines)

    def _format_sequences(self, session: RefinementSession) -> str:
        sequences = session.tried_sequences
        if not sequences:
            return "(none)"
        return "\n".join(
            f"- {' → '.join(sequence) if sequence else '(no contract calls)'}" for sequence in sequences
        )

    def _harness_section(self, session: RefinementSession) -> str:
        if not session.harness_context:
            return ""
        return f"\n=== HARNESS ===\n{session.harness_context}\n"

    def _repeat_note(self, session: RefinementSession) -> str:
        previous = session.previous_attempt
        if previous is None or not previous.repeated_strategy:
            return ""
        return "\nThe previous test repeated a sequence that had already failed. Do not submit it again."

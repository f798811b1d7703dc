"""
Failure Classifier - decides whether a failed test means "contract resisted"
or "the test itself broke"
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Optional, Pattern, Tuple

from .llm_client import LLMClient
from .models import Classification, ExecutionResult, FailureKind
from .tools.code_analysis_tool import ContractSurface, ContractSurfaceTool


@dataclass(frozen=True)
class FaultSignature:
    """A known technical-fault pattern in harness output"""
    name: str
    pattern: Pattern
    summary: str


# Order matters: the payable check must run before the generic selector check
# because Hardhat reports both with "function selector was not recognized".
FAULT_SIGNATURES: Tuple[FaultSignature, ...] = (
    FaultSignature(
        name="missing_payable_entry",
        pattern=re.compile(
            r"non-payable (?:function|method) was called with value"
            r"|there'?s no fallback nor receive function"
            r"|no receive function",
            re.IGNORECASE
        ),
        summary="value was sent to an entry point that cannot receive it"
    ),
    FaultSignature(
        name="unrecognized_selector",
        pattern=re.compile(
            r"TypeError: (?:[\w$]+\.)*(?P<call>[\w$]+) is not a function"
            r"|no matching (?:function|fragment)[^\n]*?(?:\"|value=\")(?P<call2>\w+)"
            r"|function selector was not recognized"
            r"|unrecognized(?: function)? selector",
            re.IGNORECASE
        ),
        summary="the test calls an operation the contract does not expose"
    ),
    FaultSignature(
        name="deployment_error",
        pattern=re.compile(
            r"(?:HH700:?\s*)?Artifact for contract \"(?P<call>\w+)\" not found|HH700"
            r"|incorrect number of arguments to constructor"
            r"|missing argument|too many arguments"
            r"|contract deployment failed|could not detect network|ECONNREFUSED",
            re.IGNORECASE
        ),
        summary="the contract could not be deployed in the harness"
    ),
    FaultSignature(
        name="execution_timeout",
        pattern=re.compile(r"timed out after", re.IGNORECASE),
        summary="the test did not finish within the time limit"
    ),
)


STACK_FRAME_PATTERN = re.compile(
    r'^\s*at (?:async )?(?:[\w$.]*\.)?(?P<method>[\w$]+) \((?P<location>[^)\n]*)\)',
    re.MULTILINE
)


CLASSIFIER_SYSTEM_PROMPT = """You review failed smart contract penetration tests.
Decide whether the test failed because the contract correctly defended itself
(the exploit is not possible) or because the test itself is broken (wrong calls,
bad setup, wrong assertions, compilation problems).

Respond with a JSON object only:
{
  "isSecure": true or false,
  "failureType": "contract_protection" or "technical_error",
  "explanation": "why the test failed",
  "suggestedFix": "how to change the test if it is broken"
}"""


class FailureClassifier:
    """
    Deterministic fault signatures first, one AI-assisted call otherwise.
    Any failure of the AI call yields analysis_error with is_secure False so
    the loop keeps refining instead of declaring the contract secure.
    """

    def __init__(self, llm_client: LLMClient, surface_tool: ContractSurfaceTool, max_output_chars: int = 6000):
        self.llm_client = llm_client
        self.surface_tool = surface_tool
        self.max_output_chars = max_output_chars
        self.logger = logging.getLogger(__name__)

    async def classify(self, result: ExecutionResult, contract_source: str, vulnerability: str) -> Classification:
        surface = self.surface_tool.scan(contract_source)

        classification = self._match_signatures(result.output, surface)
        if classification:
            self.logger.info(f"🔎 Deterministic classification: {classification.explanation}")
            return classification

        return await self._classify_with_ai(result, contract_source, vulnerability, surface)

    def _match_signatures(self, output: str, surface: ContractSurface) -> Optional[Classification]:
        for signature in FAULT_SIGNATURES:
            match = signature.pattern.search(output or "")
            if not match:
                continue

            offending = self._offending_call(match, output, surface)
            if offending:
                explanation = f"Technical failure ({signature.name}): call to '{offending}' - {signature.summary}."
            else:
                explanation = f"Technical failure ({signature.name}): {signature.summary}."

            return Classification(
                is_secure=False,
                failure_kind=FailureKind.TECHNICAL_ERROR,
                explanation=explanation,
                suggested_fix=self._suggest_fix(signature, surface),
                valid_operations=surface.operations,
                source="pattern"
            )
        return None

    def _offending_call(self, match, output: str, surface: ContractSurface) -> Optional[str]:
        for group in ("call", "call2"):
            value = match.groupdict().get(group)
            if value:
                return value

        # Only a frame naming one of the contract's operations identifies the call;
        # mocha, ethers and node frames never do
        window = output[match.end():match.end() + 2000]
        for frame in STACK_FRAME_PATTERN.finditer(window):
            method, location = frame.group("method"), frame.group("location")
            if "node_modules" in location or location.startswith("node:"):
                continue
            if method in surface.names:
                return method
        return None

    def _suggest_fix(self, signature: FaultSignature, surface: ContractSurface) -> str:
        fix = f"Use only the contract's callable operations: {surface.describe()}."

        if signature.name == "missing_payable_entry":
            if surface.payable_names:
                fix += f" Send value only to payable operations: {', '.join(surface.payable_names)}."
            elif not surface.has_receive and not surface.has_fallback:
                fix += " The contract accepts no value at all; remove value transfers."
        elif signature.name == "deployment_error":
            fix += " Check the contract name passed to getContractFactory and the constructor arguments."
        elif signature.name == "execution_timeout":
            fix += " Reduce loops and waits so the test completes quickly."

        return fix

    async def _classify_with_ai(
        self,
        result: ExecutionResult,
        contract_source: str,
        vulnerability: str,
        surface: ContractSurface
    ) -> Classification:
        output_tail = (result.output or "")[-self.max_output_chars:]
        user_prompt = (
            f"VULNERABILITY UNDER TEST: {vulnerability}\n\n"
            f"=== CONTRACT SOURCE ===\n{contract_source}\n\n"
            f"=== TEST OUTPUT (exit code {result.exit_code}) ===\n{output_tail}\n"
        )

        try:
            response = await self.llm_client.generate(CLASSIFIER_SYSTEM_PROMPT, user_prompt)
            parsed = self._parse_response(response)
        except Exception as e:
            self.logger.warning(f"⚠️ AI classification failed, treating as analysis error: {str(e)}")
            return Classification(
                is_secure=False,
                failure_kind=FailureKind.ANALYSIS_ERROR,
                explanation=f"Failure could not be analyzed ({type(e).__name__}: {e}); assuming the test needs work.",
                suggested_fix=f"Use only the contract's callable operations: {surface.describe()}.",
                valid_operations=surface.operations,
                source="fallback"
            )

        is_secure = parsed.get("isSecure", parsed.get("is_secure")) is True
        failure_type = str(parsed.get("failureType", parsed.get("failure_type", ""))).lower()

        if is_secure:
            failure_kind = FailureKind.CONTRACT_PROTECTION
        elif failure_type == FailureKind.ANALYSIS_ERROR.value:
            failure_kind = FailureKind.ANALYSIS_ERROR
        else:
            failure_kind = FailureKind.TECHNICAL_ERROR

        classification = Classification(
            is_secure=is_secure,
            failure_kind=failure_kind,
            explanation=str(parsed.get("explanation") or "No explanation provided"),
            suggested_fix=str(parsed.get("suggestedFix") or parsed.get("suggested_fix") or ""),
            valid_operations=surface.operations,
            source="ai"
        )
        self.logger.info(
            f"🤖 AI classification: {'CONTRACT IS SECURE' if is_secure else 'TEST HAS ISSUES'} - "
            f"{classification.explanation[:200]}"
        )
        return classification

    def _parse_response(self, response: str) -> dict:
        """Parse a JSON object that may be wrapped in a markdown fence"""
        fenced = re.search(r'```(?:json)?\s*\n(.*?)\n\s*```', response, re.DOTALL)
        if fenced:
            candidate = fenced.group(1)
        else:
            braces = re.search(r'\{.*\}', response, re.DOTALL)
            if not braces:
                raise ValueError("No JSON object in classification response")
            candidate = braces.group(0)

        parsed = json.loads(candidate)
        if not isinstance(parsed, dict):
            raise ValueError("Classification response is not a JSON object")
        return parsed

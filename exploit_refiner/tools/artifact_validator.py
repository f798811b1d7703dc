"""
Artifact Validator Tool - checks generated tests against the contract surface
"""

import difflib
from dataclasses import dataclass, field
from typing import Dict, List, Any, Sequence

from .base import BaseTool, ToolResult
from .invoked_operations import extract_invoked_operations, rename_operation_calls


WARNING_HEADER = "// VALIDATION WARNING"


@dataclass
class ValidationReport:
    content: str
    repairs: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.repairs and not self.warnings


class ArtifactValidatorTool(BaseTool):
    """
    Static, local validation of a generated test. Calls made on the target
    contract to operations outside its callable set are rewritten to the
    closest valid name; when no close name exists a warning comment block is
    prepended. Helper and library calls are never touched. The artifact is
    never rejected.
    """

    def __init__(self, config, similarity_cutoff: float = 0.6):
        super().__init__(config)
        self.similarity_cutoff = similarity_cutoff

    def get_name(self) -> str:
        return "artifact_validator"

    def get_description(self) -> str:
        return "Repair or annotate calls to operations the target contract does not expose"

    async def execute(self, params: Dict[str, Any]) -> ToolResult:
        """
        Args:
            params: {
                "content": str - generated test code
                "valid_operations": List[str] - callable operation names
            }
        """
        def produce():
            report = self.validate(params.get("content", ""), params.get("valid_operations", []))
            return {"content": report.content, "repairs": report.repairs, "warnings": report.warnings}

        return self._guarded("Validation", produce)

    def validate(self, content: str, valid_operations: Sequence[str]) -> ValidationReport:
        valid = list(dict.fromkeys(valid_operations))
        report = ValidationReport(content=content)

        if not valid:
            report.warnings.append(
                "No callable operations were discovered in the target contract; "
                "calls in this test could not be checked."
            )

        unknown = [name for name in dict.fromkeys(extract_invoked_operations(content)) if name not in valid]

        for name in unknown:
            if not valid:
                continue

            matches = difflib.get_close_matches(name, valid, n=1, cutoff=self.similarity_cutoff)
            if matches:
                replacement = matches[0]
                report.content = rename_operation_calls(report.content, name, replacement)
                report.repairs[name] = replacement
                self.logger.info(f"🔧 Repaired call '{name}' → '{replacement}'")
            else:
                report.warnings.append(f"'{name}' is not a callable operation of the target contract.")

        if report.warnings:
            report.content = self._prepend_warning(report.content, report.warnings, valid)
            self.logger.warning(f"⚠️ Artifact validation warnings: {'; '.join(report.warnings)}")

        return report

    def _prepend_warning(self, content: str, warnings: List[str], valid: List[str]) -> str:
        lines = [WARNING_HEADER]
        for warning in warnings:
            lines.append(f"// - {warning}")
        lines.append(f"// Callable operations: {', '.join(valid) if valid else '(none found)'}")
        return "\n".join(lines) + "\n\n" + content

"""
Contract Surface Tool - enumerates the operations a test can actually call
"""

import re
from dataclasses import dataclass
from typing import Dict, List, Any, Tuple

from .base import BaseTool, ToolResult
from .code_sanitizer import CodeSanitizerTool
from ..models import ContractOperation


@dataclass(frozen=True)
class ContractSurface:
    """Externally reachable entry points of a contract"""
    operations: Tuple[ContractOperation, ...]
    has_receive: bool = False
    has_fallback: bool = False

    @property
    def names(self) -> List[str]:
        return [op.name for op in self.operations]

    @property
    def payable_names(self) -> List[str]:
        return [op.name for op in self.operations if op.payable]

    def describe(self) -> str:
        if not self.operations:
            return "(no callable operations found)"
        return ", ".join(op.describe() for op in self.operations)


class ContractSurfaceTool(BaseTool):
    """
    Scans Solidity source for public/external functions, public state variable
    getters and receive/fallback entry points. Interface and library bodies are
    skipped since their functions are not callable on the target.
    """

    FUNCTION_PATTERN = re.compile(r'function\s+(\w+)\s*\(([^)]*)\)([^{;]*)[{;]', re.DOTALL)
    STATE_GETTER_PATTERN = re.compile(
        r'^\s*(?!function\b|event\b|error\b|modifier\b|return\b|emit\b)'
        r'[\w\[\]\.]+(?:\s*\([^;{]*?\))?\s+public\s+(?:constant\s+|immutable\s+|override\s+)*(\w+)\s*(?:=[^;]*)?;',
        re.MULTILINE
    )
    SKIPPED_BLOCK_PATTERN = re.compile(r'\b(?:interface|library)\s+\w+[^{]*\{')

    def __init__(self, config):
        super().__init__(config)
        self.sanitizer = CodeSanitizerTool(config)

    def get_name(self) -> str:
        return "contract_surface_tool"

    def get_description(self) -> str:
        return "Enumerate callable operations of a Solidity contract"

    async def execute(self, params: Dict[str, Any]) -> ToolResult:
        """
        Args:
            params: {"source_code": str - Solidity source}
        """
        def produce():
            surface = self.scan(params.get("source_code", ""))
            return {
                "operations": [op.describe() for op in surface.operations],
                "payable": surface.payable_names,
                "has_receive": surface.has_receive,
                "has_fallback": surface.has_fallback,
                "total_operations": len(surface.operations)
            }

        return self._guarded("Surface scan", produce)

    def scan(self, source_code: str) -> ContractSurface:
        """Return the callable surface; empty for empty or unparseable source"""
        if not source_code or not source_code.strip():
            return ContractSurface(operations=())

        code = self.sanitizer.sanitize(source_code, keep_imports=True)
        code = self._drop_skipped_blocks(code)

        operations: List[ContractOperation] = []
        seen = set()

        for match in self.FUNCTION_PATTERN.finditer(code):
            name, parameters, header = match.group(1), match.group(2), match.group(3)
            visibility = self._extract_visibility(header)
            if visibility not in ("public", "external"):
                continue

            key = (name, self._normalize_parameters(parameters))
            if key in seen:
                continue
            seen.add(key)

            operations.append(ContractOperation(
                name=name,
                parameters=key[1],
                visibility=visibility,
                state_mutability=self._extract_state_mutability(header)
            ))

        for match in self.STATE_GETTER_PATTERN.finditer(code):
            name = match.group(1)
            if any(op.name == name for op in operations):
                continue
            operations.append(ContractOperation(name=name, visibility="public", state_mutability="view"))

        surface = ContractSurface(
            operations=tuple(operations),
            has_receive=bool(re.search(r'\breceive\s*\(\s*\)\s*external\s+payable', code)),
            has_fallback=bool(re.search(r'\bfallback\s*\(', code))
        )
        self.logger.debug(f"Surface: {surface.describe()}")
        return surface

    def _drop_skipped_blocks(self, code: str) -> str:
        """Remove interface and library bodies using brace matching"""
        while True:
            match = self.SKIPPED_BLOCK_PATTERN.search(code)
            if not match:
                return code

            brace_count = 1
            end_pos = len(code)
            for i in range(match.end(), len(code)):
                if code[i] == '{':
                    brace_count += 1
                elif code[i] == '}':
                    brace_count -= 1
                    if brace_count == 0:
                        end_pos = i + 1
                        break

            code = code[:match.start()] + code[end_pos:]

    def _normalize_parameters(self, parameters: str) -> str:
        """'uint256 amount, address to' -> 'uint256,address'"""
        types = []
        for param in parameters.split(","):
            param = param.strip()
            if param:
                types.append(param.split()[0])
        return ",".join(types)

    def _extract_visibility(self, header: str) -> str:
        for visibility in ("external", "public", "internal", "private"):
            if re.search(rf'\b{visibility}\b', header):
                return visibility
        # Pre-0.5 functions without a visibility keyword are public
        return "public"

    def _extract_state_mutability(self, header: str) -> str:
        for mutability in ("payable", "view", "pure"):
            if re.search(rf'\b{mutability}\b', header):
                return mutability
        return ""

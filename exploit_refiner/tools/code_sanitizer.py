"""
Code Sanitizer Tool - Removes comments and non-logic lines before scanning
"""

import re
from typing import Dict, Any
from .base import BaseTool, ToolResult


class CodeSanitizerTool(BaseTool):
    """
    Tool for cleaning Solidity source and generated test code before pattern scans

    Features:
    - Remove comments (single-line and multi-line)
    - Remove empty lines and excessive whitespace
    - Remove import statements, pragmas and SPDX identifiers
    - Optionally blank out string literals so their contents never look like code
    """

    def get_name(self) -> str:
        return "code_sanitizer"

    def get_description(self) -> str:
        return "Removes comments, imports, and non-essential code elements for focused scanning"

    async def execute(self, params: Dict[str, Any]) -> ToolResult:
        """
        Sanitize source code

        Args:
            params: {
                "source_code": str - Raw source code
                "keep_imports": bool - Whether to keep import statements (default: False)
                "strip_strings": bool - Whether to blank string literals (default: False)
            }

        Returns:
            ToolResult with sanitized code
        """

        source_code = params.get("source_code", "")
        if not source_code:
            return self._create_result(False, error_message="No source code provided")

        def produce():
            sanitized = self.sanitize(
                source_code,
                keep_imports=params.get("keep_imports", False),
                strip_strings=params.get("strip_strings", False)
            )
            original_lines = len(source_code.splitlines())
            sanitized_lines = len(sanitized.splitlines())
            self.logger.debug(f"Code sanitized: {original_lines} → {sanitized_lines} lines")
            return {
                "sanitized_code": sanitized,
                "original_lines": original_lines,
                "sanitized_lines": sanitized_lines
            }

        return self._guarded("Sanitization", produce)

    def sanitize(self, source_code: str, keep_imports: bool = False, strip_strings: bool = False) -> str:
        """
        Perform the actual sanitization
        """

        code = self._remove_comments(source_code)
        sanitized_lines = []

        for line in code.splitlines():
            line = line.strip()

            if not line:
                continue

            if line.startswith("import ") and not keep_imports:
                continue

            if line.startswith("pragma "):
                continue

            if strip_strings:
                line = self._blank_strings(line)

            sanitized_lines.append(line)

        return "\n".join(sanitized_lines)

    def _remove_comments(self, code: str) -> str:
        """Drop // and /* */ comments while respecting string literals"""

        result = []
        i = 0
        quote_char = None
        length = len(code)

        while i < length:
            char = code[i]

            if quote_char:
                result.append(char)
                if char == "\\" and i + 1 < length:
                    result.append(code[i + 1])
                    i += 2
                    continue
                if char == quote_char:
                    quote_char = None
                i += 1
                continue

            if char in ('"', "'", "`"):
                quote_char = char
                result.append(char)
                i += 1
                continue

            if code.startswith("//", i):
                # Skip to end of line, keep the newline
                end = code.find("\n", i)
                i = length if end == -1 else end
                continue

            if code.startswith("/*", i):
                end = code.find("*/", i + 2)
                comment = code[i:length if end == -1 else end + 2]
                # Keep line structure intact
                result.append("\n" * comment.count("\n"))
                i = length if end == -1 else end + 2
                continue

            result.append(char)
            i += 1

        return "".join(result)

    def _blank_strings(self, line: str) -> str:
        """Replace string literal contents with an empty literal"""
        return re.sub(r'"(?:\\.|[^"\\])*"|\'(?:\\.|[^\'\\])*\'|`(?:\\.|[^`\\])*`', '""', line)

"""
Exploit Refiner Tools Package
"""

from .base import BaseTool, ToolResult
from .code_sanitizer import CodeSanitizerTool
from .code_analysis_tool import ContractSurface, ContractSurfaceTool
from .artifact_validator import ArtifactValidatorTool, ValidationReport
from .execution_tool import ExecutionSandboxTool

__all__ = [
    "BaseTool",
    "ToolResult",
    "CodeSanitizerTool",
    "ContractSurface",
    "ContractSurfaceTool",
    "ArtifactValidatorTool",
    "ValidationReport",
    "ExecutionSandboxTool",
]

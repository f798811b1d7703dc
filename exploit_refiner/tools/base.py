"""
Tool contract shared by the sanitizer, surface scan, validator and sandbox
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional


@dataclass
class ToolResult:
    """What every tool hands back; tools report failures here instead of raising"""
    success: bool
    data: Dict[str, Any]
    error_message: Optional[str] = None
    execution_time: float = 0.0
    tool_name: str = ""


class BaseTool(ABC):
    """
    A named, configurable step of the refinement engine.

    `execute(params)` is the dictionary-in / ToolResult-out entry point; the
    typed methods (`scan`, `validate`, `run`, ...) are what the engine calls
    directly.
    """

    def __init__(self, config):
        self.config = config
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @abstractmethod
    async def execute(self, params: Dict[str, Any]) -> ToolResult:
        pass

    @abstractmethod
    def get_name(self) -> str:
        pass

    @abstractmethod
    def get_description(self) -> str:
        pass

    def _guarded(self, action: str, produce: Callable[[], Dict[str, Any]]) -> ToolResult:
        """Run a synchronous step and wrap its data, or its exception, in a ToolResult"""
        start_time = time.time()
        try:
            data = produce()
        except Exception as e:
            self.logger.error(f"{action} failed: {str(e)}")
            return self._create_result(
                False,
                error_message=f"{action} failed: {str(e)}",
                execution_time=time.time() - start_time
            )
        return self._create_result(True, data=data, execution_time=time.time() - start_time)

    def _create_result(
        self,
        success: bool,
        data: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None,
        execution_time: float = 0.0
    ) -> ToolResult:
        return ToolResult(
            success=success,
            data=data or {},
            error_message=error_message,
            execution_time=execution_time,
            tool_name=self.get_name()
        )

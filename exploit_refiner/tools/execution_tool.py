"""
Execution Sandbox Tool - runs one generated test against the live harness
"""

import os
import re
import json
import time
import asyncio
from typing import Dict, Any, List, Optional

from .base import BaseTool, ToolResult
from ..models import ExecutionResult
from ..storage import ArtifactStore


# Machine-readable line a harness reporter may print; authoritative when present
STRUCTURED_RESULT_PATTERN = re.compile(r'^EXPLOIT_RESULT:\s*(\{.*\})\s*$', re.MULTILINE)
SUCCESS_MARKER_PATTERN = re.compile(r'EXPLOIT SUCCESSFUL|VULNERABILITY CONFIRMED', re.IGNORECASE)
PASS_MARKER_PATTERN = re.compile(r'\b\d+\s+passing\b')
FAIL_MARKER_PATTERN = re.compile(r'\b\d+\s+failing\b')
SUMMARY_PATTERN = re.compile(r'VULNERABILITY SUMMARY:\s*(.*?)(?:\n|$)')


class OutputBuffer:
    """Keeps at most `limit` bytes of combined output"""

    def __init__(self, limit: int):
        self.limit = limit
        self.chunks: List[bytes] = []
        self.size = 0
        self.truncated = False

    def append(self, chunk: bytes):
        remaining = self.limit - self.size
        if remaining <= 0:
            self.truncated = True
            return
        if len(chunk) > remaining:
            chunk = chunk[:remaining]
            self.truncated = True
        self.chunks.append(chunk)
        self.size += len(chunk)

    def text(self) -> str:
        output = b"".join(self.chunks).decode(errors="replace")
        if self.truncated:
            output += f"\n[output truncated at {self.limit} bytes]"
        return output


class ExecutionSandboxTool(BaseTool):
    """
    Tool for executing a stored attempt with the harness command

    Features:
    - Runs the test in a child process inside the Hardhat workspace
    - Bounded output buffer (stdout and stderr combined)
    - Primary timeout kills the process; a watchdog fires `watchdog_grace`
      seconds later and settles the result if the process never reports back
    - Exactly one resolution per run: the first of exit, process error or
      watchdog wins and later ones are discarded
    """

    def __init__(self, config, store: ArtifactStore):
        super().__init__(config)
        self.store = store

    def get_name(self) -> str:
        return "execution_sandbox"

    def get_description(self) -> str:
        return "Executes a generated penetration test against the running harness node"

    async def execute(self, params: Dict[str, Any]) -> ToolResult:
        """
        Args:
            params: {
                "storage_id": str - identifier of a stored attempt
                "timeout": float - primary timeout in seconds (optional)
            }
        """
        storage_id = params.get("storage_id", "")
        if not storage_id or not self.store.exists(storage_id):
            return self._create_result(False, error_message=f"Unknown artifact: {storage_id!r}")

        result = await self.run(storage_id, timeout=params.get("timeout"))
        return self._create_result(
            True,
            data={
                "exploit_success": result.success,
                "exit_code": result.exit_code,
                "timed_out": result.timed_out,
                "structured": result.structured,
                "security_implication": result.security_implication,
                "output": result.output
            },
            execution_time=result.elapsed_time
        )

    async def run(self, storage_id: str, timeout: Optional[float] = None) -> ExecutionResult:
        """Run one attempt; never raises for process-level failures"""

        timeout = timeout or self.config.execution_timeout
        artifact_path = self.store.path_for(storage_id)
        cmd = self._build_command(artifact_path)

        self.logger.info(f"🚀 Running harness command: {' '.join(cmd)}")

        loop = asyncio.get_running_loop()
        outcome = loop.create_future()
        start_time = time.time()
        buffer = OutputBuffer(self.config.max_output_bytes)
        state = {"timed_out": False}

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=self.config.workspace_path,
                env={**os.environ, **(self.config.harness_env or {})},
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT
            )
        except (OSError, ValueError) as e:
            self.logger.error(f"❌ Could not start harness process: {str(e)}")
            return self._failure(f"Error executing test: {e}", None, start_time)

        async def pump():
            try:
                while True:
                    chunk = await process.stdout.read(4096)
                    if not chunk:
                        break
                    buffer.append(chunk)
                exit_code = await process.wait()
                self._settle(outcome, self._from_exit(buffer, exit_code, state["timed_out"], timeout, start_time))
            except Exception as e:
                self._settle(outcome, self._failure(f"Error executing test: {e}\n{buffer.text()}", None, start_time))

        def on_timeout():
            if outcome.done():
                return
            state["timed_out"] = True
            self.logger.warning(f"⏰ Test exceeded {timeout}s, killing process {process.pid}")
            try:
                process.kill()
            except ProcessLookupError:
                pass

        def on_watchdog():
            settled = self._settle(outcome, self._failure(
                f"Test execution timed out after {timeout}s (watchdog; process did not exit)\n{buffer.text()}",
                None,
                start_time,
                timed_out=True
            ))
            if settled:
                self.logger.error(f"🐕 Watchdog settled run of {storage_id}; process {process.pid} may still be alive")

        pump_task = asyncio.ensure_future(pump())
        timeout_handle = loop.call_later(timeout, on_timeout)
        watchdog_handle = loop.call_later(timeout + self.config.watchdog_grace, on_watchdog)

        try:
            result = await outcome
        finally:
            timeout_handle.cancel()
            watchdog_handle.cancel()
            if not pump_task.done():
                pump_task.cancel()
                await asyncio.gather(pump_task, return_exceptions=True)
                self._release(process)

        status = "✅ Exploit succeeded" if result.success else "❌ Exploit did not succeed"
        self.logger.info(f"{status} (exit: {result.exit_code}, {result.elapsed_time:.1f}s)")
        return result

    def _settle(self, outcome: asyncio.Future, result: ExecutionResult) -> bool:
        """First writer wins; later settlements are dropped"""
        if outcome.done():
            self.logger.debug("Discarding late settlement of an already resolved run")
            return False
        outcome.set_result(result)
        return True

    def _release(self, process: asyncio.subprocess.Process):
        """Close the pipes and transport of a run that never reported back"""
        transport = getattr(process, "_transport", None)
        if transport is not None and not transport.is_closing():
            transport.close()
            self.logger.debug(f"Released transport of process {process.pid}")

    def _build_command(self, artifact_path) -> List[str]:
        try:
            artifact = os.path.relpath(artifact_path, self.config.workspace_path)
        except ValueError:
            artifact = str(artifact_path)
        return [part.replace("{artifact}", artifact) for part in self.config.harness_command]

    def _from_exit(
        self,
        buffer: OutputBuffer,
        exit_code: Optional[int],
        timed_out: bool,
        timeout: float,
        start_time: float
    ) -> ExecutionResult:
        output = buffer.text()
        if timed_out:
            return self._failure(f"Test execution timed out after {timeout}s\n{output}", exit_code, start_time, timed_out=True)

        success, structured = self._determine_success(output, exit_code)
        return ExecutionResult(
            success=success,
            output=output,
            exit_code=exit_code,
            elapsed_time=time.time() - start_time,
            structured=structured,
            security_implication=self._extract_summary(output)
        )

    def _determine_success(self, output: str, exit_code: Optional[int]):
        """
        Returns (success, structured). A structured result line decides on its
        own; otherwise exit code 0 plus either an explicit success marker or a
        passing count without a failing count.
        """
        structured = STRUCTURED_RESULT_PATTERN.findall(output)
        if structured:
            try:
                payload = json.loads(structured[-1])
                return exit_code == 0 and payload.get("exploited") is True, True
            except (ValueError, AttributeError):
                self.logger.warning("Malformed EXPLOIT_RESULT line, falling back to text markers")

        if exit_code != 0:
            return False, False

        if SUCCESS_MARKER_PATTERN.search(output):
            return True, False

        return bool(PASS_MARKER_PATTERN.search(output)) and not FAIL_MARKER_PATTERN.search(output), False

    def _extract_summary(self, output: str) -> str:
        match = SUMMARY_PATTERN.search(output)
        return match.group(1).strip() if match else ""

    def _failure(
        self,
        output: str,
        exit_code: Optional[int],
        start_time: float,
        timed_out: bool = False
    ) -> ExecutionResult:
        return ExecutionResult(
            success=False,
            output=output,
            exit_code=exit_code,
            elapsed_time=time.time() - start_time,
            timed_out=timed_out
        )

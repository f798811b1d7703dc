"""
Refinement Agent - wires the refinement components together and exposes
single-target and parallel entry points
"""

import logging
import time
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

from .adaptation import AdaptationRequester
from .classifier import FailureClassifier
from .config import Config
from .controller import CycleController
from .harness_client import HarnessClient
from .llm_client import LLMClient
from .models import (
    Attempt,
    ConcurrencyPolicy,
    Err,
    Outcome,
    ParallelRunResult,
    RefinementSession,
    SessionResult,
    StrategyTier,
    Target,
)
from .scheduler import ParallelScheduler
from .status import LoggingStatusSink, StatusSink
from .storage import ArtifactStore
from .strategy_tracker import StrategyTracker
from .tools import ArtifactValidatorTool, ContractSurfaceTool, ExecutionSandboxTool


PACKAGE_LOGGER = "exploit_refiner"


class RefinementAgent:
    """
    Main entry point for exploit-test refinement

    Sessions share the generation client, the artifact store and the harness
    but nothing else; all per-target state lives on its RefinementSession.
    """

    def __init__(
        self,
        config: Config,
        llm_client: Optional[LLMClient] = None,
        status_sink: Optional[StatusSink] = None,
        harness: Optional[HarnessClient] = None
    ):
        self.config = config
        self.logger = logging.getLogger(__name__)

        self.llm_client = llm_client or LLMClient(config)
        self.status_sink = status_sink or LoggingStatusSink()
        self.harness = harness or HarnessClient(config)
        self.store = ArtifactStore(config.get_artifact_root(), runs_dir=config.runs_dir)

        # Initialize tools
        self.tools = {
            "surface": ContractSurfaceTool(config),
            "validator": ArtifactValidatorTool(config),
            "sandbox": ExecutionSandboxTool(config, self.store),
        }

        self.tracker = StrategyTracker()
        self.classifier = FailureClassifier(self.llm_client, self.tools["surface"])
        self.adapter = AdaptationRequester(
            self.llm_client,
            self.store,
            self.tools["validator"],
            self.tools["surface"],
            self.tracker
        )
        self.controller = CycleController(
            self.tools["sandbox"],
            self.classifier,
            self.adapter,
            self.tracker,
            self.store,
            self.status_sink
        )
        self.scheduler = ParallelScheduler()

        self.logger.info(f"Refinement agent initialized (workspace: {config.workspace_path})")

    async def start_refinement(
        self,
        target: Target,
        max_cycles: Optional[int] = None,
        initial_attempt: Optional[Attempt] = None,
        seed_path: Optional[Union[str, Path]] = None,
        harness_context: Optional[str] = None,
        capture_log: bool = True
    ) -> SessionResult:
        """
        Refine one target's exploit test until it is confirmed, judged secure
        or the cycle budget runs out.

        Args:
            target: Vulnerability hypothesis to test
            max_cycles: Cycle budget (config default when None)
            initial_attempt: Already stored first attempt
            seed_path: Existing test file to use as the first attempt
            harness_context: Precomputed harness summary

        Returns:
            SessionResult with exactly one terminal outcome

        Raises:
            ValueError: If max_cycles is below 1
        """
        start_time = time.time()
        session = RefinementSession(target=target, max_cycles=self._cycle_budget(max_cycles))
        file_handler = None

        try:
            session.run_dir = self.store.setup_run_directory(target)
            if capture_log:
                file_handler = self._attach_run_log(session.run_dir)
            self.logger.info(f"Refinement run started: {session.run_dir}")
            self.logger.info(f"Target: {target.contract_name} / {target.vulnerability} ({target.severity.value})")

            self.store.save_run_metadata(session, self.config.to_dict())
            session.harness_context = harness_context if harness_context is not None else self.harness.describe()

            if initial_attempt is None:
                initial_attempt = await self._initial_attempt(session, seed_path)
                if isinstance(initial_attempt, Err):
                    result = SessionResult(
                        target_id=target.id,
                        vulnerability=target.vulnerability,
                        outcome=Outcome.ERROR,
                        explanation=f"No initial test: {initial_attempt.reason}",
                        error_message=initial_attempt.reason,
                        execution_time=time.time() - start_time,
                        cause=initial_attempt.cause
                    )
                    self.store.save_final_results(session, result)
                    return result

            return await self.controller.run(session, initial_attempt)

        except Exception as e:
            self.logger.error(f"Refinement of {target.id} failed: {str(e)}")
            result = SessionResult.from_error(target, e, time.time() - start_time)
            result.cycles = session.cycles
            result.attempts = len(session.attempts)
            self.store.save_final_results(session, result)
            return result

        finally:
            if file_handler:
                logging.getLogger(PACKAGE_LOGGER).removeHandler(file_handler)
                file_handler.close()

    async def start_parallel_refinement(
        self,
        targets: List[Target],
        policy: Optional[ConcurrencyPolicy] = None,
        max_cycles: Optional[int] = None
    ) -> ParallelRunResult:
        """Refine several targets concurrently; results come back in input order"""
        self._cycle_budget(max_cycles)
        policy = policy or ConcurrencyPolicy(stagger_interval=self.config.stagger_interval)

        run_dir = Path(self.config.runs_dir) / f"{datetime.now().strftime('%Y-%m-%d_%H-%M-%S')}_parallel"
        run_dir.mkdir(parents=True, exist_ok=True)
        file_handler = self._attach_run_log(run_dir)

        try:
            harness_context = self.harness.describe()

            async def runner(target: Target) -> SessionResult:
                return await self.start_refinement(
                    target,
                    max_cycles=max_cycles,
                    harness_context=harness_context,
                    capture_log=False
                )

            return await self.scheduler.run(targets, runner, policy)
        finally:
            logging.getLogger(PACKAGE_LOGGER).removeHandler(file_handler)
            file_handler.close()

    def _cycle_budget(self, max_cycles: Optional[int]) -> int:
        budget = self.config.max_cycles if max_cycles is None else max_cycles
        if budget < 1:
            raise ValueError(f"max_cycles must be at least 1, got {budget}")
        return budget

    async def _initial_attempt(self, session: RefinementSession, seed_path: Optional[Union[str, Path]]):
        if seed_path is None:
            generation = await self.adapter.generate_initial(session)
            return generation if isinstance(generation, Err) else generation.attempt

        content = self.store.load_seed(Path(seed_path))
        if content is None:
            return Err(reason=f"Seed test not found: {seed_path}")

        storage_id, path = self.store.write_attempt(session.target, 1, content)
        return Attempt(number=1, content=content, storage_id=storage_id, tier=StrategyTier.STANDARD, path=path)

    def _attach_run_log(self, run_dir: Path) -> logging.Handler:
        """Mirror package logging into the run directory"""
        file_handler = logging.FileHandler(run_dir / "run_log.txt")
        file_handler.setLevel(logging.DEBUG)
        formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        file_handler.setFormatter(formatter)
        logging.getLogger(PACKAGE_LOGGER).addHandler(file_handler)
        return file_handler

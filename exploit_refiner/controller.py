"""
Cycle Controller - drives one target's execute / classify / adapt loop
"""

import logging
import time
from typing import Any, Dict, Optional

from .adaptation import AdaptationRequester
from .classifier import FailureClassifier
from .models import (
    Attempt,
    Classification,
    Err,
    ExecutionResult,
    Outcome,
    RefinementSession,
    SessionResult,
)
from .status import StatusEvent, StatusPhase, StatusSink, notify
from .storage import ArtifactStore
from .strategy_tracker import StrategyTracker
from .tools.execution_tool import ExecutionSandboxTool


class CycleController:
    """
    Runs at most `session.max_cycles` cycles. Stops on the first confirmed
    exploit or secure classification; budget exhaustion is Inconclusive and a
    failed generation request is Error.
    """

    def __init__(
        self,
        sandbox: ExecutionSandboxTool,
        classifier: FailureClassifier,
        adapter: AdaptationRequester,
        tracker: StrategyTracker,
        store: ArtifactStore,
        status_sink: Optional[StatusSink] = None
    ):
        self.sandbox = sandbox
        self.classifier = classifier
        self.adapter = adapter
        self.tracker = tracker
        self.store = store
        self.status_sink = status_sink
        self.logger = logging.getLogger(__name__)

    async def run(self, session: RefinementSession, initial_attempt: Attempt) -> SessionResult:
        start_time = time.time()
        target = session.target
        cause = None
        security_implication = ""

        self._emit(session, StatusPhase.STARTED, f"Refining test for {target.vulnerability}")

        session.attempts.append(initial_attempt)
        self.tracker.record(session, initial_attempt)

        for cycle in range(1, session.max_cycles + 1):
            session.cycles = cycle
            attempt = session.previous_attempt
            self._emit(session, StatusPhase.CYCLE_STARTED, f"Running attempt {attempt.number}")
            self.logger.info(f"\n{'=' * 20} {target.id}: CYCLE {cycle}/{session.max_cycles} {'=' * 20}")

            result = await self.sandbox.run(attempt.storage_id)
            session.executions.append(result)

            if result.success:
                security_implication = result.security_implication
                self._finish(session, Outcome.EXPLOIT_CONFIRMED, self._exploit_explanation(result, attempt))
                self._emit(session, StatusPhase.EXPLOIT_SUCCESS, session.explanation)
                self._save_cycle(session, cycle, attempt, result, None)
                break

            classification = await self.classifier.classify(result, target.contract_source, target.vulnerability)
            session.classifications.append(classification)
            self._save_cycle(session, cycle, attempt, result, classification)

            if classification.is_secure:
                self._finish(session, Outcome.CONTRACT_SECURE, classification.explanation)
                self._emit(session, StatusPhase.SECURE, classification.explanation)
                break

            if cycle == session.max_cycles:
                break

            self._emit(session, StatusPhase.REFINING, classification.explanation)
            generation = await self.adapter.adapt(session, result, classification)

            if isinstance(generation, Err):
                cause = generation.cause
                self._finish(session, Outcome.ERROR, f"Refinement stopped: {generation.reason}")
                break

            session.attempts.append(generation.attempt)
            self.tracker.record(session, generation.attempt)

        if session.outcome is None:
            last = session.classifications[-1].explanation if session.classifications else "no classification"
            self._finish(
                session,
                Outcome.INCONCLUSIVE,
                f"No conclusive result after {session.cycles} cycles; last failure: {last}"
            )

        final = session.previous_attempt
        session_result = SessionResult(
            target_id=target.id,
            vulnerability=target.vulnerability,
            outcome=session.outcome,
            explanation=session.explanation,
            cycles=session.cycles,
            attempts=len(session.attempts),
            final_artifact=str(final.path) if final and final.path else (final.storage_id if final else None),
            security_implication=security_implication,
            error_message=session.explanation if session.outcome == Outcome.ERROR else None,
            execution_time=time.time() - start_time,
            cause=cause
        )

        self.store.save_final_results(session, session_result)
        self._emit(session, StatusPhase.COMPLETE, f"{session.outcome.value}: {session.explanation}")
        return session_result

    def _finish(self, session: RefinementSession, outcome: Outcome, explanation: str):
        session.outcome = outcome
        session.explanation = explanation
        self.logger.info(f"🏁 {session.target.id}: {outcome.value} after {session.cycles} cycle(s)")

    def _exploit_explanation(self, result: ExecutionResult, attempt: Attempt) -> str:
        explanation = f"Exploit confirmed by attempt {attempt.number}"
        if result.security_implication:
            explanation += f": {result.security_implication}"
        return explanation

    def _save_cycle(
        self,
        session: RefinementSession,
        cycle: int,
        attempt: Attempt,
        result: ExecutionResult,
        classification: Optional[Classification]
    ):
        record: Dict[str, Any] = {
            "attempt": attempt.number,
            "storage_id": attempt.storage_id,
            "tier": attempt.tier.value,
            "repeated_strategy": attempt.repeated_strategy,
            "validation_warnings": attempt.validation_warnings,
            "repairs": attempt.repairs,
            "operation_diff": self._operation_diff(session, attempt),
            "execution": {
                "success": result.success,
                "exit_code": result.exit_code,
                "timed_out": result.timed_out,
                "structured": result.structured,
                "elapsed_time": result.elapsed_time,
            },
        }
        if attempt.fingerprint:
            record["fingerprint"] = {
                "signature": attempt.fingerprint.signature,
                "operations": list(attempt.fingerprint.operations),
                "transfers_value": attempt.fingerprint.transfers_value,
                "branching": attempt.fingerprint.branching,
            }
        if classification:
            record["classification"] = {
                "is_secure": classification.is_secure,
                "failure_kind": classification.failure_kind.value,
                "explanation": classification.explanation,
                "suggested_fix": classification.suggested_fix,
                "source": classification.source,
                "valid_operations": classification.valid_operation_names,
            }
        self.store.save_cycle_record(session, cycle, record)

    def _operation_diff(self, session: RefinementSession, attempt: Attempt) -> Dict[str, Any]:
        index = session.attempts.index(attempt)
        current = list(attempt.fingerprint.operations) if attempt.fingerprint else []
        if index == 0 or not session.attempts[index - 1].fingerprint:
            return {"added": current, "removed": []}
        previous = list(session.attempts[index - 1].fingerprint.operations)
        return {
            "added": [name for name in current if name not in previous],
            "removed": [name for name in previous if name not in current],
        }

    def _emit(self, session: RefinementSession, phase: StatusPhase, message: str):
        notify(self.status_sink, StatusEvent(
            target_id=session.target.id,
            phase=phase,
            cycle=session.cycles,
            message=message
        ))

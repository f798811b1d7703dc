"""
Parallel Scheduler - fans refinement sessions out across targets
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, List, Optional

from .models import ConcurrencyPolicy, ParallelRunResult, SessionResult, Target


SessionRunner = Callable[[Target], Awaitable[SessionResult]]


class ParallelScheduler:
    """
    Starts one session per target, the i-th after `policy.delay_for(i)`
    seconds. Each session writes only its own slot; an exception in one
    session becomes an Error result for that target and never reaches the
    others.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    async def run(
        self,
        targets: List[Target],
        runner: SessionRunner,
        policy: Optional[ConcurrencyPolicy] = None
    ) -> ParallelRunResult:
        policy = policy or ConcurrencyPolicy()
        start_time = time.time()
        results: List[Optional[SessionResult]] = [None] * len(targets)

        self.logger.info(f"🚀 Starting {len(targets)} sessions (stagger: {policy.stagger_interval}s)")

        async def run_slot(index: int, target: Target):
            delay = policy.delay_for(index)
            if delay > 0:
                await asyncio.sleep(delay)

            slot_start = time.time()
            try:
                results[index] = await runner(target)
            except Exception as e:
                self.logger.error(f"❌ Session for {target.id} failed: {str(e)}")
                results[index] = SessionResult.from_error(target, e, time.time() - slot_start)

        await asyncio.gather(*(run_slot(index, target) for index, target in enumerate(targets)))

        run_result = ParallelRunResult(results=results, policy=policy, execution_time=time.time() - start_time)
        self.logger.info(
            f"🏁 Parallel run finished in {run_result.execution_time:.1f}s: "
            + ", ".join(f"{result.target_id}={result.outcome.value}" for result in results)
        )
        return run_result

"""
One-way phase notifications for observers of a refinement session
"""

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class StatusPhase(Enum):
    STARTED = "started"
    CYCLE_STARTED = "cycle_started"
    SECURE = "secure"
    REFINING = "refining"
    EXPLOIT_SUCCESS = "exploit_success"
    COMPLETE = "complete"


@dataclass(frozen=True)
class StatusEvent:
    target_id: str
    phase: StatusPhase
    cycle: int = 0
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())


class StatusSink(ABC):
    """Receives events; may be sync or async. The loop never waits on it."""

    @abstractmethod
    def publish(self, event: StatusEvent):
        pass


class LoggingStatusSink(StatusSink):

    ICONS = {
        StatusPhase.STARTED: "🎯",
        StatusPhase.CYCLE_STARTED: "🔄",
        StatusPhase.SECURE: "🛡️",
        StatusPhase.REFINING: "🛠️",
        StatusPhase.EXPLOIT_SUCCESS: "💥",
        StatusPhase.COMPLETE: "🏁",
    }

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def publish(self, event: StatusEvent):
        cycle = f" [cycle {event.cycle}]" if event.cycle else ""
        self.logger.info(f"{self.ICONS[event.phase]} {event.target_id}{cycle} {event.phase.value}: {event.message}")


_logger = logging.getLogger(__name__)

# Pending async deliveries; held until done so they are not garbage-collected
_pending_deliveries = set()


def notify(sink: Optional[StatusSink], event: StatusEvent):
    """Fire-and-forget delivery; sink errors are logged and dropped"""
    if sink is None:
        return

    try:
        outcome = sink.publish(event)
    except Exception as e:
        _logger.warning(f"Status sink failed for {event.phase.value}: {e}")
        return

    if inspect.isawaitable(outcome):
        task = asyncio.ensure_future(outcome)
        _pending_deliveries.add(task)
        task.add_done_callback(_delivery_done)


def _delivery_done(task: asyncio.Future):
    _pending_deliveries.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        _logger.warning(f"Status sink failed: {error}")

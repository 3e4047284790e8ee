# prunarr/services/retention/tasks.py
"""
Scheduler-facing entry points.

The periodic trigger lives outside this package and calls these coroutines.
Each task runs inside log_run() for correlated logs, refuses to overlap with
itself, and reports a TaskResult instead of raising.
"""

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field, is_dataclass
from datetime import datetime
from typing import Any, Optional

from prunarr.logging_config import log_run
from prunarr.services.retention.engine import RuleEngine
from prunarr.services.retention.processor import QueueProcessor
from prunarr.services.retention.types import utcnow

logger = logging.getLogger(__name__)

RULE_EVALUATION = "rule_evaluation"
QUEUE_SWEEP = "queue_sweep"
DELETION_REMINDERS = "deletion_reminders"

# Names of tasks currently running in this process
_running_tasks: set[str] = set()


@dataclass
class TaskResult:
    """Outcome of one scheduled task run."""
    success: bool
    task_name: str
    started_at: datetime
    completed_at: datetime
    duration_ms: int = 0
    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


def is_running(task_name: str) -> bool:
    return task_name in _running_tasks


async def _run_task(task_name: str, body: Callable[[], Awaitable[tuple[str, dict[str, Any]]]]) -> TaskResult:
    started_at = utcnow()
    start_time = time.time()

    if task_name in _running_tasks:
        logger.warning(f"Task {task_name} is already running, skipping", extra={"task": task_name})
        return TaskResult(
            success=False,
            task_name=task_name,
            started_at=started_at,
            completed_at=utcnow(),
            message=f"Task {task_name} is already running",
        )

    _running_tasks.add(task_name)
    try:
        with log_run(task_name):
            message, data = await body()
        return TaskResult(
            success=True,
            task_name=task_name,
            started_at=started_at,
            completed_at=utcnow(),
            duration_ms=int((time.time() - start_time) * 1000),
            message=message,
            data=data,
        )
    except Exception as e:
        # log_run already logged the failure with its traceback
        return TaskResult(
            success=False,
            task_name=task_name,
            started_at=started_at,
            completed_at=utcnow(),
            duration_ms=int((time.time() - start_time) * 1000),
            message=f"Task {task_name} failed",
            error=str(e),
        )
    finally:
        _running_tasks.discard(task_name)


def _summary_data(summary: Any) -> dict[str, Any]:
    data = asdict(summary) if is_dataclass(summary) else dict(summary)
    data.pop("results", None)
    data.pop("outcomes", None)
    return data


async def run_rule_evaluation(engine: RuleEngine, now: Optional[datetime] = None) -> TaskResult:
    """Evaluate rules and queue matched items."""

    async def body():
        summary = engine.run(now=now)
        message = (
            f"Evaluated {summary.evaluated} items: {summary.flagged} flagged, "
            f"{summary.protected} protected, {summary.queued} queued"
        )
        return message, _summary_data(summary)

    return await _run_task(RULE_EVALUATION, body)


async def run_queue_sweep(
    processor: QueueProcessor,
    now: Optional[datetime] = None,
    dry_run: bool = False,
) -> TaskResult:
    """Delete every queued item whose grace period has elapsed."""

    async def body():
        sweep = await processor.process_queue(now=now, dry_run=dry_run)
        message = f"Processed {sweep.processed} items: {sweep.deleted} deleted, {sweep.failed} failed"
        return message, _summary_data(sweep)

    return await _run_task(QUEUE_SWEEP, body)


async def run_deletion_reminders(processor: QueueProcessor, now: Optional[datetime] = None) -> TaskResult:
    """Send reminders for items about to be deleted."""

    async def body():
        sent = processor.send_deletion_reminders(now=now)
        return f"Sent {sent} reminder notifications", {"reminders_sent": sent}

    return await _run_task(DELETION_REMINDERS, body)

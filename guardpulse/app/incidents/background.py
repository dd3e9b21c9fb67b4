"""
background.py — Detached task runner for latency-critical endpoints.

The thrown-away and fake-shutdown endpoints must acknowledge the device
immediately; guardian notification (seconds, when providers are slow)
runs after the response on a task submitted here.

    endpoint ──► persist incident ──► runner.submit(dispatch) ──► 202 response
                                            │
                                            └─ asyncio.create_task
                                                  ├─ ok      → DEBUG log
                                                  └─ raises  → ERROR log (never re-raised)

Tasks stay referenced in a set until they finish. ``drain()`` waits for
the stragglers at shutdown.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Dict, List, Optional, Set

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    """Status of a background job."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class JobRecord:
    task_id: str
    name: str
    status: JobStatus = JobStatus.RUNNING
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "name": self.name,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error": self.error,
        }


class AlertTaskRunner:
    """Fire-and-forget executor with an error boundary that only logs."""

    def __init__(self, history_limit: int = 200):
        self._tasks: Set[asyncio.Task] = set()
        self._jobs: Dict[str, JobRecord] = {}
        self._history_limit = history_limit

    def _generate_task_id(self) -> str:
        return f"job_{uuid.uuid4().hex[:12]}"

    def submit(self, coro: Awaitable[Any], *, name: str = "alert-dispatch") -> str:
        """Schedule ``coro`` on the running loop and return its task id."""
        task_id = self._generate_task_id()
        record = JobRecord(task_id=task_id, name=name)
        self._remember(record)

        async def run_job() -> None:
            try:
                await coro
                record.status = JobStatus.COMPLETED
                logger.debug("Background job %s (%s) completed", task_id, name)
            except Exception as e:
                record.status = JobStatus.FAILED
                record.error = str(e) or type(e).__name__
                logger.exception("Background job %s (%s) failed", task_id, name)
            finally:
                record.completed_at = datetime.now(timezone.utc)

        task = asyncio.create_task(run_job(), name=f"{name}:{task_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task_id

    def _remember(self, record: JobRecord) -> None:
        self._jobs[record.task_id] = record
        while len(self._jobs) > self._history_limit:
            oldest = next(iter(self._jobs))
            if self._jobs[oldest].status == JobStatus.RUNNING:
                break
            del self._jobs[oldest]

    def get_job(self, task_id: str) -> Optional[JobRecord]:
        return self._jobs.get(task_id)

    def list_jobs(self, status: Optional[JobStatus] = None) -> List[JobRecord]:
        jobs = list(self._jobs.values())
        if status is not None:
            jobs = [j for j in jobs if j.status == status]
        return jobs

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for outstanding jobs; cancel whatever is left after ``timeout``."""
        if not self._tasks:
            return
        logger.info("Draining %d background alert jobs", len(self._tasks))
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning("Cancelled %d background jobs still running at shutdown", len(pending))
            await asyncio.gather(*pending, return_exceptions=True)

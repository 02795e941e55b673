"""Background job queue."""

import asyncio
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from loguru import logger

JobStatus = Literal["pending", "running", "completed", "failed", "cancelled"]
JobType = Literal["droid_exec", "nova_mission"]

TERMINAL_STATUSES = ("completed", "failed", "cancelled")


@dataclass
class Job:
    """A unit of long-running Droid work."""
    job_type: str
    name: str
    payload: dict[str, Any]
    conversation_id: str
    session_key: str
    priority: int = 50
    timeout_seconds: int = 600
    metadata: dict[str, Any] = field(default_factory=dict)
    agent: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: JobStatus = "pending"
    result: dict[str, Any] | None = None
    error: str | None = None
    attempts: int = 0
    created_at: datetime = field(default_factory=datetime.now)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def short_id(self) -> str:
        return self.id[:8]

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def duration_seconds(self) -> float | None:
        if not self.started_at:
            return None
        end = self.completed_at or datetime.now()
        return (end - self.started_at).total_seconds()


class JobQueue(ABC):
    """Storage interface for jobs. Implementations must be safe to share between tasks."""

    @abstractmethod
    async def create_job(self, job: Job) -> Job:
        pass

    @abstractmethod
    async def get_job(self, job_id: str) -> Job | None:
        """Look up a job by full id or unique id prefix."""
        pass

    @abstractmethod
    async def claim_next(self, job_types: list[str] | None = None) -> Job | None:
        """Move the highest-priority pending job to running and return it."""
        pass

    @abstractmethod
    async def complete_job(self, job_id: str, result: dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def fail_job(self, job_id: str, error: str) -> None:
        pass

    @abstractmethod
    async def cancel_job(self, job_id: str) -> bool:
        pass

    @abstractmethod
    async def list_by_conversation(self, conversation_id: str, limit: int = 10) -> list[Job]:
        pass

    @abstractmethod
    async def stats(self) -> dict[str, int]:
        pass


class InMemoryJobQueue(JobQueue):
    """
    Process-local job queue.

    Ordering is priority descending, then creation order. Jobs are lost
    on restart.
    """

    def __init__(self):
        self._jobs: dict[str, Job] = {}
        self._order: list[str] = []
        self._lock = asyncio.Lock()

    async def create_job(self, job: Job) -> Job:
        async with self._lock:
            self._jobs[job.id] = job
            self._order.append(job.id)
        logger.info(f"Queued job {job.short_id} ({job.job_type}, priority {job.priority})")
        return job

    def _resolve(self, job_id: str) -> Job | None:
        if job_id in self._jobs:
            return self._jobs[job_id]
        matches = [j for jid, j in self._jobs.items() if jid.startswith(job_id)]
        return matches[0] if len(matches) == 1 else None

    async def get_job(self, job_id: str) -> Job | None:
        if not job_id:
            return None
        async with self._lock:
            return self._resolve(job_id)

    async def claim_next(self, job_types: list[str] | None = None) -> Job | None:
        async with self._lock:
            pending = [
                (position, self._jobs[jid])
                for position, jid in enumerate(self._order)
                if self._jobs[jid].status == "pending"
                and (not job_types or self._jobs[jid].job_type in job_types)
            ]
            if not pending:
                return None
            _, job = min(pending, key=lambda item: (-item[1].priority, item[0]))
            job.status = "running"
            job.started_at = datetime.now()
            job.attempts += 1
            return job

    async def complete_job(self, job_id: str, result: dict[str, Any]) -> None:
        async with self._lock:
            job = self._resolve(job_id)
            if job is None or job.status == "cancelled":
                return
            job.status = "completed"
            job.result = result
            job.completed_at = datetime.now()

    async def fail_job(self, job_id: str, error: str) -> None:
        async with self._lock:
            job = self._resolve(job_id)
            if job is None or job.status == "cancelled":
                return
            job.status = "failed"
            job.error = error
            job.completed_at = datetime.now()

    async def cancel_job(self, job_id: str) -> bool:
        async with self._lock:
            job = self._resolve(job_id)
            if job is None or job.is_terminal:
                return False
            job.status = "cancelled"
            job.completed_at = datetime.now()
        logger.info(f"Cancelled job {job.short_id}")
        return True

    async def list_by_conversation(self, conversation_id: str, limit: int = 10) -> list[Job]:
        async with self._lock:
            jobs = [j for j in self._jobs.values() if j.conversation_id == conversation_id]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return jobs[:limit]

    async def stats(self) -> dict[str, int]:
        counts = {status: 0 for status in ("pending", "running", "completed", "failed", "cancelled")}
        async with self._lock:
            for job in self._jobs.values():
                counts[job.status] += 1
        return counts

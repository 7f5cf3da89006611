"""
Timelock Module for Governance System

Durable due-at records for deferred execution of passed proposals. Jobs are
kept in the governance store, so a restarted engine over a durable store
picks up whatever was still pending.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from .models import JobStatus, ScheduledExecution
from .storage import GovernanceStore

logger = logging.getLogger(__name__)


class ExecutionScheduler:
    """
    Scheduler for delayed proposal execution.

    Only records and hands out jobs; running them is the engine's job.
    """

    def __init__(self, store: GovernanceStore, clock: Callable[[], datetime]):
        self.store = store
        self._clock = clock
        pending = self.store.list_jobs(JobStatus.PENDING)
        logger.info("ExecutionScheduler initialized with %d pending jobs", len(pending))

    def schedule(self, proposal_id: str, delay_seconds: float) -> ScheduledExecution:
        """
        Persist a job that becomes due after `delay_seconds`.

        Returns:
            The scheduled job record
        """
        now = self._clock()
        job = ScheduledExecution(
            id=f"job_{uuid.uuid4().hex[:16]}",
            proposal_id=proposal_id,
            due_at=now + timedelta(seconds=delay_seconds),
            created_at=now,
        )
        self.store.put_job(job)
        logger.info("Scheduled execution %s for proposal %s at %s",
                    job.id, proposal_id, job.due_at.isoformat())
        return job

    def get_job(self, job_id: str) -> Optional[ScheduledExecution]:
        return self.store.get_job(job_id)

    def pending_jobs(self) -> List[ScheduledExecution]:
        return self.store.list_jobs(JobStatus.PENDING)

    def due_jobs(self, now: Optional[datetime] = None) -> List[ScheduledExecution]:
        """Pending jobs whose due time has passed, oldest first"""
        now = now or self._clock()
        return [job for job in self.pending_jobs() if job.is_due(now)]

    def mark_completed(self, job: ScheduledExecution) -> None:
        job.attempts += 1
        job.status = JobStatus.COMPLETED
        job.last_error = None
        self.store.put_job(job)
        logger.info("Execution job %s completed", job.id)

    def mark_failed(self, job: ScheduledExecution, error: Optional[str]) -> None:
        job.attempts += 1
        job.status = JobStatus.FAILED
        job.last_error = error
        self.store.put_job(job)
        logger.warning("Execution job %s failed: %s", job.id, error)

    def cancel(self, job_id: str) -> bool:
        """Cancel a pending job; returns False if it was not pending"""
        job = self.store.get_job(job_id)
        if not job or job.status != JobStatus.PENDING:
            return False
        job.status = JobStatus.CANCELED
        self.store.put_job(job)
        logger.info("Execution job %s canceled", job_id)
        return True

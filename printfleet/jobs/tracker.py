"""
In-memory job bookkeeping.

Jobs are tracked while in flight and kept in a bounded history afterwards.
No persistence: history is lost on restart.
"""

import asyncio
import logging
from collections import deque
from datetime import datetime
from typing import Optional

from printfleet.printers.base import ContentKind, JobStatus, PrintJob
from printfleet.printers.errors import ErrorCode, JobFault

logger = logging.getLogger(__name__)


class JobTracker:
    """
    Owns every status transition of every PrintJob.

    A terminal status (completed, failed, cancelled) is never overwritten:
    late transitions are ignored and reported as False.
    """

    def __init__(self, history_size: int = 200):
        self._active: dict[str, PrintJob] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._history: deque[PrintJob] = deque(maxlen=history_size)

    def create(self, printer_id: str, content_kind: ContentKind = ContentKind.RAW) -> PrintJob:
        job = PrintJob(printer_id=printer_id, content_kind=content_kind)
        self._active[job.id] = job
        logger.debug(f"Job {job.id} created for {printer_id}")
        return job

    def attach_task(self, job_id: str, task: asyncio.Task) -> None:
        self._tasks[job_id] = task

    def detach_task(self, job_id: str) -> None:
        self._tasks.pop(job_id, None)

    def mark_in_progress(self, job: PrintJob) -> bool:
        if job.status != JobStatus.PENDING:
            return False
        job.status = JobStatus.IN_PROGRESS
        job.started_at = datetime.now()
        return True

    def complete(
        self,
        job: PrintJob,
        retry_count: int = 0,
        verified: bool = True,
        notes: Optional[list[str]] = None,
    ) -> bool:
        if job.is_terminal:
            return False
        job.retry_count = retry_count
        job.delivery_verified = verified
        job.notes.extend(notes or [])
        self._finish(job, JobStatus.COMPLETED)
        logger.info(f"Job {job.id} completed on {job.printer_id}")
        return True

    def fail(self, job: PrintJob, code: str, message: str, retry_count: int = 0) -> bool:
        if job.is_terminal:
            return False
        job.error_code = code
        job.error_message = message
        job.retry_count = retry_count
        self._finish(job, JobStatus.FAILED)
        logger.warning(f"Job {job.id} failed on {job.printer_id}: [{code}] {message}")
        return True

    def mark_cancelled(self, job: PrintJob) -> bool:
        if job.is_terminal:
            return False
        job.error_code = ErrorCode.CANCELLED
        job.error_message = "Job cancelled"
        self._finish(job, JobStatus.CANCELLED)
        logger.info(f"Job {job.id} cancelled")
        return True

    def _finish(self, job: PrintJob, status: JobStatus) -> None:
        job.status = status
        job.completed_at = datetime.now()
        self._active.pop(job.id, None)
        self._history.append(job)

    def _lookup(self, job_id: str) -> Optional[PrintJob]:
        job = self._active.get(job_id)
        if job is not None:
            return job
        for finished in reversed(self._history):
            if finished.id == job_id:
                return finished
        return None

    def get(self, job_id: str) -> Optional[PrintJob]:
        """Snapshot of a job, or None if unknown or aged out of history."""
        job = self._lookup(job_id)
        return job.snapshot() if job else None

    def active(self) -> list[PrintJob]:
        return [j.snapshot() for j in self._active.values()]

    def history(self, limit: int = 10) -> list[PrintJob]:
        """Most recent finished jobs, newest last."""
        if limit <= 0:
            return []
        return [j.snapshot() for j in list(self._history)[-limit:]]

    async def cancel(self, job_id: str) -> PrintJob:
        """
        Cancel a pending or in-flight job.

        Raises:
            JobFault: JOB_NOT_FOUND for unknown ids, INVALID_STATUS for
                jobs that already finished (nothing is changed)
        """
        job = self._lookup(job_id)
        if job is None:
            raise JobFault(f"Job not found: {job_id}", ErrorCode.JOB_NOT_FOUND)
        if job.is_terminal:
            raise JobFault(
                f"Cannot cancel job {job_id}: already {job.status.value}",
                ErrorCode.INVALID_STATUS,
            )

        self.mark_cancelled(job)

        task = self._tasks.get(job_id)
        if task is not None and not task.done():
            task.cancel()

        return job.snapshot()

import asyncio
import logging
from typing import Optional

from printfleet.connections.manager import ConnectionManager
from printfleet.printers.base import ContentKind, JobStatus, PrintJob, PrinterDevice
from printfleet.printers.errors import ErrorCode

from .tracker import JobTracker

logger = logging.getLogger(__name__)

UNVERIFIED_NOTE = "delivery unverified: USB device never reported ready, data was sent directly"


class PrintExecutor:
    """
    Runs one print job against one printer.

    `execute` always returns the finished job. Transport faults become a
    failed status with a stable error code; nothing is raised except the
    caller's own cancellation.
    """

    def __init__(self, connections: ConnectionManager, tracker: JobTracker):
        self._connections = connections
        self._tracker = tracker

    async def execute(
        self,
        printer: PrinterDevice,
        payload: bytes,
        auxiliary: Optional[bytes] = None,
        job: Optional[PrintJob] = None,
        content_kind: ContentKind = ContentKind.RAW,
    ) -> PrintJob:
        if job is None:
            job = self._tracker.create(printer.id, content_kind)

        # Cancelled while still pending
        if job.is_terminal:
            return job.snapshot()

        self._tracker.mark_in_progress(job)
        task = asyncio.ensure_future(self._deliver(printer, payload, auxiliary, job))
        self._tracker.attach_task(job.id, task)

        try:
            await task
        except asyncio.CancelledError:
            if job.status != JobStatus.CANCELLED:
                # The caller was cancelled, not the job
                self._tracker.mark_cancelled(job)
                raise
        except Exception as e:
            logger.exception(f"Unexpected error while printing job {job.id}")
            self._tracker.fail(job, ErrorCode.INTERNAL_ERROR, f"Unexpected error: {e}")
        finally:
            self._tracker.detach_task(job.id)

        return job.snapshot()

    async def _deliver(
        self,
        printer: PrinterDevice,
        payload: bytes,
        auxiliary: Optional[bytes],
        job: PrintJob,
    ) -> None:
        logger.info(f"Printing job {job.id} on {printer.id} ({printer.address.formatted}, {len(payload)} bytes)")
        outcome = await self._connections.send(printer, payload)

        if not outcome.ok:
            self._tracker.fail(job, outcome.error.code, outcome.error.message, outcome.retry_count)
            return

        notes = []
        if not outcome.verified:
            notes.append(UNVERIFIED_NOTE)
        # The primary payload is out; nothing after this point can undo that
        self._tracker.complete(job, retry_count=outcome.retry_count, verified=outcome.verified, notes=notes)

        if auxiliary:
            aux = await self._connections.send(printer, auxiliary)
            if not aux.ok:
                logger.warning(f"Auxiliary command for job {job.id} failed: {aux.error.message}")
                job.notes.append(f"cash drawer command failed: {aux.error.message}")

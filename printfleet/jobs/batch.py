"""
Batch orchestrator: one content, many printers.

Jobs run concurrently and each finishes on its own; a failing printer never
affects the others. The result is aggregated only after every job reached a
terminal status.
"""

import asyncio
import logging
import time
from datetime import timedelta

from printfleet.content import PrintContent, RawContent
from printfleet.printers.base import BatchPrintResult, PrintJob, PrinterDevice
from printfleet.printers.errors import BatchRequestError, ErrorCode, ProtocolFault
from printfleet.protocol import encode_content
from printfleet.protocol.escpos import DEFAULT_WIDTH
from printfleet.protocol.tspl import DEFAULT_WRAP_WIDTH

from .executor import PrintExecutor
from .tracker import JobTracker

logger = logging.getLogger(__name__)


class BatchOrchestrator:
    def __init__(
        self,
        executor: PrintExecutor,
        tracker: JobTracker,
        receipt_width: int = DEFAULT_WIDTH,
        wrap_width: int = DEFAULT_WRAP_WIDTH,
    ):
        self._executor = executor
        self._tracker = tracker
        self.receipt_width = receipt_width
        self.wrap_width = wrap_width

    async def print_to_many(self, printers: list[PrinterDevice], content: PrintContent) -> BatchPrintResult:
        """
        Print the same content on every printer in parallel.

        Raises:
            BatchRequestError: no printers were given
        """
        if not printers:
            raise BatchRequestError("At least one printer must be selected")

        started = time.monotonic()
        jobs = [self._tracker.create(p.id, content.kind) for p in printers]

        try:
            payload = encode_content(content, self.receipt_width, self.wrap_width)
        except ProtocolFault as e:
            logger.warning(f"Batch content rejected: {e.message}")
            for job in jobs:
                self._tracker.fail(job, e.code, e.message)
            return self._result(jobs, started)

        runs = []
        run_jobs: list[PrintJob] = []
        for printer, job in zip(printers, jobs):
            document_type = content.document_type
            if document_type is not None and not printer.supports(document_type):
                self._tracker.fail(
                    job,
                    ErrorCode.UNSUPPORTED_CONTENT,
                    f"Printer '{printer.name}' does not accept {document_type.value} jobs",
                )
                continue
            runs.append(self._executor.execute(printer, payload.primary, auxiliary=payload.auxiliary, job=job))
            run_jobs.append(job)

        results = await asyncio.gather(*runs, return_exceptions=True)

        for job, result in zip(run_jobs, results):
            if isinstance(result, BaseException):
                logger.error(f"Job {job.id} ended with {result!r}")
                self._tracker.fail(job, ErrorCode.INTERNAL_ERROR, f"Unexpected error: {result!r}")

        return self._result(jobs, started)

    async def print_raw_to_many(self, printers: list[PrinterDevice], data: bytes) -> BatchPrintResult:
        return await self.print_to_many(printers, RawContent(data))

    def _result(self, jobs: list[PrintJob], started: float) -> BatchPrintResult:
        result = BatchPrintResult.from_jobs(
            [j.snapshot() for j in jobs],
            timedelta(seconds=time.monotonic() - started),
        )
        logger.info(
            f"Batch finished: {result.success_count}/{len(jobs)} succeeded, "
            f"{result.failure_count} failed in {int(result.total_duration.total_seconds() * 1000)}ms"
        )
        return result

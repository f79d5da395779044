"""
Relay Orchestrator - fixed pool of worker slots pulling jobs from one shared cursor.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from relay_agent.config import Settings
from relay_agent.core.events.event_bus import DomainEventBus
from relay_agent.core.events.job_events import (
    JobCompletedEvent,
    JobFailedEvent,
    JobProgressEvent,
    JobStartedEvent,
    RunCompletedEvent,
    RunStartedEvent,
)
from relay_agent.models import (
    FailureKind,
    Job,
    JobFailure,
    JobResult,
    RunState,
    RunSummary,
    WorkerState,
)
from relay_agent.services.consumer.isolation import (
    DispatchHandle,
    FailureMessage,
    IsolationBoundary,
    ProgressMessage,
    SuccessMessage,
)
from relay_agent.services.ledger.progress_ledger import ProgressLedgerService


class JobCursor:
    """Monotonic cursor over the unprocessed jobs. claim() never awaits, so it is atomic on the loop."""

    def __init__(self, jobs: Sequence[Job]):
        self._jobs: List[Job] = list(jobs)
        self._position = 0

    @property
    def total(self) -> int:
        return len(self._jobs)

    @property
    def remaining(self) -> int:
        return len(self._jobs) - self._position

    def claim(self) -> Optional[Tuple[int, Job]]:
        """Return (1-based position, job) for the next unclaimed job, or None when exhausted."""
        if self._position >= len(self._jobs):
            return None
        job = self._jobs[self._position]
        self._position += 1
        return self._position, job


@dataclass
class WorkerSlot:
    worker_id: str
    state: WorkerState = WorkerState.IDLE
    current_job: Optional[int] = None
    jobs_handled: int = 0


class RelayOrchestrator:
    def __init__(
        self,
        settings: Settings,
        jobs: Sequence[Job],
        ledger: ProgressLedgerService,
        boundary: IsolationBoundary,
        event_bus: DomainEventBus,
        worker_count: Optional[int] = None,
    ):
        self.settings = settings
        self.jobs: List[Job] = list(jobs)
        self.ledger = ledger
        self.boundary = boundary
        self.event_bus = event_bus
        self.worker_count = max(1, worker_count or settings.max_workers)

        self.state = RunState.INITIALIZING
        self.slots: List[WorkerSlot] = []
        self._cursor: Optional[JobCursor] = None
        self._shutdown_requested = False
        self._in_flight: Dict[int, DispatchHandle] = {}

        # Per-run statistics (informational; the ledger owns the durable counters)
        self._succeeded = 0
        self._skipped = 0
        self._failed = 0

        logging.info(f"RelayOrchestrator initialiseret med {self.worker_count} workers")

    def request_shutdown(self) -> None:
        """Stop claiming new jobs. In-flight jobs run to their natural outcome."""
        if not self._shutdown_requested:
            logging.info("Shutdown requested - letting in-flight jobs finish")
        self._shutdown_requested = True

    def abort_in_flight(self) -> int:
        """
        Stop claiming and cancel every in-flight unit.

        Each cancelled unit settles as a WORKER_FAULT failure through the
        isolation boundary, so run() still finalizes the ledger normally.

        Returns:
            Number of units that were cancelled.
        """
        self._shutdown_requested = True
        cancelled = 0
        for handle in list(self._in_flight.values()):
            if handle.task is not None and not handle.task.done():
                handle.task.cancel()
                cancelled += 1
        logging.warning(f"Aborting {cancelled} in-flight jobs")
        return cancelled

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_requested

    @property
    def in_flight(self) -> List[int]:
        return list(self._in_flight)

    def unprocessed_jobs(self) -> List[Job]:
        completed = self.ledger.completed_ids()
        return [job for job in self.jobs if job.index not in completed]

    async def run(self) -> RunSummary:
        """
        Run every unprocessed job to a terminal outcome and return the summary.

        Raises:
            LedgerIOFailure: the ledger could not be loaded or created.
        """
        self.state = RunState.INITIALIZING
        started = time.monotonic()

        await self.ledger.initialize(job.index for job in self.jobs)
        await self.ledger.start()

        try:
            unprocessed = self.unprocessed_jobs()
            self._cursor = JobCursor(unprocessed)

            await self.event_bus.publish(
                RunStartedEvent(unprocessed=len(unprocessed), worker_count=self.worker_count)
            )
            if unprocessed:
                self.state = RunState.RUNNING
                await self._run_workers()

            self.state = RunState.DRAINING
            final = await self.ledger.finalize()
        finally:
            await self.ledger.stop()

        elapsed = time.monotonic() - started
        summary = RunSummary(
            total_jobs=final.total_jobs,
            processed_count=final.processed_count,
            failed_count=final.failed_count,
            remaining=final.remaining,
            succeeded_this_run=self._succeeded,
            skipped_this_run=self._skipped,
            failed_this_run=self._failed,
            elapsed_seconds=elapsed,
            interrupted=self._shutdown_requested and self._cursor.remaining > 0,
        )

        await self.event_bus.publish(
            RunCompletedEvent(
                total_jobs=summary.total_jobs,
                processed_count=summary.processed_count,
                failed_count=summary.failed_count,
                remaining=summary.remaining,
                elapsed_seconds=summary.elapsed_seconds,
                interrupted=summary.interrupted,
            )
        )
        self.state = RunState.COMPLETED
        return summary

    async def _run_workers(self) -> None:
        self.slots = [WorkerSlot(worker_id=str(i + 1)) for i in range(self.worker_count)]
        workers = [
            asyncio.create_task(self._worker_loop(slot), name=f"relay-worker-{slot.worker_id}")
            for slot in self.slots
        ]
        logging.info(f"Started {len(workers)} relay workers")

        results = await asyncio.gather(*workers, return_exceptions=True)
        for slot, result in zip(self.slots, results):
            if isinstance(result, BaseException):
                logging.error(f"Worker {slot.worker_id} stopped unexpectedly: {result!r}")
                slot.state = WorkerState.DRAINED

    async def _worker_loop(self, slot: WorkerSlot) -> None:
        while not self._shutdown_requested:
            slot.state = WorkerState.CLAIMING_JOB
            claim = self._cursor.claim()
            if claim is None:
                break

            position, job = claim
            slot.current_job = job.index
            slot.state = WorkerState.DISPATCHED

            await self.event_bus.publish(
                JobStartedEvent(
                    job_index=job.index,
                    title=job.title,
                    worker_id=slot.worker_id,
                    position=position,
                    total=self._cursor.total,
                )
            )

            await self.ledger.adjust_active_workers(1)
            try:
                await self._process_claim(slot, job)
            except Exception as e:
                slot.state = WorkerState.FAILED
                logging.error(
                    f"Worker {slot.worker_id} error while reconciling job {job.index}: {e}",
                    exc_info=True,
                )
            finally:
                await self.ledger.adjust_active_workers(-1)

            slot.jobs_handled += 1
            slot.current_job = None
            slot.state = WorkerState.IDLE

        slot.state = WorkerState.DRAINED
        logging.debug(f"Worker {slot.worker_id} drained after {slot.jobs_handled} jobs")

    async def _process_claim(self, slot: WorkerSlot, job: Job) -> None:
        handle = self.boundary.dispatch(job, slot.worker_id)
        self._in_flight[job.index] = handle
        try:
            await self._consume(slot, handle)
        finally:
            self._in_flight.pop(job.index, None)

    async def _consume(self, slot: WorkerSlot, handle: DispatchHandle) -> None:
        async for message in handle.messages():
            if isinstance(message, ProgressMessage):
                await self.event_bus.publish(
                    JobProgressEvent(
                        job_index=message.job_index,
                        worker_id=message.worker_id,
                        message=message.message,
                    )
                )
            elif isinstance(message, SuccessMessage):
                await self._reconcile_success(slot, message.result)
            elif isinstance(message, FailureMessage):
                await self._reconcile_failure(slot, message.failure)

    async def _reconcile_success(self, slot: WorkerSlot, result: JobResult) -> None:
        newly_recorded = await self.ledger.record_completion(result)
        if not newly_recorded:
            logging.warning(f"Job {result.index} was already recorded as completed")

        self._succeeded += 1
        if result.skipped:
            self._skipped += 1
        slot.state = WorkerState.SUCCEEDED

        await self.event_bus.publish(
            JobCompletedEvent(
                job_index=result.index,
                title=result.title,
                worker_id=slot.worker_id,
                skipped=result.skipped,
                global_episode_number=result.global_episode_number,
            )
        )

    async def _reconcile_failure(self, slot: WorkerSlot, failure: JobFailure) -> None:
        await self.ledger.record_failure(failure)

        self._failed += 1
        slot.state = WorkerState.FAILED

        await self.event_bus.publish(
            JobFailedEvent(
                job_index=failure.index,
                title=failure.title,
                worker_id=slot.worker_id,
                error_message=failure.error,
                worker_fault=failure.kind == FailureKind.WORKER_FAULT,
            )
        )

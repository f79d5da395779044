"""
Tests for RelayOrchestrator - worker pool, resumption and failure isolation.
"""

import asyncio
import json
import random
from collections import Counter

import pytest

from conftest import FakeFetcher, FakeUploader, make_job
from relay_agent.core.events.event_bus import DomainEventBus
from relay_agent.core.events.job_events import JobCompletedEvent, JobFailedEvent
from relay_agent.core.exceptions import LedgerIOFailure, TransferFailure
from relay_agent.models import JobResult, RunState, WorkerState
from relay_agent.services.consumer.isolation import IsolationBoundary
from relay_agent.services.consumer.job_executor import JobExecutor
from relay_agent.services.ledger.ledger_store import LedgerStore
from relay_agent.services.ledger.progress_ledger import ProgressLedgerService
from relay_agent.services.orchestrator import JobCursor, RelayOrchestrator
from relay_agent.services.progress_log import ProgressLogWriter


def _build(settings, jobs, executor, workers=2, event_bus=None):
    store = LedgerStore(settings.progress_file, settings.completed_file)
    ledger = ProgressLedgerService(store)
    return RelayOrchestrator(
        settings=settings,
        jobs=jobs,
        ledger=ledger,
        boundary=IsolationBoundary(executor),
        event_bus=event_bus or DomainEventBus(),
        worker_count=workers,
    )


def _completed_on_disk(settings):
    with open(settings.completed_file, encoding="utf-8") as f:
        return set(json.load(f))


def _progress_on_disk(settings):
    with open(settings.progress_file, encoding="utf-8") as f:
        return json.load(f)


class RecordingExecutor:
    """Counts dispatches per job and yields control at random points."""

    def __init__(self, fail_indexes=(), crash_indexes=()):
        self.dispatches = Counter()
        self.fail_indexes = set(fail_indexes)
        self.crash_indexes = set(crash_indexes)

    async def execute(self, job, worker_id, notify=None):
        self.dispatches[job.index] += 1
        await asyncio.sleep(random.uniform(0, 0.005))
        if job.index in self.crash_indexes:
            raise RuntimeError(f"unit for job {job.index} blew up")
        if job.index in self.fail_indexes:
            raise TransferFailure(job.index, "Download failed: 500")
        return JobResult.for_job(job, worker_id)


@pytest.mark.asyncio
async def test_five_jobs_two_workers_one_fetch_failure(settings, make_jobs):
    jobs = make_jobs(5)
    fetcher = FakeFetcher(fail_urls={jobs[2].download_url})
    uploader = FakeUploader()
    orchestrator = _build(settings, jobs, JobExecutor(settings, fetcher, uploader), workers=2)

    summary = await orchestrator.run()

    assert summary.processed_count == 4
    assert summary.failed_count == 1
    assert summary.remaining == 1
    assert _completed_on_disk(settings) == {0, 1, 3, 4}
    progress = _progress_on_disk(settings)
    assert progress["processedCount"] == 4
    assert progress["failedCount"] == 1
    assert progress["activeWorkers"] == 0
    assert progress["endTime"] is not None
    assert set(uploader.uploaded) == {jobs[i].s3_path for i in (0, 1, 3, 4)}


@pytest.mark.asyncio
async def test_resume_dispatches_only_unfinished_jobs(settings, make_jobs):
    jobs = make_jobs(5)
    first_fetcher = FakeFetcher(fail_urls={jobs[2].download_url})
    uploader = FakeUploader()
    await _build(settings, jobs, JobExecutor(settings, first_fetcher, uploader)).run()

    second_fetcher = FakeFetcher()
    summary = await _build(settings, jobs, JobExecutor(settings, second_fetcher, uploader)).run()

    assert second_fetcher.fetched == [jobs[2].download_url]
    assert summary.processed_count == 5
    assert summary.failed_count == 1
    assert summary.remaining == 0
    assert _completed_on_disk(settings) == {0, 1, 2, 3, 4}


@pytest.mark.asyncio
async def test_no_job_dispatched_twice_under_concurrency(settings, make_jobs):
    jobs = make_jobs(40)
    executor = RecordingExecutor()
    orchestrator = _build(settings, jobs, executor, workers=8)

    summary = await orchestrator.run()

    assert set(executor.dispatches) == set(range(40))
    assert max(executor.dispatches.values()) == 1
    assert summary.processed_count == 40
    assert _progress_on_disk(settings)["processedCount"] == len(_completed_on_disk(settings))


@pytest.mark.asyncio
async def test_second_run_after_completion_dispatches_nothing(settings, make_jobs):
    jobs = make_jobs(3)
    await _build(settings, jobs, RecordingExecutor()).run()

    executor = RecordingExecutor()
    bus = DomainEventBus()
    progress_log = ProgressLogWriter(settings.progress_log_file)
    await progress_log.subscribe(bus)
    summary = await _build(settings, jobs, executor, event_bus=bus).run()

    assert executor.dispatches == Counter()
    assert summary.remaining == 0
    assert summary.processed_count == 3
    with open(settings.progress_log_file, encoding="utf-8") as f:
        assert "✅ All jobs have been processed!" in f.read()


@pytest.mark.asyncio
async def test_worker_fault_counted_as_failure_and_siblings_continue(settings, make_jobs):
    jobs = make_jobs(4)
    bus = DomainEventBus()
    failures = []

    async def on_failed(event: JobFailedEvent):
        failures.append(event)

    await bus.subscribe(JobFailedEvent, on_failed)
    orchestrator = _build(settings, jobs, RecordingExecutor(crash_indexes={1}), event_bus=bus)

    summary = await orchestrator.run()

    assert summary.failed_count == 1
    assert _completed_on_disk(settings) == {0, 2, 3}
    assert len(failures) == 1
    assert failures[0].worker_fault is True
    assert failures[0].job_index == 1


@pytest.mark.asyncio
async def test_existing_destination_marked_complete_as_skipped(settings, make_jobs):
    jobs = make_jobs(3)
    fetcher = FakeFetcher()
    uploader = FakeUploader(existing={jobs[1].s3_path})
    bus = DomainEventBus()
    completed = []

    async def on_completed(event: JobCompletedEvent):
        completed.append(event)

    await bus.subscribe(JobCompletedEvent, on_completed)
    orchestrator = _build(settings, jobs, JobExecutor(settings, fetcher, uploader), event_bus=bus)

    summary = await orchestrator.run()

    assert jobs[1].download_url not in fetcher.fetched
    assert summary.skipped_this_run == 1
    assert summary.succeeded_this_run == 3
    assert _completed_on_disk(settings) == {0, 1, 2}
    skipped = {event.job_index: event.skipped for event in completed}
    assert skipped == {0: False, 1: True, 2: False}


@pytest.mark.asyncio
async def test_shutdown_lets_in_flight_job_finish_and_stops_claiming(settings, make_jobs):
    jobs = make_jobs(3)
    started = asyncio.Event()
    release = asyncio.Event()

    class GatedExecutor:
        async def execute(self, job, worker_id, notify=None):
            started.set()
            await release.wait()
            return JobResult.for_job(job, worker_id)

    orchestrator = _build(settings, jobs, GatedExecutor(), workers=1)
    run_task = asyncio.create_task(orchestrator.run())

    await asyncio.wait_for(started.wait(), timeout=5)
    orchestrator.request_shutdown()
    release.set()
    summary = await asyncio.wait_for(run_task, timeout=5)

    assert summary.processed_count == 1
    assert summary.remaining == 2
    assert summary.interrupted is True
    assert _completed_on_disk(settings) == {0}
    assert _progress_on_disk(settings)["endTime"] is not None


@pytest.mark.asyncio
async def test_abort_cancels_stalled_job_as_worker_fault(settings, make_jobs):
    jobs = make_jobs(3)
    started = asyncio.Event()
    failures = []

    class StalledExecutor:
        async def execute(self, job, worker_id, notify=None):
            started.set()
            await asyncio.Event().wait()

    async def on_failed(event: JobFailedEvent):
        failures.append(event)

    bus = DomainEventBus()
    await bus.subscribe(JobFailedEvent, on_failed)
    orchestrator = _build(settings, jobs, StalledExecutor(), workers=1, event_bus=bus)
    run_task = asyncio.create_task(orchestrator.run())

    await asyncio.wait_for(started.wait(), timeout=5)
    assert orchestrator.in_flight == [0]
    orchestrator.request_shutdown()
    assert orchestrator.abort_in_flight() == 1
    summary = await asyncio.wait_for(run_task, timeout=5)

    assert summary.processed_count == 0
    assert summary.failed_this_run == 1
    assert summary.interrupted is True
    assert orchestrator.in_flight == []
    assert [(event.job_index, event.worker_fault) for event in failures] == [(0, True)]
    progress = _progress_on_disk(settings)
    assert progress["failedCount"] == 1
    assert progress["activeWorkers"] == 0
    assert progress["endTime"] is not None


@pytest.mark.asyncio
async def test_run_and_worker_states_after_completion(settings, make_jobs):
    orchestrator = _build(settings, make_jobs(4), RecordingExecutor(), workers=3)

    await orchestrator.run()

    assert orchestrator.state == RunState.COMPLETED
    assert len(orchestrator.slots) == 3
    assert all(slot.state == WorkerState.DRAINED for slot in orchestrator.slots)
    assert sum(slot.jobs_handled for slot in orchestrator.slots) == 4


@pytest.mark.asyncio
async def test_ledger_initialization_failure_is_fatal(settings, make_jobs):
    with open(settings.completed_file, "w", encoding="utf-8") as f:
        f.write("not json")
    executor = RecordingExecutor()
    orchestrator = _build(settings, make_jobs(2), executor)

    with pytest.raises(LedgerIOFailure):
        await orchestrator.run()

    assert executor.dispatches == Counter()
    assert orchestrator.state == RunState.INITIALIZING


def test_cursor_claims_each_job_once_in_order():
    cursor = JobCursor([make_job(5), make_job(2)])

    assert cursor.claim()[1].index == 5
    assert cursor.claim() == (2, cursor._jobs[1])
    assert cursor.claim() is None
    assert cursor.remaining == 0

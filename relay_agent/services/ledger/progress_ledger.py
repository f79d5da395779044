"""
Progress Ledger Service - single writer for all persisted run state.

One owner task drains a command queue; every mutation runs there and is
persisted before the caller is released. Workers never touch the counters
directly, so concurrent completions cannot lose updates.
"""

import asyncio
import logging
from typing import Awaitable, Callable, FrozenSet, Iterable, List, Optional, Tuple

from relay_agent.core.exceptions import LedgerIOFailure
from relay_agent.models import JobFailure, JobResult, ProgressLedger, utc_now
from relay_agent.services.ledger.ledger_store import LedgerStore

Mutation = Callable[[], bool]
_Command = Tuple[Mutation, bool, "asyncio.Future"]

_STOP = object()


class ProgressLedgerService:
    def __init__(self, store: LedgerStore):
        self.store = store
        self._ledger: Optional[ProgressLedger] = None
        self._completed: List[int] = []
        self._completed_set: set = set()
        self._commands: "asyncio.Queue" = asyncio.Queue()
        self._owner_task: Optional[asyncio.Task] = None
        self.save_failures = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self, job_ids: Iterable[int]) -> ProgressLedger:
        """
        Load the persisted ledger or create a fresh one, reconciled against
        the current job list, and persist the result.

        The completed document is authoritative. If it is missing, the copy
        inside progress.json is used instead. Ids not present in the job
        list are dropped and the processed counter is re-derived from the set.

        Raises:
            LedgerIOFailure: state could not be read or the initial write failed.
        """
        job_ids = list(job_ids)
        known = set(job_ids)

        progress = await self.store.load()
        completed = await self.store.load_completed()
        if completed is None:
            completed = list(progress.completed_jobs) if progress else []

        reconciled: List[int] = []
        seen = set()
        dropped = 0
        for index in completed:
            if index not in known:
                dropped += 1
                continue
            if index in seen:
                continue
            seen.add(index)
            reconciled.append(index)

        if dropped:
            logging.warning(
                f"Dropped {dropped} completed ids that are not in the current job list"
            )

        if progress is None:
            ledger = ProgressLedger(total_jobs=len(job_ids))
            logging.info(f"Created fresh progress ledger for {len(job_ids)} jobs")
        else:
            ledger = progress
            logging.info(
                f"Resuming from ledger: {len(reconciled)} completed, "
                f"{progress.failed_count} failed so far"
            )

        ledger.total_jobs = len(job_ids)
        ledger.processed_count = len(reconciled)
        ledger.active_workers = 0
        ledger.end_time = None
        ledger.completed_jobs = list(reconciled)
        ledger.last_updated = utc_now()

        self._ledger = ledger
        self._completed = reconciled
        self._completed_set = seen

        await self.store.save_completed(self._completed)
        await self.store.save(self._ledger)
        return self.snapshot()

    async def start(self) -> None:
        if self._owner_task is not None and not self._owner_task.done():
            logging.warning("Ledger owner task is already running")
            return
        self._owner_task = asyncio.create_task(self._owner_loop(), name="ledger-owner")

    async def stop(self) -> None:
        if self._owner_task is None:
            return
        await self._commands.put(_STOP)
        await self._owner_task
        self._owner_task = None

    # ------------------------------------------------------------------
    # Mutations (all serialized through the owner task)
    # ------------------------------------------------------------------

    async def record_completion(self, result: JobResult) -> bool:
        """Add the job to the completed set. Returns False if it was already there."""

        def mutate() -> bool:
            if result.index in self._completed_set:
                return False
            self._completed_set.add(result.index)
            self._completed.append(result.index)
            self._ledger.processed_count = len(self._completed)
            self._ledger.completed_jobs = list(self._completed)
            return True

        return await self._submit(mutate, persist_completed=True)

    async def record_failure(self, failure: Optional[JobFailure] = None) -> bool:
        def mutate() -> bool:
            self._ledger.failed_count += 1
            if failure is not None:
                logging.debug(f"Recorded failure: {failure}")
            return True

        return await self._submit(mutate)

    async def adjust_active_workers(self, delta: int) -> bool:
        def mutate() -> bool:
            self._ledger.active_workers = max(0, self._ledger.active_workers + delta)
            return True

        return await self._submit(mutate)

    async def finalize(self) -> ProgressLedger:
        """Stamp end_time, zero active workers and persist the final snapshot."""

        def mutate() -> bool:
            self._ledger.end_time = utc_now()
            self._ledger.active_workers = 0
            return True

        await self._submit(mutate, persist_completed=True)
        return self.snapshot()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def snapshot(self) -> ProgressLedger:
        self._require_initialized()
        return self._ledger.model_copy(deep=True)

    def completed_ids(self) -> FrozenSet[int]:
        return frozenset(self._completed_set)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_initialized(self) -> None:
        if self._ledger is None:
            raise RuntimeError("Progress ledger has not been initialized")

    async def _submit(self, mutate: Mutation, persist_completed: bool = False) -> bool:
        self._require_initialized()
        if self._owner_task is None or self._owner_task.done():
            raise RuntimeError("Ledger owner task is not running")

        future = asyncio.get_running_loop().create_future()
        await self._commands.put((mutate, persist_completed, future))
        return await future

    async def _owner_loop(self) -> None:
        while True:
            command = await self._commands.get()
            if command is _STOP:
                break

            mutate, persist_completed, future = command
            try:
                changed = mutate()
                if changed:
                    await self._persist(persist_completed)
            except Exception as e:
                if not future.done():
                    future.set_exception(e)
                continue

            if not future.done():
                future.set_result(changed)

    async def _persist(self, persist_completed: bool) -> None:
        """Write state to disk. Routine save failures are logged and counted, not raised."""
        self._ledger.last_updated = utc_now()
        writes: List[Callable[[], Awaitable[None]]] = []
        if persist_completed:
            writes.append(lambda: self.store.save_completed(self._completed))
        writes.append(lambda: self.store.save(self._ledger))

        for write in writes:
            try:
                await write()
            except LedgerIOFailure as e:
                self.save_failures += 1
                logging.warning(f"Progress save failed (non-fatal, {self.save_failures} so far): {e}")

"""
Isolation boundary - runs each job in its own asyncio task and reports back
over a message channel.

A dispatch emits zero or more ProgressMessage items followed by exactly one
terminal SuccessMessage or FailureMessage. If the isolated unit dies without
reporting (unexpected exception, cancellation) the supervisor posts a
WorkerFault failure instead, so the caller never waits on silence.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional, Union

from relay_agent.core.exceptions import TransferFailure, WorkerFault
from relay_agent.models import FailureKind, Job, JobFailure, JobResult
from relay_agent.services.consumer.job_executor import JobExecutor


@dataclass(frozen=True)
class ProgressMessage:
    job_index: int
    worker_id: str
    message: str


@dataclass(frozen=True)
class SuccessMessage:
    result: JobResult


@dataclass(frozen=True)
class FailureMessage:
    failure: JobFailure


TerminalMessage = Union[SuccessMessage, FailureMessage]
ChannelMessage = Union[ProgressMessage, SuccessMessage, FailureMessage]


@dataclass
class DispatchHandle:
    """Caller side of one dispatched job."""

    job: Job
    worker_id: str
    channel: "asyncio.Queue[ChannelMessage]"
    task: Optional[asyncio.Task] = None
    terminal_sent: bool = False
    _terminal: Optional[TerminalMessage] = field(default=None, repr=False)

    def post(self, message: ChannelMessage) -> None:
        if self.terminal_sent:
            return
        if isinstance(message, (SuccessMessage, FailureMessage)):
            self.terminal_sent = True
        self.channel.put_nowait(message)

    async def messages(self) -> AsyncIterator[ChannelMessage]:
        """Yield channel messages up to and including the terminal one."""
        if self._terminal is not None:
            yield self._terminal
            return
        while True:
            message = await self.channel.get()
            yield message
            if isinstance(message, (SuccessMessage, FailureMessage)):
                self._terminal = message
                return

    async def outcome(self) -> TerminalMessage:
        """Drain the channel, ignoring progress, and return the terminal message."""
        terminal = None
        async for message in self.messages():
            terminal = message
        return terminal


class IsolationBoundary:
    """Dispatches jobs into fault-isolated asyncio tasks."""

    def __init__(self, executor: JobExecutor):
        self.executor = executor

    def dispatch(self, job: Job, worker_id: str) -> DispatchHandle:
        handle = DispatchHandle(job=job, worker_id=worker_id, channel=asyncio.Queue())
        handle.task = asyncio.create_task(
            self._run_unit(handle), name=f"relay-job-{job.index}"
        )
        handle.task.add_done_callback(lambda task: self._supervise(handle, task))
        return handle

    async def _run_unit(self, handle: DispatchHandle) -> None:
        job = handle.job
        worker_id = handle.worker_id

        def notify(message: str) -> None:
            handle.post(ProgressMessage(job_index=job.index, worker_id=worker_id, message=message))

        try:
            result = await self.executor.execute(job, worker_id, notify)
        except TransferFailure as e:
            handle.post(
                FailureMessage(
                    JobFailure(
                        index=job.index,
                        title=job.title,
                        worker_id=worker_id,
                        error=e.cause,
                        kind=FailureKind.TRANSFER,
                    )
                )
            )
            return

        handle.post(SuccessMessage(result))

    def _supervise(self, handle: DispatchHandle, task: asyncio.Task) -> None:
        """Turn an unreported unit termination into a WorkerFault failure."""
        if task.cancelled():
            cause = "isolated unit was cancelled"
        else:
            error = task.exception()
            if error is None:
                return
            cause = f"{type(error).__name__}: {error}"

        if handle.terminal_sent:
            return

        fault = WorkerFault(handle.job.index, cause)
        logging.error(str(fault))
        handle.post(
            FailureMessage(
                JobFailure(
                    index=handle.job.index,
                    title=handle.job.title,
                    worker_id=handle.worker_id,
                    error=str(fault),
                    kind=FailureKind.WORKER_FAULT,
                )
            )
        )

"""
Progress Log - rolling human-readable log of timestamped progress lines.

Subscribes to job lifecycle events on the DomainEventBus and mirrors each
line to the application logger.
"""

import asyncio
import logging
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Deque, List, Optional, Union

import aiofiles
import aiofiles.os

from relay_agent.core.events.event_bus import DomainEventBus
from relay_agent.core.events.job_events import (
    JobCompletedEvent,
    JobFailedEvent,
    JobProgressEvent,
    JobStartedEvent,
    RunCompletedEvent,
    RunStartedEvent,
)
from relay_agent.utils.progress_utils import format_duration


class ProgressLogWriter:
    def __init__(self, path: Union[str, Path], max_lines: int = 1000):
        self.path = Path(path)
        self._lines: Deque[str] = deque(maxlen=max_lines)
        self._lock = asyncio.Lock()
        self.write_failures = 0

    @property
    def lines(self) -> List[str]:
        return list(self._lines)

    async def subscribe(self, event_bus: DomainEventBus) -> None:
        await event_bus.subscribe(RunStartedEvent, self.on_run_started)
        await event_bus.subscribe(JobStartedEvent, self.on_job_started)
        await event_bus.subscribe(JobProgressEvent, self.on_job_progress)
        await event_bus.subscribe(JobCompletedEvent, self.on_job_completed)
        await event_bus.subscribe(JobFailedEvent, self.on_job_failed)
        await event_bus.subscribe(RunCompletedEvent, self.on_run_completed)

    async def write(self, message: str, timestamp: Optional[datetime] = None) -> None:
        """Append one line and rewrite the log file. Write errors are logged, not raised."""
        stamp = (timestamp or datetime.now()).strftime("%H:%M:%S")
        line = f"[{stamp}] {message}" if message else ""
        if message:
            logging.info(message)

        async with self._lock:
            self._lines.append(line)
            try:
                if self.path.parent != Path("."):
                    await aiofiles.os.makedirs(self.path.parent, exist_ok=True)
                async with aiofiles.open(self.path, "w", encoding="utf-8") as f:
                    await f.write("\n".join(self._lines))
            except OSError as e:
                self.write_failures += 1
                logging.warning(f"Could not write progress log {self.path}: {e}")

    async def on_run_started(self, event: RunStartedEvent) -> None:
        if event.unprocessed == 0:
            await self.write("✅ All jobs have been processed!")
            return
        await self.write(f"📊 Found {event.unprocessed} unprocessed jobs")
        await self.write(f"👥 Using {event.worker_count} parallel workers")
        await self.write("")

    async def on_job_started(self, event: JobStartedEvent) -> None:
        await self.write(
            f"🔄 Worker {event.worker_id}: Starting {event.title} ({event.position}/{event.total})"
        )

    async def on_job_progress(self, event: JobProgressEvent) -> None:
        await self.write(event.message)

    async def on_job_completed(self, event: JobCompletedEvent) -> None:
        verb = "Skipped (already exists)" if event.skipped else "Completed"
        await self.write(
            f"✅ Worker {event.worker_id}: {verb} {event.title} "
            f"(Episode {event.global_episode_number})"
        )

    async def on_job_failed(self, event: JobFailedEvent) -> None:
        if event.worker_fault:
            await self.write(f"💥 Worker {event.worker_id} error: {event.error_message}")
        else:
            await self.write(
                f"❌ Worker {event.worker_id}: Failed {event.title} - {event.error_message}"
            )

    async def on_run_completed(self, event: RunCompletedEvent) -> None:
        await self.write("")
        if event.interrupted:
            await self.write("⏹️ Processing stopped on shutdown request")
        else:
            await self.write("🎉 Processing completed!")
        await self.write("📊 Final Statistics:")
        await self.write(f"   Total jobs: {event.total_jobs}")
        await self.write(f"   Successfully processed: {event.processed_count}")
        await self.write(f"   Failed: {event.failed_count}")
        await self.write(f"   Remaining: {event.remaining}")
        await self.write(f"   Total time: {format_duration(event.elapsed_seconds)}")

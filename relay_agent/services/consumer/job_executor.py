"""
Job Executor - runs the fetch -> relay -> cleanup pipeline for a single job.
"""

import logging
import secrets
import time
from pathlib import Path, PurePosixPath
from typing import Callable, Optional
from urllib.parse import urlparse

import aiofiles.os

from relay_agent.config import Settings
from relay_agent.core.exceptions import FetchError, RelayError, TransferFailure
from relay_agent.models import Job, JobResult
from relay_agent.services.transfer.content_types import get_content_type
from relay_agent.services.transfer.fetcher import HttpFetcher
from relay_agent.services.transfer.relay_uploader import S3RelayUploader
from relay_agent.utils.progress_utils import (
    calculate_transfer_rate,
    format_bytes_human_readable,
    format_transfer_rate_human_readable,
)

ProgressCallback = Callable[[str], None]

DEFAULT_TEMP_SUFFIX = ".mp4"


def _noop_progress(_message: str) -> None:
    return None


class JobExecutor:
    """Executes one job. Idempotent with respect to destinations that already exist."""

    def __init__(
        self,
        settings: Settings,
        fetcher: HttpFetcher,
        uploader: S3RelayUploader,
    ):
        self.settings = settings
        self.fetcher = fetcher
        self.uploader = uploader
        self.temp_directory = Path(settings.temp_directory)

    def build_temp_path(self, job: Job, worker_id: str) -> Path:
        """Temp path unique per worker, job, time and a random component."""
        suffix = PurePosixPath(urlparse(job.download_url).path).suffix or DEFAULT_TEMP_SUFFIX
        stamp = int(time.time() * 1000)
        token = secrets.token_hex(4)
        return self.temp_directory / f"temp_worker{worker_id}_{job.index}_{stamp}_{token}{suffix}"

    async def execute(
        self,
        job: Job,
        worker_id: str,
        notify: Optional[ProgressCallback] = None,
    ) -> JobResult:
        notify = notify or _noop_progress
        temp_path = self.build_temp_path(job, worker_id)
        label = f"{job.title} (Episode {job.global_episode_number})"

        try:
            if await self.uploader.exists(job.s3_path):
                notify(f"⏭️ Worker {worker_id}: Destination already exists for {job.title}, skipping")
                return JobResult.for_job(job, worker_id, skipped=True)

            await aiofiles.os.makedirs(self.temp_directory, exist_ok=True)

            notify(f"🔄 Worker {worker_id}: Starting download for {label}")
            started = time.monotonic()
            size = await self.fetcher.fetch(job.download_url, temp_path)
            rate = calculate_transfer_rate(size, time.monotonic() - started)
            notify(
                f"📥 Worker {worker_id}: Download completed for {job.title} "
                f"({format_bytes_human_readable(size)}, {format_transfer_rate_human_readable(rate)})"
            )

            notify(f"☁️ Worker {worker_id}: Starting S3 upload for {job.title}")
            upload = await self.uploader.upload(
                temp_path, job.s3_path, get_content_type(job.s3_path)
            )
            notify(f"📤 Worker {worker_id}: {upload.message}")

            return JobResult.for_job(job, worker_id, skipped=upload.skipped)

        except (FetchError, RelayError, OSError) as e:
            raise TransferFailure(job.index, str(e)) from e
        finally:
            await self.cleanup_temp_file(temp_path)

    async def cleanup_temp_file(self, path: Path) -> None:
        """Best-effort removal. Failures are logged, never raised."""
        try:
            if await aiofiles.os.path.exists(path):
                await aiofiles.os.remove(path)
        except OSError as e:
            logging.warning(f"Could not remove temp file {path}: {e}")

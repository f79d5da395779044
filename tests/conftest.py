"""
Pytest configuration og shared fixtures.
"""

from pathlib import Path
from typing import Dict, List, Optional, Set

import pytest

from relay_agent.config import Settings
from relay_agent.core.exceptions import ConnectivityError, NetworkError
from relay_agent.dependencies import reset_singletons
from relay_agent.models import Job, UploadOutcome
from relay_agent.services.transfer.relay_uploader import UploadResult


@pytest.fixture(autouse=True)
def clean_singletons():
    """Automatically reset singletons before hver test."""
    reset_singletons()
    yield
    reset_singletons()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        jobs_file=str(tmp_path / "jobs.json"),
        progress_file=str(tmp_path / "progress.json"),
        completed_file=str(tmp_path / "completed_jobs.json"),
        progress_log_file=str(tmp_path / "current_progress.txt"),
        temp_directory=str(tmp_path / "temp_files"),
        log_file_path=str(tmp_path / "logs" / "relay_agent.log"),
        max_workers=2,
        _env_file=None,
    )


def make_job(index: int, **extra) -> Job:
    return Job(
        index=index,
        title=f"Episode {index}",
        downloadUrl=f"https://media.example.com/episodes/{index}.mp4",
        s3Path=f"shows/season-1/episode-{index}.mp4",
        globalEpisodeNumber=index + 1,
        **extra,
    )


@pytest.fixture
def make_jobs():
    def _make(count: int) -> List[Job]:
        return [make_job(i) for i in range(count)]

    return _make


class FakeFetcher:
    """Writes a small payload instead of downloading. URLs in fail_urls raise NetworkError once."""

    def __init__(self, fail_urls: Optional[Set[str]] = None, payload: bytes = b"video-bytes"):
        self.fail_urls = set(fail_urls or ())
        self.payload = payload
        self.fetched: List[str] = []

    async def fetch(self, url: str, destination) -> int:
        self.fetched.append(url)
        if url in self.fail_urls:
            self.fail_urls.discard(url)
            raise NetworkError(f"Download failed: connection reset for {url}")
        Path(destination).write_bytes(self.payload)
        return len(self.payload)

    async def close(self) -> None:
        return None


class FakeUploader:
    """In-memory relay-uploader keyed by destination path."""

    def __init__(self, existing: Optional[Set[str]] = None, fail_keys: Optional[Set[str]] = None):
        self.objects: Dict[str, bytes] = {key: b"" for key in (existing or ())}
        self.fail_keys = set(fail_keys or ())
        self.uploaded: List[str] = []
        self.content_types: Dict[str, str] = {}

    async def exists(self, key: str) -> bool:
        return key in self.objects

    async def upload(self, source_path, key: str, content_type: Optional[str] = None) -> UploadResult:
        if key in self.fail_keys:
            raise ConnectivityError(f"S3 upload failed: endpoint unreachable for {key}")
        if key in self.objects:
            return UploadResult(UploadOutcome.ALREADY_EXISTS, key, f"File already exists: {key}")
        self.objects[key] = Path(source_path).read_bytes()
        self.uploaded.append(key)
        self.content_types[key] = content_type
        return UploadResult(UploadOutcome.UPLOADED, key, f"Successfully uploaded: {key}")


@pytest.fixture
def fake_fetcher():
    return FakeFetcher()


@pytest.fixture
def fake_uploader():
    return FakeUploader()

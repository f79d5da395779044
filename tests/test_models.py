import pytest
from pydantic import ValidationError

from relay_agent.models import Job, JobResult, ProgressLedger


class TestJob:
    def test_parses_camel_case_keys_and_keeps_passthrough_metadata(self):
        job = Job.model_validate(
            {
                "index": 7,
                "title": "The Return",
                "downloadUrl": "https://cdn.example.com/e7.mkv",
                "s3Path": "show/e7.mkv",
                "globalEpisodeNumber": 42,
                "season": 2,
                "language": "te",
            }
        )

        assert job.index == 7
        assert job.download_url == "https://cdn.example.com/e7.mkv"
        assert job.s3_path == "show/e7.mkv"
        assert job.global_episode_number == 42
        assert job.metadata == {"season": 2, "language": "te"}

    def test_job_is_immutable(self):
        job = Job(index=1, downloadUrl="https://x/1.mp4", s3Path="a/1.mp4")
        with pytest.raises(ValidationError):
            job.index = 2

    def test_negative_index_rejected(self):
        with pytest.raises(ValidationError):
            Job(index=-1, downloadUrl="https://x/1.mp4", s3Path="a/1.mp4")


class TestJobResult:
    def test_for_job_copies_identity_and_metadata(self):
        job = Job(
            index=4,
            title="Four",
            downloadUrl="https://x/4.mp4",
            s3Path="a/4.mp4",
            globalEpisodeNumber=5,
            season=1,
        )

        result = JobResult.for_job(job, "3", skipped=True)

        assert result.index == 4
        assert result.worker_id == "3"
        assert result.skipped is True
        assert result.metadata == {"season": 1}
        assert result.processed_at.tzinfo is not None


class TestProgressLedger:
    def test_document_uses_camel_case_keys(self):
        ledger = ProgressLedger(total_jobs=5, processed_count=2, completed_jobs=[0, 1])

        document = ledger.to_document()

        assert document["totalJobs"] == 5
        assert document["processedCount"] == 2
        assert document["completedJobs"] == [0, 1]
        assert document["endTime"] is None
        assert "startTime" in document and "lastUpdated" in document

    def test_round_trip_from_document(self):
        ledger = ProgressLedger(total_jobs=3, failed_count=1, completed_jobs=[2])
        restored = ProgressLedger.model_validate(ledger.to_document())
        assert restored.failed_count == 1
        assert restored.completed_jobs == [2]
        assert restored.remaining == 3

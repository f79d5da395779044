from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Job input
    jobs_file: str = "jobs.json"

    # Parallel processing
    max_workers: int = 10  # Tuned for a 2 vCPU host with ~4GB RAM

    # Persisted state
    progress_file: str = "progress.json"
    completed_file: str = "completed_jobs.json"
    progress_log_file: str = "current_progress.txt"
    progress_log_max_lines: int = 1000

    # Transfer
    temp_directory: str = "temp_files"
    download_chunk_size_kb: int = 1024
    download_timeout_seconds: Optional[float] = None  # None = no bound on long downloads

    # S3 relay
    s3_bucket_name: str = "relay-agent-media"
    aws_region: str = "ap-south-2"
    s3_storage_class: str = "GLACIER_IR"

    # Logging konfiguration
    log_level: str = "INFO"
    console_log_level: Optional[str] = None  # None = same as log_level
    console_width: int = 120
    log_file_path: str = "logs/relay_agent.log"
    log_retention_days: int = 30

    model_config = SettingsConfigDict(
        env_file="settings.env", env_prefix="RELAY_", extra="ignore"
    )

    @property
    def log_directory(self) -> Path:
        """Returnerer log directory som Path objekt"""
        return Path(self.log_file_path).parent

    @property
    def effective_console_log_level(self) -> str:
        return self.console_log_level or self.log_level

    @property
    def download_chunk_size(self) -> int:
        return self.download_chunk_size_kb * 1024

"""
Job lifecycle events published by the orchestrator.
"""

from dataclasses import dataclass
from typing import Optional

from relay_agent.core.events.domain_event import DomainEvent


@dataclass(frozen=True, kw_only=True)
class JobStartedEvent(DomainEvent):
    job_index: int
    title: str
    worker_id: str
    position: int
    total: int


@dataclass(frozen=True, kw_only=True)
class JobProgressEvent(DomainEvent):
    job_index: int
    worker_id: str
    message: str


@dataclass(frozen=True, kw_only=True)
class JobCompletedEvent(DomainEvent):
    job_index: int
    title: str
    worker_id: str
    skipped: bool
    global_episode_number: Optional[int] = None


@dataclass(frozen=True, kw_only=True)
class JobFailedEvent(DomainEvent):
    job_index: int
    title: str
    worker_id: str
    error_message: str
    worker_fault: bool = False


@dataclass(frozen=True, kw_only=True)
class RunStartedEvent(DomainEvent):
    unprocessed: int
    worker_count: int


@dataclass(frozen=True, kw_only=True)
class RunCompletedEvent(DomainEvent):
    total_jobs: int
    processed_count: int
    failed_count: int
    remaining: int
    elapsed_seconds: float
    interrupted: bool = False

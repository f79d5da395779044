from functools import lru_cache
from typing import Any, Dict, List

from relay_agent.core.events.event_bus import DomainEventBus

from .config import Settings
from .models import Job
from .services.consumer.isolation import IsolationBoundary
from .services.consumer.job_executor import JobExecutor
from .services.ledger.ledger_store import LedgerStore
from .services.ledger.progress_ledger import ProgressLedgerService
from .services.orchestrator import RelayOrchestrator
from .services.progress_log import ProgressLogWriter
from .services.transfer.fetcher import HttpFetcher
from .services.transfer.relay_uploader import S3RelayUploader

# Global singleton instances
_singletons: Dict[str, Any] = {}


@lru_cache
def get_settings() -> Settings:
    """Hent Settings singleton instance."""
    return Settings()


def get_event_bus() -> DomainEventBus:
    if "event_bus" not in _singletons:
        _singletons["event_bus"] = DomainEventBus()
    return _singletons["event_bus"]


def get_ledger_store() -> LedgerStore:
    if "ledger_store" not in _singletons:
        settings = get_settings()
        _singletons["ledger_store"] = LedgerStore(
            progress_path=settings.progress_file,
            completed_path=settings.completed_file,
        )
    return _singletons["ledger_store"]


def get_progress_ledger() -> ProgressLedgerService:
    if "progress_ledger" not in _singletons:
        _singletons["progress_ledger"] = ProgressLedgerService(store=get_ledger_store())
    return _singletons["progress_ledger"]


def get_progress_log() -> ProgressLogWriter:
    if "progress_log" not in _singletons:
        settings = get_settings()
        _singletons["progress_log"] = ProgressLogWriter(
            path=settings.progress_log_file,
            max_lines=settings.progress_log_max_lines,
        )
    return _singletons["progress_log"]


def get_fetcher() -> HttpFetcher:
    if "fetcher" not in _singletons:
        _singletons["fetcher"] = HttpFetcher(settings=get_settings())
    return _singletons["fetcher"]


def get_relay_uploader() -> S3RelayUploader:
    if "relay_uploader" not in _singletons:
        _singletons["relay_uploader"] = S3RelayUploader(settings=get_settings())
    return _singletons["relay_uploader"]


def get_job_executor() -> JobExecutor:
    if "job_executor" not in _singletons:
        _singletons["job_executor"] = JobExecutor(
            settings=get_settings(),
            fetcher=get_fetcher(),
            uploader=get_relay_uploader(),
        )
    return _singletons["job_executor"]


def get_isolation_boundary() -> IsolationBoundary:
    if "isolation_boundary" not in _singletons:
        _singletons["isolation_boundary"] = IsolationBoundary(executor=get_job_executor())
    return _singletons["isolation_boundary"]


def get_orchestrator(jobs: List[Job]) -> RelayOrchestrator:
    if "orchestrator" not in _singletons:
        _singletons["orchestrator"] = RelayOrchestrator(
            settings=get_settings(),
            jobs=jobs,
            ledger=get_progress_ledger(),
            boundary=get_isolation_boundary(),
            event_bus=get_event_bus(),
        )
    return _singletons["orchestrator"]


def reset_singletons() -> None:
    """Reset all singletons - used by tests."""
    _singletons.clear()
    get_settings.cache_clear()

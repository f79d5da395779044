# relay_agent/core/exceptions.py

from typing import Optional


class RelayAgentError(Exception):
    """Base exception for relay agent failures."""
    pass


class TransferFailure(RelayAgentError):
    """Raised when fetching or relaying a single job fails. Non-fatal to the run."""
    def __init__(self, index: int, cause: str):
        self.index = index
        self.cause = cause
        super().__init__(f"Job {index} transfer failed: {cause}")


class WorkerFault(RelayAgentError):
    """Raised when an isolated job unit terminates without reporting an outcome."""
    def __init__(self, index: int, cause: str):
        self.index = index
        self.cause = cause
        super().__init__(f"Worker unit for job {index} terminated abnormally: {cause}")


class LedgerIOFailure(RelayAgentError):
    """Raised when a persisted state document cannot be read or written."""
    def __init__(self, path: str, cause: Optional[BaseException] = None):
        self.path = path
        self.cause = cause
        super().__init__(f"Ledger I/O failed for {path}: {cause}")


class JobListError(RelayAgentError):
    """Raised when the static job list cannot be loaded or is invalid."""
    pass


class FetchError(RelayAgentError):
    """Base exception for fetcher failures."""
    pass


class NetworkError(FetchError):
    """Remote source could not be streamed."""
    pass


class FetchIOError(FetchError):
    """Local temp file could not be written."""
    pass


class RelayError(RelayAgentError):
    """Base exception for relay-uploader failures."""
    pass


class AuthError(RelayError):
    """Credentials rejected or access denied by the remote store."""
    pass


class ConnectivityError(RelayError):
    """Remote store unreachable or returned an unexpected error."""
    pass

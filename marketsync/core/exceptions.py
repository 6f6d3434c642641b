"""
Sync Errors - failure taxonomy shared by the sync services
"""
from typing import Optional


class SyncError(Exception):
    """Base class for sync failures"""
    pass


class MissingKeyError(SyncError):
    """Record has no natural key (order_id / tsin_id) and cannot be upserted"""

    def __init__(self, data_kind: str, key_field: str):
        self.data_kind = data_kind
        self.key_field = key_field
        super().__init__(f"{data_kind} record missing {key_field}")


class UpstreamFetchError(SyncError):
    """A page could not be fetched from the marketplace API"""

    def __init__(self, message: str, status_code: Optional[int] = None, page: Optional[int] = None):
        self.status_code = status_code
        self.page = page
        super().__init__(message)


class StoreWriteError(SyncError):
    """A batch of record writes failed to commit"""
    pass


class SyncTimeoutError(SyncError):
    """A one-shot sync exceeded its wall-clock budget"""

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Sync operation timed out after {int(timeout_seconds)} seconds")


class SyncJobNotFoundError(SyncError):
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Sync job {job_id} not found")


class SyncJobFailedError(SyncError):
    """Raised when a chunk is requested for a job that already failed"""

    def __init__(self, job_id: str, last_error: Optional[str]):
        self.job_id = job_id
        self.last_error = last_error
        super().__init__(f"Sync job {job_id} has failed: {last_error}")


class ChunkAbortedError(SyncError):
    """A chunk stopped part way; ``partial`` holds what it had done so far"""

    def __init__(self, cause: Exception, partial):
        self.cause = cause
        self.partial = partial
        super().__init__(str(cause))

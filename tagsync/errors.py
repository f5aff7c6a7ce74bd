"""Exception hierarchy for tagsync"""

from typing import Optional


class TagSyncError(Exception):
    """Base class for all tagsync errors"""


class ConfigError(TagSyncError, ValueError):
    """Configuration is missing or invalid"""


class CatalogUnavailable(TagSyncError):
    """The tag catalog could not be fetched"""


class PoolUnavailable(TagSyncError):
    """The item pool could not be loaded; only a manual reload recovers"""


class RecordStoreError(TagSyncError):
    """Reading or writing the remote record failed"""

    def __init__(self, message: str, record_id: Optional[str] = None,
                 status_code: Optional[int] = None):
        super().__init__(message)
        self.record_id = record_id
        self.status_code = status_code


class VersionConflict(RecordStoreError):
    """The record changed remotely since the version we wrote against"""

    def __init__(self, record_id: str, version: int, message: Optional[str] = None):
        super().__init__(
            message or f"Version {version} of record {record_id} is outdated",
            record_id=record_id,
            status_code=409,
        )
        self.version = version


class RecordWriteFailure(TagSyncError):
    """A batch could not be persisted (retries exhausted or non-conflict error)"""

    def __init__(self, message: str, record_id: str, attempts: int):
        super().__init__(message)
        self.record_id = record_id
        self.attempts = attempts

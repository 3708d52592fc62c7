from __future__ import annotations

from typing import Any

from coursesync.models import SyncIssue

FETCH_ERROR = "fetch_error"
PARSE_SKIP = "parse_skip"
DIRECTORY_LOAD_ERROR = "directory_load_error"
RECORD_STORE_CORRUPT = "record_store_corrupt"
REMOTE_NOT_FOUND = "remote_not_found"
REMOTE_API_ERROR = "remote_api_error"
MISSING_CREDENTIAL = "missing_credential"
CACHE_WRITE_ERROR = "cache_write_error"
RECORD_STORE_WRITE_ERROR = "record_store_write_error"
UNEXPECTED_ERROR = "unexpected_error"


class CourseSyncError(Exception):
    kind = "error"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_issue(self, scope: str) -> SyncIssue:
        return SyncIssue(kind=self.kind, scope=scope, message=self.message, context=dict(self.context))


class FetchError(CourseSyncError):
    kind = FETCH_ERROR


class ParseSkip(CourseSyncError):
    kind = PARSE_SKIP


class DirectoryLoadError(CourseSyncError):
    kind = DIRECTORY_LOAD_ERROR


class RecordStoreCorrupt(CourseSyncError):
    kind = RECORD_STORE_CORRUPT


class RemoteApiError(CourseSyncError):
    kind = REMOTE_API_ERROR


class RemoteNotFound(RemoteApiError):
    kind = REMOTE_NOT_FOUND


class MissingCredentialError(CourseSyncError):
    kind = MISSING_CREDENTIAL


class CacheWriteError(CourseSyncError):
    kind = CACHE_WRITE_ERROR


class RecordStoreWriteError(CourseSyncError):
    kind = RECORD_STORE_WRITE_ERROR

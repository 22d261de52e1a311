"""Errors raised by the offline sync services.

Validation failures use fca_shared.validation.ValidationError. A server-wins
discard is a normal resolution outcome, not an error.
"""


class SyncError(Exception):
    """Base class for sync failures reported back to the client."""

    error_type = 'sync_error'
    status_code = 500
    retryable = False

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class AccessDenied(SyncError):
    """The caller may not write into the target project (or it does not exist)."""

    error_type = 'access_denied'
    status_code = 403


class StorageError(SyncError):
    """A database or blob store write failed; the client may retry the item later."""

    error_type = 'storage_error'
    status_code = 503
    retryable = True

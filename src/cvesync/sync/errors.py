"""Sync pipeline exceptions."""


class SyncError(Exception):
    """Base exception for sync failures."""

    def __init__(self, message: str, sync_id: int | None = None):
        super().__init__(message)
        self.sync_id = sync_id


class SyncAlreadyRunningError(SyncError):
    """A run was requested while another one is active."""


class SyncAbortedError(SyncError):
    """The active run was aborted on request."""


class InvalidSyncOptionsError(SyncError, ValueError):
    """Run options failed validation."""

"""
Exception hierarchy for preference synchronization, scheduling and cleanup
"""
from datetime import datetime
from typing import List, Optional


class PrefSyncError(Exception):
    """Base class for library errors"""


class PreferenceValidationError(PrefSyncError):
    """Exception raised when preference validation fails"""

    def __init__(self, message: str, preference_key: str,
                 validation_errors: Optional[List[str]] = None):
        self.message = message
        self.preference_key = preference_key
        self.validation_errors = validation_errors or []
        super().__init__(message)


class LocalStoreError(PrefSyncError):
    """Local key-value persistence failed (e.g. device storage pressure)"""


class RemoteStoreError(PrefSyncError):
    """Remote document store read or write failed"""


class ScheduleRejectedError(PrefSyncError):
    """A trigger request was refused before reaching the OS scheduler"""

    def __init__(self, reason: str, requested_at: Optional[datetime] = None):
        self.reason = reason
        self.requested_at = requested_at
        super().__init__(reason)


class NotificationPermissionError(PrefSyncError):
    """The OS scheduler did not grant notification permission"""

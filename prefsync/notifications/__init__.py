"""
Reminder scheduling
"""

from .scheduler import (
    TriggerKind,
    NotificationTrigger,
    TriggerBackend,
    InMemoryTriggerBackend,
    NotificationScheduler
)

__all__ = [
    "TriggerKind",
    "NotificationTrigger",
    "TriggerBackend",
    "InMemoryTriggerBackend",
    "NotificationScheduler"
]

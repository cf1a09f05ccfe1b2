"""
Retention-based cleanup of tasks and expenses
"""

from .cleanup_service import CleanupService, CleanupSettings, CleanupResult, CleanupStats

__all__ = [
    "CleanupService",
    "CleanupSettings",
    "CleanupResult",
    "CleanupStats"
]

"""
Background task management for sync operations.
"""

from .sync_tasks import AutoSyncScheduler

__all__ = [
    "AutoSyncScheduler"
]

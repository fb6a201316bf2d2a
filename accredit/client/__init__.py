"""
Client synchronization layer: HTTP client, record cache and optimistic updates.
"""

from .api_client import WorkflowClient, error_from_response
from .cache import RecordStore, IndexView
from .concurrency import RecordLockManager, LockInfo
from .sync import ClientSync
from . import advisory

__all__ = [
    "WorkflowClient",
    "error_from_response",
    "RecordStore",
    "IndexView",
    "RecordLockManager",
    "LockInfo",
    "ClientSync",
    "advisory",
]

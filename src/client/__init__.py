"""Task sync service client module."""

from .client import TaskSyncClient, TaskAPIError, TaskAPINotFoundError

__all__ = ["TaskSyncClient", "TaskAPIError", "TaskAPINotFoundError"]

"""
Change feed over the task store.

Answers "what changed since T", tombstones included.
"""

import logging
from datetime import datetime
from typing import Union

from ..storage.clock import parse_timestamp
from ..storage.models import Task
from ..storage.task_store import TaskStore

logger = logging.getLogger(__name__)


class ChangeFeed:
    """
    Read-only view of task mutations.

    Usage:
        feed = ChangeFeed(store)
        for task in feed.since("2026-01-20T10:00:00Z"):
            print(task.id, task.is_deleted)
    """

    def __init__(self, store: TaskStore):
        self.store = store

    def since(self, timestamp: Union[str, datetime]) -> list[Task]:
        """
        Get all tasks with updated_at strictly greater than `timestamp`.

        Args:
            timestamp: UTC ISO-8601 string or aware datetime

        Returns:
            Tasks, deleted ones included, ordered by updated_at ascending

        Raises:
            InvalidTimestampError: If the timestamp string is malformed
        """
        checkpoint = parse_timestamp(timestamp)
        tasks = self.store.updated_since(checkpoint)

        logger.debug(f"Change feed since {checkpoint.isoformat()}: {len(tasks)} tasks")
        return tasks

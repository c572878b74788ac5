"""Persistent task storage module."""

from .task_store import TaskStore, TaskStoreError, TaskNotFoundError
from .models import Task, TaskValidationError
from .clock import Clock, SystemClock, ManualClock, InvalidTimestampError

__all__ = [
    "TaskStore",
    "TaskStoreError",
    "TaskNotFoundError",
    "Task",
    "TaskValidationError",
    "Clock",
    "SystemClock",
    "ManualClock",
    "InvalidTimestampError",
]

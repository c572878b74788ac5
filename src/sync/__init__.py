"""Sync reconciliation engine module."""

from .engine import ReconciliationEngine, SyncResult, SyncStats
from .feed import ChangeFeed
from .changes import (
    ChangeAction,
    InboundChange,
    TaskData,
    CreatedChange,
    UpdatedChange,
    DeletedChange,
)

__all__ = [
    "ReconciliationEngine",
    "SyncResult",
    "SyncStats",
    "ChangeFeed",
    "ChangeAction",
    "InboundChange",
    "TaskData",
    "CreatedChange",
    "UpdatedChange",
    "DeletedChange",
]

"""
Reconciliation engine.

Applies a batch of client changes to the task store and returns
everything the client has not seen since its last checkpoint, together
with a fresh checkpoint.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence, Union

from ..storage.clock import Clock, parse_timestamp
from ..storage.models import TaskValidationError
from ..storage.task_store import TaskStore, TaskStoreError, TaskNotFoundError
from .changes import (
    ChangeAction,
    ChangeOutcome,
    CreatedChange,
    DeletedChange,
    InboundChange,
    OutboundChange,
    OutcomeStatus,
    UpdatedChange,
    change_from_task,
)
from .feed import ChangeFeed

logger = logging.getLogger(__name__)

# Per-change failures that are isolated instead of aborting the call
CHANGE_ERRORS = (TaskNotFoundError, TaskStoreError, TaskValidationError)


@dataclass
class SyncStats:
    """Statistics from a sync call."""
    received: int = 0
    created: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0
    failed: int = 0
    from_feed: int = 0

    def __str__(self) -> str:
        return (
            f"Sync complete: {self.received} changes received, "
            f"{self.created} created, {self.updated} updated, "
            f"{self.deleted} deleted, {self.skipped} skipped, "
            f"{self.failed} failed, {self.from_feed} from feed"
        )


@dataclass
class SyncResult:
    """
    Result of a sync call.

    Attributes:
        sync_timestamp: New checkpoint for the client
        server_changes: Outbound changes, at most one per task id
        outcomes: Per inbound change diagnostics (not sent to the client)
        stats: Counters for logging
    """
    sync_timestamp: datetime
    server_changes: list[OutboundChange] = field(default_factory=list)
    outcomes: list[ChangeOutcome] = field(default_factory=list)
    stats: SyncStats = field(default_factory=SyncStats)

    @property
    def failures(self) -> list[ChangeOutcome]:
        return [o for o in self.outcomes if o.status == OutcomeStatus.FAILED]


def _merge_same_task(previous: OutboundChange, current: OutboundChange) -> OutboundChange:
    """
    Combine two outcomes for the same task within one batch.

    The later outcome wins, except that an update following a create
    stays a create so the client's local id binding is preserved.
    """
    if isinstance(previous, CreatedChange) and isinstance(current, UpdatedChange):
        return CreatedChange(task=current.task, local_id=previous.local_id)
    return current


class ReconciliationEngine:
    """
    Orchestrates a sync call.

    Core principles:
    - Inbound changes are applied strictly in the order given
    - One failing change never blocks the others or the call
    - The change feed is read with the client's original checkpoint
    - The outbound list holds at most one entry per task id
    - The new checkpoint comes from the server clock, never from a task

    Consistency model: last write wins. Concurrent updates of the same
    task are not detected; the store write that lands last is kept.

    Retrying a sync call is not idempotent: every create in the batch
    creates a new task again.

    The checkpoint is read from the clock after the change feed. A write
    from another session that takes its timestamp before the checkpoint
    but commits after the feed read is missing from this response and
    sits below the checkpoint, so the client does not see it until that
    task changes again. The store reads the clock inside its write
    transaction, which keeps this window to a single commit.

    Usage:
        engine = ReconciliationEngine(store)
        result = engine.sync("2026-01-20T10:00:00Z", changes)
    """

    def __init__(
        self,
        store: TaskStore,
        feed: Optional[ChangeFeed] = None,
        clock: Optional[Clock] = None,
    ):
        """
        Initialize reconciliation engine.

        Args:
            store: Task store to apply changes to
            feed: Change feed (defaults to one over `store`)
            clock: Checkpoint clock (defaults to the store's clock)
        """
        self.store = store
        self.feed = feed or ChangeFeed(store)
        self.clock = clock or store.clock

    def sync(
        self,
        last_sync_timestamp: Union[str, datetime],
        changes: Sequence[InboundChange],
    ) -> SyncResult:
        """
        Execute a sync call.

        Steps:
        1. Apply each inbound change, in order
        2. Read the change feed since the client's checkpoint
        3. Append feed entries for tasks not already in the outbound list
        4. Mint the new checkpoint

        Args:
            last_sync_timestamp: The client's previous checkpoint
            changes: Inbound changes, in client order

        Returns:
            SyncResult with the new checkpoint and outbound changes

        Raises:
            InvalidTimestampError: If the checkpoint is malformed
            TaskStoreError: If the change feed cannot be read
        """
        checkpoint = parse_timestamp(last_sync_timestamp)
        stats = SyncStats(received=len(changes))
        outcomes: list[ChangeOutcome] = []

        logger.info(
            f"Starting sync: {len(changes)} changes since {checkpoint.isoformat()}"
        )

        # Step 1: apply phase, keyed by task id so only the last outcome survives
        applied: dict[str, OutboundChange] = {}

        for index, change in enumerate(changes):
            outcome, outbound = self._apply_change(index, change)
            outcomes.append(outcome)
            self._update_stats(stats, outcome)

            if outbound is None:
                continue

            previous = applied.pop(outbound.server_id, None)
            if previous is not None:
                logger.debug(
                    f"Change {index} supersedes earlier outcome for {outbound.server_id}"
                )
                outbound = _merge_same_task(previous, outbound)
            applied[outbound.server_id] = outbound

        server_changes: list[OutboundChange] = list(applied.values())

        # Step 2: feed phase, always from the original checkpoint
        feed_tasks = self.feed.since(checkpoint)

        # Step 3: merge, skipping tasks already reported by the apply phase
        for task in feed_tasks:
            if task.id in applied:
                continue
            server_changes.append(change_from_task(task))
            stats.from_feed += 1

        # Step 4: checkpoint
        sync_timestamp = self.clock.now()

        logger.info(str(stats))

        failures = [o for o in outcomes if o.status == OutcomeStatus.FAILED]
        if failures:
            logger.warning(f"Sync completed with {len(failures)} failed changes")
            for failure in failures:
                logger.warning(
                    f"  - change {failure.index} ({failure.action.value} "
                    f"{failure.server_id or failure.local_id}): {failure.message}"
                )

        return SyncResult(
            sync_timestamp=sync_timestamp,
            server_changes=server_changes,
            outcomes=outcomes,
            stats=stats,
        )

    def _apply_change(
        self,
        index: int,
        change: InboundChange,
    ) -> tuple[ChangeOutcome, Optional[OutboundChange]]:
        """
        Apply a single inbound change.

        Args:
            index: Position of the change in the batch
            change: The change to apply

        Returns:
            The outcome and, when applied, the outbound change
        """
        if change.action != ChangeAction.CREATE and not change.server_id:
            logger.debug(f"Skipping {change.action.value} change {index}: no serverId")
            return ChangeOutcome(
                index=index,
                action=change.action,
                status=OutcomeStatus.SKIPPED,
                local_id=change.local_id,
                message="serverId is required",
            ), None

        try:
            if change.action == ChangeAction.CREATE:
                outbound = self._create(change)
            elif change.action == ChangeAction.UPDATE:
                outbound = self._update(change)
            else:
                outbound = self._delete(change)
        except CHANGE_ERRORS as e:
            logger.warning(
                f"Error applying {change.action.value} change {index}: {e}"
            )
            return ChangeOutcome(
                index=index,
                action=change.action,
                status=OutcomeStatus.FAILED,
                server_id=change.server_id,
                local_id=change.local_id,
                error_type=type(e).__name__,
                message=str(e),
            ), None

        return ChangeOutcome(
            index=index,
            action=change.action,
            status=OutcomeStatus.APPLIED,
            server_id=outbound.server_id,
            local_id=change.local_id,
        ), outbound

    def _create(self, change: InboundChange) -> CreatedChange:
        """
        Create a task from a client create.

        Any completed flag in the payload is ignored: new tasks always
        start incomplete.
        """
        if change.data is None:
            raise TaskValidationError("create requires data")

        task = self.store.create(change.data.title, change.data.description)
        logger.info(f"Created task {task.id} for local id {change.local_id}")
        return CreatedChange(task=task, local_id=change.local_id)

    def _update(self, change: InboundChange) -> UpdatedChange:
        if change.data is None:
            raise TaskValidationError("update requires data")

        task = self.store.update(change.server_id, change.data.update_fields())
        logger.info(f"Updated task {task.id}")
        return UpdatedChange(task=task)

    def _delete(self, change: InboundChange) -> DeletedChange:
        self.store.soft_delete(change.server_id)
        return DeletedChange(server_id=change.server_id)

    def _update_stats(self, stats: SyncStats, outcome: ChangeOutcome) -> None:
        """Update stats based on a change outcome."""
        if outcome.status == OutcomeStatus.SKIPPED:
            stats.skipped += 1
        elif outcome.status == OutcomeStatus.FAILED:
            stats.failed += 1
        elif outcome.action == ChangeAction.CREATE:
            stats.created += 1
        elif outcome.action == ChangeAction.UPDATE:
            stats.updated += 1
        else:
            stats.deleted += 1

"""
Unit tests for the reconciliation engine.
"""

import pytest
from datetime import datetime, timedelta

from src.storage.clock import InvalidTimestampError, format_timestamp
from src.storage.task_store import TaskStore
from src.sync.changes import (
    ChangeAction,
    CreatedChange,
    DeletedChange,
    InboundChange,
    OutcomeStatus,
    TaskData,
    UpdatedChange,
)
from src.sync.engine import ReconciliationEngine, _merge_same_task


def server_ids(result) -> list[str]:
    return [change.server_id for change in result.server_changes]


@pytest.fixture
def t0(start_time: datetime) -> str:
    """A checkpoint from before any task existed."""
    return format_timestamp(start_time - timedelta(days=1))


class TestRoundTrip:
    """End-to-end scenarios for a single client."""

    def test_create_round_trip(self, engine: ReconciliationEngine, create_change: InboundChange, t0: str):
        """Test that a create is echoed with its localId and then not resent."""
        first = engine.sync(t0, [create_change])

        assert len(first.server_changes) == 1
        created = first.server_changes[0]
        assert isinstance(created, CreatedChange)
        assert created.local_id == 1
        assert created.task.title == "Buy milk"
        assert created.to_dict()["data"]["title"] == "Buy milk"

        second = engine.sync(format_timestamp(first.sync_timestamp), [])

        assert second.server_changes == []

    def test_create_ignores_completed_flag(self, engine: ReconciliationEngine, t0: str):
        change = InboundChange(
            action=ChangeAction.CREATE,
            local_id="tmp-1",
            data=TaskData(title="Already done", description="Created as completed", completed=True),
        )

        result = engine.sync(t0, [change])

        assert result.server_changes[0].task.completed is False

    def test_checkpoint_after_every_change(self, engine: ReconciliationEngine, store: TaskStore, t0: str):
        """Test that the new checkpoint exceeds every updated_at just written."""
        task = store.create("Buy milk", "2% milk, 1 gal")
        changes = [
            InboundChange(action=ChangeAction.UPDATE, server_id=task.id, data=TaskData(completed=True)),
            InboundChange(
                action=ChangeAction.CREATE,
                local_id=2,
                data=TaskData(title="Buy eggs", description="A dozen eggs"),
            ),
        ]

        result = engine.sync(t0, changes)

        newest = max(t.updated_at for t in store.updated_since(datetime.fromisoformat("2000-01-01T00:00:00+00:00")))
        assert result.sync_timestamp > newest

    def test_retry_duplicates_creates(self, engine: ReconciliationEngine, store: TaskStore, create_change, t0: str):
        """Test the documented limitation: retrying a sync is not idempotent."""
        engine.sync(t0, [create_change])
        engine.sync(t0, [create_change])

        assert store.count() == 2


class TestFeedMerge:
    """Tests for merging applied changes with the change feed."""

    def test_noop_sync_returns_feed(self, engine: ReconciliationEngine, store: TaskStore, t0: str):
        """Test that an empty batch returns exactly the feed since the checkpoint."""
        live = store.create("Buy milk", "2% milk, 1 gal")
        gone = store.create("Buy eggs", "A dozen eggs")
        store.soft_delete(gone.id)

        result = engine.sync(t0, [])

        feed = store.updated_since(datetime.fromisoformat("2000-01-01T00:00:00+00:00"))
        assert server_ids(result) == [t.id for t in feed]
        assert result.server_changes[0] == UpdatedChange(task=store.get(live.id))
        assert result.server_changes[1] == DeletedChange(server_id=gone.id)
        assert "data" not in result.server_changes[1].to_dict()

    def test_feed_uses_original_checkpoint(self, engine: ReconciliationEngine, store: TaskStore, clock, t0: str):
        """Test that changes from other sessions since the checkpoint are returned."""
        checkpoint = format_timestamp(clock.now())
        other = store.create("From another device", "Created by another session")

        result = engine.sync(checkpoint, [])

        assert server_ids(result) == [other.id]

    def test_applied_change_not_repeated_from_feed(self, engine: ReconciliationEngine, store: TaskStore, t0: str):
        """Test that a task updated in this batch appears only once."""
        task = store.create("Buy milk", "2% milk, 1 gal")
        change = InboundChange(
            action=ChangeAction.UPDATE,
            server_id=task.id,
            data=TaskData(title="Buy oat milk", description="Oat milk, 1 L", completed=True),
        )

        result = engine.sync(t0, [change])

        assert server_ids(result) == [task.id]
        assert isinstance(result.server_changes[0], UpdatedChange)
        assert result.server_changes[0].task.title == "Buy oat milk"

    def test_no_server_id_twice(self, engine: ReconciliationEngine, store: TaskStore, t0: str):
        tasks = [store.create(f"Task {i:03d}", f"Description {i}") for i in range(5)]
        changes = [
            InboundChange(action=ChangeAction.UPDATE, server_id=tasks[0].id, data=TaskData(completed=True)),
            InboundChange(action=ChangeAction.UPDATE, server_id=tasks[0].id, data=TaskData(title="Again")),
            InboundChange(action=ChangeAction.DELETE, server_id=tasks[1].id),
            InboundChange(action=ChangeAction.UPDATE, server_id=tasks[2].id, data=TaskData(completed=True)),
        ]

        result = engine.sync(t0, changes)

        ids = server_ids(result)
        assert len(ids) == len(set(ids)) == 5


class TestSameTaskInBatch:
    """Tests for several changes to one task in a single batch."""

    def test_update_then_delete_keeps_only_delete(self, engine: ReconciliationEngine, store: TaskStore, t0: str):
        task = store.create("Buy milk", "2% milk, 1 gal")
        changes = [
            InboundChange(action=ChangeAction.UPDATE, server_id=task.id, data=TaskData(title="Buy oat milk")),
            InboundChange(action=ChangeAction.DELETE, server_id=task.id),
        ]

        result = engine.sync(t0, changes)

        assert result.server_changes == [DeletedChange(server_id=task.id)]
        assert [o.status for o in result.outcomes] == [OutcomeStatus.APPLIED, OutcomeStatus.APPLIED]

    def test_last_outcome_moves_to_its_position(self, engine: ReconciliationEngine, store: TaskStore, t0: str):
        first = store.create("First task", "Created first")
        second = store.create("Second task", "Created second")
        changes = [
            InboundChange(action=ChangeAction.UPDATE, server_id=first.id, data=TaskData(completed=True)),
            InboundChange(action=ChangeAction.UPDATE, server_id=second.id, data=TaskData(completed=True)),
            InboundChange(action=ChangeAction.UPDATE, server_id=first.id, data=TaskData(completed=False)),
        ]

        result = engine.sync(t0, changes)

        assert server_ids(result) == [second.id, first.id]
        assert result.server_changes[1].task.completed is False

    def test_update_after_create_keeps_local_id(self, store: TaskStore):
        task = store.create("Buy milk", "2% milk, 1 gal")
        updated = store.update(task.id, {"completed": True})

        merged = _merge_same_task(CreatedChange(task=task, local_id=7), UpdatedChange(task=updated))

        assert merged == CreatedChange(task=updated, local_id=7)

    def test_delete_after_create_wins(self, store: TaskStore):
        task = store.create("Buy milk", "2% milk, 1 gal")

        merged = _merge_same_task(CreatedChange(task=task, local_id=7), DeletedChange(server_id=task.id))

        assert merged == DeletedChange(server_id=task.id)


class TestFailureIsolation:
    """Tests for per-change failure handling."""

    def test_missing_server_id_skipped(self, engine: ReconciliationEngine, t0: str):
        changes = [
            InboundChange(action=ChangeAction.UPDATE, data=TaskData(title="No target")),
            InboundChange(action=ChangeAction.DELETE),
        ]

        result = engine.sync(t0, changes)

        assert result.server_changes == []
        assert [o.status for o in result.outcomes] == [OutcomeStatus.SKIPPED, OutcomeStatus.SKIPPED]
        assert result.stats.skipped == 2

    def test_unknown_target_does_not_stop_batch(self, engine: ReconciliationEngine, create_change, t0: str):
        changes = [
            InboundChange(action=ChangeAction.UPDATE, server_id="missing", data=TaskData(completed=True)),
            InboundChange(action=ChangeAction.DELETE, server_id="also-missing"),
            create_change,
        ]

        result = engine.sync(t0, changes)

        assert len(result.server_changes) == 1
        assert isinstance(result.server_changes[0], CreatedChange)
        assert [f.error_type for f in result.failures] == ["TaskNotFoundError", "TaskNotFoundError"]
        assert result.stats.failed == 2
        assert result.stats.created == 1

    def test_invalid_fields_isolated(self, engine: ReconciliationEngine, store: TaskStore, create_change, t0: str):
        bad = InboundChange(
            action=ChangeAction.CREATE,
            local_id=99,
            data=TaskData(title="ab", description="too short title"),
        )

        result = engine.sync(t0, [bad, create_change])

        assert [c.local_id for c in result.server_changes] == [1]
        assert result.failures[0].error_type == "TaskValidationError"
        assert result.failures[0].local_id == 99
        assert store.count() == 1

    def test_create_without_data_fails(self, engine: ReconciliationEngine, t0: str):
        result = engine.sync(t0, [InboundChange(action=ChangeAction.CREATE, local_id=5)])

        assert result.server_changes == []
        assert result.failures[0].message == "create requires data"

    def test_delete_of_deleted_task_fails_but_feed_reports_tombstone(
        self, engine: ReconciliationEngine, store: TaskStore, t0: str
    ):
        task = store.create("Buy milk", "2% milk, 1 gal")
        store.soft_delete(task.id)

        result = engine.sync(t0, [InboundChange(action=ChangeAction.DELETE, server_id=task.id)])

        assert result.server_changes == [DeletedChange(server_id=task.id)]
        assert result.stats.failed == 1
        assert result.stats.from_feed == 1

    def test_malformed_checkpoint_fails_before_applying(self, engine: ReconciliationEngine, store: TaskStore, create_change):
        with pytest.raises(InvalidTimestampError):
            engine.sync("last tuesday", [create_change])

        assert store.count(include_deleted=True) == 0


class TestConcurrentSessions:
    """Tests for several clients syncing the same task."""

    def test_last_write_wins_without_conflict(self, store: TaskStore, t0: str):
        task = store.create("Buy milk", "2% milk, 1 gal")
        session_a = ReconciliationEngine(store)
        session_b = ReconciliationEngine(store)

        result_a = session_a.sync(t0, [
            InboundChange(action=ChangeAction.UPDATE, server_id=task.id, data=TaskData(title="Title from A")),
        ])
        result_b = session_b.sync(t0, [
            InboundChange(action=ChangeAction.UPDATE, server_id=task.id, data=TaskData(title="Title from B")),
        ])

        assert result_a.failures == []
        assert result_b.failures == []
        assert store.get(task.id).title == "Title from B"

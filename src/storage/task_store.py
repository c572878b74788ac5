"""
SQLite-based task store.

Provides durable storage for tasks with soft-delete (tombstone) semantics.
Each mutation is atomic on its own; there is no transaction spanning
several mutations.
"""

import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

from .clock import Clock, SystemClock, TIMESTAMP_RESOLUTION, format_timestamp
from .models import Task, validate_description, validate_task_fields, validate_title

logger = logging.getLogger(__name__)


class TaskStoreError(Exception):
    """Raised when task store operations fail."""
    pass


class TaskNotFoundError(Exception):
    """Raised when a task does not exist or has been deleted."""

    def __init__(self, task_id: str):
        super().__init__(f"Task {task_id} not found")
        self.task_id = task_id


_TASK_COLUMNS = """
    id,
    title,
    description,
    completed,
    created_at,
    updated_at,
    deleted_at
"""


class TaskStore:
    """
    SQLite-based task store.

    Features:
    - Server-assigned UUID identifiers
    - Soft delete: tombstoned rows stay in the table
    - updated_at strictly increases on every mutation of a task
    - Last-write-wins updates, no version check

    Usage:
        store = TaskStore(Path("data/tasks.db"))

        task = store.create("Buy milk", "2% milk, 1 gal")
        store.update(task.id, {"completed": True})
        store.soft_delete(task.id)
    """

    SCHEMA_VERSION = 1

    CREATE_TABLE_SQL = """
        CREATE TABLE IF NOT EXISTS tasks (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            description TEXT NOT NULL,
            completed INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            deleted_at TEXT
        )
    """

    CREATE_INDEXES_SQL = [
        "CREATE INDEX IF NOT EXISTS idx_tasks_updated_at ON tasks(updated_at)",
        "CREATE INDEX IF NOT EXISTS idx_tasks_deleted_at ON tasks(deleted_at)",
    ]

    CREATE_METADATA_TABLE_SQL = """
        CREATE TABLE IF NOT EXISTS _metadata (
            key TEXT PRIMARY KEY,
            value TEXT
        )
    """

    def __init__(self, database_path: Path, clock: Optional[Clock] = None):
        """
        Initialize task store.

        Args:
            database_path: Path to SQLite database file
            clock: Time source for created_at/updated_at/deleted_at
        """
        self.database_path = Path(database_path)
        self.clock = clock or SystemClock()

        self.database_path.parent.mkdir(parents=True, exist_ok=True)

        self._initialize_database()

        logger.info(f"Task store initialized at {self.database_path}")

    def _initialize_database(self) -> None:
        """Create tables and run migrations."""
        with self._transaction() as cursor:
            cursor.execute(self.CREATE_METADATA_TABLE_SQL)

            cursor.execute("SELECT value FROM _metadata WHERE key = 'schema_version'")
            row = cursor.fetchone()
            current_version = int(row[0]) if row else 0

            cursor.execute(self.CREATE_TABLE_SQL)
            for index_sql in self.CREATE_INDEXES_SQL:
                cursor.execute(index_sql)

            if current_version < self.SCHEMA_VERSION:
                logger.info(f"Upgrading schema from v{current_version} to v{self.SCHEMA_VERSION}")
                cursor.execute(
                    "INSERT OR REPLACE INTO _metadata (key, value) VALUES (?, ?)",
                    ("schema_version", str(self.SCHEMA_VERSION)),
                )

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """
        Get a database connection with proper settings.

        Yields:
            SQLite connection with WAL mode enabled
        """
        conn = sqlite3.connect(
            self.database_path,
            timeout=30.0,
            isolation_level="DEFERRED",
        )

        try:
            conn.execute("PRAGMA journal_mode=WAL")
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self, immediate: bool = False) -> Iterator[sqlite3.Cursor]:
        """
        Run a block of statements as a single transaction.

        Commits on success, rolls back on any error. SQLite failures are
        raised as TaskStoreError.

        Args:
            immediate: Take the write lock up front (for read-modify-write)
        """
        try:
            with self._get_connection() as conn:
                if immediate:
                    conn.execute("BEGIN IMMEDIATE")
                cursor = conn.cursor()
                try:
                    yield cursor
                    conn.commit()
                except BaseException:
                    conn.rollback()
                    raise
        except sqlite3.Error as e:
            raise TaskStoreError(f"Task store operation failed: {e}") from e

    def _fetch(self, cursor: sqlite3.Cursor, task_id: str, include_deleted: bool) -> Optional[Task]:
        sql = f"SELECT {_TASK_COLUMNS} FROM tasks WHERE id = ?"
        if not include_deleted:
            sql += " AND deleted_at IS NULL"
        cursor.execute(sql, (task_id,))
        row = cursor.fetchone()
        return Task.from_row(row) if row else None

    def _next_updated_at(self, previous: datetime) -> datetime:
        """Return a mutation time strictly after the previous one."""
        now = self.clock.now()
        if now <= previous:
            now = previous + TIMESTAMP_RESOLUTION
        return now

    def create(self, title: str, description: str) -> Task:
        """
        Create a new task.

        The id is always generated here; new tasks start incomplete.

        Args:
            title: Task title
            description: Task description

        Returns:
            The stored Task

        Raises:
            TaskValidationError: If title or description are invalid
            TaskStoreError: If the write fails
        """
        title = validate_title(title)
        description = validate_description(description)

        with self._transaction(immediate=True) as cursor:
            now = self.clock.now()
            task = Task(
                id=str(uuid.uuid4()),
                title=title,
                description=description,
                completed=False,
                created_at=now,
                updated_at=now,
            )
            cursor.execute(
                f"INSERT INTO tasks ({_TASK_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    task.id,
                    task.title,
                    task.description,
                    0,
                    format_timestamp(task.created_at),
                    format_timestamp(task.updated_at),
                    None,
                ),
            )

        logger.debug(f"Created task {task.id}")
        return task

    def get(self, task_id: str, include_deleted: bool = False) -> Task:
        """
        Get a task by id.

        Args:
            task_id: Task identifier
            include_deleted: Whether a tombstoned task may be returned

        Returns:
            The Task

        Raises:
            TaskNotFoundError: If no matching task exists
        """
        with self._transaction() as cursor:
            task = self._fetch(cursor, task_id, include_deleted)

        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def update(self, task_id: str, fields: dict) -> Task:
        """
        Overwrite the provided fields of a live task.

        Last write wins: there is no version check. updated_at is bumped
        even when no field is given.

        Args:
            task_id: Task identifier
            fields: Any of title, description, completed

        Returns:
            The updated Task

        Raises:
            TaskNotFoundError: If the task does not exist or is deleted
            TaskValidationError: If a field is invalid
        """
        fields = validate_task_fields(
            {name: value for name, value in fields.items() if value is not None}
        )

        with self._transaction(immediate=True) as cursor:
            current = self._fetch(cursor, task_id, include_deleted=False)
            if current is None:
                raise TaskNotFoundError(task_id)

            updated_at = self._next_updated_at(current.updated_at)
            task = Task(
                id=current.id,
                title=fields.get("title", current.title),
                description=fields.get("description", current.description),
                completed=fields.get("completed", current.completed),
                created_at=current.created_at,
                updated_at=updated_at,
            )

            cursor.execute(
                """
                UPDATE tasks
                SET title = ?, description = ?, completed = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    task.title,
                    task.description,
                    1 if task.completed else 0,
                    format_timestamp(task.updated_at),
                    task.id,
                ),
            )

        logger.debug(f"Updated task {task.id}: {sorted(fields)}")
        return task

    def toggle(self, task_id: str) -> Task:
        """Flip the completed flag of a live task."""
        with self._transaction(immediate=True) as cursor:
            current = self._fetch(cursor, task_id, include_deleted=False)
            if current is None:
                raise TaskNotFoundError(task_id)

            updated_at = self._next_updated_at(current.updated_at)
            completed = not current.completed

            cursor.execute(
                "UPDATE tasks SET completed = ?, updated_at = ? WHERE id = ?",
                (1 if completed else 0, format_timestamp(updated_at), task_id),
            )

        logger.debug(f"Toggled task {task_id} to completed={completed}")
        return Task(
            id=current.id,
            title=current.title,
            description=current.description,
            completed=completed,
            created_at=current.created_at,
            updated_at=updated_at,
        )

    def soft_delete(self, task_id: str) -> None:
        """
        Mark a task as deleted.

        Does NOT remove the row; deleted_at and updated_at are set to the
        same instant.

        Raises:
            TaskNotFoundError: If the task does not exist or is already deleted
        """
        with self._transaction(immediate=True) as cursor:
            current = self._fetch(cursor, task_id, include_deleted=False)
            if current is None:
                raise TaskNotFoundError(task_id)

            deleted_at = format_timestamp(self._next_updated_at(current.updated_at))
            cursor.execute(
                "UPDATE tasks SET deleted_at = ?, updated_at = ? WHERE id = ?",
                (deleted_at, deleted_at, task_id),
            )

        logger.info(f"Soft-deleted task {task_id}")

    def list_live(self) -> list[Task]:
        """
        Get all live tasks, newest first.

        Returns:
            Tasks with no tombstone, ordered by created_at descending
        """
        with self._transaction() as cursor:
            cursor.execute(
                f"""
                SELECT {_TASK_COLUMNS}
                FROM tasks
                WHERE deleted_at IS NULL
                ORDER BY created_at DESC, id
                """
            )
            return [Task.from_row(row) for row in cursor.fetchall()]

    def updated_since(self, since: datetime) -> list[Task]:
        """
        Get every task, tombstones included, changed strictly after `since`.

        Args:
            since: Aware datetime checkpoint

        Returns:
            Tasks ordered by updated_at ascending
        """
        with self._transaction() as cursor:
            cursor.execute(
                f"""
                SELECT {_TASK_COLUMNS}
                FROM tasks
                WHERE updated_at > ?
                ORDER BY updated_at, id
                """,
                (format_timestamp(since),),
            )
            return [Task.from_row(row) for row in cursor.fetchall()]

    def count(self, include_deleted: bool = False) -> int:
        """
        Count stored tasks.

        Args:
            include_deleted: Whether to include tombstones

        Returns:
            Task count
        """
        with self._transaction() as cursor:
            if include_deleted:
                cursor.execute("SELECT COUNT(*) FROM tasks")
            else:
                cursor.execute("SELECT COUNT(*) FROM tasks WHERE deleted_at IS NULL")

            return cursor.fetchone()[0]

    def clear(self) -> None:
        """
        Remove every task, tombstones included.

        WARNING: This is destructive. Use only for testing or reset.
        """
        with self._transaction() as cursor:
            cursor.execute("DELETE FROM tasks")

        logger.warning("All tasks cleared")

"""
Task storage models.

A Task is the unit of synchronization. Deleted tasks are kept as
tombstones (deleted_at set) so the change feed can report them.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from .clock import format_timestamp, parse_timestamp

TITLE_MIN_LENGTH = 3
TITLE_MAX_LENGTH = 255
DESCRIPTION_MIN_LENGTH = 5
DESCRIPTION_MAX_LENGTH = 5000


class TaskValidationError(ValueError):
    """Raised when task fields violate their constraints."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


@dataclass(frozen=True)
class Task:
    """
    Represents a stored task.

    Attributes:
        id: Server-assigned identifier, never reused
        title: Task title (3-255 characters)
        description: Task description (5-5000 characters)
        completed: Completion state
        created_at: Creation time, never mutated
        updated_at: Time of the most recent mutation, including soft-delete
        deleted_at: Tombstone time, None while the task is live
    """
    id: str
    title: str
    description: str
    completed: bool
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None

    @property
    def is_deleted(self) -> bool:
        """Check if this task is a tombstone."""
        return self.deleted_at is not None

    def to_dict(self) -> dict:
        """Convert to the wire representation."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "completed": self.completed,
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
            "deletedAt": format_timestamp(self.deleted_at) if self.deleted_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Task":
        """Create from the wire representation."""
        deleted_at = None
        if data.get("deletedAt"):
            deleted_at = parse_timestamp(data["deletedAt"])

        return cls(
            id=data["id"],
            title=data["title"],
            description=data["description"],
            completed=bool(data.get("completed", False)),
            created_at=parse_timestamp(data["createdAt"]),
            updated_at=parse_timestamp(data["updatedAt"]),
            deleted_at=deleted_at,
        )

    @classmethod
    def from_row(cls, row: tuple) -> "Task":
        """Create from SQLite row tuple."""
        (
            task_id,
            title,
            description,
            completed,
            created_at,
            updated_at,
            deleted_at,
        ) = row

        return cls(
            id=task_id,
            title=title,
            description=description,
            completed=bool(completed),
            created_at=parse_timestamp(created_at),
            updated_at=parse_timestamp(updated_at),
            deleted_at=parse_timestamp(deleted_at) if deleted_at else None,
        )


def _validate_text(value: Any, field: str, min_length: int, max_length: int) -> str:
    if not isinstance(value, str):
        raise TaskValidationError(f"{field} must be a string", field=field)
    if not value.strip():
        raise TaskValidationError(f"{field} must not be empty", field=field)
    if len(value) < min_length:
        raise TaskValidationError(
            f"{field} must be at least {min_length} characters", field=field
        )
    if len(value) > max_length:
        raise TaskValidationError(
            f"{field} must be at most {max_length} characters", field=field
        )
    return value


def validate_title(value: Any) -> str:
    return _validate_text(value, "title", TITLE_MIN_LENGTH, TITLE_MAX_LENGTH)


def validate_description(value: Any) -> str:
    return _validate_text(
        value, "description", DESCRIPTION_MIN_LENGTH, DESCRIPTION_MAX_LENGTH
    )


def validate_task_fields(fields: dict) -> dict:
    """
    Validate a partial set of task fields.

    Only title, description and completed may be written by callers.

    Args:
        fields: Mapping of field name to new value

    Returns:
        The validated fields

    Raises:
        TaskValidationError: If a field is unknown or violates its constraints
    """
    validated = {}

    for name, value in fields.items():
        if name == "title":
            validated[name] = validate_title(value)
        elif name == "description":
            validated[name] = validate_description(value)
        elif name == "completed":
            if not isinstance(value, bool):
                raise TaskValidationError("completed must be a boolean", field=name)
            validated[name] = value
        else:
            raise TaskValidationError(f"Field {name!r} cannot be written", field=name)

    return validated

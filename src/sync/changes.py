"""
Change records exchanged during a sync call.

Inbound changes describe what a client did while offline. Outbound
changes describe what the client has not seen yet. Neither is persisted.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from ..storage.models import Task

LocalId = Union[int, str]


class ChangeAction(Enum):
    """Actions carried by a change."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class OutcomeStatus(Enum):
    """What happened to an inbound change."""
    APPLIED = "applied"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class TaskData:
    """
    Task payload sent by a client.

    updated_at is the client's own edit time. It is informational only:
    the store always stamps its own time.
    """
    title: Optional[str] = None
    description: Optional[str] = None
    completed: Optional[bool] = None
    updated_at: Optional[str] = None

    def update_fields(self) -> dict:
        """Fields to write on update; absent values are left untouched."""
        fields = {
            "title": self.title,
            "description": self.description,
            "completed": self.completed,
        }
        return {name: value for name, value in fields.items() if value is not None}


@dataclass(frozen=True)
class InboundChange:
    """
    A client-side change to apply.

    Attributes:
        action: What the client did
        local_id: Client correlation id, meaningful on create only
        server_id: Target task id, required for update/delete
        data: Task payload, absent for delete
    """
    action: ChangeAction
    local_id: Optional[LocalId] = None
    server_id: Optional[str] = None
    data: Optional[TaskData] = None


@dataclass(frozen=True)
class CreatedChange:
    """A task created from a client create; echoes the client's local id."""
    task: Task
    local_id: Optional[LocalId] = None

    action = ChangeAction.CREATE

    @property
    def server_id(self) -> str:
        return self.task.id

    def to_dict(self) -> dict:
        result = {}
        if self.local_id is not None:
            result["localId"] = self.local_id
        result["serverId"] = self.server_id
        result["action"] = self.action.value
        result["data"] = self.task.to_dict()
        return result


@dataclass(frozen=True)
class UpdatedChange:
    """A live task's current state."""
    task: Task

    action = ChangeAction.UPDATE

    @property
    def server_id(self) -> str:
        return self.task.id

    def to_dict(self) -> dict:
        return {
            "serverId": self.server_id,
            "action": self.action.value,
            "data": self.task.to_dict(),
        }


@dataclass(frozen=True)
class DeletedChange:
    """A tombstone. Carries no payload."""
    server_id: str

    action = ChangeAction.DELETE

    def to_dict(self) -> dict:
        return {
            "serverId": self.server_id,
            "action": self.action.value,
        }


OutboundChange = Union[CreatedChange, UpdatedChange, DeletedChange]


def change_from_task(task: Task) -> OutboundChange:
    """Translate a change-feed task into an outbound change."""
    if task.is_deleted:
        return DeletedChange(server_id=task.id)
    return UpdatedChange(task=task)


@dataclass(frozen=True)
class ChangeOutcome:
    """
    Diagnostic record for one inbound change.

    Kept for logging and inspection only; never sent to the client.
    """
    index: int
    action: ChangeAction
    status: OutcomeStatus
    server_id: Optional[str] = None
    local_id: Optional[LocalId] = None
    error_type: Optional[str] = None
    message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == OutcomeStatus.APPLIED

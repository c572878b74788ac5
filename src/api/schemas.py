"""
HTTP request and response schemas.

Field names match the wire format (camelCase). Unknown request fields,
such as a client-proposed task id, are ignored.
"""

from typing import Literal, Optional, Union

from pydantic import BaseModel, Field

from ..storage.models import (
    DESCRIPTION_MAX_LENGTH,
    DESCRIPTION_MIN_LENGTH,
    TITLE_MAX_LENGTH,
    TITLE_MIN_LENGTH,
)


class TaskCreateRequest(BaseModel):
    """Body of POST /tasks."""
    title: str = Field(min_length=TITLE_MIN_LENGTH, max_length=TITLE_MAX_LENGTH)
    description: str = Field(
        min_length=DESCRIPTION_MIN_LENGTH, max_length=DESCRIPTION_MAX_LENGTH
    )


class TaskUpdateRequest(BaseModel):
    """Body of PUT /tasks/{id}; every field is optional."""
    title: Optional[str] = Field(
        default=None, min_length=TITLE_MIN_LENGTH, max_length=TITLE_MAX_LENGTH
    )
    description: Optional[str] = Field(
        default=None,
        min_length=DESCRIPTION_MIN_LENGTH,
        max_length=DESCRIPTION_MAX_LENGTH,
    )
    completed: Optional[bool] = None


class TaskResponse(BaseModel):
    id: str
    title: str
    description: str
    completed: bool
    createdAt: str
    updatedAt: str
    deletedAt: Optional[str] = None


class SyncTaskData(BaseModel):
    """
    Task payload inside a sync change.

    Kept loose on purpose: constraint violations are reported per change
    by the engine instead of failing the whole sync request.
    """
    title: Optional[str] = None
    description: Optional[str] = None
    completed: Optional[bool] = None
    updatedAt: Optional[str] = None


class SyncChangeRequest(BaseModel):
    localId: Optional[Union[int, str]] = None
    serverId: Optional[str] = None
    action: Literal["create", "update", "delete"]
    data: Optional[SyncTaskData] = None


class SyncRequest(BaseModel):
    """Body of POST /tasks/sync."""
    lastSyncTimestamp: str
    changes: list[SyncChangeRequest] = Field(default_factory=list)


class ServerChange(BaseModel):
    """
    One outbound change in a sync response.

    localId is only set on creates that carried one; deletes have no data.
    """
    localId: Optional[Union[int, str]] = None
    serverId: str
    action: Literal["create", "update", "delete"]
    data: Optional[TaskResponse] = None


class SyncResponse(BaseModel):
    """Body returned by POST /tasks/sync."""
    syncTimestamp: str
    serverChanges: list[ServerChange] = Field(default_factory=list)
